#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# ------------------------------------------------------------------
# Folders of page images  →  one PDF (or ZIP) per chapter
# -----------------------------------------------------------
import argparse
import sys
from pathlib import Path
from typing import List, Optional

from deksmo import available_formats
from deksmo.batch import BatchOrchestrator
from deksmo.config import FETCH_HELPERS, ExportSettings, settings_from_args
from deksmo.errors import ConfigError
from deksmo.handoff import JsonKeyValueStore, take_handoff
from deksmo.ingest import ingest, sources_from_directory
from deksmo.log import is_verbose, log_verbose, set_verbosity
from deksmo.model import ChapterStore
from deksmo.progress import ASSEMBLING, ProgressBus, ProgressEvent
from deksmo.resolver import (
    BrowserFetchHelper,
    ImageResolver,
    SessionFetchHelper,
    create_direct_session,
    create_scraper,
)
from deksmo.sink import DirectorySink

EXIT_OK = 0
EXIT_NO_CHAPTERS = 1
EXIT_PARTIAL = 2
EXIT_CONFIG = 3


# -----------------------------------------------------------
# Helper Functions
# -----------------------------------------------------------
class _ArgumentParser(argparse.ArgumentParser):
    """Usage errors are configuration errors (exit 3), not argparse's 2."""

    def error(self, message):
        self.print_usage(sys.stderr)
        self.exit(EXIT_CONFIG, f"{self.prog}: error: {message}\n")


def build_parser() -> argparse.ArgumentParser:
    p = _ArgumentParser("deksmo")
    sub = p.add_subparsers(dest="command")
    sub.required = True

    pdf = sub.add_parser(
        "pdf",
        help="Export every image folder under INPUT_DIR as one file per chapter.",
    )
    pdf.add_argument("input_dir", nargs="?", default=None)
    pdf.add_argument("--out", dest="out_dir", default=None, help="Output directory.")
    pdf.add_argument("--format", choices=list(available_formats()), default=None)
    pdf.add_argument("--config", default=None, help="JSON file with default settings.")
    pdf.add_argument(
        "--handoff",
        default=None,
        help="JSON key-value file to import a grabber handoff record from.",
    )
    pdf.add_argument(
        "--delay",
        type=float,
        default=None,
        help="Seconds to wait after each chapter (default: 0.5).",
    )
    pdf.add_argument("--timeout", type=float, default=None, help="HTTP timeout in seconds.")
    pdf.add_argument("--user-agent", dest="user_agent", default=None)
    pdf.add_argument("--proxy", default=None, help="Proxy URL for image downloads.")
    pdf.add_argument("--cookies", default=None, help="'k=v; k2=v2' sent by the fetch helper.")
    pdf.add_argument(
        "--fetch-helper",
        dest="fetch_helper",
        choices=list(FETCH_HELPERS),
        default=None,
        help="Privileged fetch path tried before the direct download.",
    )
    pdf.add_argument("--verbose", action="store_true", default=None)
    pdf.add_argument("--debug", action="store_true", default=None)
    return p


def build_fetch_helper(settings: ExportSettings):
    if settings.fetch_helper == "none":
        return None
    if settings.fetch_helper == "browser":
        return BrowserFetchHelper(settings.user_agent, settings.timeout, settings.proxy)
    scraper = create_scraper(settings.user_agent, settings.proxy, settings.cookies)
    return SessionFetchHelper(scraper, settings.timeout)


def build_resolver(settings: ExportSettings, fetch_helper=None) -> ImageResolver:
    return ImageResolver(
        fetch_helper=fetch_helper,
        direct_session=create_direct_session(settings.user_agent, settings.proxy),
        timeout=settings.timeout,
        max_retries=settings.max_retries,
        retry_delay=settings.retry_delay,
    )


def make_console_reporter():
    """Prints assembling progress in 10% steps when --verbose is set."""
    last_step = {}

    def report(event: ProgressEvent) -> None:
        if event.phase != ASSEMBLING or not is_verbose():
            return
        step = event.percent // 10
        if last_step.get(event.chapter_id) == step:
            return
        last_step[event.chapter_id] = step
        print(f"  [{event.percent:3d}%] {event.chapter_name}")

    return report


# -----------------------------------------------------------
# main
# -----------------------------------------------------------
def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        settings = settings_from_args(args)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_CONFIG
    set_verbosity(settings.verbose, settings.debug)

    if not args.input_dir and not args.handoff:
        print("Error: give an input directory or --handoff FILE.", file=sys.stderr)
        return EXIT_CONFIG
    input_dir = Path(args.input_dir) if args.input_dir else None
    if input_dir is not None and not input_dir.is_dir():
        print(f"Error: input directory not found: {input_dir}", file=sys.stderr)
        return EXIT_CONFIG

    store = ChapterStore()
    if args.handoff:
        try:
            take_handoff(JsonKeyValueStore(args.handoff), store)
        except ConfigError as e:
            print(f"Error: {e}", file=sys.stderr)
            return EXIT_CONFIG
    if input_dir is not None:
        log_verbose(f"Scanning {input_dir} ...")
        store.add_chapters(
            ingest(
                sources_from_directory(input_dir),
                accept_gif=settings.format == "zip",
                max_image_bytes=settings.max_image_bytes,
            )
        )

    if not len(store):
        print("No chapters found.")
        return EXIT_NO_CHAPTERS
    stats = store.stats()
    print(f"{stats['chapters']} chapter(s), {stats['images']} image(s) queued.")

    try:
        fetch_helper = build_fetch_helper(settings)
    except RuntimeError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_CONFIG

    resolver = build_resolver(settings, fetch_helper)
    bus = ProgressBus()
    bus.subscribe(make_console_reporter())
    orchestrator = BatchOrchestrator(
        resolver,
        DirectorySink(settings.out_dir),
        bus=bus,
        delay=settings.delay,
        dismiss_after=settings.dismiss_after,
    )
    try:
        result = orchestrator.export_all(store.live_chapters(), settings.format)
    finally:
        if isinstance(fetch_helper, BrowserFetchHelper):
            fetch_helper.close()

    for failed in result.failed:
        print(f"  Failed: {failed.chapter_name} ({failed.reason})")
    if not result.delivered:
        return EXIT_NO_CHAPTERS
    if result.failed:
        return EXIT_PARTIAL
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
