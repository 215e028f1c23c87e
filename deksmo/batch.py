"""
Sequential export of chapters.

The orchestrator claims one chapter at a time (``is_processing``), runs the
assembler for the requested format, hands the bytes to the sink and reports
progress on a ``ProgressBus``. A failed chapter is reported and the batch
moves on; only cancellation stops it early.
"""

from __future__ import annotations

import os
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, List, Optional, Type

from . import get_assembler_by_name
from .base import BaseAssembler, CancelToken
from .errors import Cancelled, ChapterBusy, ConfigError
from .log import log_verbose
from .model import Chapter
from .progress import COMPLETE, ERROR, STARTING, ProgressBus, ProgressEvent
from .resolver import ImageResolver

IDLE, RUNNING = "idle", "running"

QUIESCENCE_DELAY = 0.5  # seconds between chapters, lets the sink settle
DISMISS_AFTER = 3.0  # seconds the "complete" state stays visible


def describe_error(error: BaseException) -> str:
    kind = getattr(error, "kind", type(error).__name__)
    message = str(error)
    return f"{kind}: {message}" if message and message != kind else kind


@dataclass
class ChapterResult:
    chapter_id: str
    chapter_name: str
    ok: bool
    filename: Optional[str] = None
    location: Any = None
    skipped: int = 0
    error: Optional[BaseException] = None

    @property
    def reason(self) -> str:
        return describe_error(self.error) if self.error else ""


@dataclass
class BatchResult:
    results: List[ChapterResult] = field(default_factory=list)
    cancelled: bool = False

    @property
    def delivered(self) -> List[ChapterResult]:
        return [r for r in self.results if r.ok]

    @property
    def failed(self) -> List[ChapterResult]:
        return [r for r in self.results if not r.ok]


class BatchOrchestrator:
    def __init__(
        self,
        resolver: ImageResolver,
        sink,
        bus: Optional[ProgressBus] = None,
        assembler_for: Callable[[str], Optional[Type[BaseAssembler]]] = get_assembler_by_name,
        delay: float = QUIESCENCE_DELAY,
        dismiss_after: float = DISMISS_AFTER,
        cancel_token: Optional[CancelToken] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.resolver = resolver
        self.sink = sink
        self.bus = bus or ProgressBus()
        self.assembler_for = assembler_for
        self.delay = delay
        self.dismiss_after = dismiss_after
        self.cancel_token = cancel_token
        self._clock = clock
        self._sleep = sleep
        self._active: Optional[Chapter] = None
        self._status = IDLE
        self._completed_at = 0.0

    # --- State -------------------------------------------------------------
    @property
    def status(self) -> str:
        if self._status == COMPLETE and self._clock() - self._completed_at >= self.dismiss_after:
            self._status = IDLE
        return self._status

    @property
    def active_chapter(self) -> Optional[Chapter]:
        return self._active

    def _claim(self, chapter: Chapter) -> None:
        if self._active is not None or chapter.is_processing:
            busy = self._active.name if self._active else chapter.name
            raise ChapterBusy(f"Chapter '{busy}' is already being exported")
        chapter.is_processing = True
        self._active = chapter

    def _release(self, chapter: Chapter) -> None:
        chapter.is_processing = False
        if self._active is chapter:
            self._active = None

    def _emit(self, phase: str, chapter: Optional[Chapter] = None, **kwargs) -> None:
        self.bus.emit(
            ProgressEvent(
                phase,
                chapter_id=chapter.id if chapter else None,
                chapter_name=chapter.name if chapter else None,
                timestamp=self._clock(),
                **kwargs,
            )
        )

    # --- Exports -----------------------------------------------------------
    def export_one(self, chapter: Chapter, fmt: str, progress_sink=None) -> ChapterResult:
        assembler_cls = self.assembler_for(fmt)
        if assembler_cls is None:
            raise ConfigError(f"Unknown export format: {fmt}")

        unsubscribe = self.bus.subscribe(progress_sink) if progress_sink else None
        try:
            self._claim(chapter)
            assembler = None
            try:
                assembler = assembler_cls(self.resolver, cancel_token=self.cancel_token)
                images = chapter.export_images()
                log_verbose(f"  Assembling {len(images)} image(s) as {fmt.upper()}...")
                data = assembler.assemble(
                    images,
                    chapter.name,
                    self.bus.chapter_reporter(chapter.id, chapter.name, self._clock),
                )
                location = self.sink.deliver(data, f"{chapter.name}.{assembler.extension}")
                filename = os.path.basename(str(location))
            except Exception as e:
                # Every failure ends this chapter only; the batch carries on.
                self._release(chapter)
                self._emit(ERROR, chapter, error=describe_error(e))
                print(f"  Error: {chapter.name}: {describe_error(e)}")
                return ChapterResult(
                    chapter.id,
                    chapter.name,
                    ok=False,
                    skipped=len(assembler.skipped) if assembler is not None else 0,
                    error=e,
                )
            finally:
                self._release(chapter)
        finally:
            if unsubscribe:
                unsubscribe()

        print(f"{fmt.upper()} saved → {filename}")
        return ChapterResult(
            chapter.id,
            chapter.name,
            ok=True,
            filename=filename,
            location=location,
            skipped=len(assembler.skipped),
        )

    def export_all(self, chapters: Iterable[Chapter], fmt: str, progress_sink=None) -> BatchResult:
        # The chapter list is fixed now; each chapter's images are read when
        # its own export starts.
        queue = list(chapters)
        total = len(queue)
        result = BatchResult()
        unsubscribe = self.bus.subscribe(progress_sink) if progress_sink else None
        self._status = RUNNING
        try:
            for i, chapter in enumerate(queue, start=1):
                if self.cancel_token is not None and self.cancel_token.cancelled:
                    result.cancelled = True
                    break
                self._emit(STARTING, chapter, index=i, total=total)
                print(f"\nChapter {i}/{total}: {chapter.name}")
                outcome = self.export_one(chapter, fmt)
                result.results.append(outcome)
                if isinstance(outcome.error, Cancelled):
                    result.cancelled = True
                    break
                self._sleep(self.delay)
            if result.cancelled:
                print("Batch cancelled; remaining chapters skipped.")
            self._status = COMPLETE
            self._completed_at = self._clock()
            self._emit(COMPLETE)
            print("Batch complete!")
        finally:
            if self._status == RUNNING:
                self._status = IDLE
            if unsubscribe:
                unsubscribe()
        return result


__all__ = [
    "BatchOrchestrator",
    "BatchResult",
    "ChapterResult",
    "DISMISS_AFTER",
    "IDLE",
    "QUIESCENCE_DELAY",
    "RUNNING",
    "describe_error",
]
