"""Deliver finished artifacts."""

from __future__ import annotations

import os
import re
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Set, Tuple

from .errors import WriteFailed
from .log import log_debug

_RESERVED = re.compile(r'[\\/*?:"<>|\x00-\x1f]')
_EXTENSION = re.compile(r"\.[A-Za-z0-9]{1,5}$")


def split_extension(name: str) -> Tuple[str, str]:
    """``"Ch 1.pdf"`` -> ``("Ch 1", ".pdf")``; leading dots stay in the stem."""
    match = _EXTENSION.search(name)
    if match is None:
        return name, ""
    return name[: match.start()], match.group(0)


def sanitize_filename(name: str) -> str:
    stem, ext = split_extension(_RESERVED.sub("", name).strip())
    stem = stem.strip().strip(".")
    return f"{stem or 'untitled'}{ext}"


class DirectorySink:
    """
    Writes each artifact into ``out_dir`` (temporary file, then rename).

    Within one sink, a name that was already delivered gets a numbered
    variant (``Ch 1 (2).pdf``) instead of replacing the earlier file. Files
    left by earlier runs are overwritten.
    """

    def __init__(self, out_dir):
        self.out_dir = Path(out_dir)
        self._written: Set[str] = set()

    def _unique_name(self, filename: str) -> str:
        if filename not in self._written:
            return filename
        stem, ext = split_extension(filename)
        n = 2
        while f"{stem} ({n}){ext}" in self._written:
            n += 1
        return f"{stem} ({n}){ext}"

    def deliver(self, data: bytes, filename: str) -> Path:
        name = self._unique_name(sanitize_filename(filename))
        target = self.out_dir / name
        tmp_path = None
        try:
            self.out_dir.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=self.out_dir, prefix=".deksmo-", suffix=".part")
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
            os.replace(tmp_path, target)
        except OSError as e:
            if tmp_path and os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise WriteFailed(f"Could not write {target}: {e}", e) from e
        self._written.add(name)
        log_debug(f"    Wrote {len(data)} bytes -> {target}")
        return target


@dataclass
class Delivery:
    filename: str
    data: bytes
    delivered_at: float


class MemorySink:
    """Keeps artifacts in memory; handy for embedding and for tests."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self.deliveries: List[Delivery] = []
        self._clock = clock

    def deliver(self, data: bytes, filename: str) -> str:
        self.deliveries.append(Delivery(filename, data, self._clock()))
        return filename

    def get(self, filename: str) -> bytes:
        for delivery in self.deliveries:
            if delivery.filename == filename:
                return delivery.data
        raise KeyError(filename)


__all__ = ["Delivery", "DirectorySink", "MemorySink", "sanitize_filename", "split_extension"]
