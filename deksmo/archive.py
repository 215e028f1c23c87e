"""ZIP archive with one folder holding the chapter's original image files."""

from __future__ import annotations

import io
import os
import re
import zipfile
from typing import Optional, Set

from .base import BaseAssembler
from .errors import DecodeFailed, ResolveFailed
from .log import log_warning
from .model import ChapterImage
from .resolver import ResolvedImage

_IMAGE_EXT = re.compile(r"\.(jpe?g|png|webp|gif)$", re.IGNORECASE)
_SEPARATORS = re.compile(r"[\\/\x00-\x1f]+")


def archive_folder(title: str) -> str:
    """The single top-level folder: the title with path separators flattened."""
    folder = _SEPARATORS.sub("_", title or "").strip().strip(".")
    return folder or "untitled"


def archive_filename(name: str, index: int) -> str:
    filename = _SEPARATORS.sub("_", name or "").strip() or f"image_{index + 1:03d}"
    if not _IMAGE_EXT.search(filename):
        filename += ".jpg"
    return filename


def dedupe_filename(filename: str, used: Set[str]) -> str:
    """``page.png`` -> ``page_2.png`` -> ``page_3.png`` ... until unused."""
    if filename not in used:
        return filename
    stem, ext = os.path.splitext(filename)
    n = 2
    while f"{stem}_{n}{ext}" in used:
        n += 1
    return f"{stem}_{n}{ext}"


class ZipAssembler(BaseAssembler):
    name = "zip"
    extension = "zip"
    accepts_gif = True

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._buffer: Optional[io.BytesIO] = None
        self._zip: Optional[zipfile.ZipFile] = None
        self._folder = ""
        self._names: Set[str] = set()

    def _resolve(self, index: int, image: ChapterImage) -> Optional[ResolvedImage]:
        try:
            return self.resolver.resolve(image.source)
        except (ResolveFailed, DecodeFailed) as e:
            log_warning(f"Skipping image {index + 1} ({image.name or 'unnamed'}): {e}")
            return None

    def _start(self, title: str, first: ResolvedImage) -> None:
        self._buffer = io.BytesIO()
        self._zip = zipfile.ZipFile(self._buffer, "w", zipfile.ZIP_DEFLATED)
        self._folder = archive_folder(title)

    def _add(self, index: int, image: ChapterImage, resolved: ResolvedImage) -> None:
        filename = dedupe_filename(archive_filename(image.name, index), self._names)
        self._names.add(filename)
        self._zip.writestr(f"{self._folder}/{filename}", resolved.data)
        image.set_dimensions(resolved.width, resolved.height)

    def _finish(self, title: str) -> bytes:
        self._zip.close()
        data = self._buffer.getvalue()
        self._zip = None
        self._buffer = None
        return data


__all__ = ["ZipAssembler", "archive_filename", "archive_folder", "dedupe_filename"]
