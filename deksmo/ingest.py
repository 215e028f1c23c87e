"""Group a flat list of image sources into chapters by parent folder."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from .log import log_debug, log_verbose, log_warning
from .model import Chapter, ChapterImage, SourceHandle
from .natural import natural_key, natural_sorted

LOOSE_IMAGES = "Loose Images"
MAX_IMAGE_BYTES = 10 * 1024 * 1024  # advisory only

PDF_EXTENSIONS = (".jpg", ".jpeg", ".png", ".webp")
GIF_EXTENSIONS = (".gif",)
IMAGE_MIME_TYPES = ("image/jpeg", "image/png", "image/webp", "image/gif")


@dataclass
class IngestSource:
    name: str
    handle: SourceHandle
    relative_path: Optional[str] = None
    size: Optional[int] = None
    mime: Optional[str] = None


def folder_key(relative_path: Optional[str]) -> str:
    """Second-to-last path segment, or the loose-images bucket."""
    if not relative_path:
        return LOOSE_IMAGES
    parts = [p for p in relative_path.replace("\\", "/").split("/") if p]
    if len(parts) > 1:
        return parts[-2]
    return LOOSE_IMAGES


def is_image_source(source: IngestSource, accept_gif: bool = False) -> bool:
    mime = (source.mime or "").lower()
    ext = os.path.splitext(source.name)[1].lower()
    if mime == "image/gif" or ext in GIF_EXTENSIONS:
        return accept_gif
    return mime in IMAGE_MIME_TYPES or ext in PDF_EXTENSIONS


def ingest(
    sources: Iterable[IngestSource],
    accept_gif: bool = False,
    max_image_bytes: int = MAX_IMAGE_BYTES,
) -> List[Chapter]:
    """
    Turn sources into chapters: one per folder key, images and chapters both
    in natural order. No image bytes are read here.
    """
    folders: Dict[str, List[ChapterImage]] = {}
    for source in sources:
        if not is_image_source(source, accept_gif):
            log_verbose(f"  Skipping non-image input: {source.name}")
            continue
        if source.size and max_image_bytes and source.size > max_image_bytes:
            log_warning(
                f"{source.name} is {source.size / (1024 * 1024):.1f} MiB "
                f"(advisory limit {max_image_bytes // (1024 * 1024)} MiB)"
            )
        key = folder_key(source.relative_path)
        folders.setdefault(key, []).append(
            ChapterImage(name=source.name, source=source.handle, size=source.size)
        )

    chapters = [
        Chapter(
            name=key,
            images=natural_sorted(images, key=lambda img: img.name),
            natural_order=True,
        )
        for key, images in folders.items()
    ]
    chapters.sort(key=lambda c: natural_key(c.name))
    for chapter in chapters:
        log_debug(f"  Ingested '{chapter.name}' ({len(chapter.images)} images)")
    return chapters


def sources_from_directory(root) -> List[IngestSource]:
    """
    Walk ``root`` and describe every file in it. Relative paths start with the
    root folder's own name, so files directly inside ``root`` group under it.
    """
    root = Path(root)
    root_name = root.resolve().name
    sources: List[IngestSource] = []
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames.sort()
        for filename in sorted(filenames):
            if filename.startswith("."):
                continue
            path = Path(dirpath) / filename
            rel = Path(root_name) / path.relative_to(root)
            try:
                size = path.stat().st_size
            except OSError:
                size = None
            sources.append(
                IngestSource(
                    name=filename,
                    handle=SourceHandle.from_path(path),
                    relative_path=rel.as_posix(),
                    size=size,
                )
            )
    return sources


__all__ = [
    "IngestSource",
    "LOOSE_IMAGES",
    "MAX_IMAGE_BYTES",
    "folder_key",
    "ingest",
    "is_image_source",
    "sources_from_directory",
]
