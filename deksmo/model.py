"""In-memory chapter model: images, chapters and the chapter store."""

from __future__ import annotations

import dataclasses
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional

from .errors import ChapterBusy, ChapterNotFound, ImageNotFound
from .natural import natural_key, natural_sorted


def new_id() -> str:
    return uuid.uuid4().hex[:12]


@dataclass
class SourceHandle:
    """
    Where an image's encoded bytes come from.

    ``kind`` is one of ``"bytes"`` (embedded data with a declared MIME type),
    ``"url"`` (http(s) or data: URL) or ``"file"`` (local path read lazily).
    """

    kind: str
    data: Optional[bytes] = None
    mime: Optional[str] = None
    href: Optional[str] = None
    path: Optional[Path] = None
    released: bool = False

    @classmethod
    def from_bytes(cls, data: bytes, mime: Optional[str] = None) -> "SourceHandle":
        return cls(kind="bytes", data=data, mime=mime)

    @classmethod
    def from_url(cls, href: str) -> "SourceHandle":
        return cls(kind="url", href=href)

    @classmethod
    def from_path(cls, path) -> "SourceHandle":
        return cls(kind="file", path=Path(path))

    def describe(self) -> str:
        if self.kind == "url":
            href = self.href or ""
            return href if not href.startswith("data:") else "data: URL"
        if self.kind == "file":
            return str(self.path)
        return f"{len(self.data or b'')} embedded bytes"

    def release(self) -> None:
        self.data = None
        self.released = True


@dataclass(eq=False)
class ChapterImage:
    name: str
    source: SourceHandle
    size: Optional[int] = None
    id: str = field(default_factory=new_id)
    pixel_width: Optional[int] = None
    pixel_height: Optional[int] = None

    def set_dimensions(self, width: int, height: int) -> None:
        """Record the resolved pixel size; once set it never changes."""
        if self.pixel_width is not None and (self.pixel_width, self.pixel_height) != (width, height):
            raise ValueError(
                f"{self.name}: dimensions already set to "
                f"{self.pixel_width}x{self.pixel_height}, got {width}x{height}"
            )
        self.pixel_width = width
        self.pixel_height = height

    def release(self) -> None:
        self.source.release()


@dataclass(eq=False)
class Chapter:
    name: str
    images: List[ChapterImage] = field(default_factory=list)
    id: str = field(default_factory=new_id)
    is_processing: bool = False
    # True while the chapter is exactly as ingested (never user-reordered).
    natural_order: bool = False

    def export_images(self) -> List[ChapterImage]:
        """The image sequence an export consumes, read at call time."""
        if self.natural_order:
            return natural_sorted(self.images, key=lambda img: img.name)
        return list(self.images)

    def release(self) -> None:
        for image in self.images:
            image.release()


StoreListener = Callable[[str, Optional[str]], None]


class ChapterStore:
    """
    Ordered collection of chapters with the user-facing mutations.

    Mutations are synchronous; callers running in more than one thread must
    serialize access themselves. A chapter whose ``is_processing`` flag is set
    rejects mutations with ``ChapterBusy``.
    """

    def __init__(self) -> None:
        self._chapters: List[Chapter] = []
        self._user_ordered = False
        self._listeners: List[StoreListener] = []

    # --- Observation -------------------------------------------------------
    def subscribe(self, listener: StoreListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, event: str, chapter_id: Optional[str] = None) -> None:
        for listener in list(self._listeners):
            listener(event, chapter_id)

    # --- Lookup helpers ----------------------------------------------------
    def _find(self, chapter_id: str) -> Chapter:
        for chapter in self._chapters:
            if chapter.id == chapter_id:
                return chapter
        raise ChapterNotFound(chapter_id)

    def _editable(self, chapter_id: str) -> Chapter:
        chapter = self._find(chapter_id)
        if chapter.is_processing:
            raise ChapterBusy(f"Chapter '{chapter.name}' is being exported")
        return chapter

    @staticmethod
    def _image_index(chapter: Chapter, image_id: str) -> int:
        for idx, image in enumerate(chapter.images):
            if image.id == image_id:
                return idx
        raise ImageNotFound(image_id)

    # --- Chapters ----------------------------------------------------------
    def add_chapters(self, chapters: Iterable[Chapter]) -> None:
        combined = self._chapters + list(chapters)
        if not self._user_ordered:
            combined.sort(key=lambda c: natural_key(c.name))
        self._chapters = combined
        self._notify("add")

    def remove_chapter(self, chapter_id: str) -> Chapter:
        chapter = self._editable(chapter_id)
        self._chapters.remove(chapter)
        chapter.release()
        self._notify("remove", chapter_id)
        return chapter

    def clear(self) -> None:
        busy = [c.name for c in self._chapters if c.is_processing]
        if busy:
            raise ChapterBusy(f"Chapter '{busy[0]}' is being exported")
        for chapter in self._chapters:
            chapter.release()
        self._chapters = []
        self._user_ordered = False
        self._notify("clear")

    def rename_chapter(self, chapter_id: str, new_name: str) -> str:
        """Rename a chapter; blank names are ignored and the old name returned."""
        chapter = self._editable(chapter_id)
        trimmed = (new_name or "").strip()
        if not trimmed:
            return chapter.name
        chapter.name = trimmed
        self._notify("rename", chapter_id)
        return chapter.name

    def reorder_chapter(self, chapter_id: str, to_index: int) -> None:
        chapter = self._find(chapter_id)
        self._chapters.remove(chapter)
        to_index = max(0, min(to_index, len(self._chapters)))
        self._chapters.insert(to_index, chapter)
        self._user_ordered = True
        self._notify("reorder", chapter_id)

    # --- Images ------------------------------------------------------------
    def remove_image(self, chapter_id: str, image_id: str) -> ChapterImage:
        chapter = self._editable(chapter_id)
        image = chapter.images.pop(self._image_index(chapter, image_id))
        image.release()
        self._notify("remove_image", chapter_id)
        return image

    def reorder_image(self, chapter_id: str, image_id: str, to_index: int) -> None:
        chapter = self._editable(chapter_id)
        image = chapter.images.pop(self._image_index(chapter, image_id))
        to_index = max(0, min(to_index, len(chapter.images)))
        chapter.images.insert(to_index, image)
        chapter.natural_order = False
        self._notify("reorder_image", chapter_id)

    def insert_images(
        self,
        chapter_id: str,
        images: Iterable[ChapterImage],
        at_index: Optional[int] = None,
    ) -> List[ChapterImage]:
        chapter = self._editable(chapter_id)
        known = {image.id for image in chapter.images}
        added: List[ChapterImage] = []
        for image in images:
            # Ids must stay unique inside a chapter.
            while image.id in known:
                image.id = new_id()
            known.add(image.id)
            added.append(image)
        if at_index is None:
            chapter.images.extend(added)
        else:
            at_index = max(0, min(at_index, len(chapter.images)))
            chapter.images[at_index:at_index] = added
            chapter.natural_order = False
        self._notify("insert_images", chapter_id)
        return added

    # --- Read access -------------------------------------------------------
    def get_chapter(self, chapter_id: str) -> Chapter:
        chapter = self._find(chapter_id)
        return dataclasses.replace(chapter, images=list(chapter.images))

    def list_chapters(self) -> List[Chapter]:
        return [dataclasses.replace(c, images=list(c.images)) for c in self._chapters]

    def live_chapters(self) -> List[Chapter]:
        """References to the stored chapters, for the batch orchestrator."""
        return list(self._chapters)

    def __len__(self) -> int:
        return len(self._chapters)

    def stats(self) -> Dict[str, int]:
        return {
            "chapters": len(self._chapters),
            "images": sum(len(c.images) for c in self._chapters),
        }


__all__ = [
    "Chapter",
    "ChapterImage",
    "ChapterStore",
    "SourceHandle",
    "new_id",
]
