from __future__ import annotations

import threading
from typing import Callable, List, Optional, Sequence

from .errors import Cancelled, EmptyInput
from .model import ChapterImage
from .resolver import ImageResolver, ResolvedImage

ProgressCallback = Callable[[int], None]

EMPTY, POPULATING, FINALIZED = "empty", "populating", "finalized"


class CancelToken:
    """Cooperative cancellation flag checked at every per-image step."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise Cancelled()


def progress_percent(done: int, total: int) -> int:
    return (done * 100) // total


class BaseAssembler:
    """
    Single-use builder turning an ordered image sequence into one artifact.

    Subclasses implement ``_start``, ``_add`` and ``_finish``; the base class
    owns ordering, progress reporting, cancellation and the state machine
    ``empty -> populating -> finalized``.
    """

    name: str = "base"
    extension: str = ""
    accepts_gif: bool = False

    def __init__(self, resolver: ImageResolver, cancel_token: Optional[CancelToken] = None):
        self.resolver = resolver
        self.cancel_token = cancel_token
        self.state = EMPTY
        self.skipped: List[int] = []
        self._used = False

    def assemble(
        self,
        images: Sequence[ChapterImage],
        title: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> bytes:
        if self._used:
            raise RuntimeError(f"{type(self).__name__} is single-use")
        self._used = True
        if not images:
            raise EmptyInput()

        total = len(images)
        for index, image in enumerate(images):
            if self.cancel_token is not None:
                self.cancel_token.raise_if_cancelled()
            resolved = self._resolve(index, image)
            if resolved is None:
                self.skipped.append(index)
            else:
                if self.state == EMPTY:
                    self._start(title, resolved)
                    self.state = POPULATING
                self._add(index, image, resolved)
            if on_progress is not None:
                on_progress(progress_percent(index + 1, total))

        if self.state == EMPTY:
            raise EmptyInput(f"None of the {total} images could be resolved")
        output = self._finish(title)
        self.state = FINALIZED
        return output

    # --- Hooks -------------------------------------------------------------
    def _resolve(self, index: int, image: ChapterImage) -> Optional[ResolvedImage]:
        """Return the resolved image, or None to skip it."""
        raise NotImplementedError

    def _start(self, title: str, first: ResolvedImage) -> None:
        return None

    def _add(self, index: int, image: ChapterImage, resolved: ResolvedImage) -> None:
        raise NotImplementedError

    def _finish(self, title: str) -> bytes:
        raise NotImplementedError


__all__ = [
    "BaseAssembler",
    "CancelToken",
    "EMPTY",
    "FINALIZED",
    "POPULATING",
    "ProgressCallback",
    "progress_percent",
]
