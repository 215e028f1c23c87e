"""Progress events and the synchronous bus that fans them out."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

STARTING = "starting"
ASSEMBLING = "assembling"
ERROR = "error"
COMPLETE = "complete"


@dataclass
class ProgressEvent:
    phase: str
    chapter_id: Optional[str] = None
    chapter_name: Optional[str] = None
    index: Optional[int] = None
    total: Optional[int] = None
    percent: Optional[int] = None
    error: Optional[str] = None
    timestamp: Optional[float] = None

    def to_message(self) -> Dict[str, Any]:
        """The wire shape: only the fields present for this phase."""
        fields = {
            "phase": self.phase,
            "chapterId": self.chapter_id,
            "chapterName": self.chapter_name,
            "i": self.index,
            "N": self.total,
            "percent": self.percent,
            "error": self.error,
        }
        return {k: v for k, v in fields.items() if v is not None}


Subscriber = Callable[[ProgressEvent], None]


class ProgressBus:
    """No buffering: subscribers run synchronously inside ``emit``."""

    def __init__(self) -> None:
        self._subscribers: List[Subscriber] = []

    def subscribe(self, subscriber: Subscriber) -> Callable[[], None]:
        self._subscribers.append(subscriber)

        def unsubscribe() -> None:
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

        return unsubscribe

    def emit(self, event: ProgressEvent) -> None:
        for subscriber in list(self._subscribers):
            subscriber(event)

    def chapter_reporter(
        self,
        chapter_id: str,
        chapter_name: str,
        clock: Optional[Callable[[], float]] = None,
    ) -> Callable[[int], None]:
        """
        Adapt an assembler's ``on_progress(percent)`` into ``assembling``
        events for one chapter. Percentages are clamped to 0..100 and never
        go backwards.
        """
        last = -1

        def report(percent: int) -> None:
            nonlocal last
            percent = max(0, min(100, int(percent)))
            if percent < last:
                return
            last = percent
            self.emit(
                ProgressEvent(
                    ASSEMBLING,
                    chapter_id=chapter_id,
                    chapter_name=chapter_name,
                    percent=percent,
                    timestamp=clock() if clock else None,
                )
            )

        return report


__all__ = [
    "ASSEMBLING",
    "COMPLETE",
    "ERROR",
    "ProgressBus",
    "ProgressEvent",
    "STARTING",
]
