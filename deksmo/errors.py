"""Exception types raised by the chapter model and the export pipeline."""

from __future__ import annotations

from typing import Optional


class ExportError(Exception):
    """Base class for everything that can fail a chapter export."""

    kind = "ExportError"

    def __init__(self, message: str = "", cause: Optional[BaseException] = None):
        super().__init__(message or self.kind)
        self.cause = cause


class EmptyInput(ExportError):
    kind = "EmptyInput"

    def __init__(self, message: str = "No images to export"):
        super().__init__(message)


class ResolveFailed(ExportError):
    """The image could not be fetched by any path."""

    kind = "ResolveFailed"

    def __init__(
        self,
        message: str,
        cause: Optional[BaseException] = None,
        index: Optional[int] = None,
    ):
        super().__init__(message, cause)
        self.index = index


class DecodeFailed(ExportError):
    """Bytes were obtained but their pixel dimensions could not be read."""

    kind = "DecodeFailed"


class _IndexedError(ExportError):
    def __init__(self, index: int, message: str = "", cause: Optional[BaseException] = None):
        super().__init__(message or f"{self.kind} at image {index + 1}", cause)
        self.index = index


class DimensionsMissing(_IndexedError):
    kind = "DimensionsMissing"


class InvalidDimensions(_IndexedError):
    kind = "InvalidDimensions"


class WriteFailed(ExportError):
    kind = "WriteFailed"


class Cancelled(ExportError):
    kind = "Cancelled"

    def __init__(self, message: str = "Export cancelled"):
        super().__init__(message)


class ChapterNotFound(KeyError):
    pass


class ImageNotFound(KeyError):
    pass


class ChapterBusy(RuntimeError):
    """Raised when a chapter is mutated (or claimed) while it is being exported."""


class ConfigError(ValueError):
    pass


__all__ = [
    "Cancelled",
    "ChapterBusy",
    "ChapterNotFound",
    "ConfigError",
    "DecodeFailed",
    "DimensionsMissing",
    "EmptyInput",
    "ExportError",
    "ImageNotFound",
    "InvalidDimensions",
    "ResolveFailed",
    "WriteFailed",
]
