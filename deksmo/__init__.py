"""Export folders of page images as one PDF (or ZIP) per chapter."""

from __future__ import annotations

from typing import Iterable, Optional, Type

from .base import BaseAssembler
from .archive import ZipAssembler
from .pdf import PdfAssembler

__version__ = "1.0.0"

_REGISTERED_ASSEMBLERS: Iterable[Type[BaseAssembler]] = (
    PdfAssembler,
    ZipAssembler,
)


def get_assembler_by_name(name: str) -> Optional[Type[BaseAssembler]]:
    lowered = (name or "").lower()
    for assembler in _REGISTERED_ASSEMBLERS:
        if assembler.name == lowered:
            return assembler
    return None


def available_formats() -> tuple:
    return tuple(assembler.name for assembler in _REGISTERED_ASSEMBLERS)


__all__ = [
    "BaseAssembler",
    "PdfAssembler",
    "ZipAssembler",
    "available_formats",
    "get_assembler_by_name",
]
