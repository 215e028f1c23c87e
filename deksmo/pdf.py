"""One PDF page per image, each page exactly the image's pixel size."""

from __future__ import annotations

import io
from typing import List, Optional, Tuple

import img2pdf
from pypdf import PdfReader, PdfWriter

from .base import BaseAssembler
from .errors import DecodeFailed, DimensionsMissing, ExportError, InvalidDimensions, ResolveFailed
from .log import log_debug
from .model import ChapterImage
from .resolver import ResolvedImage, ensure_jpeg

# At 72 dpi one pixel is one PDF unit, so the media box is in pixels.
_PIXEL_LAYOUT = img2pdf.get_fixed_dpi_layout_fun((72, 72))


def page_orientation(width: int, height: int) -> str:
    return "landscape" if width > height else "portrait"


class PdfAssembler(BaseAssembler):
    name = "pdf"
    extension = "pdf"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._writer: Optional[PdfWriter] = None
        self.pages: List[Tuple[int, int, str]] = []

    def _resolve(self, index: int, image: ChapterImage) -> ResolvedImage:
        # Page numbering must match the input, so nothing is skipped here.
        try:
            return self.resolver.resolve(image.source)
        except ResolveFailed as e:
            e.index = index
            raise
        except DecodeFailed as e:
            raise DimensionsMissing(index, f"Image {index + 1} ({image.name}): {e}", e) from e

    def _start(self, title: str, first: ResolvedImage) -> None:
        self._writer = PdfWriter()

    def _add(self, index: int, image: ChapterImage, resolved: ResolvedImage) -> None:
        width, height = resolved.width, resolved.height
        if width is None or height is None:
            raise DimensionsMissing(index)
        if width <= 0 or height <= 0:
            raise InvalidDimensions(index, f"Image {index + 1} ({image.name}) is {width}x{height}")

        try:
            jpeg = ensure_jpeg(resolved)
        except DecodeFailed as e:
            raise DimensionsMissing(index, f"Image {index + 1} ({image.name}): {e}", e) from e
        try:
            page_pdf = img2pdf.convert(
                jpeg.data,
                layout_fun=_PIXEL_LAYOUT,
                rotation=img2pdf.Rotation.none,
            )
        except Exception as e:
            raise ExportError(f"Could not embed image {index + 1} ({image.name}): {e}", e) from e

        page = self._writer.add_page(PdfReader(io.BytesIO(page_pdf)).pages[0])
        page.compress_content_streams()
        image.set_dimensions(width, height)

        orientation = page_orientation(width, height)
        self.pages.append((width, height, orientation))
        log_debug(f"    Page {index + 1}: {width}x{height} {orientation}")

    def _finish(self, title: str) -> bytes:
        self._writer.add_metadata({"/Title": title})
        output = io.BytesIO()
        self._writer.write(output)
        self._writer = None
        return output.getvalue()


__all__ = ["PdfAssembler", "page_orientation"]
