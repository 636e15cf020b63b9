from __future__ import annotations

import io
import logging
from typing import Callable, Iterable, Protocol

from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas as pdf_canvas

from ..errors import ReportCancelled, WriterFailure
from .instructions import (
    DrawImage,
    DrawInstruction,
    DrawLine,
    DrawText,
    FillCircle,
    FillRect,
    NewPage,
)
from .layout import PAGE_HEIGHT, PAGE_WIDTH


logger = logging.getLogger(__name__)


class DocumentWriter(Protocol):
    def write(
        self,
        instructions: Iterable[DrawInstruction],
        *,
        should_cancel: Callable[[], bool] | None = None,
    ) -> bytes:
        ...


def _safe_canvas_font(canvas, font_name: str, size: float) -> None:
    for candidate in (str(font_name or '').strip(), 'Helvetica'):
        if not candidate:
            continue
        try:
            canvas.setFont(candidate, size)
            return
        except Exception:
            logger.warning('PDF font %s is not available; trying fallback', candidate)
            continue


class ReportLabDocumentWriter:
    """Replays a draw instruction stream onto a reportlab canvas.

    Instructions use a top-left origin; reportlab's origin is bottom-left, so
    every y is flipped against the page height. A row photo that cannot be
    decoded is skipped and logged while the rest of the document renders.
    """

    def __init__(
        self,
        *,
        page_width: float = PAGE_WIDTH,
        page_height: float = PAGE_HEIGHT,
        title: str = 'Vehicle Report',
        author: str | None = None,
        producer: str = 'fleetreport',
    ):
        self.page_width = page_width
        self.page_height = page_height
        self.title = title
        self.author = author
        self.producer = producer
        self.skipped_images: list[str | None] = []

    def write(
        self,
        instructions: Iterable[DrawInstruction],
        *,
        should_cancel: Callable[[], bool] | None = None,
    ) -> bytes:
        buffer = io.BytesIO()
        try:
            canvas = pdf_canvas.Canvas(buffer, pagesize=(self.page_width, self.page_height))
        except Exception as exc:
            raise WriterFailure(f'cannot open PDF document: {exc}') from exc
        canvas.setTitle(self.title)
        if self.author:
            canvas.setAuthor(self.author)
        canvas.setProducer(self.producer)

        self.skipped_images = []
        for instruction in instructions:
            if should_cancel is not None and should_cancel():
                raise ReportCancelled('report run cancelled while writing')
            if isinstance(instruction, NewPage):
                canvas.showPage()
            elif isinstance(instruction, DrawText):
                self._draw_text(canvas, instruction)
            elif isinstance(instruction, DrawImage):
                try:
                    self._draw_image(canvas, instruction)
                except WriterFailure as exc:
                    logger.warning('Skipping photo for record %s: %s', instruction.record_id, exc)
                    self.skipped_images.append(instruction.record_id)
            elif isinstance(instruction, DrawLine):
                self._draw_line(canvas, instruction)
            elif isinstance(instruction, FillRect):
                self._fill_rect(canvas, instruction)
            elif isinstance(instruction, FillCircle):
                self._fill_circle(canvas, instruction)
            else:
                raise WriterFailure(f'unsupported instruction {type(instruction).__name__}')

        canvas.showPage()
        try:
            canvas.save()
        except Exception as exc:
            raise WriterFailure(f'cannot finalize PDF document: {exc}') from exc
        return buffer.getvalue()

    def _flip(self, y: float) -> float:
        return self.page_height - y

    def _draw_text(self, canvas, item: DrawText) -> None:
        canvas.saveState()
        canvas.setFillColorRGB(*item.color)
        _safe_canvas_font(canvas, item.font_name, item.font_size)
        if item.align == 'right':
            canvas.drawRightString(item.x, self._flip(item.y), item.text)
        elif item.align == 'center':
            canvas.drawCentredString(item.x, self._flip(item.y), item.text)
        else:
            canvas.drawString(item.x, self._flip(item.y), item.text)
        canvas.restoreState()

    def _draw_image(self, canvas, item: DrawImage) -> None:
        try:
            reader = ImageReader(io.BytesIO(item.image.encoded_bytes))
            canvas.drawImage(
                reader,
                item.x,
                self._flip(item.y + item.height),
                width=item.width,
                height=item.height,
                preserveAspectRatio=True,
                anchor='c',
                mask='auto',
            )
        except Exception as exc:
            raise WriterFailure(f'cannot place image: {exc}') from exc

    def _draw_line(self, canvas, item: DrawLine) -> None:
        canvas.saveState()
        canvas.setStrokeColorRGB(*item.color)
        canvas.setLineWidth(item.line_width)
        canvas.line(item.x1, self._flip(item.y1), item.x2, self._flip(item.y2))
        canvas.restoreState()

    def _fill_rect(self, canvas, item: FillRect) -> None:
        canvas.saveState()
        canvas.setFillColorRGB(*item.color)
        canvas.rect(item.x, self._flip(item.y + item.height), item.width, item.height, stroke=0, fill=1)
        canvas.restoreState()

    def _fill_circle(self, canvas, item: FillCircle) -> None:
        canvas.saveState()
        canvas.setFillColorRGB(*item.color)
        canvas.circle(item.cx, self._flip(item.cy), item.radius, stroke=0, fill=1)
        canvas.restoreState()
