from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Callable, Sequence

from reportlab.lib.pagesizes import A4
from reportlab.lib.units import mm
from reportlab.pdfbase import pdfmetrics

from ..errors import ValidationError
from ..types import PaymentStatus, VehicleRecord
from .columns import Column, ColumnSpec, default_columns
from .instructions import (
    Color,
    DrawImage,
    DrawInstruction,
    DrawLine,
    DrawText,
    FillCircle,
    FillRect,
    NewPage,
)


logger = logging.getLogger(__name__)

PAGE_WIDTH, PAGE_HEIGHT = A4

HEADER_FILL: Color = (240 / 255, 240 / 255, 240 / 255)
ROW_RULE_COLOR: Color = (200 / 255, 200 / 255, 200 / 255)
MUTED_TEXT_COLOR: Color = (100 / 255, 100 / 255, 100 / 255)
PLACEHOLDER_COLOR: Color = (150 / 255, 150 / 255, 150 / 255)
PAID_COLOR: Color = (22 / 255, 163 / 255, 74 / 255)
PENDING_COLOR: Color = (245 / 255, 158 / 255, 11 / 255)

_STATUS_STYLES: dict[PaymentStatus, tuple[str, Color]] = {
    PaymentStatus.paid: ('Paid', PAID_COLOR),
    PaymentStatus.pending: ('Pending', PENDING_COLOR),
}

# Baseline offset that visually centres a line of text on a given y.
_BASELINE_SHIFT = 0.35

MeasureText = Callable[[str, str, float], float]


def measure_text_width(text: str, font_name: str, font_size: float) -> float:
    if not text:
        return 0.0
    try:
        return float(pdfmetrics.stringWidth(text, font_name, font_size))
    except Exception:
        logger.warning('Unknown PDF font %s; estimating text width', font_name)
        return float(len(text)) * font_size * 0.52


def clip_text(text: str, max_width: float, font_name: str, font_size: float, measure: MeasureText) -> str:
    """Longest prefix of ``text`` that fits in ``max_width`` points."""
    text = text.strip()
    if measure(text, font_name, font_size) <= max_width:
        return text
    low, high = 0, len(text)
    while low < high:
        middle = (low + high + 1) // 2
        if measure(text[:middle], font_name, font_size) <= max_width:
            low = middle
        else:
            high = middle - 1
    return text[:low].rstrip()


def _split_word_by_width(
    word: str,
    max_width: float,
    font_name: str,
    font_size: float,
    measure: MeasureText,
) -> list[str]:
    chunks: list[str] = []
    current = ''
    for char in word:
        candidate = f'{current}{char}'
        if measure(candidate, font_name, font_size) <= max_width or not current:
            current = candidate
            continue
        chunks.append(current)
        current = char
    if current:
        chunks.append(current)
    return chunks


def wrap_text(
    text: str,
    max_width: float,
    font_name: str,
    font_size: float,
    measure: MeasureText,
    *,
    max_lines: int,
) -> list[str]:
    """Greedy word wrap; overflow past ``max_lines`` is clipped on the last line."""
    lines: list[str] = []
    current = ''
    for word in text.split():
        candidate = f'{current} {word}' if current else word
        if measure(candidate, font_name, font_size) <= max_width:
            current = candidate
            continue
        if current:
            lines.append(current)
        pieces = _split_word_by_width(word, max_width, font_name, font_size, measure)
        lines.extend(pieces[:-1])
        current = pieces[-1] if pieces else ''
    if current:
        lines.append(current)

    if len(lines) <= max_lines:
        return lines
    kept = lines[: max_lines - 1]
    tail = ' '.join(lines[max_lines - 1:])
    kept.append(clip_text(tail, max_width, font_name, font_size, measure))
    return kept


@dataclass(frozen=True)
class RenderOptions:
    page_width: float = PAGE_WIDTH
    page_height: float = PAGE_HEIGHT
    row_height: float = 18 * mm
    top_margin: float = 20 * mm
    bottom_margin: float = 20 * mm
    header_band_height: float = 7 * mm
    photo_size: float = 12 * mm
    cell_padding: float = 2 * mm
    font_name: str = 'Helvetica'
    bold_font_name: str = 'Helvetica-Bold'
    font_size: float = 9
    small_font_size: float = 7
    title: str | None = None
    title_font_size: float = 18
    generated_at: datetime | None = None
    operator_name: str | None = None
    missing_photo_label: str = 'No photo'
    continuation_label: str = 'Continued...'
    footer_offset: float = 10 * mm
    max_model_lines: int = 2


class LayoutState(str, Enum):
    awaiting_header = 'awaiting_header'
    drawing_rows = 'drawing_rows'
    page_break = 'page_break'
    done = 'done'


@dataclass(frozen=True)
class PageCursor:
    page_index: int
    vertical_offset: float

    def advance(self, delta: float) -> PageCursor:
        return replace(self, vertical_offset=self.vertical_offset + delta)


class ReportLayoutEngine:
    """Paginates vehicle records into a forward-only draw instruction stream."""

    def __init__(
        self,
        columns: ColumnSpec | None = None,
        options: RenderOptions | None = None,
        *,
        measure: MeasureText = measure_text_width,
    ):
        self.columns = columns if columns is not None else default_columns()
        self.options = options or RenderOptions()
        self._measure = measure
        self.state = LayoutState.awaiting_header

    def validate_geometry(self) -> None:
        opts = self.options
        self.columns.validate(opts.page_width)
        if opts.row_height <= 0:
            raise ValidationError(f'row height must be positive, got {opts.row_height}')
        usable_bottom = opts.page_height - opts.bottom_margin
        if opts.top_margin + opts.header_band_height + opts.row_height > usable_bottom:
            raise ValidationError('page is too short for a header band and one row')
        first_row_bottom = opts.top_margin + self._title_block_height() + opts.header_band_height + opts.row_height
        if first_row_bottom > usable_bottom:
            raise ValidationError('first page is too short for the title block, a header band and one row')
        if opts.footer_offset + opts.small_font_size > opts.bottom_margin:
            raise ValidationError(
                f'footer at {opts.footer_offset} from the page bottom does not fit in a '
                f'{opts.bottom_margin} bottom margin'
            )

    def _title_block_height(self) -> float:
        opts = self.options
        if not opts.title:
            return 0.0
        height = opts.title_font_size
        if opts.generated_at is not None:
            height += opts.font_size + 4
        return height + 4 * mm

    def render(self, records: Sequence[VehicleRecord]) -> list[DrawInstruction]:
        records = list(records)
        if not records:
            raise ValidationError('cannot render a report without records')
        self.validate_geometry()

        opts = self.options
        pages: list[list[DrawInstruction]] = [[]]
        cursor = PageCursor(page_index=0, vertical_offset=opts.top_margin)
        self.state = LayoutState.awaiting_header
        if opts.title:
            cursor = self._emit_title(pages[0], cursor)

        for index, record in enumerate(records):
            if self.state is LayoutState.drawing_rows and self._overflows(cursor):
                self.state = LayoutState.page_break
                pages.append([])
                cursor = PageCursor(page_index=cursor.page_index + 1, vertical_offset=opts.top_margin)
                self._emit_continuation(pages[cursor.page_index])
                self.state = LayoutState.awaiting_header
            if self.state is LayoutState.awaiting_header:
                cursor = self._emit_header(pages[cursor.page_index], cursor)
                self.state = LayoutState.drawing_rows
            cursor = self._emit_row(pages[cursor.page_index], cursor, index, record)

        self.state = LayoutState.done
        self._emit_footers(pages)
        logger.debug('Laid out %d records on %d pages', len(records), len(pages))

        stream: list[DrawInstruction] = list(pages[0])
        for page in pages[1:]:
            stream.append(NewPage())
            stream.extend(page)
        return stream

    def _overflows(self, cursor: PageCursor) -> bool:
        opts = self.options
        return cursor.vertical_offset + opts.row_height > opts.page_height - opts.bottom_margin

    def _text(self, x: float, y: float, text: str, **kwargs) -> DrawText:
        kwargs.setdefault('font_name', self.options.font_name)
        kwargs.setdefault('font_size', self.options.font_size)
        return DrawText(x=x, y=y, text=text, **kwargs)

    def _emit_title(self, page: list[DrawInstruction], cursor: PageCursor) -> PageCursor:
        opts = self.options
        left = self.columns.left
        title_y = cursor.vertical_offset + opts.title_font_size
        page.append(
            self._text(
                left,
                title_y,
                opts.title or '',
                font_name=opts.bold_font_name,
                font_size=opts.title_font_size,
                tag='title',
            )
        )
        if opts.generated_at is not None:
            stamp = opts.generated_at.strftime('%d/%m/%Y %H:%M:%S')
            page.append(
                self._text(
                    left,
                    title_y + opts.font_size + 4,
                    f'Generated at: {stamp}',
                    color=MUTED_TEXT_COLOR,
                    tag='generated-at',
                )
            )
        return cursor.advance(self._title_block_height())

    def _emit_continuation(self, page: list[DrawInstruction]) -> None:
        opts = self.options
        label = opts.continuation_label
        if not label:
            return
        y = max(opts.small_font_size, opts.top_margin - 2 * mm)
        page.append(
            self._text(
                self.columns.left,
                y,
                label,
                font_name=opts.bold_font_name,
                font_size=opts.small_font_size,
                tag='continuation',
            )
        )

    def _emit_header(self, page: list[DrawInstruction], cursor: PageCursor) -> PageCursor:
        opts = self.options
        top = cursor.vertical_offset
        band = opts.header_band_height
        page.append(
            FillRect(
                x=self.columns.left,
                y=top,
                width=self.columns.table_width,
                height=band,
                color=HEADER_FILL,
                tag='header-band',
            )
        )
        baseline = top + band / 2 + opts.font_size * _BASELINE_SHIFT
        for column in self.columns:
            page.append(
                self._text(
                    column.x_offset + opts.cell_padding,
                    baseline,
                    column.title,
                    font_name=opts.bold_font_name,
                    tag='header-title',
                )
            )
        page.append(
            DrawLine(
                x1=self.columns.left,
                y1=top + band,
                x2=self.columns.right,
                y2=top + band,
                line_width=0.5,
                tag='header-rule',
            )
        )
        return cursor.advance(band)

    def _inner_width(self, column: Column) -> float:
        return max(0.0, column.width - 2 * self.options.cell_padding)

    def _clip(self, text: str, column: Column, font_name: str, font_size: float) -> str:
        return clip_text(text, self._inner_width(column), font_name, font_size, self._measure)

    def _emit_row(
        self,
        page: list[DrawInstruction],
        cursor: PageCursor,
        index: int,
        record: VehicleRecord,
    ) -> PageCursor:
        opts = self.options
        rid = record.id
        center = cursor.vertical_offset + opts.row_height / 2
        baseline = center + opts.font_size * _BASELINE_SHIFT
        pad = opts.cell_padding
        font = opts.font_name

        photo_col = self.columns.get('photo')
        if photo_col is not None:
            if record.photo is not None:
                size = min(opts.photo_size, opts.row_height, photo_col.width)
                page.append(
                    DrawImage(
                        x=photo_col.x_offset + (photo_col.width - size) / 2,
                        y=center - size / 2,
                        width=size,
                        height=size,
                        image=record.photo,
                        record_id=rid,
                    )
                )
            elif opts.missing_photo_label:
                page.append(
                    self._text(
                        photo_col.x_offset + pad,
                        center + opts.small_font_size * _BASELINE_SHIFT,
                        self._clip(opts.missing_photo_label, photo_col, font, opts.small_font_size),
                        font_size=opts.small_font_size,
                        color=PLACEHOLDER_COLOR,
                        tag='photo-placeholder',
                        record_id=rid,
                    )
                )

        index_col = self.columns.get('index')
        if index_col is not None:
            page.append(
                self._text(index_col.x_offset + pad, baseline, str(index + 1), tag='index', record_id=rid)
            )

        driver_col = self.columns.get('driver')
        if driver_col is not None:
            x = driver_col.x_offset + pad
            if record.company_name:
                driver_y = center - 1
                page.append(
                    self._text(
                        x, driver_y, self._clip(record.driver_name, driver_col, font, opts.font_size),
                        tag='driver', record_id=rid,
                    )
                )
                page.append(
                    self._text(
                        x,
                        driver_y + opts.small_font_size + 2,
                        self._clip(record.company_name, driver_col, font, opts.small_font_size),
                        font_size=opts.small_font_size,
                        color=MUTED_TEXT_COLOR,
                        tag='company',
                        record_id=rid,
                    )
                )
            else:
                page.append(
                    self._text(
                        x, baseline, self._clip(record.driver_name, driver_col, font, opts.font_size),
                        tag='driver', record_id=rid,
                    )
                )

        plate_col = self.columns.get('plate')
        if plate_col is not None:
            page.append(
                self._text(
                    plate_col.x_offset + pad, baseline,
                    self._clip(record.license_plate, plate_col, font, opts.font_size),
                    tag='plate', record_id=rid,
                )
            )

        model_col = self.columns.get('model')
        if model_col is not None and record.vehicle_model:
            leading = opts.font_size * 1.2
            room = max(1, int((opts.row_height - 2 * pad) // leading))
            lines = wrap_text(
                record.vehicle_model,
                self._inner_width(model_col),
                font,
                opts.font_size,
                self._measure,
                max_lines=max(1, min(opts.max_model_lines, room)),
            )
            first = baseline - (len(lines) - 1) * leading / 2
            for offset, line in enumerate(lines):
                page.append(
                    self._text(
                        model_col.x_offset + pad, first + offset * leading, line,
                        tag='model', record_id=rid,
                    )
                )

        value_col = self.columns.get('value')
        if value_col is not None:
            page.append(
                self._text(
                    value_col.x_offset + pad, baseline,
                    self._clip(record.declared_value, value_col, font, opts.font_size),
                    tag='value', record_id=rid,
                )
            )

        status_col = self.columns.get('status')
        if status_col is not None:
            label, color = _STATUS_STYLES.get(record.payment_status, _STATUS_STYLES[PaymentStatus.pending])
            radius = opts.font_size * 0.3
            cx = status_col.x_offset + pad + radius
            page.append(FillCircle(cx=cx, cy=center, radius=radius, color=color, tag='status-marker', record_id=rid))
            label_x = cx + radius + 1.5 * mm
            label_width = max(0.0, status_col.right - pad - label_x)
            page.append(
                self._text(
                    label_x, baseline,
                    clip_text(label, label_width, font, opts.font_size, self._measure),
                    tag='status-label', record_id=rid,
                )
            )

        next_cursor = cursor.advance(opts.row_height)
        rule_y = next_cursor.vertical_offset
        page.append(
            DrawLine(
                x1=self.columns.left,
                y1=rule_y,
                x2=self.columns.right,
                y2=rule_y,
                line_width=0.3,
                color=ROW_RULE_COLOR,
                tag='row-rule',
                record_id=rid,
            )
        )

        sign_col = self.columns.get('signature')
        if sign_col is not None:
            slot_y = center + 4 * mm
            page.append(
                DrawLine(
                    x1=sign_col.x_offset + pad,
                    y1=slot_y,
                    x2=sign_col.right - pad,
                    y2=slot_y,
                    line_width=0.2,
                    tag='signature-slot',
                    record_id=rid,
                )
            )
        return next_cursor

    def _emit_footers(self, pages: list[list[DrawInstruction]]) -> None:
        opts = self.options
        total = len(pages)
        operator = (opts.operator_name or '').strip() or 'Unknown operator'
        footer_y = opts.page_height - opts.footer_offset
        for number, page in enumerate(pages, start=1):
            page.append(
                self._text(
                    self.columns.left,
                    footer_y,
                    f'Operator: {operator}',
                    font_size=opts.small_font_size,
                    color=MUTED_TEXT_COLOR,
                    tag='footer-operator',
                )
            )
            page.append(
                self._text(
                    self.columns.right,
                    footer_y,
                    f'page {number} of {total}',
                    font_size=opts.small_font_size,
                    color=MUTED_TEXT_COLOR,
                    align='right',
                    tag='footer-page',
                )
            )


def render(
    records: Sequence[VehicleRecord],
    columns: ColumnSpec | None = None,
    *,
    page_height: float = PAGE_HEIGHT,
    page_width: float = PAGE_WIDTH,
    row_height: float = 18 * mm,
    top_margin: float = 20 * mm,
    bottom_margin: float = 20 * mm,
    **options,
) -> list[DrawInstruction]:
    opts = RenderOptions(
        page_width=page_width,
        page_height=page_height,
        row_height=row_height,
        top_margin=top_margin,
        bottom_margin=bottom_margin,
        **options,
    )
    return ReportLayoutEngine(columns, opts).render(records)
