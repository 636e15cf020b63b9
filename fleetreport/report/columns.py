from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Iterator

from reportlab.lib.units import mm

from ..errors import ValidationError


@dataclass(frozen=True)
class Column:
    key: str
    x_offset: float
    width: float
    title: str

    @property
    def right(self) -> float:
        return self.x_offset + self.width


class ColumnSpec:
    """Ordered, non-overlapping table columns shared by the header and every row."""

    def __init__(self, columns: Iterable[Column]):
        self._columns: tuple[Column, ...] = tuple(columns)
        self._by_key = {column.key: column for column in self._columns}

    def __iter__(self) -> Iterator[Column]:
        return iter(self._columns)

    def __len__(self) -> int:
        return len(self._columns)

    def get(self, key: str) -> Column | None:
        return self._by_key.get(key)

    @property
    def left(self) -> float:
        return self._columns[0].x_offset if self._columns else 0.0

    @property
    def right(self) -> float:
        return self._columns[-1].right if self._columns else 0.0

    @property
    def table_width(self) -> float:
        return self.right - self.left

    def validate(self, page_width: float) -> None:
        if not self._columns:
            raise ValidationError('column spec is empty')
        if len(self._by_key) != len(self._columns):
            raise ValidationError('column keys must be unique')
        previous: Column | None = None
        for column in self._columns:
            if column.width <= 0:
                raise ValidationError(f'column {column.key!r} has non-positive width')
            if column.x_offset < 0:
                raise ValidationError(f'column {column.key!r} starts left of the page')
            if previous is not None and column.x_offset < previous.right:
                raise ValidationError(
                    f'column {column.key!r} overlaps {previous.key!r} '
                    f'({column.x_offset:.2f} < {previous.right:.2f})'
                )
            previous = column
        if self.right > page_width:
            raise ValidationError(
                f'table ends at {self.right:.2f}pt, beyond page width {page_width:.2f}pt'
            )

    @classmethod
    def from_widths(cls, left: float, columns: Iterable[tuple[str, float, str]]) -> ColumnSpec:
        """Lay ``(key, width, title)`` triples side by side starting at ``left``."""
        built: list[Column] = []
        cursor = left
        for key, width, title in columns:
            built.append(Column(key=key, x_offset=cursor, width=width, title=title))
            cursor += width
        return cls(built)


def default_columns() -> ColumnSpec:
    return ColumnSpec.from_widths(
        10 * mm,
        [
            ('index', 8 * mm, '#'),
            ('photo', 15 * mm, 'Photo'),
            ('driver', 40 * mm, 'Driver'),
            ('plate', 23 * mm, 'Plate'),
            ('model', 32 * mm, 'Model'),
            ('value', 24 * mm, 'Value'),
            ('status', 20 * mm, 'Status'),
            ('signature', 28 * mm, 'Signature'),
        ],
    )
