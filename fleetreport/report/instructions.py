from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from ..types import CanonicalImage


# Coordinates are PDF points with the origin at the top-left corner of the
# page and y growing downward. Text y is the baseline.

Color = tuple[float, float, float]

BLACK: Color = (0.0, 0.0, 0.0)


@dataclass(frozen=True)
class NewPage:
    tag: str = 'page-break'


@dataclass(frozen=True)
class DrawText:
    x: float
    y: float
    text: str
    font_name: str
    font_size: float
    color: Color = BLACK
    align: str = 'left'
    tag: str = ''
    record_id: str | None = None


@dataclass(frozen=True)
class DrawImage:
    x: float
    y: float
    width: float
    height: float
    image: CanonicalImage
    tag: str = 'photo'
    record_id: str | None = None


@dataclass(frozen=True)
class DrawLine:
    x1: float
    y1: float
    x2: float
    y2: float
    line_width: float = 0.5
    color: Color = BLACK
    tag: str = ''
    record_id: str | None = None


@dataclass(frozen=True)
class FillRect:
    x: float
    y: float
    width: float
    height: float
    color: Color
    tag: str = ''
    record_id: str | None = None


@dataclass(frozen=True)
class FillCircle:
    cx: float
    cy: float
    radius: float
    color: Color
    tag: str = ''
    record_id: str | None = None


DrawInstruction = Union[NewPage, DrawText, DrawImage, DrawLine, FillRect, FillCircle]


def split_pages(instructions: list[DrawInstruction]) -> list[list[DrawInstruction]]:
    """Group a flat instruction stream into pages at each ``NewPage``."""
    pages: list[list[DrawInstruction]] = [[]]
    for instruction in instructions:
        if isinstance(instruction, NewPage):
            pages.append([])
            continue
        pages[-1].append(instruction)
    return pages
