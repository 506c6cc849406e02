"""
Layout engine module for the collage variant renderer.

This module handles:
- The catalogue of hand-authored square collage arrangements
- Picking the nearest catalogue arrangement for any member count
- Converting grid slots (with fractional rows/cols) into pixel boxes
"""

import math
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from loguru import logger

from collage_render.models import GridKind
from collage_render.errors import UnsupportedGridKindError


CENTER = 'center'


@dataclass(frozen=True)
class Slot:
    """A single grid cell position, optionally spanning several cells."""
    kind: str
    member_index: int  # -1 for the center slot
    row: float
    col: float
    row_span: int = 1
    col_span: int = 1

    @property
    def is_center(self) -> bool:
        return self.kind == CENTER


@dataclass(frozen=True)
class Layout:
    slots: Tuple[Slot, ...]
    columns: int
    rows: int
    catalogue_size: int
    center_index: int  # roster index the variant's center member is rotated into

    @property
    def center_slot(self) -> Slot:
        return next(s for s in self.slots if s.is_center)

    @property
    def border_slots(self) -> List[Slot]:
        return [s for s in self.slots if not s.is_center]


@dataclass(frozen=True)
class Band:
    """A straight run of cells in a catalogue arrangement."""
    kind: str
    count: int
    first_index: int
    row: float
    col: float
    d_row: int = 0
    d_col: int = 0
    row_span: int = 1
    col_span: int = 1


@dataclass(frozen=True)
class CatalogueEntry:
    columns: int
    rows: int
    center_index: int
    bands: Tuple[Band, ...]


def _center(row, col, row_span, col_span) -> Band:
    return Band(CENTER, 1, -1, row, col, row_span=row_span, col_span=col_span)


# Hand-authored "sweet spot" arrangements. Bands are listed in paint order;
# first_index fixes which roster slice each band shows.
CATALOGUE_LAYOUTS: Dict[int, CatalogueEntry] = {
    12: CatalogueEntry(columns=6, rows=6, center_index=10, bands=(
        Band('top', 3, 0, 0, 1.5, d_col=1),
        Band('left', 3, 3, 1.5, 0, d_row=1),
        _center(1, 1, 4, 4),
        Band('right', 3, 6, 1.5, 5, d_row=1),
        Band('bottom', 3, 9, 5, 1.5, d_col=1),
    )),
    18: CatalogueEntry(columns=6, rows=7, center_index=12, bands=(
        Band('top', 4, 0, 0, 1, d_col=1),
        Band('left', 5, 4, 1, 0, d_row=1),
        _center(1, 1, 5, 4),
        Band('right', 5, 9, 1, 5, d_row=1),
        Band('bottom', 4, 14, 6, 1, d_col=1),
    )),
    19: CatalogueEntry(columns=6, rows=7, center_index=9, bands=(
        Band('top', 4, 0, 0, 1, d_col=1),
        Band('left', 5, 4, 1, 0, d_row=1),
        _center(1, 1, 5, 4),
        Band('right', 5, 9, 1, 5, d_row=1),
        Band('bottom', 5, 14, 6, 0.5, d_col=1),
    )),
    20: CatalogueEntry(columns=7, rows=7, center_index=10, bands=(
        Band('top', 5, 0, 0, 1, d_col=1),
        Band('left', 5, 5, 1, 0, d_row=1),
        _center(1, 1, 5, 5),
        Band('right', 5, 10, 1, 6, d_row=1),
        Band('bottom', 5, 15, 6, 1, d_col=1),
    )),
    33: CatalogueEntry(columns=8, rows=8, center_index=21, bands=(
        Band('top', 8, 0, 0, 0, d_col=1),
        Band('left', 4, 8, 1, 0, d_row=1),
        _center(1, 1, 4, 6),
        Band('right', 4, 12, 1, 7, d_row=1),
        Band('bottom', 8, 16, 5, 0, d_col=1),
        Band('bottomExt', 8, 24, 6, 0, d_col=1),
        Band('bottomMostExt', 1, 32, 7, 3.5, d_col=1),
    )),
    45: CatalogueEntry(columns=8, rows=10, center_index=24, bands=(
        Band('topExtMost', 8, 37, 0, 0, d_col=1),
        Band('top', 8, 0, 1, 0, d_col=1),
        Band('left', 5, 8, 2, 0, d_row=1),
        _center(2, 1, 5, 6),
        Band('right', 5, 13, 2, 7, d_row=1),
        Band('bottom', 8, 18, 7, 0, d_col=1),
        Band('bottomExt', 8, 26, 8, 0, d_col=1),
        Band('bottomMostExt', 3, 34, 9, 2.5, d_col=1),
    )),
}


class CellBox:
    """Represents a position and size on the canvas."""

    def __init__(self, x: int, y: int, width: int, height: int, slot: Optional[Slot] = None):
        self.x = x
        self.y = y
        self.width = width
        self.height = height
        self.slot = slot

    @property
    def right(self) -> int:
        return self.x + self.width

    @property
    def bottom(self) -> int:
        return self.y + self.height

    @property
    def size(self) -> Tuple[int, int]:
        return (self.width, self.height)

    def __eq__(self, other) -> bool:
        if not isinstance(other, CellBox):
            return NotImplemented
        return (self.x, self.y, self.width, self.height) == (other.x, other.y, other.width, other.height)

    def __repr__(self) -> str:
        return f"CellBox({self.x}, {self.y}, {self.width}, {self.height})"


def nearest_catalogue_size(member_count: int, catalogue: Dict[int, CatalogueEntry] = None) -> int:
    """
    Nearest catalogue size by absolute difference.

    Ties go to the smaller catalogue size.
    """
    catalogue = catalogue or CATALOGUE_LAYOUTS
    count = max(1, int(member_count))
    return min(sorted(catalogue), key=lambda size: (abs(size - count), size))


def _expand(entry: CatalogueEntry) -> Tuple[Slot, ...]:
    slots = []
    for band in entry.bands:
        for step in range(band.count):
            index = band.first_index + step if band.kind != CENTER else -1
            slots.append(Slot(
                kind=band.kind,
                member_index=index,
                row=band.row + step * band.d_row,
                col=band.col + step * band.d_col,
                row_span=band.row_span,
                col_span=band.col_span,
            ))
    return tuple(slots)


def get_layout(member_count: int, grid_kind: GridKind = GridKind.SQUARE) -> Layout:
    """Catalogue layout for a member count (nearest size when not exact)."""
    if GridKind(grid_kind) != GridKind.SQUARE:
        raise UnsupportedGridKindError(str(grid_kind))

    size = nearest_catalogue_size(member_count)
    entry = CATALOGUE_LAYOUTS[size]
    if size != member_count:
        logger.debug(f"No catalogue layout for {member_count} members, using {size}")

    return Layout(
        slots=_expand(entry),
        columns=entry.columns,
        rows=entry.rows,
        catalogue_size=size,
        center_index=max(0, min(entry.center_index, member_count - 1)),
    )


def calculate_cell_positions(layout: Layout, canvas_width: int, canvas_height: int,
                             gap: int = 4) -> List[CellBox]:
    """
    Pixel boxes for every slot of a layout, in slot order.

    Fractional rows/cols interpolate between grid lines so partial rows can
    be centered.
    """
    cell_w = (canvas_width - (layout.columns + 1) * gap) / layout.columns
    cell_h = (canvas_height - (layout.rows + 1) * gap) / layout.rows

    boxes = []
    for slot in layout.slots:
        x = gap + slot.col * (cell_w + gap)
        y = gap + slot.row * (cell_h + gap)
        w = slot.col_span * cell_w + (slot.col_span - 1) * gap
        h = slot.row_span * cell_h + (slot.row_span - 1) * gap
        boxes.append(CellBox(_round(x), _round(y), _round(w), _round(h), slot))
    return boxes


def sample_cell_size(layout: Layout, canvas_width: int, canvas_height: int, gap: int = 4) -> Tuple[int, int]:
    """Size of a regular (non-center) cell, used to size photo fetches."""
    boxes = calculate_cell_positions(layout, canvas_width, canvas_height, gap)
    sample = next((b for b in boxes if not b.slot.is_center), boxes[0])
    return sample.size


def _round(value: float) -> int:
    # Half-up; round() would round half to even
    return int(math.floor(value + 0.5))
