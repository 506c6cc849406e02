"""
Hexagon template resolver

Parses the pre-authored SVG template for a member count into slot polygons,
picks the center polygon and orders the border cells clockwise from
12 o'clock.
"""

import math
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from loguru import logger

from collage_render.config import get_config
from collage_render.errors import TemplateGeometryError


DEFAULT_VIEWBOX = (0.0, 0.0, 595.3, 936.0)
DEFAULT_MIN_CENTER_VERTICES = 15

_NUMBER_SEP = re.compile(r'[\s,]+')

Point = Tuple[float, float]


@dataclass(frozen=True)
class BoundingBox:
    x: float
    y: float
    width: float
    height: float

    def scaled(self, sx: float, sy: float) -> Tuple[int, int, int, int]:
        return (round(self.x * sx), round(self.y * sy),
                round(self.width * sx), round(self.height * sy))


@dataclass(frozen=True)
class HexSlot:
    """One polygonal cell of a hexagon template."""
    points: Tuple[Point, ...]
    outline_path: str
    bbox: BoundingBox
    centroid: Point
    is_center: bool
    angle: float = 0.0  # clockwise from 12 o'clock, radians; 0 for the center

    @property
    def vertex_count(self) -> int:
        return len(self.points)

    def scaled_points(self, sx: float, sy: float) -> List[Point]:
        return [(x * sx, y * sy) for x, y in self.points]


@dataclass(frozen=True)
class HexLayout:
    slots: Tuple[HexSlot, ...]
    view_width: float
    view_height: float
    view_min_x: float = 0.0
    view_min_y: float = 0.0

    @property
    def center_slot(self) -> HexSlot:
        return self.slots[0]

    @property
    def border_slots(self) -> Tuple[HexSlot, ...]:
        return self.slots[1:]

    @property
    def center_index(self) -> int:
        return 0

    def scale_for(self, width: int, height: int) -> Tuple[float, float]:
        return width / self.view_width, height / self.view_height


def _local_name(tag: str) -> str:
    return tag.rsplit('}', 1)[-1]


def _parse_viewbox(raw: Optional[str]) -> Tuple[float, float, float, float]:
    if not raw:
        return DEFAULT_VIEWBOX
    try:
        parts = [float(p) for p in _NUMBER_SEP.split(raw.strip()) if p]
    except ValueError:
        raise TemplateGeometryError(f"Malformed viewBox: {raw!r}")
    if len(parts) < 4 or parts[2] <= 0 or parts[3] <= 0:
        raise TemplateGeometryError(f"Malformed viewBox: {raw!r}")
    return parts[0], parts[1], parts[2], parts[3]


def parse_points(raw: str) -> Tuple[Point, ...]:
    """Parse an SVG ``points`` attribute into (x, y) pairs."""
    tokens = [t for t in _NUMBER_SEP.split(raw.strip()) if t]
    try:
        coords = [float(t) for t in tokens]
    except ValueError:
        raise TemplateGeometryError(f"Non-numeric polygon coordinate in {raw[:40]!r}")
    if len(coords) % 2:
        raise TemplateGeometryError(f"Odd number of polygon coordinates ({len(coords)})")
    return tuple(zip(coords[0::2], coords[1::2]))


def outline_path(points: Sequence[Point]) -> str:
    """SVG path data for a closed polygon."""
    first, rest = points[0], points[1:]
    parts = ['M', _fmt(first[0]), _fmt(first[1])]
    for x, y in rest:
        parts.extend(['L', _fmt(x), _fmt(y)])
    parts.append('Z')
    return ' '.join(parts)


def _fmt(value: float) -> str:
    return f"{value:g}"


def clockwise_angle(point: Point, origin: Point) -> float:
    """Angle from origin to point, 0 at 12 o'clock, increasing clockwise on screen."""
    raw = math.atan2(point[1] - origin[1], point[0] - origin[0])
    return (raw + math.pi / 2) % (2 * math.pi)


def parse_hex_template(svg_text: str, min_center_vertices: int = DEFAULT_MIN_CENTER_VERTICES,
                       name: str = None) -> HexLayout:
    """
    Parse a hexagon SVG template into an ordered HexLayout.

    The polygon with the most vertices (above ``min_center_vertices``) is the
    center cell; the rest are sorted clockwise from 12 o'clock around the
    viewBox center. Result order is ``[center, border_0, border_1, ...]``.
    """
    try:
        root = ET.fromstring(svg_text)
    except ET.ParseError as e:
        raise TemplateGeometryError(f"Template is not valid SVG: {e}", template=name)

    min_x, min_y, view_w, view_h = _parse_viewbox(root.get('viewBox'))

    raw_slots = []
    for element in root.iter():
        if _local_name(element.tag) != 'polygon':
            continue
        points = parse_points(element.get('points', ''))
        if len(points) < 3:
            continue

        xs = [p[0] for p in points]
        ys = [p[1] for p in points]
        raw_slots.append({
            'points': points,
            'centroid': (sum(xs) / len(xs), sum(ys) / len(ys)),
            'bbox': BoundingBox(min(xs), min(ys), max(xs) - min(xs), max(ys) - min(ys)),
        })

    if not raw_slots:
        raise TemplateGeometryError("Template has no polygon cells", template=name)

    max_vertices = max(len(s['points']) for s in raw_slots)
    centers = [s for s in raw_slots
               if len(s['points']) == max_vertices and max_vertices > min_center_vertices]
    if len(centers) != 1:
        raise TemplateGeometryError(
            f"Expected exactly one center polygon with more than {min_center_vertices} "
            f"vertices, found {len(centers)}",
            template=name,
        )
    center = centers[0]

    origin = (min_x + view_w / 2, min_y + view_h / 2)
    border = [s for s in raw_slots if s is not center]
    for s in border:
        s['angle'] = clockwise_angle(s['centroid'], origin)
    # sorted() is stable, so equal angles keep document order
    border = sorted(border, key=lambda s: s['angle'])

    slots = [_build_slot(center, True, 0.0)]
    slots.extend(_build_slot(s, False, s['angle']) for s in border)

    return HexLayout(
        slots=tuple(slots),
        view_width=view_w,
        view_height=view_h,
        view_min_x=min_x,
        view_min_y=min_y,
    )


def _build_slot(raw: dict, is_center: bool, angle: float) -> HexSlot:
    return HexSlot(
        points=raw['points'],
        outline_path=outline_path(raw['points']),
        bbox=raw['bbox'],
        centroid=raw['centroid'],
        is_center=is_center,
        angle=angle,
    )


def template_path(member_count: int, template_dir: str = None) -> Path:
    template_dir = template_dir or get_config().HEX_TEMPLATE_DIR
    return Path(template_dir) / f"{member_count}.svg"


def available_template_counts(template_dir: str = None) -> List[int]:
    template_dir = Path(template_dir or get_config().HEX_TEMPLATE_DIR)
    if not template_dir.exists():
        return []
    return sorted(int(p.stem) for p in template_dir.glob('*.svg') if p.stem.isdigit())


@lru_cache(maxsize=64)
def _load_template(path: str, min_center_vertices: int) -> HexLayout:
    svg_text = Path(path).read_text(encoding='utf-8')
    layout = parse_hex_template(svg_text, min_center_vertices, name=Path(path).name)
    logger.debug(f"Parsed hexagon template {path}: {len(layout.slots)} slots")
    return layout


def resolve_hex_layout(member_count: int, template_dir: str = None,
                       min_center_vertices: int = None) -> Optional[HexLayout]:
    """
    HexLayout for an exact member count, or None when no template exists.

    A missing template means hexagonal rendering is unavailable for this
    order size; malformed templates raise TemplateGeometryError.
    """
    if min_center_vertices is None:
        min_center_vertices = get_config().HEX_CENTER_MIN_VERTICES

    path = template_path(member_count, template_dir)
    if not path.exists():
        logger.warning(f"No hexagon template for {member_count} members ({path})")
        return None

    return _load_template(str(path.resolve()), min_center_vertices)


def clear_template_cache() -> None:
    _load_template.cache_clear()
