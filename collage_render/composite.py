"""
Composite module for the collage variant renderer.

This module handles:
- Cover-fitting member photos into rectangular cells
- Clipping member photos to hexagon cell outlines
- Placeholder tiles for members without a usable photo
- Encoding the final composite with deterministic settings
"""

import io
from abc import ABC, abstractmethod
from functools import lru_cache
from typing import Dict, List, Optional, Tuple

from PIL import Image, ImageDraw, ImageFont
from loguru import logger

from collage_render.config import AppConfig, get_config
from collage_render.errors import RenderError
from collage_render.hexagon import HexLayout, resolve_hex_layout
from collage_render.layout import calculate_cell_positions, get_layout
from collage_render.models import GridKind, Member, Order, Variant

ImageMap = Dict[str, Optional[bytes]]


class CompositeSettings:
    """Settings for composite output."""

    def __init__(self,
                 output_format: str = 'JPEG',
                 quality: int = 85,
                 optimize: bool = True,
                 progressive: bool = False,
                 background_color: str = '#ffffff'):
        self.output_format = output_format
        self.quality = quality
        self.optimize = optimize
        self.progressive = progressive
        self.background_color = background_color

    @classmethod
    def from_config(cls, config: AppConfig) -> 'CompositeSettings':
        return cls(quality=config.OUTPUT_QUALITY, background_color=config.BACKGROUND_COLOR)


def canvas_for(grid_kind: GridKind, member_count: int, config: AppConfig = None) -> Tuple[int, int]:
    """Output canvas size for a grid kind and roster size."""
    config = config or get_config()
    if GridKind(grid_kind) == GridKind.HEXAGONAL:
        return tuple(config.HEX_CANVAS)
    if member_count >= config.LARGE_CANVAS_MIN_MEMBERS:
        return tuple(config.SQUARE_CANVAS_LARGE)
    return tuple(config.SQUARE_CANVAS_SMALL)


def create_canvas(canvas_size: Tuple[int, int], background_color: str = '#ffffff') -> Image.Image:
    """Create a new canvas with the specified size and background color."""
    canvas = Image.new('RGB', canvas_size, background_color)
    logger.debug(f"Created canvas: {canvas_size} with background {background_color}")
    return canvas


def load_image(data: Optional[bytes]) -> Optional[Image.Image]:
    """Decode photo bytes to an RGB image, or None when undecodable."""
    if not data:
        return None
    try:
        image = Image.open(io.BytesIO(data))
        image.load()
        return image.convert('RGB')
    except (OSError, ValueError, Image.DecompressionBombError) as e:
        logger.warning(f"Could not decode member photo ({len(data)} bytes): {e}")
        return None


def calculate_crop_box(image_size: Tuple[int, int], target_size: Tuple[int, int]) -> Tuple[int, int, int, int]:
    """
    Centered crop box that gives the image the target's aspect ratio.

    Returns: (left, top, right, bottom)
    """
    img_width, img_height = image_size
    target_width, target_height = target_size

    img_ratio = img_width / img_height
    target_ratio = target_width / target_height

    if img_ratio > target_ratio:
        # Image is wider than target, crop horizontally
        new_width = max(1, int(img_height * target_ratio))
        left = (img_width - new_width) // 2
        return (left, 0, left + new_width, img_height)

    # Image is taller than target, crop vertically
    new_height = max(1, int(img_width / target_ratio))
    top = (img_height - new_height) // 2
    return (0, top, img_width, top + new_height)


def cover_fit(image: Image.Image, width: int, height: int) -> Image.Image:
    """Scale and center-crop an image so it fully covers width x height."""
    width, height = max(1, width), max(1, height)
    cropped = image.crop(calculate_crop_box(image.size, (width, height)))
    return cropped.resize((width, height), Image.Resampling.LANCZOS)


@lru_cache(maxsize=32)
def placeholder_tile(width: int, height: int, color: str = '#e5e7eb',
                     glyph_color: str = '#9ca3af', glyph: str = '?') -> Image.Image:
    """Neutral tile with a centered glyph for members without a photo."""
    width, height = max(1, width), max(1, height)
    tile = Image.new('RGB', (width, height), color)
    font_size = max(8, min(width, height) // 4)
    font = ImageFont.load_default(size=font_size)
    draw = ImageDraw.Draw(tile)
    draw.text((width / 2, height / 2), glyph, fill=glyph_color, font=font, anchor='mm')
    return tile


def encode_image(image: Image.Image, settings: CompositeSettings = None) -> bytes:
    """Get image as bytes for upload."""
    if settings is None:
        settings = CompositeSettings()

    save_kwargs = {
        'format': settings.output_format,
        'optimize': settings.optimize
    }

    if settings.output_format.upper() == 'JPEG':
        save_kwargs.update({
            'quality': settings.quality,
            'progressive': settings.progressive
        })
        # Ensure RGB mode for JPEG
        if image.mode != 'RGB':
            image = image.convert('RGB')
    elif settings.output_format.upper() == 'PNG':
        save_kwargs['compress_level'] = 6

    buffer = io.BytesIO()
    image.save(buffer, **save_kwargs)
    return buffer.getvalue()


class Compositor(ABC):
    """Renders one variant of an order into an encoded raster."""

    grid_kind: GridKind

    def __init__(self, config: AppConfig = None, settings: CompositeSettings = None):
        self.config = config or get_config()
        self.settings = settings or CompositeSettings.from_config(self.config)

    @abstractmethod
    def render(self, order: Order, variant: Variant, image_map: ImageMap,
               canvas: Tuple[int, int]) -> bytes:
        """Composite a variant onto a canvas of the given size."""

    def _member_image(self, member: Optional[Member], image_map: ImageMap) -> Optional[Image.Image]:
        if member is None:
            return None
        return load_image(image_map.get(member.key))

    def _placeholder(self, width: int, height: int) -> Image.Image:
        return placeholder_tile(width, height, self.config.PLACEHOLDER_COLOR,
                                self.config.PLACEHOLDER_GLYPH_COLOR)


class RectangularCompositor(Compositor):
    """Cover-fit blit into the cells of a catalogue layout."""

    grid_kind = GridKind.SQUARE

    def render(self, order, variant, image_map, canvas):
        width, height = canvas
        layout = get_layout(len(order.members))
        boxes = calculate_cell_positions(layout, width, height, self.config.CELL_GAP_PX)
        result = create_canvas(canvas, self.settings.background_color)

        for box in boxes:
            if box.slot.is_center:
                member = variant.center_member
            else:
                member = variant.member_at(box.slot.member_index)

            image = self._member_image(member, image_map)
            if image is None:
                tile = self._placeholder(box.width, box.height)
            else:
                tile = cover_fit(image, box.width, box.height)
            result.paste(tile, (box.x, box.y))

        logger.debug(f"Composited {len(boxes)} square cells for {variant.id}")
        return encode_image(result, self.settings)


class HexagonalCompositor(Compositor):
    """Polygon-clipped blit into the cells of a hexagon template."""

    grid_kind = GridKind.HEXAGONAL

    def __init__(self, config: AppConfig = None, settings: CompositeSettings = None,
                 template_dir: str = None):
        super().__init__(config, settings)
        self.template_dir = template_dir or self.config.HEX_TEMPLATE_DIR

    def render(self, order, variant, image_map, canvas):
        hex_layout = resolve_hex_layout(len(order.members), self.template_dir,
                                        self.config.HEX_CENTER_MIN_VERTICES)
        if hex_layout is None:
            raise RenderError(
                f"No hexagon template for {len(order.members)} members",
                details={'order_id': order.id, 'variant_id': variant.id}
            )
        return self.render_layout(hex_layout, variant, image_map, canvas)

    def render_layout(self, hex_layout: HexLayout, variant: Variant, image_map: ImageMap,
                      canvas: Tuple[int, int]) -> bytes:
        sx, sy = hex_layout.scale_for(*canvas)
        result = create_canvas(canvas, self.settings.background_color)
        draw = ImageDraw.Draw(result)

        for index, slot in enumerate(hex_layout.slots):
            outline = self._to_canvas(slot.points, hex_layout, sx, sy)

            # Themed cell first so the boundary shows even without a photo
            draw.polygon(outline, fill=self.config.HEX_FILL_COLOR,
                         outline=self.config.HEX_STROKE_COLOR,
                         width=self.config.HEX_STROKE_WIDTH)

            member = variant.center_member if slot.is_center else variant.member_at(index)
            image = self._member_image(member, image_map)
            if image is None:
                continue

            x, y, w, h = self._bbox_to_canvas(slot.bbox, hex_layout, sx, sy)
            side = max(w, h, 1)
            photo = cover_fit(image, side, side)
            left = x + round((w - side) / 2)
            top = y + round((h - side) / 2)

            mask = Image.new('L', result.size, 0)
            ImageDraw.Draw(mask).polygon(outline, fill=255)
            result.paste(photo, (left, top), mask.crop((left, top, left + side, top + side)))

        logger.debug(f"Composited {len(hex_layout.slots)} hexagon cells for {variant.id}")
        return encode_image(result, self.settings)

    @staticmethod
    def _to_canvas(points, hex_layout: HexLayout, sx: float, sy: float) -> List[Tuple[float, float]]:
        return [((x - hex_layout.view_min_x) * sx, (y - hex_layout.view_min_y) * sy) for x, y in points]

    @staticmethod
    def _bbox_to_canvas(bbox, hex_layout: HexLayout, sx: float, sy: float) -> Tuple[int, int, int, int]:
        return (round((bbox.x - hex_layout.view_min_x) * sx),
                round((bbox.y - hex_layout.view_min_y) * sy),
                round(bbox.width * sx),
                round(bbox.height * sy))


def create_compositor(grid_kind: GridKind, config: AppConfig = None) -> Compositor:
    """Factory function for the compositor of a grid kind."""
    if GridKind(grid_kind) == GridKind.HEXAGONAL:
        return HexagonalCompositor(config)
    return RectangularCompositor(config)
