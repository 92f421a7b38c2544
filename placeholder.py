"""Synthetic "image not found" picture."""
from typing import Optional

from PIL import Image as PILImage, ImageDraw

BACKGROUND = (200, 200, 200, 255)
TILE = (247, 247, 247, 255)
GLYPH = (174, 183, 190, 255)

# Glyph outline on a 100x100 grid: a mountain silhouette and a sun disc.
MOUNTAIN = [
    (70, 65), (62, 55), (60, 52.8), (58, 52), (56, 52.8), (54, 55), (50, 60),
    (48.8, 61.2), (47.5, 61.5), (46.2, 61.2), (45, 60), (44.5, 59.5),
    (43, 58.3), (41.5, 58.2), (40, 58.8), (39, 60), (35, 66), (34.3, 69),
    (35.5, 71.5), (38, 73.4), (41, 74), (59, 74), (62, 73.4), (64.5, 71.5),
    (66.5, 68.5),
]
SUN_CENTER = (45, 42)
SUN_RADIUS = 6

SUPERSAMPLE = 4
MAX_DRAW_SIDE = 2048


def _glyph_tile(side: int) -> PILImage.Image:
    """Square glyph tile of ``side`` pixels, drawn large and scaled down."""
    factor = max(1, min(SUPERSAMPLE, MAX_DRAW_SIDE // side))
    size = side * factor
    scale = size / 100

    tile = PILImage.new("RGBA", (size, size), TILE)
    draw = ImageDraw.Draw(tile)
    draw.polygon([(x * scale, y * scale) for x, y in MOUNTAIN], fill=GLYPH)
    cx, cy = SUN_CENTER
    draw.ellipse(
        [
            (cx - SUN_RADIUS) * scale,
            (cy - SUN_RADIUS) * scale,
            (cx + SUN_RADIUS) * scale,
            (cy + SUN_RADIUS) * scale,
        ],
        fill=GLYPH,
    )
    if factor > 1:
        tile = tile.resize((side, side), PILImage.Resampling.LANCZOS)
    return tile


def not_found_image(width: int = 300, height: Optional[int] = None) -> PILImage.Image:
    """Gray canvas of width x height with the glyph centered at the smaller side."""
    if height is None:
        height = width
    if width <= 0 or height <= 0:
        raise ValueError("Placeholder dimensions must be positive")

    canvas = PILImage.new("RGBA", (width, height), BACKGROUND)
    side = min(width, height)
    tile = _glyph_tile(side)
    canvas.paste(tile, ((width - side) // 2, (height - side) // 2))
    return canvas
