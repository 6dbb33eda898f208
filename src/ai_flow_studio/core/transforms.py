"""
Local transforms run by split, grid and storyboard nodes.

These never call a backend: they compute rectangles, compose images or
parse text, and their results are written back onto the node payload.
"""

from __future__ import annotations

import math
import re

from PIL import Image

from ai_flow_studio.core.crop import round_half_up
from ai_flow_studio.core.data_types import ImageData


_STORYBOARD_SHOT_RE = re.compile(r"\|\s?\*\*(\d{1,2})\*\*\s?\|")


def parse_storyboard(text: str) -> list[str]:
    """
    Split a storyboard script into shots.

    A shot starts at a Markdown table cell holding a bold shot number
    (``|**1**|`` or ``| **01** |``) and runs until the next one.
    """
    if not text or not text.strip():
        return []
    matches = list(_STORYBOARD_SHOT_RE.finditer(text))
    segments: list[str] = []
    for i, match in enumerate(matches):
        end = matches[i + 1].start() if i + 1 < len(matches) else len(text)
        segment = text[match.start():end].strip()
        if segment:
            segments.append(segment)
    return segments


def split_rects_by_grid(width: int, height: int, count: int) -> list[dict[str, int]]:
    """
    Cut a ``width`` x ``height`` image into ``count`` near-square cells.

    Columns = ceil(sqrt(count)), rows = ceil(count / columns); cells are
    listed row by row.
    """
    count = max(1, count)
    cols = max(1, math.ceil(math.sqrt(count)))
    rows = max(1, math.ceil(count / cols))

    rects = []
    for i in range(count):
        row, col = divmod(i, cols)
        x0 = round_half_up(col / cols * width)
        x1 = round_half_up((col + 1) / cols * width)
        y0 = round_half_up(row / rows * height)
        y1 = round_half_up((row + 1) / rows * height)
        rects.append({
            "index": i,
            "x": x0,
            "y": y0,
            "width": max(1, x1 - x0),
            "height": max(1, y1 - y0),
        })
    return rects


def grid_size(count: int) -> int:
    """Side length of the smallest square grid that holds ``count`` images."""
    if count <= 1:
        return 1
    return math.ceil(math.sqrt(count))


def compose_grid(
    images: list[ImageData],
    background: str = "#ffffff",
    padding: int = 0,
    gap: int = 16,
) -> ImageData:
    """
    Compose images into a square grid.

    Every cell is as large as the largest image plus padding; images are
    centered in their cell and cells are separated by ``gap`` pixels.
    """
    if not images:
        raise ValueError("No images to compose")

    side = grid_size(len(images))
    cell_w = max(img.width for img in images) + padding * 2
    cell_h = max(img.height for img in images) + padding * 2
    canvas_w = cell_w * side + gap * (side + 1)
    canvas_h = cell_h * side + gap * (side + 1)

    canvas = Image.new("RGB", (canvas_w, canvas_h), background)
    for index, img in enumerate(images):
        row, col = divmod(index, side)
        cell_x = gap + col * (cell_w + gap)
        cell_y = gap + row * (cell_h + gap)
        offset_x = (cell_w - img.width) // 2
        offset_y = (cell_h - img.height) // 2
        tile = img.to_pil()
        mask = tile if tile.mode == "RGBA" else None
        canvas.paste(tile, (cell_x + offset_x, cell_y + offset_y), mask)

    return ImageData.from_pil(canvas)
