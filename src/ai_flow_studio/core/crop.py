"""
Crop - Rectangle sampling for derive-by-crop nodes.

Crop rectangles are stored in the coordinate space of the image the user
drew them on (``sourceWidth`` x ``sourceHeight``). The base image may later
decode at a different size (a downscaled preview, a re-encoded upload), so
every rectangle is rescaled into decoded space before sampling.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Mapping

import numpy as np
from PIL import Image

from ai_flow_studio.core.data_types import ImageData


# Default pixel budget for a rendered crop
DEFAULT_MAX_PIXELS = 4_000_000


def round_half_up(value: float) -> int:
    """Round to the nearest integer, with .5 always going up."""
    return math.floor(value + 0.5)


@dataclass(frozen=True)
class CropRect:
    """Axis-aligned rectangle in declared source space."""
    x: float
    y: float
    width: float
    height: float

    @classmethod
    def from_mapping(cls, raw: Any) -> CropRect | None:
        """Parse ``{"x", "y", "width", "height"}``; None if unusable."""
        if not isinstance(raw, Mapping):
            return None
        try:
            rect = cls(
                x=float(raw.get("x", 0)),
                y=float(raw.get("y", 0)),
                width=float(raw["width"]),
                height=float(raw["height"]),
            )
        except (KeyError, TypeError, ValueError):
            return None
        if rect.width <= 0 or rect.height <= 0:
            return None
        return rect

    def to_dict(self) -> dict[str, float]:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}


def crop_output_size(
    rect: CropRect,
    declared: tuple[float, float],
    decoded: tuple[int, int],
    max_pixels: int = DEFAULT_MAX_PIXELS,
) -> tuple[int, int]:
    """
    Size of the rendered crop.

    ``round(w * W / Ws) x round(h * H / Hs)``, scaled down uniformly when the
    area exceeds ``max_pixels``.
    """
    scale_x, scale_y = _scale_factors(declared, decoded)
    width = max(1, round_half_up(rect.width * scale_x))
    height = max(1, round_half_up(rect.height * scale_y))

    area = width * height
    if max_pixels > 0 and area > max_pixels:
        factor = math.sqrt(max_pixels / area)
        width = max(1, math.floor(width * factor))
        height = max(1, math.floor(height * factor))
    return width, height


def _scale_factors(
    declared: tuple[float, float],
    decoded: tuple[int, int],
) -> tuple[float, float]:
    declared_w, declared_h = declared
    decoded_w, decoded_h = decoded
    scale_x = decoded_w / declared_w if declared_w and declared_w > 0 else 1.0
    scale_y = decoded_h / declared_h if declared_h and declared_h > 0 else 1.0
    return scale_x, scale_y


def render_crop(
    image: ImageData,
    rect: CropRect,
    declared: tuple[float, float] | None = None,
    max_pixels: int = DEFAULT_MAX_PIXELS,
) -> ImageData:
    """
    Sample ``rect`` from ``image`` into a new RGBA image.

    Parts of the rectangle outside the image bounds stay transparent.

    Args:
        image: Decoded base image
        rect: Rectangle in declared space
        declared: Declared (width, height); defaults to the decoded size
        max_pixels: Pixel budget for the output
    """
    decoded = image.size
    declared = declared or (float(decoded[0]), float(decoded[1]))
    out_w, out_h = crop_output_size(rect, declared, decoded, max_pixels)
    scale_x, scale_y = _scale_factors(declared, decoded)

    # Requested region in decoded pixel space
    req_left = rect.x * scale_x
    req_top = rect.y * scale_y
    req_right = (rect.x + rect.width) * scale_x
    req_bottom = (rect.y + rect.height) * scale_y

    left = int(np.clip(math.floor(req_left), 0, decoded[0]))
    top = int(np.clip(math.floor(req_top), 0, decoded[1]))
    right = int(np.clip(math.ceil(req_right), 0, decoded[0]))
    bottom = int(np.clip(math.ceil(req_bottom), 0, decoded[1]))

    canvas = Image.new("RGBA", (out_w, out_h), (0, 0, 0, 0))
    if right <= left or bottom <= top:
        return ImageData.from_pil(canvas)

    # Map the clamped region back onto the output canvas
    per_px_x = out_w / (req_right - req_left)
    per_px_y = out_h / (req_bottom - req_top)
    dest_left = round_half_up((left - req_left) * per_px_x)
    dest_top = round_half_up((top - req_top) * per_px_y)
    dest_w = max(1, min(out_w - max(dest_left, 0), round_half_up((right - left) * per_px_x)))
    dest_h = max(1, min(out_h - max(dest_top, 0), round_half_up((bottom - top) * per_px_y)))

    region = image.region(left, top, right, bottom).to_pil().convert("RGBA")
    region = region.resize((dest_w, dest_h), Image.Resampling.LANCZOS)
    canvas.paste(region, (max(dest_left, 0), max(dest_top, 0)))
    return ImageData.from_pil(canvas)
