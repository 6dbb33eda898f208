"""
Data Types - Values that flow along edges of the flow graph.

This module defines:
- PortKind: Semantic kind of a port (text, image, video)
- MediaRef: A normalized media reference (embedded bytes, remote URL, local handle)
- ImageData: Decoded pixels used by derive nodes (crop/split)
"""

from __future__ import annotations

import base64
import binascii
import re
from dataclasses import dataclass, field
from enum import Enum, auto
from io import BytesIO
from typing import Any

import numpy as np
from numpy.typing import NDArray


class PortKind(Enum):
    """
    Semantic kind carried by a port.

    Each input row of the compatibility table and each output definition
    has a PortKind; both ends of an edge must be compatible.
    """
    TEXT = auto()
    IMAGE = auto()
    VIDEO = auto()

    # Accepts any kind (used by utility ports only)
    ANY = auto()

    def is_compatible_with(self, other: PortKind) -> bool:
        """Check if this kind can connect to another kind."""
        if self == PortKind.ANY or other == PortKind.ANY:
            return True
        return self == other


class MediaKind(Enum):
    """Encoding of a media reference."""
    EMBEDDED = "embedded"   # Bytes inline as base64 / data URI
    REMOTE = "remote"       # Fetchable http(s) URL
    LOCAL = "local"         # Ephemeral in-process handle (blob:, local:)


_DATA_URI_RE = re.compile(r"^data:(?P<mime>[\w/+.-]+)?(?P<b64>;base64)?,(?P<payload>.*)$", re.DOTALL)
_STORAGE_KEY_RE = re.compile(r"^(templates|projects|uploads|videos)/", re.IGNORECASE)
_BASE64_RE = re.compile(r"^[A-Za-z0-9+/=\s_-]+$")


@dataclass(frozen=True)
class MediaRef:
    """
    A media reference in one fetchable/decodable form.

    Attributes:
        kind: How the media is encoded
        value: Data URI (embedded), absolute URL (remote) or handle (local)
        mime_type: MIME type when known
    """
    kind: MediaKind
    value: str
    mime_type: str = "image/png"

    @property
    def is_embedded(self) -> bool:
        return self.kind == MediaKind.EMBEDDED

    @property
    def is_remote(self) -> bool:
        return self.kind == MediaKind.REMOTE

    @property
    def is_local(self) -> bool:
        return self.kind == MediaKind.LOCAL

    def embedded_bytes(self) -> bytes:
        """Decode the inline bytes of an embedded reference."""
        if not self.is_embedded:
            raise ValueError(f"{self.kind.value} reference has no inline bytes")
        match = _DATA_URI_RE.match(self.value)
        if not match:
            raise ValueError("Malformed data URI")
        payload = match.group("payload")
        try:
            return base64.b64decode(payload, validate=False)
        except (binascii.Error, ValueError) as e:
            raise ValueError(f"Invalid base64 payload: {e}") from e

    @classmethod
    def from_bytes(cls, data: bytes, mime_type: str = "image/png") -> MediaRef:
        """Create an embedded reference from raw bytes."""
        encoded = base64.b64encode(data).decode("ascii")
        return cls(MediaKind.EMBEDDED, f"data:{mime_type};base64,{encoded}", mime_type)

    def __str__(self) -> str:
        return self.value


def normalize_media_ref(
    raw: Any,
    asset_base_url: str | None = None,
) -> MediaRef | None:
    """
    Normalize a heterogeneous stored reference into a MediaRef.

    Accepts:
    - ``data:`` URIs and bare base64 strings (embedded bytes)
    - ``http(s)://`` URLs and storage keys such as ``projects/...`` (remote)
    - ``blob:`` and ``local:`` handles (local)
    - an existing MediaRef (returned unchanged)

    Returns None for empty or unusable values.
    """
    if isinstance(raw, MediaRef):
        return raw
    if not isinstance(raw, str):
        return None
    value = raw.strip()
    if not value:
        return None

    if value.startswith("data:"):
        match = _DATA_URI_RE.match(value)
        mime = (match.group("mime") if match else None) or "image/png"
        return MediaRef(MediaKind.EMBEDDED, value, mime)

    if value.startswith(("blob:", "local:")):
        return MediaRef(MediaKind.LOCAL, value)

    if value.startswith(("http://", "https://")):
        return MediaRef(MediaKind.REMOTE, value, _guess_mime(value))

    if value.startswith("/") or _STORAGE_KEY_RE.match(value):
        key = value.lstrip("/")
        if asset_base_url:
            url = f"{asset_base_url.rstrip('/')}/{key}"
        else:
            url = value if value.startswith("/") else f"/{key}"
        return MediaRef(MediaKind.REMOTE, url, _guess_mime(value))

    if _BASE64_RE.match(value):
        # Bare base64 is how generated images are stored on nodes
        return MediaRef(MediaKind.EMBEDDED, f"data:image/png;base64,{value}", "image/png")

    return None


def _guess_mime(url: str) -> str:
    path = url.split("?", 1)[0].lower()
    if path.endswith((".jpg", ".jpeg")):
        return "image/jpeg"
    if path.endswith(".webp"):
        return "image/webp"
    if path.endswith(".mp4"):
        return "video/mp4"
    return "image/png"


@dataclass
class ImageData:
    """
    Decoded image pixels.

    Internally stores pixels as a numpy array in HWC format with
    float32 values in range [0, 1], like every image handled by derive nodes.
    """
    pixels: NDArray[np.float32]
    source: MediaRef | None = field(default=None, repr=False)

    @classmethod
    def from_pil(cls, image, source: MediaRef | None = None) -> ImageData:
        """Create ImageData from a PIL Image."""
        from PIL import Image

        if not isinstance(image, Image.Image):
            raise TypeError(f"Expected PIL Image, got {type(image)}")

        if image.mode not in ("RGB", "RGBA"):
            image = image.convert("RGBA" if "A" in image.getbands() else "RGB")

        arr = np.array(image, dtype=np.float32) / 255.0
        return cls(pixels=arr, source=source)

    @classmethod
    def from_bytes(cls, data: bytes, source: MediaRef | None = None) -> ImageData:
        """Decode encoded image bytes (PNG, JPEG, WebP, ...)."""
        from PIL import Image

        with Image.open(BytesIO(data)) as image:
            image.load()
            return cls.from_pil(image, source)

    @property
    def width(self) -> int:
        """Image width in pixels."""
        return self.pixels.shape[1]

    @property
    def height(self) -> int:
        """Image height in pixels."""
        return self.pixels.shape[0]

    @property
    def channels(self) -> int:
        return self.pixels.shape[2] if self.pixels.ndim == 3 else 1

    @property
    def size(self) -> tuple[int, int]:
        """Image size as (width, height)."""
        return (self.width, self.height)

    @property
    def has_alpha(self) -> bool:
        return self.channels == 4

    def to_numpy(self, dtype: np.dtype = np.float32) -> NDArray:
        """Convert to numpy array in HWC format."""
        if dtype == np.uint8:
            return (self.pixels * 255).round().clip(0, 255).astype(np.uint8)
        return self.pixels.astype(dtype)

    def to_pil(self):
        """Convert to PIL Image."""
        from PIL import Image

        # HxWx3 / HxWx4 uint8 arrays map to RGB / RGBA
        return Image.fromarray(self.to_numpy(np.uint8))

    def region(self, left: int, top: int, right: int, bottom: int) -> ImageData:
        """Return the pixels inside a box already clamped to the image bounds."""
        return ImageData(pixels=self.pixels[top:bottom, left:right].copy())

    def to_png_bytes(self) -> bytes:
        buf = BytesIO()
        self.to_pil().save(buf, format="PNG")
        return buf.getvalue()
