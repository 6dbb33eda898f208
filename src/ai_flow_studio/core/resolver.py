"""
Input Resolver - Computes the effective inputs of a node.

Resolution walks incoming edges of a FlowGraph snapshot and never mutates
it. Text is read directly from source payloads; images may be derived
(batch slots, crops of crops, frame selection), which requires fetching
and decoding bytes and is therefore async.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Any
from uuid import uuid4

import aiohttp

from ai_flow_studio.core.crop import CropRect, render_crop
from ai_flow_studio.core.data_types import (
    ImageData,
    MediaKind,
    MediaRef,
    normalize_media_ref,
)
from ai_flow_studio.core.errors import UpstreamResolutionError
from ai_flow_studio.core.graph import FlowGraph, Node
from ai_flow_studio.core.node_types import NodeKind, NodeRegistry, port_index
from ai_flow_studio.core.settings import EngineSettings


logger = logging.getLogger(__name__)


# Payload fields that may hold a node's text, in priority order
TEXT_SOURCE_KEYS = (
    "text",
    "prompt",
    "expandedText",
    "responseText",
    "manualInput",
    "presetPrompt",
)

# Payload fields that may hold a node's image, in priority order
IMAGE_SOURCE_KEYS = ("imageData", "imageUrl", "outputImage", "thumbnail")

BATCH_KINDS = frozenset({NodeKind.GENERATE_4, NodeKind.GENERATE_PRO_4})
CROP_KINDS = frozenset({NodeKind.IMAGE_SPLIT, NodeKind.IMAGE_CROP})


# ============================================================================
# Media fetching
# ============================================================================

class LocalHandleStore:
    """
    In-process store for ephemeral media handles (``local:<id>``).

    Stands in for browser blob URLs: bytes that exist only in this
    process and must be staged before a remote backend can see them.
    """

    def __init__(self):
        self._items: dict[str, tuple[bytes, str]] = {}

    def put(self, data: bytes, mime_type: str = "image/png") -> MediaRef:
        handle = f"local:{uuid4().hex}"
        self._items[handle] = (data, mime_type)
        return MediaRef(MediaKind.LOCAL, handle, mime_type)

    def get(self, handle: str) -> bytes:
        try:
            return self._items[handle][0]
        except KeyError:
            raise ValueError(f"Unknown local handle: {handle}") from None

    def mime_type(self, handle: str) -> str:
        item = self._items.get(handle)
        return item[1] if item else "application/octet-stream"

    def discard(self, handle: str) -> None:
        self._items.pop(handle, None)

    def __contains__(self, handle: object) -> bool:
        return handle in self._items


class MediaFetcher:
    """Fetches the bytes behind a MediaRef."""

    def __init__(
        self,
        local_store: LocalHandleStore | None = None,
        timeout: float = 60.0,
    ):
        self.local_store = local_store or LocalHandleStore()
        self.timeout = timeout

    async def fetch(self, ref: MediaRef) -> bytes:
        """
        Return the raw bytes of ``ref``.

        Raises:
            ValueError: Embedded payload or local handle is unusable
            aiohttp.ClientError: Remote fetch failed
        """
        if ref.kind == MediaKind.EMBEDDED:
            return ref.embedded_bytes()
        if ref.kind == MediaKind.LOCAL:
            return self.local_store.get(ref.value)

        timeout = aiohttp.ClientTimeout(total=self.timeout)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.get(ref.value) as resp:
                resp.raise_for_status()
                return await resp.read()


# ============================================================================
# Stored values (no derivation)
# ============================================================================

def first_text(data: Any) -> str:
    """First non-blank text field of a payload, trimmed."""
    if not hasattr(data, "get"):
        return ""
    for key in TEXT_SOURCE_KEYS:
        value = data.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return ""


def storyboard_segment(node: Node, source_port: str) -> str:
    """Text of shot N for a ``promptN`` port."""
    index = port_index(source_port, default=0)
    if index < 1:
        return ""
    segments = node.get("segments") or []
    if index <= len(segments) and isinstance(segments[index - 1], str):
        text = segments[index - 1].strip()
        if text:
            return text
    fallback = node.get(f"prompt{index}")
    return fallback.strip() if isinstance(fallback, str) else ""


def frame_refs(node: Node, asset_base_url: str | None = None) -> list[MediaRef]:
    """All frames of a frame-extraction node, in order."""
    refs = []
    for frame in node.get("frames") or []:
        ref = _frame_ref(frame, asset_base_url)
        if ref is not None:
            refs.append(ref)
    return refs


def _frame_ref(frame: Any, asset_base_url: str | None) -> MediaRef | None:
    if isinstance(frame, str):
        return normalize_media_ref(frame, asset_base_url)
    if not hasattr(frame, "get"):
        return None
    return (
        normalize_media_ref(frame.get("imageUrl"), asset_base_url)
        or normalize_media_ref(frame.get("thumbnailDataUrl"), asset_base_url)
    )


def selected_frame_ref(node: Node, asset_base_url: str | None = None) -> MediaRef | None:
    """Frame at ``selectedFrameIndex`` (1-based, clamped)."""
    frames = node.get("frames") or []
    if not frames:
        return None
    try:
        index = int(node.get("selectedFrameIndex") or 1)
    except (TypeError, ValueError):
        index = 1
    index = min(max(index, 1), len(frames))
    return _frame_ref(frames[index - 1], asset_base_url)


def _first_image(data: Any, asset_base_url: str | None) -> MediaRef | None:
    for key in IMAGE_SOURCE_KEYS:
        ref = normalize_media_ref(data.get(key), asset_base_url)
        if ref is not None:
            return ref
    return None


def stored_image_ref(
    node: Node | None,
    source_port: str,
    asset_base_url: str | None = None,
) -> MediaRef | None:
    """
    The image a node currently stores for ``source_port``.

    No fetching or derivation happens here; derive nodes return whatever
    value was cached on them.
    """
    if node is None:
        return None

    if node.kind in BATCH_KINDS:
        index = port_index(source_port)
        images = node.get("images") or []
        if 1 <= index <= len(images):
            ref = normalize_media_ref(images[index - 1], asset_base_url)
            if ref is not None:
                return ref
        return normalize_media_ref(node.get("imageData"), asset_base_url)

    if node.kind == NodeKind.IMAGE_SPLIT:
        index = port_index(source_port)
        ref = normalize_media_ref(node.get(f"image{index}"), asset_base_url)
        if ref is not None:
            return ref
        legacy = node.get("splitImages") or []
        if 1 <= index <= len(legacy):
            item = legacy[index - 1]
            raw = item.get("imageData") if hasattr(item, "get") else item
            return normalize_media_ref(raw, asset_base_url)
        return None

    if node.kind == NodeKind.VIDEO_FRAME_EXTRACT:
        if source_port == "images":
            return None
        return selected_frame_ref(node, asset_base_url)

    if node.kind == NodeKind.IMAGE_GRID:
        return normalize_media_ref(node.get("outputImage"), asset_base_url)

    return _first_image(node.data, asset_base_url)


_QUOTES = "\"'`"


def sanitize_media_url(raw: Any, asset_base_url: str | None = None) -> str | None:
    """Clean up a stored media URL; None when nothing fetchable remains."""
    if not isinstance(raw, str):
        return None
    value = raw.strip().strip(_QUOTES).strip()
    value = re.sub(r"\s+", "", value)
    ref = normalize_media_ref(value, asset_base_url)
    if ref is None or ref.kind != MediaKind.REMOTE:
        return None
    return ref.value


# ============================================================================
# Resolver
# ============================================================================

class InputResolver:
    """
    Computes node inputs over one graph snapshot.

    Args:
        graph: Snapshot to resolve against; never mutated
        fetcher: Used to fetch base images for crops
        settings: Pixel budget and asset base URL
    """

    def __init__(
        self,
        graph: FlowGraph,
        fetcher: MediaFetcher | None = None,
        settings: EngineSettings | None = None,
    ):
        self.graph = graph
        self.fetcher = fetcher or MediaFetcher()
        self.settings = settings or EngineSettings()

    @property
    def _base_url(self) -> str | None:
        return self.settings.asset_base_url

    # -------------------------------------------------------------------------
    # Text
    # -------------------------------------------------------------------------

    def resolve_text(self, node_id: str, port: str = "text") -> str:
        """Text on the first edge into ``port``; empty string if none."""
        edges = self.graph.incoming(node_id, port)
        if not edges:
            return ""
        edge = edges[0]
        source = self.graph.get_node(edge.source)
        return self._source_text(source, edge.source_port, frozenset({node_id}))

    def resolve_text_aggregate(self, node_id: str, port: str = "text") -> list[str]:
        """Non-empty texts of every edge into ``port``, in edge order."""
        texts = []
        for edge in self.graph.incoming(node_id, port):
            source = self.graph.get_node(edge.source)
            text = self._source_text(source, edge.source_port, frozenset({node_id}))
            if text:
                texts.append(text)
        return texts

    def output_text(self, node_id: str) -> str:
        """The text a node would emit on its text output."""
        node = self.graph.get_node(node_id)
        return self._source_text(node, "text", frozenset())

    def _source_text(self, node: Node | None, source_port: str, visited: frozenset[str]) -> str:
        if node is None or node.id in visited:
            return ""
        if node.kind == NodeKind.STORYBOARD_SPLIT:
            return storyboard_segment(node, source_port)
        if node.kind == NodeKind.PROMPT_AGGREGATE:
            return self._aggregate_text(node, visited | {node.id})
        return first_text(node.data)

    def _aggregate_text(self, node: Node, visited: frozenset[str]) -> str:
        parts = []
        own = node.get("text")
        if isinstance(own, str) and own.strip():
            parts.append(own.strip())
        for edge in self.graph.incoming(node.id, "text"):
            source = self.graph.get_node(edge.source)
            text = self._source_text(source, edge.source_port, visited)
            if text:
                parts.append(text)
        separator = node.get("separator")
        if not isinstance(separator, str):
            separator = "\n"
        return separator.join(parts)

    # -------------------------------------------------------------------------
    # Images
    # -------------------------------------------------------------------------

    async def resolve_image(
        self,
        node: Node | None,
        source_port: str,
        visited: frozenset[str] = frozenset(),
    ) -> MediaRef | None:
        """
        The image ``node`` emits on ``source_port``.

        Raises:
            UpstreamResolutionError: A crop base could not be fetched or decoded
        """
        if node is None or node.id in visited:
            return None
        visited = visited | {node.id}

        if node.kind in CROP_KINDS:
            return await self._resolve_crop(node, source_port, visited)
        return stored_image_ref(node, source_port, self._base_url)

    async def resolve_input_image(self, node_id: str, port: str) -> MediaRef | None:
        """Image on the first edge into ``port``."""
        edges = self.graph.incoming(node_id, port)
        if not edges:
            return None
        edge = edges[0]
        source = self.graph.get_node(edge.source)
        return await self.resolve_image(source, edge.source_port, frozenset({node_id}))

    async def resolve_images(self, node_id: str, port: str) -> list[MediaRef]:
        """
        Every image arriving on ``port``, in edge order.

        Collection outputs expand to all of their items.
        """
        refs: list[MediaRef] = []
        registry = NodeRegistry.instance()
        for edge in self.graph.incoming(node_id, port):
            source = self.graph.get_node(edge.source)
            if source is None:
                continue
            source_type = registry.get(source.kind)
            output = source_type.get_output(edge.source_port) if source_type else None
            if output is not None and output.collection:
                refs.extend(frame_refs(source, self._base_url))
                continue
            ref = await self.resolve_image(source, edge.source_port, frozenset({node_id}))
            if ref is not None:
                refs.append(ref)
        return refs

    async def _resolve_crop(
        self,
        node: Node,
        source_port: str,
        visited: frozenset[str],
    ) -> MediaRef | None:
        rect = self._crop_rect(node, source_port)
        base = None
        if rect is not None:
            base = normalize_media_ref(node.get("inputImage"), self._base_url)
            if base is None:
                edges = self.graph.incoming(node.id, "img")
                if edges:
                    upstream = self.graph.get_node(edges[0].source)
                    base = await self.resolve_image(upstream, edges[0].source_port, visited)

        if base is None or rect is None:
            return stored_image_ref(node, source_port, self._base_url)

        image = await self.load_image(base, node.id)
        declared = _declared_size(node)
        logger.debug(
            "Cropping %s on %s: rect=%s declared=%s decoded=%s",
            source_port, node.id, rect, declared, image.size,
        )
        cropped = render_crop(image, rect, declared, self.settings.crop_max_pixels)
        return MediaRef.from_bytes(cropped.to_png_bytes())

    @staticmethod
    def _crop_rect(node: Node, source_port: str) -> CropRect | None:
        if node.kind == NodeKind.IMAGE_SPLIT:
            index = port_index(source_port)
            rects = node.get("splitRects") or []
            if 1 <= index <= len(rects):
                return CropRect.from_mapping(rects[index - 1])
            return None
        return CropRect.from_mapping(node.get("cropRect"))

    async def load_image(self, ref: MediaRef, node_id: str) -> ImageData:
        """
        Fetch and decode ``ref`` on behalf of ``node_id``.

        Raises:
            UpstreamResolutionError: The bytes could not be fetched or decoded
        """
        try:
            data = await self.fetcher.fetch(ref)
        except (aiohttp.ClientError, OSError, ValueError, asyncio.TimeoutError) as e:
            raise UpstreamResolutionError(
                f"Could not load base image: {e}", node_id=node_id
            ) from e
        try:
            return ImageData.from_bytes(data, source=ref)
        except (OSError, ValueError) as e:
            raise UpstreamResolutionError(
                f"Could not decode base image: {e}", node_id=node_id
            ) from e

    # -------------------------------------------------------------------------
    # Video
    # -------------------------------------------------------------------------

    def resolve_video(self, node_id: str, port: str) -> str | None:
        """URL of the clip arriving on ``port``, sanitized."""
        edges = self.graph.incoming(node_id, port)
        if not edges:
            return None
        source = self.graph.get_node(edges[0].source)
        if source is None:
            return None
        url = sanitize_media_url(source.get("videoUrl"), self._base_url)
        if url:
            return url
        for entry in source.get("history") or []:
            raw = entry.get("url") if hasattr(entry, "get") else entry
            url = sanitize_media_url(raw, self._base_url)
            if url:
                return url
        return None


def _declared_size(node: Node) -> tuple[float, float] | None:
    try:
        width = float(node.get("sourceWidth") or 0)
        height = float(node.get("sourceHeight") or 0)
    except (TypeError, ValueError):
        return None
    if width <= 0 or height <= 0:
        return None
    return width, height
