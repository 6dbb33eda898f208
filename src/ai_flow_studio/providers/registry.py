"""
Provider Registry - Backend configuration and video provider specs.

This module manages:
- Built-in specs for the supported video providers
- Backend configuration loading/saving
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path

from ai_flow_studio.core.node_types import NodeKind
from ai_flow_studio.core.settings import default_config_dir
from ai_flow_studio.providers.base import ProviderConfig


logger = logging.getLogger(__name__)


# Id of the HTTP backend that serves every generation endpoint
FLOW_API = "flow-api"


@dataclass(frozen=True)
class VideoProviderSpec:
    """
    Capabilities of a video provider.

    Attributes:
        id: Provider id used in backend routes
        name: Display name
        node_kind: Node kind that submits to this provider
        max_images: Reference images sent per job
        min_images_without_prompt: With at least this many images the
            prompt may be empty; None means a prompt is always required
        durations: Allowed clip lengths in seconds
        aspect_ratios: Allowed aspect ratios
        options_in_prompt: Duration and aspect ratio are appended to the
            prompt instead of being sent as options
    """
    id: str
    name: str
    node_kind: NodeKind
    max_images: int = 1
    min_images_without_prompt: int | None = None
    durations: tuple[int, ...] = (5, 10)
    aspect_ratios: tuple[str, ...] = ("16:9", "9:16", "1:1")
    options_in_prompt: bool = False
    requires_video: bool = False

    def prompt_optional(self, image_count: int) -> bool:
        if self.min_images_without_prompt is None:
            return False
        return image_count >= self.min_images_without_prompt


BUILTIN_VIDEO_PROVIDERS: dict[NodeKind, VideoProviderSpec] = {
    NodeKind.KLING_VIDEO: VideoProviderSpec(
        id="kling",
        name="Kling",
        node_kind=NodeKind.KLING_VIDEO,
        max_images=4,
        min_images_without_prompt=1,
    ),
    NodeKind.VIDU_VIDEO: VideoProviderSpec(
        id="vidu",
        name="Vidu",
        node_kind=NodeKind.VIDU_VIDEO,
        max_images=7,
        min_images_without_prompt=2,
        durations=(4, 8),
    ),
    NodeKind.DOUBAO_VIDEO: VideoProviderSpec(
        id="doubao",
        name="Doubao Seedance",
        node_kind=NodeKind.DOUBAO_VIDEO,
        max_images=2,
    ),
    NodeKind.SORA2_VIDEO: VideoProviderSpec(
        id="sora2",
        name="Sora 2",
        node_kind=NodeKind.SORA2_VIDEO,
        max_images=1,
        durations=(10, 15),
        aspect_ratios=("16:9", "9:16"),
        options_in_prompt=True,
    ),
    NodeKind.WAN26_VIDEO: VideoProviderSpec(
        id="wan26",
        name="Wan 2.6",
        node_kind=NodeKind.WAN26_VIDEO,
        max_images=1,
    ),
    NodeKind.VIDEO_COMPOSE: VideoProviderSpec(
        id="wan2R2V",
        name="Wan Reference-to-Video",
        node_kind=NodeKind.VIDEO_COMPOSE,
        max_images=0,
        requires_video=True,
    ),
}


class ProviderRegistry:
    """
    Central registry for backend configuration and video provider specs.
    """

    _instance: ProviderRegistry | None = None

    def __new__(cls) -> ProviderRegistry:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._init()
        return cls._instance

    @classmethod
    def instance(cls) -> ProviderRegistry:
        return cls()

    def _init(self) -> None:
        """Initialize the registry."""
        self._video_specs: dict[NodeKind, VideoProviderSpec] = dict(BUILTIN_VIDEO_PROVIDERS)
        self._configs: dict[str, ProviderConfig] = {}
        self._config_path: Path | None = None

    # -------------------------------------------------------------------------
    # Video providers
    # -------------------------------------------------------------------------

    def register_video_provider(self, spec: VideoProviderSpec) -> None:
        self._video_specs[spec.node_kind] = spec

    def video_spec(self, kind: NodeKind) -> VideoProviderSpec | None:
        return self._video_specs.get(kind)

    def list_video_providers(self) -> list[VideoProviderSpec]:
        return list(self._video_specs.values())

    # -------------------------------------------------------------------------
    # Configuration
    # -------------------------------------------------------------------------

    def set_config(self, provider_id: str, config: ProviderConfig) -> None:
        """Set configuration for a backend."""
        self._configs[provider_id] = config

    def get_config(self, provider_id: str = FLOW_API) -> ProviderConfig:
        """Get configuration for a backend."""
        return self._configs.get(provider_id, ProviderConfig())

    def list_configured(self) -> list[str]:
        return [pid for pid, cfg in self._configs.items() if cfg.enabled and cfg.base_url]

    def load_config(self, path: Path | None = None) -> None:
        """Load backend configurations from file."""
        if path is None:
            path = default_config_dir() / "providers.json"

        self._config_path = path

        if not path.exists():
            return

        try:
            with open(path) as f:
                data = json.load(f)

            for provider_id, cfg_data in data.get("providers", {}).items():
                self._configs[provider_id] = ProviderConfig(
                    api_key=cfg_data.get("api_key", ""),
                    enabled=cfg_data.get("enabled", True),
                    base_url=cfg_data.get("base_url"),
                    default_model=cfg_data.get("default_model"),
                    timeout=float(cfg_data.get("timeout", 120.0)),
                    extra=cfg_data.get("extra", {}),
                )
        except (OSError, ValueError, TypeError, AttributeError) as e:
            logger.warning("Failed to load provider config from %s: %s", path, e)

    def save_config(self, path: Path | None = None) -> None:
        """Save backend configurations to file."""
        if path is None:
            path = self._config_path or default_config_dir() / "providers.json"

        path.parent.mkdir(parents=True, exist_ok=True)

        data = {
            "providers": {
                pid: {
                    "api_key": cfg.api_key,
                    "enabled": cfg.enabled,
                    "base_url": cfg.base_url,
                    "default_model": cfg.default_model,
                    "timeout": cfg.timeout,
                    "extra": cfg.extra,
                }
                for pid, cfg in self._configs.items()
            },
        }

        with open(path, "w") as f:
            json.dump(data, f, indent=2)


# ============================================================================
# Module-level convenience functions
# ============================================================================

def get_registry() -> ProviderRegistry:
    """Get the global provider registry."""
    return ProviderRegistry.instance()


def get_video_spec(kind: NodeKind) -> VideoProviderSpec | None:
    """Get the spec of the provider behind a video node kind."""
    return get_registry().video_spec(kind)
