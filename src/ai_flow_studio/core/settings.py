"""
Engine Settings - Tunables for resolution, orchestration and polling.

Settings are plain data; ``load``/``save`` read and write them as JSON
next to the provider configuration.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any


logger = logging.getLogger(__name__)


def default_config_dir() -> Path:
    return Path.home() / ".config" / "ai_flow_studio"


@dataclass
class EngineSettings:
    """
    Engine-wide settings.

    Attributes:
        poll_interval: Seconds between job status checks
        poll_max_attempts: Status checks before a job times out
        crop_max_pixels: Pixel budget for rendered crops
        max_generate_images: Images passed to a single generate call
        batch_concurrency: Slots of a concurrent batch in flight at once
        history_limit: Entries kept in a node's result history
        asset_base_url: Base URL that storage keys are resolved against
        default_model: Model used when a node does not pick one
        default_provider: Video provider used when a node does not pick one
    """
    # Polling
    poll_interval: float = 3.0
    poll_max_attempts: int = 200

    # Resolution
    crop_max_pixels: int = 4_000_000
    asset_base_url: str | None = None

    # Orchestration
    max_generate_images: int = 6
    batch_concurrency: int = 4
    history_limit: int = 5

    # Backend defaults
    default_model: str | None = None
    default_provider: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert settings to dictionary for serialization."""
        return {
            "poll_interval": self.poll_interval,
            "poll_max_attempts": self.poll_max_attempts,
            "crop_max_pixels": self.crop_max_pixels,
            "asset_base_url": self.asset_base_url,
            "max_generate_images": self.max_generate_images,
            "batch_concurrency": self.batch_concurrency,
            "history_limit": self.history_limit,
            "default_model": self.default_model,
            "default_provider": self.default_provider,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EngineSettings:
        """Create settings from dictionary."""
        return cls(
            poll_interval=float(data.get("poll_interval", 3.0)),
            poll_max_attempts=int(data.get("poll_max_attempts", 200)),
            crop_max_pixels=int(data.get("crop_max_pixels", 4_000_000)),
            asset_base_url=data.get("asset_base_url"),
            max_generate_images=int(data.get("max_generate_images", 6)),
            batch_concurrency=max(1, int(data.get("batch_concurrency", 4))),
            history_limit=int(data.get("history_limit", 5)),
            default_model=data.get("default_model"),
            default_provider=data.get("default_provider"),
        )

    @classmethod
    def load(cls, path: Path | None = None) -> EngineSettings:
        """Load settings from file; defaults when missing or unreadable."""
        if path is None:
            path = default_config_dir() / "engine.json"

        if not path.exists():
            return cls()

        try:
            with open(path) as f:
                return cls.from_dict(json.load(f))
        except (OSError, ValueError, TypeError) as e:
            logger.warning("Failed to load engine settings from %s: %s", path, e)
            return cls()

    def save(self, path: Path | None = None) -> None:
        """Save settings to file."""
        if path is None:
            path = default_config_dir() / "engine.json"

        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(self.to_dict(), f, indent=2)
