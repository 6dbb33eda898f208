"""
Provider Base - Contracts for the remote services the engine calls.

This module provides the foundation for all backends:
- GenerationBackend: Synchronous image create/edit/blend/analyze calls
- VideoJobBackend: Asynchronous video jobs (submit, then query)
- AssetStager: Uploads local bytes and returns a fetchable locator
- HistoryRecorder: Best-effort global history of generated results

Backends raise ProviderError subclasses; the orchestrator turns them into
node errors with the message shown verbatim.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ai_flow_studio.core.errors import BackendError


class ProviderError(BackendError):
    """Base exception for provider errors."""
    pass


class AuthenticationError(ProviderError):
    """API key invalid or missing."""
    pass


class RateLimitError(ProviderError):
    """Rate limit exceeded."""
    retry_after: float | None = None


class GenerationError(ProviderError):
    """Error during generation."""
    pass


class JobState(Enum):
    """Lifecycle of an asynchronous backend job."""
    QUEUED = "queued"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.SUCCEEDED, JobState.FAILED)

    @classmethod
    def parse(cls, raw: Any) -> JobState:
        """Map a backend status string onto a state; unknown means queued."""
        value = str(raw or "").strip().lower()
        return _JOB_STATE_ALIASES.get(value, JobState.QUEUED)


_JOB_STATE_ALIASES = {
    "queued": JobState.QUEUED,
    "pending": JobState.QUEUED,
    "submitted": JobState.QUEUED,
    "processing": JobState.PROCESSING,
    "running": JobState.PROCESSING,
    "in_progress": JobState.PROCESSING,
    "succeeded": JobState.SUCCEEDED,
    "success": JobState.SUCCEEDED,
    "completed": JobState.SUCCEEDED,
    "failed": JobState.FAILED,
    "failure": JobState.FAILED,
    "error": JobState.FAILED,
}


@dataclass
class JobStatus:
    """One observation of a backend job."""
    status: JobState
    result_url: str | None = None
    thumbnail_url: str | None = None
    error: str | None = None
    raw: dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


@dataclass
class GenerationOptions:
    """Per-call options for image generation."""
    model: str | None = None
    aspect_ratio: str | None = None
    image_size: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass
class VideoJobOptions:
    """Per-call options for video job submission."""
    duration: int | None = None
    aspect_ratio: str | None = None
    resolution: str | None = None
    model: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass
class HistoryEntry:
    """A generated result worth remembering across projects."""
    node_id: str
    node_kind: str
    url: str
    prompt: str = ""
    media_type: str = "image"
    created_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return {
            "nodeId": self.node_id,
            "nodeType": self.node_kind,
            "url": self.url,
            "prompt": self.prompt,
            "mediaType": self.media_type,
            "createdAt": self.created_at,
        }


@dataclass
class ProviderConfig:
    """Configuration for a backend."""
    api_key: str = ""
    enabled: bool = True
    base_url: str | None = None  # Override default URL
    default_model: str | None = None
    timeout: float = 120.0  # Seconds per HTTP request
    extra: dict[str, Any] = field(default_factory=dict)


class GenerationBackend(ABC):
    """
    Synchronous image generation service.

    Every method returns as soon as the remote call completes; image
    results are media reference strings (URL, data URI or bare base64).
    """

    @abstractmethod
    async def create(self, prompt: str, options: GenerationOptions) -> str:
        """Generate an image from text only."""
        ...

    @abstractmethod
    async def edit(self, prompt: str, image: str, options: GenerationOptions) -> str:
        """Edit a single source image."""
        ...

    @abstractmethod
    async def blend(self, prompt: str, images: list[str], options: GenerationOptions) -> str:
        """Blend several source images, in the given order."""
        ...

    @abstractmethod
    async def analyze(self, prompt: str, image: str, options: GenerationOptions) -> str:
        """Describe an image; returns text."""
        ...


class VideoJobBackend(ABC):
    """
    Asynchronous video generation service for one provider.

    ``submit`` returns a job id immediately; ``query`` reports progress.
    """

    provider_id: str = ""

    @abstractmethod
    async def submit(
        self,
        prompt: str,
        images: list[str],
        options: VideoJobOptions,
    ) -> str:
        """Start a job and return its id."""
        ...

    @abstractmethod
    async def query(self, job_id: str) -> JobStatus:
        """Report the current status of a job."""
        ...


class AssetStager(ABC):
    """Uploads bytes so a remote backend can fetch them."""

    @abstractmethod
    async def stage(self, data: bytes, content_type: str = "image/png") -> str:
        """Upload ``data`` and return a remote locator."""
        ...


class HistoryRecorder(ABC):
    """Best-effort recorder of generated results."""

    @abstractmethod
    async def record(self, entry: HistoryEntry) -> str | None:
        """Record ``entry``; returns a locator for the stored copy if any."""
        ...
