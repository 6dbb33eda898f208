"""
Generation Backends.

This package provides the contracts the engine calls and the HTTP client
for the flow backend service:
- base: GenerationBackend, VideoJobBackend, AssetStager, HistoryRecorder
- registry: Backend configuration and video provider specs
- flow_api: aiohttp client implementing every contract

Usage:
    from ai_flow_studio.providers import get_registry, FlowApiClient

    registry = get_registry()
    registry.load_config()

    client = FlowApiClient(registry.get_config())
"""

from ai_flow_studio.providers.base import (
    AssetStager,
    AuthenticationError,
    GenerationBackend,
    GenerationError,
    GenerationOptions,
    HistoryEntry,
    HistoryRecorder,
    JobState,
    JobStatus,
    ProviderConfig,
    ProviderError,
    RateLimitError,
    VideoJobBackend,
    VideoJobOptions,
)

from ai_flow_studio.providers.registry import (
    BUILTIN_VIDEO_PROVIDERS,
    FLOW_API,
    ProviderRegistry,
    VideoProviderSpec,
    get_registry,
    get_video_spec,
)

from ai_flow_studio.providers.flow_api import FlowApiClient, FlowVideoBackend


__all__ = [
    # Contracts
    "AssetStager",
    "GenerationBackend",
    "HistoryRecorder",
    "VideoJobBackend",
    # Data
    "GenerationOptions",
    "HistoryEntry",
    "JobState",
    "JobStatus",
    "ProviderConfig",
    "VideoJobOptions",
    # Exceptions
    "ProviderError",
    "AuthenticationError",
    "RateLimitError",
    "GenerationError",
    # Registry
    "BUILTIN_VIDEO_PROVIDERS",
    "FLOW_API",
    "ProviderRegistry",
    "VideoProviderSpec",
    "get_registry",
    "get_video_spec",
    # Clients
    "FlowApiClient",
    "FlowVideoBackend",
]
