"""
Flow API Provider - HTTP client for the generation backend.

One service fronts every model: image generation, editing, blending and
analysis are synchronous JSON calls; video jobs are submitted to a
provider route and polled by task id. The same service accepts uploads
(staging) and the global image history.

Endpoints:
- POST /api/ai/generate-image, /edit-image, /blend-images, /analyze-image
- POST /api/ai/generate-video-provider
- GET  /api/ai/video-task/{provider}/{taskId}
- POST /api/uploads/image
- POST /api/global-image-history
"""

from __future__ import annotations

import logging
from typing import Any

import aiohttp

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
    RateLimitError,
    VideoJobBackend,
    VideoJobOptions,
)


logger = logging.getLogger(__name__)


class FlowApiClient(GenerationBackend, AssetStager, HistoryRecorder):
    """
    Client for the flow backend service.

    Usage:
        client = FlowApiClient(ProviderConfig(base_url="https://api.example.com", api_key="..."))
        url = await client.create("a red fox", GenerationOptions())
        kling = client.video_backend("kling")
    """

    id = "flow-api"
    name = "Flow API"
    base_url = "http://localhost:4000"

    def __init__(self, config: ProviderConfig):
        self.config = config
        if config.base_url:
            self.base_url = config.base_url.rstrip("/")

    @property
    def api_key(self) -> str:
        return self.config.api_key

    @property
    def is_configured(self) -> bool:
        return bool(self.base_url)

    def get_headers(self) -> dict[str, str]:
        """Get default headers for API requests."""
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _timeout(self) -> aiohttp.ClientTimeout:
        return aiohttp.ClientTimeout(total=self.config.timeout)

    # -------------------------------------------------------------------------
    # HTTP plumbing
    # -------------------------------------------------------------------------

    async def _post_json(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        url = f"{self.base_url}{path}"
        logger.debug("POST %s", url)
        async with aiohttp.ClientSession(timeout=self._timeout()) as session:
            async with session.post(url, json=body, headers=self.get_headers()) as resp:
                data = await self._read_json(resp)
                self._check_error(resp.status, data)
                return data

    async def _get_json(self, path: str) -> dict[str, Any]:
        url = f"{self.base_url}{path}"
        logger.debug("GET %s", url)
        async with aiohttp.ClientSession(timeout=self._timeout()) as session:
            async with session.get(url, headers=self.get_headers()) as resp:
                data = await self._read_json(resp)
                self._check_error(resp.status, data)
                return data

    @staticmethod
    async def _read_json(resp: aiohttp.ClientResponse) -> dict[str, Any]:
        try:
            data = await resp.json(content_type=None)
        except ValueError:
            text = await resp.text()
            return {"message": text[:500]} if text else {}
        return data if isinstance(data, dict) else {"data": data}

    def _check_error(self, status: int, data: dict) -> None:
        """Check for API errors."""
        if status == 401 or status == 403:
            raise AuthenticationError("Flow API rejected the credentials")
        elif status == 429:
            error = RateLimitError("Flow API rate limit exceeded")
            retry_after = data.get("retryAfter")
            error.retry_after = float(retry_after) if retry_after is not None else 60
            raise error
        elif status >= 400:
            error_msg = data.get("message") or data.get("error") or f"HTTP {status}"
            if isinstance(error_msg, list):
                error_msg = "; ".join(str(m) for m in error_msg)
            raise GenerationError(str(error_msg))

    @staticmethod
    def _options_body(options: GenerationOptions) -> dict[str, Any]:
        body: dict[str, Any] = {}
        if options.model:
            body["model"] = options.model
        if options.aspect_ratio:
            body["aspectRatio"] = options.aspect_ratio
        if options.image_size:
            body["imageSize"] = options.image_size
        if options.extra:
            body["providerOptions"] = dict(options.extra)
        return body

    @staticmethod
    def _image_from(data: dict[str, Any]) -> str:
        payload = data.get("data") if isinstance(data.get("data"), dict) else data
        image = payload.get("imageData") or payload.get("imageUrl") or payload.get("url")
        if not image:
            message = payload.get("textResponse") or "No image in response"
            raise GenerationError(message)
        return image

    # -------------------------------------------------------------------------
    # GenerationBackend
    # -------------------------------------------------------------------------

    async def create(self, prompt: str, options: GenerationOptions) -> str:
        body = {"prompt": prompt, **self._options_body(options)}
        return self._image_from(await self._post_json("/api/ai/generate-image", body))

    async def edit(self, prompt: str, image: str, options: GenerationOptions) -> str:
        body = {"prompt": prompt, "sourceImage": image, **self._options_body(options)}
        return self._image_from(await self._post_json("/api/ai/edit-image", body))

    async def blend(self, prompt: str, images: list[str], options: GenerationOptions) -> str:
        body = {"prompt": prompt, "sourceImages": list(images), **self._options_body(options)}
        return self._image_from(await self._post_json("/api/ai/blend-images", body))

    async def analyze(self, prompt: str, image: str, options: GenerationOptions) -> str:
        body = {"prompt": prompt, "sourceImage": image, **self._options_body(options)}
        data = await self._post_json("/api/ai/analyze-image", body)
        payload = data.get("data") if isinstance(data.get("data"), dict) else data
        return payload.get("text") or payload.get("analysis") or ""

    # -------------------------------------------------------------------------
    # AssetStager
    # -------------------------------------------------------------------------

    async def stage(self, data: bytes, content_type: str = "image/png") -> str:
        extension = content_type.split("/")[-1] or "bin"
        form = aiohttp.FormData()
        form.add_field(
            "file",
            data,
            filename=f"upload.{extension}",
            content_type=content_type,
        )
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        url = f"{self.base_url}/api/uploads/image"
        async with aiohttp.ClientSession(timeout=self._timeout()) as session:
            async with session.post(url, data=form, headers=headers) as resp:
                body = await self._read_json(resp)
                self._check_error(resp.status, body)
        locator = body.get("url") or body.get("key")
        if not locator:
            raise GenerationError("Upload response has no url")
        logger.debug("Staged %d bytes as %s", len(data), locator)
        return locator

    # -------------------------------------------------------------------------
    # HistoryRecorder
    # -------------------------------------------------------------------------

    async def record(self, entry: HistoryEntry) -> str | None:
        body = {
            "imageUrl": entry.url,
            "prompt": entry.prompt,
            "sourceType": entry.node_kind,
            "metadata": {"nodeId": entry.node_id, "mediaType": entry.media_type},
        }
        data = await self._post_json("/api/global-image-history", body)
        return data.get("imageUrl") or data.get("id")

    # -------------------------------------------------------------------------
    # Video
    # -------------------------------------------------------------------------

    def video_backend(self, provider_id: str) -> FlowVideoBackend:
        """A VideoJobBackend bound to one provider route."""
        return FlowVideoBackend(self, provider_id)

    def video_backends(self, provider_ids) -> dict[str, FlowVideoBackend]:
        return {pid: self.video_backend(pid) for pid in provider_ids}


class FlowVideoBackend(VideoJobBackend):
    """Video jobs for one provider, served by the flow backend."""

    def __init__(self, client: FlowApiClient, provider_id: str):
        self.client = client
        self.provider_id = provider_id

    async def submit(
        self,
        prompt: str,
        images: list[str],
        options: VideoJobOptions,
    ) -> str:
        body: dict[str, Any] = {
            "provider": self.provider_id,
            "prompt": prompt,
        }
        if images:
            body["referenceImages"] = list(images)
        if options.duration is not None:
            body["duration"] = options.duration
        if options.aspect_ratio:
            body["aspectRatio"] = options.aspect_ratio
        if options.resolution:
            body["resolution"] = options.resolution
        if options.model:
            body["model"] = options.model
        body.update(options.extra)

        data = await self.client._post_json("/api/ai/generate-video-provider", body)
        task_id = data.get("taskId") or data.get("id")
        if not task_id:
            raise GenerationError(data.get("error") or "No task id in response")
        return str(task_id)

    async def query(self, job_id: str) -> JobStatus:
        data = await self.client._get_json(
            f"/api/ai/video-task/{self.provider_id}/{job_id}"
        )
        return JobStatus(
            status=JobState.parse(data.get("status")),
            result_url=data.get("videoUrl"),
            thumbnail_url=data.get("thumbnailUrl"),
            error=data.get("error"),
            raw=data,
        )
