"""
Execution Engine - Runs a single node against the generation backends.

A run reads the current snapshot once, resolves the node's inputs,
dispatches to the right backend call and writes status and results back
through the GraphStore. Every failure is converted into
``status="failed"`` plus an ``error`` message on the node; ``run_node``
itself only raises on cancellation.
"""

from __future__ import annotations

import asyncio
import copy
import logging
import time
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Awaitable, Callable

from ai_flow_studio.core.data_types import MediaKind, MediaRef, normalize_media_ref
from ai_flow_studio.core.errors import (
    BackendError,
    FlowError,
    MissingInputError,
    PartialBatchFailure,
)
from ai_flow_studio.core.graph import Node, NodeStatus
from ai_flow_studio.core.node_types import NodeKind
from ai_flow_studio.core.polling import TaskPoller
from ai_flow_studio.core.resolver import (
    InputResolver,
    MediaFetcher,
    stored_image_ref,
)
from ai_flow_studio.core.settings import EngineSettings
from ai_flow_studio.core.store import GraphStore
from ai_flow_studio.core.transforms import (
    compose_grid,
    parse_storyboard,
    split_rects_by_grid,
)
from ai_flow_studio.nodes.generation import BATCH_SLOTS
from ai_flow_studio.nodes.image import IMAGE_SPLIT_MAX_OUTPUTS
from ai_flow_studio.nodes.text import STORYBOARD_MAX_OUTPUTS
from ai_flow_studio.nodes.video import COMPOSE_VIDEO_INPUTS
from ai_flow_studio.providers.base import (
    AssetStager,
    GenerationBackend,
    GenerationOptions,
    HistoryEntry,
    HistoryRecorder,
    VideoJobBackend,
    VideoJobOptions,
)
from ai_flow_studio.providers.registry import ProviderRegistry, VideoProviderSpec


logger = logging.getLogger(__name__)


class BatchMode(Enum):
    """How the slots of a multi-output node are scheduled."""
    SEQUENTIAL = auto()   # One slot at a time, in slot order
    CONCURRENT = auto()   # All slots in flight, bounded by batch_concurrency


# Nodes that hold data but never run
PASSIVE_KINDS = frozenset({
    NodeKind.TEXT_PROMPT,
    NodeKind.PROMPT_AGGREGATE,
    NodeKind.TEXT_NOTE,
    NodeKind.IMAGE,
    NodeKind.IMAGE_CROP,
    NodeKind.VIDEO_FRAME_EXTRACT,
})

SINGLE_GENERATE_KINDS = frozenset({
    NodeKind.GENERATE,
    NodeKind.GENERATE_PRO,
    NodeKind.GENERATE_REF,
})

BATCH_MODES = {
    NodeKind.GENERATE_4: BatchMode.SEQUENTIAL,
    NodeKind.GENERATE_PRO_4: BatchMode.CONCURRENT,
}

VIDEO_KINDS = frozenset({
    NodeKind.KLING_VIDEO,
    NodeKind.VIDU_VIDEO,
    NodeKind.DOUBAO_VIDEO,
    NodeKind.SORA2_VIDEO,
    NodeKind.WAN26_VIDEO,
    NodeKind.VIDEO_COMPOSE,
})


@dataclass
class Backends:
    """The remote services a run may call."""
    generation: GenerationBackend | None = None
    video: dict[str, VideoJobBackend] = field(default_factory=dict)
    stager: AssetStager | None = None
    history: HistoryRecorder | None = None


@dataclass
class RunOutcome:
    """What happened to one run of one node."""
    node_id: str
    status: NodeStatus
    error: str | None = None
    result: dict[str, Any] = field(default_factory=dict)
    partial_failure: PartialBatchFailure | None = None
    started_at: float = field(default_factory=time.time)
    finished_at: float | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == NodeStatus.SUCCEEDED

    @property
    def duration(self) -> float:
        if self.finished_at is None:
            return 0.0
        return self.finished_at - self.started_at


@dataclass
class _RunResult:
    patch: dict[str, Any]
    media: list[str] = field(default_factory=list)
    media_type: str = "image"
    prompt: str = ""
    partial_failure: PartialBatchFailure | None = None


PollerFactory = Callable[[VideoJobBackend], TaskPoller]
_Runner = Callable[[Node, InputResolver], Awaitable[_RunResult]]


def push_history(
    history: Any,
    entry: dict[str, Any],
    limit: int,
) -> list[dict[str, Any]]:
    """Put ``entry`` first, drop older entries with the same URL, cap at ``limit``."""
    items = [entry]
    for item in history or []:
        if not hasattr(item, "get") or item.get("url") == entry.get("url"):
            continue
        items.append(dict(item))
    return items[:max(limit, 1)]


class ExecutionOrchestrator:
    """
    Turns "run this node" into backend calls and graph writes.

    Args:
        store: Graph store to read snapshots from and write results to
        backends: Remote services
        settings: Engine settings
        fetcher: Fetches bytes for staging and local transforms
        poller_factory: Builds the TaskPoller for a video backend
        providers: Registry holding video provider specs
    """

    def __init__(
        self,
        store: GraphStore,
        backends: Backends,
        settings: EngineSettings | None = None,
        fetcher: MediaFetcher | None = None,
        poller_factory: PollerFactory | None = None,
        providers: ProviderRegistry | None = None,
    ):
        self.store = store
        self.backends = backends
        self.settings = settings or EngineSettings()
        self.fetcher = fetcher or MediaFetcher()
        self.providers = providers or ProviderRegistry.instance()
        self._poller_factory = poller_factory or self._default_poller
        self._active: set[str] = set()

        self._runners: dict[NodeKind, _Runner] = {
            NodeKind.GENERATE: self._run_single,
            NodeKind.GENERATE_PRO: self._run_single,
            NodeKind.GENERATE_REF: self._run_single,
            NodeKind.GENERATE_4: self._run_batch,
            NodeKind.GENERATE_PRO_4: self._run_batch,
            NodeKind.ANALYSIS: self._run_analysis,
            NodeKind.STORYBOARD_SPLIT: self._run_storyboard,
            NodeKind.IMAGE_SPLIT: self._run_split,
            NodeKind.IMAGE_GRID: self._run_grid,
        }
        for kind in VIDEO_KINDS:
            self._runners[kind] = self._run_video

    def _default_poller(self, backend: VideoJobBackend) -> TaskPoller:
        return TaskPoller(
            backend,
            interval=self.settings.poll_interval,
            max_attempts=self.settings.poll_max_attempts,
        )

    @property
    def runnable_kinds(self) -> frozenset[NodeKind]:
        return frozenset(self._runners)

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def can_run(self, node_id: str) -> bool:
        """Whether a run could start now without failing its input guard."""
        node = self.store.graph.get_node(node_id)
        if node is None or node.kind not in self._runners or node_id in self._active:
            return False
        resolver = InputResolver(self.store.graph, self.fetcher, self.settings)
        return self.missing_input(node, resolver) is None

    def missing_input(self, node: Node, resolver: InputResolver) -> str | None:
        """
        Reason a node cannot run, judged from connections and text alone.

        Image contents are not fetched here; a connected image that later
        resolves to nothing still fails the run.
        """
        graph = resolver.graph
        kind = node.kind

        if kind in SINGLE_GENERATE_KINDS or kind in BATCH_MODES:
            if not self._prompt_for(node, resolver):
                return "Prompt is empty: connect a text node or enter a prompt"
            return None

        if kind == NodeKind.ANALYSIS:
            if not graph.incoming(node.id, "img"):
                return "Connect an image to analyze"
            return None

        if kind == NodeKind.STORYBOARD_SPLIT:
            if not self._storyboard_text(node, resolver):
                return "Input text is empty"
            return None

        if kind in (NodeKind.IMAGE_SPLIT, NodeKind.IMAGE_GRID):
            if kind == NodeKind.IMAGE_SPLIT and node.get("inputImage"):
                return None
            if not graph.incoming(node.id, "img"):
                return "Connect an image first"
            return None

        if kind in VIDEO_KINDS:
            spec = self.providers.video_spec(kind)
            if spec is None:
                return f"No video provider for {kind.value}"
            if spec.requires_video and not self._compose_videos(node, resolver):
                return "Connect at least one video"
            image_edges = min(len(graph.incoming(node.id, "image")), spec.max_images)
            if not self._prompt_for(node, resolver) and not spec.prompt_optional(image_edges):
                return "Prompt is empty: connect a text node or enter a prompt"
            return None

        return None

    async def run_nodes(self, node_ids: list[str]) -> list[RunOutcome]:
        """Run several nodes concurrently; outcomes are in input order."""
        return list(await asyncio.gather(*(self.run_node(nid) for nid in node_ids)))

    async def run_node(self, node_id: str) -> RunOutcome:
        """
        Run one node to completion.

        Returns:
            The outcome; node failures are reported here, never raised
        """
        graph = self.store.graph
        node = graph.get_node(node_id)
        if node is None:
            return self._finish(RunOutcome(node_id, NodeStatus.FAILED, error="Node not found"))

        runner = self._runners.get(node.kind)
        if runner is None:
            return self._finish(RunOutcome(
                node_id, node.status, error=f"{node.kind.value} nodes do not run",
            ))

        if node_id in self._active:
            return self._finish(RunOutcome(
                node_id, NodeStatus.RUNNING, error="Node is already running",
            ))

        resolver = InputResolver(graph, self.fetcher, self.settings)
        outcome = RunOutcome(node_id, NodeStatus.RUNNING)

        reason = self.missing_input(node, resolver)
        if reason is not None:
            logger.info("Not running %s (%s): %s", node_id, node.kind.value, reason)
            return self._fail(outcome, reason)

        self._active.add(node_id)
        logger.info("Running %s (%s)", node_id, node.kind.value)
        self.store.patch_node_data(node_id, {"status": NodeStatus.RUNNING.value, "error": None})

        try:
            result = await runner(node, resolver)
        except FlowError as e:
            logger.info("Run of %s failed: %s", node_id, e)
            return self._fail(outcome, str(e))
        except Exception as e:
            logger.exception("Unexpected error running %s", node_id)
            return self._fail(outcome, str(e) or type(e).__name__)
        finally:
            self._active.discard(node_id)

        patch = dict(result.patch)
        patch["status"] = NodeStatus.SUCCEEDED.value
        patch["error"] = None
        self.store.patch_node_data(node_id, patch)
        self._propagate(node_id)
        await self._record_history(node, result)

        outcome.status = NodeStatus.SUCCEEDED
        outcome.result = copy.deepcopy(result.patch)
        outcome.partial_failure = result.partial_failure
        logger.info("Run of %s succeeded", node_id)
        return self._finish(outcome)

    # -------------------------------------------------------------------------
    # Outcome helpers
    # -------------------------------------------------------------------------

    def _fail(self, outcome: RunOutcome, message: str) -> RunOutcome:
        # Result fields from an earlier success are left untouched
        self.store.patch_node_data(
            outcome.node_id,
            {"status": NodeStatus.FAILED.value, "error": message},
        )
        outcome.status = NodeStatus.FAILED
        outcome.error = message
        return self._finish(outcome)

    @staticmethod
    def _finish(outcome: RunOutcome) -> RunOutcome:
        outcome.finished_at = time.time()
        return outcome

    def _propagate(self, node_id: str, source_port: str | None = None) -> None:
        """Copy a node's fresh images into connected display nodes."""
        graph = self.store.graph
        node = graph.get_node(node_id)
        if node is None:
            return
        for edge in graph.outgoing(node_id, source_port):
            target = graph.get_node(edge.target)
            if target is None or target.kind != NodeKind.IMAGE:
                continue
            ref = stored_image_ref(node, edge.source_port, self.settings.asset_base_url)
            if ref is not None:
                self.store.patch_node_data(target.id, {"imageData": ref.value})

    async def _record_history(self, node: Node, result: _RunResult) -> None:
        recorder = self.backends.history
        if recorder is None:
            return
        for url in result.media:
            entry = HistoryEntry(
                node_id=node.id,
                node_kind=node.kind.value,
                url=url,
                prompt=result.prompt,
                media_type=result.media_type,
            )
            try:
                await recorder.record(entry)
            except Exception as e:
                logger.warning("Failed to record history for %s: %s", node.id, e)

    # -------------------------------------------------------------------------
    # Input helpers
    # -------------------------------------------------------------------------

    def _prompt_for(self, node: Node, resolver: InputResolver) -> str:
        own = node.get("prompt")
        own = own.strip() if isinstance(own, str) else ""

        if node.kind == NodeKind.GENERATE_PRO:
            texts = resolver.resolve_text_aggregate(node.id, "text")
            return "\n".join(texts) if texts else own

        text = resolver.resolve_text(node.id, "text") or own
        if node.kind == NodeKind.GENERATE:
            preset = node.get("presetPrompt")
            if isinstance(preset, str) and preset.strip() and text:
                return f"{preset.strip()} {text}"
        return text

    def _storyboard_text(self, node: Node, resolver: InputResolver) -> str:
        text = resolver.resolve_text(node.id, "text")
        if text:
            return text
        own = node.get("inputText")
        return own.strip() if isinstance(own, str) else ""

    async def _generation_images(self, node: Node, resolver: InputResolver) -> list[MediaRef]:
        if node.kind == NodeKind.GENERATE_REF:
            # Reference image goes first
            refs = [
                await resolver.resolve_input_image(node.id, "image2"),
                await resolver.resolve_input_image(node.id, "image1"),
            ]
            images = [ref for ref in refs if ref is not None]
        else:
            images = await resolver.resolve_images(node.id, "img")
        return images[:self.settings.max_generate_images]

    def _generation_options(self, node: Node) -> GenerationOptions:
        return GenerationOptions(
            model=node.get("model") or self.settings.default_model,
            aspect_ratio=node.get("aspectRatio"),
            image_size=node.get("imageSize"),
        )

    def _compose_videos(self, node: Node, resolver: InputResolver) -> list[str]:
        videos = []
        for index in range(1, COMPOSE_VIDEO_INPUTS + 1):
            url = resolver.resolve_video(node.id, f"video-{index}")
            if url:
                videos.append(url)
        return videos

    async def _stage(self, ref: MediaRef, required: bool) -> str:
        """
        Turn a reference into something a remote backend can read.

        Remote URLs pass through. Local handles are always uploaded;
        embedded bytes are uploaded when ``required`` and passed inline
        otherwise.
        """
        if ref.kind == MediaKind.REMOTE:
            return ref.value
        if ref.kind == MediaKind.EMBEDDED and not required:
            return ref.value
        stager = self.backends.stager
        if stager is None:
            raise BackendError("No asset stager configured for local media")
        data = await self.fetcher.fetch(ref)
        return await stager.stage(data, ref.mime_type)

    def _require_generation(self) -> GenerationBackend:
        if self.backends.generation is None:
            raise BackendError("No generation backend configured")
        return self.backends.generation

    async def _dispatch(self, prompt: str, images: list[str], options: GenerationOptions) -> str:
        """create / edit / blend by number of images."""
        backend = self._require_generation()
        if not images:
            result = await backend.create(prompt, options)
        elif len(images) == 1:
            result = await backend.edit(prompt, images[0], options)
        else:
            result = await backend.blend(prompt, images, options)
        if not result:
            raise BackendError("Backend returned no image")
        return result

    # -------------------------------------------------------------------------
    # Runners
    # -------------------------------------------------------------------------

    async def _run_single(self, node: Node, resolver: InputResolver) -> _RunResult:
        prompt = self._prompt_for(node, resolver)
        refs = await self._generation_images(node, resolver)
        images = [await self._stage(ref, required=False) for ref in refs]
        logger.debug("Dispatching %s with %d image(s)", node.id, len(images))

        image = await self._dispatch(prompt, images, self._generation_options(node))
        history = push_history(
            node.get("history"),
            {"url": image, "prompt": prompt, "createdAt": time.time()},
            self.settings.history_limit,
        )
        return _RunResult({"imageData": image, "history": history}, media=[image], prompt=prompt)

    async def _run_batch(self, node: Node, resolver: InputResolver) -> _RunResult:
        mode = BATCH_MODES[node.kind]
        prompt = self._prompt_for(node, resolver)
        refs = await self._generation_images(node, resolver)
        images = [await self._stage(ref, required=False) for ref in refs]
        options = self._generation_options(node)

        if mode == BatchMode.SEQUENTIAL:
            try:
                count = int(node.get("count") or BATCH_SLOTS)
            except (TypeError, ValueError):
                count = BATCH_SLOTS
            count = min(max(count, 1), BATCH_SLOTS)
        else:
            count = BATCH_SLOTS

        results = [""] * count
        errors: dict[int, str] = {}

        async def run_slot(index: int) -> None:
            try:
                results[index] = await self._dispatch(prompt, images, options)
            except FlowError as e:
                errors[index] = str(e)
                return
            except Exception as e:
                logger.exception("Slot %d of %s failed", index + 1, node.id)
                errors[index] = str(e) or type(e).__name__
                return
            # Publish each slot as soon as it settles
            self.store.patch_node_data(node.id, {
                "images": list(results),
                "imageData": next(r for r in results if r),
            })
            self._propagate(node.id, f"img{index + 1}")

        if mode == BatchMode.SEQUENTIAL:
            for index in range(count):
                await run_slot(index)
        else:
            limit = asyncio.Semaphore(max(1, self.settings.batch_concurrency))

            async def bounded(index: int) -> None:
                async with limit:
                    await run_slot(index)

            await asyncio.gather(*(bounded(i) for i in range(count)))

        failure = PartialBatchFailure(errors, count) if errors else None
        if not any(results):
            raise BackendError(f"All generations failed: {failure.describe()}")

        if failure is not None:
            logger.info("Batch %s: %s", node.id, failure.describe())
        return _RunResult(
            {
                "images": list(results),
                "imageData": next(r for r in results if r),
                "slotErrors": {str(i + 1): msg for i, msg in sorted(errors.items())},
            },
            media=[r for r in results if r],
            prompt=prompt,
            partial_failure=failure,
        )

    async def _run_analysis(self, node: Node, resolver: InputResolver) -> _RunResult:
        ref = await resolver.resolve_input_image(node.id, "img")
        if ref is None:
            raise MissingInputError("Connected image is empty", port="img")
        prompt = node.get("prompt") or "Describe this image in detail."
        image = await self._stage(ref, required=False)
        text = await self._require_generation().analyze(
            prompt, image, self._generation_options(node)
        )
        return _RunResult({"text": text or ""}, prompt=prompt)

    async def _run_video(self, node: Node, resolver: InputResolver) -> _RunResult:
        spec: VideoProviderSpec = self.providers.video_spec(node.kind)
        backend = self.backends.video.get(spec.id)
        if backend is None:
            raise BackendError(f"No video backend configured for {spec.name}")

        prompt = self._prompt_for(node, resolver)
        videos = self._compose_videos(node, resolver) if spec.requires_video else []
        refs = (await resolver.resolve_images(node.id, "image"))[:spec.max_images]
        if not prompt and not spec.prompt_optional(len(refs)):
            raise MissingInputError("Prompt is empty: connect a text node or enter a prompt", port="text")

        images = [await self._stage(ref, required=True) for ref in refs]
        duration = node.get("duration")
        aspect_ratio = node.get("aspectRatio")
        if spec.options_in_prompt:
            prompt = _with_clip_suffix(prompt, duration, aspect_ratio)

        extra: dict[str, Any] = {}
        for key in ("mode", "style", "offPeak", "camerafixed", "watermark"):
            if node.get(key) is not None:
                extra[key] = node.get(key)
        if videos:
            extra["referenceVideos"] = videos
        options = VideoJobOptions(
            duration=duration,
            aspect_ratio=aspect_ratio,
            resolution=node.get("resolution"),
            model=node.get("model"),
            extra=extra,
        )

        job_id = await backend.submit(prompt, images, options)
        logger.info("Submitted %s job %s for %s", spec.id, job_id, node.id)
        self.store.patch_node_data(node.id, {"taskId": job_id})

        def on_update(status) -> None:
            self.store.patch_node_data(node.id, {"taskStatus": status.status.value})

        status = await self._poller_factory(backend).poll(job_id, on_update)
        if not status.result_url:
            raise BackendError(f"Task {job_id} finished without a video")

        history = push_history(
            node.get("history"),
            {
                "url": status.result_url,
                "thumbnail": status.thumbnail_url,
                "prompt": prompt,
                "taskId": job_id,
                "createdAt": time.time(),
            },
            self.settings.history_limit,
        )
        return _RunResult(
            {
                "videoUrl": status.result_url,
                "thumbnail": status.thumbnail_url,
                "history": history,
                "videoVersion": int(node.get("videoVersion") or 0) + 1,
            },
            media=[status.result_url],
            media_type="video",
            prompt=prompt,
        )

    async def _run_storyboard(self, node: Node, resolver: InputResolver) -> _RunResult:
        segments = parse_storyboard(self._storyboard_text(node, resolver))
        try:
            output_count = int(node.get("outputCount") or 1)
        except (TypeError, ValueError):
            output_count = 1
        patch: dict[str, Any] = {
            "segments": segments,
            "outputCount": min(STORYBOARD_MAX_OUTPUTS, max(output_count, len(segments))),
        }
        for index, segment in enumerate(segments[:STORYBOARD_MAX_OUTPUTS], start=1):
            patch[f"prompt{index}"] = segment
        return _RunResult(patch)

    async def _run_split(self, node: Node, resolver: InputResolver) -> _RunResult:
        base = await resolver.resolve_input_image(node.id, "img")
        if base is None:
            base = normalize_media_ref(node.get("inputImage"), self.settings.asset_base_url)
        if base is None:
            raise MissingInputError("Connected image is empty", port="img")

        image = await resolver.load_image(base, node.id)
        try:
            count = int(node.get("outputCount") or 9)
        except (TypeError, ValueError):
            count = 9
        count = min(max(count, 1), IMAGE_SPLIT_MAX_OUTPUTS)
        rects = split_rects_by_grid(image.width, image.height, count)
        return _RunResult({
            "inputImage": base.value,
            "splitRects": rects,
            "sourceWidth": image.width,
            "sourceHeight": image.height,
            "outputCount": count,
        })

    async def _run_grid(self, node: Node, resolver: InputResolver) -> _RunResult:
        refs = await resolver.resolve_images(node.id, "img")
        if not refs:
            raise MissingInputError("Connected images are empty", port="img")
        images = [await resolver.load_image(ref, node.id) for ref in refs]
        composite = compose_grid(
            images,
            background=node.get("backgroundColor") or "#ffffff",
            padding=int(node.get("padding") or 0),
            gap=int(node.get("gap") if node.get("gap") is not None else 16),
        )
        output = MediaRef.from_bytes(composite.to_png_bytes())
        return _RunResult({"outputImage": output.value}, media=[output.value])


def _with_clip_suffix(prompt: str, duration: Any, aspect_ratio: Any) -> str:
    parts = []
    if aspect_ratio:
        parts.append(f"aspect ratio {aspect_ratio}")
    if duration:
        parts.append(f"{duration} seconds")
    if not parts:
        return prompt
    suffix = ", ".join(parts)
    return f"{prompt}\n\n({suffix})" if prompt else f"({suffix})"
