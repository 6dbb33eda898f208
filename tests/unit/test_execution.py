"""
Tests for the execution orchestrator.

Backends are the in-memory fakes from conftest; nothing touches the network.
"""

import asyncio

import pytest

from conftest import FakeGenerationBackend, FakeRecorder, png_data_uri

from ai_flow_studio.core.connections import ConnectionRequest
from ai_flow_studio.core.execution import PASSIVE_KINDS, push_history
from ai_flow_studio.core.graph import NodeStatus
from ai_flow_studio.core.node_types import NodeKind
from ai_flow_studio.core.store import GraphEventType
from ai_flow_studio.providers.base import JobState, JobStatus


def _add(store, node_id, kind, **data):
    return store.create_node(kind, data=data, node_id=node_id)


def _link(store, source, source_port, target, target_port):
    assert store.connect(ConnectionRequest(source, source_port, target, target_port))


def _run(orchestrator, node_id):
    return asyncio.run(orchestrator.run_node(node_id))


def _prompted(store, kind, text="a cat", node_id="g"):
    _add(store, "t", NodeKind.TEXT_PROMPT, text=text)
    _add(store, node_id, kind)
    _link(store, "t", "text", node_id, "text")


class GatedBackend(FakeGenerationBackend):
    """Holds each create call until ``slots`` calls are in flight together."""

    def __init__(self, slots: int, timeout: float):
        super().__init__()
        self.slots = slots
        self.timeout = timeout
        self.in_flight = 0
        self.peak = 0
        self._all_started = None

    async def create(self, prompt, options):
        if self._all_started is None:
            self._all_started = asyncio.Event()
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        if self.in_flight >= self.slots:
            self._all_started.set()
        try:
            await asyncio.wait_for(self._all_started.wait(), self.timeout)
        finally:
            self.in_flight -= 1
        return await super().create(prompt, options)


class TestRunnerCoverage:

    def test_every_kind_runs_or_is_passive(self, orchestrator):
        runnable = orchestrator.runnable_kinds
        assert runnable.isdisjoint(PASSIVE_KINDS)
        assert runnable | PASSIVE_KINDS == set(NodeKind)

    def test_passive_node_does_not_run(self, store, orchestrator, generation):
        _add(store, "t", NodeKind.TEXT_PROMPT, text="hello")
        outcome = _run(orchestrator, "t")
        assert not outcome.succeeded
        assert "do not run" in outcome.error
        assert generation.calls == []

    def test_unknown_node(self, orchestrator):
        outcome = _run(orchestrator, "missing")
        assert outcome.status == NodeStatus.FAILED


class TestGenerateDispatch:

    def test_text_only_creates(self, store, orchestrator, generation, recorder):
        _prompted(store, NodeKind.GENERATE)
        outcome = _run(orchestrator, "g")

        assert outcome.succeeded
        assert generation.methods == ["create"]
        node = store.graph.get_node("g")
        assert node.status == NodeStatus.SUCCEEDED
        assert node.error is None
        assert node.get("imageData") == "https://cdn.test/create-1.png"
        assert node.get("history")[0]["url"] == "https://cdn.test/create-1.png"
        assert [e.url for e in recorder.entries] == ["https://cdn.test/create-1.png"]

    def test_one_image_edits(self, store, orchestrator, generation):
        _prompted(store, NodeKind.GENERATE)
        _add(store, "i", NodeKind.IMAGE, imageData="https://cdn.test/src.png")
        _link(store, "i", "img", "g", "img")

        assert _run(orchestrator, "g").succeeded
        assert generation.calls == [("edit", "a cat", ["https://cdn.test/src.png"])]

    def test_two_images_blend_in_edge_order(self, store, orchestrator, generation):
        _prompted(store, NodeKind.GENERATE)
        _add(store, "i1", NodeKind.IMAGE, imageData="https://cdn.test/1.png")
        _add(store, "i2", NodeKind.IMAGE, imageData="https://cdn.test/2.png")
        _link(store, "i1", "img", "g", "img")
        _link(store, "i2", "img", "g", "img")

        assert _run(orchestrator, "g").succeeded
        method, _, images = generation.calls[0]
        assert method == "blend"
        assert images == ["https://cdn.test/1.png", "https://cdn.test/2.png"]

    def test_reference_image_goes_first(self, store, orchestrator, generation):
        _prompted(store, NodeKind.GENERATE_REF, node_id="r")
        _add(store, "subject", NodeKind.IMAGE, imageData="https://cdn.test/subject.png")
        _add(store, "style", NodeKind.IMAGE, imageData="https://cdn.test/style.png")
        _link(store, "subject", "img", "r", "image1")
        _link(store, "style", "img", "r", "image2")

        assert _run(orchestrator, "r").succeeded
        assert generation.calls[0][2] == [
            "https://cdn.test/style.png",
            "https://cdn.test/subject.png",
        ]

    def test_preset_prompt_prefix(self, store, orchestrator, generation):
        _prompted(store, NodeKind.GENERATE)
        store.patch_node_data("g", {"presetPrompt": "Watercolor:"})
        assert _run(orchestrator, "g").succeeded
        assert generation.calls[0][1] == "Watercolor: a cat"

    def test_pro_aggregates_prompts(self, store, orchestrator, generation):
        _add(store, "a", NodeKind.TEXT_PROMPT, text="a fox")
        _add(store, "b", NodeKind.TEXT_PROMPT, text="in snow")
        _add(store, "p", NodeKind.GENERATE_PRO)
        _link(store, "a", "text", "p", "text")
        _link(store, "b", "text", "p", "text")
        assert _run(orchestrator, "p").succeeded
        assert generation.calls[0][1] == "a fox\nin snow"

    def test_embedded_image_passes_inline(self, store, orchestrator, generation, stager):
        data_uri = png_data_uri(4, 4)
        _prompted(store, NodeKind.GENERATE)
        _add(store, "i", NodeKind.IMAGE, imageData=data_uri)
        _link(store, "i", "img", "g", "img")

        assert _run(orchestrator, "g").succeeded
        assert generation.calls[0][2] == [data_uri]
        assert stager.staged == []

    def test_empty_prompt_fails_without_calling_backend(self, store, orchestrator, generation):
        _prompted(store, NodeKind.GENERATE, text="   ")
        outcome = _run(orchestrator, "g")

        assert outcome.status == NodeStatus.FAILED
        assert "Prompt is empty" in outcome.error
        assert generation.calls == []
        assert store.graph.get_node("g").status == NodeStatus.FAILED

    def test_backend_error_becomes_node_error(self, store, orchestrator, generation):
        generation.fail_all = True
        _prompted(store, NodeKind.GENERATE)
        outcome = _run(orchestrator, "g")

        node = store.graph.get_node("g")
        assert outcome.status == NodeStatus.FAILED
        assert node.error == "boom 1"
        assert node.get("imageData") is None

    def test_failure_keeps_previous_result(self, store, orchestrator, generation):
        _prompted(store, NodeKind.GENERATE)
        assert _run(orchestrator, "g").succeeded
        generation.fail_all = True
        assert not _run(orchestrator, "g").succeeded
        assert store.graph.get_node("g").get("imageData") == "https://cdn.test/create-1.png"

    def test_result_propagates_to_display_node(self, store, orchestrator):
        _prompted(store, NodeKind.GENERATE)
        _add(store, "show", NodeKind.IMAGE)
        _link(store, "g", "img", "show", "img")
        assert _run(orchestrator, "g").succeeded
        assert store.graph.get_node("show").get("imageData") == "https://cdn.test/create-1.png"

    def test_history_failure_does_not_fail_run(self, store, backends, orchestrator):
        backends.history = FakeRecorder(fail=True)
        orchestrator.backends = backends
        _prompted(store, NodeKind.GENERATE)
        assert _run(orchestrator, "g").succeeded

    def test_status_events(self, store, orchestrator):
        _prompted(store, NodeKind.GENERATE)
        seen = []
        store.subscribe(
            lambda e: seen.append(e.data["status"])
            if e.type == GraphEventType.STATUS_CHANGED else None
        )
        _run(orchestrator, "g")
        assert seen == ["running", "succeeded"]


class TestBatch:

    def test_one_failed_slot_is_partial(self, store, orchestrator, generation):
        generation.fail_calls = {2}
        _prompted(store, NodeKind.GENERATE_4)
        outcome = _run(orchestrator, "g")

        assert outcome.succeeded
        node = store.graph.get_node("g")
        images = node.get("images")
        assert len(images) == 4
        assert images[1] == ""
        assert all(images[i] for i in (0, 2, 3))
        assert node.get("imageData") == images[0]
        assert node.get("slotErrors") == {"2": "boom 2"}
        assert outcome.partial_failure.describe() == "1/4 slots failed (slot 2: boom 2)"

    def test_all_slots_fail(self, store, orchestrator, generation):
        generation.fail_all = True
        _prompted(store, NodeKind.GENERATE_4)
        outcome = _run(orchestrator, "g")

        assert outcome.status == NodeStatus.FAILED
        assert outcome.error.startswith("All generations failed")
        assert len(generation.calls) == 4

    def test_no_failures(self, store, orchestrator, generation):
        _prompted(store, NodeKind.GENERATE_PRO_4)
        outcome = _run(orchestrator, "g")
        assert outcome.succeeded
        assert outcome.partial_failure is None
        assert len(generation.calls) == 4
        assert store.graph.get_node("g").get("slotErrors") == {}

    def test_count_limits_sequential_slots(self, store, orchestrator, generation):
        _prompted(store, NodeKind.GENERATE_4)
        store.patch_node_data("g", {"count": 2})
        assert _run(orchestrator, "g").succeeded
        assert len(generation.calls) == 2
        assert len(store.graph.get_node("g").get("images")) == 2


    @pytest.mark.parametrize("kind", [NodeKind.GENERATE_4, NodeKind.GENERATE_PRO_4])
    def test_half_the_slots_fail(self, store, orchestrator, generation, kind):
        generation.fail_calls = {2, 4}
        _prompted(store, kind)
        outcome = _run(orchestrator, "g")

        assert outcome.succeeded
        node = store.graph.get_node("g")
        images = node.get("images")
        assert [bool(image) for image in images] == [True, False, True, False]
        assert node.get("slotErrors") == {"2": "boom 2", "4": "boom 4"}
        assert outcome.partial_failure.describe() == (
            "2/4 slots failed (slot 2: boom 2; slot 4: boom 4)"
        )

    def test_concurrent_slots_are_in_flight_together(self, store, orchestrator, backends):
        gated = GatedBackend(slots=4, timeout=1.0)
        backends.generation = gated
        _prompted(store, NodeKind.GENERATE_PRO_4)

        assert _run(orchestrator, "g").succeeded
        assert gated.peak == 4
        assert all(store.graph.get_node("g").get("images"))

    def test_sequential_slots_run_one_at_a_time(self, store, orchestrator, backends):
        gated = GatedBackend(slots=4, timeout=0.05)
        backends.generation = gated
        _prompted(store, NodeKind.GENERATE_4)

        outcome = _run(orchestrator, "g")
        # Each slot waits alone for peers that never arrive
        assert outcome.status == NodeStatus.FAILED
        assert gated.peak == 1

    def test_concurrent_slots_publish_as_they_settle(self, store, orchestrator, backends):
        backends.generation = GatedBackend(slots=4, timeout=1.0)
        _prompted(store, NodeKind.GENERATE_PRO_4)
        published = []

        def on_event(event):
            if event.type == GraphEventType.NODE_PATCHED and "slotErrors" not in event.data:
                if "images" in event.data:
                    status = store.graph.get_node("g").get("status")
                    published.append((status, sum(1 for i in event.data["images"] if i)))

        store.subscribe(on_event)
        assert _run(orchestrator, "g").succeeded
        assert published == [("running", 1), ("running", 2), ("running", 3), ("running", 4)]

    def test_outcome_is_detached_from_snapshot(self, store, orchestrator):
        _prompted(store, NodeKind.GENERATE_PRO_4)
        outcome = _run(orchestrator, "g")
        outcome.result["images"][0] = "tampered"
        assert store.graph.get_node("g").get("images")[0] != "tampered"
    def test_slot_feeds_display_node(self, store, orchestrator):
        _prompted(store, NodeKind.GENERATE_4)
        _add(store, "show", NodeKind.IMAGE)
        _link(store, "g", "img3", "show", "img")
        assert _run(orchestrator, "g").succeeded
        images = store.graph.get_node("g").get("images")
        assert store.graph.get_node("show").get("imageData") == images[2]


class TestAnalysis:

    def test_analysis_writes_text(self, store, orchestrator, generation):
        _add(store, "i", NodeKind.IMAGE, imageData="https://cdn.test/src.png")
        _add(store, "a", NodeKind.ANALYSIS)
        _link(store, "i", "img", "a", "img")
        assert _run(orchestrator, "a").succeeded
        assert store.graph.get_node("a").get("text") == "A red square."
        assert generation.calls[0][1] == "Describe this image in detail."

    def test_analysis_needs_image(self, store, orchestrator, generation):
        _add(store, "a", NodeKind.ANALYSIS)
        outcome = _run(orchestrator, "a")
        assert outcome.status == NodeStatus.FAILED
        assert generation.calls == []


class TestVideo:

    def test_image_is_staged_and_job_polled(self, store, orchestrator, stager, video_backends):
        _prompted(store, NodeKind.KLING_VIDEO, node_id="k")
        _add(store, "i", NodeKind.IMAGE, imageData=png_data_uri(4, 4))
        _link(store, "i", "img", "k", "image")

        outcome = _run(orchestrator, "k")

        assert outcome.succeeded
        backend = video_backends["kling"]
        prompt, images, options = backend.submitted[0]
        assert prompt == "a cat"
        assert images == ["https://cdn.test/staged-1.png"]
        assert options.duration == 5
        assert options.extra["mode"] == "std"
        assert len(stager.staged) == 1
        assert backend.queries == 2

        node = store.graph.get_node("k")
        assert node.get("taskId") == "task-1"
        assert node.get("videoUrl") == "https://cdn.test/clip.mp4"
        assert node.get("thumbnail") == "https://cdn.test/clip.jpg"
        assert node.get("videoVersion") == 1
        assert node.get("history")[0]["url"] == "https://cdn.test/clip.mp4"

    def test_prompt_optional_with_enough_images(self, store, orchestrator, video_backends):
        _add(store, "i", NodeKind.IMAGE, imageData="https://cdn.test/a.png")
        _add(store, "k", NodeKind.KLING_VIDEO)
        _link(store, "i", "img", "k", "image")
        assert _run(orchestrator, "k").succeeded
        assert video_backends["kling"].submitted[0][1] == ["https://cdn.test/a.png"]

    def test_prompt_required_without_images(self, store, orchestrator, video_backends):
        _add(store, "d", NodeKind.DOUBAO_VIDEO)
        outcome = _run(orchestrator, "d")
        assert outcome.status == NodeStatus.FAILED
        assert video_backends["doubao"].submitted == []

    def test_sora_options_go_into_prompt(self, store, orchestrator, video_backends):
        _prompted(store, NodeKind.SORA2_VIDEO, node_id="s")
        assert _run(orchestrator, "s").succeeded
        prompt = video_backends["sora2"].submitted[0][0]
        assert prompt == "a cat\n\n(aspect ratio 16:9, 10 seconds)"

    def test_failed_job(self, store, orchestrator, video_backends):
        video_backends["vidu"].statuses = [JobStatus(JobState.FAILED, error="content rejected")]
        _prompted(store, NodeKind.VIDU_VIDEO, node_id="v")
        outcome = _run(orchestrator, "v")
        assert outcome.status == NodeStatus.FAILED
        node = store.graph.get_node("v")
        assert node.error == "content rejected"
        assert node.get("taskId") == "task-1"

    def test_job_timeout(self, store, orchestrator, video_backends, settings):
        video_backends["wan26"].statuses = [JobStatus(JobState.PROCESSING)]
        _prompted(store, NodeKind.WAN26_VIDEO, node_id="w")
        outcome = _run(orchestrator, "w")
        assert outcome.status == NodeStatus.FAILED
        assert f"after {settings.poll_max_attempts}" in outcome.error
        assert video_backends["wan26"].queries == settings.poll_max_attempts

    def test_compose_sends_reference_videos(self, store, orchestrator, video_backends):
        _prompted(store, NodeKind.VIDEO_COMPOSE, node_id="c")
        _add(store, "k1", NodeKind.KLING_VIDEO, videoUrl="https://cdn.test/one.mp4")
        _add(store, "k2", NodeKind.VIDU_VIDEO, videoUrl="https://cdn.test/two.mp4")
        _link(store, "k1", "video", "c", "video-1")
        _link(store, "k2", "video", "c", "video-3")

        assert _run(orchestrator, "c").succeeded
        options = video_backends["wan2R2V"].submitted[0][2]
        assert options.extra["referenceVideos"] == [
            "https://cdn.test/one.mp4",
            "https://cdn.test/two.mp4",
        ]

    def test_compose_needs_a_video(self, store, orchestrator):
        _prompted(store, NodeKind.VIDEO_COMPOSE, node_id="c")
        outcome = _run(orchestrator, "c")
        assert outcome.status == NodeStatus.FAILED
        assert "video" in outcome.error


class TestLocalTransforms:

    def test_storyboard_split(self, store, orchestrator):
        script = "|**1**| Dawn over the city |\n|**2**| A cat wakes up |"
        _add(store, "s", NodeKind.STORYBOARD_SPLIT, inputText=script, outputCount=1)
        assert _run(orchestrator, "s").succeeded
        node = store.graph.get_node("s")
        assert len(node.get("segments")) == 2
        assert "Dawn" in node.get("prompt1")
        assert node.get("outputCount") == 2

    def test_image_split(self, store, orchestrator):
        _add(store, "i", NodeKind.IMAGE, imageData=png_data_uri(90, 60))
        _add(store, "s", NodeKind.IMAGE_SPLIT, outputCount=6)
        _link(store, "i", "img", "s", "img")
        assert _run(orchestrator, "s").succeeded
        node = store.graph.get_node("s")
        assert len(node.get("splitRects")) == 6
        assert (node.get("sourceWidth"), node.get("sourceHeight")) == (90, 60)

    def test_image_grid(self, store, orchestrator):
        _add(store, "a", NodeKind.IMAGE, imageData=png_data_uri(8, 8))
        _add(store, "b", NodeKind.IMAGE, imageData=png_data_uri(8, 8, (0, 0, 255, 255)))
        _add(store, "grid", NodeKind.IMAGE_GRID)
        _link(store, "a", "img", "grid", "img")
        _link(store, "b", "img", "grid", "img")
        assert _run(orchestrator, "grid").succeeded
        assert store.graph.get_node("grid").get("outputImage").startswith("data:image/png;base64,")


class TestConcurrency:

    def test_same_node_is_not_run_twice(self, store, orchestrator, backends):
        class SlowBackend(FakeGenerationBackend):
            async def create(self, prompt, options):
                await asyncio.sleep(0)
                return await super().create(prompt, options)

        slow = SlowBackend()
        backends.generation = slow
        _prompted(store, NodeKind.GENERATE)

        first, second = asyncio.run(orchestrator.run_nodes(["g", "g"]))
        assert first.succeeded
        assert second.error == "Node is already running"
        assert len(slow.calls) == 1

    def test_deleted_node_mid_run(self, store, orchestrator, backends):
        class DeletingBackend(FakeGenerationBackend):
            async def create(self, prompt, options):
                store.remove_node("g")
                return await super().create(prompt, options)

        backends.generation = DeletingBackend()
        _prompted(store, NodeKind.GENERATE)
        _run(orchestrator, "g")
        assert store.graph.get_node("g") is None


def test_push_history_dedupes_and_caps():
    history = [{"url": "b"}, {"url": "a"}, {"url": "c"}]
    result = push_history(history, {"url": "a"}, limit=3)
    assert [h["url"] for h in result] == ["a", "b", "c"]
    assert len(push_history(result, {"url": "d"}, limit=2)) == 2
