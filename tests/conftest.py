from __future__ import annotations

import sys
from io import BytesIO
from pathlib import Path

# Make `src/` importable without an editable install
sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

import pytest
from PIL import Image

from ai_flow_studio.core.data_types import MediaRef
from ai_flow_studio.core.errors import BackendError
from ai_flow_studio.core.execution import Backends, ExecutionOrchestrator
from ai_flow_studio.core.polling import TaskPoller
from ai_flow_studio.core.resolver import LocalHandleStore, MediaFetcher
from ai_flow_studio.core.settings import EngineSettings
from ai_flow_studio.core.store import GraphStore
from ai_flow_studio.providers.base import (
    AssetStager,
    GenerationBackend,
    GenerationError,
    HistoryRecorder,
    JobState,
    JobStatus,
    VideoJobBackend,
)


def png_bytes(width: int = 8, height: int = 8, color=(255, 0, 0, 255)) -> bytes:
    """Encode a solid-color RGBA PNG."""
    buf = BytesIO()
    Image.new("RGBA", (width, height), color).save(buf, format="PNG")
    return buf.getvalue()


def png_data_uri(width: int = 8, height: int = 8, color=(255, 0, 0, 255)) -> str:
    return MediaRef.from_bytes(png_bytes(width, height, color)).value


class FakeGenerationBackend(GenerationBackend):
    """Records calls; call N (1-based) fails if N is in ``fail_calls``."""

    def __init__(self, fail_calls=(), fail_all: bool = False):
        self.calls: list[tuple] = []
        self.fail_calls = set(fail_calls)
        self.fail_all = fail_all

    def _next(self, method: str, prompt: str, images) -> str:
        self.calls.append((method, prompt, images))
        n = len(self.calls)
        if self.fail_all or n in self.fail_calls:
            raise GenerationError(f"boom {n}")
        return f"https://cdn.test/{method}-{n}.png"

    @property
    def methods(self) -> list[str]:
        return [c[0] for c in self.calls]

    async def create(self, prompt, options):
        return self._next("create", prompt, [])

    async def edit(self, prompt, image, options):
        return self._next("edit", prompt, [image])

    async def blend(self, prompt, images, options):
        return self._next("blend", prompt, list(images))

    async def analyze(self, prompt, image, options):
        self.calls.append(("analyze", prompt, [image]))
        if self.fail_all:
            raise GenerationError("analysis failed")
        return "A red square."


class FakeVideoBackend(VideoJobBackend):
    """Returns the scripted statuses in order, repeating the last one."""

    def __init__(self, provider_id: str, statuses: list[JobStatus] | None = None):
        self.provider_id = provider_id
        self.statuses = statuses or [
            JobStatus(JobState.PROCESSING),
            JobStatus(
                JobState.SUCCEEDED,
                result_url="https://cdn.test/clip.mp4",
                thumbnail_url="https://cdn.test/clip.jpg",
            ),
        ]
        self.submitted: list[tuple] = []
        self.queries = 0

    async def submit(self, prompt, images, options):
        self.submitted.append((prompt, list(images), options))
        return f"task-{len(self.submitted)}"

    async def query(self, job_id):
        status = self.statuses[min(self.queries, len(self.statuses) - 1)]
        self.queries += 1
        if isinstance(status, Exception):
            raise status
        return status


class FakeStager(AssetStager):
    def __init__(self):
        self.staged: list[tuple[bytes, str]] = []

    async def stage(self, data, content_type="image/png"):
        self.staged.append((data, content_type))
        return f"https://cdn.test/staged-{len(self.staged)}.png"


class FakeRecorder(HistoryRecorder):
    def __init__(self, fail: bool = False):
        self.entries = []
        self.fail = fail

    async def record(self, entry):
        if self.fail:
            raise BackendError("history service down")
        self.entries.append(entry)
        return entry.url


async def no_sleep(_seconds: float) -> None:
    return None


@pytest.fixture
def store() -> GraphStore:
    return GraphStore()


@pytest.fixture
def settings() -> EngineSettings:
    return EngineSettings(poll_interval=0.0, poll_max_attempts=5)


@pytest.fixture
def local_store() -> LocalHandleStore:
    return LocalHandleStore()


@pytest.fixture
def fetcher(local_store) -> MediaFetcher:
    return MediaFetcher(local_store)


@pytest.fixture
def generation() -> FakeGenerationBackend:
    return FakeGenerationBackend()


@pytest.fixture
def stager() -> FakeStager:
    return FakeStager()


@pytest.fixture
def recorder() -> FakeRecorder:
    return FakeRecorder()


@pytest.fixture
def video_backends() -> dict[str, FakeVideoBackend]:
    return {
        pid: FakeVideoBackend(pid)
        for pid in ("kling", "vidu", "doubao", "sora2", "wan26", "wan2R2V")
    }


@pytest.fixture
def backends(generation, stager, recorder, video_backends) -> Backends:
    return Backends(
        generation=generation,
        video=dict(video_backends),
        stager=stager,
        history=recorder,
    )


@pytest.fixture
def orchestrator(store, backends, settings, fetcher) -> ExecutionOrchestrator:
    def poller_factory(backend):
        return TaskPoller(
            backend,
            interval=settings.poll_interval,
            max_attempts=settings.poll_max_attempts,
            sleep=no_sleep,
        )

    return ExecutionOrchestrator(
        store,
        backends,
        settings,
        fetcher=fetcher,
        poller_factory=poller_factory,
    )
