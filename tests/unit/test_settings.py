"""
Tests for engine settings, the provider registry and the node catalog.
"""

import json

from ai_flow_studio.core.data_types import PortKind
from ai_flow_studio.core.node_types import NodeCategory, NodeKind, NodeRegistry
from ai_flow_studio.core.settings import EngineSettings
from ai_flow_studio.providers.base import ProviderConfig
from ai_flow_studio.providers.registry import (
    FLOW_API,
    ProviderRegistry,
    get_video_spec,
)


class TestEngineSettings:

    def test_round_trip(self, tmp_path):
        path = tmp_path / "engine.json"
        settings = EngineSettings(poll_interval=1.5, history_limit=3, asset_base_url="https://a.test")
        settings.save(path)
        loaded = EngineSettings.load(path)
        assert loaded == settings

    def test_missing_file_gives_defaults(self, tmp_path):
        assert EngineSettings.load(tmp_path / "nope.json") == EngineSettings()

    def test_corrupt_file_gives_defaults(self, tmp_path):
        path = tmp_path / "engine.json"
        path.write_text("{not json")
        assert EngineSettings.load(path) == EngineSettings()

    def test_partial_file(self):
        settings = EngineSettings.from_dict({"batch_concurrency": 0, "poll_max_attempts": "7"})
        assert settings.batch_concurrency == 1
        assert settings.poll_max_attempts == 7
        assert settings.crop_max_pixels == 4_000_000


class TestProviderRegistry:

    def test_singleton(self):
        assert ProviderRegistry() is ProviderRegistry.instance()

    def test_config_round_trip(self, tmp_path):
        path = tmp_path / "providers.json"
        registry = ProviderRegistry()
        registry.set_config(FLOW_API, ProviderConfig(api_key="k", base_url="https://api.test", timeout=30))
        registry.save_config(path)

        data = json.loads(path.read_text())
        assert data["providers"][FLOW_API]["base_url"] == "https://api.test"

        registry.set_config(FLOW_API, ProviderConfig())
        registry.load_config(path)
        config = registry.get_config(FLOW_API)
        assert config.api_key == "k"
        assert config.timeout == 30.0
        assert FLOW_API in registry.list_configured()

    def test_unknown_backend_gets_empty_config(self):
        assert ProviderRegistry().get_config("not-configured").api_key == ""

    def test_video_specs(self):
        kling = get_video_spec(NodeKind.KLING_VIDEO)
        assert kling.id == "kling"
        assert kling.max_images == 4
        assert kling.prompt_optional(1)
        vidu = get_video_spec(NodeKind.VIDU_VIDEO)
        assert not vidu.prompt_optional(1)
        assert vidu.prompt_optional(2)
        assert not get_video_spec(NodeKind.SORA2_VIDEO).prompt_optional(5)
        assert get_video_spec(NodeKind.VIDEO_COMPOSE).requires_video
        assert get_video_spec(NodeKind.GENERATE) is None


class TestNodeCatalog:

    def test_every_kind_is_registered(self):
        registry = NodeRegistry.instance()
        for kind in NodeKind:
            assert registry.get(kind) is not None, kind

    def test_lookup_by_wire_name(self):
        node_type = NodeRegistry.instance().get("storyboardSplit")
        assert node_type.kind == NodeKind.STORYBOARD_SPLIT
        assert node_type.has_output("prompt20")
        assert not node_type.has_output("prompt21")
        assert NodeRegistry.instance().get("nope") is None

    def test_producers(self):
        registry = NodeRegistry.instance()
        assert NodeKind.ANALYSIS in registry.kinds_producing(PortKind.TEXT)
        assert NodeKind.VIDEO_COMPOSE in registry.kinds_producing(PortKind.VIDEO)
        assert NodeKind.TEXT_NOTE not in registry.kinds_producing(PortKind.IMAGE)

    def test_categories(self):
        video = NodeRegistry.instance().list_by_category(NodeCategory.VIDEO)
        assert len(video) == 6
