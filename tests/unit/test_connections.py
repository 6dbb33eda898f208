"""
Tests for connection validation and capacity policies.
"""

import pytest

from ai_flow_studio.core.connections import (
    COMPATIBILITY,
    CapacityMode,
    ConnectionRequest,
    can_accept_connection,
    connect,
    connect_or_raise,
    find_violations,
    input_ports,
    is_valid_connection,
    rule_for,
)
from ai_flow_studio.core.errors import ValidationError
from ai_flow_studio.core.graph import Edge, FlowGraph, Node
from ai_flow_studio.core.node_types import NodeKind


def _graph(*specs) -> FlowGraph:
    """Build a graph from (node_id, kind, data) tuples."""
    nodes = [Node.create(kind, data=data, node_id=nid) for nid, kind, data in specs]
    return FlowGraph(nodes)


def _req(source, source_port, target, target_port):
    return ConnectionRequest(source, source_port, target, target_port)


class TestValidation:

    def test_text_into_generate(self):
        graph = _graph(("t", NodeKind.TEXT_PROMPT, {}), ("g", NodeKind.GENERATE, {}))
        assert is_valid_connection(graph, _req("t", "text", "g", "text"))

    def test_self_loop_rejected(self):
        graph = _graph(("p", NodeKind.PROMPT_AGGREGATE, {}))
        assert not is_valid_connection(graph, _req("p", "text", "p", "text"))

    def test_missing_endpoint_rejected(self):
        graph = _graph(("t", NodeKind.TEXT_PROMPT, {}))
        assert not is_valid_connection(graph, _req("t", "text", "ghost", "text"))

    def test_image_into_text_port_rejected(self):
        graph = _graph(("i", NodeKind.IMAGE, {}), ("g", NodeKind.GENERATE, {}))
        assert not is_valid_connection(graph, _req("i", "img", "g", "text"))

    def test_unknown_target_port_rejected(self):
        graph = _graph(("t", NodeKind.TEXT_PROMPT, {}), ("g", NodeKind.GENERATE, {}))
        assert not is_valid_connection(graph, _req("t", "text", "g", "video"))

    def test_unknown_source_port_rejected(self):
        graph = _graph(("i", NodeKind.IMAGE, {}), ("g", NodeKind.GENERATE, {}))
        assert not is_valid_connection(graph, _req("i", "nope", "g", "img"))

    def test_batch_slot_ports_are_outputs(self):
        graph = _graph(("b", NodeKind.GENERATE_4, {}), ("i", NodeKind.IMAGE, {}))
        assert is_valid_connection(graph, _req("b", "img3", "i", "img"))
        assert not is_valid_connection(graph, _req("b", "img5", "i", "img"))

    def test_collection_only_into_grid(self):
        graph = _graph(
            ("f", NodeKind.VIDEO_FRAME_EXTRACT, {}),
            ("grid", NodeKind.IMAGE_GRID, {}),
            ("g", NodeKind.GENERATE, {}),
        )
        assert is_valid_connection(graph, _req("f", "images", "grid", "img"))
        assert not is_valid_connection(graph, _req("f", "images", "g", "img"))
        assert is_valid_connection(graph, _req("f", "image", "g", "img"))

    def test_compose_accepts_only_video_port(self):
        graph = _graph(("k", NodeKind.KLING_VIDEO, {}), ("c", NodeKind.VIDEO_COMPOSE, {}))
        assert is_valid_connection(graph, _req("k", "video", "c", "video-2"))
        assert not is_valid_connection(graph, _req("k", "video", "c", "video-4"))

    def test_every_row_names_a_known_kind(self):
        for (kind, port), rule in COMPATIBILITY.items():
            assert isinstance(kind, NodeKind)
            assert rule.sources
        assert input_ports(NodeKind.GENERATE_REF) == ["text", "image1", "image2"]


class TestCapacity:

    def test_replace_single_swaps_edge(self):
        graph = _graph(
            ("t1", NodeKind.TEXT_PROMPT, {}),
            ("t2", NodeKind.TEXT_PROMPT, {}),
            ("g", NodeKind.GENERATE, {}),
        )
        graph = connect(graph, _req("t1", "text", "g", "text"))
        graph = connect(graph, _req("t2", "text", "g", "text"))
        edges = graph.incoming("g", "text")
        assert [e.source for e in edges] == ["t2"]

    def test_capped_reject_refuses_seventh_image(self):
        images = [(f"i{n}", NodeKind.IMAGE, {}) for n in range(7)]
        graph = _graph(*images, ("g", NodeKind.GENERATE, {}))
        for n in range(6):
            graph = connect_or_raise(graph, _req(f"i{n}", "img", "g", "img"))
        assert len(graph.incoming("g", "img")) == 6

        request = _req("i6", "img", "g", "img")
        assert not can_accept_connection(graph, request)
        with pytest.raises(ValidationError):
            connect_or_raise(graph, request)
        assert connect(graph, request) is graph

    def test_capped_evict_drops_oldest(self):
        images = [(f"i{n}", NodeKind.IMAGE, {}) for n in range(3)]
        graph = _graph(*images, ("d", NodeKind.DOUBAO_VIDEO, {}))
        for n in range(3):
            graph = connect(graph, _req(f"i{n}", "img", "d", "image"))
        assert [e.source for e in graph.incoming("d", "image")] == ["i1", "i2"]

    def test_append_ordered_keeps_order(self):
        texts = [(f"t{n}", NodeKind.TEXT_PROMPT, {}) for n in range(3)]
        graph = _graph(*texts, ("p", NodeKind.GENERATE_PRO, {}))
        for n in (2, 0, 1):
            graph = connect(graph, _req(f"t{n}", "text", "p", "text"))
        assert [e.source for e in graph.incoming("p", "text")] == ["t2", "t0", "t1"]
        assert rule_for(NodeKind.GENERATE_PRO, "text").policy.mode == CapacityMode.APPEND_ORDERED

    def test_duplicate_is_noop(self):
        graph = _graph(("i", NodeKind.IMAGE, {}), ("g", NodeKind.GENERATE, {}))
        graph = connect(graph, _req("i", "img", "g", "img"))
        again = connect_or_raise(graph, _req("i", "img", "g", "img"))
        assert again is graph
        assert can_accept_connection(graph, _req("i", "img", "g", "img"))

    def test_image_display_receives_source_image(self):
        graph = _graph(
            ("g", NodeKind.GENERATE, {"imageData": "https://cdn.test/a.png"}),
            ("show", NodeKind.IMAGE, {}),
        )
        graph = connect(graph, _req("g", "img", "show", "img"))
        assert graph.get_node("show").get("imageData") == "https://cdn.test/a.png"

    def test_ref_ports_are_independent(self):
        graph = _graph(
            ("a", NodeKind.IMAGE, {}),
            ("b", NodeKind.IMAGE, {}),
            ("r", NodeKind.GENERATE_REF, {}),
        )
        graph = connect(graph, _req("a", "img", "r", "image1"))
        graph = connect(graph, _req("b", "img", "r", "image2"))
        assert len(graph.incoming("r")) == 2


class TestFindViolations:

    def test_clean_graph(self):
        graph = _graph(("t", NodeKind.TEXT_PROMPT, {}), ("g", NodeKind.GENERATE, {}))
        graph = connect(graph, _req("t", "text", "g", "text"))
        assert find_violations(graph) == []

    def test_reports_illegal_and_overfull_edges(self):
        graph = _graph(
            ("t1", NodeKind.TEXT_PROMPT, {}),
            ("t2", NodeKind.TEXT_PROMPT, {}),
            ("g", NodeKind.GENERATE, {}),
        )
        graph = graph.add_edge(Edge.create("t1", "text", "g", "text"))
        graph = graph.add_edge(Edge.create("t2", "text", "g", "text"))
        graph = graph.add_edge(Edge.create("g", "img", "g", "img"))
        problems = find_violations(graph)
        assert any("itself" in p for p in problems)
        assert any("exceeds capacity 1" in p for p in problems)
