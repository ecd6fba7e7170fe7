"""Tests for the Dinic max-flow graph."""

import pytest

from review_engine.services.assignment import FlowGraph


class TestFlowGraph:
    """Tests for FlowGraph."""

    def test_single_edge(self):
        """Test flow through one edge equals its capacity."""
        graph = FlowGraph(2)
        edge = graph.add_edge(0, 1, 7)

        assert graph.max_flow(0, 1) == 7
        assert graph.flow_on(edge) == 7
        assert graph.residual(edge) == 0

    def test_edge_indices_pair_with_reverse(self):
        """Test forward edges get even indices."""
        graph = FlowGraph(3)
        assert graph.add_edge(0, 1, 1) == 0
        assert graph.add_edge(1, 2, 1) == 2

    def test_bottleneck(self):
        """Test the flow is limited by the smallest cut."""
        graph = FlowGraph(4)
        graph.add_edge(0, 1, 10)
        graph.add_edge(1, 2, 3)
        graph.add_edge(2, 3, 10)

        assert graph.max_flow(0, 3) == 3

    def test_cross_edge(self):
        """Test a diamond with a cross edge still routes both units."""
        graph = FlowGraph(4)
        graph.add_edge(0, 1, 1)
        graph.add_edge(0, 2, 1)
        graph.add_edge(1, 2, 1)
        graph.add_edge(1, 3, 1)
        graph.add_edge(2, 3, 1)

        assert graph.max_flow(0, 3) == 2

    def test_classic_network(self):
        """Test the textbook six-node network (max flow 23)."""
        graph = FlowGraph(6)
        for source, target, capacity in [
            (0, 1, 16),
            (0, 2, 13),
            (1, 2, 10),
            (2, 1, 4),
            (1, 3, 12),
            (3, 2, 9),
            (2, 4, 14),
            (4, 3, 7),
            (3, 5, 20),
            (4, 5, 4),
        ]:
            graph.add_edge(source, target, capacity)

        assert graph.max_flow(0, 5) == 23

    def test_bipartite_matching(self):
        """Test unit-capacity bipartite matching with per-side quotas."""
        # source 0, left 1-3, right 4-6, sink 7
        graph = FlowGraph(8)
        for left in (1, 2, 3):
            graph.add_edge(0, left, 2)
        middle = []
        for left in (1, 2, 3):
            for right in (4, 5, 6):
                if right - left != 3:
                    middle.append(graph.add_edge(left, right, 1))
        for right in (4, 5, 6):
            graph.add_edge(right, 7, 2)

        assert graph.max_flow(0, 7) == 6
        assert all(graph.flow_on(edge) == 1 for edge in middle)

    def test_disconnected_sink(self):
        """Test no path gives zero flow."""
        graph = FlowGraph(3)
        graph.add_edge(0, 1, 5)

        assert graph.max_flow(0, 2) == 0

    def test_source_equals_sink(self):
        """Test a degenerate query returns zero."""
        graph = FlowGraph(2)
        graph.add_edge(0, 1, 5)

        assert graph.max_flow(0, 0) == 0

    def test_deterministic(self):
        """Test identical graphs route identical flows."""

        def build():
            graph = FlowGraph(6)
            edges = [
                graph.add_edge(0, 1, 2),
                graph.add_edge(0, 2, 2),
                graph.add_edge(1, 3, 1),
                graph.add_edge(1, 4, 1),
                graph.add_edge(2, 3, 1),
                graph.add_edge(2, 4, 1),
                graph.add_edge(3, 5, 2),
                graph.add_edge(4, 5, 2),
            ]
            graph.max_flow(0, 5)
            return [graph.flow_on(edge) for edge in edges]

        assert build() == build()

    def test_rejects_bad_input(self):
        """Test invalid nodes and capacities raise."""
        graph = FlowGraph(2)
        with pytest.raises(IndexError):
            graph.add_edge(0, 2, 1)
        with pytest.raises(ValueError, match="capacity"):
            graph.add_edge(0, 1, -1)
        with pytest.raises(ValueError, match="node_count"):
            FlowGraph(-1)
