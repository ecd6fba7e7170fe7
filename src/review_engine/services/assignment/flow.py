"""Maximum flow over an index-addressed edge arena (Dinic's algorithm)."""

from __future__ import annotations

from collections import deque


class FlowGraph:
    """Directed capacity graph with integer nodes ``0 .. node_count - 1``.

    Edges live in parallel lists and are addressed by index. Every edge added
    with ``add_edge`` is stored at an even index ``i`` and its residual
    reverse edge at ``i ^ 1``, so the flow carried by an edge can be read
    back from its reverse edge's residual capacity.

    For a fixed insertion order and fixed capacities the computed flow is
    deterministic. Which edges saturate among several maximum flows depends
    on insertion order; callers wanting fairness shuffle before adding.
    """

    def __init__(self, node_count: int) -> None:
        if node_count < 0:
            msg = "node_count must be non-negative"
            raise ValueError(msg)
        self.node_count = node_count
        self._to: list[int] = []
        self._capacity: list[int] = []
        self._adjacency: list[list[int]] = [[] for _ in range(node_count)]

    def add_edge(self, source: int, target: int, capacity: int) -> int:
        """Add a directed edge and return its index."""
        self._check_node(source)
        self._check_node(target)
        if capacity < 0:
            msg = "capacity must be non-negative"
            raise ValueError(msg)

        index = len(self._to)
        self._to.append(target)
        self._capacity.append(capacity)
        self._adjacency[source].append(index)

        self._to.append(source)
        self._capacity.append(0)
        self._adjacency[target].append(index + 1)
        return index

    def flow_on(self, edge_index: int) -> int:
        """Flow currently carried by the edge at ``edge_index``."""
        return self._capacity[edge_index ^ 1]

    def residual(self, edge_index: int) -> int:
        return self._capacity[edge_index]

    def max_flow(self, source: int, sink: int) -> int:
        """Push the maximum flow from ``source`` to ``sink`` and return its value."""
        self._check_node(source)
        self._check_node(sink)
        if source == sink:
            return 0

        total = 0
        while True:
            level = self._build_levels(source, sink)
            if level[sink] < 0:
                return total
            cursor = [0] * self.node_count
            while True:
                pushed = self._augment(source, sink, level, cursor)
                if pushed == 0:
                    break
                total += pushed

    def _build_levels(self, source: int, sink: int) -> list[int]:
        """BFS distances from ``source`` over edges with residual capacity."""
        level = [-1] * self.node_count
        level[source] = 0
        queue = deque([source])
        while queue:
            node = queue.popleft()
            for edge in self._adjacency[node]:
                target = self._to[edge]
                if self._capacity[edge] > 0 and level[target] < 0:
                    level[target] = level[node] + 1
                    if target == sink:
                        return level
                    queue.append(target)
        return level

    def _augment(self, source: int, sink: int, level: list[int], cursor: list[int]) -> int:
        """Find one augmenting path in the level graph and push flow along it.

        Iterative DFS: ``path`` holds the edge indices from ``source`` to the
        current node and ``cursor[node]`` is the next adjacency slot to try,
        so dead ends are never revisited within one phase.
        """
        path: list[int] = []
        node = source
        while True:
            if node == sink:
                pushed = min(self._capacity[edge] for edge in path)
                for edge in path:
                    self._capacity[edge] -= pushed
                    self._capacity[edge ^ 1] += pushed
                return pushed

            edges = self._adjacency[node]
            advanced = False
            while cursor[node] < len(edges):
                edge = edges[cursor[node]]
                target = self._to[edge]
                if self._capacity[edge] > 0 and level[target] == level[node] + 1:
                    path.append(edge)
                    node = target
                    advanced = True
                    break
                cursor[node] += 1

            if advanced:
                continue

            # Dead end: drop it from the level graph and back up one edge.
            level[node] = -1
            if not path:
                return 0
            edge = path.pop()
            node = self._to[edge ^ 1]
            cursor[node] += 1

    def _check_node(self, node: int) -> None:
        if not 0 <= node < self.node_count:
            msg = f"node {node} out of range 0..{self.node_count - 1}"
            raise IndexError(msg)
