from __future__ import annotations

import heapq
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Generic, Iterable, Mapping, TypeVar

from oxtest.core.exceptions import CycleError, DuplicateNodeError, UnknownNodeError
from oxtest.core.tasks import TaskStatus, ensure_transition

log = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(slots=True)
class GraphNode(Generic[T]):
    id: str
    payload: T
    order: int
    status: TaskStatus = TaskStatus.PENDING
    incoming: dict[str, None] = field(default_factory=dict)
    outgoing: dict[str, None] = field(default_factory=dict)

    @property
    def in_degree(self) -> int:
        return len(self.incoming)


class DependencyGraph(Generic[T]):
    """Directed acyclic graph of work units.

    An edge ``a -> b`` means ``a`` must complete before ``b`` may start.
    Acyclicity is checked before every edge is committed, so the graph is
    acyclic at every observable point.

    Whenever several nodes are eligible at the same time (topological order
    and executable sets alike) they are returned in the order they were added.

    Status changes go through :meth:`update_node` only. The graph takes no
    lock; a single caller is expected to drive it.
    """

    def __init__(self) -> None:
        self._nodes: dict[str, GraphNode[T]] = {}
        self._edge_count = 0

    def add_node(self, node_id: str, payload: T) -> None:
        if node_id in self._nodes:
            raise DuplicateNodeError(f"Node {node_id} already exists in graph")
        self._nodes[node_id] = GraphNode(node_id, payload, order=len(self._nodes))

    def has_node(self, node_id: str) -> bool:
        return node_id in self._nodes

    def get_node(self, node_id: str) -> GraphNode[T]:
        try:
            return self._nodes[node_id]
        except KeyError:
            raise UnknownNodeError(f"Node {node_id} does not exist") from None

    def payload(self, node_id: str) -> T:
        return self.get_node(node_id).payload

    def status(self, node_id: str) -> TaskStatus:
        return self.get_node(node_id).status

    @property
    def node_ids(self) -> list[str]:
        return list(self._nodes)

    @property
    def edge_count(self) -> int:
        return self._edge_count

    def __len__(self) -> int:
        return len(self._nodes)

    def add_edge(self, source: str, target: str) -> None:
        source_node = self.get_node(source)
        target_node = self.get_node(target)
        if source == target:
            raise CycleError(f"Edge {source} -> {target} would create a self-loop")
        if target in source_node.outgoing:
            return
        if self._reaches(target, source):
            raise CycleError(f"Edge {source} -> {target} would create a cycle")
        source_node.outgoing[target] = None
        target_node.incoming[source] = None
        self._edge_count += 1

    def predecessors(self, node_id: str) -> list[str]:
        return list(self.get_node(node_id).incoming)

    def successors(self, node_id: str) -> list[str]:
        return list(self.get_node(node_id).outgoing)

    def has_cycle(self) -> bool:
        white, grey, black = 0, 1, 2
        colour = {node_id: white for node_id in self._nodes}

        for root in self._nodes:
            if colour[root] != white:
                continue
            colour[root] = grey
            stack = [(root, iter(self._nodes[root].outgoing))]
            while stack:
                node_id, children = stack[-1]
                child = next(children, None)
                if child is None:
                    colour[node_id] = black
                    stack.pop()
                elif colour[child] == grey:
                    return True
                elif colour[child] == white:
                    colour[child] = grey
                    stack.append((child, iter(self._nodes[child].outgoing)))
        return False

    def topological_sort(self) -> list[str]:
        in_degree = {node_id: node.in_degree for node_id, node in self._nodes.items()}
        ready = [(node.order, node_id) for node_id, node in self._nodes.items() if node.in_degree == 0]
        heapq.heapify(ready)

        ordered: list[str] = []
        while ready:
            _, node_id = heapq.heappop(ready)
            ordered.append(node_id)
            for child in self._nodes[node_id].outgoing:
                in_degree[child] -= 1
                if in_degree[child] == 0:
                    heapq.heappush(ready, (self._nodes[child].order, child))
        return ordered

    def get_executable_nodes(self) -> list[str]:
        executable = []
        for node_id, node in self._nodes.items():
            if node.status is not TaskStatus.PENDING:
                continue
            if all(self._nodes[parent].status is TaskStatus.COMPLETED for parent in node.incoming):
                executable.append(node_id)
        return executable

    def update_node(self, node_id: str, status: TaskStatus) -> list[str]:
        """Moves a node to ``status`` and returns the ids it newly blocked."""

        node = self.get_node(node_id)
        ensure_transition(f"node {node_id}", node.status, status)
        log.debug("Node %s: %s -> %s", node_id, node.status.value, status.value)
        node.status = status
        if status in (TaskStatus.FAILED, TaskStatus.BLOCKED):
            return self._block_dependents(node_id)
        return []

    def reset(self) -> None:
        for node in self._nodes.values():
            node.status = TaskStatus.PENDING

    def _block_dependents(self, node_id: str) -> list[str]:
        blocked: list[str] = []
        queue = deque(self._nodes[node_id].outgoing)
        while queue:
            child_id = queue.popleft()
            child = self._nodes[child_id]
            if child.status is not TaskStatus.PENDING:
                continue
            child.status = TaskStatus.BLOCKED
            blocked.append(child_id)
            queue.extend(child.outgoing)
        if blocked:
            log.info("Blocked %s after %s did not complete", ", ".join(blocked), node_id)
        return blocked

    def _reaches(self, start: str, goal: str) -> bool:
        seen = {start}
        queue = deque([start])
        while queue:
            current = queue.popleft()
            if current == goal:
                return True
            for child in self._nodes[current].outgoing:
                if child not in seen:
                    seen.add(child)
                    queue.append(child)
        return False


def build_graph(items: Iterable[Any], dependencies: Mapping[str, Iterable[str]] | None = None) -> DependencyGraph[Any]:
    """Builds a graph keyed on each item's ``id``.

    ``dependencies`` maps an id to the ids that must complete before it.
    """

    graph: DependencyGraph[Any] = DependencyGraph()
    for item in items:
        graph.add_node(item.id, item)
    for node_id, parents in (dependencies or {}).items():
        for parent in parents:
            graph.add_edge(parent, node_id)
    return graph
