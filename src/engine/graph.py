"""Dependency graph over a task map.

Edges come from each task's declared dependencies. The graph is validated
as a whole before anything runs: unknown dependencies and cycles are
rejected up front.
"""

import heapq
import logging
from dataclasses import dataclass, field

from engine.errors import DependencyError
from engine.task import Task, TaskKey

logger = logging.getLogger(__name__)


@dataclass
class GraphNode:
    """A task with its incoming and outgoing edges.

    Attributes:
        task: The task at this node
        index: Position of the task in the task map (tie-breaker)
        dependencies: Keys that must complete first
        dependents: Keys waiting on this node
    """
    task: Task
    index: int
    dependencies: list[TaskKey] = field(default_factory=list)
    dependents: list[TaskKey] = field(default_factory=list)

    @property
    def key(self) -> TaskKey:
        return self.task.key

    @property
    def is_root(self) -> bool:
        return not self.dependencies

    def __repr__(self) -> str:
        return f"GraphNode({self.key}, deps={len(self.dependencies)})"


class TaskGraph:
    """Validated DAG built from a task map."""

    def __init__(self, task_map: dict[TaskKey, Task]):
        """Build and validate the graph.

        Raises:
            DependencyError: If a task depends on a task not in the map,
                or the dependencies form a cycle
        """
        self._nodes: dict[TaskKey, GraphNode] = {}
        for index, (key, task) in enumerate(task_map.items()):
            self._nodes[key] = GraphNode(task=task, index=index)

        for key, node in self._nodes.items():
            for dep in sorted(node.task.dependencies()):
                if dep not in self._nodes:
                    raise DependencyError(f"task {key} depends on unknown task {dep}")
                node.dependencies.append(dep)
                self._nodes[dep].dependents.append(key)

        self._check_cycles()

    def _check_cycles(self) -> None:
        """Depth-first search, reporting the first cycle found in full."""
        visited: set[TaskKey] = set()
        path: list[TaskKey] = []
        on_path: set[TaskKey] = set()

        def visit(key: TaskKey) -> None:
            if key in on_path:
                cycle = path[path.index(key):]
                names = ' -> '.join(str(k) for k in cycle + [key])
                raise DependencyError(f"dependency cycle: {names}", cycle=cycle)
            if key in visited:
                return
            visited.add(key)
            path.append(key)
            on_path.add(key)
            for dep in self._nodes[key].dependencies:
                visit(dep)
            path.pop()
            on_path.discard(key)

        for key in self._nodes:
            visit(key)

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, key: TaskKey) -> bool:
        return key in self._nodes

    def get_node(self, key: TaskKey) -> GraphNode:
        """Get a node by key.

        Raises:
            KeyError: If key is not in the graph
        """
        return self._nodes[key]

    @property
    def roots(self) -> list[GraphNode]:
        """Nodes with no dependencies."""
        return [n for n in self._nodes.values() if n.is_root]

    def dependencies_of(self, key: TaskKey) -> list[TaskKey]:
        return list(self._nodes[key].dependencies)

    def dependents_of(self, key: TaskKey) -> list[TaskKey]:
        return list(self._nodes[key].dependents)

    def index_of(self, key: TaskKey) -> int:
        return self._nodes[key].index

    def order(self) -> list[TaskKey]:
        """Topological order, dependencies first.

        Among tasks that are ready at the same time, the one loaded first
        goes first, so the order is stable for a given task map.
        """
        remaining = {key: len(node.dependencies) for key, node in self._nodes.items()}
        ready = [(node.index, key) for key, node in self._nodes.items() if not node.dependencies]
        heapq.heapify(ready)

        ordered: list[TaskKey] = []
        while ready:
            _, key = heapq.heappop(ready)
            ordered.append(key)
            for dependent in self._nodes[key].dependents:
                remaining[dependent] -= 1
                if remaining[dependent] == 0:
                    heapq.heappush(ready, (self._nodes[dependent].index, dependent))
        return ordered
