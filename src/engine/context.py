"""Task executor.

The Context owns one run: it validates the dependency graph, then runs
tasks on a bounded worker pool. A task starts only after every task it
depends on completed successfully, and runs exactly once.

For each task the context either compares desired state with live state
(check_existing) or assumes nothing exists, then hands the resulting
change to the target. On the first failure no further tasks are started;
tasks already running finish and the failure is raised. Nothing is rolled
back.
"""

import heapq
import logging
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from pathlib import Path
from typing import Optional

from engine.errors import ExecutionError
from engine.graph import TaskGraph
from engine.state import ExecutionState
from engine.task import CREATE, Change, Task, TaskKey, compute_change

logger = logging.getLogger(__name__)


class Context:
    """Execution context shared by every task in a run.

    Attributes:
        target: Where changes are rendered (direct, dryrun, terraform)
        cloud: Provider cloud for the run
        ca_store: Cluster CA
        secret_store: Named secrets
        check_existing: Compare against live state before rendering
        max_workers: Upper bound on tasks running at once
        state_path: Where to save execution state (None to skip)
        tasks: Task map of the current run
    """

    def __init__(self, target, cloud, ca_store, secret_store,
                 check_existing: Optional[bool] = None, max_workers: int = 1,
                 state_path: Optional[Path] = None):
        if max_workers < 1:
            raise ValueError(f"max_workers must be at least 1, got {max_workers}")
        self.target = target
        self.cloud = cloud
        self.ca_store = ca_store
        self.secret_store = secret_store
        self.check_existing = target.check_existing if check_existing is None else check_existing
        self.max_workers = max_workers
        self.state_path = state_path
        self.tasks: dict[TaskKey, Task] = {}
        self.state: Optional[ExecutionState] = None

    def _execute(self, task: Task) -> Change:
        desired = task.desired(self)
        if self.check_existing:
            change = compute_change(task.key, desired, task.find(self))
        else:
            change = Change(key=task.key, kind=CREATE, changes=dict(desired))
        logger.debug(f"{task.key}: {change.kind} {change.changes}")
        self.target.render(self, task, change)
        return change

    def run_tasks(self, task_map: dict[TaskKey, Task]) -> list[Change]:
        """Run every task in dependency order.

        Returns:
            Changes in topological order

        Raises:
            DependencyError: If the graph is invalid (before any task runs)
            ExecutionError: On the first task failure
        """
        graph = TaskGraph(task_map)
        order = graph.order()
        self.tasks = task_map

        state = ExecutionState(self.target.name)
        for key in order:
            state.add_task(str(key))
        self.state = state
        state.start()

        waiting = {key: len(graph.dependencies_of(key)) for key in order}
        ready = [(graph.index_of(key), key) for key in order if waiting[key] == 0]
        heapq.heapify(ready)
        in_flight: dict[Future, TaskKey] = {}
        changes: dict[TaskKey, Change] = {}
        failure: Optional[tuple[TaskKey, Exception]] = None

        logger.info(f"Running {len(order)} tasks against target {self.target.name}")
        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix='task') as pool:
            while ready or in_flight:
                while ready and failure is None and len(in_flight) < self.max_workers:
                    _, key = heapq.heappop(ready)
                    state.get_task(str(key)).start()
                    in_flight[pool.submit(self._execute, task_map[key])] = key

                if not in_flight:
                    break

                done, _ = wait(in_flight, return_when=FIRST_COMPLETED)
                for future in sorted(done, key=lambda f: graph.index_of(in_flight[f])):
                    key = in_flight.pop(future)
                    task_state = state.get_task(str(key))
                    try:
                        change = future.result()
                    except Exception as e:
                        task_state.fail(str(e))
                        logger.error(f"Task {key} failed: {e}")
                        if failure is None:
                            failure = (key, e)
                        continue

                    task_state.complete(change.kind)
                    changes[key] = change
                    for dependent in graph.dependents_of(key):
                        waiting[dependent] -= 1
                        if waiting[dependent] == 0:
                            heapq.heappush(ready, (graph.index_of(dependent), dependent))

        state.finish()
        if self.state_path is not None:
            state.save(self.state_path)

        if failure is not None:
            key, cause = failure
            if isinstance(cause, ExecutionError):
                raise cause
            raise ExecutionError(key, cause) from cause

        return [changes[key] for key in order]

    def run(self, task_map: dict[TaskKey, Task]) -> list[Change]:
        """Run every task, then let the target finish its output."""
        changes = self.run_tasks(task_map)
        self.target.finish(task_map)
        return changes
