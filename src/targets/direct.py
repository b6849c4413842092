"""Direct target: apply changes against the provider API."""

import logging
import threading

from engine.task import NOOP, Change
from targets.base import Target

logger = logging.getLogger(__name__)


class DirectTarget(Target):
    """Applies each change immediately.

    Provider errors propagate out of render and fail the task.
    """

    name = 'direct'
    check_existing = True

    def __init__(self, cloud):
        self.cloud = cloud
        self.applied: list[Change] = []
        self._lock = threading.Lock()

    def render(self, ctx, task, change: Change) -> None:
        if change.kind == NOOP:
            logger.debug(f"{task.key} is up to date")
            return
        task.apply(ctx, change)
        logger.info(f"Applied {change.kind} of {task.key}")
        with self._lock:
            self.applied.append(change)

    def finish(self, task_map) -> None:
        logger.info(f"Applied {len(self.applied)} change(s) across {len(task_map)} task(s)")
