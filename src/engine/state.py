"""Execution state for a run.

Tracks per-task status (pending, running, completed, failed) and can be
persisted so a failed run leaves a record of how far it got.
"""

import json
import logging
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from statestore.base import write_atomic

logger = logging.getLogger(__name__)


@dataclass
class TaskState:
    """Per-task execution state.

    Attributes:
        key: Task key as "type/name"
        status: pending, running, completed or failed
        change: Change kind once computed (create, update, noop)
        started_at: Timestamp when the task started
        completed_at: Timestamp when the task finished
        error: Error message if failed
    """
    key: str
    status: str = 'pending'
    change: Optional[str] = None
    started_at: Optional[float] = None
    completed_at: Optional[float] = None
    error: Optional[str] = None

    def start(self) -> None:
        self.status = 'running'
        self.started_at = time.time()

    def complete(self, change: Optional[str] = None) -> None:
        self.status = 'completed'
        self.completed_at = time.time()
        self.change = change

    def fail(self, error: str) -> None:
        self.status = 'failed'
        self.completed_at = time.time()
        self.error = error

    @property
    def duration(self) -> Optional[float]:
        if self.started_at and self.completed_at:
            return self.completed_at - self.started_at
        return None

    def to_dict(self) -> dict:
        d: dict[str, Any] = {
            'key': self.key,
            'status': self.status,
        }
        if self.change is not None:
            d['change'] = self.change
        if self.started_at is not None:
            d['started_at'] = self.started_at
        if self.completed_at is not None:
            d['completed_at'] = self.completed_at
        if self.error is not None:
            d['error'] = self.error
        return d

    @classmethod
    def from_dict(cls, data: dict) -> 'TaskState':
        return cls(
            key=data['key'],
            status=data.get('status', 'pending'),
            change=data.get('change'),
            started_at=data.get('started_at'),
            completed_at=data.get('completed_at'),
            error=data.get('error'),
        )


class ExecutionState:
    """Run-level execution state with save/load."""

    def __init__(self, target: str):
        self.target = target
        self._tasks: dict[str, TaskState] = {}
        self._lock = threading.Lock()
        self.started_at: Optional[float] = None
        self.completed_at: Optional[float] = None

    def add_task(self, key: str) -> TaskState:
        """Register a task for tracking."""
        state = TaskState(key=key)
        self._tasks[key] = state
        return state

    def get_task(self, key: str) -> TaskState:
        """Get task state by key.

        Raises:
            KeyError: If the task is not registered
        """
        return self._tasks[key]

    @property
    def tasks(self) -> dict[str, TaskState]:
        return dict(self._tasks)

    def count(self, status: str) -> int:
        return sum(1 for t in self._tasks.values() if t.status == status)

    def start(self) -> None:
        self.started_at = time.time()

    def finish(self) -> None:
        self.completed_at = time.time()

    def to_dict(self) -> dict:
        d: dict[str, Any] = {
            'target': self.target,
            'tasks': [t.to_dict() for t in self._tasks.values()],
        }
        if self.started_at is not None:
            d['started_at'] = self.started_at
        if self.completed_at is not None:
            d['completed_at'] = self.completed_at
        return d

    def save(self, path: Path) -> Path:
        """Save state to a JSON file, replacing any earlier copy."""
        with self._lock:
            data = json.dumps(self.to_dict(), indent=2)
        write_atomic(path, data.encode('utf-8'))
        logger.debug(f"Saved execution state to {path}")
        return path

    @classmethod
    def load(cls, path: Path) -> 'ExecutionState':
        """Load state from a JSON file.

        Raises:
            FileNotFoundError: If path does not exist
        """
        with open(path, encoding='utf-8') as f:
            data = json.load(f)
        state = cls(target=data.get('target', ''))
        state.started_at = data.get('started_at')
        state.completed_at = data.get('completed_at')
        for entry in data.get('tasks', []):
            task_state = TaskState.from_dict(entry)
            state._tasks[task_state.key] = task_state
        return state
