"""Dry-run target: report what would change, change nothing."""

import logging
import sys
import threading
from typing import Any, Optional, TextIO

from engine.task import CREATE, NOOP, UPDATE, Change
from targets.base import Target

logger = logging.getLogger(__name__)

BANNER = "═══════════════════════════════════════════════════════════════"
MAX_VALUE_WIDTH = 60


def _format_value(value: Any) -> str:
    text = str(value)
    if isinstance(value, str) and ('\n' in value or len(value) > MAX_VALUE_WIDTH):
        return f"<{len(value.encode('utf-8'))} bytes>"
    return text


class DryRunTarget(Target):
    """Records every change and prints a plan on finish."""

    name = 'dryrun'
    check_existing = True

    def __init__(self, out: Optional[TextIO] = None):
        self.out = out
        self.changes: list[Change] = []
        self._lock = threading.Lock()

    def render(self, ctx, task, change: Change) -> None:
        with self._lock:
            self.changes.append(change)

    @property
    def has_changes(self) -> bool:
        return any(c.kind != NOOP for c in self.changes)

    def plan(self) -> dict[str, list[Change]]:
        """Changes grouped by resource kind, sorted by task name."""
        grouped: dict[str, list[Change]] = {}
        for change in sorted(self.changes, key=lambda c: c.key):
            grouped.setdefault(change.key.type_name, []).append(change)
        return grouped

    def _print(self, line: str = '') -> None:
        print(line, file=self.out or sys.stdout)

    def finish(self, task_map) -> None:
        counts = {CREATE: 0, UPDATE: 0, NOOP: 0}
        for change in self.changes:
            counts[change.kind] += 1

        self._print()
        self._print(BANNER)
        self._print(f"  DRY-RUN: {len(task_map)} tasks")
        self._print(BANNER)
        self._print()

        for kind, changes in sorted(self.plan().items()):
            pending = [c for c in changes if c.kind != NOOP]
            if not pending:
                continue
            self._print(f"{kind}:")
            for change in pending:
                self._print(f"  [{change.kind.upper()}] {change.key.name}")
                for field_name, value in sorted(change.changes.items()):
                    if change.kind == UPDATE:
                        old = _format_value(change.previous.get(field_name))
                        self._print(f"      {field_name}: {old} -> {_format_value(value)}")
                    else:
                        self._print(f"      {field_name}: {_format_value(value)}")
            self._print()

        if not self.has_changes:
            self._print("No changes; infrastructure is up to date.")
            self._print()

        self._print(BANNER)
        self._print(
            f"  Summary: {counts[CREATE]} to create, {counts[UPDATE]} to modify, "
            f"{counts[NOOP]} unchanged"
        )
        self._print("  Mode: DRY-RUN (no changes made)")
        self._print(BANNER)
        self._print()
