"""Target base class."""

import logging

logger = logging.getLogger(__name__)


class Target:
    """Where a run's changes go.

    Subclasses set name and check_existing and implement render. finish is
    called once, after every task rendered successfully.
    """

    name = ''
    check_existing = True

    def render(self, ctx, task, change) -> None:
        raise NotImplementedError

    def finish(self, task_map) -> None:
        """Called after all tasks rendered; default does nothing."""
