"""Errors raised while loading and running a task graph."""

from common import CloudupError


class LoadError(CloudupError):
    """Model could not be turned into a task map.

    Codes:
        E200: model directory not found
        E201: template expansion failed
        E202: unknown capability tag
        E203: unknown resource type
        E204: fragment does not match the task's shape
        E205: duplicate task key
        E206: reference to a task that does not exist
    """

    def __init__(self, message: str, code: str = 'E201'):
        super().__init__(code, message)


class RegistryError(CloudupError):
    """A resource type was registered twice."""

    def __init__(self, message: str):
        super().__init__('E210', message)


class DependencyError(CloudupError):
    """Task graph is not a DAG or names an unknown task."""

    def __init__(self, message: str, cycle=None):
        self.cycle = list(cycle or [])
        super().__init__('E300', message)


class ExecutionError(CloudupError):
    """A task failed while rendering against the target."""

    def __init__(self, key, cause: BaseException):
        self.key = key
        self.cause = cause
        super().__init__('E400', f"error running task {key}: {cause}")
