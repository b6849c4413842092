"""Per-run registry of task types.

A registry is built fresh for every run and handed to the loader, so two
runs in one process never share registrations.
"""

import logging

from engine.errors import LoadError, RegistryError
from engine.task import Task

logger = logging.getLogger(__name__)


class Registry:
    """Maps resource type names to task classes."""

    def __init__(self, provider: str):
        self.provider = provider
        self._types: dict[str, type[Task]] = {}

    def register(self, type_name: str, cls: type[Task]) -> None:
        """Register a task class under type_name.

        Raises:
            RegistryError: If type_name is already registered
        """
        if type_name in self._types:
            raise RegistryError(
                f"type {type_name!r} already registered to {self._types[type_name].__name__}"
            )
        self._types[type_name] = cls

    def register_all(self, classes: list[type[Task]]) -> None:
        for cls in classes:
            self.register(cls.type_name, cls)

    def lookup(self, type_name: str) -> Task:
        """Return a fresh, empty task of the given type.

        Raises:
            LoadError: If the type is not registered
        """
        cls = self._types.get(type_name)
        if cls is None:
            raise LoadError(
                f"unknown resource type {type_name!r} for provider {self.provider!r}",
                code='E203',
            )
        task = cls()
        task.type_name = type_name
        return task

    def type_names(self) -> list[str]:
        return sorted(self._types)

    def __contains__(self, type_name: str) -> bool:
        return type_name in self._types
