"""Declarative task-graph engine."""

from engine.context import Context
from engine.errors import DependencyError, ExecutionError, LoadError, RegistryError
from engine.graph import TaskGraph
from engine.loader import ModelLoader, TaskMap, TemplateContext
from engine.registry import Registry
from engine.task import CREATE, NOOP, UPDATE, Change, Task, TaskKey

__all__ = [
    'CREATE',
    'NOOP',
    'UPDATE',
    'Change',
    'Context',
    'DependencyError',
    'ExecutionError',
    'LoadError',
    'ModelLoader',
    'Registry',
    'RegistryError',
    'Task',
    'TaskGraph',
    'TaskKey',
    'TaskMap',
    'TemplateContext',
]
