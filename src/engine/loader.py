"""Model loader.

A model is one or more directories of YAML fragments. Each fragment is a
Jinja2 template rendered against the cluster configuration and a capability
context, then parsed as a mapping of "type/name" keys to task bodies.

Directories whose name starts with '_' are tag gates: the directory is only
walked when the tag is active, so fragments behind a false gate are never
rendered and their template functions never run.

    models/cloudup/
        _aws/
            network.yaml
            _master_asg/
                master.yaml
        _gce/
            network.yaml
        pki.yaml

Loading is all-or-nothing. Any failure raises LoadError and no task map is
returned.
"""

import logging
from pathlib import Path
from typing import Any, Callable, Optional

import jinja2
import yaml

from common import CloudupError
from config import ClusterConfig
from engine.errors import LoadError
from engine.registry import Registry
from engine.task import Task, TaskKey
from statestore import CAStore, SecretStore, StateStoreError
from tags import KNOWN_TAGS

logger = logging.getLogger(__name__)

TaskMap = dict[TaskKey, Task]

FRAGMENT_SUFFIXES = ('.yaml', '.yml')


class _DuplicateKeyError(yaml.constructor.ConstructorError):
    """A mapping repeats a key."""


class _UniqueKeyLoader(yaml.SafeLoader):
    """SafeLoader that rejects duplicate mapping keys."""

    def construct_mapping(self, node, deep=False):
        seen = set()
        for key_node, _ in node.value:
            key = self.construct_object(key_node, deep=deep)
            if key in seen:
                raise _DuplicateKeyError(
                    None, None, f"duplicate key {key!r}", key_node.start_mark
                )
            seen.add(key)
        return super().construct_mapping(node, deep=deep)


_UniqueKeyLoader.add_constructor(
    yaml.resolver.BaseResolver.DEFAULT_MAPPING_TAG,
    _UniqueKeyLoader.construct_mapping,
)


class TemplateContext:
    """Capability context handed to model templates.

    Templates reach state and helpers only through the functions exposed
    here (HasTag, CA, Secrets, GetOrCreateSecret, Resource and any provider
    helpers).
    """

    def __init__(
        self,
        tags: frozenset[str],
        ca_store: CAStore,
        secret_store: SecretStore,
        resources: Optional[dict[str, bytes]] = None,
        helpers: Optional[dict[str, Callable]] = None,
    ):
        self.tags = tags
        self.ca_store = ca_store
        self.secret_store = secret_store
        self.resources = dict(resources or {})
        self.helpers = dict(helpers or {})

    def has_tag(self, tag: str) -> bool:
        if tag not in KNOWN_TAGS:
            raise LoadError(f"unknown tag {tag!r}", code='E202')
        return tag in self.tags

    def ca(self) -> CAStore:
        return self.ca_store

    def secrets(self) -> SecretStore:
        return self.secret_store

    def get_or_create_secret(self, secret_id: str) -> str:
        secret, _ = self.secret_store.get_or_create_secret(secret_id)
        return secret.as_string()

    def resource(self, name: str) -> str:
        data = self.resources.get(name)
        if data is None:
            available = ', '.join(sorted(self.resources)) or 'none'
            raise LoadError(f"unknown resource {name!r} (available: {available})")
        return data.decode('utf-8')

    def functions(self) -> dict[str, Callable]:
        funcs: dict[str, Callable] = {
            'HasTag': self.has_tag,
            'CA': self.ca,
            'Secrets': self.secrets,
            'GetOrCreateSecret': self.get_or_create_secret,
            'Resource': self.resource,
        }
        funcs.update(self.helpers)
        return funcs


class ModelLoader:
    """Builds a task map from model directories."""

    def __init__(self, registry: Registry, config: ClusterConfig,
                 template_context: TemplateContext):
        self.registry = registry
        self.config = config
        self.template_context = template_context
        self._env = jinja2.Environment(
            undefined=jinja2.StrictUndefined,
            keep_trailing_newline=True,
            trim_blocks=True,
            lstrip_blocks=True,
            autoescape=False,
        )

    def _variables(self) -> dict[str, Any]:
        variables: dict[str, Any] = self.config.to_dict()
        variables['config'] = self.config
        variables.update(self.template_context.functions())
        return variables

    def build(self, model_dirs: list[Path]) -> TaskMap:
        """Load every fragment reachable under the model directories.

        Args:
            model_dirs: Model directories, walked in order

        Returns:
            Task map in load order

        Raises:
            LoadError: On any template, parse, decode, collision or
                reference error
            StateStoreError: If a template function fails to reach the store
        """
        task_map: TaskMap = {}
        sources: dict[TaskKey, Path] = {}
        variables = self._variables()

        for model_dir in model_dirs:
            if not model_dir.is_dir():
                raise LoadError(f"model directory not found: {model_dir}", code='E200')
            for path in self._walk(model_dir):
                for task in self._load_fragment(path, variables):
                    if task.key in task_map:
                        raise LoadError(
                            f"duplicate task {task.key} in {path} "
                            f"(already defined in {sources[task.key]})",
                            code='E205',
                        )
                    task_map[task.key] = task
                    sources[task.key] = path

        self._check_references(task_map, sources)
        logger.info(f"Loaded {len(task_map)} tasks from {len(model_dirs)} model dir(s)")
        return task_map

    def _walk(self, directory: Path) -> list[Path]:
        """Fragment files under directory, skipping false tag gates."""
        found: list[Path] = []
        for entry in sorted(directory.iterdir()):
            if entry.name.startswith('.'):
                continue
            if entry.is_dir():
                if entry.name.startswith('_'):
                    tag = entry.name
                    if tag not in KNOWN_TAGS:
                        raise LoadError(f"unknown tag {tag!r} at {entry}", code='E202')
                    if tag not in self.template_context.tags:
                        logger.debug(f"Skipping {entry} (tag {tag} not set)")
                        continue
                found.extend(self._walk(entry))
            elif entry.suffix in FRAGMENT_SUFFIXES:
                found.append(entry)
        return found

    def _render(self, path: Path, variables: dict[str, Any]) -> str:
        try:
            source = path.read_text(encoding='utf-8')
        except (OSError, UnicodeDecodeError) as e:
            raise LoadError(f"error reading {path}: {e}", code='E201') from e
        try:
            return self._env.from_string(source).render(variables)
        except (LoadError, StateStoreError):
            raise
        except jinja2.TemplateError as e:
            raise LoadError(f"error expanding template {path}: {e}") from e
        except (CloudupError, ValueError, TypeError, KeyError) as e:
            raise LoadError(f"error expanding template {path}: {e}") from e

    def _load_fragment(self, path: Path, variables: dict[str, Any]) -> list[Task]:
        logger.debug(f"Loading {path}")
        text = self._render(path, variables)
        try:
            data = yaml.load(text, Loader=_UniqueKeyLoader)
        except _DuplicateKeyError as e:
            raise LoadError(f"error parsing {path}: {e}", code='E205') from e
        except yaml.YAMLError as e:
            raise LoadError(f"error parsing {path}: {e}", code='E204') from e

        if data is None:
            return []
        if not isinstance(data, dict):
            raise LoadError(f"{path}: fragment must be a mapping of type/name keys", code='E204')

        tasks = []
        for raw_key, body in data.items():
            if not isinstance(raw_key, str):
                raise LoadError(f"{path}: key {raw_key!r} must have the form type/name", code='E204')
            try:
                key = TaskKey.parse(raw_key)
                task = self.registry.lookup(key.type_name)
                task.decode(key.name, body)
            except LoadError as e:
                raise LoadError(f"{path}: {e.message}", code=e.code) from e
            tasks.append(task)
        return tasks

    @staticmethod
    def _check_references(task_map: TaskMap, sources: dict[TaskKey, Path]) -> None:
        for key, task in task_map.items():
            for dep in sorted(task.dependencies()):
                if dep not in task_map:
                    raise LoadError(
                        f"{key} (in {sources[key]}) references unknown task {dep}",
                        code='E206',
                    )
