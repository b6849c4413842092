"""Task model for the provisioning graph.

A task is one desired resource (a VPC, a subnet, a certificate). Each task
type declares the fields its model fragment may carry and which of those
fields reference other tasks. References are the only source of graph
edges: a task never looks another task up by name at run time.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, ClassVar, Optional

from engine.errors import LoadError

logger = logging.getLogger(__name__)

CREATE = 'create'
UPDATE = 'update'
NOOP = 'noop'


@dataclass(frozen=True, order=True)
class TaskKey:
    """Identity of a task: its resource type and name."""
    type_name: str
    name: str

    def __str__(self) -> str:
        return f'{self.type_name}/{self.name}'

    @classmethod
    def parse(cls, value: str, default_type: Optional[str] = None) -> 'TaskKey':
        """Parse "type/name", or a bare name when default_type is given.

        Only the first '/' separates type from name, so names may contain
        slashes.

        Raises:
            LoadError: If value has no type and no default is given
        """
        type_name, sep, name = value.partition('/')
        if not sep:
            if default_type is None:
                raise LoadError(f"task key {value!r} must have the form type/name", code='E204')
            return cls(default_type, value)
        if not type_name or not name:
            raise LoadError(f"task key {value!r} must have the form type/name", code='E204')
        return cls(type_name, name)


@dataclass
class Change:
    """Delta between desired and live state for one task.

    Attributes:
        key: Task the change belongs to
        kind: create, update or noop
        changes: Fields to set (all desired fields for a create)
        previous: Live values of the fields in changes (updates only)
    """
    key: TaskKey
    kind: str
    changes: dict = field(default_factory=dict)
    previous: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        d: dict[str, Any] = {'task': str(self.key), 'kind': self.kind}
        if self.changes:
            d['changes'] = self.changes
        if self.previous:
            d['previous'] = self.previous
        return d


def compute_change(key: TaskKey, desired: dict, actual: Optional[dict]) -> Change:
    """Compare desired attributes against live ones.

    Fields absent from desired are ignored; the provider may report
    attributes the model does not manage.
    """
    if actual is None:
        return Change(key=key, kind=CREATE, changes=dict(desired))
    changes = {}
    previous = {}
    for name, value in desired.items():
        if actual.get(name) != value:
            changes[name] = value
            previous[name] = actual.get(name)
    if changes:
        return Change(key=key, kind=UPDATE, changes=changes, previous=previous)
    return Change(key=key, kind=NOOP)


def terraform_name(field_name: str) -> str:
    """camelCase field name to a terraform attribute name."""
    return re.sub(r'(?<=[a-z0-9])([A-Z])', r'_\1', field_name).lower()


def _matches(value: Any, expected: type) -> bool:
    # bool is an int subclass; a YAML true must not satisfy an int field
    if expected is int:
        return isinstance(value, int) and not isinstance(value, bool)
    return isinstance(value, expected)


class Task:
    """Base class for every task type.

    Subclasses declare their shape through class attributes:

        fields: field name -> python type (str, int, bool, list, dict)
        references: field name -> referenced task type; list fields hold a
            list of references
        required: fields that must be present
        file_fields: fields whose content terraform stores under data/
        resource_type: provider resource type (None for local-only tasks)
        terraform_names: field name -> terraform attribute, overriding the
            snake_case default
        terraform_reference_attr: attribute other resources use to refer to
            this one in terraform output

    The default find/apply behaviour treats the task as a cloud resource
    named after the task and stored through the cloud's provider API.
    """

    type_name: ClassVar[str] = ''
    resource_type: ClassVar[Optional[str]] = None
    fields: ClassVar[dict[str, type]] = {}
    references: ClassVar[dict[str, str]] = {}
    required: ClassVar[tuple[str, ...]] = ()
    file_fields: ClassVar[tuple[str, ...]] = ()
    terraform_names: ClassVar[dict[str, str]] = {}
    terraform_reference_attr: ClassVar[str] = 'id'

    def __init__(self):
        self.name = ''
        self.spec: dict[str, Any] = {}

    @property
    def key(self) -> TaskKey:
        return TaskKey(self.type_name, self.name)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.key})"

    def decode(self, name: str, body: Optional[dict]) -> None:
        """Populate the task from a model fragment body.

        Raises:
            LoadError: If the body has unknown fields, wrong types or is
                missing required fields
        """
        self.name = name
        if body is None:
            body = {}
        if not isinstance(body, dict):
            raise LoadError(f"{self.key}: body must be a mapping, got {type(body).__name__}", code='E204')

        unknown = sorted(set(body) - set(self.fields))
        if unknown:
            raise LoadError(f"{self.key}: unknown field(s): {', '.join(map(str, unknown))}", code='E204')

        missing = [f for f in self.required if body.get(f) is None]
        if missing:
            raise LoadError(f"{self.key}: missing required field(s): {', '.join(missing)}", code='E204')

        spec: dict[str, Any] = {}
        for field_name, value in body.items():
            if value is None:
                continue
            expected = self.fields[field_name]
            if not _matches(value, expected):
                raise LoadError(
                    f"{self.key}: field {field_name!r} must be {expected.__name__}, "
                    f"got {type(value).__name__}",
                    code='E204',
                )
            ref_type = self.references.get(field_name)
            if ref_type is not None:
                value = self._decode_reference(field_name, value, ref_type)
            spec[field_name] = value
        self.spec = spec

    def _decode_reference(self, field_name: str, value: Any, ref_type: str):
        if isinstance(value, list):
            keys = []
            for item in value:
                if not isinstance(item, str):
                    raise LoadError(f"{self.key}: {field_name!r} entries must be task names", code='E204')
                keys.append(self._reference_key(field_name, item, ref_type))
            return keys
        return self._reference_key(field_name, value, ref_type)

    def _reference_key(self, field_name: str, value: str, ref_type: str) -> TaskKey:
        key = TaskKey.parse(value, default_type=ref_type)
        if key.type_name != ref_type:
            raise LoadError(
                f"{self.key}: {field_name!r} must reference a {ref_type}, got {key}",
                code='E204',
            )
        return key

    def get(self, field_name: str, default: Any = None) -> Any:
        return self.spec.get(field_name, default)

    def dependencies(self) -> set[TaskKey]:
        """Tasks that must complete before this one."""
        deps: set[TaskKey] = set()
        for field_name in self.references:
            value = self.spec.get(field_name)
            if isinstance(value, TaskKey):
                deps.add(value)
            elif isinstance(value, list):
                deps.update(value)
        return deps

    def desired(self, ctx) -> dict:
        """Desired attributes, with references replaced by the referenced name."""
        attrs: dict[str, Any] = {}
        for field_name, value in sorted(self.spec.items()):
            if isinstance(value, TaskKey):
                attrs[field_name] = value.name
            elif field_name in self.references and isinstance(value, list):
                attrs[field_name] = [k.name for k in value]
            else:
                attrs[field_name] = value
        return attrs

    def find(self, ctx) -> Optional[dict]:
        """Live attributes of the resource, or None if it does not exist."""
        return ctx.cloud.api.describe(self.resource_type, self.name)

    def apply(self, ctx, change: Change) -> None:
        """Make the live resource match the change."""
        if change.kind == CREATE:
            ctx.cloud.api.create(self.resource_type, self.name, change.changes)
        elif change.kind == UPDATE:
            ctx.cloud.api.update(self.resource_type, self.name, change.changes)

    def terraform_ref(self, tf, ctx, field_name: str):
        """Interpolation for a reference field (a list for list fields), or None."""
        value = self.spec.get(field_name)
        if value is None:
            return None
        if isinstance(value, list):
            return [tf.reference(ctx.tasks[k]) for k in value]
        return tf.reference(ctx.tasks[value])

    def terraform_attributes(self, tf, ctx) -> dict:
        """Resource block body for the terraform target."""
        attrs: dict[str, Any] = {}
        for field_name, value in self.spec.items():
            attr = self.terraform_names.get(field_name, terraform_name(field_name))
            if isinstance(value, TaskKey):
                attrs[attr] = tf.reference(ctx.tasks[value])
            elif field_name in self.references and isinstance(value, list):
                attrs[attr] = [tf.reference(ctx.tasks[k]) for k in value]
            elif field_name in self.file_fields:
                attrs[attr] = tf.add_file(self, field_name, value)
            else:
                attrs[attr] = value
        return attrs

    def render_terraform(self, tf, ctx, change: Change) -> None:
        tf.add_resource(self, self.terraform_attributes(tf, ctx))
