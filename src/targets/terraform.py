"""Terraform target: write a terraform configuration instead of applying.

Every task contributes one resource block, keyed by its provider resource
type and a terraform-safe form of its name. References to other tasks
become interpolations (${aws_vpc.main.id}); large byte content such as
SSH keys and user data is written to files under data/ and read back
with ${file(...)}.

Output is deterministic: the same task map produces byte-identical files.

    <out_dir>/
        kubernetes.tf.json
        data/
            aws_launch_configuration_nodes_user_data
"""

import json
import logging
import re
import threading
from pathlib import Path
from typing import Any

from common import CloudupError
from engine.task import Change
from statestore.base import write_atomic
from targets.base import Target

logger = logging.getLogger(__name__)

TF_FILENAME = 'kubernetes.tf.json'
DATA_DIR = 'data'


class TerraformError(CloudupError):
    """Terraform output could not be produced."""

    def __init__(self, message: str):
        super().__init__('E402', message)


def terraform_safe_name(name: str) -> str:
    """kubernetes.test.k8s.local -> kubernetes-test-k8s-local"""
    safe = re.sub(r'[^A-Za-z0-9_-]', '-', name)
    if not re.match(r'[A-Za-z_]', safe):
        safe = '_' + safe
    return safe


class TerraformTarget(Target):
    """Collects resource blocks and writes them on finish."""

    name = 'terraform'
    check_existing = False

    def __init__(self, cloud, out_dir: Path):
        self.cloud = cloud
        self.out_dir = out_dir
        self._lock = threading.Lock()
        self._resources: dict[str, dict[str, dict]] = {}
        self._owners: dict[tuple[str, str], str] = {}
        self._files: dict[str, bytes] = {}

    def render(self, ctx, task, change: Change) -> None:
        task.render_terraform(self, ctx, change)

    def reference(self, task) -> str:
        """Interpolation that resolves to another task's resource."""
        if task.resource_type is None:
            raise TerraformError(f"{task.key} has no terraform resource to reference")
        return f"${{{task.resource_type}.{terraform_safe_name(task.name)}.{task.terraform_reference_attr}}}"

    def add_file(self, task, field_name: str, content: Any) -> str:
        """Store content under data/ and return the interpolation reading it."""
        data = content if isinstance(content, bytes) else str(content).encode('utf-8')
        filename = f"{task.resource_type}_{terraform_safe_name(task.name)}_{field_name}"
        with self._lock:
            self._files[filename] = data
        return f'${{file("${{path.module}}/{DATA_DIR}/{filename}")}}'

    def add_resource(self, task, attrs: dict) -> None:
        """Add a resource block.

        Raises:
            TerraformError: If another task already claimed the same address
        """
        resource_type = task.resource_type
        tf_name = terraform_safe_name(task.name)
        address = (resource_type, tf_name)
        with self._lock:
            owner = self._owners.get(address)
            if owner is not None:
                raise TerraformError(
                    f"{task.key} and {owner} both map to terraform resource {resource_type}.{tf_name}"
                )
            self._owners[address] = str(task.key)
            self._resources.setdefault(resource_type, {})[tf_name] = attrs

    def update_resource(self, task, attrs: dict) -> None:
        """Merge attributes into the block an earlier task added.

        Raises:
            TerraformError: If task has no block yet
        """
        tf_name = terraform_safe_name(task.name)
        with self._lock:
            block = self._resources.get(task.resource_type, {}).get(tf_name)
            if block is None:
                raise TerraformError(f"no terraform resource for {task.key}")
            block.update(attrs)

    def _provider_block(self) -> dict:
        if self.cloud.provider == 'gce':
            return {'google': {'project': self.cloud.project, 'region': self.cloud.region}}
        return {'aws': {'region': self.cloud.region}}

    def document(self) -> dict:
        return {
            'provider': self._provider_block(),
            'resource': self._resources,
        }

    def finish(self, task_map) -> None:
        text = json.dumps(self.document(), indent=2, sort_keys=True) + '\n'
        write_atomic(self.out_dir / TF_FILENAME, text.encode('utf-8'))
        for filename in sorted(self._files):
            write_atomic(self.out_dir / DATA_DIR / filename, self._files[filename])
        logger.info(f"Wrote terraform configuration to {self.out_dir / TF_FILENAME}")
