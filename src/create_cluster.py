"""create-cluster command.

Validates the configuration, derives defaults and tags, loads the model
into a task map and runs it against the chosen target.
"""

import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, TextIO

from cloud import CloudAPI, FileCloudAPI, new_cloud
from config import ClusterConfig, ConfigError, fill_defaults
from engine import Change, Context, ModelLoader, TemplateContext
from engine.task import NOOP
from statestore import StateStore
from tags import build_tags
from targets import TARGET_TERRAFORM, DryRunTarget, build_target
from tasks import build_registry, template_helpers
from validation import ensure_valid

logger = logging.getLogger(__name__)

EXECUTION_STATE_FILE = 'execution.json'
CLOUD_STATE_FILE = 'cloud.json'


@dataclass
class RunResult:
    """Outcome of a create-cluster run.

    Attributes:
        target: Target the run rendered to
        task_count: Number of tasks in the model
        changes: Per-task changes in execution order
        output_dir: Where terraform output was written (terraform only)
    """
    target: str
    task_count: int
    changes: list[Change] = field(default_factory=list)
    output_dir: Optional[Path] = None

    @property
    def pending(self) -> list[Change]:
        return [c for c in self.changes if c.kind != NOOP]

    def to_dict(self) -> dict:
        d = {
            'target': self.target,
            'task_count': self.task_count,
            'changes': [c.to_dict() for c in self.pending],
        }
        if self.output_dir is not None:
            d['output_dir'] = str(self.output_dir)
        return d


@dataclass
class CreateClusterCmd:
    """Provision (or plan) a cluster from a model.

    Attributes:
        config: Cluster configuration (CLI and file inputs already merged)
        model_dirs: Model directories, loaded in order
        state_store: Store holding the CA and secrets
        target: direct, dryrun or terraform
        ssh_public_key: Path of the SSH public key file
        work_dir: Directory for output and cached state
        max_workers: Tasks allowed to run at once
        cloud_api: Provider API; defaults to a file-backed API in work_dir
        use_master_asg: Run masters in autoscaling groups
        use_master_lb: Put a load balancer in front of the masters
        out: Stream for the dry-run plan
    """
    config: ClusterConfig
    model_dirs: list[Path]
    state_store: StateStore
    target: str = 'direct'
    ssh_public_key: Optional[Path] = None
    work_dir: Path = Path('state')
    max_workers: int = 1
    cloud_api: Optional[CloudAPI] = None
    use_master_asg: bool = True
    use_master_lb: bool = False
    out: Optional[TextIO] = None

    def _read_ssh_public_key(self) -> dict[str, bytes]:
        if self.ssh_public_key is None:
            if self.config.cloud_provider == 'aws':
                raise ConfigError("SSH public key must be specified when running with AWS")
            return {}
        try:
            return {'ssh-public-key': self.ssh_public_key.read_bytes()}
        except OSError as e:
            raise ConfigError(f"error reading SSH key file {self.ssh_public_key}: {e}")

    def run(self) -> RunResult:
        """Run the command.

        Raises:
            ConfigError: If the configuration is invalid or incomplete
            LoadError: If the model cannot be loaded
            DependencyError: If the task graph is invalid
            ExecutionError: If a task fails
            StateStoreError: If CA or secret material cannot be read or written
        """
        config = self.config
        ensure_valid(config)
        fill_defaults(config)

        tags = build_tags(config, use_master_asg=self.use_master_asg, use_master_lb=self.use_master_lb)
        registry = build_registry(config.cloud_provider)

        api = self.cloud_api
        if api is None:
            api = FileCloudAPI(self.work_dir / CLOUD_STATE_FILE)
        cloud = new_cloud(config, api)

        ca_store = self.state_store.ca()
        secret_store = self.state_store.secrets()
        template_context = TemplateContext(
            tags=tags,
            ca_store=ca_store,
            secret_store=secret_store,
            resources=self._read_ssh_public_key(),
            helpers=template_helpers(config),
        )

        loader = ModelLoader(registry, config, template_context)
        task_map = loader.build(self.model_dirs)

        out_dir = self.work_dir / 'terraform'
        target = build_target(self.target, cloud, out=self.out or sys.stdout, out_dir=out_dir)
        context = Context(
            target,
            cloud,
            ca_store,
            secret_store,
            max_workers=self.max_workers,
            state_path=self.work_dir / EXECUTION_STATE_FILE,
        )
        changes = context.run(task_map)

        result = RunResult(target=target.name, task_count=len(task_map), changes=changes)
        if self.target == TARGET_TERRAFORM:
            result.output_dir = out_dir
        if isinstance(target, DryRunTarget) and not target.has_changes:
            logger.info("No changes required")
        return result
