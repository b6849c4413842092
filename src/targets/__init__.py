"""Run targets: direct, dryrun and terraform."""

from pathlib import Path
from typing import Optional, TextIO

from config import ConfigError
from targets.base import Target
from targets.direct import DirectTarget
from targets.dryrun import DryRunTarget
from targets.terraform import TerraformError, TerraformTarget

TARGET_DIRECT = 'direct'
TARGET_DRYRUN = 'dryrun'
TARGET_TERRAFORM = 'terraform'
TARGETS = (TARGET_DIRECT, TARGET_DRYRUN, TARGET_TERRAFORM)


def build_target(name: str, cloud, out: Optional[TextIO] = None,
                 out_dir: Optional[Path] = None) -> Target:
    """Construct the target for a run.

    Args:
        name: direct, dryrun or terraform
        cloud: Provider cloud for the run
        out: Stream the dry-run plan is printed to (default stdout)
        out_dir: Terraform output directory (default ./out/terraform)

    Raises:
        ConfigError: If name is not a known target
    """
    if name == TARGET_DIRECT:
        return DirectTarget(cloud)
    if name == TARGET_DRYRUN:
        return DryRunTarget(out)
    if name == TARGET_TERRAFORM:
        return TerraformTarget(cloud, out_dir or Path('out') / 'terraform')
    raise ConfigError(f"unsupported target type {name!r} (expected one of: {', '.join(TARGETS)})")


__all__ = [
    'TARGETS',
    'DirectTarget',
    'DryRunTarget',
    'Target',
    'TerraformError',
    'TerraformTarget',
    'build_target',
]
