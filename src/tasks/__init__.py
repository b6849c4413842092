"""Task types and the per-run registry."""

import logging
from typing import Callable

import cloud
from config import ClusterConfig
from engine.registry import Registry
from tasks import aws, gce
from tasks.keypair import Keypair

logger = logging.getLogger(__name__)

PROVIDER_TASK_TYPES = {
    'aws': aws.TASK_TYPES,
    'gce': gce.TASK_TYPES,
}


def build_registry(provider: str) -> Registry:
    """New registry holding the shared kinds plus the provider's kinds.

    Raises:
        RegistryError: If two kinds claim the same type name
        ValueError: If the provider is unknown
    """
    task_types = PROVIDER_TASK_TYPES.get(provider)
    if task_types is None:
        raise ValueError(f"unknown cloud provider {provider!r}")
    registry = Registry(provider)
    registry.register(Keypair.type_name, Keypair)
    registry.register_all(task_types)
    logger.debug(f"Registered {len(registry.type_names())} task types for {provider}")
    return registry


def template_helpers(config: ClusterConfig) -> dict[str, Callable]:
    """Provider-specific functions exposed to model templates."""
    if config.cloud_provider == 'aws':
        return {'MachineTypeInfo': cloud.machine_type_info}
    if config.cloud_provider == 'gce':
        return {'SafeClusterName': lambda: gce.safe_cluster_name(config.cluster_name)}
    return {}
