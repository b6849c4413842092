"""Cloud provider boundary.

A run talks to exactly one provider. The provider is chosen once, when the
cloud is built, and is one of a closed set of dataclasses (AWSCloud,
GCECloud). Each wraps a provider API collaborator that understands three
calls: describe, create and update of a named resource.

FileCloudAPI is the offline collaborator: it keeps provider-side state in a
JSON document (or purely in memory) and counts mutations. Provider SDK
bindings plug in by implementing the same CloudAPI protocol.
"""

import copy
import json
import logging
import os
import tempfile
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Protocol, Union, runtime_checkable

from common import CloudupError
from config import ClusterConfig

logger = logging.getLogger(__name__)

AWS_REGIONS = {
    'us-east-1', 'us-east-2', 'us-west-1', 'us-west-2',
    'ca-central-1', 'sa-east-1',
    'eu-west-1', 'eu-west-2', 'eu-central-1',
    'ap-south-1', 'ap-northeast-1', 'ap-northeast-2',
    'ap-southeast-1', 'ap-southeast-2',
}

# Instance types with the number of local (ephemeral) disks they expose
AWS_MACHINE_TYPES: dict[str, dict[str, Any]] = {
    't2.micro': {'name': 't2.micro', 'ephemeral_disks': 0, 'cores': 1, 'memory_gb': 1},
    't2.small': {'name': 't2.small', 'ephemeral_disks': 0, 'cores': 1, 'memory_gb': 2},
    't2.medium': {'name': 't2.medium', 'ephemeral_disks': 0, 'cores': 2, 'memory_gb': 4},
    't2.large': {'name': 't2.large', 'ephemeral_disks': 0, 'cores': 2, 'memory_gb': 8},
    'm3.medium': {'name': 'm3.medium', 'ephemeral_disks': 1, 'cores': 1, 'memory_gb': 3.75},
    'm3.large': {'name': 'm3.large', 'ephemeral_disks': 1, 'cores': 2, 'memory_gb': 7.5},
    'm3.xlarge': {'name': 'm3.xlarge', 'ephemeral_disks': 2, 'cores': 4, 'memory_gb': 15},
    'm4.large': {'name': 'm4.large', 'ephemeral_disks': 0, 'cores': 2, 'memory_gb': 8},
    'c4.large': {'name': 'c4.large', 'ephemeral_disks': 0, 'cores': 2, 'memory_gb': 3.75},
}


class CloudAPIError(CloudupError):
    """A provider rejected a request."""

    def __init__(self, message: str):
        super().__init__('E401', message)


def validate_region(region: str) -> None:
    """Raise CloudAPIError if region is not a known AWS region."""
    if region not in AWS_REGIONS:
        raise CloudAPIError(f"Region is not a recognized EC2 region: {region!r}")


def machine_type_info(machine_type: str) -> dict[str, Any]:
    """Look up details of an AWS instance type.

    Raises:
        CloudAPIError: If the machine type is unknown
    """
    info = AWS_MACHINE_TYPES.get(machine_type)
    if info is None:
        raise CloudAPIError(f"Unknown machine type: {machine_type!r}")
    return dict(info)


@runtime_checkable
class CloudAPI(Protocol):
    """Provider API collaborator."""

    def describe(self, resource_type: str, name: str) -> Optional[dict]:
        """Return the live attributes of a resource, or None if absent."""

    def create(self, resource_type: str, name: str, attrs: dict) -> dict:
        """Create a resource and return its live attributes."""

    def update(self, resource_type: str, name: str, changes: dict) -> dict:
        """Update a resource and return its live attributes."""


class FileCloudAPI:
    """Provider state kept in a JSON document.

    With path=None the state lives only in memory. Mutations are counted so
    callers can assert that a plan performed none.
    """

    def __init__(self, path: Optional[Path] = None, resources: Optional[dict] = None):
        self.path = path
        self.mutations = 0
        self._lock = threading.Lock()
        self._resources: dict[str, dict[str, dict]] = {}
        if path is not None and path.exists():
            try:
                with open(path, encoding='utf-8') as f:
                    self._resources = json.load(f)
            except (OSError, ValueError) as e:
                raise CloudAPIError(f"error reading provider state {path}: {e}") from e
        if resources:
            for resource_type, by_name in resources.items():
                self._resources.setdefault(resource_type, {}).update(copy.deepcopy(by_name))

    def describe(self, resource_type: str, name: str) -> Optional[dict]:
        with self._lock:
            found = self._resources.get(resource_type, {}).get(name)
            return copy.deepcopy(found) if found is not None else None

    def create(self, resource_type: str, name: str, attrs: dict) -> dict:
        with self._lock:
            by_name = self._resources.setdefault(resource_type, {})
            if name in by_name:
                raise CloudAPIError(f"{resource_type} {name!r} already exists")
            by_name[name] = copy.deepcopy(attrs)
            self.mutations += 1
            self._save()
            return copy.deepcopy(by_name[name])

    def update(self, resource_type: str, name: str, changes: dict) -> dict:
        with self._lock:
            by_name = self._resources.get(resource_type, {})
            if name not in by_name:
                raise CloudAPIError(f"{resource_type} {name!r} not found")
            by_name[name].update(copy.deepcopy(changes))
            self.mutations += 1
            self._save()
            return copy.deepcopy(by_name[name])

    def snapshot(self) -> dict:
        """Return a copy of all provider-side resources."""
        with self._lock:
            return copy.deepcopy(self._resources)

    def _save(self) -> None:
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix='.cloud-', suffix='.json')
        with os.fdopen(fd, 'w', encoding='utf-8') as f:
            json.dump(self._resources, f, indent=2, sort_keys=True)
        os.replace(tmp, self.path)


@dataclass
class AWSCloud:
    """AWS provider for one region."""
    region: str
    api: CloudAPI
    tags: dict[str, str] = field(default_factory=dict)
    provider: str = field(default='aws', init=False)

    @property
    def project(self) -> str:
        return ''


@dataclass
class GCECloud:
    """GCE provider for one region of a project."""
    region: str
    project: str
    api: CloudAPI
    provider: str = field(default='gce', init=False)


Cloud = Union[AWSCloud, GCECloud]


def aws_region_for_zone(zone: str) -> str:
    """us-east-1a -> us-east-1"""
    return zone[:-1]


def gce_region_for_zone(zone: str) -> str:
    """us-central1-b -> us-central1"""
    tokens = zone.split('-')
    return f'{tokens[0]}-{tokens[1]}'


def new_cloud(config: ClusterConfig, api: CloudAPI) -> Cloud:
    """Build the provider cloud for a validated configuration.

    Sets config.region from the zones when it is not already set.

    Raises:
        CloudAPIError: If the provider is unknown or the region is invalid
    """
    provider = config.cloud_provider
    if provider == 'aws':
        region = config.region or aws_region_for_zone(config.node_zones[0])
        validate_region(region)
        config.region = region
        return AWSCloud(
            region=region,
            api=api,
            tags={'KubernetesCluster': config.cluster_name},
        )
    if provider == 'gce':
        region = config.region or gce_region_for_zone(config.node_zones[0])
        config.region = region
        return GCECloud(region=region, project=config.project, api=api)
    raise CloudAPIError(f"unknown CloudProvider {provider!r}")
