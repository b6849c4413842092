"""Cluster configuration management.

Configuration is assembled from up to two sources:
- A YAML configuration file (--conf)
- Command-line overrides

The merge order is: dataclass defaults -> file -> overrides. Master zones
follow one explicit precedence rule: a master-zone list given by any source
always wins; only when no source provides one do master zones default to the
node zones.
"""

import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Optional

import requests
import yaml

from common import CloudupError, parse_zone_list, read_location

logger = logging.getLogger(__name__)

STABLE_VERSION_URL = 'https://storage.googleapis.com/kubernetes-release/release/stable.txt'
RELEASE_BASE_URL = 'https://storage.googleapis.com/kubernetes-release/release'
DEFAULT_NODEUP_LOCATION = 'https://kubeupv2.s3.amazonaws.com/nodeup/nodeup.tar.gz'

# File keys may use the camelCase spelling of the original config format
_CAMEL_ALIASES = {
    'clusterName': 'cluster_name',
    'cloudProvider': 'cloud_provider',
    'nodeZones': 'node_zones',
    'masterZones': 'master_zones',
    'nodeMachineType': 'node_machine_type',
    'masterMachineType': 'master_machine_type',
    'nodeCount': 'node_count',
    'dnsZone': 'dns_zone',
    'masterPublicName': 'master_public_name',
    'kubernetesVersion': 'kubernetes_version',
    'nodeupLocation': 'nodeup_location',
    'nodeupTags': 'nodeup_tags',
}


class ConfigError(CloudupError):
    """Configuration error."""

    def __init__(self, message: str, code: str = 'E101'):
        super().__init__(code, message)


@dataclass
class ClusterConfig:
    """Desired configuration for one cluster.

    Attributes:
        cluster_name: Fully qualified cluster name (e.g. test.k8s.local)
        cloud_provider: Provider selector ('aws' or 'gce')
        project: GCE project (required on GCE)
        region: Region, derived from the zones when not set
        node_zones: Zones in which nodes run
        master_zones: Zones in which masters run (odd count, for etcd quorum)
        node_machine_type: Instance size for nodes
        master_machine_type: Instance size for masters
        node_count: Number of nodes
        dns_zone: DNS hosted zone for cluster records
        master_public_name: Public DNS name of the API server
        kubernetes_version: Kubernetes release without a leading 'v'
        assets: Release asset URLs downloaded by nodes
        nodeup_location: URL of the node bootstrap bundle
        nodeup_tags: Capability tags passed to node bootstrap
    """
    cluster_name: str = ''
    cloud_provider: str = ''
    project: str = ''
    region: str = ''
    node_zones: list[str] = field(default_factory=list)
    master_zones: list[str] = field(default_factory=list)
    node_machine_type: str = 't2.medium'
    master_machine_type: str = 'm3.medium'
    node_count: int = 2
    dns_zone: str = ''
    master_public_name: str = ''
    kubernetes_version: str = ''
    assets: list[str] = field(default_factory=list)
    nodeup_location: str = ''
    nodeup_tags: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a plain dictionary (template and JSON friendly)."""
        return {f.name: getattr(self, f.name) for f in fields(self)}


def _normalize_key(key: str) -> str:
    return _CAMEL_ALIASES.get(key, key)


def apply_values(config: ClusterConfig, values: dict[str, Any], source: str) -> None:
    """Apply a mapping of configuration values onto a config.

    Args:
        config: Config to update in place
        values: Mapping of field name (snake_case or camelCase) to value
        source: Description of where the values came from (for errors)

    Raises:
        ConfigError: If a key is unknown or a value has the wrong shape
    """
    known = {f.name: f for f in fields(config)}
    for raw_key, value in values.items():
        key = _normalize_key(str(raw_key))
        if key not in known:
            raise ConfigError(f"Unknown configuration key '{raw_key}' in {source}")
        if value is None:
            continue
        current = getattr(config, key)
        if isinstance(current, list):
            if isinstance(value, str):
                value = [v.strip() for v in value.split(',') if v.strip()]
            if not isinstance(value, list):
                raise ConfigError(f"Configuration key '{raw_key}' in {source} must be a list")
            value = [str(v) for v in value]
            if key.endswith('_zones'):
                value = parse_zone_list(','.join(value))
        elif isinstance(current, int):
            try:
                value = int(value)
            except (TypeError, ValueError):
                raise ConfigError(f"Configuration key '{raw_key}' in {source} must be an integer")
        else:
            value = str(value)
        setattr(config, key, value)


def load_config_file(path: Path, config: Optional[ClusterConfig] = None) -> ClusterConfig:
    """Load configuration from a YAML file.

    Args:
        path: Path to YAML configuration file
        config: Existing config to merge into (default: new ClusterConfig)

    Returns:
        The updated config

    Raises:
        ConfigError: If the file is missing, not valid YAML, or has unknown keys
    """
    config = config or ClusterConfig()
    if not path.exists():
        raise ConfigError(f"error loading configuration file {path}: file not found")
    try:
        with open(path, encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigError(f"error reading configuration file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"error parsing configuration file {path}: {e}")
    if not isinstance(data, dict):
        raise ConfigError(f"Configuration file {path} must be a YAML object (dict)")

    apply_values(config, data, str(path))
    logger.debug(f"Loaded configuration from {path}")
    return config


def resolve_master_zones(config: ClusterConfig) -> None:
    """Default master zones to node zones when none were given."""
    if not config.master_zones:
        config.master_zones = list(config.node_zones)


def normalize_kubernetes_version(version: str) -> str:
    """Strip whitespace and a leading 'v' from a Kubernetes version."""
    normalized = version.strip()
    if normalized.startswith('v'):
        normalized = normalized[1:]
    return normalized


def fill_defaults(config: ClusterConfig) -> None:
    """Fill in derived defaults.

    - master_public_name: api.<cluster_name>
    - dns_zone: last two labels of the master public name
    - kubernetes_version: latest stable release (network lookup)
    - assets: kubelet and kubectl for the chosen version
    - nodeup_location: default bootstrap bundle

    Raises:
        ConfigError: If the Kubernetes version is unset and cannot be fetched
    """
    if not config.master_public_name:
        config.master_public_name = f'api.{config.cluster_name}'

    if not config.dns_zone:
        tokens = config.master_public_name.split('.')
        config.dns_zone = '.'.join(tokens[-2:])
        logger.info(f"Defaulting DNS zone to: {config.dns_zone}")

    if not config.kubernetes_version:
        try:
            latest = read_location(STABLE_VERSION_URL).decode('utf-8').strip()
        except requests.RequestException as e:
            raise ConfigError(
                f"kubernetes version not specified, and unable to download latest version "
                f"from {STABLE_VERSION_URL}: {e}",
                code='E102',
            )
        logger.info(f"Using kubernetes latest stable version: {latest}")
        config.kubernetes_version = latest

    normalized = normalize_kubernetes_version(config.kubernetes_version)
    if normalized != config.kubernetes_version:
        logger.warning(f"Normalizing kubernetes version: {config.kubernetes_version!r} -> {normalized!r}")
        config.kubernetes_version = normalized

    if not config.assets:
        for binary in ('kubelet', 'kubectl'):
            asset = f'{RELEASE_BASE_URL}/v{config.kubernetes_version}/bin/linux/amd64/{binary}'
            logger.info(f"Adding default {binary} release asset: {asset}")
            config.assets.append(asset)

    if not config.nodeup_location:
        logger.info(f"Using default nodeup location: {DEFAULT_NODEUP_LOCATION}")
        config.nodeup_location = DEFAULT_NODEUP_LOCATION


def get_base_dir() -> Path:
    """Get the repository directory."""
    return Path(__file__).parent.parent  # src/ -> repo root


def get_default_model_dir() -> Path:
    """Get the bundled cloudup model directory."""
    return get_base_dir() / 'models' / 'cloudup'
