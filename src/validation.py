"""Configuration validation.

Checks run once, before any task is constructed or any cloud call is made,
catching configuration issues early with actionable error messages.
"""

import logging

from cloud import AWS_REGIONS, aws_region_for_zone
from config import ClusterConfig, ConfigError

logger = logging.getLogger(__name__)

SUPPORTED_PROVIDERS = ('aws', 'gce')


class ConfigValidationError(ConfigError):
    """Malformed, conflicting or missing required configuration."""

    def __init__(self, message: str):
        super().__init__(message, code='E100')


# -----------------------------------------------------------------------------
# Provider-neutral checks
# -----------------------------------------------------------------------------

def _duplicates(values: list[str]) -> list[str]:
    seen: set[str] = set()
    dups = []
    for value in values:
        if value in seen and value not in dups:
            dups.append(value)
        seen.add(value)
    return dups


def validate_zones(config: ClusterConfig) -> list[str]:
    """Validate zone lists are present, duplicate-free, and give etcd a quorum.

    Returns:
        List of validation error messages (empty if valid)
    """
    errors = []

    if not config.node_zones:
        errors.append("must specify at least one NodeZone (use --zones)")
    if not config.master_zones:
        errors.append("must specify at least one MasterZone (use --master-zones)")

    for zone in _duplicates(config.master_zones):
        errors.append(f"MasterZones contained a duplicate value: {zone}")
    for zone in _duplicates(config.node_zones):
        errors.append(f"NodeZones contained a duplicate value: {zone}")

    if config.master_zones and len(config.master_zones) % 2 == 0:
        errors.append(
            "There should be an odd number of master-zones, for etcd's quorum.\n"
            "  Hint: Use --zones and --master-zones to declare node zones and master zones separately."
        )

    return errors


# -----------------------------------------------------------------------------
# Provider-specific checks
# -----------------------------------------------------------------------------

def validate_aws(config: ClusterConfig) -> list[str]:
    """AWS rules: one region, known region, master zones are node zones."""
    errors = []
    region = config.region

    for zone in config.node_zones:
        if len(zone) <= 2:
            errors.append(f"Invalid AWS zone: {zone!r}")
            continue
        zone_region = aws_region_for_zone(zone)
        if region and region != zone_region:
            errors.append(
                f"Clusters cannot span multiple regions (zone {zone!r} is not in {region!r})"
            )
            continue
        region = zone_region

    if region and region not in AWS_REGIONS:
        errors.append(f"Region is not a recognized EC2 region: {region!r}")

    node_zones = set(config.node_zones)
    for zone in config.master_zones:
        if zone not in node_zones:
            errors.append(
                f"All MasterZones must (currently) also be NodeZones: {zone!r} is not a NodeZone"
            )

    return errors


def validate_gce(config: ClusterConfig) -> list[str]:
    """GCE rules: zones look like <area>-<region>-<zone>, project is set."""
    errors = []
    for zone in config.node_zones:
        if len(zone.split('-')) <= 2:
            errors.append(f"Invalid Zone: {zone}")
    if not config.project:
        errors.append("project is required for GCE (use --project)")
    return errors


def validate_config(config: ClusterConfig) -> list[str]:
    """Run all configuration checks.

    Returns:
        List of validation error messages (empty if valid)
    """
    errors = []

    if not config.cluster_name:
        errors.append("--name is required (e.g. mycluster.myzone.com)")

    if not config.cloud_provider:
        errors.append("--cloud is required (e.g. aws, gce)")
    elif config.cloud_provider not in SUPPORTED_PROVIDERS:
        errors.append(f"unknown CloudProvider {config.cloud_provider!r}")

    errors.extend(validate_zones(config))

    if config.node_count < 0:
        errors.append(f"node count must not be negative: {config.node_count}")

    if config.cloud_provider == 'aws':
        errors.extend(validate_aws(config))
    elif config.cloud_provider == 'gce':
        errors.extend(validate_gce(config))

    return errors


def ensure_valid(config: ClusterConfig) -> None:
    """Validate configuration, raising on the first problem.

    Raises:
        ConfigValidationError: With the first validation error found
    """
    errors = validate_config(config)
    if errors:
        for error in errors[1:]:
            logger.debug(f"Additional validation error: {error}")
        raise ConfigValidationError(errors[0])
    logger.debug("Configuration validation passed")
