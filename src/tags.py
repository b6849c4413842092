"""Capability tags.

Tags are computed once per run from the configuration and the chosen
topology. They only decide which model fragments are evaluated.
"""

import logging

from config import ClusterConfig

logger = logging.getLogger(__name__)

# Every tag a model may test for
KNOWN_TAGS = frozenset({
    '_aws',
    '_gce',
    '_protokube',
    '_not_protokube',
    '_master_asg',
    '_master_single',
    '_master_lb',
    '_not_master_lb',
    '_master_dns',
})

# Base image tags passed to node bootstrap
NODEUP_BASE_TAGS = ('_jessie', '_debian_family', '_systemd')


def build_tags(config: ClusterConfig, use_master_asg: bool = True,
               use_master_lb: bool = False) -> frozenset[str]:
    """Compute the tag set for a run.

    Also appends the matching node bootstrap tags to config.nodeup_tags.

    Args:
        config: Validated cluster configuration
        use_master_asg: Run masters in autoscaling groups (else a single instance)
        use_master_lb: Front the masters with a load balancer

    Returns:
        Immutable set of tags
    """
    tags: set[str] = set()
    nodeup_tags = list(NODEUP_BASE_TAGS)

    # protokube is required when masters run in ASGs
    if use_master_asg:
        tags.add('_protokube')
        nodeup_tags.append('_protokube')
    else:
        tags.add('_not_protokube')
        nodeup_tags.append('_not_protokube')

    tags.add('_master_asg' if use_master_asg else '_master_single')
    tags.add('_master_lb' if use_master_lb else '_not_master_lb')

    if config.master_public_name:
        tags.add('_master_dns')

    provider_tag = f'_{config.cloud_provider}'
    tags.add(provider_tag)
    nodeup_tags.append(provider_tag)

    for tag in nodeup_tags:
        if tag not in config.nodeup_tags:
            config.nodeup_tags.append(tag)

    logger.debug(f"Tags: {sorted(tags)}")
    return frozenset(tags)
