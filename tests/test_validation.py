"""Tests for validation and tags modules."""

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from config import ClusterConfig
from tags import KNOWN_TAGS, build_tags
from validation import ConfigValidationError, ensure_valid, validate_config, validate_zones


def _aws(node_zones, master_zones=None, **kwargs):
    return ClusterConfig(
        cluster_name='test.k8s.local',
        cloud_provider='aws',
        node_zones=list(node_zones),
        master_zones=list(master_zones if master_zones is not None else node_zones),
        **kwargs,
    )


class TestZoneValidation:
    """Tests for master zone counts and duplicates."""

    @pytest.mark.parametrize('count', [1, 3, 5])
    def test_odd_master_counts_pass(self, count):
        zones = [f'us-east-1{c}' for c in 'abcde'[:count]]
        assert validate_config(_aws(zones)) == []

    @pytest.mark.parametrize('count', [2, 4])
    def test_even_master_counts_rejected(self, count):
        zones = [f'us-east-1{c}' for c in 'abcd'[:count]]
        errors = validate_config(_aws(zones))
        assert len(errors) == 1
        assert 'odd number of master-zones' in errors[0]

    def test_duplicate_node_zone(self):
        errors = validate_zones(_aws(['us-east-1a', 'us-east-1a'], ['us-east-1a']))
        assert errors == ['NodeZones contained a duplicate value: us-east-1a']

    def test_duplicate_master_zone(self):
        errors = validate_zones(_aws(['us-east-1a'], ['us-east-1a', 'us-east-1a', 'us-east-1a']))
        assert 'MasterZones contained a duplicate value: us-east-1a' in errors

    def test_no_zones(self):
        errors = validate_zones(ClusterConfig())
        assert len(errors) == 2


class TestAWSValidation:
    """Tests for AWS-specific rules."""

    def test_master_zone_must_be_node_zone(self):
        errors = validate_config(_aws(['us-east-1a'], ['us-east-1b']))
        assert any('us-east-1b' in e and 'NodeZone' in e for e in errors)

    def test_multiple_regions(self):
        errors = validate_config(_aws(['us-east-1a', 'us-west-2a', 'us-east-1b'], ['us-east-1a']))
        assert any('multiple regions' in e for e in errors)

    def test_unknown_region(self):
        errors = validate_config(_aws(['mars-north-1a']))
        assert any('not a recognized EC2 region' in e for e in errors)

    def test_region_mismatch_with_explicit_region(self):
        errors = validate_config(_aws(['us-east-1a'], region='us-west-2'))
        assert any('multiple regions' in e for e in errors)


class TestGCEValidation:
    """Tests for GCE-specific rules."""

    def test_valid(self, gce_config):
        assert validate_config(gce_config) == []

    def test_project_required(self, gce_config):
        gce_config.project = ''
        assert validate_config(gce_config) == ["project is required for GCE (use --project)"]

    def test_zone_format(self, gce_config):
        gce_config.node_zones = ['central1']
        gce_config.master_zones = ['central1']
        assert "Invalid Zone: central1" in validate_config(gce_config)


class TestGeneralValidation:

    def test_name_and_cloud_required(self):
        errors = validate_config(ClusterConfig(node_zones=['a'], master_zones=['a']))
        assert any('--name' in e for e in errors)
        assert any('--cloud' in e for e in errors)

    def test_unknown_provider(self):
        config = _aws(['us-east-1a'])
        config.cloud_provider = 'azure'
        assert "unknown CloudProvider 'azure'" in validate_config(config)

    def test_negative_node_count(self):
        config = _aws(['us-east-1a'], node_count=-1)
        assert any('negative' in e for e in validate_config(config))


class TestEnsureValid:

    def test_raises_first_error(self):
        with pytest.raises(ConfigValidationError) as exc_info:
            ensure_valid(_aws(['us-east-1a', 'us-east-1b']))
        assert exc_info.value.code == 'E100'
        assert 'odd number' in str(exc_info.value)

    def test_passes(self, aws_config):
        ensure_valid(aws_config)


class TestBuildTags:
    """Tests for tag computation."""

    def test_default_aws_tags(self, aws_config):
        aws_config.master_public_name = 'api.test.k8s.local'
        tags = build_tags(aws_config)
        assert tags == frozenset({'_aws', '_protokube', '_master_asg', '_not_master_lb', '_master_dns'})

    def test_single_master_with_lb(self, aws_config):
        tags = build_tags(aws_config, use_master_asg=False, use_master_lb=True)
        assert '_master_single' in tags
        assert '_not_protokube' in tags
        assert '_master_lb' in tags
        assert '_master_asg' not in tags
        assert '_master_dns' not in tags

    def test_gce(self, gce_config):
        assert '_gce' in build_tags(gce_config)

    def test_all_tags_known(self, aws_config):
        assert build_tags(aws_config, use_master_asg=False, use_master_lb=True) <= KNOWN_TAGS

    def test_nodeup_tags_appended_once(self, aws_config):
        build_tags(aws_config)
        build_tags(aws_config)
        assert aws_config.nodeup_tags == ['_jessie', '_debian_family', '_systemd', '_protokube', '_aws']
