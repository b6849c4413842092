"""Tests for config and common modules."""

import sys
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
import requests

sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from common import CloudupError, parse_zone_list, read_location
from config import (
    DEFAULT_NODEUP_LOCATION,
    ClusterConfig,
    ConfigError,
    apply_values,
    fill_defaults,
    get_default_model_dir,
    load_config_file,
    normalize_kubernetes_version,
    resolve_master_zones,
)


class TestCloudupError:
    """Tests for the error base class."""

    def test_str_includes_code(self):
        err = CloudupError('E999', 'something broke')
        assert str(err) == 'E999: something broke'
        assert err.code == 'E999'
        assert err.message == 'something broke'

    def test_config_error_default_code(self):
        assert ConfigError('bad').code == 'E101'


class TestParseZoneList:
    """Tests for parse_zone_list."""

    def test_trims_and_lowercases(self):
        assert parse_zone_list(' US-East-1A , us-east-1b') == ['us-east-1a', 'us-east-1b']

    def test_drops_empty_entries(self):
        assert parse_zone_list('us-east-1a,,  ,us-east-1c,') == ['us-east-1a', 'us-east-1c']

    def test_empty_string(self):
        assert parse_zone_list('') == []


class TestReadLocation:
    """Tests for read_location."""

    def test_returns_content(self):
        resp = MagicMock()
        resp.content = b'v1.4.0\n'
        with patch('common.requests.get', return_value=resp) as mock_get:
            assert read_location('https://example.com/stable.txt') == b'v1.4.0\n'
        mock_get.assert_called_once_with('https://example.com/stable.txt', timeout=30)
        resp.raise_for_status.assert_called_once()

    def test_http_error_propagates(self):
        resp = MagicMock()
        resp.raise_for_status.side_effect = requests.HTTPError('404')
        with patch('common.requests.get', return_value=resp):
            with pytest.raises(requests.HTTPError):
                read_location('https://example.com/missing')


class TestApplyValues:
    """Tests for apply_values."""

    def test_snake_case_keys(self):
        config = ClusterConfig()
        apply_values(config, {'cluster_name': 'a.example.com', 'node_count': '3'}, 'test')
        assert config.cluster_name == 'a.example.com'
        assert config.node_count == 3

    def test_camel_case_keys(self):
        config = ClusterConfig()
        apply_values(config, {'clusterName': 'a.example.com', 'masterZones': ['us-east-1a']}, 'test')
        assert config.cluster_name == 'a.example.com'
        assert config.master_zones == ['us-east-1a']

    def test_unknown_key_rejected(self):
        with pytest.raises(ConfigError) as exc_info:
            apply_values(ClusterConfig(), {'nodeZoness': ['a']}, 'cluster.yaml')
        assert "nodeZoness" in str(exc_info.value)
        assert "cluster.yaml" in str(exc_info.value)

    def test_zone_lists_normalized(self):
        config = ClusterConfig()
        apply_values(config, {'node_zones': [' US-EAST-1A', 'us-east-1b ']}, 'test')
        assert config.node_zones == ['us-east-1a', 'us-east-1b']

    def test_comma_string_for_list(self):
        config = ClusterConfig()
        apply_values(config, {'node_zones': 'us-east-1a,us-east-1b'}, 'test')
        assert config.node_zones == ['us-east-1a', 'us-east-1b']

    def test_non_integer_count_rejected(self):
        with pytest.raises(ConfigError):
            apply_values(ClusterConfig(), {'node_count': 'many'}, 'test')

    def test_none_values_skipped(self):
        config = ClusterConfig(cluster_name='keep.example.com')
        apply_values(config, {'cluster_name': None}, 'test')
        assert config.cluster_name == 'keep.example.com'

    def test_mapping_for_list_rejected(self):
        with pytest.raises(ConfigError):
            apply_values(ClusterConfig(), {'node_zones': {'a': 1}}, 'test')


class TestLoadConfigFile:
    """Tests for load_config_file."""

    def test_loads_yaml(self, tmp_path):
        path = tmp_path / 'cluster.yaml'
        path.write_text(
            "clusterName: test.k8s.local\n"
            "cloudProvider: aws\n"
            "nodeZones: [us-east-1a, us-east-1b, us-east-1c]\n"
            "masterZones: [us-east-1a]\n"
        )
        config = load_config_file(path)
        assert config.cluster_name == 'test.k8s.local'
        assert config.node_zones == ['us-east-1a', 'us-east-1b', 'us-east-1c']
        assert config.master_zones == ['us-east-1a']

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match='file not found'):
            load_config_file(tmp_path / 'nope.yaml')

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / 'bad.yaml'
        path.write_text("clusterName: [unclosed\n")
        with pytest.raises(ConfigError, match='error parsing'):
            load_config_file(path)

    def test_directory(self, tmp_path):
        with pytest.raises(ConfigError, match='error reading') as exc_info:
            load_config_file(tmp_path)
        assert exc_info.value.code == 'E101'

    def test_not_utf8(self, tmp_path):
        path = tmp_path / 'latin1.yaml'
        path.write_bytes(b'clusterName: caf\xe9\n')
        with pytest.raises(ConfigError, match='error reading'):
            load_config_file(path)

    def test_non_mapping(self, tmp_path):
        path = tmp_path / 'list.yaml'
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigError, match='must be a YAML object'):
            load_config_file(path)

    def test_empty_file(self, tmp_path):
        path = tmp_path / 'empty.yaml'
        path.write_text("")
        config = load_config_file(path)
        assert config.cluster_name == ''


class TestResolveMasterZones:
    """Tests for master zone defaulting."""

    def test_defaults_to_node_zones(self):
        config = ClusterConfig(node_zones=['us-east-1a', 'us-east-1b', 'us-east-1c'])
        resolve_master_zones(config)
        assert config.master_zones == ['us-east-1a', 'us-east-1b', 'us-east-1c']

    def test_explicit_master_zones_kept(self):
        config = ClusterConfig(
            node_zones=['us-east-1a', 'us-east-1b'],
            master_zones=['us-east-1a'],
        )
        resolve_master_zones(config)
        assert config.master_zones == ['us-east-1a']

    def test_copy_not_alias(self):
        config = ClusterConfig(node_zones=['us-east-1a'])
        resolve_master_zones(config)
        config.master_zones.append('us-east-1b')
        assert config.node_zones == ['us-east-1a']


class TestFillDefaults:
    """Tests for fill_defaults."""

    def test_derives_names(self):
        config = ClusterConfig(cluster_name='test.k8s.local', kubernetes_version='1.4.0')
        fill_defaults(config)
        assert config.master_public_name == 'api.test.k8s.local'
        assert config.dns_zone == 'k8s.local'
        assert config.nodeup_location == DEFAULT_NODEUP_LOCATION

    def test_explicit_dns_zone_kept(self):
        config = ClusterConfig(
            cluster_name='test.k8s.local',
            dns_zone='example.com',
            kubernetes_version='1.4.0',
        )
        fill_defaults(config)
        assert config.dns_zone == 'example.com'

    def test_assets_for_version(self):
        config = ClusterConfig(cluster_name='test.k8s.local', kubernetes_version='1.4.0')
        fill_defaults(config)
        assert len(config.assets) == 2
        assert config.assets[0].endswith('/v1.4.0/bin/linux/amd64/kubelet')
        assert config.assets[1].endswith('/v1.4.0/bin/linux/amd64/kubectl')

    def test_version_normalized(self):
        config = ClusterConfig(cluster_name='test.k8s.local', kubernetes_version=' v1.4.6 ')
        fill_defaults(config)
        assert config.kubernetes_version == '1.4.6'

    def test_latest_version_fetched(self):
        config = ClusterConfig(cluster_name='test.k8s.local')
        with patch('config.read_location', return_value=b'v1.4.7\n') as mock_read:
            fill_defaults(config)
        mock_read.assert_called_once()
        assert config.kubernetes_version == '1.4.7'

    def test_latest_version_unavailable(self):
        config = ClusterConfig(cluster_name='test.k8s.local')
        with patch('config.read_location', side_effect=requests.ConnectionError('offline')):
            with pytest.raises(ConfigError) as exc_info:
                fill_defaults(config)
        assert exc_info.value.code == 'E102'

    def test_no_fetch_when_version_given(self):
        config = ClusterConfig(cluster_name='test.k8s.local', kubernetes_version='1.4.0')
        with patch('config.read_location') as mock_read:
            fill_defaults(config)
        mock_read.assert_not_called()


class TestNormalizeVersion:

    def test_strips_v(self):
        assert normalize_kubernetes_version('v1.4.0') == '1.4.0'

    def test_plain(self):
        assert normalize_kubernetes_version('1.4.0') == '1.4.0'


class TestDefaultModelDir:

    def test_bundled_model_exists(self):
        model = get_default_model_dir()
        assert model.name == 'cloudup'
        assert (model / 'pki.yaml').exists()
