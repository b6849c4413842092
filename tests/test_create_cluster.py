"""End-to-end tests for the create-cluster command against the bundled model."""

import io
import json
import sys
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

import cli
from cloud import FileCloudAPI
from config import ConfigError
from create_cluster import CreateClusterCmd
from engine.task import CREATE, NOOP
from validation import ConfigValidationError

AWS_DEFAULT_KINDS = {
    'keypair',
    'vpc',
    'dhcpOptions',
    'vpcDHCPOptionsAssociation',
    'internetGateway',
    'internetGatewayAttachment',
    'routeTable',
    'route',
    'subnet',
    'routeTableAssociation',
    'securityGroup',
    'securityGroupRule',
    'iamRole',
    'iamRolePolicy',
    'iamInstanceProfile',
    'iamInstanceProfileRole',
    'sshKey',
    'ebsVolume',
    'launchConfiguration',
    'autoscalingGroup',
    'dnsZone',
}

GCE_DEFAULT_KINDS = {
    'keypair',
    'network',
    'firewallRule',
    'ipAddress',
    'persistentDisk',
    'instance',
    'instanceTemplate',
    'managedInstanceGroup',
}


@pytest.fixture
def make_cmd(default_model_dir, state_store, ssh_key_file, tmp_path):
    """Factory for a command over the bundled model with an in-memory cloud."""
    def _make(config, target='dryrun', **kwargs):
        kwargs.setdefault('ssh_public_key', ssh_key_file)
        kwargs.setdefault('work_dir', tmp_path / 'work')
        kwargs.setdefault('cloud_api', FileCloudAPI())
        kwargs.setdefault('out', io.StringIO())
        return CreateClusterCmd(
            config=config,
            model_dirs=[default_model_dir],
            state_store=state_store,
            target=target,
            **kwargs,
        )
    return _make


class TestDryRun:
    """Dry runs of the bundled model."""

    def test_aws_plan(self, make_cmd, aws_config):
        api = FileCloudAPI()
        out = io.StringIO()
        result = make_cmd(aws_config, cloud_api=api, out=out).run()

        assert {c.key.type_name for c in result.changes} == AWS_DEFAULT_KINDS
        assert all(c.kind == CREATE for c in result.changes)
        assert result.task_count == len(result.changes)
        assert api.mutations == 0
        assert api.snapshot() == {}
        assert f"DRY-RUN: {result.task_count} tasks" in out.getvalue()

    def test_aws_plan_names(self, make_cmd, aws_config):
        result = make_cmd(aws_config).run()
        names = {str(c.key) for c in result.changes}
        assert 'vpc/test.k8s.local' in names
        assert 'route/0.0.0.0/0' in names
        assert 'subnet/us-east-1a.test.k8s.local' in names
        assert 'autoscalingGroup/master-us-east-1a.masters.test.k8s.local' in names
        assert 'dnsZone/k8s.local' in names
        assert 'keypair/master' in names

    def test_aws_dependencies_first(self, make_cmd, aws_config):
        result = make_cmd(aws_config).run()
        order = [str(c.key) for c in result.changes]
        assert order.index('vpc/test.k8s.local') < order.index('subnet/us-east-1a.test.k8s.local')
        assert order.index('launchConfiguration/nodes.test.k8s.local') < order.index(
            'autoscalingGroup/nodes.test.k8s.local'
        )

    def test_aws_multi_zone(self, make_cmd, aws_config):
        aws_config.node_zones = ['us-east-1a', 'us-east-1b', 'us-east-1c']
        aws_config.master_zones = ['us-east-1a', 'us-east-1b', 'us-east-1c']
        result = make_cmd(aws_config).run()
        subnets = [c for c in result.changes if c.key.type_name == 'subnet']
        masters = [c for c in result.changes
                   if c.key.type_name == 'autoscalingGroup' and c.key.name.startswith('master-')]
        assert len(subnets) == 3
        assert len(masters) == 3

    @pytest.mark.parametrize('zone,domain', [
        ('us-east-1a', 'ec2.internal'),
        ('us-west-2a', 'us-west-2.compute.internal'),
    ])
    def test_aws_dhcp_domain(self, make_cmd, aws_config, zone, domain):
        aws_config.node_zones = [zone]
        aws_config.master_zones = [zone]
        result = make_cmd(aws_config).run()
        dhcp = next(c for c in result.changes if str(c.key) == 'dhcpOptions/test.k8s.local')
        assert dhcp.changes['domainName'] == domain
        assert dhcp.changes['domainNameServers'] == ['AmazonProvidedDNS']

    def test_aws_single_master_with_lb(self, make_cmd, aws_config):
        result = make_cmd(aws_config, use_master_asg=False, use_master_lb=True).run()
        kinds = {c.key.type_name for c in result.changes}
        assert {'instance', 'elasticIP', 'loadBalancer', 'loadBalancerHealthChecks', 'dnsName'} <= kinds
        assert 'loadBalancerAttachment' not in kinds
        master_asgs = [c for c in result.changes
                       if c.key.type_name == 'autoscalingGroup' and c.key.name.startswith('master-')]
        assert master_asgs == []

    def test_gce_plan(self, make_cmd, gce_config):
        result = make_cmd(gce_config, ssh_public_key=None).run()
        assert {c.key.type_name for c in result.changes} == GCE_DEFAULT_KINDS

    def test_secrets_created_during_load(self, make_cmd, aws_config, state_store):
        make_cmd(aws_config).run()
        assert state_store.secrets().find_secret('kubelet') is not None
        assert state_store.ca().find_cert('kubelet') is None

    def test_execution_state_written(self, make_cmd, aws_config, tmp_path):
        make_cmd(aws_config).run()
        data = json.loads((tmp_path / 'work' / 'execution.json').read_text())
        assert data['target'] == 'dryrun'
        assert all(t['status'] == 'completed' for t in data['tasks'])


class TestDirect:
    """Direct runs against the file-backed cloud."""

    def test_converges(self, make_cmd, aws_config):
        api = FileCloudAPI()
        first = make_cmd(aws_config, target='direct', cloud_api=api).run()
        assert api.mutations > 0
        assert first.pending

        mutations = api.mutations
        second = make_cmd(aws_config, target='dryrun', cloud_api=api).run()
        assert second.pending == []
        assert all(c.kind == NOOP for c in second.changes)
        assert api.mutations == mutations

    def test_default_cloud_state_file(self, make_cmd, aws_config, tmp_path):
        make_cmd(aws_config, target='direct', cloud_api=None).run()
        reloaded = FileCloudAPI(tmp_path / 'work' / 'cloud.json')
        assert reloaded.describe('aws_vpc', 'test.k8s.local') is not None


class TestTerraform:
    """Terraform output of the bundled model."""

    def test_output_deterministic(self, make_cmd, aws_config, tmp_path):
        first = make_cmd(aws_config, target='terraform', work_dir=tmp_path / 'one', max_workers=4).run()
        second = make_cmd(aws_config, target='terraform', work_dir=tmp_path / 'two', max_workers=1).run()

        assert first.output_dir == tmp_path / 'one' / 'terraform'
        one = first.output_dir
        two = second.output_dir
        assert (one / 'kubernetes.tf.json').read_bytes() == (two / 'kubernetes.tf.json').read_bytes()
        one_files = sorted(p.name for p in (one / 'data').iterdir())
        two_files = sorted(p.name for p in (two / 'data').iterdir())
        assert one_files == two_files
        for name in one_files:
            assert (one / 'data' / name).read_bytes() == (two / 'data' / name).read_bytes()

    def test_output_contents(self, make_cmd, aws_config, ssh_key_file):
        api = FileCloudAPI()
        result = make_cmd(aws_config, target='terraform', cloud_api=api).run()
        doc = json.loads((result.output_dir / 'kubernetes.tf.json').read_text())
        assert doc['provider'] == {'aws': {'region': 'us-east-1'}}
        subnet = doc['resource']['aws_subnet']['us-east-1a-test-k8s-local']
        assert subnet['vpc_id'] == '${aws_vpc.test-k8s-local.id}'
        key_file = result.output_dir / 'data' / 'aws_key_pair_kubernetes-test-k8s-local_publicKey'
        assert key_file.read_text() == ssh_key_file.read_text().strip()
        assert api.mutations == 0

    def test_gce_output(self, make_cmd, gce_config):
        result = make_cmd(gce_config, target='terraform', ssh_public_key=None).run()
        doc = json.loads((result.output_dir / 'kubernetes.tf.json').read_text())
        assert doc['provider'] == {'google': {'project': 'test-project', 'region': 'us-central1'}}
        assert 'google_compute_instance_group_manager' in doc['resource']


class TestFailures:
    """Errors reported before anything runs."""

    def test_invalid_config_touches_nothing(self, make_cmd, aws_config):
        aws_config.master_zones = ['us-east-1b']
        api = MagicMock()
        with pytest.raises(ConfigValidationError):
            make_cmd(aws_config, cloud_api=api).run()
        assert api.method_calls == []

    def test_even_master_zones(self, make_cmd, aws_config):
        aws_config.node_zones = ['us-east-1a', 'us-east-1b']
        aws_config.master_zones = ['us-east-1a', 'us-east-1b']
        with pytest.raises(ConfigValidationError, match='odd number'):
            make_cmd(aws_config).run()

    def test_aws_requires_ssh_key(self, make_cmd, aws_config):
        with pytest.raises(ConfigError, match='SSH public key'):
            make_cmd(aws_config, ssh_public_key=None).run()

    def test_missing_ssh_key_file(self, make_cmd, aws_config, tmp_path):
        with pytest.raises(ConfigError, match='error reading SSH key file'):
            make_cmd(aws_config, ssh_public_key=tmp_path / 'missing.pub').run()


class TestCommandLine:
    """The create command driven through the CLI."""

    def test_multi_zone_single_master_plan(self, tmp_path, ssh_key_file, capsys):
        """Three node zones with one master zone plan one master group."""
        created = []

        def make_api(path):
            api = FileCloudAPI(path)
            created.append(api)
            return api

        argv = [
            'cluster', 'create', '--dryrun', '--json-output',
            '--cloud', 'aws',
            '--name', 'test.k8s.local',
            '--zones', 'us-east-1a,us-east-1b,us-east-1c',
            '--master-zones', 'us-east-1a',
            '--kubernetes-version', '1.4.0',
            '--state', str(tmp_path / 'state'),
            '--ssh-public-key', str(ssh_key_file),
        ]
        with patch('create_cluster.FileCloudAPI', side_effect=make_api):
            assert cli.main(argv) == 0
        data = json.loads(capsys.readouterr().out)
        tasks = [c['task'] for c in data['changes']]

        assert [api.mutations for api in created] == [0]
        assert {t.split('/', 1)[0] for t in tasks} == AWS_DEFAULT_KINDS
        assert [t for t in tasks if t.startswith('autoscalingGroup/master-')] == [
            'autoscalingGroup/master-us-east-1a.masters.test.k8s.local',
        ]
        assert len([t for t in tasks if t.startswith('subnet/')]) == 3
        assert not (tmp_path / 'state' / 'cloud.json').exists()


class TestRunResult:

    def test_to_dict_lists_pending_only(self, make_cmd, aws_config):
        result = make_cmd(aws_config).run()
        data = result.to_dict()
        assert data['target'] == 'dryrun'
        assert data['task_count'] == result.task_count
        assert len(data['changes']) == len(result.pending)
        assert 'output_dir' not in data
