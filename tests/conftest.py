"""Shared pytest fixtures for cloudup tests."""

import sys
from pathlib import Path

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from config import ClusterConfig
from engine.registry import Registry
from engine.task import Task
from statestore import StateStore

MODEL_DIR = Path(__file__).parent.parent / 'models' / 'cloudup'

SSH_PUBLIC_KEY = "ssh-rsa AAAAB3NzaC1yc2EAAAADAQABAAABAQC7test user@example.com\n"


class StubTask(Task):
    """Task whose dependencies are its 'after' list."""
    type_name = 'stub'
    resource_type = 'stub_resource'
    fields = {'value': str, 'after': list}
    references = {'after': 'stub'}


class StubNetwork(Task):
    type_name = 'network'
    resource_type = 'stub_network'
    fields = {'cidr': str}


@pytest.fixture
def stub_registry():
    """Registry with the stub and network task types."""
    registry = Registry('aws')
    registry.register_all([StubTask, StubNetwork])
    return registry


@pytest.fixture
def make_tasks(stub_registry):
    """Factory building an ordered stub task map from {name: [deps]}."""
    def _make(graph: dict, values: dict = None):
        task_map = {}
        for name, deps in graph.items():
            task = stub_registry.lookup('stub')
            body = {'after': list(deps)}
            if values and name in values:
                body['value'] = values[name]
            task.decode(name, body)
            task_map[task.key] = task
        return task_map
    return _make


@pytest.fixture
def model_dir(tmp_path):
    """Factory writing model fragments: {relative path: content} -> model root."""
    counter = {'n': 0}

    def _make(files: dict) -> Path:
        counter['n'] += 1
        root = tmp_path / f'model{counter["n"]}'
        for rel, content in files.items():
            path = root / rel
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content)
        root.mkdir(parents=True, exist_ok=True)
        return root
    return _make


@pytest.fixture
def state_store(tmp_path):
    """Fresh state store under tmp_path."""
    return StateStore(tmp_path / 'state')


@pytest.fixture
def ssh_key_file(tmp_path):
    path = tmp_path / 'id_rsa.pub'
    path.write_text(SSH_PUBLIC_KEY)
    return path


@pytest.fixture
def aws_config():
    """Valid single-zone AWS configuration with a pinned version."""
    return ClusterConfig(
        cluster_name='test.k8s.local',
        cloud_provider='aws',
        node_zones=['us-east-1a'],
        master_zones=['us-east-1a'],
        kubernetes_version='1.4.0',
    )


@pytest.fixture
def gce_config():
    """Valid single-zone GCE configuration with a pinned version."""
    return ClusterConfig(
        cluster_name='test.k8s.local',
        cloud_provider='gce',
        project='test-project',
        node_zones=['us-central1-b'],
        master_zones=['us-central1-b'],
        node_machine_type='n1-standard-1',
        master_machine_type='n1-standard-1',
        kubernetes_version='1.4.0',
    )


@pytest.fixture
def default_model_dir():
    return MODEL_DIR
