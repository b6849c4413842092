"""GCE task types."""

import logging

from engine.task import Task

logger = logging.getLogger(__name__)


def safe_cluster_name(cluster_name: str) -> str:
    """GCE names may not contain dots: test.k8s.local -> test-k8s-local"""
    return cluster_name.replace('.', '-')


def _parse_allowed(rules: list) -> list[dict]:
    """["tcp:22", "tcp:80-90", "icmp"] -> terraform allow blocks."""
    by_protocol: dict[str, list[str]] = {}
    for rule in rules:
        protocol, _, ports = str(rule).partition(':')
        entry = by_protocol.setdefault(protocol, [])
        if ports:
            entry.append(ports)
    blocks = []
    for protocol in sorted(by_protocol):
        block: dict = {'protocol': protocol}
        if by_protocol[protocol]:
            block['ports'] = by_protocol[protocol]
        blocks.append(block)
    return blocks


class Network(Task):
    type_name = 'network'
    resource_type = 'google_compute_network'
    fields = {'cidr': str}
    terraform_names = {'cidr': 'ipv4_range'}
    terraform_reference_attr = 'name'

    def terraform_attributes(self, tf, ctx) -> dict:
        attrs = super().terraform_attributes(tf, ctx)
        attrs['name'] = self.name
        return attrs


class FirewallRule(Task):
    type_name = 'firewallRule'
    resource_type = 'google_compute_firewall'
    fields = {'network': str, 'sourceRanges': list, 'sourceTags': list, 'targetTags': list, 'allowed': list}
    references = {'network': 'network'}
    required = ('network', 'allowed')

    def terraform_attributes(self, tf, ctx) -> dict:
        attrs = super().terraform_attributes(tf, ctx)
        attrs['name'] = self.name
        attrs['allow'] = _parse_allowed(attrs.pop('allowed'))
        return attrs


class IPAddress(Task):
    type_name = 'ipAddress'
    resource_type = 'google_compute_address'
    fields = {}
    terraform_reference_attr = 'address'

    def terraform_attributes(self, tf, ctx) -> dict:
        return {'name': self.name}


class PersistentDisk(Task):
    type_name = 'persistentDisk'
    resource_type = 'google_compute_disk'
    fields = {'zone': str, 'sizeGB': int, 'volumeType': str}
    required = ('zone', 'sizeGB')
    terraform_names = {'sizeGB': 'size', 'volumeType': 'type'}
    terraform_reference_attr = 'name'

    def terraform_attributes(self, tf, ctx) -> dict:
        attrs = super().terraform_attributes(tf, ctx)
        attrs['name'] = self.name
        return attrs


def _service_account(scopes: list) -> dict:
    return {'scopes': list(scopes)}


class Instance(Task):
    type_name = 'instance'
    resource_type = 'google_compute_instance'
    fields = {
        'zone': str,
        'machineType': str,
        'image': str,
        'network': str,
        'tags': list,
        'metadata': dict,
        'preemptible': bool,
        'ipAddress': str,
        'scopes': list,
        'disks': list,
        'canIPForward': bool,
    }
    references = {'network': 'network', 'ipAddress': 'ipAddress', 'disks': 'persistentDisk'}
    required = ('zone', 'machineType', 'image', 'network')

    def terraform_attributes(self, tf, ctx) -> dict:
        interface: dict = {'network': self.terraform_ref(tf, ctx, 'network')}
        access = {}
        if 'ipAddress' in self.spec:
            access['nat_ip'] = self.terraform_ref(tf, ctx, 'ipAddress')
        interface['access_config'] = [access]

        attrs = {
            'name': self.name,
            'zone': self.spec['zone'],
            'machine_type': self.spec['machineType'],
            'can_ip_forward': self.get('canIPForward', False),
            'boot_disk': {'initialize_params': {'image': self.spec['image']}},
            'network_interface': [interface],
            'tags': self.get('tags', []),
            'metadata': self.get('metadata', {}),
            'scheduling': {'preemptible': self.get('preemptible', False)},
            'service_account': _service_account(self.get('scopes', [])),
        }
        disks = self.terraform_ref(tf, ctx, 'disks')
        if disks:
            attrs['attached_disk'] = [{'source': d} for d in disks]
        return attrs


class InstanceTemplate(Task):
    type_name = 'instanceTemplate'
    resource_type = 'google_compute_instance_template'
    fields = {
        'network': str,
        'machineType': str,
        'bootDiskImage': str,
        'bootDiskSizeGB': int,
        'bootDiskType': str,
        'tags': list,
        'metadata': dict,
        'scopes': list,
        'canIPForward': bool,
        'preemptible': bool,
    }
    references = {'network': 'network'}
    required = ('network', 'machineType', 'bootDiskImage')
    terraform_reference_attr = 'self_link'

    def terraform_attributes(self, tf, ctx) -> dict:
        disk: dict = {'source_image': self.spec['bootDiskImage'], 'auto_delete': True, 'boot': True}
        if 'bootDiskSizeGB' in self.spec:
            disk['disk_size_gb'] = self.spec['bootDiskSizeGB']
        if 'bootDiskType' in self.spec:
            disk['disk_type'] = self.spec['bootDiskType']
        return {
            'name_prefix': f'{self.name}-',
            'machine_type': self.spec['machineType'],
            'can_ip_forward': self.get('canIPForward', False),
            'disk': [disk],
            'network_interface': [{'network': self.terraform_ref(tf, ctx, 'network'), 'access_config': [{}]}],
            'tags': self.get('tags', []),
            'metadata': self.get('metadata', {}),
            'scheduling': {'preemptible': self.get('preemptible', False)},
            'service_account': _service_account(self.get('scopes', [])),
            'lifecycle': {'create_before_destroy': True},
        }


class ManagedInstanceGroup(Task):
    type_name = 'managedInstanceGroup'
    resource_type = 'google_compute_instance_group_manager'
    fields = {'zone': str, 'baseInstanceName': str, 'instanceTemplate': str, 'targetSize': int}
    references = {'instanceTemplate': 'instanceTemplate'}
    required = ('zone', 'baseInstanceName', 'instanceTemplate')

    def terraform_attributes(self, tf, ctx) -> dict:
        return {
            'name': self.name,
            'zone': self.spec['zone'],
            'base_instance_name': self.spec['baseInstanceName'],
            'instance_template': self.terraform_ref(tf, ctx, 'instanceTemplate'),
            'target_size': self.get('targetSize', 1),
        }


TASK_TYPES = [
    Network,
    FirewallRule,
    IPAddress,
    PersistentDisk,
    Instance,
    InstanceTemplate,
    ManagedInstanceGroup,
]
