"""AWS task types.

Each class maps one model resource type onto one AWS resource. Most kinds
need only their declared shape; the ones whose terraform form differs from
their flat model form override terraform_attributes or render_terraform.
"""

import logging
from typing import ClassVar

from engine.task import Task

logger = logging.getLogger(__name__)


class AWSTask(Task):
    """AWS resource; taggable kinds carry the cluster tags plus a Name."""

    taggable: ClassVar[bool] = False

    def resource_tags(self, ctx) -> dict[str, str]:
        tags = dict(ctx.cloud.tags)
        tags['Name'] = self.name
        return tags

    def desired(self, ctx) -> dict:
        attrs = super().desired(ctx)
        if self.taggable:
            attrs['tags'] = self.resource_tags(ctx)
        return attrs

    def terraform_attributes(self, tf, ctx) -> dict:
        attrs = super().terraform_attributes(tf, ctx)
        if self.taggable:
            attrs['tags'] = self.resource_tags(ctx)
        return attrs


# Network

class VPC(AWSTask):
    type_name = 'vpc'
    resource_type = 'aws_vpc'
    taggable = True
    fields = {'cidr': str, 'enableDnsHostnames': bool, 'enableDnsSupport': bool}
    required = ('cidr',)
    terraform_names = {'cidr': 'cidr_block'}


class DHCPOptions(AWSTask):
    type_name = 'dhcpOptions'
    resource_type = 'aws_vpc_dhcp_options'
    taggable = True
    fields = {'domainName': str, 'domainNameServers': list}


class VPCDHCPOptionsAssociation(AWSTask):
    type_name = 'vpcDHCPOptionsAssociation'
    resource_type = 'aws_vpc_dhcp_options_association'
    fields = {'vpc': str, 'dhcpOptions': str}
    references = {'vpc': 'vpc', 'dhcpOptions': 'dhcpOptions'}
    required = ('vpc', 'dhcpOptions')
    terraform_names = {'vpc': 'vpc_id', 'dhcpOptions': 'dhcp_options_id'}


class InternetGateway(AWSTask):
    type_name = 'internetGateway'
    resource_type = 'aws_internet_gateway'
    taggable = True
    fields = {}


class InternetGatewayAttachment(AWSTask):
    type_name = 'internetGatewayAttachment'
    resource_type = 'aws_internet_gateway_attachment'
    fields = {'vpc': str, 'internetGateway': str}
    references = {'vpc': 'vpc', 'internetGateway': 'internetGateway'}
    required = ('vpc', 'internetGateway')
    terraform_names = {'vpc': 'vpc_id', 'internetGateway': 'internet_gateway_id'}


class RouteTable(AWSTask):
    type_name = 'routeTable'
    resource_type = 'aws_route_table'
    taggable = True
    fields = {'vpc': str}
    references = {'vpc': 'vpc'}
    required = ('vpc',)
    terraform_names = {'vpc': 'vpc_id'}


class Route(AWSTask):
    type_name = 'route'
    resource_type = 'aws_route'
    fields = {'routeTable': str, 'internetGateway': str, 'instance': str, 'cidr': str}
    references = {'routeTable': 'routeTable', 'internetGateway': 'internetGateway', 'instance': 'instance'}
    required = ('routeTable', 'cidr')
    terraform_names = {
        'routeTable': 'route_table_id',
        'internetGateway': 'gateway_id',
        'instance': 'instance_id',
        'cidr': 'destination_cidr_block',
    }


class Subnet(AWSTask):
    type_name = 'subnet'
    resource_type = 'aws_subnet'
    taggable = True
    fields = {'vpc': str, 'availabilityZone': str, 'cidr': str}
    references = {'vpc': 'vpc'}
    required = ('vpc', 'availabilityZone', 'cidr')
    terraform_names = {'vpc': 'vpc_id', 'cidr': 'cidr_block'}


class RouteTableAssociation(AWSTask):
    type_name = 'routeTableAssociation'
    resource_type = 'aws_route_table_association'
    fields = {'routeTable': str, 'subnet': str}
    references = {'routeTable': 'routeTable', 'subnet': 'subnet'}
    required = ('routeTable', 'subnet')
    terraform_names = {'routeTable': 'route_table_id', 'subnet': 'subnet_id'}


class SecurityGroup(AWSTask):
    type_name = 'securityGroup'
    resource_type = 'aws_security_group'
    taggable = True
    fields = {'vpc': str, 'description': str}
    references = {'vpc': 'vpc'}
    required = ('vpc',)
    terraform_names = {'vpc': 'vpc_id'}

    def terraform_attributes(self, tf, ctx) -> dict:
        attrs = super().terraform_attributes(tf, ctx)
        attrs['name'] = self.name
        return attrs


class SecurityGroupRule(AWSTask):
    type_name = 'securityGroupRule'
    resource_type = 'aws_security_group_rule'
    fields = {
        'securityGroup': str,
        'sourceGroup': str,
        'cidr': str,
        'protocol': str,
        'fromPort': int,
        'toPort': int,
        'egress': bool,
    }
    references = {'securityGroup': 'securityGroup', 'sourceGroup': 'securityGroup'}
    required = ('securityGroup',)

    def terraform_attributes(self, tf, ctx) -> dict:
        attrs = {
            'type': 'egress' if self.get('egress', False) else 'ingress',
            'security_group_id': self.terraform_ref(tf, ctx, 'securityGroup'),
            'protocol': self.get('protocol', '-1'),
            'from_port': self.get('fromPort', 0),
            'to_port': self.get('toPort', 0),
        }
        if 'sourceGroup' in self.spec:
            attrs['source_security_group_id'] = self.terraform_ref(tf, ctx, 'sourceGroup')
        if 'cidr' in self.spec:
            attrs['cidr_blocks'] = [self.spec['cidr']]
        return attrs


# IAM

class IAMRole(AWSTask):
    type_name = 'iamRole'
    resource_type = 'aws_iam_role'
    fields = {'rolePolicyDocument': str}
    required = ('rolePolicyDocument',)
    file_fields = ('rolePolicyDocument',)
    terraform_names = {'rolePolicyDocument': 'assume_role_policy'}
    terraform_reference_attr = 'name'

    def terraform_attributes(self, tf, ctx) -> dict:
        attrs = super().terraform_attributes(tf, ctx)
        attrs['name'] = self.name
        return attrs


class IAMRolePolicy(AWSTask):
    type_name = 'iamRolePolicy'
    resource_type = 'aws_iam_role_policy'
    fields = {'role': str, 'policyDocument': str}
    references = {'role': 'iamRole'}
    required = ('role', 'policyDocument')
    file_fields = ('policyDocument',)
    terraform_names = {'policyDocument': 'policy'}

    def terraform_attributes(self, tf, ctx) -> dict:
        attrs = super().terraform_attributes(tf, ctx)
        attrs['name'] = self.name
        return attrs


class IAMInstanceProfile(AWSTask):
    type_name = 'iamInstanceProfile'
    resource_type = 'aws_iam_instance_profile'
    fields = {}

    def terraform_attributes(self, tf, ctx) -> dict:
        return {'name': self.name}


class IAMInstanceProfileRole(AWSTask):
    """Adds a role to an instance profile.

    Terraform has no separate resource for this; the role is set on the
    profile's own block.
    """

    type_name = 'iamInstanceProfileRole'
    resource_type = 'aws_iam_instance_profile_role'
    fields = {'instanceProfile': str, 'role': str}
    references = {'instanceProfile': 'iamInstanceProfile', 'role': 'iamRole'}
    required = ('instanceProfile', 'role')

    def render_terraform(self, tf, ctx, change) -> None:
        profile = ctx.tasks[self.spec['instanceProfile']]
        tf.update_resource(profile, {'role': self.terraform_ref(tf, ctx, 'role')})


# Compute

class SSHKey(AWSTask):
    type_name = 'sshKey'
    resource_type = 'aws_key_pair'
    fields = {'publicKey': str}
    required = ('publicKey',)
    file_fields = ('publicKey',)

    def terraform_attributes(self, tf, ctx) -> dict:
        attrs = super().terraform_attributes(tf, ctx)
        attrs['key_name'] = self.name
        return attrs


class Instance(AWSTask):
    type_name = 'instance'
    resource_type = 'aws_instance'
    taggable = True
    fields = {
        'subnet': str,
        'securityGroups': list,
        'instanceType': str,
        'imageId': str,
        'sshKey': str,
        'iamInstanceProfile': str,
        'userData': str,
        'associatePublicIP': bool,
    }
    references = {
        'subnet': 'subnet',
        'securityGroups': 'securityGroup',
        'sshKey': 'sshKey',
        'iamInstanceProfile': 'iamInstanceProfile',
    }
    required = ('instanceType', 'imageId')
    file_fields = ('userData',)
    terraform_names = {
        'subnet': 'subnet_id',
        'securityGroups': 'vpc_security_group_ids',
        'imageId': 'ami',
        'sshKey': 'key_name',
        'associatePublicIP': 'associate_public_ip_address',
    }


class ElasticIP(AWSTask):
    type_name = 'elasticIP'
    resource_type = 'aws_eip'
    taggable = True
    fields = {}

    def terraform_attributes(self, tf, ctx) -> dict:
        attrs = super().terraform_attributes(tf, ctx)
        attrs['vpc'] = True
        return attrs


class InstanceElasticIPAttachment(AWSTask):
    type_name = 'instanceElasticIPAttachment'
    resource_type = 'aws_eip_association'
    fields = {'instance': str, 'elasticIP': str}
    references = {'instance': 'instance', 'elasticIP': 'elasticIP'}
    required = ('instance', 'elasticIP')
    terraform_names = {'instance': 'instance_id', 'elasticIP': 'allocation_id'}


class EBSVolume(AWSTask):
    type_name = 'ebsVolume'
    resource_type = 'aws_ebs_volume'
    taggable = True
    fields = {'availabilityZone': str, 'sizeGB': int, 'volumeType': str}
    required = ('availabilityZone', 'sizeGB')
    terraform_names = {'sizeGB': 'size', 'volumeType': 'type'}


class InstanceVolumeAttachment(AWSTask):
    type_name = 'instanceVolumeAttachment'
    resource_type = 'aws_volume_attachment'
    fields = {'instance': str, 'volume': str, 'device': str}
    references = {'instance': 'instance', 'volume': 'ebsVolume'}
    required = ('instance', 'volume', 'device')
    terraform_names = {'instance': 'instance_id', 'volume': 'volume_id', 'device': 'device_name'}


# Autoscaling

class LaunchConfiguration(AWSTask):
    type_name = 'launchConfiguration'
    resource_type = 'aws_launch_configuration'
    fields = {
        'imageId': str,
        'instanceType': str,
        'sshKey': str,
        'securityGroups': list,
        'iamInstanceProfile': str,
        'userData': str,
        'associatePublicIP': bool,
        'rootVolumeSize': int,
        'rootVolumeType': str,
    }
    references = {
        'sshKey': 'sshKey',
        'securityGroups': 'securityGroup',
        'iamInstanceProfile': 'iamInstanceProfile',
    }
    required = ('imageId', 'instanceType')
    file_fields = ('userData',)
    terraform_names = {
        'sshKey': 'key_name',
        'associatePublicIP': 'associate_public_ip_address',
    }

    def terraform_attributes(self, tf, ctx) -> dict:
        attrs = super().terraform_attributes(tf, ctx)
        root = {}
        if 'rootVolumeSize' in self.spec:
            root['volume_size'] = attrs.pop('root_volume_size')
        if 'rootVolumeType' in self.spec:
            root['volume_type'] = attrs.pop('root_volume_type')
        if root:
            attrs['root_block_device'] = root
        attrs['name_prefix'] = f'{self.name}-'
        attrs['lifecycle'] = {'create_before_destroy': True}
        return attrs


class AutoscalingGroup(AWSTask):
    type_name = 'autoscalingGroup'
    resource_type = 'aws_autoscaling_group'
    taggable = True
    fields = {'launchConfiguration': str, 'minSize': int, 'maxSize': int, 'subnets': list}
    references = {'launchConfiguration': 'launchConfiguration', 'subnets': 'subnet'}
    required = ('launchConfiguration', 'minSize', 'maxSize')
    terraform_names = {'subnets': 'vpc_zone_identifier'}

    def terraform_attributes(self, tf, ctx) -> dict:
        attrs = super().terraform_attributes(tf, ctx)
        attrs['name'] = self.name
        attrs['tag'] = [
            {'key': k, 'value': v, 'propagate_at_launch': True}
            for k, v in sorted(attrs.pop('tags').items())
        ]
        return attrs


# Load balancing

class LoadBalancer(AWSTask):
    type_name = 'loadBalancer'
    resource_type = 'aws_elb'
    taggable = True
    fields = {'subnets': list, 'securityGroups': list, 'listeners': list}
    references = {'subnets': 'subnet', 'securityGroups': 'securityGroup'}
    required = ('listeners',)

    def terraform_attributes(self, tf, ctx) -> dict:
        attrs = super().terraform_attributes(tf, ctx)
        attrs['name'] = self.name
        attrs['listener'] = [
            {
                'instance_port': listener.get('instancePort'),
                'instance_protocol': listener.get('protocol', 'TCP'),
                'lb_port': listener.get('port'),
                'lb_protocol': listener.get('protocol', 'TCP'),
            }
            for listener in attrs.pop('listeners')
        ]
        return attrs


class LoadBalancerAttachment(AWSTask):
    type_name = 'loadBalancerAttachment'
    resource_type = 'aws_autoscaling_attachment'
    fields = {'loadBalancer': str, 'autoscalingGroup': str}
    references = {'loadBalancer': 'loadBalancer', 'autoscalingGroup': 'autoscalingGroup'}
    required = ('loadBalancer', 'autoscalingGroup')
    terraform_names = {'loadBalancer': 'elb', 'autoscalingGroup': 'autoscaling_group_name'}


class LoadBalancerHealthChecks(AWSTask):
    """Health check settings of a load balancer.

    In terraform output this becomes the health_check block of the load
    balancer itself.
    """

    type_name = 'loadBalancerHealthChecks'
    resource_type = 'aws_elb_health_check'
    fields = {
        'loadBalancer': str,
        'target': str,
        'healthyThreshold': int,
        'unhealthyThreshold': int,
        'interval': int,
        'timeout': int,
    }
    references = {'loadBalancer': 'loadBalancer'}
    required = ('loadBalancer', 'target')

    def render_terraform(self, tf, ctx, change) -> None:
        check = {
            'target': self.spec['target'],
            'healthy_threshold': self.get('healthyThreshold', 2),
            'unhealthy_threshold': self.get('unhealthyThreshold', 2),
            'interval': self.get('interval', 10),
            'timeout': self.get('timeout', 5),
        }
        tf.update_resource(ctx.tasks[self.spec['loadBalancer']], {'health_check': check})


# DNS

class DNSZone(AWSTask):
    type_name = 'dnsZone'
    resource_type = 'aws_route53_zone'
    fields = {}
    terraform_reference_attr = 'zone_id'

    def terraform_attributes(self, tf, ctx) -> dict:
        return {'name': self.name}


class DNSName(AWSTask):
    type_name = 'dnsName'
    resource_type = 'aws_route53_record'
    fields = {'zone': str, 'resourceType': str, 'targetLoadBalancer': str, 'records': list, 'ttl': int}
    references = {'zone': 'dnsZone', 'targetLoadBalancer': 'loadBalancer'}
    required = ('zone', 'resourceType')

    def terraform_attributes(self, tf, ctx) -> dict:
        attrs = {
            'name': self.name,
            'type': self.spec['resourceType'],
            'zone_id': self.terraform_ref(tf, ctx, 'zone'),
        }
        if 'targetLoadBalancer' in self.spec:
            lb = ctx.tasks[self.spec['targetLoadBalancer']]
            address = tf.reference(lb).rsplit('.', 1)[0]
            attrs['alias'] = {
                'name': f'{address}.dns_name}}',
                'zone_id': f'{address}.zone_id}}',
                'evaluate_target_health': False,
            }
        else:
            attrs['records'] = self.get('records', [])
            attrs['ttl'] = self.get('ttl', 60)
        return attrs


TASK_TYPES = [
    VPC,
    DHCPOptions,
    VPCDHCPOptionsAssociation,
    InternetGateway,
    InternetGatewayAttachment,
    RouteTable,
    Route,
    RouteTableAssociation,
    Subnet,
    SecurityGroup,
    SecurityGroupRule,
    IAMRole,
    IAMRolePolicy,
    IAMInstanceProfile,
    IAMInstanceProfileRole,
    SSHKey,
    Instance,
    ElasticIP,
    InstanceElasticIPAttachment,
    EBSVolume,
    InstanceVolumeAttachment,
    LaunchConfiguration,
    AutoscalingGroup,
    LoadBalancer,
    LoadBalancerAttachment,
    LoadBalancerHealthChecks,
    DNSZone,
    DNSName,
]
