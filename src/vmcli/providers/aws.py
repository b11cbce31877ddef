"""
AWS backend — drives the ``aws`` CLI for EC2, SSM, STS and EC2 Instance Connect.

Every command runs with ``--region`` appended and ``AWS_PAGER`` cleared so
output is never paged. Responses are requested as JSON (or a single
``--query`` scalar as text) and parsed into vmcli models here, so nothing
above this module sees AWS field names.

Error classification is string matching on the CLI's error codes. The
codes below are what the EC2 API returns today; if AWS renames one, the
matching step degrades to a plain failure instead of being absorbed.
"""

from __future__ import annotations

import logging
import os
from typing import Any, Dict, Iterable, List, Optional, Sequence

from ..errors import FailureKind
from ..models import (
    CLUSTER_TAG,
    NAME_TAG,
    FirewallGroup,
    IngressRule,
    Instance,
    InstanceState,
    InternetGateway,
    ResourceKind,
    RouteAssociation,
    RouteTable,
    TaggedResource,
)
from .base import ProviderBackend, ProviderClient, Runner, register_backend

logger = logging.getLogger(__name__)

NETWORK_CIDR = "10.0.0.0/16"
SUBNET_CIDR = "10.0.1.0/24"
FIREWALL_DESCRIPTION = "vmcli cluster security group"
UBUNTU_2404_AMI_PARAMETER = (
    "/aws/service/canonical/ubuntu/server/24.04/stable/current/amd64/hvm/ebs-gp3/ami-id"
)

_CONFLICT_CODES = (
    "RouteAlreadyExists",
    "InvalidRoute.Duplicate",
    "Resource.AlreadyAssociated",
    "InvalidPermission.Duplicate",
)

_NOT_FOUND_CODES = (
    "InvalidInstanceID.NotFound",
    "InvalidKeyPair.NotFound",
    "InvalidAssociationID.NotFound",
    "InvalidRouteTableID.NotFound",
    "InvalidSubnetID.NotFound",
    "InvalidInternetGatewayID.NotFound",
    "InvalidVpcID.NotFound",
    "InvalidGroup.NotFound",
    "Gateway.NotAttached",
)

_DENIED_MARKERS = (
    "accessdenied",
    "access denied",
    "unauthorizedoperation",
    "not authorized",
)

# (describe command, list key, id key, tag-spec resource type)
_KIND_COMMANDS = {
    ResourceKind.NETWORK: ("describe-vpcs", "Vpcs", "VpcId", "vpc"),
    ResourceKind.SUBNET: ("describe-subnets", "Subnets", "SubnetId", "subnet"),
    ResourceKind.GATEWAY: (
        "describe-internet-gateways", "InternetGateways", "InternetGatewayId", "internet-gateway",
    ),
    ResourceKind.ROUTE_TABLE: (
        "describe-route-tables", "RouteTables", "RouteTableId", "route-table",
    ),
    ResourceKind.FIREWALL: (
        "describe-security-groups", "SecurityGroups", "GroupId", "security-group",
    ),
}

_DELETE_COMMANDS = {
    ResourceKind.NETWORK: ("delete-vpc", "--vpc-id"),
    ResourceKind.SUBNET: ("delete-subnet", "--subnet-id"),
    ResourceKind.GATEWAY: ("delete-internet-gateway", "--internet-gateway-id"),
    ResourceKind.ROUTE_TABLE: ("delete-route-table", "--route-table-id"),
    ResourceKind.FIREWALL: ("delete-security-group", "--group-id"),
}

_NATIVE_WAITERS = {
    InstanceState.RUNNING: "instance-running",
    InstanceState.TERMINATED: "instance-terminated",
    InstanceState.STOPPED: "instance-stopped",
}


def classify_aws_failure(message: str) -> FailureKind:
    """Map AWS CLI error text onto the vmcli failure taxonomy.

    Args:
        message: stderr (or stdout) of the failed command.

    Returns:
        FailureKind: DENIED, CONFLICT, NOT_FOUND, or UNKNOWN.
    """
    lower = message.lower()
    if any(marker in lower for marker in _DENIED_MARKERS):
        return FailureKind.DENIED
    if any(code in message for code in _CONFLICT_CODES):
        return FailureKind.CONFLICT
    if any(code in message for code in _NOT_FOUND_CODES):
        return FailureKind.NOT_FOUND
    return FailureKind.UNKNOWN


def tag_spec(resource_type: str, name: str, cluster: str) -> str:
    """Build a ``--tag-specifications`` value carrying Name and Cluster."""
    return (
        f"ResourceType={resource_type},"
        f"Tags=[{{Key={NAME_TAG},Value={name}}},{{Key={CLUSTER_TAG},Value={cluster}}}]"
    )


def _filters(*pairs: tuple) -> List[str]:
    args: List[str] = []
    for key, values in pairs:
        if isinstance(values, str):
            values = [values]
        args.extend(["--filters", f"Name={key},Values={','.join(values)}"])
    return args


def _tags(raw: Optional[Iterable[Dict[str, Any]]]) -> Dict[str, str]:
    return {tag.get("Key", ""): tag.get("Value", "") for tag in raw or [] if "Key" in tag}


# ---------------------------------------------------------------------------
# Response parsing
# ---------------------------------------------------------------------------


def parse_tagged(kind: ResourceKind, item: Dict[str, Any]) -> TaggedResource:
    """Parse one describe-* list entry into the matching model."""
    id_key = _KIND_COMMANDS[kind][2]
    resource_id = item.get(id_key, "")
    tags = _tags(item.get("Tags"))
    if kind is ResourceKind.GATEWAY:
        attached = [
            attachment["VpcId"]
            for attachment in item.get("Attachments") or []
            if attachment.get("VpcId")
        ]
        return InternetGateway(resource_id=resource_id, tags=tags, attached_network_ids=attached)
    if kind is ResourceKind.ROUTE_TABLE:
        return parse_route_table(item)
    if kind is ResourceKind.FIREWALL:
        return parse_security_group(item)
    return TaggedResource(kind=kind, resource_id=resource_id, tags=tags)


def parse_route_table(item: Dict[str, Any]) -> RouteTable:
    associations = [
        RouteAssociation(
            association_id=assoc.get("RouteTableAssociationId"),
            route_table_id=assoc.get("RouteTableId"),
            subnet_id=assoc.get("SubnetId"),
            main=bool(assoc.get("Main", False)),
        )
        for assoc in item.get("Associations") or []
    ]
    return RouteTable(
        resource_id=item.get("RouteTableId", ""),
        tags=_tags(item.get("Tags")),
        associations=associations,
    )


def parse_ingress_rule(permission: Dict[str, Any]) -> IngressRule:
    return IngressRule(
        protocol=str(permission.get("IpProtocol") or ""),
        from_port=permission.get("FromPort"),
        to_port=permission.get("ToPort"),
        ipv4_sources=[r.get("CidrIp") for r in permission.get("IpRanges") or []],
        ipv6_sources=[r.get("CidrIpv6") for r in permission.get("Ipv6Ranges") or []],
        group_sources=[p.get("GroupId") for p in permission.get("UserIdGroupPairs") or []],
        prefix_list_sources=[p.get("PrefixListId") for p in permission.get("PrefixListIds") or []],
    )


def parse_security_group(item: Dict[str, Any]) -> FirewallGroup:
    return FirewallGroup(
        resource_id=item.get("GroupId", ""),
        tags=_tags(item.get("Tags")),
        rules=[parse_ingress_rule(p) for p in item.get("IpPermissions") or []],
    )


def parse_instance(item: Dict[str, Any]) -> Instance:
    """Parse one ``Reservations[].Instances[]`` entry."""
    group_ids: List[str] = []
    for group in item.get("SecurityGroups") or []:
        group_id = group.get("GroupId")
        if group_id and group_id not in group_ids:
            group_ids.append(group_id)
    return Instance(
        instance_id=item.get("InstanceId", ""),
        state=(item.get("State") or {}).get("Name", "unknown"),
        tags=_tags(item.get("Tags")),
        public_ip=item.get("PublicIpAddress"),
        private_ip=item.get("PrivateIpAddress"),
        availability_zone=(item.get("Placement") or {}).get("AvailabilityZone"),
        vpc_id=item.get("VpcId"),
        subnet_id=item.get("SubnetId"),
        security_group_ids=group_ids,
    )


# ---------------------------------------------------------------------------
# Backend
# ---------------------------------------------------------------------------


@register_backend("aws")
class AwsBackend(ProviderBackend):
    """EC2 implementation of the provider capability interface."""

    name = "aws"
    supports_native_wait = True
    region: str = ""

    @classmethod
    def for_region(cls, region: str, runner: Optional[Runner] = None) -> "AwsBackend":
        env = dict(os.environ)
        env["AWS_PAGER"] = ""
        client = ProviderClient(
            "aws",
            scope_args=["--region", region],
            classify=classify_aws_failure,
            env=env,
            runner=runner,
        )
        backend = cls(client)
        backend.region = region
        return backend

    @property
    def probe_description(self) -> str:
        return "aws ec2-instance-connect send-ssh-public-key"

    def caller_identity(self) -> Dict[str, str]:
        data = self.client.run_json(["sts", "get-caller-identity", "--output", "json"])
        return {
            "account": data.get("Account", ""),
            "arn": data.get("Arn", ""),
            "user_id": data.get("UserId", ""),
        }

    # -- tagged resources ---------------------------------------------------

    def describe_tagged(self, kind: ResourceKind, name: str, cluster: str) -> List[TaggedResource]:
        command, list_key, _id_key, _rtype = _KIND_COMMANDS[kind]
        args = ["ec2", command, "--output", "json"]
        args += _filters((f"tag:{NAME_TAG}", name), (f"tag:{CLUSTER_TAG}", cluster))
        data = self.client.run_json(args)
        return [parse_tagged(kind, item) for item in data.get(list_key) or []]

    def create_tagged(
        self, kind: ResourceKind, name: str, cluster: str, network_id: Optional[str] = None,
    ) -> str:
        rtype = _KIND_COMMANDS[kind][3]
        spec = tag_spec(rtype, name, cluster)
        if kind is ResourceKind.NETWORK:
            args = ["ec2", "create-vpc", "--cidr-block", NETWORK_CIDR]
            query = "Vpc.VpcId"
        elif kind is ResourceKind.SUBNET:
            args = ["ec2", "create-subnet", "--vpc-id", network_id, "--cidr-block", SUBNET_CIDR]
            query = "Subnet.SubnetId"
        elif kind is ResourceKind.GATEWAY:
            args = ["ec2", "create-internet-gateway"]
            query = "InternetGateway.InternetGatewayId"
        elif kind is ResourceKind.ROUTE_TABLE:
            args = ["ec2", "create-route-table", "--vpc-id", network_id]
            query = "RouteTable.RouteTableId"
        elif kind is ResourceKind.FIREWALL:
            args = [
                "ec2", "create-security-group",
                "--group-name", name,
                "--description", FIREWALL_DESCRIPTION,
                "--vpc-id", network_id,
            ]
            query = "GroupId"
        else:
            raise ValueError(f"{kind.value} is not created through create_tagged")
        args += ["--tag-specifications", spec, "--query", query, "--output", "text"]
        return self.client.run(args)

    def delete(self, kind: ResourceKind, resource_id: str) -> None:
        command, flag = _DELETE_COMMANDS[kind]
        self.client.run(["ec2", command, flag, resource_id])

    # -- network convergence ------------------------------------------------

    def enable_public_ip_on_launch(self, subnet_id: str) -> None:
        self.client.run([
            "ec2", "modify-subnet-attribute", "--subnet-id", subnet_id, "--map-public-ip-on-launch",
        ])

    def attach_gateway(self, gateway_id: str, network_id: str) -> None:
        self.client.run([
            "ec2", "attach-internet-gateway",
            "--internet-gateway-id", gateway_id, "--vpc-id", network_id,
        ])

    def detach_gateway(self, gateway_id: str, network_id: str) -> None:
        self.client.run([
            "ec2", "detach-internet-gateway",
            "--internet-gateway-id", gateway_id, "--vpc-id", network_id,
        ])

    def _route_args(self, command: str, route_table_id: str, destination: str, gateway_id: str) -> List[str]:
        return [
            "ec2", command,
            "--route-table-id", route_table_id,
            "--destination-cidr-block", destination,
            "--gateway-id", gateway_id,
        ]

    def create_route(self, route_table_id: str, destination: str, gateway_id: str) -> None:
        self.client.run(self._route_args("create-route", route_table_id, destination, gateway_id))

    def replace_route(self, route_table_id: str, destination: str, gateway_id: str) -> None:
        self.client.run(self._route_args("replace-route", route_table_id, destination, gateway_id))

    def route_tables_for_subnet(self, subnet_id: str) -> List[RouteTable]:
        args = ["ec2", "describe-route-tables", "--output", "json"]
        args += _filters(("association.subnet-id", subnet_id))
        data = self.client.run_json(args)
        return [parse_route_table(item) for item in data.get("RouteTables") or []]

    def associate_route_table(self, route_table_id: str, subnet_id: str) -> None:
        self.client.run([
            "ec2", "associate-route-table",
            "--route-table-id", route_table_id, "--subnet-id", subnet_id,
        ])

    def replace_route_table_association(self, association_id: str, route_table_id: str) -> None:
        self.client.run([
            "ec2", "replace-route-table-association",
            "--association-id", association_id, "--route-table-id", route_table_id,
        ])

    def disassociate_route_table(self, association_id: str) -> None:
        self.client.run(["ec2", "disassociate-route-table", "--association-id", association_id])

    def authorize_ingress(self, group_id: str, port: int, cidr: str) -> None:
        self.client.run([
            "ec2", "authorize-security-group-ingress",
            "--group-id", group_id,
            "--protocol", "tcp",
            "--port", str(port),
            "--cidr", cidr,
        ])

    def describe_firewall_groups(self, group_ids: Sequence[str]) -> List[FirewallGroup]:
        if not group_ids:
            return []
        args = ["ec2", "describe-security-groups", "--output", "json", "--group-ids", *group_ids]
        data = self.client.run_json(args)
        return [parse_security_group(item) for item in data.get("SecurityGroups") or []]

    # -- keypairs / images --------------------------------------------------

    def keypair_exists(self, key_name: str) -> bool:
        result = self.client.run_raw([
            "ec2", "describe-key-pairs", "--key-names", key_name, "--output", "json",
        ])
        if result.success:
            return True
        error = self.client.error_for(result)
        if error.kind is FailureKind.NOT_FOUND:
            return False
        raise error

    def import_keypair(self, key_name: str, cluster: str, public_key_path: str) -> None:
        self.client.run([
            "ec2", "import-key-pair",
            "--key-name", key_name,
            "--public-key-material", f"fileb://{public_key_path}",
            "--tag-specifications", tag_spec("key-pair", key_name, cluster),
        ])

    def delete_keypair(self, key_name: str) -> None:
        self.client.run(["ec2", "delete-key-pair", "--key-name", key_name])

    def latest_image_id(self) -> str:
        return self.client.run([
            "ssm", "get-parameter",
            "--name", UBUNTU_2404_AMI_PARAMETER,
            "--query", "Parameter.Value",
            "--output", "text",
        ])

    @property
    def image_parameter(self) -> str:
        return UBUNTU_2404_AMI_PARAMETER

    # -- compute ------------------------------------------------------------

    def describe_instances(
        self,
        name: Optional[str] = None,
        cluster: Optional[str] = None,
        network_id: Optional[str] = None,
        instance_ids: Optional[Sequence[str]] = None,
        states: Optional[Sequence[InstanceState]] = None,
    ) -> List[Instance]:
        args = ["ec2", "describe-instances", "--output", "json"]
        if instance_ids:
            args += ["--instance-ids", *instance_ids]
        pairs = []
        if name is not None:
            pairs.append((f"tag:{NAME_TAG}", name))
        if cluster is not None:
            pairs.append((f"tag:{CLUSTER_TAG}", cluster))
        if network_id is not None:
            pairs.append(("vpc-id", network_id))
        if states:
            pairs.append(("instance-state-name", [InstanceState(s).value for s in states]))
        args += _filters(*pairs)
        data = self.client.run_json(args)
        instances: List[Instance] = []
        for reservation in data.get("Reservations") or []:
            instances.extend(parse_instance(item) for item in reservation.get("Instances") or [])
        return instances

    def run_instance(
        self,
        name: str,
        cluster: str,
        image_id: str,
        instance_type: str,
        subnet_id: str,
        group_id: str,
        key_name: str,
    ) -> str:
        return self.client.run([
            "ec2", "run-instances",
            "--image-id", image_id,
            "--instance-type", instance_type,
            "--key-name", key_name,
            "--subnet-id", subnet_id,
            "--security-group-ids", group_id,
            "--count", "1",
            "--tag-specifications", tag_spec("instance", name, cluster),
            "--query", "Instances[0].InstanceId",
            "--output", "text",
        ])

    def terminate_instance(self, instance_id: str) -> None:
        self.client.run(["ec2", "terminate-instances", "--instance-ids", instance_id])

    def reboot_instance(self, instance_id: str) -> None:
        self.client.run(["ec2", "reboot-instances", "--instance-ids", instance_id])

    def wait_for_instance_state(self, instance_id: str, state: InstanceState) -> None:
        waiter = _NATIVE_WAITERS.get(InstanceState(state))
        if waiter is None:
            raise ValueError(f"no native waiter for state {state}")
        self.client.run(["ec2", "wait", waiter, "--instance-ids", instance_id])

    # -- diagnosis ----------------------------------------------------------

    def instance_status_checks(self, instance_id: str) -> Optional[Dict[str, Optional[str]]]:
        data = self.client.run_json([
            "ec2", "describe-instance-status",
            "--include-all-instances",
            "--instance-ids", instance_id,
            "--output", "json",
        ])
        for entry in data.get("InstanceStatuses") or []:
            if entry.get("InstanceId") != instance_id:
                continue
            return {
                "system": (entry.get("SystemStatus") or {}).get("Status"),
                "instance": (entry.get("InstanceStatus") or {}).get("Status"),
            }
        return None

    def send_probe_key(
        self, instance_id: str, os_user: str, availability_zone: str, public_key_path: str,
    ) -> bool:
        data = self.client.run_json([
            "ec2-instance-connect", "send-ssh-public-key",
            "--instance-id", instance_id,
            "--instance-os-user", os_user,
            "--availability-zone", availability_zone,
            "--ssh-public-key", f"file://{public_key_path}",
            "--output", "json",
        ])
        return bool(data.get("Success", False))
