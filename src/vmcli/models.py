"""
Pydantic models for the provider resources a cluster is built from.

Backends parse their provider's raw responses into these models so the
locator, reconciler, teardown engine, and health diagnosis never see
provider-specific JSON.
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

NAME_TAG = "Name"
CLUSTER_TAG = "Cluster"

WORLD_IPV4 = "0.0.0.0/0"
WORLD_IPV6 = "::/0"


class ResourceKind(str, Enum):
    """The fixed set of tagged resources behind every cluster.

    The value doubles as the suffix of the resource's Name tag.
    """

    NETWORK = "vpc"
    SUBNET = "subnet"
    GATEWAY = "igw"
    ROUTE_TABLE = "rt"
    FIREWALL = "sg"
    KEYPAIR = "key"

    @property
    def suffix(self) -> str:
        return self.value


class InstanceState(str, Enum):
    """Lifecycle states reported for a compute instance."""

    PENDING = "pending"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"
    SHUTTING_DOWN = "shutting-down"
    TERMINATED = "terminated"


NON_TERMINATED_STATES = (
    InstanceState.PENDING,
    InstanceState.RUNNING,
    InstanceState.STOPPING,
    InstanceState.STOPPED,
    InstanceState.SHUTTING_DOWN,
)


def resource_name(cluster: str, kind: ResourceKind) -> str:
    """Derive the Name tag for a cluster resource.

    Args:
        cluster: Cluster name.
        kind: Resource kind.

    Returns:
        str: ``"{cluster}-{suffix}"``.
    """
    return f"{cluster}-{kind.suffix}"


class TaggedResource(BaseModel):
    """A provider resource identified by its Name and Cluster tags."""

    kind: ResourceKind
    resource_id: str
    tags: Dict[str, str] = Field(default_factory=dict)

    @property
    def name(self) -> Optional[str]:
        return self.tags.get(NAME_TAG)

    @property
    def cluster(self) -> Optional[str]:
        return self.tags.get(CLUSTER_TAG)


class InternetGateway(TaggedResource):
    """Gateway plus the networks it is currently attached to."""

    kind: ResourceKind = ResourceKind.GATEWAY
    attached_network_ids: List[str] = Field(default_factory=list)

    def is_attached_to(self, network_id: str) -> bool:
        return network_id in self.attached_network_ids


class RouteAssociation(BaseModel):
    """One subnet (or main) association of a route table."""

    association_id: Optional[str] = None
    route_table_id: Optional[str] = None
    subnet_id: Optional[str] = None
    main: bool = False


class RouteTable(TaggedResource):
    """Route table plus its association side table."""

    kind: ResourceKind = ResourceKind.ROUTE_TABLE
    associations: List[RouteAssociation] = Field(default_factory=list)

    def association_for_subnet(self, subnet_id: str) -> Optional[RouteAssociation]:
        for association in self.associations:
            if association.subnet_id == subnet_id:
                return association
        return None


class IngressRule(BaseModel):
    """A single ingress permission of a firewall group.

    ``protocol`` is the provider's protocol string; ``"-1"`` means all
    protocols. Missing port bounds mean the rule is not port-scoped.
    """

    protocol: str = ""
    from_port: Optional[int] = None
    to_port: Optional[int] = None
    ipv4_sources: List[Optional[str]] = Field(default_factory=list)
    ipv6_sources: List[Optional[str]] = Field(default_factory=list)
    group_sources: List[Optional[str]] = Field(default_factory=list)
    prefix_list_sources: List[Optional[str]] = Field(default_factory=list)

    def covers_tcp_port(self, port: int) -> bool:
        """Whether this rule admits TCP traffic on *port*."""
        protocol = self.protocol.lower()
        if protocol == "-1":
            return True
        if protocol != "tcp":
            return False
        low = self.from_port if self.from_port is not None else port
        high = self.to_port if self.to_port is not None else port
        return low <= port <= high

    def has_world_source(self) -> bool:
        """Whether any source is the unrestricted IPv4 or IPv6 wildcard."""
        return WORLD_IPV4 in self.ipv4_sources or WORLD_IPV6 in self.ipv6_sources

    def has_any_source(self) -> bool:
        """Whether the rule names at least one concrete source."""
        return any(
            source is not None
            for sources in (
                self.ipv4_sources,
                self.ipv6_sources,
                self.group_sources,
                self.prefix_list_sources,
            )
            for source in sources
        )


class FirewallGroup(TaggedResource):
    """Firewall (security) group and its ingress rules."""

    kind: ResourceKind = ResourceKind.FIREWALL
    rules: List[IngressRule] = Field(default_factory=list)


class Instance(BaseModel):
    """A compute instance as reported by the provider."""

    instance_id: str
    state: str
    tags: Dict[str, str] = Field(default_factory=dict)
    public_ip: Optional[str] = None
    private_ip: Optional[str] = None
    availability_zone: Optional[str] = None
    vpc_id: Optional[str] = None
    subnet_id: Optional[str] = None
    security_group_ids: List[str] = Field(default_factory=list)

    @property
    def name(self) -> Optional[str]:
        return self.tags.get(NAME_TAG)

    @property
    def cluster(self) -> Optional[str]:
        return self.tags.get(CLUSTER_TAG)

    @property
    def display_name(self) -> str:
        return self.name or "N/A"

    @property
    def is_running(self) -> bool:
        return self.state == InstanceState.RUNNING.value

    @property
    def has_public_ip(self) -> bool:
        return bool(self.public_ip and self.public_ip.strip())
