"""
Resource locator — tag-based identity lookups.

A cluster resource is identified by ``Name == "{cluster}-{suffix}"`` and
``Cluster == cluster``. Zero matches is ``None``; more than one is an
``AmbiguousResourceError`` and is never resolved by picking one.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from .errors import AmbiguousResourceError, ResourceNotFoundError
from .models import (
    NON_TERMINATED_STATES,
    Instance,
    InternetGateway,
    ResourceKind,
    RouteTable,
    TaggedResource,
    resource_name,
)
from .providers.base import ProviderBackend

logger = logging.getLogger(__name__)


class ResourceLocator:
    """Finds the single resource of each kind that belongs to a cluster.

    Args:
        backend: Provider backend used for lookups.
    """

    def __init__(self, backend: ProviderBackend) -> None:
        self.backend = backend

    def find(self, kind: ResourceKind, cluster: str) -> Optional[TaggedResource]:
        """Return the resource of *kind* tagged to *cluster*, if any.

        Args:
            kind: Resource kind (keypairs are not tag-located).
            cluster: Cluster name.

        Returns:
            The matching resource, or None when nothing is tagged.

        Raises:
            AmbiguousResourceError: If more than one resource matches.
        """
        if kind is ResourceKind.KEYPAIR:
            raise ValueError("keypairs are looked up by name, not by tags")
        name = resource_name(cluster, kind)
        matches = self.backend.describe_tagged(kind, name, cluster)
        if not matches:
            return None
        if len(matches) > 1:
            raise AmbiguousResourceError(
                kind.value, f"cluster {cluster}", [m.resource_id for m in matches],
            )
        logger.debug("Found %s %s for cluster %s", kind.value, matches[0].resource_id, cluster)
        return matches[0]

    def find_id(self, kind: ResourceKind, cluster: str) -> Optional[str]:
        resource = self.find(kind, cluster)
        return resource.resource_id if resource else None

    def find_network(self, cluster: str) -> Optional[str]:
        return self.find_id(ResourceKind.NETWORK, cluster)

    def find_subnet(self, cluster: str) -> Optional[str]:
        return self.find_id(ResourceKind.SUBNET, cluster)

    def find_gateway(self, cluster: str) -> Optional[InternetGateway]:
        return self.find(ResourceKind.GATEWAY, cluster)  # type: ignore[return-value]

    def find_route_table(self, cluster: str) -> Optional[RouteTable]:
        return self.find(ResourceKind.ROUTE_TABLE, cluster)  # type: ignore[return-value]

    def find_firewall_group(self, cluster: str) -> Optional[str]:
        return self.find_id(ResourceKind.FIREWALL, cluster)

    # -- instances ----------------------------------------------------------

    def find_instance(self, name: str, cluster: Optional[str] = None) -> Instance:
        """Locate exactly one non-terminated instance by Name (and Cluster).

        Without *cluster* the lookup spans every cluster, so the same
        display name in two clusters is ambiguous.

        Args:
            name: Instance Name tag.
            cluster: Optional Cluster tag to scope the lookup.

        Returns:
            Instance: The single match.

        Raises:
            ResourceNotFoundError: If no instance matches.
            AmbiguousResourceError: If more than one instance matches.
        """
        instances = self.backend.describe_instances(
            name=name, cluster=cluster, states=NON_TERMINATED_STATES,
        )
        identity = f"Name tag {name}"
        if cluster is not None:
            identity += f" and Cluster tag {cluster}"
        if not instances:
            raise ResourceNotFoundError(f"no instance found with {identity}")
        if len(instances) > 1:
            raise AmbiguousResourceError(
                "instance", identity, [i.instance_id for i in instances],
            )
        return instances[0]

    def instances_in_network(self, network_id: str) -> List[Instance]:
        """All non-terminated instances inside a cluster network."""
        return self.backend.describe_instances(
            network_id=network_id, states=NON_TERMINATED_STATES,
        )


@dataclass
class ClusterStatus:
    """Network, firewall group, and live instances of one cluster."""

    cluster: str
    network_id: Optional[str] = None
    group_id: Optional[str] = None
    instances: List[Instance] = field(default_factory=list)

    def lines(self) -> List[str]:
        out = [
            f"vpc-id={self.network_id or 'N/A'}",
            f"sg-id={self.group_id or 'N/A'}",
        ]
        for instance in self.instances:
            out.append(
                f"name={instance.display_name} instance-id={instance.instance_id} "
                f"state={instance.state} public-ip={instance.public_ip or 'N/A'}"
            )
        return out


def collect_status(locator: ResourceLocator, cluster: str) -> ClusterStatus:
    """Look up the cluster network, its firewall group, and its instances."""
    status = ClusterStatus(cluster=cluster)
    status.network_id = locator.find_network(cluster)
    status.group_id = locator.find_firewall_group(cluster)
    if status.network_id is not None:
        status.instances = locator.instances_in_network(status.network_id)
    return status
