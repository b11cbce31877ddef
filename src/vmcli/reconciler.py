"""
Resource reconciler — converge a cluster to its fixed topology.

Every ``ensure_*`` step is locate-or-create followed by a convergence
step that checks current state before mutating, so a bring-up can be
re-run after any partial failure without duplicating resources. Steps
run in a fixed order because each one needs the ids produced by the
ones before it:

    network -> subnet -> gateway -> route table -> firewall group
            -> keypair -> image -> launch -> wait running

Conflict signals from the provider ("already exists", "duplicate",
"already associated") on a create/attach/authorize are success; a
conflicting route is replaced rather than created.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from .config import EffectiveConfig, expand_home_path, resolve_instance_type
from .errors import ConfigError, EmptyImageIdError, FailureKind, PreconditionError
from .locator import ResourceLocator
from .models import (
    NON_TERMINATED_STATES,
    WORLD_IPV4,
    InstanceState,
    InternetGateway,
    ResourceKind,
    resource_name,
)
from .providers.base import ProviderBackend, absorb
from .wait import NativeWaiter, Waiter

logger = logging.getLogger(__name__)

INGRESS_PORTS = (22, 80, 443, 9090, 9091, 9092)
DEFAULT_ROUTE = "0.0.0.0/0"


@dataclass
class ClusterNetwork:
    """Ids of every converged network resource for one cluster."""

    network_id: str
    subnet_id: str
    gateway_id: str
    route_table_id: str
    firewall_group_id: str
    key_name: str


@dataclass
class LaunchResult:
    """Outcome of bringing one instance up."""

    name: str
    instance_id: str
    public_ip: Optional[str] = None

    @property
    def public_ip_display(self) -> str:
        return self.public_ip or "N/A"


class Reconciler:
    """Idempotent create-or-adopt for every cluster resource.

    Args:
        backend: Provider backend.
        config: Effective cluster configuration.
        waiter: Wait strategy for instance state changes.
        locator: Resource locator (built from *backend* if omitted).
    """

    def __init__(
        self,
        backend: ProviderBackend,
        config: EffectiveConfig,
        waiter: Optional[Waiter] = None,
        locator: Optional[ResourceLocator] = None,
    ) -> None:
        self.backend = backend
        self.config = config
        self.waiter = waiter or NativeWaiter()
        self.locator = locator or ResourceLocator(backend)

    @property
    def cluster(self) -> str:
        return self.config.cluster_name

    # ------------------------------------------------------------------
    # Generic locate-or-create
    # ------------------------------------------------------------------

    def ensure(self, kind: ResourceKind, network_id: Optional[str] = None) -> str:
        """Return the id of the cluster's *kind* resource, creating it if absent.

        Args:
            kind: Tag-located resource kind.
            network_id: Parent network for kinds that live inside one.

        Returns:
            str: Existing or newly created resource id.
        """
        existing = self.locator.find(kind, self.cluster)
        if existing is not None:
            logger.info("Adopting existing %s %s", kind.value, existing.resource_id)
            return existing.resource_id
        name = resource_name(self.cluster, kind)
        resource_id = self.backend.create_tagged(kind, name, self.cluster, network_id=network_id)
        logger.info("Created %s %s (%s)", kind.value, resource_id, name)
        return resource_id

    # ------------------------------------------------------------------
    # Network
    # ------------------------------------------------------------------

    def ensure_network(self) -> str:
        return self.ensure(ResourceKind.NETWORK)

    def ensure_subnet(self, network_id: str) -> str:
        """Ensure the subnet and (re)enable public addressing on launch."""
        subnet_id = self.ensure(ResourceKind.SUBNET, network_id=network_id)
        self.backend.enable_public_ip_on_launch(subnet_id)
        return subnet_id

    def ensure_gateway(self, network_id: str) -> str:
        """Ensure the internet gateway and attach it if not already attached here."""
        gateway = self.locator.find_gateway(self.cluster)
        if gateway is None:
            name = resource_name(self.cluster, ResourceKind.GATEWAY)
            gateway_id = self.backend.create_tagged(ResourceKind.GATEWAY, name, self.cluster)
            logger.info("Created igw %s (%s)", gateway_id, name)
            gateway = InternetGateway(resource_id=gateway_id)
        else:
            logger.info("Adopting existing igw %s", gateway.resource_id)

        if not gateway.is_attached_to(network_id):
            self.backend.attach_gateway(gateway.resource_id, network_id)
            logger.info("Attached igw %s to %s", gateway.resource_id, network_id)
        return gateway.resource_id

    def ensure_route_table(self, network_id: str, subnet_id: str, gateway_id: str) -> str:
        """Ensure the route table, its default route, and the subnet association."""
        route_table_id = self.ensure(ResourceKind.ROUTE_TABLE, network_id=network_id)
        self.ensure_default_route(route_table_id, gateway_id)
        self.ensure_route_table_association(route_table_id, subnet_id)
        return route_table_id

    def ensure_default_route(self, route_table_id: str, gateway_id: str) -> None:
        """Create the default route; replace it when the provider says it exists."""
        created = absorb(
            (FailureKind.CONFLICT,),
            self.backend.create_route,
            route_table_id, DEFAULT_ROUTE, gateway_id,
            description="create default route",
        )
        if not created:
            self.backend.replace_route(route_table_id, DEFAULT_ROUTE, gateway_id)
            logger.info("Replaced default route in %s -> %s", route_table_id, gateway_id)

    def ensure_route_table_association(self, route_table_id: str, subnet_id: str) -> None:
        """Make *route_table_id* the table associated with *subnet_id*.

        Already associated here: no-op. Associated elsewhere: the existing
        association is moved. Unassociated: associate, treating an
        "already associated" signal as success.
        """
        for table in self.backend.route_tables_for_subnet(subnet_id):
            if table.resource_id == route_table_id:
                return
            association = table.association_for_subnet(subnet_id)
            if association is not None and association.association_id:
                self.backend.replace_route_table_association(
                    association.association_id, route_table_id,
                )
                logger.info(
                    "Moved %s from route table %s to %s",
                    subnet_id, table.resource_id, route_table_id,
                )
                return

        absorb(
            (FailureKind.CONFLICT,),
            self.backend.associate_route_table,
            route_table_id, subnet_id,
            description="associate route table",
        )

    def ensure_firewall_group(self, network_id: str) -> str:
        """Ensure the firewall group and its fixed set of ingress rules."""
        group_id = self.ensure(ResourceKind.FIREWALL, network_id=network_id)
        for port in INGRESS_PORTS:
            absorb(
                (FailureKind.CONFLICT,),
                self.backend.authorize_ingress,
                group_id, port, WORLD_IPV4,
                description=f"authorize tcp/{port}",
            )
        return group_id

    # ------------------------------------------------------------------
    # Keypair / image
    # ------------------------------------------------------------------

    def ensure_keypair(self) -> str:
        """Import the configured public key unless the keypair already exists."""
        key_name = resource_name(self.cluster, ResourceKind.KEYPAIR)
        if self.backend.keypair_exists(key_name):
            return key_name
        public_key_path = expand_home_path(self.config.ssh_public_key_path)
        if not public_key_path.exists():
            raise ConfigError(f"ssh public key {public_key_path} not found")
        self.backend.import_keypair(key_name, self.cluster, str(public_key_path))
        logger.info("Imported keypair %s from %s", key_name, public_key_path)
        return key_name

    def resolve_image_id(self) -> str:
        """Pinned image id, else the provider's latest distribution image.

        Raises:
            EmptyImageIdError: If the lookup succeeds but returns nothing.
        """
        if self.config.ami_id:
            return self.config.ami_id
        image_id = self.backend.latest_image_id().strip()
        if not image_id or image_id == "None":
            raise EmptyImageIdError(self.backend.image_parameter)
        return image_id

    # ------------------------------------------------------------------
    # Compute
    # ------------------------------------------------------------------

    def ensure_no_duplicate_instance(self, name: str) -> None:
        """Refuse to launch when *name* is already live in this cluster."""
        existing = self.backend.describe_instances(
            name=name, cluster=self.cluster, states=NON_TERMINATED_STATES,
        )
        if existing:
            ids = ", ".join(i.instance_id for i in existing)
            raise PreconditionError(f"instance name '{name}' already exists ({ids})")

    def ensure_network_stack(self) -> ClusterNetwork:
        """Converge every network resource the cluster needs, in order."""
        network_id = self.ensure_network()
        subnet_id = self.ensure_subnet(network_id)
        gateway_id = self.ensure_gateway(network_id)
        route_table_id = self.ensure_route_table(network_id, subnet_id, gateway_id)
        group_id = self.ensure_firewall_group(network_id)
        key_name = self.ensure_keypair()
        return ClusterNetwork(
            network_id=network_id,
            subnet_id=subnet_id,
            gateway_id=gateway_id,
            route_table_id=route_table_id,
            firewall_group_id=group_id,
            key_name=key_name,
        )

    def launch(
        self, name: str, network: ClusterNetwork, image_id: str, instance_type: str,
    ) -> str:
        """Start one instance tagged Name/Cluster and return its id."""
        instance_id = self.backend.run_instance(
            name=name,
            cluster=self.cluster,
            image_id=image_id,
            instance_type=instance_type,
            subnet_id=network.subnet_id,
            group_id=network.firewall_group_id,
            key_name=network.key_name,
        )
        logger.info("Launched %s as %s (%s, %s)", name, instance_id, instance_type, image_id)
        return instance_id

    def fetch_public_ip(self, instance_id: str) -> Optional[str]:
        instances = self.backend.describe_instances(instance_ids=[instance_id])
        if not instances:
            return None
        return instances[0].public_ip

    def up(self, name: str, instance_type: Optional[str] = None) -> LaunchResult:
        """Bring the cluster network up (or adopt it) and launch *name*.

        Args:
            name: Instance Name tag, unique within the cluster.
            instance_type: Optional override of the configured default.

        Returns:
            LaunchResult: Instance id and public address (None if unassigned).

        Raises:
            PreconditionError: If *name* already exists in the cluster.
        """
        self.ensure_no_duplicate_instance(name)
        network = self.ensure_network_stack()
        image_id = self.resolve_image_id()
        resolved_type = resolve_instance_type(self.config, instance_type)
        instance_id = self.launch(name, network, image_id, resolved_type)
        self.waiter.wait_for_instance(self.backend, instance_id, InstanceState.RUNNING)
        return LaunchResult(name=name, instance_id=instance_id, public_ip=self.fetch_public_ip(instance_id))
