"""
Teardown engine — destroy single instances and prune cluster networks.

Deletion runs in reverse creation order and treats "already gone" as
success at every step. Pruning is refused outright while any instance
still lives in the cluster network.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from .config import EffectiveConfig
from .errors import FailureKind, OperationAborted, PreconditionError
from .locator import ResourceLocator
from .models import Instance, InstanceState, ResourceKind, RouteTable, resource_name
from .providers.base import ProviderBackend, absorb
from .wait import NativeWaiter, Waiter

logger = logging.getLogger(__name__)

Confirm = Callable[[str], bool]

_GONE = (FailureKind.NOT_FOUND,)


def _never_confirm(_prompt: str) -> bool:
    return False


@dataclass
class PruneResult:
    """What a prune run did.

    Attributes:
        cluster: Cluster name.
        network_id: Pruned network, or None when there was nothing to prune.
        keypair_deleted: Whether a keypair was actually deleted.
    """

    cluster: str
    network_id: Optional[str] = None
    keypair_deleted: bool = False

    @property
    def pruned(self) -> bool:
        return self.network_id is not None


class TeardownEngine:
    """Reverse-order, not-found-tolerant deletion of cluster resources.

    Args:
        backend: Provider backend.
        config: Effective cluster configuration.
        waiter: Wait strategy for instance termination.
        confirm: Prompt callback returning True to proceed.
    """

    def __init__(
        self,
        backend: ProviderBackend,
        config: EffectiveConfig,
        waiter: Optional[Waiter] = None,
        confirm: Optional[Confirm] = None,
        locator: Optional[ResourceLocator] = None,
    ) -> None:
        self.backend = backend
        self.config = config
        self.waiter = waiter or NativeWaiter()
        self.confirm = confirm or _never_confirm
        self.locator = locator or ResourceLocator(backend)

    @property
    def cluster(self) -> str:
        return self.config.cluster_name

    # ------------------------------------------------------------------
    # Instances
    # ------------------------------------------------------------------

    def destroy(self, name: str, force: bool = False, cluster: Optional[str] = None) -> Instance:
        """Terminate the instance named *name* and wait until it is gone.

        Args:
            name: Instance Name tag.
            force: Skip the confirmation prompt.
            cluster: Restrict the lookup to one cluster (default: any cluster).

        Returns:
            Instance: The instance that was terminated.

        Raises:
            ResourceNotFoundError: No instance carries that name.
            AmbiguousResourceError: More than one instance carries that name.
            OperationAborted: The confirmation was declined.
        """
        instance = self.locator.find_instance(name, cluster)
        if not force:
            prompt = f"Destroy instance '{name}' ({instance.instance_id})?"
            if not self.confirm(prompt):
                raise OperationAborted("aborted")

        self.backend.terminate_instance(instance.instance_id)
        logger.info("Terminating %s (%s)", name, instance.instance_id)
        self.waiter.wait_for_instance(self.backend, instance.instance_id, InstanceState.TERMINATED)
        return instance

    def reboot(self, name: str, cluster: Optional[str] = None) -> Instance:
        """Reboot the instance named *name* in place."""
        instance = self.locator.find_instance(name, cluster)
        self.backend.reboot_instance(instance.instance_id)
        logger.info("Rebooting %s (%s)", name, instance.instance_id)
        return instance

    # ------------------------------------------------------------------
    # Network
    # ------------------------------------------------------------------

    def prune(self, force: bool = False) -> PruneResult:
        """Delete every network resource tagged to the cluster.

        Order: route table, subnet, gateway, firewall group, network, then
        the keypair behind its own confirmation.

        Args:
            force: Skip both confirmation prompts.

        Returns:
            PruneResult: ``network_id`` is None when no network exists.

        Raises:
            PreconditionError: Instances still exist in the network.
            OperationAborted: The prune confirmation was declined.
        """
        result = PruneResult(cluster=self.cluster)
        network_id = self.locator.find_network(self.cluster)
        if network_id is None:
            logger.info("No network tagged for cluster %s", self.cluster)
            return result

        live = self.locator.instances_in_network(network_id)
        if live:
            ids = ", ".join(i.instance_id for i in live)
            raise PreconditionError(
                f"cannot prune while instances exist in vpc {network_id}: {ids}"
            )

        if not force:
            prompt = (
                f"Prune VPC resources for cluster '{self.cluster}' "
                f"(vpc-id {network_id})?"
            )
            if not self.confirm(prompt):
                raise OperationAborted("aborted")

        route_table = self.locator.find_route_table(self.cluster)
        if route_table is not None:
            self.delete_route_table(route_table)

        subnet_id = self.locator.find_subnet(self.cluster)
        if subnet_id is not None:
            self._delete(ResourceKind.SUBNET, subnet_id)

        gateway = self.locator.find_gateway(self.cluster)
        if gateway is not None:
            if gateway.is_attached_to(network_id):
                absorb(
                    _GONE, self.backend.detach_gateway, gateway.resource_id, network_id,
                    description="detach igw",
                )
            self._delete(ResourceKind.GATEWAY, gateway.resource_id)

        group_id = self.locator.find_firewall_group(self.cluster)
        if group_id is not None:
            self._delete(ResourceKind.FIREWALL, group_id)

        self._delete(ResourceKind.NETWORK, network_id)
        result.network_id = network_id

        key_name = resource_name(self.cluster, ResourceKind.KEYPAIR)
        if force or self.confirm(f"Delete key pair '{key_name}' ?"):
            result.keypair_deleted = self.delete_keypair_if_exists(key_name)
        return result

    def delete_route_table(self, route_table: RouteTable) -> None:
        """Drop explicit associations, then the table itself.

        The main association cannot be removed explicitly and is skipped.
        """
        for association in route_table.associations:
            if association.main or not association.association_id:
                continue
            absorb(
                _GONE, self.backend.disassociate_route_table, association.association_id,
                description="disassociate route table",
            )
        self._delete(ResourceKind.ROUTE_TABLE, route_table.resource_id)

    def delete_keypair_if_exists(self, key_name: str) -> bool:
        """Delete *key_name* if present; return whether a keypair was deleted."""
        if not self.backend.keypair_exists(key_name):
            return False
        deleted = absorb(_GONE, self.backend.delete_keypair, key_name, description="delete keypair")
        if deleted:
            logger.info("Deleted keypair %s", key_name)
        return deleted

    def _delete(self, kind: ResourceKind, resource_id: str) -> None:
        if absorb(_GONE, self.backend.delete, kind, resource_id, description=f"delete {kind.value}"):
            logger.info("Deleted %s %s", kind.value, resource_id)
        else:
            logger.info("%s %s already gone", kind.value, resource_id)
