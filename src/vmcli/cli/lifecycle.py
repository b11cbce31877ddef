"""Lifecycle commands: reboot, destroy, prune."""

from __future__ import annotations

from typing import Optional

import click

from ._common import confirm, emit, handle_errors, open_session
from .cluster import CONFIG_OPTION_HELP


def register_lifecycle_commands(group: click.Group) -> None:
    """Register the reboot, destroy and prune commands."""

    @group.command("reboot")
    @click.argument("cluster")
    @click.argument("name")
    @click.option("--config", "-c", "config_path", default=None, type=click.Path(), help=CONFIG_OPTION_HELP)
    @handle_errors
    def reboot(cluster: str, name: str, config_path: Optional[str]):
        """Reboot instance NAME.

        The instance is looked up by name across every cluster; a name
        used in two clusters is an error.
        """
        from ..teardown import TeardownEngine

        session = open_session(cluster, config_path)
        instance = TeardownEngine(session.backend, session.config).reboot(name)
        emit(f"rebooted name={name} instance-id={instance.instance_id}")

    @group.command("destroy")
    @click.argument("cluster")
    @click.argument("name")
    @click.option("--force", "-f", is_flag=True, help="Skip confirmation.")
    @click.option("--config", "-c", "config_path", default=None, type=click.Path(), help=CONFIG_OPTION_HELP)
    @handle_errors
    def destroy(cluster: str, name: str, force: bool, config_path: Optional[str]):
        """Terminate instance NAME and wait until it is gone.

        Examples:

            vmcli aws destroy dev web1

            vmcli aws destroy dev web1 --force
        """
        from ..teardown import TeardownEngine
        from ..wait import select_waiter

        session = open_session(cluster, config_path)
        engine = TeardownEngine(
            session.backend,
            session.config,
            waiter=select_waiter("native", session.backend),
            confirm=confirm,
        )
        instance = engine.destroy(name, force=force)
        emit(f"terminated name={name} instance-id={instance.instance_id}")

    @group.command("prune")
    @click.argument("cluster")
    @click.option("--force", "-f", is_flag=True, help="Skip both confirmations (network and key pair).")
    @click.option("--config", "-c", "config_path", default=None, type=click.Path(), help=CONFIG_OPTION_HELP)
    @handle_errors
    def prune(cluster: str, force: bool, config_path: Optional[str]):
        """Delete the CLUSTER network resources and, optionally, its key pair.

        Refuses to run while any instance is still in the network.
        """
        from ..teardown import TeardownEngine

        session = open_session(cluster, config_path)
        result = TeardownEngine(session.backend, session.config, confirm=confirm).prune(force=force)
        if not result.pruned:
            emit("nothing to prune")
            return
        emit(f"pruned cluster={result.cluster} vpc-id={result.network_id}")
