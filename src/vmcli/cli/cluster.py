"""Cluster commands: up, status."""

from __future__ import annotations

from typing import Optional

import click

from ._common import emit, handle_errors, open_session

CONFIG_OPTION_HELP = "Cluster config file (default: <config root>/aws/<cluster>/config.yaml)."


def register_cluster_commands(group: click.Group) -> None:
    """Register the up and status commands."""

    @group.command("up")
    @click.argument("cluster")
    @click.argument("name")
    @click.option("--instance-type", "-T", default=None, help="Override the configured instance type.")
    @click.option("--config", "-c", "config_path", default=None, type=click.Path(), help=CONFIG_OPTION_HELP)
    @click.option(
        "--wait-strategy",
        type=click.Choice(["native", "poll"]),
        default="native",
        show_default=True,
        help="How to wait for the instance to start.",
    )
    @handle_errors
    def up(cluster: str, name: str, instance_type: Optional[str], config_path: Optional[str], wait_strategy: str):
        """Converge the CLUSTER network and launch instance NAME.

        Safe to re-run: existing network resources are adopted, only
        missing ones are created. Refuses to launch a duplicate NAME.

        Examples:

            vmcli aws up dev web1

            vmcli aws up dev worker -T t3.small --wait-strategy poll
        """
        from ..reconciler import Reconciler
        from ..wait import select_waiter

        session = open_session(cluster, config_path)
        waiter = select_waiter(wait_strategy, session.backend)
        result = Reconciler(session.backend, session.config, waiter=waiter).up(name, instance_type)
        emit(
            f"name={result.name} instance-id={result.instance_id} "
            f"public-ip={result.public_ip_display}"
        )

    @group.command("status")
    @click.argument("cluster")
    @click.option("--config", "-c", "config_path", default=None, type=click.Path(), help=CONFIG_OPTION_HELP)
    @handle_errors
    def status(cluster: str, config_path: Optional[str]):
        """Show the CLUSTER network and instances, and refresh its SSH config.

        Examples:

            vmcli aws status dev

            ssh -F ~/.config/vmcli/aws/dev/ssh_config web1
        """
        from ..config import derive_private_key_path
        from ..locator import ResourceLocator, collect_status
        from ..ssh_config import render_ssh_config, write_ssh_config

        session = open_session(cluster, config_path)
        config = session.config
        cluster_status = collect_status(ResourceLocator(session.backend), config.cluster_name)
        for line in cluster_status.lines():
            emit(line)

        contents = render_ssh_config(
            cluster_status.instances,
            cluster_status.network_id,
            cluster_status.group_id,
            derive_private_key_path(config.ssh_public_key_path),
        )
        write_ssh_config(config.ssh_config_path, contents)
