"""Init command: write a cluster's default configuration."""

from __future__ import annotations

import click

from ._common import emit, handle_errors


def register_init_commands(group: click.Group) -> None:
    """Register the init command."""

    @group.command("init")
    @click.argument("cluster")
    @handle_errors
    def init(cluster: str):
        """Create the config directory and default files for CLUSTER.

        Existing files are left untouched.

        Examples:

            vmcli aws init dev
        """
        from ..config import init_cluster

        for action, path in init_cluster(cluster):
            emit(f"{action} {path}")
