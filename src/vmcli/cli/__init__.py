"""
vmcli CLI — provision and inspect small VM clusters.

The main Click group is defined here; the ``aws`` sub-group collects the
cluster commands, each registered from its own module.

Entry point: vmcli.cli:main
"""

from __future__ import annotations

import logging

import click

from .. import __version__


@click.group()
@click.version_option(version=__version__, prog_name="vmcli")
@click.option("-v", "--verbose", is_flag=True, help="Log provider commands and decisions.")
def main(verbose: bool):
    """vmcli — small VM clusters, reconciled from tags."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(name)s: %(message)s",
    )


@main.group()
def aws():
    """Clusters on AWS EC2 (driven through the aws CLI)."""


# ---------------------------------------------------------------------------
# Register all commands from modular files
# ---------------------------------------------------------------------------

from .init_cmd import register_init_commands
from .cluster import register_cluster_commands
from .lifecycle import register_lifecycle_commands
from .health import register_health_commands

register_init_commands(aws)
register_cluster_commands(aws)
register_lifecycle_commands(aws)
register_health_commands(aws)
