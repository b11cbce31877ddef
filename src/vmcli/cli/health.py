"""Health command: diagnose one instance."""

from __future__ import annotations

import json
from typing import Optional

import click

from ..config import DEFAULT_INSTANCE_OS_USER
from ._common import emit, handle_errors, open_session
from .cluster import CONFIG_OPTION_HELP


def register_health_commands(group: click.Group) -> None:
    """Register the health command."""

    @group.command("health")
    @click.argument("cluster")
    @click.argument("name")
    @click.option("--config", "-c", "config_path", default=None, type=click.Path(), help=CONFIG_OPTION_HELP)
    @click.option("--os-user", default=DEFAULT_INSTANCE_OS_USER, show_default=True, help="Remote user for the key-push probe.")
    @click.option("--json-out", "json_out", is_flag=True, help="Output the report as JSON.")
    @handle_errors
    def health(cluster: str, name: str, config_path: Optional[str], os_user: str, json_out: bool):
        """Diagnose reachability of instance NAME in CLUSTER.

        Combines instance state, provider status checks, the port 22
        firewall posture and a live key-push probe into one verdict.

        Examples:

            vmcli aws health dev web1

            vmcli aws health dev web1 --os-user ec2-user --json-out
        """
        from ..health import diagnose

        session = open_session(cluster, config_path, banner_to_stderr=json_out)
        report = diagnose(session.backend, session.config, name, os_user=os_user)
        if json_out:
            emit(json.dumps(report.to_dict(), indent=2))
            return
        for line in report.lines():
            emit(line)
