"""
SSH client config generation for a cluster's instances.

Only instances that carry a Name tag and a public address get a ``Host``
stanza; the network and firewall-group ids go in header comments.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional, Sequence

from .config import DEFAULT_INSTANCE_OS_USER
from .errors import ConfigError
from .models import Instance

logger = logging.getLogger(__name__)


def render_ssh_config(
    instances: Sequence[Instance],
    network_id: Optional[str],
    group_id: Optional[str],
    identity_file: str,
    user: str = DEFAULT_INSTANCE_OS_USER,
) -> str:
    """Render the SSH config text.

    Args:
        instances: Instances in the cluster network.
        network_id: Cluster network id (``N/A`` when absent).
        group_id: Cluster firewall group id (``N/A`` when absent).
        identity_file: Private key path for ``IdentityFile``.
        user: Login user.

    Returns:
        str: Config contents.
    """
    lines: List[str] = [
        f"# vpc-id: {network_id or 'N/A'}",
        f"# sg-id: {group_id or 'N/A'}",
        "",
    ]
    for instance in instances:
        if not instance.name or not instance.has_public_ip:
            continue
        lines += [
            f"Host {instance.name}",
            f"  HostName {instance.public_ip}",
            f"  User {user}",
            "  IdentitiesOnly yes",
            f"  IdentityFile {identity_file}",
            "",
        ]
    return "\n".join(lines)


def write_ssh_config(path: Path, contents: str) -> Path:
    """Write *contents* to *path*, creating parent directories."""
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(contents, encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"write ssh config {path}: {exc}") from exc
    logger.info("Wrote SSH config %s", path)
    return path
