"""Shared utilities for all CLI command modules.

Provides the Rich consoles, the provider session every cloud-touching
command opens first, and the error wrapper that turns a VmcliError into
a single ``error:`` line and exit status 1.
"""

from __future__ import annotations

import functools
import logging
import sys
from dataclasses import dataclass
from typing import Any, Callable, Optional

import click
from rich.console import Console

from ..config import AWS_PROVIDER, EffectiveConfig, ProviderEnvironment, load_config, resolve_environment
from ..errors import ConfigError, OperationAborted, VmcliError
from ..providers import ProviderBackend, create_backend

console = Console()
err_console = Console(stderr=True)

logger = logging.getLogger(__name__)


def emit(line: str) -> None:
    """Print one plain ``key=value`` line (no markup, no wrapping)."""
    console.print(line, markup=False, highlight=False, soft_wrap=True)


def confirm(prompt: str) -> bool:
    return click.confirm(prompt, default=False)


def handle_errors(fn: Callable[..., Any]) -> Callable[..., Any]:
    """Report VmcliError as ``error: <message>`` and exit 1.

    A declined confirmation prints ``aborted`` and exits 0.
    """

    @functools.wraps(fn)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return fn(*args, **kwargs)
        except OperationAborted:
            emit("aborted")
            return None
        except VmcliError as exc:
            logger.debug("Command failed", exc_info=True)
            err_console.print(f"error: {exc}", markup=False, highlight=False, soft_wrap=True)
            sys.exit(1)

    return wrapper


@dataclass
class Session:
    """Configuration and provider backend for one cluster command."""

    config: EffectiveConfig
    backend: ProviderBackend
    environment: ProviderEnvironment


def banner_line(backend: ProviderBackend, config: EffectiveConfig, env: ProviderEnvironment) -> str:
    identity = backend.caller_identity()
    return (
        f"profile=env region={config.region} access_key_id={env.access_key_id} "
        f"account={identity.get('account', '')} arn={identity.get('arn', '')}"
    )


def open_session(
    cluster: str, config_path: Optional[str] = None, banner_to_stderr: bool = False,
) -> Session:
    """Validate the environment, load config, check the CLI, print the banner.

    Args:
        cluster: Cluster name.
        config_path: Optional explicit cluster config file.
        banner_to_stderr: Print the banner on stderr so stdout stays machine-readable.

    Returns:
        Session: Ready-to-use config and backend.

    Raises:
        ConfigError: Unsupported credentials or bad configuration.
        ProviderUnavailableError: The provider CLI is missing or broken.
    """
    env = resolve_environment()
    if env.problems:
        raise ConfigError("; ".join(env.problems))
    config = load_config(cluster, config_path)
    backend = create_backend(AWS_PROVIDER, config.region)
    version = backend.check_available()
    logger.debug("Provider CLI: %s", version)
    banner = banner_line(backend, config, env)
    if banner_to_stderr:
        err_console.print(banner, markup=False, highlight=False, soft_wrap=True)
    else:
        emit(banner)
    return Session(config=config, backend=backend, environment=env)
