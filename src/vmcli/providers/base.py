"""
Provider boundary — the subprocess client and the backend capability interface.

``ProviderClient`` runs one provider CLI command at a time and turns a
non-zero exit into a ``ProviderCommandError`` whose ``kind`` comes from the
backend's classifier. ``ProviderBackend`` is the small set of capabilities
the reconciler, teardown engine, and health diagnosis need; each cloud
implements it once.
"""

from __future__ import annotations

import json
import logging
import subprocess
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

from ..errors import FailureKind, ProviderCommandError, ProviderUnavailableError
from ..models import (
    FirewallGroup,
    Instance,
    InstanceState,
    ResourceKind,
    RouteTable,
    TaggedResource,
)

logger = logging.getLogger(__name__)

Runner = Callable[..., subprocess.CompletedProcess]


@dataclass
class CommandResult:
    """Outcome of one provider command.

    Attributes:
        args: Arguments passed after the binary name.
        returncode: Process exit status.
        stdout: Trimmed standard output.
        stderr: Trimmed standard error.
    """

    args: List[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def success(self) -> bool:
        return self.returncode == 0


class ProviderClient:
    """Runs a provider CLI as a blocking subprocess.

    Args:
        binary: Executable name (e.g. ``aws``).
        scope_args: Arguments appended to every command (region/project).
        classify: Maps provider error text to a FailureKind.
        env: Environment for the child process (None inherits).
        runner: ``subprocess.run``-compatible callable, injectable for tests.
    """

    def __init__(
        self,
        binary: str,
        scope_args: Sequence[str] = (),
        classify: Optional[Callable[[str], FailureKind]] = None,
        env: Optional[Dict[str, str]] = None,
        runner: Optional[Runner] = None,
    ) -> None:
        self.binary = binary
        self.scope_args = list(scope_args)
        self._classify = classify or (lambda _text: FailureKind.UNKNOWN)
        self._env = env
        self._runner = runner or subprocess.run

    def run_raw(self, args: Sequence[str]) -> CommandResult:
        """Execute a command without interpreting its exit status.

        Args:
            args: Provider arguments (binary and scope excluded).

        Returns:
            CommandResult: Exit status and trimmed output.

        Raises:
            ProviderUnavailableError: If the binary cannot be executed.
        """
        args = list(args)
        cmd = [self.binary, *args, *self.scope_args]
        logger.debug("Running: %s", " ".join(cmd))
        try:
            proc = self._runner(cmd, capture_output=True, text=True, env=self._env)
        except FileNotFoundError as exc:
            raise ProviderUnavailableError(f"{self.binary} CLI not found in PATH") from exc
        except OSError as exc:
            raise ProviderUnavailableError(f"failed to execute {self.binary} CLI: {exc}") from exc
        return CommandResult(
            args=args,
            returncode=proc.returncode,
            stdout=(proc.stdout or "").strip(),
            stderr=(proc.stderr or "").strip(),
        )

    def classify(self, result: CommandResult) -> FailureKind:
        """Classify a failed result through the backend's classifier.

        Both streams are inspected; some denials only show up on stdout.
        """
        return self._classify(f"{result.stderr} {result.stdout}".strip())

    def error_for(self, result: CommandResult) -> ProviderCommandError:
        return ProviderCommandError(
            result.args, result.stderr, kind=self.classify(result), stdout=result.stdout,
        )

    def run(self, args: Sequence[str]) -> str:
        """Execute a command and return its stdout.

        Raises:
            ProviderCommandError: On non-zero exit, with a classified kind.
        """
        result = self.run_raw(args)
        if not result.success:
            raise self.error_for(result)
        return result.stdout

    def run_json(self, args: Sequence[str]) -> Any:
        """Execute a command and parse its stdout as JSON."""
        output = self.run(args)
        try:
            return json.loads(output) if output else {}
        except json.JSONDecodeError as exc:
            raise ProviderCommandError(
                list(args), f"unparseable JSON output: {exc}", stdout=output,
            ) from exc

    def check_available(self) -> str:
        """Verify the binary runs; return its version string.

        Raises:
            ProviderUnavailableError: If the binary is missing or fails.
        """
        try:
            proc = self._runner(
                [self.binary, "--version"], capture_output=True, text=True, env=self._env,
            )
        except FileNotFoundError as exc:
            raise ProviderUnavailableError(f"{self.binary} CLI not found in PATH") from exc
        except OSError as exc:
            raise ProviderUnavailableError(f"failed to execute {self.binary} CLI: {exc}") from exc
        if proc.returncode != 0:
            stderr = (proc.stderr or "").strip()
            detail = f": {stderr}" if stderr else ""
            raise ProviderUnavailableError(f"{self.binary} CLI failed to run{detail}")
        return (proc.stdout or proc.stderr or "").strip()


class ProviderBackend:
    """Capabilities one cloud must supply to be reconciled.

    Every mutating call raises ``ProviderCommandError`` on failure; the
    caller decides which ``FailureKind`` values mean "already done".
    """

    name: str = "base"
    supports_native_wait: bool = False

    def __init__(self, client: ProviderClient) -> None:
        self.client = client

    # -- identity / availability ------------------------------------------

    def check_available(self) -> str:
        return self.client.check_available()

    def caller_identity(self) -> Dict[str, str]:
        raise NotImplementedError

    # -- tagged resources ---------------------------------------------------

    def describe_tagged(self, kind: ResourceKind, name: str, cluster: str) -> List[TaggedResource]:
        """Return every resource of *kind* tagged Name=*name* and Cluster=*cluster*."""
        raise NotImplementedError

    def create_tagged(
        self, kind: ResourceKind, name: str, cluster: str, network_id: Optional[str] = None,
    ) -> str:
        """Create a tagged resource and return its provider id."""
        raise NotImplementedError

    def delete(self, kind: ResourceKind, resource_id: str) -> None:
        raise NotImplementedError

    # -- network convergence ------------------------------------------------

    def enable_public_ip_on_launch(self, subnet_id: str) -> None:
        raise NotImplementedError

    def attach_gateway(self, gateway_id: str, network_id: str) -> None:
        raise NotImplementedError

    def detach_gateway(self, gateway_id: str, network_id: str) -> None:
        raise NotImplementedError

    def create_route(self, route_table_id: str, destination: str, gateway_id: str) -> None:
        raise NotImplementedError

    def replace_route(self, route_table_id: str, destination: str, gateway_id: str) -> None:
        raise NotImplementedError

    def route_tables_for_subnet(self, subnet_id: str) -> List[RouteTable]:
        raise NotImplementedError

    def associate_route_table(self, route_table_id: str, subnet_id: str) -> None:
        raise NotImplementedError

    def replace_route_table_association(self, association_id: str, route_table_id: str) -> None:
        raise NotImplementedError

    def disassociate_route_table(self, association_id: str) -> None:
        raise NotImplementedError

    def authorize_ingress(self, group_id: str, port: int, cidr: str) -> None:
        raise NotImplementedError

    def describe_firewall_groups(self, group_ids: Sequence[str]) -> List[FirewallGroup]:
        raise NotImplementedError

    # -- keypairs / images --------------------------------------------------

    def keypair_exists(self, key_name: str) -> bool:
        raise NotImplementedError

    def import_keypair(self, key_name: str, cluster: str, public_key_path: str) -> None:
        raise NotImplementedError

    def delete_keypair(self, key_name: str) -> None:
        raise NotImplementedError

    def latest_image_id(self) -> str:
        """Look up the latest distribution image id (may return '')."""
        raise NotImplementedError

    @property
    def image_parameter(self) -> Optional[str]:
        """Parameter-store key consulted by latest_image_id, if any."""
        return None

    # -- compute ------------------------------------------------------------

    def describe_instances(
        self,
        name: Optional[str] = None,
        cluster: Optional[str] = None,
        network_id: Optional[str] = None,
        instance_ids: Optional[Sequence[str]] = None,
        states: Optional[Sequence[InstanceState]] = None,
    ) -> List[Instance]:
        raise NotImplementedError

    def run_instance(
        self,
        name: str,
        cluster: str,
        image_id: str,
        instance_type: str,
        subnet_id: str,
        group_id: str,
        key_name: str,
    ) -> str:
        raise NotImplementedError

    def terminate_instance(self, instance_id: str) -> None:
        raise NotImplementedError

    def reboot_instance(self, instance_id: str) -> None:
        raise NotImplementedError

    def wait_for_instance_state(self, instance_id: str, state: InstanceState) -> None:
        """Provider-native blocking wait (only when supports_native_wait)."""
        raise NotImplementedError

    # -- diagnosis ----------------------------------------------------------

    def instance_status_checks(self, instance_id: str) -> Optional[Dict[str, Optional[str]]]:
        """Return ``{'system': .., 'instance': ..}`` sub-statuses, or None if unreported."""
        raise NotImplementedError

    def send_probe_key(
        self, instance_id: str, os_user: str, availability_zone: str, public_key_path: str,
    ) -> bool:
        """Push the public key out-of-band; return the provider's success flag."""
        raise NotImplementedError

    @property
    def probe_description(self) -> str:
        return f"{self.name} probe"


def absorb(
    absorbed: Sequence[FailureKind],
    fn: Callable[..., Any],
    *args: Any,
    description: str = "",
) -> bool:
    """Call *fn*, treating the listed failure kinds as "already done".

    Args:
        absorbed: Failure kinds that count as success.
        fn: Backend method to call.
        *args: Arguments for *fn*.
        description: Used in the log line when a failure is absorbed.

    Returns:
        bool: True if the call succeeded outright, False if it was absorbed.

    Raises:
        ProviderCommandError: For any failure kind not listed.
    """
    try:
        fn(*args)
        return True
    except ProviderCommandError as exc:
        if exc.kind not in absorbed:
            raise
        logger.debug("%s: absorbed %s signal (%s)", description or fn.__name__, exc.kind.value, exc.stderr)
        return False


# ---------------------------------------------------------------------------
# Backend registry
# ---------------------------------------------------------------------------

_BACKENDS: Dict[str, type] = {}


def register_backend(name: str):
    """Decorator to register a provider backend class.

    Args:
        name: Provider name used on the command line (e.g. 'aws').
    """
    def wrapper(cls):
        _BACKENDS[name] = cls
        return cls
    return wrapper


def create_backend(name: str, region: str, runner: Optional[Runner] = None) -> ProviderBackend:
    """Instantiate the registered backend for *name*.

    Args:
        name: Provider name.
        region: Region/project scope for every command.
        runner: Optional ``subprocess.run`` replacement.

    Returns:
        ProviderBackend: Ready-to-use backend.

    Raises:
        ProviderUnavailableError: If no backend is registered under *name*.
    """
    backend_cls = _BACKENDS.get(name)
    if backend_cls is None:
        raise ProviderUnavailableError(f"Unknown provider: {name}")
    return backend_cls.for_region(region, runner=runner)
