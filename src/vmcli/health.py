"""
Health diagnosis — collapse several partial signals into one verdict.

Signals, each derived fresh per run:

- instance state
- provider status checks (system + instance sub-statuses, tri-state)
- firewall posture for the SSH port across every attached group
- a live out-of-band probe that pushes the local public key

``summarize_health`` applies a fixed first-match-wins precedence over
them and returns a ``HealthVerdict`` with a machine-readable reason.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from .config import DEFAULT_INSTANCE_OS_USER, EffectiveConfig, expand_home_path
from .errors import CapabilityError, FailureKind, ProviderCommandError
from .locator import ResourceLocator
from .models import FirewallGroup, Instance, InstanceState
from .providers.base import ProviderBackend

logger = logging.getLogger(__name__)

SSH_PORT = 22

_CHECKS_NOT_APPLICABLE_STATES = (
    InstanceState.STOPPED.value,
    InstanceState.STOPPING.value,
    InstanceState.SHUTTING_DOWN.value,
)


class FirewallPosture(str, Enum):
    OPEN_WORLD = "open-world"
    RESTRICTED = "restricted"
    CLOSED = "closed"
    UNKNOWN = "unknown"


class ProbeOutcome(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


class HealthLevel(str, Enum):
    OK = "ok"
    DEGRADED = "degraded"
    UNREACHABLE = "unreachable"
    UNKNOWN = "unknown"


@dataclass
class StatusChecks:
    """Provider status-check sub-statuses and the derived tri-state."""

    system_status: str = "unknown"
    instance_status: str = "unknown"
    checks_pass: Optional[bool] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ProbeResult:
    """Facts gathered for the probe and what the probe returned."""

    os_user: str = DEFAULT_INSTANCE_OS_USER
    instance_running: bool = False
    public_ip_present: bool = False
    az_present: bool = False
    public_key_present: bool = False
    firewall_posture: FirewallPosture = FirewallPosture.UNKNOWN
    outcome: ProbeOutcome = ProbeOutcome.SKIPPED
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["firewall_posture"] = self.firewall_posture.value
        data["outcome"] = self.outcome.value
        return data


@dataclass
class HealthVerdict:
    """Terminal output of the diagnosis."""

    level: HealthLevel
    local_problem_likely: Optional[bool]
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "level": self.level.value,
            "local_problem_likely": self.local_problem_likely,
            "reason": self.reason,
        }


@dataclass
class HealthReport:
    """Everything ``vmcli aws health`` prints for one instance."""

    cluster: str
    name: str
    instance: Instance
    checks: StatusChecks
    probe: ProbeResult
    verdict: HealthVerdict
    support_path: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cluster": self.cluster,
            "name": self.name,
            "instance": self.instance.model_dump(),
            "status_checks": self.checks.to_dict(),
            "probe": {"support_path": self.support_path, **self.probe.to_dict()},
            "summary": self.verdict.to_dict(),
        }

    def lines(self) -> List[str]:
        """Render the report as ``key=value`` lines."""
        instance = self.instance
        groups = ",".join(instance.security_group_ids) or "N/A"
        out = [
            f"cluster={self.cluster}",
            f"name={instance.name or self.name}",
            f"instance-id={instance.instance_id}",
            f"state={instance.state}",
            f"az={instance.availability_zone or 'N/A'}",
            f"vpc-id={instance.vpc_id or 'N/A'}",
            f"subnet-id={instance.subnet_id or 'N/A'}",
            f"public-ip={instance.public_ip or 'N/A'}",
            f"private-ip={instance.private_ip or 'N/A'}",
            f"security-groups={groups}",
            f"ec2.system-status={self.checks.system_status}",
            f"ec2.instance-status={self.checks.instance_status}",
            f"ec2.status-checks-pass={tri_bool_to_str(self.checks.checks_pass)}",
            f"eic.support-path={self.support_path}",
            f"eic.os-user={self.probe.os_user}",
            f"eic.public-ip-present={_bool_str(self.probe.public_ip_present)}",
            f"eic.instance-running={_bool_str(self.probe.instance_running)}",
            f"eic.az-present={_bool_str(self.probe.az_present)}",
            f"eic.sg-port22={self.probe.firewall_posture.value}",
            f"eic.send-ssh-public-key={self.probe.outcome.value}",
        ]
        if self.probe.reason is not None:
            out.append(f"eic.send-ssh-public-key-reason={one_line_value(self.probe.reason)}")
        out += [
            f"summary.health={self.verdict.level.value}",
            f"summary.ssh-local-problem-likely={tri_bool_to_str(self.verdict.local_problem_likely)}",
            f"summary.notes={self.verdict.reason}",
        ]
        return out


def _bool_str(value: bool) -> str:
    return "true" if value else "false"


def tri_bool_to_str(value: Optional[bool]) -> str:
    if value is None:
        return "unknown"
    return _bool_str(value)


def one_line_value(value: str) -> str:
    return value.replace("\n", "\\n")


# ---------------------------------------------------------------------------
# Status checks
# ---------------------------------------------------------------------------


def classify_status_checks(system_status: str, instance_status: str) -> Optional[bool]:
    """Collapse two sub-statuses into a tri-state.

    ``(ok, ok)`` passes; either side ``unknown`` is undetermined; any
    other combination fails.
    """
    if system_status == "ok" and instance_status == "ok":
        return True
    if system_status == "unknown" or instance_status == "unknown":
        return None
    return False


def fetch_status_checks(backend: ProviderBackend, instance: Instance) -> StatusChecks:
    """Query and classify the provider's status checks for *instance*.

    When the provider reports no entry at all, stopped-ish instances get
    ``not-applicable`` and everything else ``unknown``; both map to None.
    """
    raw = backend.instance_status_checks(instance.instance_id)
    if raw is None:
        label = "not-applicable" if instance.state in _CHECKS_NOT_APPLICABLE_STATES else "unknown"
        return StatusChecks(system_status=label, instance_status=label, checks_pass=None)

    system_status = (raw.get("system") or "").strip() or "unknown"
    instance_status = (raw.get("instance") or "").strip() or "unknown"
    return StatusChecks(
        system_status=system_status,
        instance_status=instance_status,
        checks_pass=classify_status_checks(system_status, instance_status),
    )


# ---------------------------------------------------------------------------
# Firewall posture
# ---------------------------------------------------------------------------


def classify_port(groups: Sequence[FirewallGroup], port: int = SSH_PORT) -> FirewallPosture:
    """Classify how reachable *port* is from the internet.

    Args:
        groups: Every firewall group attached to the instance.
        port: TCP port to classify.

    Returns:
        FirewallPosture: ``unknown`` with no groups; ``open-world`` if any
        rule covering the port admits a wildcard source; ``restricted`` if
        one admits any concrete source; otherwise ``closed``.
    """
    if not groups:
        return FirewallPosture.UNKNOWN

    restricted = False
    for group in groups:
        for rule in group.rules:
            if not rule.covers_tcp_port(port):
                continue
            if rule.has_world_source():
                return FirewallPosture.OPEN_WORLD
            if rule.has_any_source():
                restricted = True
    return FirewallPosture.RESTRICTED if restricted else FirewallPosture.CLOSED


# ---------------------------------------------------------------------------
# Probe
# ---------------------------------------------------------------------------


def probe_skip_reason(
    instance_running: bool,
    public_ip_present: bool,
    az_present: bool,
    public_key_present: bool,
) -> Optional[str]:
    """First reason the probe cannot be attempted, in fixed precedence."""
    if not instance_running:
        return "instance-not-running"
    if not public_ip_present:
        return "no-public-ip"
    if not az_present:
        return "availability-zone-missing"
    if not public_key_present:
        return "ssh-public-key-not-found"
    return None


def run_probe(
    backend: ProviderBackend,
    instance: Instance,
    public_key_path: Path,
    posture: FirewallPosture,
    os_user: str = DEFAULT_INSTANCE_OS_USER,
) -> ProbeResult:
    """Attempt the out-of-band key push unless a precondition is missing.

    Args:
        backend: Provider backend.
        instance: Target instance.
        public_key_path: Expanded local public key path.
        posture: Firewall posture already computed for the SSH port.
        os_user: Remote login user the key is pushed for.

    Returns:
        ProbeResult: ``skipped`` with a reason, ``failed`` with the
        provider's error text, or ``success``.

    Raises:
        CapabilityError: The provider denied the probe call.
    """
    result = ProbeResult(
        os_user=os_user,
        instance_running=instance.is_running,
        public_ip_present=instance.has_public_ip,
        az_present=bool(instance.availability_zone),
        public_key_present=public_key_path.exists(),
        firewall_posture=posture,
    )
    skip = probe_skip_reason(
        result.instance_running,
        result.public_ip_present,
        result.az_present,
        result.public_key_present,
    )
    if skip is not None:
        result.reason = skip
        return result

    try:
        accepted = backend.send_probe_key(
            instance.instance_id, os_user, instance.availability_zone, str(public_key_path),
        )
    except ProviderCommandError as exc:
        if exc.kind is FailureKind.DENIED:
            raise CapabilityError(
                f"{backend.probe_description} failed: {exc.error_text}"
            ) from exc
        logger.info("Probe for %s failed: %s", instance.instance_id, exc.error_text)
        result.outcome = ProbeOutcome.FAILED
        result.reason = exc.error_text
        return result

    if accepted:
        result.outcome = ProbeOutcome.SUCCESS
    else:
        result.outcome = ProbeOutcome.FAILED
        result.reason = "success=false"
    return result


# ---------------------------------------------------------------------------
# Verdict
# ---------------------------------------------------------------------------


def summarize_health(
    state: str,
    checks_pass: Optional[bool],
    probe: ProbeResult,
) -> HealthVerdict:
    """Apply the verdict precedence; the first matching rule wins."""
    if state != InstanceState.RUNNING.value:
        return HealthVerdict(HealthLevel.UNREACHABLE, False, "instance-not-running")

    if checks_pass is False:
        return HealthVerdict(HealthLevel.DEGRADED, False, "ec2-status-checks-not-passing")

    probe_succeeded = probe.outcome is ProbeOutcome.SUCCESS

    if checks_pass is True and probe_succeeded:
        # Control plane confirms reachability; remaining failures are local.
        return HealthVerdict(HealthLevel.OK, True, "aws-control-plane-probe-succeeded")

    if probe.firewall_posture is FirewallPosture.CLOSED:
        return HealthVerdict(HealthLevel.DEGRADED, False, "security-group-port-22-closed")

    if checks_pass is None:
        if probe_succeeded:
            return HealthVerdict(HealthLevel.DEGRADED, None, "ec2-status-checks-unknown")
        return HealthVerdict(
            HealthLevel.UNKNOWN, None,
            "ec2-status-checks-unknown-and-no-remote-probe-confirmation",
        )

    return HealthVerdict(
        HealthLevel.DEGRADED, False, "instance-running-but-remote-probe-not-confirmed",
    )


def diagnose(
    backend: ProviderBackend,
    config: EffectiveConfig,
    name: str,
    os_user: str = DEFAULT_INSTANCE_OS_USER,
    locator: Optional[ResourceLocator] = None,
) -> HealthReport:
    """Gather every signal for instance *name* in the cluster and judge it.

    Args:
        backend: Provider backend.
        config: Effective cluster configuration.
        name: Instance Name tag (looked up within the cluster).
        os_user: Remote user for the probe.
        locator: Resource locator (built from *backend* if omitted).

    Returns:
        HealthReport: Facts, sub-results, and the verdict.
    """
    locator = locator or ResourceLocator(backend)
    instance = locator.find_instance(name, config.cluster_name)
    checks = fetch_status_checks(backend, instance)
    groups = backend.describe_firewall_groups(instance.security_group_ids)
    posture = classify_port(groups, SSH_PORT)
    probe = run_probe(
        backend, instance, expand_home_path(config.ssh_public_key_path), posture, os_user,
    )
    verdict = summarize_health(instance.state, checks.checks_pass, probe)
    logger.debug("Health for %s: %s (%s)", name, verdict.level.value, verdict.reason)
    return HealthReport(
        cluster=config.cluster_name,
        name=name,
        instance=instance,
        checks=checks,
        probe=probe,
        verdict=verdict,
        support_path=backend.probe_description,
    )
