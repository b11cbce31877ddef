"""Shared test fixtures for vmcli.

``FakeRunner`` stands in for ``subprocess.run``: responses are scripted by
argument prefix and every command is recorded, so tests can assert on the
exact provider calls without a real ``aws`` binary.
"""

from __future__ import annotations

import json
import subprocess
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import pytest

from vmcli.config import EffectiveConfig
from vmcli.providers.aws import AwsBackend

REGION = "ap-northeast-1"


class FakeRunner:
    """Scripted ``subprocess.run`` replacement.

    Responses registered for the same prefix are consumed in order; the
    last one repeats. The longest matching prefix wins. Unmatched commands
    succeed with empty output.
    """

    def __init__(self) -> None:
        self._responses: Dict[Tuple[str, ...], List[subprocess.CompletedProcess]] = {}
        self.calls: List[List[str]] = []

    def on(
        self,
        *prefix: str,
        stdout: Any = "",
        stderr: str = "",
        returncode: int = 0,
    ) -> "FakeRunner":
        if not isinstance(stdout, str):
            stdout = json.dumps(stdout)
        proc = subprocess.CompletedProcess(list(prefix), returncode, stdout, stderr)
        self._responses.setdefault(tuple(prefix), []).append(proc)
        return self

    def fail(self, *prefix: str, stderr: str, stdout: str = "") -> "FakeRunner":
        return self.on(*prefix, stdout=stdout, stderr=stderr, returncode=255)

    def __call__(self, cmd: Sequence[str], **kwargs: Any) -> subprocess.CompletedProcess:
        cmd = list(cmd)
        self.calls.append(cmd)
        args = tuple(cmd[1:])
        best: Optional[Tuple[str, ...]] = None
        for prefix in self._responses:
            if args[: len(prefix)] == prefix and (best is None or len(prefix) > len(best)):
                best = prefix
        if best is None:
            return subprocess.CompletedProcess(cmd, 0, "", "")
        queue = self._responses[best]
        return queue.pop(0) if len(queue) > 1 else queue[0]

    def commands(self, *prefix: str) -> List[List[str]]:
        """Recorded calls whose arguments (after the binary) start with *prefix*."""
        return [c for c in self.calls if tuple(c[1 : 1 + len(prefix)]) == prefix]

    def verbs(self) -> List[str]:
        """Second argument of every call, e.g. ``create-vpc``."""
        return [c[2] if len(c) > 2 else c[1] for c in self.calls]


def filter_value(cmd: Sequence[str], name: str) -> Optional[str]:
    """Return the ``Values=`` part of the ``--filters Name=<name>`` argument."""
    for arg in cmd:
        if arg.startswith(f"Name={name},Values="):
            return arg.split("Values=", 1)[1]
    return None


def flag_value(cmd: Sequence[str], flag: str) -> Optional[str]:
    cmd = list(cmd)
    if flag not in cmd:
        return None
    return cmd[cmd.index(flag) + 1]


def instance_item(
    instance_id: str = "i-0abc",
    name: Optional[str] = "web1",
    cluster: str = "dev",
    state: str = "running",
    public_ip: Optional[str] = "203.0.113.10",
    az: Optional[str] = "ap-northeast-1a",
    groups: Sequence[str] = ("sg-1",),
) -> Dict[str, Any]:
    """Raw ``describe-instances`` entry."""
    tags = [{"Key": "Cluster", "Value": cluster}]
    if name is not None:
        tags.append({"Key": "Name", "Value": name})
    item: Dict[str, Any] = {
        "InstanceId": instance_id,
        "State": {"Name": state},
        "Tags": tags,
        "PrivateIpAddress": "10.0.1.5",
        "VpcId": "vpc-1",
        "SubnetId": "subnet-1",
        "SecurityGroups": [{"GroupId": g} for g in groups],
    }
    if public_ip is not None:
        item["PublicIpAddress"] = public_ip
    if az is not None:
        item["Placement"] = {"AvailabilityZone": az}
    return item


def reservations(*items: Dict[str, Any]) -> Dict[str, Any]:
    return {"Reservations": [{"Instances": list(items)}]}


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def backend(runner: FakeRunner) -> AwsBackend:
    return AwsBackend.for_region(REGION, runner=runner)


@pytest.fixture
def public_key(tmp_path: Path) -> Path:
    key = tmp_path / "id_vmcli.pub"
    key.write_text("ssh-ed25519 AAAATEST vmcli@test\n")
    return key


@pytest.fixture
def config(tmp_path: Path, public_key: Path) -> EffectiveConfig:
    return EffectiveConfig(
        cluster_name="dev",
        region=REGION,
        ssh_public_key_path=str(public_key),
        default_instance_type="t3.micro",
        ami_id=None,
        ssh_config_path=tmp_path / "aws" / "dev" / "ssh_config",
    )


@pytest.fixture
def config_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point the config root at a temporary directory."""
    home = tmp_path / "vmcli-config"
    monkeypatch.setattr("vmcli.config.CONFIG_HOME", str(home))
    return home
