"""Tests for SSH config generation."""

from __future__ import annotations

from vmcli.providers.aws import parse_instance
from vmcli.ssh_config import render_ssh_config, write_ssh_config

from conftest import instance_item


def test_render_skips_unnamed_and_addressless():
    instances = [
        parse_instance(instance_item("i-1", name="web1", public_ip="203.0.113.1")),
        parse_instance(instance_item("i-2", name=None, public_ip="203.0.113.2")),
        parse_instance(instance_item("i-3", name="db1", public_ip=None)),
    ]

    text = render_ssh_config(instances, "vpc-1", "sg-1", "~/.ssh/vmcli")

    assert text == "\n".join([
        "# vpc-id: vpc-1",
        "# sg-id: sg-1",
        "",
        "Host web1",
        "  HostName 203.0.113.1",
        "  User ubuntu",
        "  IdentitiesOnly yes",
        "  IdentityFile ~/.ssh/vmcli",
        "",
    ])


def test_render_without_network():
    assert render_ssh_config([], None, None, "k").splitlines() == ["# vpc-id: N/A", "# sg-id: N/A"]


def test_write_creates_parents(tmp_path):
    path = tmp_path / "aws" / "dev" / "ssh_config"
    write_ssh_config(path, "# vpc-id: vpc-1\n")
    assert path.read_text() == "# vpc-id: vpc-1\n"
