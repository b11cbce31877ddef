"""Tests for tag-based resource lookup."""

from __future__ import annotations

import pytest

from vmcli.errors import AmbiguousResourceError, ResourceNotFoundError
from vmcli.locator import ResourceLocator, collect_status
from vmcli.models import ResourceKind

from conftest import filter_value, instance_item, reservations


@pytest.fixture
def locator(backend):
    return ResourceLocator(backend)


class TestFind:

    def test_none_when_untagged(self, runner, locator):
        runner.on("ec2", "describe-subnets", stdout={"Subnets": []})
        assert locator.find(ResourceKind.SUBNET, "dev") is None

    def test_single_match(self, runner, locator):
        runner.on("ec2", "describe-vpcs", stdout={"Vpcs": [{"VpcId": "vpc-1"}]})
        assert locator.find_network("dev") == "vpc-1"
        assert filter_value(runner.calls[-1], "tag:Name") == "dev-vpc"

    def test_two_matches_are_ambiguous(self, runner, locator):
        runner.on("ec2", "describe-security-groups", stdout={"SecurityGroups": [
            {"GroupId": "sg-1"}, {"GroupId": "sg-2"},
        ]})
        with pytest.raises(AmbiguousResourceError) as excinfo:
            locator.find_firewall_group("dev")
        assert excinfo.value.resource_ids == ["sg-1", "sg-2"]
        assert "sg-1, sg-2" in str(excinfo.value)

    def test_keypair_not_tag_located(self, locator):
        with pytest.raises(ValueError):
            locator.find(ResourceKind.KEYPAIR, "dev")


class TestFindInstance:

    def test_name_only_spans_clusters(self, runner, locator):
        runner.on("ec2", "describe-instances", stdout=reservations(instance_item()))
        assert locator.find_instance("web1").instance_id == "i-0abc"
        cmd = runner.calls[-1]
        assert filter_value(cmd, "tag:Name") == "web1"
        assert filter_value(cmd, "tag:Cluster") is None
        assert "terminated" not in filter_value(cmd, "instance-state-name").split(",")

    def test_scoped_to_cluster(self, runner, locator):
        runner.on("ec2", "describe-instances", stdout=reservations(instance_item()))
        locator.find_instance("web1", "dev")
        assert filter_value(runner.calls[-1], "tag:Cluster") == "dev"

    def test_same_name_in_two_clusters(self, runner, locator):
        runner.on("ec2", "describe-instances", stdout=reservations(
            instance_item("i-1", cluster="dev"), instance_item("i-2", cluster="prod"),
        ))
        with pytest.raises(AmbiguousResourceError, match="i-1, i-2"):
            locator.find_instance("web1")

    def test_not_found(self, runner, locator):
        runner.on("ec2", "describe-instances", stdout={"Reservations": []})
        with pytest.raises(ResourceNotFoundError, match="Name tag web1"):
            locator.find_instance("web1")


class TestCollectStatus:

    def test_lines(self, runner, locator):
        runner.on("ec2", "describe-vpcs", stdout={"Vpcs": [{"VpcId": "vpc-1"}]})
        runner.on("ec2", "describe-security-groups", stdout={"SecurityGroups": [{"GroupId": "sg-1"}]})
        runner.on("ec2", "describe-instances", stdout=reservations(
            instance_item("i-1"), instance_item("i-2", name=None, public_ip=None, state="stopped"),
        ))

        status = collect_status(locator, "dev")

        assert status.lines() == [
            "vpc-id=vpc-1",
            "sg-id=sg-1",
            "name=web1 instance-id=i-1 state=running public-ip=203.0.113.10",
            "name=N/A instance-id=i-2 state=stopped public-ip=N/A",
        ]
        assert filter_value(runner.commands("ec2", "describe-instances")[0], "vpc-id") == "vpc-1"

    def test_no_network(self, runner, locator):
        status = collect_status(locator, "dev")
        assert status.lines() == ["vpc-id=N/A", "sg-id=N/A"]
        assert runner.commands("ec2", "describe-instances") == []
