"""Tests for the resource reconciler.

Covers:
- full bring-up call order on an empty account
- re-running against an already converged cluster (idempotence)
- route create-then-replace on conflict
- subnet association convergence (same table, other table, race)
- ingress duplicates, keypair import, image resolution
- duplicate-name precondition
"""

from __future__ import annotations

import pytest

from vmcli.errors import (
    ConfigError,
    EmptyImageIdError,
    FailureKind,
    PreconditionError,
    ProviderCommandError,
)
from vmcli.models import ResourceKind
from vmcli.reconciler import INGRESS_PORTS, Reconciler
from vmcli.wait import PollingWaiter

from conftest import filter_value, flag_value, instance_item, reservations

KEY_NOT_FOUND = "An error occurred (InvalidKeyPair.NotFound) when calling DescribeKeyPairs"


@pytest.fixture
def reconciler(backend, config):
    return Reconciler(backend, config)


def _script_empty_account(runner, launched=None):
    runner.on("ec2", "describe-instances", stdout={"Reservations": []})
    runner.on("ec2", "describe-instances", stdout=reservations(launched or instance_item("i-1")))
    runner.on("ec2", "create-vpc", stdout="vpc-1")
    runner.on("ec2", "create-subnet", stdout="subnet-1")
    runner.on("ec2", "create-internet-gateway", stdout="igw-1")
    runner.on("ec2", "create-route-table", stdout="rtb-1")
    runner.on("ec2", "create-security-group", stdout="sg-1")
    runner.fail("ec2", "describe-key-pairs", stderr=KEY_NOT_FOUND)
    runner.on("ssm", "get-parameter", stdout="ami-0123")
    runner.on("ec2", "run-instances", stdout="i-1")


def _script_converged_cluster(runner):
    runner.on("ec2", "describe-vpcs", stdout={"Vpcs": [{"VpcId": "vpc-1"}]})
    runner.on("ec2", "describe-subnets", stdout={"Subnets": [{"SubnetId": "subnet-1"}]})
    runner.on("ec2", "describe-internet-gateways", stdout={"InternetGateways": [{
        "InternetGatewayId": "igw-1", "Attachments": [{"VpcId": "vpc-1"}],
    }]})
    runner.on("ec2", "describe-route-tables", stdout={"RouteTables": [{
        "RouteTableId": "rtb-1",
        "Associations": [{
            "RouteTableAssociationId": "rtbassoc-1", "RouteTableId": "rtb-1", "SubnetId": "subnet-1",
        }],
    }]})
    runner.on("ec2", "describe-security-groups", stdout={"SecurityGroups": [{"GroupId": "sg-1"}]})
    runner.fail("ec2", "create-route", stderr="An error occurred (RouteAlreadyExists)")
    runner.fail("ec2", "authorize-security-group-ingress",
                stderr="An error occurred (InvalidPermission.Duplicate)")
    runner.on("ec2", "describe-key-pairs", stdout={"KeyPairs": [{"KeyName": "dev-key"}]})


class TestBringUp:

    def test_empty_account_order(self, runner, reconciler):
        _script_empty_account(runner)

        result = reconciler.up("web1")

        assert result.instance_id == "i-1"
        assert result.public_ip == "203.0.113.10"
        assert runner.verbs() == [
            "describe-instances",
            "describe-vpcs", "create-vpc",
            "describe-subnets", "create-subnet", "modify-subnet-attribute",
            "describe-internet-gateways", "create-internet-gateway", "attach-internet-gateway",
            "describe-route-tables", "create-route-table", "create-route",
            "describe-route-tables", "associate-route-table",
            "describe-security-groups", "create-security-group",
            *["authorize-security-group-ingress"] * len(INGRESS_PORTS),
            "describe-key-pairs", "import-key-pair",
            "get-parameter",
            "run-instances",
            "wait",
            "describe-instances",
        ]

    def test_launch_arguments(self, runner, reconciler):
        _script_empty_account(runner)
        reconciler.up("web1", instance_type="t3.small")

        (cmd,) = runner.commands("ec2", "run-instances")
        assert flag_value(cmd, "--image-id") == "ami-0123"
        assert flag_value(cmd, "--instance-type") == "t3.small"
        assert flag_value(cmd, "--subnet-id") == "subnet-1"
        assert flag_value(cmd, "--security-group-ids") == "sg-1"
        assert flag_value(cmd, "--key-name") == "dev-key"
        assert flag_value(cmd, "--count") == "1"
        assert "Value=web1" in flag_value(cmd, "--tag-specifications")

    def test_ingress_ports(self, runner, reconciler):
        _script_empty_account(runner)
        reconciler.up("web1")

        ports = [flag_value(c, "--port") for c in runner.commands("ec2", "authorize-security-group-ingress")]
        assert ports == ["22", "80", "443", "9090", "9091", "9092"]
        for cmd in runner.commands("ec2", "authorize-security-group-ingress"):
            assert flag_value(cmd, "--cidr") == "0.0.0.0/0"

    def test_missing_public_ip_is_not_an_error(self, runner, reconciler):
        _script_empty_account(runner, launched=instance_item("i-1", public_ip=None))

        result = reconciler.up("web1")

        assert result.public_ip is None
        assert result.public_ip_display == "N/A"

    def test_polling_waiter(self, runner, backend, config):
        _script_empty_account(runner)
        waiter = PollingWaiter(interval=0, max_attempts=3, sleep=lambda _s: None)

        Reconciler(backend, config, waiter=waiter).up("web1")

        assert "wait" not in runner.verbs()

    def test_duplicate_name_refused(self, runner, reconciler):
        runner.on("ec2", "describe-instances", stdout=reservations(instance_item("i-9")))

        with pytest.raises(PreconditionError, match="already exists"):
            reconciler.up("web1")

        assert not [v for v in runner.verbs() if v.startswith("create-") or v == "run-instances"]
        cmd = runner.calls[0]
        assert filter_value(cmd, "tag:Cluster") == "dev"
        assert filter_value(cmd, "instance-state-name") == "pending,running,stopping,stopped,shutting-down"


class TestIdempotence:

    def test_ensure_twice_returns_same_id(self, runner, reconciler):
        runner.on("ec2", "describe-vpcs", stdout={"Vpcs": []})
        runner.on("ec2", "describe-vpcs", stdout={"Vpcs": [{"VpcId": "vpc-new"}]})
        runner.on("ec2", "create-vpc", stdout="vpc-new")

        assert reconciler.ensure_network() == "vpc-new"
        assert reconciler.ensure_network() == "vpc-new"
        assert len(runner.commands("ec2", "create-vpc")) == 1

    def test_converged_cluster_creates_nothing(self, runner, reconciler):
        _script_converged_cluster(runner)

        network = reconciler.ensure_network_stack()

        assert network.network_id == "vpc-1"
        assert network.route_table_id == "rtb-1"
        assert network.key_name == "dev-key"
        verbs = runner.verbs()
        assert not [v for v in verbs if v.startswith("create-") and v != "create-route"]
        assert "attach-internet-gateway" not in verbs
        assert "associate-route-table" not in verbs
        assert "replace-route-table-association" not in verbs
        assert "import-key-pair" not in verbs

    def test_public_ip_attribute_reapplied(self, runner, reconciler):
        _script_converged_cluster(runner)
        reconciler.ensure_network_stack()
        (cmd,) = runner.commands("ec2", "modify-subnet-attribute")
        assert "--map-public-ip-on-launch" in cmd

    def test_ambiguous_network_aborts(self, runner, reconciler):
        from vmcli.errors import AmbiguousResourceError

        runner.on("ec2", "describe-vpcs", stdout={"Vpcs": [{"VpcId": "vpc-1"}, {"VpcId": "vpc-2"}]})
        with pytest.raises(AmbiguousResourceError):
            reconciler.ensure_network_stack()
        assert runner.commands("ec2", "create-vpc") == []


class TestRoutes:

    def test_create_route_conflict_falls_back_to_replace(self, runner, reconciler):
        runner.fail("ec2", "create-route", stderr="An error occurred (RouteAlreadyExists)")

        reconciler.ensure_default_route("rtb-1", "igw-1")
        reconciler.ensure_default_route("rtb-1", "igw-1")

        assert len(runner.commands("ec2", "replace-route")) == 2
        cmd = runner.commands("ec2", "replace-route")[0]
        assert flag_value(cmd, "--destination-cidr-block") == "0.0.0.0/0"
        assert flag_value(cmd, "--gateway-id") == "igw-1"

    def test_create_route_success_skips_replace(self, runner, reconciler):
        reconciler.ensure_default_route("rtb-1", "igw-1")
        assert runner.commands("ec2", "replace-route") == []

    def test_create_route_other_failure_propagates(self, runner, reconciler):
        runner.fail("ec2", "create-route", stderr="An error occurred (InvalidGatewayID.Malformed)")
        with pytest.raises(ProviderCommandError):
            reconciler.ensure_default_route("rtb-1", "igw-1")
        assert runner.commands("ec2", "replace-route") == []

    def test_association_already_on_target(self, runner, reconciler):
        runner.on("ec2", "describe-route-tables", stdout={"RouteTables": [{
            "RouteTableId": "rtb-1",
            "Associations": [{"RouteTableAssociationId": "a-1", "SubnetId": "subnet-1"}],
        }]})
        reconciler.ensure_route_table_association("rtb-1", "subnet-1")
        assert runner.verbs() == ["describe-route-tables"]
        assert filter_value(runner.calls[0], "association.subnet-id") == "subnet-1"

    def test_association_moved_from_other_table(self, runner, reconciler):
        runner.on("ec2", "describe-route-tables", stdout={"RouteTables": [{
            "RouteTableId": "rtb-old",
            "Associations": [{"RouteTableAssociationId": "a-old", "SubnetId": "subnet-1"}],
        }]})

        reconciler.ensure_route_table_association("rtb-1", "subnet-1")

        (cmd,) = runner.commands("ec2", "replace-route-table-association")
        assert flag_value(cmd, "--association-id") == "a-old"
        assert flag_value(cmd, "--route-table-id") == "rtb-1"
        assert runner.commands("ec2", "associate-route-table") == []

    def test_association_race_is_success(self, runner, reconciler):
        runner.fail("ec2", "associate-route-table",
                    stderr="An error occurred (Resource.AlreadyAssociated)")
        reconciler.ensure_route_table_association("rtb-1", "subnet-1")
        assert len(runner.commands("ec2", "associate-route-table")) == 1


class TestFirewallAndKeys:

    def test_duplicate_ingress_absorbed(self, runner, reconciler):
        runner.on("ec2", "create-security-group", stdout="sg-1")
        runner.fail("ec2", "authorize-security-group-ingress",
                    stderr="An error occurred (InvalidPermission.Duplicate)")
        assert reconciler.ensure_firewall_group("vpc-1") == "sg-1"
        assert len(runner.commands("ec2", "authorize-security-group-ingress")) == len(INGRESS_PORTS)

    def test_denied_ingress_propagates(self, runner, reconciler):
        runner.on("ec2", "create-security-group", stdout="sg-1")
        runner.fail("ec2", "authorize-security-group-ingress",
                    stderr="An error occurred (UnauthorizedOperation)")
        with pytest.raises(ProviderCommandError) as excinfo:
            reconciler.ensure_firewall_group("vpc-1")
        assert excinfo.value.kind is FailureKind.DENIED

    def test_keypair_imported_from_expanded_path(self, runner, reconciler, public_key):
        runner.fail("ec2", "describe-key-pairs", stderr=KEY_NOT_FOUND)
        assert reconciler.ensure_keypair() == "dev-key"
        (cmd,) = runner.commands("ec2", "import-key-pair")
        assert flag_value(cmd, "--public-key-material") == f"fileb://{public_key}"

    def test_keypair_missing_local_file(self, runner, backend, config, tmp_path):
        runner.fail("ec2", "describe-key-pairs", stderr=KEY_NOT_FOUND)
        config = config.model_copy(update={"ssh_public_key_path": str(tmp_path / "nope.pub")})
        with pytest.raises(ConfigError, match="not found"):
            Reconciler(backend, config).ensure_keypair()


class TestImage:

    def test_pinned_image_skips_lookup(self, runner, backend, config):
        config = config.model_copy(update={"ami_id": "ami-pinned"})
        assert Reconciler(backend, config).resolve_image_id() == "ami-pinned"
        assert runner.calls == []

    def test_empty_lookup_is_fatal(self, runner, reconciler):
        runner.on("ssm", "get-parameter", stdout="   ")
        with pytest.raises(EmptyImageIdError, match="ubuntu/server/24.04"):
            reconciler.resolve_image_id()

    def test_resource_name_suffixes(self, runner, reconciler):
        runner.on("ec2", "create-internet-gateway", stdout="igw-1")
        reconciler.ensure_gateway("vpc-1")
        (cmd,) = runner.commands("ec2", "describe-internet-gateways")
        assert filter_value(cmd, "tag:Name") == "dev-" + ResourceKind.GATEWAY.suffix
