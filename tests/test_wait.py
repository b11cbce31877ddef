"""Tests for the wait strategies."""

from __future__ import annotations

import pytest

from vmcli.errors import ProviderCommandError, WaitFailedError, WaitTimeoutError
from vmcli.models import InstanceState
from vmcli.providers.base import ProviderBackend
from vmcli.wait import NativeWaiter, PollingWaiter, select_waiter

from conftest import instance_item, reservations


class TestPollingWaiter:

    def test_returns_first_ready_value(self):
        sleeps = []
        values = iter([1, 2, 3])
        waiter = PollingWaiter(interval=2, max_attempts=5, sleep=sleeps.append)

        assert waiter.until(lambda: next(values), lambda v: v == 3) == 3
        assert sleeps == [2, 2]

    def test_timeout_after_last_attempt(self):
        sleeps = []
        waiter = PollingWaiter(interval=1.5, max_attempts=3, sleep=sleeps.append)

        with pytest.raises(WaitTimeoutError, match="after 3 attempts at 1.5s intervals"):
            waiter.until(lambda: "pending", lambda v: v == "running", description="i-1")

        assert sleeps == [1.5, 1.5]

    def test_max_attempts_validated(self):
        with pytest.raises(ValueError):
            PollingWaiter(max_attempts=0)

    def test_instance_running(self, runner, backend):
        runner.on("ec2", "describe-instances", stdout=reservations(instance_item("i-1", state="pending")))
        runner.on("ec2", "describe-instances", stdout=reservations(instance_item("i-1", state="running")))
        waiter = PollingWaiter(interval=0, max_attempts=3, sleep=lambda _s: None)

        waiter.wait_for_instance(backend, "i-1", InstanceState.RUNNING)

        assert len(runner.commands("ec2", "describe-instances")) == 2

    def test_vanished_instance_counts_as_terminated(self, runner, backend):
        runner.on("ec2", "describe-instances", stdout={"Reservations": []})
        waiter = PollingWaiter(interval=0, max_attempts=1, sleep=lambda _s: None)
        waiter.wait_for_instance(backend, "i-1", InstanceState.TERMINATED)

    def test_instance_never_runs(self, runner, backend):
        runner.on("ec2", "describe-instances", stdout=reservations(instance_item("i-1", state="pending")))
        waiter = PollingWaiter(interval=0, max_attempts=2, sleep=lambda _s: None)
        with pytest.raises(WaitTimeoutError, match="i-1 to become running"):
            waiter.wait_for_instance(backend, "i-1", InstanceState.RUNNING)

    def test_new_instance_not_yet_visible(self, runner, backend):
        runner.fail("ec2", "describe-instances",
                    stderr="An error occurred (InvalidInstanceID.NotFound) when calling DescribeInstances")
        runner.on("ec2", "describe-instances", stdout=reservations(instance_item("i-1", state="running")))
        waiter = PollingWaiter(interval=0, max_attempts=3, sleep=lambda _s: None)

        waiter.wait_for_instance(backend, "i-1", InstanceState.RUNNING)

        assert len(runner.commands("ec2", "describe-instances")) == 2

    def test_other_lookup_failures_propagate(self, runner, backend):
        runner.fail("ec2", "describe-instances", stderr="An error occurred (RequestLimitExceeded)")
        waiter = PollingWaiter(interval=0, max_attempts=3, sleep=lambda _s: None)
        with pytest.raises(ProviderCommandError):
            waiter.wait_for_instance(backend, "i-1", InstanceState.RUNNING)

    @pytest.mark.parametrize("state", ["terminated", "shutting-down"])
    def test_dead_end_state_fails_fast(self, runner, backend, state):
        sleeps = []
        runner.on("ec2", "describe-instances", stdout=reservations(instance_item("i-1", state=state)))
        waiter = PollingWaiter(interval=5, max_attempts=60, sleep=sleeps.append)

        with pytest.raises(WaitFailedError, match=f"reached {state}"):
            waiter.wait_for_instance(backend, "i-1", InstanceState.RUNNING)

        assert len(runner.commands("ec2", "describe-instances")) == 1
        assert sleeps == []

    def test_terminal_check_ignores_unseen(self):
        values = iter([None, "ready"])
        waiter = PollingWaiter(interval=0, max_attempts=3, sleep=lambda _s: None)
        result = waiter.until(
            lambda: next(values), lambda v: v == "ready", terminal_check=lambda v: v is None,
        )
        assert result == "ready"


class TestSelectWaiter:

    def test_native(self, backend):
        assert isinstance(select_waiter("native", backend), NativeWaiter)

    def test_poll(self, backend):
        assert isinstance(select_waiter("poll", backend), PollingWaiter)

    def test_native_falls_back_without_provider_support(self, backend):
        plain = ProviderBackend(backend.client)
        assert isinstance(select_waiter("native", plain), PollingWaiter)

    def test_unknown_strategy(self, backend):
        with pytest.raises(ValueError):
            select_waiter("exponential", backend)
