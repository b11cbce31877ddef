"""
Wait strategies for instance state transitions.

``NativeWaiter`` hands the wait to the provider's own blocking wait
command. ``PollingWaiter`` re-queries the instance on a fixed interval for
a bounded number of attempts and raises ``WaitTimeoutError`` when the
state never shows up. No backoff, no jitter.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional, TypeVar

from .errors import FailureKind, ProviderCommandError, WaitFailedError, WaitTimeoutError
from .models import InstanceState
from .providers.base import ProviderBackend

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_POLL_INTERVAL = 5.0
DEFAULT_MAX_ATTEMPTS = 60

# States from which the target can no longer be reached.
_DEAD_END_STATES = {
    InstanceState.RUNNING: (
        InstanceState.STOPPING.value,
        InstanceState.SHUTTING_DOWN.value,
        InstanceState.TERMINATED.value,
    ),
    InstanceState.STOPPED: (
        InstanceState.SHUTTING_DOWN.value,
        InstanceState.TERMINATED.value,
    ),
}


class Waiter:
    """Blocks until an instance reaches a target state."""

    def wait_for_instance(
        self, backend: ProviderBackend, instance_id: str, state: InstanceState,
    ) -> None:
        raise NotImplementedError


class NativeWaiter(Waiter):
    """Delegates to the provider's blocking wait primitive."""

    def wait_for_instance(
        self, backend: ProviderBackend, instance_id: str, state: InstanceState,
    ) -> None:
        logger.info("Waiting for %s to become %s", instance_id, InstanceState(state).value)
        backend.wait_for_instance_state(instance_id, state)


class PollingWaiter(Waiter):
    """Fixed-interval, bounded polling.

    Args:
        interval: Seconds between polls.
        max_attempts: Number of polls before giving up.
        sleep: Sleep function (injectable for tests).
    """

    def __init__(
        self,
        interval: float = DEFAULT_POLL_INTERVAL,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.interval = interval
        self.max_attempts = max_attempts
        self._sleep = sleep

    def until(
        self,
        poll_fn: Callable[[], Optional[T]],
        ready_check: Callable[[T], bool],
        description: str = "resource",
        terminal_check: Optional[Callable[[T], bool]] = None,
    ) -> T:
        """Poll until *ready_check* accepts the polled value.

        A ``None`` observation means "not visible yet" and is only passed
        to *ready_check*, never to *terminal_check*.

        Args:
            poll_fn: Returns the current observation.
            ready_check: True when the observation is the expected one.
            description: Used in the timeout message.
            terminal_check: True when the observation can never become ready.

        Returns:
            The accepted observation.

        Raises:
            WaitFailedError: If *terminal_check* accepts an observation.
            WaitTimeoutError: After max_attempts polls without success.
        """
        for attempt in range(1, self.max_attempts + 1):
            value = poll_fn()
            if ready_check(value):
                return value
            if value is not None and terminal_check is not None and terminal_check(value):
                raise WaitFailedError(f"{description} failed: reached {value}")
            if attempt < self.max_attempts:
                logger.debug(
                    "%s not ready (attempt %d/%d)", description, attempt, self.max_attempts,
                )
                self._sleep(self.interval)
        raise WaitTimeoutError(
            f"timed out waiting for {description} after {self.max_attempts} attempts "
            f"at {self.interval:g}s intervals"
        )

    def wait_for_instance(
        self, backend: ProviderBackend, instance_id: str, state: InstanceState,
    ) -> None:
        target = InstanceState(state).value
        dead_ends = _DEAD_END_STATES.get(InstanceState(state), ())

        def poll() -> Optional[str]:
            try:
                instances = backend.describe_instances(instance_ids=[instance_id])
            except ProviderCommandError as exc:
                # New ids can lag behind run-instances; gone ids stop resolving.
                if exc.kind is not FailureKind.NOT_FOUND:
                    raise
                return None
            return instances[0].state if instances else None

        def ready(observed: Optional[str]) -> bool:
            if observed is None:
                return target == InstanceState.TERMINATED.value
            return observed == target

        self.until(
            poll,
            ready,
            description=f"instance {instance_id} to become {target}",
            terminal_check=lambda observed: observed in dead_ends,
        )


def select_waiter(strategy: str, backend: ProviderBackend) -> Waiter:
    """Pick a wait strategy by name.

    ``native`` falls back to polling for backends without a native wait.

    Args:
        strategy: ``native`` or ``poll``.
        backend: Backend the waiter will drive.

    Returns:
        Waiter: Strategy instance.
    """
    if strategy not in ("native", "poll"):
        raise ValueError(f"unknown wait strategy: {strategy}")
    if strategy == "poll" or not backend.supports_native_wait:
        return PollingWaiter()
    return NativeWaiter()
