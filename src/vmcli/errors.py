"""
Error taxonomy for vmcli.

Every failure a command can surface is a VmcliError. The CLI prints the
message on one line and exits non-zero; nothing below the CLI swallows
these. Provider signals that mean "already done" (conflicts on create,
not-found on delete) never become exceptions past the step that saw them.
"""

from __future__ import annotations

from enum import Enum
from typing import List, Optional, Sequence


class FailureKind(str, Enum):
    """Classification of a failed provider command."""

    CONFLICT = "conflict"
    NOT_FOUND = "not-found"
    DENIED = "denied"
    UNKNOWN = "unknown"


class VmcliError(Exception):
    """Base class for every error vmcli reports to the user."""


class ConfigError(VmcliError):
    """Configuration is missing, unreadable, or incomplete."""


class ProviderUnavailableError(VmcliError):
    """The provider command-line tool is not installed or will not run."""


class ProviderCommandError(VmcliError):
    """A provider command exited non-zero.

    Attributes:
        args: Argument list that was executed (without the binary).
        stderr: Trimmed error text reported by the provider.
        kind: Backend classification of the failure.
    """

    def __init__(
        self,
        args: Sequence[str],
        stderr: str,
        kind: FailureKind = FailureKind.UNKNOWN,
        stdout: str = "",
    ) -> None:
        self.args_list: List[str] = list(args)
        self.stderr = stderr
        self.stdout = stdout
        self.kind = kind
        message = f"{' '.join(self.args_list[:2])} failed"
        if stderr:
            message += f": {stderr}"
        super().__init__(message)

    @property
    def error_text(self) -> str:
        """Provider error text, falling back to stdout when stderr is empty."""
        if self.stderr and self.stdout:
            return f"{self.stderr} | {self.stdout}"
        return self.stderr or self.stdout or "unknown provider error"


class CapabilityError(VmcliError):
    """The caller lacks permission for an operation; retrying cannot help."""


class AmbiguousResourceError(VmcliError):
    """More than one resource matched an identity that must be unique.

    Attributes:
        kind: Resource kind label (e.g. 'vpc', 'instance').
        identity: Human-readable identity that was looked up.
        resource_ids: Provider ids of every match.
    """

    def __init__(self, kind: str, identity: str, resource_ids: Sequence[str]) -> None:
        self.kind = kind
        self.identity = identity
        self.resource_ids = list(resource_ids)
        super().__init__(
            f"multiple {kind} resources found for {identity}: "
            f"{', '.join(self.resource_ids)}"
        )


class ResourceNotFoundError(VmcliError):
    """A lookup that requires exactly one match found none."""


class PreconditionError(VmcliError):
    """An operation was refused because the cluster is in the wrong state."""


class EmptyImageIdError(VmcliError):
    """The image parameter resolved, but to an empty value."""

    def __init__(self, parameter: Optional[str] = None) -> None:
        self.parameter = parameter
        detail = f" (parameter {parameter})" if parameter else ""
        super().__init__(f"resolved image id is empty{detail}")


class WaitTimeoutError(VmcliError):
    """A bounded wait ran out of attempts before the expected state appeared."""


class OperationAborted(VmcliError):
    """The user declined a confirmation prompt; nothing further was changed."""


class WaitFailedError(VmcliError):
    """A waited-on resource reached a state it can never leave for the target."""
