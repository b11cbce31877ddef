"""
Provider backends — one capability implementation per cloud.

The reconciler, teardown engine, and health diagnosis only talk to
ProviderBackend; each backend owns its CLI invocations, response
parsing, and error classification.
"""

from .base import CommandResult, ProviderBackend, ProviderClient, create_backend, register_backend
from .aws import AwsBackend, classify_aws_failure

__all__ = [
    "AwsBackend",
    "CommandResult",
    "ProviderBackend",
    "ProviderClient",
    "classify_aws_failure",
    "create_backend",
    "register_backend",
]
