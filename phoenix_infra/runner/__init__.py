"""Command execution and readiness polling."""

from phoenix_infra.runner.command import (
    RC_NOT_FOUND,
    RC_TIMEOUT,
    REDACTED,
    CommandResult,
    CommandRunner,
    RetryPolicy,
    redact,
    ssh_command,
)
from phoenix_infra.runner.readiness import (
    PROBE_COMMAND,
    Readiness,
    ReadinessPoller,
)

__all__ = [
    "PROBE_COMMAND",
    "RC_NOT_FOUND",
    "RC_TIMEOUT",
    "REDACTED",
    "CommandResult",
    "CommandRunner",
    "Readiness",
    "ReadinessPoller",
    "RetryPolicy",
    "redact",
    "ssh_command",
]
