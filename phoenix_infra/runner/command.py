"""Local / SSH command execution with bounded retries.

Every external tool (``terraform``, ``ansible-playbook``, ``kubectl``,
``vault``) is driven through :class:`CommandRunner` as a subprocess so the
orchestrator never reimplements collaborator internals.  Failures are
returned as :class:`CommandResult` values; only the caller decides whether
a non-zero exit aborts a phase.
"""

from __future__ import annotations

import logging
import shlex
import subprocess
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Optional, Sequence

from phoenix_infra.config.models import RemoteTarget

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

#: Return code reported when an attempt exceeds its timeout.
RC_TIMEOUT: int = 124

#: Return code reported when the executable is not on PATH.
RC_NOT_FOUND: int = 127

#: Placeholder substituted for secret values in logged command lines.
REDACTED: str = "***"

#: Default ``ssh -o ConnectTimeout`` in seconds.
DEFAULT_CONNECT_TIMEOUT: int = 10

# ---------------------------------------------------------------------------
# Retry policy
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RetryPolicy:
    """How often and how patiently to re-run a failing command.

    Attributes:
        max_attempts: Total executions including the first one (>= 1).
        backoff: Maps the 1-based attempt that just failed to seconds to wait.
        attempt_timeout: Per-attempt timeout in seconds.  Required whenever
            ``max_attempts > 1``; only a single untimed attempt (the default,
            used for ``terraform`` and ``ansible-playbook`` runs) may block
            for as long as the tool itself runs.
    """

    max_attempts: int = 1
    backoff: Callable[[int], float] = lambda _attempt: 0.0
    attempt_timeout: Optional[float] = None

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.attempt_timeout is not None and self.attempt_timeout <= 0:
            raise ValueError("attempt_timeout must be > 0")
        if self.max_attempts > 1 and self.attempt_timeout is None:
            raise ValueError("a retried command needs an attempt_timeout")

    @classmethod
    def fixed(
        cls,
        delay: float,
        max_attempts: int,
        *,
        attempt_timeout: Optional[float] = None,
    ) -> "RetryPolicy":
        """Wait *delay* seconds between every attempt."""
        return cls(
            max_attempts=max_attempts,
            backoff=lambda _attempt: delay,
            attempt_timeout=attempt_timeout,
        )

    @classmethod
    def exponential(
        cls,
        base: float,
        max_attempts: int,
        *,
        factor: float = 2.0,
        cap: float = 60.0,
        attempt_timeout: Optional[float] = None,
    ) -> "RetryPolicy":
        """Wait ``base * factor**(attempt-1)`` seconds, never more than *cap*."""
        return cls(
            max_attempts=max_attempts,
            backoff=lambda attempt: min(cap, base * factor ** (attempt - 1)),
            attempt_timeout=attempt_timeout,
        )

    def max_elapsed(self) -> Optional[float]:
        """Upper bound on total run time.

        ``None`` only for a single attempt without a timeout.
        """
        if self.attempt_timeout is None:
            return None
        waits = sum(self.backoff(a) for a in range(1, self.max_attempts))
        return self.max_attempts * self.attempt_timeout + waits


# ---------------------------------------------------------------------------
# Result dataclass
# ---------------------------------------------------------------------------


@dataclass
class CommandResult:
    """Outcome of a (possibly retried) command execution.

    ``command`` is the display form with secrets redacted.
    """

    command: str
    returncode: int
    stdout: str = ""
    stderr: str = ""
    attempts: int = 1

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def error_text(self) -> str:
        """The tool's own error output (stderr, else stdout)."""
        return self.stderr or self.stdout or f"exit code {self.returncode}"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def redact(text: str, secrets: Iterable[str]) -> str:
    """Replace every non-empty secret in *text* with :data:`REDACTED`."""
    for secret in secrets:
        if secret:
            text = text.replace(secret, REDACTED)
    return text


def ssh_command(
    target: RemoteTarget,
    command: Sequence[str],
    *,
    connect_timeout: int = DEFAULT_CONNECT_TIMEOUT,
) -> list[str]:
    """Wrap *command* for execution on *target* via ``ssh``."""
    return [
        "ssh",
        "-i", target.expanded_key_path,
        "-o", "BatchMode=yes",
        "-o", "StrictHostKeyChecking=accept-new",
        "-o", f"ConnectTimeout={connect_timeout}",
        target.destination,
        shlex.join(command),
    ]


# ---------------------------------------------------------------------------
# CommandRunner
# ---------------------------------------------------------------------------


class CommandRunner:
    """Run commands locally or over SSH; holds no per-call state.

    The *_sleep_fn* parameter is for test injection (avoids real sleeps).
    """

    def __init__(
        self,
        *,
        connect_timeout: int = DEFAULT_CONNECT_TIMEOUT,
        _sleep_fn: Any = None,
    ) -> None:
        self.connect_timeout = connect_timeout
        self._sleep = _sleep_fn or time.sleep

    def run(
        self,
        command: Sequence[str],
        target: Optional[RemoteTarget] = None,
        retry_policy: Optional[RetryPolicy] = None,
        *,
        input_text: Optional[str] = None,
        cwd: Optional[str] = None,
        env: Optional[Dict[str, str]] = None,
        secrets: Sequence[str] = (),
        connect_timeout: Optional[int] = None,
    ) -> CommandResult:
        """Execute *command* and return the final :class:`CommandResult`.

        With *retry_policy*, a non-zero exit waits ``backoff(attempt)`` and
        re-executes up to ``max_attempts`` times.  When every attempt fails
        the last failing result is returned unchanged.  *connect_timeout*
        overrides the runner's ``ssh -o ConnectTimeout`` for this call.
        """
        policy = retry_policy or RetryPolicy()
        argv = (
            ssh_command(
                target, command,
                connect_timeout=connect_timeout or self.connect_timeout,
            )
            if target is not None
            else list(command)
        )
        display = redact(shlex.join(argv), secrets)

        result = CommandResult(command=display, returncode=RC_NOT_FOUND)
        for attempt in range(1, policy.max_attempts + 1):
            logger.info("Running (attempt %d/%d): %s",
                        attempt, policy.max_attempts, display)
            result = self._execute(
                argv,
                display,
                timeout=policy.attempt_timeout,
                input_text=input_text,
                cwd=cwd,
                env=env,
                secrets=secrets,
            )
            result.attempts = attempt
            if result.ok:
                return result
            if attempt < policy.max_attempts:
                delay = policy.backoff(attempt)
                logger.warning(
                    "Command failed (rc=%d), retrying in %.1fs: %s",
                    result.returncode, delay, display,
                )
                self._sleep(delay)

        logger.debug(
            "Command failed after %d attempt(s) (rc=%d): %s",
            result.attempts, result.returncode, display,
        )
        return result

    # -- internals ----------------------------------------------------------

    def _execute(
        self,
        argv: list[str],
        display: str,
        *,
        timeout: Optional[float],
        input_text: Optional[str],
        cwd: Optional[str],
        env: Optional[Dict[str, str]],
        secrets: Sequence[str],
    ) -> CommandResult:
        try:
            proc = subprocess.run(
                argv,
                capture_output=True,
                text=True,
                input=input_text,
                cwd=cwd,
                env=env,
                timeout=timeout,
            )
        except FileNotFoundError:
            return CommandResult(
                command=display,
                returncode=RC_NOT_FOUND,
                stderr=f"{argv[0]} not found on PATH",
            )
        except subprocess.TimeoutExpired:
            return CommandResult(
                command=display,
                returncode=RC_TIMEOUT,
                stderr=f"timed out after {timeout}s",
            )

        return CommandResult(
            command=display,
            returncode=proc.returncode,
            stdout=redact(proc.stdout.strip(), secrets),
            stderr=redact(proc.stderr.strip(), secrets),
        )
