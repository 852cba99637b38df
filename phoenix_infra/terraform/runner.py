"""Terraform CLI wrapper: init / validate / plan / show / apply / destroy.

Wraps ``terraform`` as a subprocess (via :class:`CommandRunner`) so the
orchestrator never reimplements provisioning-engine internals.  Every
call runs with ``-chdir=<working_dir>`` and ``-input=false``.
"""

from __future__ import annotations

import hashlib
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from phoenix_infra.config.models import TerraformSettings
from phoenix_infra.runner.command import CommandResult, CommandRunner

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

#: ``plan -detailed-exitcode``: 0 = no changes, 2 = changes present.
PLAN_NO_CHANGES: int = 0
PLAN_HAS_CHANGES: int = 2

#: Substring terraform prints when another run holds the state lock.
LOCK_ERROR_MARKER: str = "Error acquiring the state lock"

_CHANGE_LINE = re.compile(
    r"^\s*#\s+(?P<address>\S+)\s+(?:will be|must be)\s+(?P<action>.+)$"
)

# ---------------------------------------------------------------------------
# Plan artifact
# ---------------------------------------------------------------------------


@dataclass
class PlanArtifact:
    """A saved plan file plus what was shown to the user about it."""

    path: Path
    digest: str
    summary: str = ""
    changes: List[str] = field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return bool(self.changes)


def file_digest(path: Path) -> str:
    """SHA-256 hex digest of *path*'s bytes."""
    return hashlib.sha256(path.read_bytes()).hexdigest()


def parse_changes(summary: str) -> List[str]:
    """Extract ``<address> (<action>)`` lines from ``terraform show`` output."""
    changes: List[str] = []
    for line in summary.splitlines():
        m = _CHANGE_LINE.match(line)
        if m:
            changes.append(f"{m.group('address')} ({m.group('action').strip()})")
    return changes


def is_lock_contention(result: CommandResult) -> bool:
    """True when *result* failed because the state lock is held."""
    return not result.ok and (
        LOCK_ERROR_MARKER in result.stderr or LOCK_ERROR_MARKER in result.stdout
    )


# ---------------------------------------------------------------------------
# TerraformRunner
# ---------------------------------------------------------------------------


class TerraformRunner:
    """Thin command builder over :class:`CommandRunner`."""

    def __init__(self, settings: TerraformSettings, runner: CommandRunner) -> None:
        self.settings = settings
        self.runner = runner

    @property
    def working_dir(self) -> Path:
        return Path(self.settings.working_dir)

    @property
    def plan_path(self) -> Path:
        return self.working_dir / self.settings.plan_file

    def _run(self, *args: str) -> CommandResult:
        cmd = [self.settings.binary, f"-chdir={self.settings.working_dir}", *args]
        return self.runner.run(cmd)

    def _lock_timeout(self) -> str:
        return f"-lock-timeout={self.settings.lock_timeout}"

    # -- read-only ----------------------------------------------------------

    def init(self, *, migrate_state: bool = False) -> CommandResult:
        args = ["init", "-input=false"]
        if migrate_state:
            args.append("-migrate-state")
        return self._run(*args)

    def validate(self) -> CommandResult:
        return self._run("validate", "-no-color")

    def plan(self) -> CommandResult:
        """Write the plan to :attr:`plan_path`.

        Uses ``-detailed-exitcode``, so return code 2 means "changes", not
        failure; callers must use :meth:`plan_succeeded`.
        """
        return self._run(
            "plan",
            "-input=false",
            "-no-color",
            self._lock_timeout(),
            "-detailed-exitcode",
            f"-out={self.settings.plan_file}",
        )

    @staticmethod
    def plan_succeeded(result: CommandResult) -> bool:
        return result.returncode in (PLAN_NO_CHANGES, PLAN_HAS_CHANGES)

    def show_plan(self) -> CommandResult:
        return self._run("show", "-no-color", self.settings.plan_file)

    def state_list(self) -> CommandResult:
        return self._run("state", "list")

    # -- mutating -----------------------------------------------------------

    def apply_plan(self) -> CommandResult:
        """Apply the previously saved plan file; never re-plans."""
        return self._run(
            "apply",
            "-input=false",
            "-no-color",
            self._lock_timeout(),
            self.settings.plan_file,
        )

    def destroy(self) -> CommandResult:
        # Confirmation happens in the orchestrator's gate.
        return self._run(
            "destroy",
            "-input=false",
            "-no-color",
            "-auto-approve",
            self._lock_timeout(),
        )


def build_plan_artifact(
    terraform: TerraformRunner,
    show: Optional[CommandResult] = None,
) -> PlanArtifact:
    """Fingerprint the saved plan file and attach its rendered summary."""
    summary = show.stdout if show is not None else ""
    return PlanArtifact(
        path=terraform.plan_path,
        digest=file_digest(terraform.plan_path),
        summary=summary,
        changes=parse_changes(summary),
    )
