"""Phase model, outcomes, and exit codes shared by every workflow.

Collaborator failures travel as :class:`PhaseResult` values carrying the
phase, step, target, and the tool's raw error text; the CLI maps them to
exit codes with :attr:`PhaseResult.exit_code`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Optional

from phoenix_infra.runner.command import CommandResult

logger = logging.getLogger(__name__)

# Exit codes
EXIT_SUCCESS = 0
EXIT_PRECONDITION = 1
EXIT_DECLINED = 2
EXIT_PHASE_FAILURE = 3


# ---------------------------------------------------------------------------
# Outcomes
# ---------------------------------------------------------------------------


class Outcome(str, Enum):
    """Terminal state of a phase operation."""

    APPLIED = "APPLIED"
    DESTROYED = "DESTROYED"
    BOOTSTRAPPED = "BOOTSTRAPPED"
    MIGRATED = "MIGRATED"
    RECONCILED = "RECONCILED"
    VALIDATED = "VALIDATED"
    ABORTED = "ABORTED"
    FAILED = "FAILED"
    MISSING_REQUIREMENTS = "MISSING_REQUIREMENTS"


_EXIT_CODES: Dict[Outcome, int] = {
    Outcome.ABORTED: EXIT_DECLINED,
    Outcome.FAILED: EXIT_PHASE_FAILURE,
    Outcome.MISSING_REQUIREMENTS: EXIT_PRECONDITION,
}


class ActionOutcome(str, Enum):
    """Result of a single check-then-act or overwrite action."""

    CREATED = "CREATED"
    ALREADY_EXISTS = "ALREADY_EXISTS"
    UPDATED = "UPDATED"
    FAILED = "FAILED"

    @property
    def ok(self) -> bool:
        return self != ActionOutcome.FAILED


@dataclass
class PhaseResult:
    """Outcome of a phase operation.

    Attributes:
        phase: Phase name, e.g. ``provision`` or ``bootstrap``.
        outcome: Terminal :class:`Outcome`.
        step: Failing (or last) step name, empty on plain success.
        target: Remote target the step failed on, if any.
        reason: Raw collaborator error text or decline reason.
        details: Structured extras (missing requirements, change set, ...).
    """

    phase: str
    outcome: Outcome
    step: str = ""
    target: str = ""
    reason: str = ""
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.outcome not in _EXIT_CODES

    @property
    def exit_code(self) -> int:
        return _EXIT_CODES.get(self.outcome, EXIT_SUCCESS)

    def describe(self) -> str:
        """One-line human summary naming phase, step, and target."""
        where = self.phase
        if self.step:
            where += f"/{self.step}"
        if self.target:
            where += f" on {self.target}"
        if self.reason:
            return f"{where}: {self.outcome.value}: {self.reason}"
        return f"{where}: {self.outcome.value}"

    # -- constructors -------------------------------------------------------

    @classmethod
    def failed(
        cls,
        phase: str,
        step: str,
        reason: str,
        *,
        target: str = "",
        **details: Any,
    ) -> "PhaseResult":
        return cls(
            phase=phase,
            outcome=Outcome.FAILED,
            step=step,
            target=target,
            reason=reason,
            details=dict(details),
        )

    @classmethod
    def aborted(cls, phase: str, reason: str = "declined by user") -> "PhaseResult":
        return cls(phase=phase, outcome=Outcome.ABORTED, reason=reason)


# ---------------------------------------------------------------------------
# Phase
# ---------------------------------------------------------------------------


@dataclass
class Phase:
    """A named unit of orchestration.

    ``action`` runs the collaborator; ``precondition`` is checked first and
    ``postcondition`` after a successful action.  An idempotent phase may be
    re-run with the same inputs without further observable change.
    """

    name: str
    action: Callable[[], CommandResult]
    precondition: Optional[Callable[[], bool]] = None
    postcondition: Optional[Callable[[], bool]] = None
    idempotent: bool = True
    target: str = ""


def run_phase(phase: Phase, *, parent: str) -> Optional[PhaseResult]:
    """Run *phase*; return ``None`` on success or a FAILED result.

    *parent* names the enclosing workflow in the failure result.
    """
    if phase.precondition is not None and not phase.precondition():
        return PhaseResult.failed(
            parent, phase.name, "precondition not met", target=phase.target,
        )

    result = phase.action()
    if not result.ok:
        logger.error(
            "%s/%s failed on %s (rc=%d): %s",
            parent, phase.name, phase.target or "local",
            result.returncode, result.error_text,
        )
        return PhaseResult.failed(
            parent,
            phase.name,
            result.error_text,
            target=phase.target,
            command=result.command,
            returncode=result.returncode,
        )

    if phase.postcondition is not None and not phase.postcondition():
        return PhaseResult.failed(
            parent, phase.name, "postcondition not met", target=phase.target,
        )
    return None
