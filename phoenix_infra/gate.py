"""Human confirmation gate for destructive or mutating actions.

Every mutating command asks through this gate.  The answer source is
swappable:

- :class:`TerminalAnswers`: interactive prompt (EOF counts as a decline)
- :class:`ScriptedAnswers`: pre-supplied answers for tests / automation
- :class:`AutoApprove`: the ``--yes`` bypass

Whatever the source, the gate prints the description and every affected
resource **before** an answer is read.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, List, Optional, Tuple

from phoenix_infra import ui

logger = logging.getLogger(__name__)


class Severity(str, Enum):
    """How many explicit approvals an action needs."""

    SINGLE = "single"
    DOUBLE = "double"


class Decision(str, Enum):
    """Resolution of a confirmation gate."""

    APPROVED = "approved"
    DECLINED = "declined"


# ---------------------------------------------------------------------------
# ConfirmationRequest
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ConfirmationRequest:
    """What is about to happen and what it touches.

    A ``DOUBLE`` request carries its second stage in *follow_up*; the
    follow-up is only shown once the first stage is approved.
    """

    description: str
    resources: Tuple[str, ...]
    required_response: str = "yes"
    severity: Severity = Severity.SINGLE
    follow_up: Optional["ConfirmationRequest"] = None

    def __post_init__(self) -> None:
        if not self.resources:
            raise ValueError(
                "A confirmation request must list the affected resources"
            )
        if not self.required_response.strip():
            raise ValueError("required_response must not be blank")
        if self.severity == Severity.DOUBLE and self.follow_up is None:
            raise ValueError("A double confirmation needs a follow_up request")
        if self.severity == Severity.SINGLE and self.follow_up is not None:
            raise ValueError("Only double confirmations take a follow_up")

    @classmethod
    def single(
        cls,
        description: str,
        resources: Iterable[str],
        *,
        required_response: str = "yes",
    ) -> "ConfirmationRequest":
        return cls(
            description=description,
            resources=tuple(resources),
            required_response=required_response,
        )

    @classmethod
    def double(
        cls,
        first: "ConfirmationRequest",
        second: "ConfirmationRequest",
    ) -> "ConfirmationRequest":
        """Chain two single requests into one double request."""
        return cls(
            description=first.description,
            resources=first.resources,
            required_response=first.required_response,
            severity=Severity.DOUBLE,
            follow_up=second,
        )

    @property
    def stages(self) -> List["ConfirmationRequest"]:
        """Every stage in prompt order."""
        out: List[ConfirmationRequest] = [self]
        if self.follow_up is not None:
            out.extend(self.follow_up.stages)
        return out


# ---------------------------------------------------------------------------
# Answer sources
# ---------------------------------------------------------------------------


class TerminalAnswers:
    """Read answers from the terminal; waits indefinitely."""

    def ask(self, prompt: str, required_response: str) -> str:
        try:
            return ui.ask(prompt)
        except EOFError:
            logger.warning("No interactive input available; treating as decline.")
            return ""


@dataclass
class ScriptedAnswers:
    """Answer prompts from a fixed list, recording every prompt shown.

    Running out of answers counts as a decline.
    """

    answers: List[str]
    prompts: List[str] = field(default_factory=list)

    def ask(self, prompt: str, required_response: str) -> str:
        self.prompts.append(prompt)
        if not self.answers:
            return ""
        return self.answers.pop(0)


class AutoApprove:
    """Answer every prompt with its required response (``--yes``)."""

    def ask(self, prompt: str, required_response: str) -> str:
        ui.info(f"Auto-approved (--yes): {prompt}")
        return required_response


# ---------------------------------------------------------------------------
# ConfirmationGate
# ---------------------------------------------------------------------------


class ConfirmationGate:
    """Show a :class:`ConfirmationRequest` and wait for explicit approval."""

    def __init__(self, answers=None) -> None:
        self.answers = answers if answers is not None else TerminalAnswers()

    def confirm(self, request: ConfirmationRequest) -> Decision:
        """Resolve *request*; a decline at any stage stops further prompts."""
        stages = request.stages
        for idx, stage in enumerate(stages, start=1):
            label = (
                f"Confirmation {idx}/{len(stages)}"
                if len(stages) > 1
                else "Confirmation required"
            )
            if not self._confirm_stage(stage, label):
                logger.info("Declined at %s: %s", label, stage.description)
                return Decision.DECLINED
        return Decision.APPROVED

    def _confirm_stage(self, stage: ConfirmationRequest, label: str) -> bool:
        ui.warning_panel(label, stage.description)
        ui.resource_list(stage.resources)
        prompt = f"Type '{stage.required_response}' to continue:"
        answer = self.answers.ask(prompt, stage.required_response)
        approved = (
            answer.strip().lower() == stage.required_response.strip().lower()
        )
        if approved:
            ui.ok("Confirmed.")
        else:
            ui.warn("Aborted.")
        return approved
