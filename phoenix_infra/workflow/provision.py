"""Provisioning phase: terraform init / validate / plan / apply / destroy.

``apply`` sequence::

    preflight → plan (saved to tfplan) → single confirmation showing the
    plan → re-verify the plan file digest → apply the same plan file

The plan file is never regenerated between confirmation and apply, so
what the user approved is exactly what terraform applies.  ``destroy``
needs a double confirmation; :class:`~phoenix_infra.workflow.teardown.TeardownPhase`
supplies one after its checklist gate.
"""

from __future__ import annotations

import logging
from typing import Callable, List, Optional

from phoenix_infra import ui
from phoenix_infra.config.models import OrchestratorConfig
from phoenix_infra.gate import (
    ConfirmationGate,
    ConfirmationRequest,
    Decision,
    Severity,
)
from phoenix_infra.runner.command import CommandResult, CommandRunner
from phoenix_infra.terraform.runner import (
    PLAN_HAS_CHANGES,
    PlanArtifact,
    TerraformRunner,
    build_plan_artifact,
    file_digest,
    is_lock_contention,
)
from phoenix_infra.workflow.phases import Outcome, PhaseResult
from phoenix_infra.workflow.preflight import (
    PreflightChecker,
    Requirement,
    missing_requirements_result,
    provisioning_requirements,
)

logger = logging.getLogger(__name__)

PHASE = "provision"

#: Listed when terraform reports changes that touch no resource address.
UNADDRESSED_CHANGES = "(non-resource changes, see plan summary)"


def _failure(step: str, result: CommandResult) -> PhaseResult:
    """Map a failed terraform call to a FAILED result, flagging lock contention."""
    reason = result.error_text
    if is_lock_contention(result):
        reason = (
            "state lock is held by another operation; retry once it "
            f"finishes.\n{reason}"
        )
    return PhaseResult.failed(
        PHASE,
        step,
        reason,
        command=result.command,
        returncode=result.returncode,
    )


class ProvisioningPhase:
    """Wrap terraform behind preflight checks and confirmation gates."""

    def __init__(
        self,
        config: OrchestratorConfig,
        runner: CommandRunner,
        gate: ConfirmationGate,
        checker: Optional[PreflightChecker] = None,
        *,
        requirements: Optional[Callable[[], List[Requirement]]] = None,
    ) -> None:
        self.config = config
        self.terraform = TerraformRunner(config.terraform, runner)
        self.gate = gate
        self.checker = checker or PreflightChecker(
            command=PHASE,
            aws_profile=config.aws_profile or "",
            region=config.aws_region or "",
        )
        self._requirements = requirements or (
            lambda: provisioning_requirements(self.config)
        )
        self._preflight_passed = False

    # -- preflight ----------------------------------------------------------

    def preflight(self) -> Optional[PhaseResult]:
        """Return a MISSING_REQUIREMENTS result, or ``None`` when all present.

        A passing check is remembered for the lifetime of this object.
        """
        if self._preflight_passed:
            return None
        report = self.checker.check(self._requirements())
        if report.passed:
            self._preflight_passed = True
            return None
        return missing_requirements_result(PHASE, report)

    # -- read-only operations ----------------------------------------------

    def init(self) -> PhaseResult:
        ui.phase("INIT")
        result = self.terraform.init()
        if not result.ok:
            return _failure("init", result)
        ui.ok("terraform init complete")
        return PhaseResult(phase=PHASE, outcome=Outcome.VALIDATED, step="init")

    def validate(self) -> PhaseResult:
        ui.phase("VALIDATE")
        result = self.terraform.validate()
        if not result.ok:
            return _failure("validate", result)
        ui.ok("terraform configuration is valid")
        return PhaseResult(phase=PHASE, outcome=Outcome.VALIDATED, step="validate")

    def plan(self) -> PlanArtifact | PhaseResult:
        """Produce a saved plan; returns a FAILED result on engine error."""
        ui.phase("PLAN")
        result = self.terraform.plan()
        if not self.terraform.plan_succeeded(result):
            return _failure("plan", result)

        if result.returncode != PLAN_HAS_CHANGES:
            return build_plan_artifact(self.terraform)

        show = self.terraform.show_plan()
        if not show.ok:
            return _failure("show", show)
        artifact = build_plan_artifact(self.terraform, show)
        if not artifact.changes:
            artifact.changes = [UNADDRESSED_CHANGES]
        return artifact

    def inventory(self) -> List[str] | PhaseResult:
        """Resource addresses currently tracked in terraform state."""
        result = self.terraform.state_list()
        if not result.ok:
            return _failure("inventory", result)
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    # -- apply ----------------------------------------------------------------

    def apply(self) -> PhaseResult:
        missing = self.preflight()
        if missing is not None:
            return missing

        planned = self.plan()
        if isinstance(planned, PhaseResult):
            return planned

        if not planned.has_changes:
            ui.ok("No changes. Infrastructure matches the configuration.")
            return PhaseResult(
                phase=PHASE, outcome=Outcome.APPLIED, details={"changes": []},
            )

        ui.info(planned.summary or "(empty plan summary)")
        request = ConfirmationRequest.single(
            "WARNING: This will modify your infrastructure!\n"
            f"Plan {planned.path} ({len(planned.changes)} change(s), "
            f"sha256 {planned.digest[:12]})",
            planned.changes,
        )
        if self.gate.confirm(request) != Decision.APPROVED:
            return PhaseResult.aborted(PHASE)

        return self.apply_plan(planned)

    def apply_plan(self, planned: PlanArtifact) -> PhaseResult:
        """Apply *planned* after checking its file is byte-identical."""
        ui.phase("APPLY")
        try:
            current = file_digest(planned.path)
        except FileNotFoundError:
            current = ""
        if current != planned.digest:
            return PhaseResult.failed(
                PHASE,
                "apply",
                f"plan file {planned.path} changed or vanished after it was "
                "confirmed; re-run apply to review a fresh plan",
            )

        result = self.terraform.apply_plan()
        if not result.ok:
            return _failure("apply", result)

        ui.ok(f"Applied {len(planned.changes)} change(s).")
        return PhaseResult(
            phase=PHASE,
            outcome=Outcome.APPLIED,
            details={"changes": list(planned.changes), "plan_digest": planned.digest},
        )

    # -- destroy --------------------------------------------------------------

    def destroy_request(self, inventory: List[str]) -> ConfirmationRequest:
        """Default double confirmation when no teardown checklist is used."""
        return ConfirmationRequest.double(
            ConfirmationRequest.single(
                "WARNING: This will DESTROY your infrastructure!",
                inventory,
            ),
            ConfirmationRequest.single(
                "Are you absolutely sure? This cannot be undone.",
                inventory,
                required_response="destroy",
            ),
        )

    def destroy(
        self,
        confirmation: Optional[Decision] = None,
        *,
        severity: Optional[Severity] = None,
    ) -> PhaseResult:
        """Destroy all managed infrastructure.

        *confirmation* / *severity* carry a double approval already obtained
        by the caller; without them this method runs its own double gate.
        """
        missing = self.preflight()
        if missing is not None:
            return missing

        if confirmation is None:
            inventory = self.inventory()
            if isinstance(inventory, PhaseResult):
                return inventory
            if not inventory:
                ui.ok("Nothing to destroy: terraform state is empty.")
                return PhaseResult(phase=PHASE, outcome=Outcome.DESTROYED)
            confirmation = self.gate.confirm(self.destroy_request(inventory))
            severity = Severity.DOUBLE

        if confirmation != Decision.APPROVED or severity != Severity.DOUBLE:
            return PhaseResult.aborted(
                PHASE, "destroy requires an approved double confirmation",
            )

        ui.phase("DESTROY")
        result = self.terraform.destroy()
        if not result.ok:
            return _failure("destroy", result)
        ui.ok("Infrastructure destroyed.")
        return PhaseResult(phase=PHASE, outcome=Outcome.DESTROYED)
