"""Teardown phase: ordered destroy that avoids orphaned cloud resources.

Protocol:

1. Show the full terraform inventory; first confirmation.
2. Show the externally-created-resource checklist (load balancers and
   volumes created by in-cluster controllers, invisible to terraform);
   second, explicit confirmation that it has been cleared by hand.
3. :meth:`ProvisioningPhase.destroy` with the approved double decision.

The checklist is advisory: nothing here verifies that those resources are
actually gone, the second confirmation forces the manual pre-clean.
"""

from __future__ import annotations

import logging
from typing import List

from phoenix_infra import ui
from phoenix_infra.config.models import OrchestratorConfig
from phoenix_infra.gate import (
    ConfirmationGate,
    ConfirmationRequest,
    Decision,
    Severity,
)
from phoenix_infra.workflow.phases import Outcome, PhaseResult
from phoenix_infra.workflow.provision import ProvisioningPhase

logger = logging.getLogger(__name__)

PHASE = "teardown"


class TeardownPhase:
    """Gate ``terraform destroy`` behind inventory + checklist confirmations."""

    def __init__(
        self,
        config: OrchestratorConfig,
        provisioning: ProvisioningPhase,
        gate: ConfirmationGate,
    ) -> None:
        self.config = config
        self.provisioning = provisioning
        self.gate = gate

    @property
    def checklist(self) -> List[str]:
        return list(self.config.teardown.checklist)

    def build_request(self, inventory: List[str]) -> ConfirmationRequest:
        """Double request: inventory first, manual checklist second."""
        return ConfirmationRequest.double(
            ConfirmationRequest.single(
                "WARNING: This will DESTROY the following "
                f"{len(inventory)} resource(s) tracked by terraform.",
                inventory,
            ),
            ConfirmationRequest.single(
                "Resources created by controllers inside the cluster are NOT "
                "tracked by terraform and will be orphaned if the network is "
                "destroyed first. Confirm every item below has been cleaned "
                "up manually.",
                self.checklist,
                required_response="cleared",
            ),
        )

    def teardown(self) -> PhaseResult:
        missing = self.provisioning.preflight()
        if missing is not None:
            missing.phase = PHASE
            return missing

        ui.phase("TEARDOWN")
        inventory = self.provisioning.inventory()
        if isinstance(inventory, PhaseResult):
            inventory.phase = PHASE
            return inventory
        if not inventory:
            ui.ok("Nothing to destroy: terraform state is empty.")
            return PhaseResult(phase=PHASE, outcome=Outcome.DESTROYED)

        decision = self.gate.confirm(self.build_request(inventory))
        if decision != Decision.APPROVED:
            logger.info("Teardown declined; no destroy call issued.")
            return PhaseResult.aborted(PHASE)

        result = self.provisioning.destroy(decision, severity=Severity.DOUBLE)
        if result.outcome == Outcome.DESTROYED:
            result.phase = PHASE
            result.details["destroyed"] = inventory
        return result
