"""Orchestration workflows (preflight, provision, configure, teardown)."""

from phoenix_infra.workflow.configure import ConfigurationPhase
from phoenix_infra.workflow.phases import (
    EXIT_DECLINED,
    EXIT_PHASE_FAILURE,
    EXIT_PRECONDITION,
    EXIT_SUCCESS,
    ActionOutcome,
    Outcome,
    Phase,
    PhaseResult,
    run_phase,
)
from phoenix_infra.workflow.preflight import (
    PreflightChecker,
    Requirement,
    auth_requirements,
    backend_requirements,
    configuration_requirements,
    provisioning_requirements,
)
from phoenix_infra.workflow.provision import ProvisioningPhase
from phoenix_infra.workflow.teardown import TeardownPhase

__all__ = [
    "EXIT_DECLINED",
    "EXIT_PHASE_FAILURE",
    "EXIT_PRECONDITION",
    "EXIT_SUCCESS",
    "ActionOutcome",
    "ConfigurationPhase",
    "Outcome",
    "Phase",
    "PhaseResult",
    "PreflightChecker",
    "ProvisioningPhase",
    "Requirement",
    "TeardownPhase",
    "auth_requirements",
    "backend_requirements",
    "configuration_requirements",
    "provisioning_requirements",
    "run_phase",
]
