"""Configuration phase: readiness, then ordered ansible playbook steps.

``bootstrap`` sequence::

    preflight → (real run) confirmation / (dry run) syntax check
    → readiness for every target → common (all targets)
    → control-plane (designated host only) → workers → platform

Every step is a :class:`~phoenix_infra.workflow.phases.Phase` limited to
one host, so the first failure names both the step and the target.
"""

from __future__ import annotations

import logging
from typing import Callable, List, Optional, Sequence, Tuple

from phoenix_infra import ui
from phoenix_infra.ansible.runner import AnsibleRunner
from phoenix_infra.config.models import OrchestratorConfig, RemoteTarget
from phoenix_infra.gate import ConfirmationGate, ConfirmationRequest, Decision
from phoenix_infra.runner.command import CommandRunner
from phoenix_infra.runner.readiness import Readiness, ReadinessPoller
from phoenix_infra.workflow.phases import (
    Outcome,
    Phase,
    PhaseResult,
    run_phase,
)
from phoenix_infra.workflow.preflight import (
    PreflightChecker,
    Requirement,
    configuration_requirements,
    missing_requirements_result,
)

logger = logging.getLogger(__name__)

PHASE = "bootstrap"
UPGRADE_PHASE = "upgrade"


class ConfigurationPhase:
    """Drive ansible over reachable hosts in a fixed step order."""

    def __init__(
        self,
        config: OrchestratorConfig,
        runner: CommandRunner,
        poller: ReadinessPoller,
        gate: Optional[ConfirmationGate] = None,
        checker: Optional[PreflightChecker] = None,
        *,
        requirements: Optional[Callable[[], List[Requirement]]] = None,
    ) -> None:
        self.config = config
        self.ansible = AnsibleRunner(config.ansible, runner)
        self.poller = poller
        self.gate = gate
        self.checker = checker or PreflightChecker(
            command=PHASE,
            aws_profile=config.aws_profile or "",
            region=config.aws_region or "",
        )
        self._requirements = requirements or (
            lambda: configuration_requirements(self.config)
        )

    # -- helpers ------------------------------------------------------------

    def _split_targets(
        self, targets: Optional[Sequence[RemoteTarget]],
    ) -> Tuple[RemoteTarget, List[RemoteTarget]]:
        """Return ``(control_plane, workers)`` for *targets*.

        Without explicit targets the configured hosts are used.  With them,
        the host at the configured control-plane address is the control
        plane, falling back to the first target.
        """
        if targets is None:
            return self.config.control_plane_target(), self.config.worker_targets()
        if not targets:
            raise ValueError("bootstrap needs at least one target")
        targets = list(targets)
        control = next(
            (t for t in targets if t.address == self.config.control_plane),
            targets[0],
        )
        return control, [t for t in targets if t is not control]

    def _playbooks(self) -> List[str]:
        books = self.config.ansible.playbooks
        return [books.common, books.control_plane, books.workers, books.platform]

    def preflight(self, phase: str = PHASE) -> Optional[PhaseResult]:
        report = self.checker.check(self._requirements())
        if report.passed:
            return None
        return missing_requirements_result(phase, report)

    def _confirm(self, description: str, hosts: List[RemoteTarget]) -> bool:
        if self.gate is None:
            return True
        request = ConfirmationRequest.single(
            description,
            [f"{t.name} ({t.address})" for t in hosts],
        )
        return self.gate.confirm(request) == Decision.APPROVED

    # -- readiness ------------------------------------------------------------

    def wait_for(
        self, targets: Sequence[RemoteTarget], *, phase: str = PHASE,
    ) -> Optional[PhaseResult]:
        """Poll every target; return a FAILED result for the first unreachable one."""
        settings = self.config.readiness
        ui.phase("READINESS")
        for target in targets:
            for attempt in range(1, settings.attempts + 1):
                state = self.poller.wait_until_ready(
                    target,
                    timeout=settings.timeout,
                    interval=settings.interval,
                )
                if state == Readiness.READY:
                    ui.ok(f"{target.name} ({target.address}) is reachable")
                    break
                logger.warning(
                    "Readiness attempt %d/%d for %s timed out",
                    attempt, settings.attempts, target.address,
                )
            else:
                return PhaseResult.failed(
                    phase,
                    "readiness",
                    f"{target.address} did not accept SSH after "
                    f"{settings.attempts} attempt(s) of {settings.timeout:.0f}s",
                    target=target.address,
                )
        return None

    # -- step machinery -------------------------------------------------------

    def _playbook_phase(
        self, step: str, playbook: str, target: RemoteTarget, check: bool,
    ) -> Phase:
        return Phase(
            name=step,
            action=lambda: self.ansible.run_playbook(playbook, target, check=check),
            target=target.address,
        )

    def bootstrap_steps(
        self,
        control: RemoteTarget,
        workers: Sequence[RemoteTarget],
        *,
        check: bool = False,
    ) -> List[Phase]:
        """Ordered steps: common, control-plane, workers, platform."""
        books = self.config.ansible.playbooks
        everyone = [control, *workers]
        steps = [self._playbook_phase("common", books.common, t, check) for t in everyone]
        steps.append(
            self._playbook_phase("control-plane", books.control_plane, control, check)
        )
        steps.extend(
            self._playbook_phase("workers", books.workers, t, check) for t in workers
        )
        steps.append(self._playbook_phase("platform", books.platform, control, check))
        return steps

    def _run_steps(self, steps: Sequence[Phase], phase: str) -> Optional[PhaseResult]:
        for step in steps:
            ui.step(f"{step.name} on {step.target}")
            failure = run_phase(step, parent=phase)
            if failure is not None:
                ui.fail(f"{step.name} failed on {step.target}")
                return failure
            ui.ok(f"{step.name} on {step.target}")
        return None

    def _syntax_check(self, playbooks: Sequence[str], phase: str) -> Optional[PhaseResult]:
        for playbook in playbooks:
            result = self.ansible.syntax_check(playbook)
            if not result.ok:
                return PhaseResult.failed(
                    phase,
                    "syntax-check",
                    result.error_text,
                    playbook=playbook,
                    command=result.command,
                    returncode=result.returncode,
                )
            ui.ok(f"syntax OK: {playbook}")
        return None

    # -- public operations ----------------------------------------------------

    def validate(self) -> PhaseResult:
        """Syntax-check every bootstrap playbook without touching any host."""
        ui.phase("ANSIBLE SYNTAX CHECK")
        failure = self._syntax_check(self._playbooks(), PHASE)
        if failure is not None:
            return failure
        return PhaseResult(phase=PHASE, outcome=Outcome.VALIDATED, step="syntax-check")

    def bootstrap(
        self,
        targets: Optional[Sequence[RemoteTarget]] = None,
        check: bool = False,
    ) -> PhaseResult:
        """Configure *targets* (default: the configured cluster hosts).

        ``check=True`` is a dry run: playbooks are syntax-checked and then
        run with ``--check``; no confirmation is asked.
        """
        missing = self.preflight()
        if missing is not None:
            return missing

        control, workers = self._split_targets(targets)
        everyone = [control, *workers]

        if check:
            ui.phase("BOOTSTRAP (DRY RUN)")
            failure = self._syntax_check(self._playbooks(), PHASE)
            if failure is not None:
                return failure
        else:
            ui.phase("BOOTSTRAP")
            if not self._confirm(
                "This will configure the following hosts with ansible.",
                everyone,
            ):
                return PhaseResult.aborted(PHASE)

        failure = self.wait_for(everyone)
        if failure is not None:
            return failure

        failure = self._run_steps(
            self.bootstrap_steps(control, workers, check=check), PHASE,
        )
        if failure is not None:
            return failure

        return PhaseResult(
            phase=PHASE,
            outcome=Outcome.VALIDATED if check else Outcome.BOOTSTRAPPED,
            details={
                "targets": [t.address for t in everyone],
                "check": check,
            },
        )

    def upgrade(
        self,
        targets: Optional[Sequence[RemoteTarget]] = None,
        check: bool = False,
    ) -> PhaseResult:
        """Run the upgrade playbook host by host, control plane first."""
        missing = self.preflight(UPGRADE_PHASE)
        if missing is not None:
            return missing

        control, workers = self._split_targets(targets)
        everyone = [control, *workers]
        playbook = self.config.ansible.playbooks.upgrade

        if check:
            ui.phase("UPGRADE (DRY RUN)")
            failure = self._syntax_check([playbook], UPGRADE_PHASE)
            if failure is not None:
                return failure
        else:
            ui.phase("UPGRADE")
            if not self._confirm(
                "This will upgrade Kubernetes on the following hosts.",
                everyone,
            ):
                return PhaseResult.aborted(UPGRADE_PHASE)

        failure = self.wait_for(everyone, phase=UPGRADE_PHASE)
        if failure is not None:
            return failure

        steps = [self._playbook_phase("upgrade", playbook, t, check) for t in everyone]
        failure = self._run_steps(steps, UPGRADE_PHASE)
        if failure is not None:
            return failure

        return PhaseResult(
            phase=UPGRADE_PHASE,
            outcome=Outcome.VALIDATED if check else Outcome.BOOTSTRAPPED,
            details={"targets": [t.address for t in everyone], "check": check},
        )
