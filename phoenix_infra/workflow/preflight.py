"""Preflight checks run before any phase mutates anything.

Unlike a fail-fast gate, :meth:`PreflightChecker.check` evaluates **every**
requirement and reports the complete set of failures in one pass, so a
user can fix everything in a single iteration.

Requirement sets per command:

- :func:`provisioning_requirements`: terraform, working dir, AWS credentials
- :func:`configuration_requirements`: ansible-playbook, ssh, inventory, key
- :func:`auth_requirements`: ssh, key, control-plane address
- :func:`backend_requirements`: AWS credentials
"""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, List, Optional

from phoenix_infra import ui
from phoenix_infra.config.models import OrchestratorConfig
from phoenix_infra.state.models import CheckResult, CheckStatus, PreflightReport
from phoenix_infra.state.store import write_preflight_report
from phoenix_infra.workflow.phases import Outcome, PhaseResult

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Requirement
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Requirement:
    """A boolean probe that must hold before a phase runs.

    Optional requirements (``required=False``) only produce a WARN.
    """

    name: str
    probe: Callable[[], bool]
    remediation: str = ""
    required: bool = True


def tool_requirement(tool: str, *, remediation: str = "") -> Requirement:
    """*tool* must be on PATH."""
    return Requirement(
        name=f"tool.{tool}",
        probe=lambda: shutil.which(tool) is not None,
        remediation=remediation or f"Install '{tool}' and make sure it is on PATH.",
    )


def file_requirement(label: str, path: str | Path) -> Requirement:
    """*path* must exist (``~`` is expanded)."""
    resolved = Path(path).expanduser()
    return Requirement(
        name=f"file.{label}",
        probe=resolved.exists,
        remediation=f"Expected {resolved} to exist.",
    )


def value_requirement(label: str, value: Optional[str], remediation: str) -> Requirement:
    """A configuration value must be set."""
    return Requirement(
        name=f"config.{label}",
        probe=lambda: bool(value),
        remediation=remediation,
    )


def aws_credentials_requirement(
    profile: Optional[str] = None,
    region: Optional[str] = None,
) -> Requirement:
    """AWS credentials must resolve to a caller identity via STS."""
    from phoenix_infra.aws.context import AWSContext

    def probe() -> bool:
        AWSContext.build(region, profile=profile)
        return True

    return Requirement(
        name="credentials.aws",
        probe=probe,
        remediation=(
            "AWS credentials are missing or invalid. Export AWS_PROFILE "
            "or run 'aws configure'."
        ),
    )


# ---------------------------------------------------------------------------
# PreflightChecker
# ---------------------------------------------------------------------------


class PreflightChecker:
    """Evaluate requirements and persist a :class:`PreflightReport`."""

    def __init__(
        self,
        *,
        command: str = "",
        aws_profile: str = "",
        region: str = "",
        write_report: bool = True,
    ) -> None:
        self.command = command
        self.aws_profile = aws_profile
        self.region = region
        self.write_report = write_report

    def check(self, requirements: Iterable[Requirement]) -> PreflightReport:
        """Evaluate all *requirements* (no short circuit).

        A probe that raises counts as unmet, with the error in ``details``.
        """
        report = PreflightReport(
            command=self.command,
            aws_profile=self.aws_profile,
            region=self.region,
        )
        ui.phase("PREFLIGHT")

        for req in requirements:
            details = {}
            try:
                met = bool(req.probe())
            except Exception as exc:  # noqa: BLE001
                met = False
                details["error"] = str(exc)

            if met:
                report.checks.append(
                    CheckResult(id=req.name, status=CheckStatus.PASS)
                )
                ui.ok(req.name)
                continue

            status = CheckStatus.FAIL if req.required else CheckStatus.WARN
            report.checks.append(
                CheckResult(
                    id=req.name,
                    status=status,
                    details=details,
                    remediation=req.remediation,
                )
            )
            if req.required:
                ui.fail(f"{req.name}: {req.remediation}")
            else:
                ui.warn(f"{req.name}: {req.remediation}")

        if report.passed:
            logger.info("Preflight passed: %d checks OK.", len(report.checks))
        else:
            logger.error(
                "Preflight FAIL, missing: %s", ", ".join(report.missing),
            )
        if self.write_report:
            write_preflight_report(report)
        return report


# ---------------------------------------------------------------------------
# Requirement sets
# ---------------------------------------------------------------------------


def provisioning_requirements(cfg: OrchestratorConfig) -> List[Requirement]:
    return [
        tool_requirement(cfg.terraform.binary),
        file_requirement("terraform_dir", cfg.terraform_dir),
        aws_credentials_requirement(cfg.aws_profile, cfg.aws_region),
    ]


def configuration_requirements(cfg: OrchestratorConfig) -> List[Requirement]:
    return [
        tool_requirement(cfg.ansible.binary),
        tool_requirement("ssh"),
        file_requirement("inventory", cfg.inventory_path),
        file_requirement("ssh_key", cfg.ssh_key),
        value_requirement(
            "control_plane",
            cfg.control_plane,
            "Set PHOENIX_CONTROL_PLANE or add a control-plane group to the inventory.",
        ),
    ]


def auth_requirements(cfg: OrchestratorConfig) -> List[Requirement]:
    return [
        tool_requirement("ssh"),
        file_requirement("ssh_key", cfg.ssh_key),
        value_requirement(
            "control_plane",
            cfg.control_plane,
            "Set PHOENIX_CONTROL_PLANE or add a control-plane group to the inventory.",
        ),
    ]


def backend_requirements(cfg: OrchestratorConfig) -> List[Requirement]:
    return [
        aws_credentials_requirement(cfg.aws_profile, cfg.backend.region),
    ]


def missing_requirements_result(phase: str, report: PreflightReport) -> PhaseResult:
    """Build the MISSING_REQUIREMENTS :class:`PhaseResult` for *report*."""
    return PhaseResult(
        phase=phase,
        outcome=Outcome.MISSING_REQUIREMENTS,
        step="preflight",
        reason="missing: " + ", ".join(report.missing),
        details={"missing": report.missing},
    )
