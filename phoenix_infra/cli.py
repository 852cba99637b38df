"""CLI entry point for phoenix, built on cli-core-yo.

Provisions, configures, and tears down the Phoenix Kubernetes cluster by
driving terraform, ansible-playbook, kubectl, and vault.

Usage::

    phoenix --help
    phoenix plan
    phoenix apply
    phoenix bootstrap --check
    phoenix fix-auth <VAULT_ROOT_TOKEN>
    phoenix destroy

Exit codes: 0 success, 1 precondition or usage error, 2 declined by the
user, 3 a named phase failed.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Callable, Optional

import typer
from cli_core_yo import output
from cli_core_yo.app import create_app
from cli_core_yo.runtime import _reset, initialize
from cli_core_yo.spec import CliSpec, XdgSpec

from phoenix_infra import ui
from phoenix_infra.config.loader import load_config
from phoenix_infra.config.models import ConfigError, OrchestratorConfig
from phoenix_infra.gate import AutoApprove, ConfirmationGate, TerminalAnswers
from phoenix_infra.runner.command import CommandRunner
from phoenix_infra.runner.readiness import ReadinessPoller
from phoenix_infra.workflow.phases import (
    EXIT_PRECONDITION,
    EXIT_SUCCESS,
    Outcome,
    PhaseResult,
)

# ── App specification ────────────────────────────────────────────────────────

spec = CliSpec(
    prog_name="phoenix",
    app_display_name="Phoenix Cluster Orchestrator",
    dist_name="phoenix-infra",
    root_help=(
        "Provision, configure, and tear down the Phoenix Kubernetes "
        "cluster on AWS."
    ),
    xdg=XdgSpec(app_dir_name="phoenix"),
)

app = create_app(spec)

logger = logging.getLogger(__name__)


# ── Root callback (global options) ───────────────────────────────────────────


@app.callback()
def _root_callback(
    json_flag: bool = typer.Option(
        False, "--json", "-j", help="Output as JSON."
    ),
) -> None:
    """Phoenix cluster lifecycle orchestrator."""
    _reset()
    debug = os.environ.get("CLI_CORE_YO_DEBUG") == "1"
    xdg_paths = app._cli_core_yo_xdg_paths  # type: ignore[attr-defined]
    initialize(spec, xdg_paths, json_mode=json_flag, debug=debug)


# ── Shared options & helpers ─────────────────────────────────────────────────

ConfigOption = typer.Option(
    None,
    "--config",
    help="Path to phoenix config YAML. Default: ./phoenix.yaml if present.",
)
DebugOption = typer.Option(False, "--debug", help="Enable debug logging.")
YesOption = typer.Option(
    False, "--yes", "-y", help="Skip confirmation prompts (resources are still shown).",
)


def _configure_logging(debug: bool) -> None:
    if debug:
        logging.basicConfig(level=logging.DEBUG)
        logging.getLogger("phoenix_infra").setLevel(logging.DEBUG)


def _load(config: Optional[str], debug: bool) -> OrchestratorConfig:
    """Load config or exit 1."""
    _configure_logging(debug)
    try:
        return load_config(config)
    except ConfigError as exc:
        output.error(str(exc))
        raise typer.Exit(EXIT_PRECONDITION) from exc


def _gate(yes: bool) -> ConfirmationGate:
    return ConfirmationGate(AutoApprove() if yes else TerminalAnswers())


def _runner(cfg: OrchestratorConfig) -> CommandRunner:
    return CommandRunner(connect_timeout=cfg.readiness.connect_timeout)


def _finish(result: PhaseResult) -> None:
    """Report *result* and exit with its code."""
    if result.ok:
        output.success(result.describe())
        raise typer.Exit(EXIT_SUCCESS)

    if result.outcome == Outcome.ABORTED:
        output.warn(f"Aborted: {result.reason}")
    elif result.outcome == Outcome.MISSING_REQUIREMENTS:
        ui.error_panel(
            f"{result.phase}: missing requirements",
            "\n".join(result.details.get("missing", [])) or result.reason,
        )
    else:
        title = f"{result.phase}/{result.step}" if result.step else result.phase
        if result.target:
            title += f" on {result.target}"
        ui.error_panel(f"FAILED: {title}", result.reason)
    raise typer.Exit(result.exit_code)


def _guard(command: str, fn: Callable[[], PhaseResult]) -> None:
    """Run *fn* and finish; a Ctrl-C reports the interrupted command and exits 1."""
    try:
        result = fn()
    except KeyboardInterrupt:
        output.error(f"Interrupted during {command}.")
        raise typer.Exit(EXIT_PRECONDITION)
    except ConfigError as exc:
        output.error(str(exc))
        raise typer.Exit(EXIT_PRECONDITION) from exc
    _finish(result)


def _provisioning(cfg: OrchestratorConfig, yes: bool = False):
    from phoenix_infra.workflow.provision import ProvisioningPhase

    return ProvisioningPhase(cfg, _runner(cfg), _gate(yes))


def _configuration(cfg: OrchestratorConfig, yes: bool = False):
    from phoenix_infra.workflow.configure import ConfigurationPhase

    runner = _runner(cfg)
    return ConfigurationPhase(cfg, runner, ReadinessPoller(runner), _gate(yes))


# ── terraform commands ───────────────────────────────────────────────────────


@app.command()
def init(
    config: Optional[str] = ConfigOption,
    debug: bool = DebugOption,
) -> None:
    """Initialize the terraform working directory."""
    cfg = _load(config, debug)
    output.action(f"terraform init in {cfg.terraform_dir} ...")
    _guard("init", lambda: _provisioning(cfg).init())


@app.command()
def validate(
    config: Optional[str] = ConfigOption,
    debug: bool = DebugOption,
) -> None:
    """Validate the terraform configuration."""
    cfg = _load(config, debug)
    _guard("validate", lambda: _provisioning(cfg).validate())


@app.command()
def plan(
    config: Optional[str] = ConfigOption,
    debug: bool = DebugOption,
) -> None:
    """Show what apply would change; the plan is saved for apply."""
    cfg = _load(config, debug)

    def run() -> PhaseResult:
        phase = _provisioning(cfg)
        missing = phase.preflight()
        if missing is not None:
            return missing
        planned = phase.plan()
        if isinstance(planned, PhaseResult):
            return planned
        if not planned.has_changes:
            ui.ok("No changes. Infrastructure matches the configuration.")
        else:
            ui.info(planned.summary)
            ui.resource_list(planned.changes)
        return PhaseResult(
            phase="provision",
            outcome=Outcome.VALIDATED,
            step="plan",
            details={"changes": planned.changes, "plan_digest": planned.digest},
        )

    _guard("plan", run)


@app.command()
def apply(
    config: Optional[str] = ConfigOption,
    yes: bool = YesOption,
    debug: bool = DebugOption,
) -> None:
    """Plan, confirm, and apply infrastructure changes."""
    cfg = _load(config, debug)
    _guard("apply", lambda: _provisioning(cfg, yes).apply())


@app.command()
def destroy(
    config: Optional[str] = ConfigOption,
    yes: bool = YesOption,
    debug: bool = DebugOption,
) -> None:
    """Destroy all infrastructure after the teardown checklist.

    Requires two confirmations: the resource inventory, then that every
    externally created resource on the checklist was cleaned up by hand.
    """
    from phoenix_infra.workflow.teardown import TeardownPhase

    cfg = _load(config, debug)

    def run() -> PhaseResult:
        provisioning = _provisioning(cfg, yes)
        return TeardownPhase(cfg, provisioning, provisioning.gate).teardown()

    _guard("destroy", run)


# ── ansible commands ─────────────────────────────────────────────────────────


@app.command()
def bootstrap(
    config: Optional[str] = ConfigOption,
    check: bool = typer.Option(
        False, "--check", help="Dry run: syntax check, then ansible --check.",
    ),
    yes: bool = YesOption,
    debug: bool = DebugOption,
) -> None:
    """Wait for SSH, then configure every host with ansible."""
    cfg = _load(config, debug)
    mode = "dry run" if check else "apply"
    output.action(f"Bootstrapping cluster ({mode}) ...")
    _guard("bootstrap", lambda: _configuration(cfg, yes).bootstrap(check=check))


@app.command()
def upgrade(
    config: Optional[str] = ConfigOption,
    check: bool = typer.Option(
        False, "--check", help="Dry run: syntax check, then ansible --check.",
    ),
    yes: bool = YesOption,
    debug: bool = DebugOption,
) -> None:
    """Upgrade Kubernetes host by host, control plane first."""
    cfg = _load(config, debug)
    _guard("upgrade", lambda: _configuration(cfg, yes).upgrade(check=check))


@app.command()
def preflight(
    config: Optional[str] = ConfigOption,
    debug: bool = DebugOption,
) -> None:
    """Check tools and credentials, validate terraform, syntax-check playbooks.

    Mutates nothing. Exits 0 when everything passes, 1 on missing
    requirements, 3 on a validation failure.
    """
    from phoenix_infra.workflow.preflight import (
        PreflightChecker,
        configuration_requirements,
        missing_requirements_result,
        provisioning_requirements,
    )

    cfg = _load(config, debug)

    def run() -> PhaseResult:
        seen = set()
        requirements = []
        for req in provisioning_requirements(cfg) + configuration_requirements(cfg):
            if req.name not in seen:
                seen.add(req.name)
                requirements.append(req)
        report = PreflightChecker(
            command="preflight",
            aws_profile=cfg.aws_profile or "",
            region=cfg.aws_region or "",
        ).check(requirements)
        if not report.passed:
            return missing_requirements_result("preflight", report)

        result = _provisioning(cfg).validate()
        if not result.ok:
            return result
        result = _configuration(cfg).validate()
        if not result.ok:
            return result
        return PhaseResult(phase="preflight", outcome=Outcome.VALIDATED)

    _guard("preflight", run)


# ── backend & auth commands ──────────────────────────────────────────────────


@app.command("migrate-backend")
def migrate_backend(
    config: Optional[str] = ConfigOption,
    debug: bool = DebugOption,
) -> None:
    """Create the S3 + DynamoDB state backend and write backend.tf.

    The local state is backed up first; moving it is left to
    ``terraform init -migrate-state``.
    """
    from phoenix_infra.aws.backend import BackendMigrator, next_steps
    from phoenix_infra.aws.context import AWSContext
    from phoenix_infra.workflow.preflight import (
        PreflightChecker,
        backend_requirements,
        missing_requirements_result,
    )

    cfg = _load(config, debug)

    def run() -> PhaseResult:
        report = PreflightChecker(
            command="migrate-backend",
            aws_profile=cfg.aws_profile or "",
            region=cfg.backend.region,
        ).check(backend_requirements(cfg))
        if not report.passed:
            return missing_requirements_result("migrate-backend", report)

        try:
            aws_ctx = AWSContext.build(cfg.backend.region, profile=cfg.aws_profile)
        except RuntimeError as exc:
            output.error(f"AWS context failed: {exc}")
            raise typer.Exit(EXIT_PRECONDITION) from exc

        migration = BackendMigrator(
            cfg,
            aws_ctx.client("s3"),
            aws_ctx.client("dynamodb"),
            aws_ctx.account_id,
        ).migrate()
        if migration.ok:
            ui.phase("NEXT STEPS")
            ui.numbered(
                next_steps(migration, cfg.terraform_dir, cfg.backend.state_key)
            )
        return migration.to_phase_result()

    _guard("migrate-backend", run)


@app.command("fix-auth")
def fix_auth(
    credential: str = typer.Argument(
        ..., help="Vault root token. Never logged or echoed.",
    ),
    config: Optional[str] = ConfigOption,
    debug: bool = DebugOption,
) -> None:
    """Re-establish Vault's Kubernetes auth after a Vault restart."""
    from phoenix_infra.vault.auth import (
        AccessPolicy,
        AuthReconciler,
        RoleBinding,
        ServiceIdentity,
    )
    from phoenix_infra.workflow.preflight import (
        PreflightChecker,
        auth_requirements,
        missing_requirements_result,
    )

    cfg = _load(config, debug)
    auth = cfg.auth

    def run() -> PhaseResult:
        report = PreflightChecker(command="fix-auth").check(auth_requirements(cfg))
        if not report.passed:
            return missing_requirements_result("fix-auth", report)

        target = cfg.control_plane_target()
        reconciler = AuthReconciler(_runner(cfg), target, credential, cfg.vault)
        result = reconciler.reconcile(
            ServiceIdentity(
                auth.service_account,
                auth.service_account_namespace,
                auth.token_duration,
            ),
            AccessPolicy(auth.policy_name, auth.policy_document),
            RoleBinding(auth.role_name, [auth.policy_name], auth.role_ttl),
        )
        if result.ok:
            ssh = f"ssh -i {target.key_path} {target.destination}"
            ui.phase("NEXT STEPS")
            ui.numbered([
                f"{ssh} \"kubectl rollout restart deployment "
                f"{auth.consumer_deployment} -n {auth.service_account_namespace}\"",
                f"{ssh} \"kubectl get clustersecretstore {auth.secret_store}\"",
                f"{ssh} \"kubectl get externalsecrets -A\"",
            ])
        else:
            ui.warn(
                "Last completed step: "
                f"{result.record.last_completed or 'none'}. Re-running is safe."
            )
        return result.to_phase_result(target.address)

    _guard("fix-auth", run)


# ── Entry point ──────────────────────────────────────────────────────────────


def main() -> int:
    """Run the CLI and return an exit code."""
    try:
        app()
        return 0
    except SystemExit as exc:
        return exc.code if isinstance(exc.code, int) else 0


if __name__ == "__main__":
    sys.exit(main())
