"""Re-establish Vault's Kubernetes auth after a Vault restart or upgrade.

Six steps, each safe to re-run::

    [1/6] cluster-info    kubectl config view  → API server URL + CA
    [2/6] service-token   kubectl create token → reviewer JWT
    [3/6] enable-auth     vault auth list / enable (check-then-act)
    [4/6] auth-config     vault write auth/<path>/config (overwrite)
    [5/6] policy          vault policy write <name> - (overwrite)
    [6/6] role            vault write auth/<path>/role/<role> (overwrite)

All commands run on the control-plane host over SSH; Vault commands go
through ``kubectl exec`` into the Vault pod.  The Vault token and the
reviewer JWT reach vault over stdin only, never on a command line, and
are registered as secrets with :class:`CommandRunner` so they are
redacted from every log line and captured output.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence

from phoenix_infra import ui
from phoenix_infra.config.models import RemoteTarget, VaultSettings
from phoenix_infra.runner.command import CommandResult, CommandRunner, RetryPolicy
from phoenix_infra.workflow.phases import ActionOutcome, Outcome, PhaseResult

logger = logging.getLogger(__name__)

PHASE = "fix-auth"

STEPS: List[str] = [
    "cluster-info",
    "service-token",
    "enable-auth",
    "auth-config",
    "policy",
    "role",
]

#: vault's error text when an auth method is already mounted at the path.
ALREADY_ENABLED_MARKER = "path is already in use"

#: Runs inside the Vault pod: first stdin line is the token, the rest
#: stays on stdin for vault itself.
VAULT_SHELL = 'read -r VAULT_TOKEN && export VAULT_TOKEN && exec vault "$@"'

#: kubectl reads against the API server are retried briefly.
KUBECTL_RETRY = RetryPolicy.fixed(2.0, 3, attempt_timeout=60.0)


# ---------------------------------------------------------------------------
# Inputs
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ServiceIdentity:
    """The Kubernetes service account Vault authenticates."""

    name: str
    namespace: str
    token_duration: str = "87600h"


@dataclass(frozen=True)
class AccessPolicy:
    name: str
    document: str


@dataclass(frozen=True)
class RoleBinding:
    """Vault role binding a service identity to policies."""

    name: str
    policies: Sequence[str]
    ttl: str = "24h"


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass
class StepRecord:
    name: str
    outcome: ActionOutcome
    detail: str = ""


@dataclass
class ReconciliationRecord:
    """Per-step outcomes of one reconcile run."""

    steps: List[StepRecord] = field(default_factory=list)

    @property
    def last_completed(self) -> Optional[str]:
        done = [s.name for s in self.steps if s.outcome.ok]
        return done[-1] if done else None

    def add(self, name: str, outcome: ActionOutcome, detail: str = "") -> None:
        self.steps.append(StepRecord(name, outcome, detail))


@dataclass
class ReconcileResult:
    """Outcome of :meth:`AuthReconciler.reconcile`."""

    outcome: Outcome
    record: ReconciliationRecord
    failed_step: str = ""
    reason: str = ""

    @property
    def ok(self) -> bool:
        return self.outcome == Outcome.RECONCILED

    def to_phase_result(self, target: str = "") -> PhaseResult:
        details = {
            "steps": {s.name: s.outcome.value for s in self.record.steps},
            "last_completed": self.record.last_completed,
        }
        if self.ok:
            return PhaseResult(phase=PHASE, outcome=self.outcome, details=details)
        return PhaseResult.failed(
            PHASE, self.failed_step, self.reason, target=target, **details,
        )


class _StepFailed(Exception):
    def __init__(self, step: str, reason: str) -> None:
        super().__init__(reason)
        self.step = step
        self.reason = reason


# ---------------------------------------------------------------------------
# AuthReconciler
# ---------------------------------------------------------------------------


class AuthReconciler:
    """Drive the six-step Vault/Kubernetes auth reconciliation."""

    def __init__(
        self,
        runner: CommandRunner,
        control_plane: RemoteTarget,
        vault_token: str,
        vault: Optional[VaultSettings] = None,
    ) -> None:
        if not vault_token:
            raise ValueError("a Vault token is required")
        self.runner = runner
        self.control_plane = control_plane
        self._token = vault_token
        self.vault = vault or VaultSettings()
        self._secrets: List[str] = [vault_token]

    # -- command helpers ----------------------------------------------------

    def _remote(
        self,
        command: Sequence[str],
        *,
        input_text: Optional[str] = None,
        retry: Optional[RetryPolicy] = None,
    ) -> CommandResult:
        return self.runner.run(
            command,
            target=self.control_plane,
            retry_policy=retry,
            input_text=input_text,
            secrets=self._secrets,
        )

    def vault_command(self, *args: str) -> List[str]:
        """``kubectl exec`` wrapper running ``vault <args>`` in the Vault pod.

        The token is not part of the command line; :meth:`_vault` feeds it
        as the first line of stdin.
        """
        return [
            "kubectl", "exec", "-i",
            "-n", self.vault.namespace,
            self.vault.pod,
            "--",
            "sh", "-c", VAULT_SHELL,
            "vault", *args,
        ]

    def _vault(self, *args: str, input_text: Optional[str] = None) -> CommandResult:
        stdin = f"{self._token}\n{input_text or ''}"
        return self._remote(self.vault_command(*args), input_text=stdin)

    @staticmethod
    def _require(step: str, result: CommandResult) -> CommandResult:
        if not result.ok:
            raise _StepFailed(step, result.error_text)
        return result

    # -- steps ----------------------------------------------------------------

    def cluster_info(self) -> tuple[str, str]:
        """Return ``(server_url, ca_pem)`` from the control plane's kubeconfig."""
        result = self._require("cluster-info", self._remote(
            ["kubectl", "config", "view", "--raw", "--minify", "--flatten",
             "-o", "json"],
            retry=KUBECTL_RETRY,
        ))
        try:
            cluster = json.loads(result.stdout)["clusters"][0]["cluster"]
            server = cluster["server"]
            ca_pem = base64.b64decode(
                cluster["certificate-authority-data"], validate=True,
            ).decode("utf-8")
        except (ValueError, KeyError, IndexError, TypeError, binascii.Error) as exc:
            raise _StepFailed(
                "cluster-info", f"could not read cluster info from kubeconfig: {exc}",
            ) from exc
        return server, ca_pem

    def service_token(self, identity: ServiceIdentity) -> str:
        result = self._require("service-token", self._remote(
            ["kubectl", "create", "token", identity.name,
             "-n", identity.namespace,
             f"--duration={identity.token_duration}"],
            retry=KUBECTL_RETRY,
        ))
        token = result.stdout.strip()
        if not token:
            raise _StepFailed("service-token", "kubectl returned an empty token")
        # Never let the JWT reach a log line from here on.
        self._secrets.append(token)
        return token

    def enable_auth(self) -> ActionOutcome:
        path = self.vault.auth_path
        listing = self._require(
            "enable-auth", self._vault("auth", "list", "-format=json"),
        )
        try:
            mounts = json.loads(listing.stdout or "{}")
        except ValueError as exc:
            raise _StepFailed("enable-auth", f"unreadable auth list: {exc}") from exc
        if f"{path}/" in mounts:
            return ActionOutcome.ALREADY_EXISTS

        result = self._vault("auth", "enable", f"-path={path}", "kubernetes")
        if result.ok:
            return ActionOutcome.CREATED
        if ALREADY_ENABLED_MARKER in result.error_text:
            return ActionOutcome.ALREADY_EXISTS
        raise _StepFailed("enable-auth", result.error_text)

    def configure_auth(self, server: str, ca_pem: str, jwt: str) -> ActionOutcome:
        # "-" makes vault read the whole payload as JSON from stdin
        payload = json.dumps({
            "kubernetes_host": server,
            "kubernetes_ca_cert": ca_pem,
            "token_reviewer_jwt": jwt,
        })
        self._require("auth-config", self._vault(
            "write", f"auth/{self.vault.auth_path}/config", "-",
            input_text=payload,
        ))
        return ActionOutcome.UPDATED

    def write_policy(self, policy: AccessPolicy) -> ActionOutcome:
        self._require("policy", self._vault(
            "policy", "write", policy.name, "-", input_text=policy.document,
        ))
        return ActionOutcome.UPDATED

    def write_role(self, identity: ServiceIdentity, role: RoleBinding) -> ActionOutcome:
        self._require("role", self._vault(
            "write", f"auth/{self.vault.auth_path}/role/{role.name}",
            f"bound_service_account_names={identity.name}",
            f"bound_service_account_namespaces={identity.namespace}",
            f"policies={','.join(role.policies)}",
            f"ttl={role.ttl}",
        ))
        return ActionOutcome.UPDATED

    # -- orchestration --------------------------------------------------------

    def reconcile(
        self,
        identity: ServiceIdentity,
        policy: AccessPolicy,
        role: RoleBinding,
    ) -> ReconcileResult:
        """Run all six steps; stop at the first failure."""
        record = ReconciliationRecord()
        context: dict = {}

        def do_cluster_info() -> ActionOutcome:
            context["server"], context["ca"] = self.cluster_info()
            ui.detail("Kubernetes API", context["server"])
            return ActionOutcome.UPDATED

        def do_token() -> ActionOutcome:
            context["jwt"] = self.service_token(identity)
            return ActionOutcome.UPDATED

        actions: List[Callable[[], ActionOutcome]] = [
            do_cluster_info,
            do_token,
            self.enable_auth,
            lambda: self.configure_auth(context["server"], context["ca"], context["jwt"]),
            lambda: self.write_policy(policy),
            lambda: self.write_role(identity, role),
        ]

        ui.phase("VAULT KUBERNETES AUTH")
        for idx, action in enumerate(actions, start=1):
            name = STEPS[idx - 1]
            ui.step(f"[{idx}/{len(STEPS)}] {name}")
            try:
                outcome = action()
            except _StepFailed as exc:
                record.add(name, ActionOutcome.FAILED, exc.reason)
                ui.fail(f"{name} failed")
                logger.error(
                    "fix-auth stopped at %s (last completed: %s)",
                    name, record.last_completed or "none",
                )
                return ReconcileResult(
                    outcome=Outcome.FAILED,
                    record=record,
                    failed_step=name,
                    reason=exc.reason,
                )
            record.add(name, outcome)
            if outcome == ActionOutcome.ALREADY_EXISTS:
                ui.ok(f"{name}: already in place")
            else:
                ui.ok(name)

        return ReconcileResult(outcome=Outcome.RECONCILED, record=record)
