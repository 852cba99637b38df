"""Pydantic models for phoenix orchestrator configuration.

Defines the data structures for:
- Tool settings (terraform, ansible, vault)
- Readiness polling and remote state backend settings
- Remote targets resolved from env vars or the Ansible inventory

A single :class:`OrchestratorConfig` is built at process start and
passed explicitly into every phase.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


class ConfigError(RuntimeError):
    """Raised when configuration cannot be loaded or is incomplete."""


# ---------------------------------------------------------------------------
# Remote targets
# ---------------------------------------------------------------------------


class Reachability(str, Enum):
    """Last observed SSH reachability of a :class:`RemoteTarget`."""

    UNKNOWN = "unknown"
    REACHABLE = "reachable"
    UNREACHABLE = "unreachable"


@dataclass
class RemoteTarget:
    """A cluster host reached over SSH.

    ``reachability`` is only ever written by
    :class:`phoenix_infra.runner.readiness.ReadinessPoller`.
    """

    name: str
    address: str
    user: str = "ubuntu"
    key_path: str = "~/.ssh/id_rsa"
    reachability: Reachability = Reachability.UNKNOWN
    inventory_name: str = ""

    @property
    def destination(self) -> str:
        """``user@address`` as passed to ``ssh``."""
        return f"{self.user}@{self.address}"

    @property
    def expanded_key_path(self) -> str:
        return str(Path(self.key_path).expanduser())

    @property
    def limit(self) -> str:
        """Host pattern for ``ansible-playbook --limit``."""
        return self.inventory_name or self.address


# ---------------------------------------------------------------------------
# Tool settings
# ---------------------------------------------------------------------------


class TerraformSettings(BaseModel):
    """Where and how the provisioning engine is invoked."""

    binary: str = "terraform"
    working_dir: str = "terraform"
    plan_file: str = "tfplan"
    state_file: str = "terraform.tfstate"
    backend_file: str = "backend.tf"
    # "0s" makes a held state lock fail immediately instead of waiting.
    lock_timeout: str = "0s"


class BootstrapPlaybooks(BaseModel):
    """Playbook per bootstrap step, relative to the ansible directory."""

    common: str = "playbooks/common.yml"
    control_plane: str = "playbooks/control-plane.yml"
    workers: str = "playbooks/workers.yml"
    platform: str = "install-platform.yml"
    upgrade: str = "upgrade-k8s.yml"


class AnsibleSettings(BaseModel):
    """Where and how the configuration-management engine is invoked."""

    binary: str = "ansible-playbook"
    working_dir: str = "ansible"
    inventory: str = "inventory.ini"
    playbooks: BootstrapPlaybooks = Field(default_factory=BootstrapPlaybooks)
    control_plane_groups: List[str] = Field(
        default_factory=lambda: ["control_plane", "masters", "master"],
    )
    worker_groups: List[str] = Field(
        default_factory=lambda: ["workers", "nodes"],
    )


class ReadinessSettings(BaseModel):
    """Bounds for SSH readiness polling ahead of configuration."""

    timeout: float = 30.0
    interval: float = 5.0
    attempts: int = 3
    connect_timeout: int = 10

    @field_validator("attempts")
    @classmethod
    def _at_least_one(cls, value: int) -> int:
        if value < 1:
            raise ValueError("readiness.attempts must be >= 1")
        return value

    @field_validator("interval")
    @classmethod
    def _positive_interval(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("readiness.interval must be > 0")
        return value


class BackendSettings(BaseModel):
    """Remote state backend (S3 bucket + DynamoDB lock table)."""

    bucket_prefix: str = "phoenix-terraform-state"
    bucket_name: Optional[str] = None
    lock_table: str = "phoenix-terraform-locks"
    state_key: str = "phoenix-cluster/terraform.tfstate"
    region: str = "us-east-1"
    tags: Dict[str, str] = Field(
        default_factory=lambda: {
            "Project": "Phoenix",
            "Purpose": "TerraformStateLocking",
        },
    )

    def resolve_bucket_name(self, account_id: str) -> str:
        """Explicit ``bucket_name`` or ``<prefix>-<account_id>``."""
        return self.bucket_name or f"{self.bucket_prefix}-{account_id}"


class VaultSettings(BaseModel):
    """Location of the Vault server pod and its Kubernetes auth mount."""

    namespace: str = "vault"
    pod: str = "platform-vault-0"
    auth_path: str = "kubernetes"


DEFAULT_POLICY_DOCUMENT = """\
# Allow reading all secrets under kv/
path "kv/data/*" {
  capabilities = ["read", "list"]
}

path "kv/metadata/*" {
  capabilities = ["read", "list"]
}

# Allow reading all secrets under secret/
path "secret/data/*" {
  capabilities = ["read", "list"]
}

path "secret/metadata/*" {
  capabilities = ["read", "list"]
}
"""


class AuthSettings(BaseModel):
    """Identity, policy, and role that ``fix-auth`` reconciles."""

    service_account: str = "eso-vault-auth"
    service_account_namespace: str = "platform-system"
    token_duration: str = "87600h"
    policy_name: str = "external-secrets-policy"
    policy_document: str = DEFAULT_POLICY_DOCUMENT
    role_name: str = "eso-role"
    role_ttl: str = "24h"
    consumer_deployment: str = "external-secrets"
    secret_store: str = "vault-cluster-store"


DEFAULT_TEARDOWN_CHECKLIST: List[str] = [
    "Services of type LoadBalancer deleted "
    "(kubectl get svc -A | grep LoadBalancer returns nothing)",
    "Ingress controller load balancers and target groups removed",
    "Dynamically provisioned volumes (PVCs) deleted or released",
]


class TeardownSettings(BaseModel):
    """Manual pre-clean items confirmed before ``destroy``."""

    checklist: List[str] = Field(
        default_factory=lambda: list(DEFAULT_TEARDOWN_CHECKLIST),
    )

    @field_validator("checklist")
    @classmethod
    def _non_empty(cls, value: List[str]) -> List[str]:
        if not value:
            raise ValueError("teardown.checklist must list at least one item")
        return value


# ---------------------------------------------------------------------------
# Root config
# ---------------------------------------------------------------------------


class OrchestratorConfig(BaseModel):
    """Top-level model for ``phoenix.yaml`` plus environment overrides.

    Structure::

        aws_profile: my-profile
        control_plane: 10.0.0.10
        workers: [10.0.0.11, 10.0.0.12]
        terraform: {working_dir: terraform}
        ansible: {inventory: inventory.ini}
        readiness: {timeout: 30, interval: 5, attempts: 3}
        backend: {lock_table: phoenix-terraform-locks}
        vault: {pod: platform-vault-0}
        auth: {role_name: eso-role}
        teardown: {checklist: [...]}
    """

    aws_profile: Optional[str] = None
    aws_region: Optional[str] = None
    control_plane: Optional[str] = None
    workers: List[str] = Field(default_factory=list)
    ssh_user: str = "ubuntu"
    ssh_key: str = "~/.ssh/id_rsa"
    #: address -> inventory alias, filled from the Ansible inventory.
    host_aliases: Dict[str, str] = Field(default_factory=dict)
    #: address -> ``ansible_user`` / ``ansible_ssh_private_key_file``.
    host_users: Dict[str, str] = Field(default_factory=dict)
    host_keys: Dict[str, str] = Field(default_factory=dict)

    terraform: TerraformSettings = Field(default_factory=TerraformSettings)
    ansible: AnsibleSettings = Field(default_factory=AnsibleSettings)
    readiness: ReadinessSettings = Field(default_factory=ReadinessSettings)
    backend: BackendSettings = Field(default_factory=BackendSettings)
    vault: VaultSettings = Field(default_factory=VaultSettings)
    auth: AuthSettings = Field(default_factory=AuthSettings)
    teardown: TeardownSettings = Field(default_factory=TeardownSettings)

    # -- derived paths ------------------------------------------------------

    @property
    def terraform_dir(self) -> Path:
        return Path(self.terraform.working_dir)

    @property
    def ansible_dir(self) -> Path:
        return Path(self.ansible.working_dir)

    @property
    def state_path(self) -> Path:
        return self.terraform_dir / self.terraform.state_file

    @property
    def inventory_path(self) -> Path:
        return self.ansible_dir / self.ansible.inventory

    # -- targets ------------------------------------------------------------

    def make_target(self, name: str, address: str) -> RemoteTarget:
        """Build a :class:`RemoteTarget` for *address*.

        Per-host inventory values win over ``ssh_user`` / ``ssh_key``.
        """
        return RemoteTarget(
            name=name,
            address=address,
            user=self.host_users.get(address) or self.ssh_user,
            key_path=self.host_keys.get(address) or self.ssh_key,
            inventory_name=self.host_aliases.get(address, ""),
        )

    def control_plane_target(self) -> RemoteTarget:
        """Return the designated control-plane target.

        Raises :class:`ConfigError` when no control plane is configured.
        """
        if not self.control_plane:
            raise ConfigError(
                "No control-plane address configured. Set PHOENIX_CONTROL_PLANE, "
                "'control_plane' in the config file, or a control-plane group "
                "in the Ansible inventory."
            )
        return self.make_target("control-plane", self.control_plane)

    def worker_targets(self) -> List[RemoteTarget]:
        return [
            self.make_target(f"worker-{idx}", addr)
            for idx, addr in enumerate(self.workers, start=1)
        ]

    def all_targets(self) -> List[RemoteTarget]:
        """Control plane first, then workers in configured order."""
        return [self.control_plane_target(), *self.worker_targets()]
