"""Vault Kubernetes auth reconciliation."""

from phoenix_infra.vault.auth import (
    AccessPolicy,
    AuthReconciler,
    ReconcileResult,
    ReconciliationRecord,
    RoleBinding,
    ServiceIdentity,
    StepRecord,
)

__all__ = [
    "AccessPolicy",
    "AuthReconciler",
    "ReconcileResult",
    "ReconciliationRecord",
    "RoleBinding",
    "ServiceIdentity",
    "StepRecord",
]
