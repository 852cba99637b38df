"""Provisioning engine (terraform) CLI wrapper."""

from phoenix_infra.terraform.runner import (
    LOCK_ERROR_MARKER,
    PLAN_HAS_CHANGES,
    PLAN_NO_CHANGES,
    PlanArtifact,
    TerraformRunner,
    build_plan_artifact,
    file_digest,
    is_lock_contention,
    parse_changes,
)

__all__ = [
    "LOCK_ERROR_MARKER",
    "PLAN_HAS_CHANGES",
    "PLAN_NO_CHANGES",
    "PlanArtifact",
    "TerraformRunner",
    "build_plan_artifact",
    "file_digest",
    "is_lock_contention",
    "parse_changes",
]
