"""AWS service interactions (identity, remote state backend)."""

from phoenix_infra.aws.backend import (
    ENCRYPTION_CONFIGURATION,
    PUBLIC_ACCESS_BLOCK,
    BackendMigrationResult,
    BackendMigrator,
    BackendResourceSpec,
    ResourceKind,
    next_steps,
)
from phoenix_infra.aws.context import (
    AWSContext,
    error_code,
    resolve_profile,
    resolve_region,
)

__all__ = [
    "AWSContext",
    "BackendMigrationResult",
    "BackendMigrator",
    "BackendResourceSpec",
    "ENCRYPTION_CONFIGURATION",
    "PUBLIC_ACCESS_BLOCK",
    "ResourceKind",
    "error_code",
    "next_steps",
    "resolve_profile",
    "resolve_region",
]
