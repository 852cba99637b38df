"""Persisted artifacts: preflight reports and local state backups."""

from phoenix_infra.state.models import (
    CheckResult,
    CheckStatus,
    PreflightReport,
    StateBackup,
)
from phoenix_infra.state.store import (
    backup_state_file,
    config_dir,
    load_preflight_report,
    write_preflight_report,
)

__all__ = [
    "CheckResult",
    "CheckStatus",
    "PreflightReport",
    "StateBackup",
    "backup_state_file",
    "config_dir",
    "load_preflight_report",
    "write_preflight_report",
]
