"""Persistent artifacts: preflight reports and state-file backups.

Preflight reports go to ``~/.config/phoenix/`` (XDG_CONFIG_HOME / phoenix)::

    preflight_<command>_<run_id>.json

State backups are written next to the source state file::

    terraform.tfstate.backup.<YYYYmmdd_HHMMSS>

All JSON is serialised with **sorted keys** for deterministic, diff-friendly output.
"""

from __future__ import annotations

import logging
import os
import shutil
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from phoenix_infra.state.models import PreflightReport, StateBackup

logger = logging.getLogger(__name__)

_APP_DIR = "phoenix"

#: Timestamp format used in backup file names.
BACKUP_TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"


# ---------------------------------------------------------------------------
# Directory resolution
# ---------------------------------------------------------------------------


def config_dir() -> Path:
    """Return the XDG config directory for phoenix.

    Uses ``XDG_CONFIG_HOME`` if set, otherwise ``~/.config``.
    Creates the directory if it does not exist.
    """
    base = os.environ.get("XDG_CONFIG_HOME", "")
    if not base:
        base = str(Path.home() / ".config")
    path = Path(base) / _APP_DIR
    path.mkdir(parents=True, exist_ok=True)
    return path


# ---------------------------------------------------------------------------
# Preflight reports
# ---------------------------------------------------------------------------


def _safe_name(name: Optional[str]) -> str:
    """Sanitise a command name for use in a filename."""
    if not name:
        return "unknown"
    return "".join(c if (c.isalnum() or c in "-_") else "_" for c in name)


def write_preflight_report(report: PreflightReport) -> Path:
    """Persist *report* as sorted-key JSON and return the written path.

    Path pattern: ``<config_dir>/preflight_<command>_<run_id>.json``
    """
    filename = f"preflight_{_safe_name(report.command)}_{report.run_id}.json"
    dest = config_dir() / filename
    dest.write_text(report.to_sorted_json() + "\n", encoding="utf-8")
    logger.info("Preflight report written to %s", dest)
    return dest


def load_preflight_report(path: Path) -> PreflightReport:
    """Read a report previously written by :func:`write_preflight_report`."""
    return PreflightReport.model_validate_json(path.read_text(encoding="utf-8"))


# ---------------------------------------------------------------------------
# State backups
# ---------------------------------------------------------------------------


def _unused_path(candidate: Path) -> Path:
    """Return *candidate*, or ``<candidate>.<n>`` if it already exists."""
    if not candidate.exists():
        return candidate
    n = 1
    while True:
        alt = candidate.with_name(f"{candidate.name}.{n}")
        if not alt.exists():
            return alt
        n += 1


def backup_state_file(
    state_path: Path,
    *,
    now_fn: Optional[Callable[[], datetime]] = None,
) -> StateBackup:
    """Copy *state_path* to a timestamped sibling and return the record.

    The engine's own ``<state>.backup`` file is copied alongside when it
    exists.  Existing backups are never overwritten.

    Raises :class:`FileNotFoundError` when *state_path* does not exist.
    """
    if not state_path.is_file():
        raise FileNotFoundError(f"No local state file found at {state_path}")

    now = (now_fn or datetime.now)()
    ts = now.strftime(BACKUP_TIMESTAMP_FORMAT)

    dest = _unused_path(state_path.with_name(f"{state_path.name}.backup.{ts}"))
    shutil.copy2(state_path, dest)
    logger.info("State backed up: %s -> %s", state_path, dest)

    extras = []
    engine_backup = state_path.with_name(f"{state_path.name}.backup")
    if engine_backup.is_file():
        extra_dest = _unused_path(
            state_path.with_name(f"{state_path.name}.backup.backup.{ts}")
        )
        shutil.copy2(engine_backup, extra_dest)
        extras.append(str(extra_dest))

    return StateBackup(
        source_path=str(state_path),
        timestamp=ts,
        destination_path=str(dest),
        extra_paths=extras,
    )
