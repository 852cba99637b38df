"""Preflight report and state backup models.

One :class:`PreflightReport` is written per checker pass, e.g.::

    {
      "aws_profile": "ops",
      "checks": [
        {"details": {"binary": "terraform"}, "id": "tool.terraform",
         "remediation": "Install terraform and put it on PATH",
         "status": "FAIL"}
      ],
      "command": "apply",
      "region": "us-east-1",
      "run_id": "20260115103000"
    }
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List

from pydantic import BaseModel, Field


def utc_run_id() -> str:
    """UTC timestamp used as the report id (``YYYYMMDDHHMMSS``)."""
    return datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")


class CheckStatus(str, Enum):
    PASS = "PASS"
    WARN = "WARN"
    FAIL = "FAIL"


class CheckResult(BaseModel):
    """Result of evaluating one requirement.

    ``id`` is the requirement name (``tool.ssh``, ``file.inventory``, ...).
    ``remediation`` tells the user how to satisfy it and stays empty on PASS.
    """

    id: str
    status: CheckStatus
    details: Dict[str, Any] = Field(default_factory=dict)
    remediation: str = ""


class PreflightReport(BaseModel):
    """Every requirement evaluated for one command, in evaluation order."""

    run_id: str = Field(default_factory=utc_run_id)
    command: str = ""
    aws_profile: str = ""
    region: str = ""
    checks: List[CheckResult] = Field(default_factory=list)

    def by_status(self, status: CheckStatus) -> List[CheckResult]:
        return [check for check in self.checks if check.status == status]

    @property
    def passed(self) -> bool:
        """WARN results do not block; any FAIL does."""
        return not self.by_status(CheckStatus.FAIL)

    @property
    def has_warnings(self) -> bool:
        return bool(self.by_status(CheckStatus.WARN))

    @property
    def missing(self) -> List[str]:
        """Ids of every failed check, in evaluation order."""
        return [check.id for check in self.by_status(CheckStatus.FAIL)]

    def to_sorted_json(self, indent: int = 2) -> str:
        """Key-sorted JSON, byte-stable for identical reports."""
        payload = self.model_dump(mode="json")
        return json.dumps(payload, indent=indent, sort_keys=True)


class StateBackup(BaseModel):
    """A local state file copied aside before a backend migration.

    The destination name embeds *timestamp* and is never reused; see
    :func:`phoenix_infra.state.store.backup_state_file`.
    """

    source_path: str
    timestamp: str
    destination_path: str
    extra_paths: List[str] = Field(default_factory=list)
