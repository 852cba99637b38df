"""Remote state backend bootstrap: S3 bucket + DynamoDB lock table.

Migration sequence (every step safe to re-run)::

    backup local state → bucket (check-then-create) → versioning
    → encryption → public-access block → lock table (check-then-create)
    → render backend.tf

Bucket and table creation are check-then-act; the bucket hardening calls
are plain overwrites, re-applied every run.  Moving the state itself is
left to ``terraform init -migrate-state``, which the CLI prints as the
next step.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from botocore.exceptions import BotoCoreError, ClientError

from phoenix_infra import ui
from phoenix_infra.aws.context import error_code
from phoenix_infra.config.models import OrchestratorConfig
from phoenix_infra.render.backend import render_backend, write_backend_file
from phoenix_infra.state.models import StateBackup
from phoenix_infra.state.store import backup_state_file
from phoenix_infra.workflow.phases import ActionOutcome, Outcome, PhaseResult

logger = logging.getLogger(__name__)

PHASE = "migrate-backend"

_BUCKET_MISSING_CODES = frozenset({"404", "NoSuchBucket", "NotFound"})

PUBLIC_ACCESS_BLOCK: Dict[str, bool] = {
    "BlockPublicAcls": True,
    "IgnorePublicAcls": True,
    "BlockPublicPolicy": True,
    "RestrictPublicBuckets": True,
}

ENCRYPTION_CONFIGURATION: Dict[str, Any] = {
    "Rules": [
        {"ApplyServerSideEncryptionByDefault": {"SSEAlgorithm": "AES256"}},
    ],
}


class ResourceKind(str, Enum):
    BUCKET = "bucket"
    LOCK_TABLE = "lock_table"


@dataclass(frozen=True)
class BackendResourceSpec:
    """A backend resource to ensure, by kind and name."""

    kind: ResourceKind
    name: str
    region: str
    tags: Dict[str, str] = field(default_factory=dict)


@dataclass
class BackendMigrationResult:
    """Outcome of :meth:`BackendMigrator.migrate`.

    ``actions`` maps step name to its :class:`ActionOutcome`, in run order.
    """

    outcome: Outcome
    bucket: str = ""
    lock_table: str = ""
    backup: Optional[StateBackup] = None
    backend_file: str = ""
    actions: Dict[str, ActionOutcome] = field(default_factory=dict)
    failed_step: str = ""
    reason: str = ""

    @property
    def ok(self) -> bool:
        return self.outcome == Outcome.MIGRATED

    def to_phase_result(self) -> PhaseResult:
        details: Dict[str, Any] = {
            "bucket": self.bucket,
            "lock_table": self.lock_table,
            "actions": {k: v.value for k, v in self.actions.items()},
        }
        if self.backup is not None:
            details["backup"] = self.backup.destination_path
        if self.backend_file:
            details["backend_file"] = self.backend_file
        return PhaseResult(
            phase=PHASE,
            outcome=self.outcome,
            step=self.failed_step,
            reason=self.reason,
            details=details,
        )


class _StepFailed(Exception):
    def __init__(self, step: str, reason: str) -> None:
        super().__init__(reason)
        self.step = step
        self.reason = reason


def _client_error_text(exc: BaseException) -> str:
    code = error_code(exc)
    return f"{code}: {exc}" if code else str(exc)


# ---------------------------------------------------------------------------
# BackendMigrator
# ---------------------------------------------------------------------------


class BackendMigrator:
    """Ensure the remote backend exists and point terraform at it."""

    def __init__(
        self,
        config: OrchestratorConfig,
        s3_client: Any,
        dynamodb_client: Any,
        account_id: str,
        *,
        now_fn: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.config = config
        self.s3 = s3_client
        self.dynamodb = dynamodb_client
        self.account_id = account_id
        self._now_fn = now_fn

    # -- resource specs ---------------------------------------------------------

    def bucket_spec(self) -> BackendResourceSpec:
        backend = self.config.backend
        return BackendResourceSpec(
            kind=ResourceKind.BUCKET,
            name=backend.resolve_bucket_name(self.account_id),
            region=backend.region,
            tags=dict(backend.tags),
        )

    def table_spec(self) -> BackendResourceSpec:
        backend = self.config.backend
        return BackendResourceSpec(
            kind=ResourceKind.LOCK_TABLE,
            name=backend.lock_table,
            region=backend.region,
            tags=dict(backend.tags),
        )

    # -- bucket -----------------------------------------------------------------

    def _bucket_exists(self, name: str) -> bool:
        try:
            self.s3.head_bucket(Bucket=name)
        except ClientError as exc:
            if error_code(exc) in _BUCKET_MISSING_CODES:
                return False
            raise _StepFailed(
                "bucket",
                f"cannot access bucket {name} ({_client_error_text(exc)}); "
                "it may be owned by another account",
            ) from exc
        return True

    def ensure_bucket(self, spec: BackendResourceSpec) -> ActionOutcome:
        if self._bucket_exists(spec.name):
            return ActionOutcome.ALREADY_EXISTS

        kwargs: Dict[str, Any] = {"Bucket": spec.name}
        # us-east-1 rejects an explicit LocationConstraint.
        if spec.region != "us-east-1":
            kwargs["CreateBucketConfiguration"] = {"LocationConstraint": spec.region}
        try:
            self.s3.create_bucket(**kwargs)
        except ClientError as exc:
            if error_code(exc) == "BucketAlreadyOwnedByYou":
                return ActionOutcome.ALREADY_EXISTS
            raise _StepFailed("bucket", _client_error_text(exc)) from exc
        return ActionOutcome.CREATED

    def harden_bucket(self, name: str) -> Dict[str, ActionOutcome]:
        """Versioning, AES256 default encryption, and public access block."""
        calls = [
            ("versioning", lambda: self.s3.put_bucket_versioning(
                Bucket=name,
                VersioningConfiguration={"Status": "Enabled"},
            )),
            ("encryption", lambda: self.s3.put_bucket_encryption(
                Bucket=name,
                ServerSideEncryptionConfiguration=ENCRYPTION_CONFIGURATION,
            )),
            ("public-access", lambda: self.s3.put_public_access_block(
                Bucket=name,
                PublicAccessBlockConfiguration=PUBLIC_ACCESS_BLOCK,
            )),
        ]
        done: Dict[str, ActionOutcome] = {}
        for step, call in calls:
            try:
                call()
            except ClientError as exc:
                raise _StepFailed(step, _client_error_text(exc)) from exc
            done[step] = ActionOutcome.UPDATED
            ui.ok(f"{step} applied to {name}")
        return done

    # -- lock table -------------------------------------------------------------

    def _table_exists(self, name: str) -> bool:
        try:
            self.dynamodb.describe_table(TableName=name)
        except ClientError as exc:
            if error_code(exc) == "ResourceNotFoundException":
                return False
            raise _StepFailed("lock-table", _client_error_text(exc)) from exc
        return True

    def ensure_lock_table(self, spec: BackendResourceSpec) -> ActionOutcome:
        if self._table_exists(spec.name):
            return ActionOutcome.ALREADY_EXISTS

        outcome = ActionOutcome.CREATED
        try:
            self.dynamodb.create_table(
                TableName=spec.name,
                AttributeDefinitions=[
                    {"AttributeName": "LockID", "AttributeType": "S"},
                ],
                KeySchema=[{"AttributeName": "LockID", "KeyType": "HASH"}],
                BillingMode="PAY_PER_REQUEST",
                Tags=[{"Key": k, "Value": v} for k, v in sorted(spec.tags.items())],
            )
        except ClientError as exc:
            if error_code(exc) != "ResourceInUseException":
                raise _StepFailed("lock-table", _client_error_text(exc)) from exc
            outcome = ActionOutcome.ALREADY_EXISTS

        self.dynamodb.get_waiter("table_exists").wait(TableName=spec.name)
        return outcome

    # -- orchestration ----------------------------------------------------------

    def migrate(self, local_state_path: Optional[Path] = None) -> BackendMigrationResult:
        """Back up state, ensure backend resources, render ``backend.tf``.

        A missing local state file is a precondition failure: nothing is
        created.  A failing step stops the run; re-running is safe.
        """
        state_path = Path(local_state_path or self.config.state_path)
        bucket = self.bucket_spec()
        table = self.table_spec()
        result = BackendMigrationResult(
            outcome=Outcome.MIGRATED, bucket=bucket.name, lock_table=table.name,
        )

        ui.phase("REMOTE BACKEND")
        ui.detail("Account", self.account_id)
        ui.detail("S3 bucket", bucket.name)
        ui.detail("Lock table", table.name)
        ui.detail("Region", bucket.region)

        ui.step("Backing up local state")
        try:
            result.backup = backup_state_file(state_path, now_fn=self._now_fn)
        except FileNotFoundError as exc:
            ui.fail(str(exc))
            result.outcome = Outcome.MISSING_REQUIREMENTS
            result.failed_step = "backup"
            result.reason = str(exc)
            return result
        result.actions["backup"] = ActionOutcome.CREATED
        ui.ok(f"State backed up to {result.backup.destination_path}")

        try:
            ui.step("S3 bucket")
            result.actions["bucket"] = self.ensure_bucket(bucket)
            ui.ok(f"bucket {bucket.name}: {result.actions['bucket'].value}")

            result.actions.update(self.harden_bucket(bucket.name))

            ui.step("DynamoDB lock table")
            result.actions["lock-table"] = self.ensure_lock_table(table)
            ui.ok(f"table {table.name}: {result.actions['lock-table'].value}")
        except _StepFailed as exc:
            return self._failed(result, exc.step, exc.reason)
        except (BotoCoreError, ClientError) as exc:
            return self._failed(result, "aws", _client_error_text(exc))

        ui.step("backend.tf")
        backend_path = self.config.terraform_dir / self.config.terraform.backend_file
        changed = write_backend_file(
            backend_path,
            render_backend(
                bucket=bucket.name,
                key=self.config.backend.state_key,
                region=bucket.region,
                lock_table=table.name,
            ),
        )
        result.actions["backend-file"] = (
            ActionOutcome.UPDATED if changed else ActionOutcome.ALREADY_EXISTS
        )
        result.backend_file = str(backend_path)
        ui.ok(f"Backend configuration at {backend_path}")
        return result

    @staticmethod
    def _failed(
        result: BackendMigrationResult, step: str, reason: str,
    ) -> BackendMigrationResult:
        logger.error("Backend migration failed at %s: %s", step, reason)
        result.outcome = Outcome.FAILED
        result.failed_step = step
        result.reason = reason
        result.actions[step] = ActionOutcome.FAILED
        return result


def next_steps(
    result: BackendMigrationResult, terraform_dir: Path, state_key: str,
) -> List[str]:
    """Commands that finish the migration once the backend exists."""
    prefix = state_key.rsplit("/", 1)[0] if "/" in state_key else ""
    return [
        f"Review the backend configuration: cat {result.backend_file}",
        f"Migrate state: terraform -chdir={terraform_dir} init -migrate-state "
        "(answer 'yes' to copy existing state)",
        f"Verify: terraform -chdir={terraform_dir} state list",
        f"Verify: aws s3 ls s3://{result.bucket}/{prefix}/",
        "Test locking: terraform plan should acquire and release the lock",
    ]
