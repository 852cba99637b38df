"""Tests for phoenix_infra.aws.backend and render.backend."""

from __future__ import annotations

from datetime import datetime
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from phoenix_infra.aws.backend import (
    ENCRYPTION_CONFIGURATION,
    PUBLIC_ACCESS_BLOCK,
    BackendMigrator,
    next_steps,
)
from phoenix_infra.config.models import OrchestratorConfig
from phoenix_infra.render.backend import render_backend, render_template
from phoenix_infra.workflow.phases import (
    EXIT_PHASE_FAILURE,
    EXIT_PRECONDITION,
    ActionOutcome,
    Outcome,
)

ACCOUNT = "123456789012"


# ── helpers ──────────────────────────────────────────────────────────────


def _client_error(code: str, op: str = "Op") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, op)


class FakeS3:
    def __init__(self, buckets=None) -> None:
        self.buckets = set(buckets or ())
        self.create_calls = []
        self.hardening = []

    def head_bucket(self, Bucket):
        if Bucket not in self.buckets:
            raise _client_error("404", "HeadBucket")
        return {}

    def create_bucket(self, **kwargs):
        self.create_calls.append(kwargs)
        self.buckets.add(kwargs["Bucket"])
        return {}

    def put_bucket_versioning(self, **kwargs):
        self.hardening.append(("versioning", kwargs))

    def put_bucket_encryption(self, **kwargs):
        self.hardening.append(("encryption", kwargs))

    def put_public_access_block(self, **kwargs):
        self.hardening.append(("public-access", kwargs))


class FakeDynamo:
    def __init__(self, tables=None) -> None:
        self.tables = set(tables or ())
        self.create_calls = []
        self.waiter = MagicMock()

    def describe_table(self, TableName):
        if TableName not in self.tables:
            raise _client_error("ResourceNotFoundException", "DescribeTable")
        return {"Table": {"TableStatus": "ACTIVE"}}

    def create_table(self, **kwargs):
        self.create_calls.append(kwargs)
        self.tables.add(kwargs["TableName"])
        return {}

    def get_waiter(self, name):
        assert name == "table_exists"
        return self.waiter


class Clock:
    def __init__(self) -> None:
        self.seconds = 0

    def __call__(self) -> datetime:
        self.seconds += 1
        return datetime(2026, 1, 15, 10, 30, self.seconds)


def _setup(tmp_path, *, region="us-east-1", state=True):
    tf = tmp_path / "terraform"
    tf.mkdir()
    if state:
        (tf / "terraform.tfstate").write_text('{"version": 4}')
    cfg = OrchestratorConfig.model_validate({
        "terraform": {"working_dir": str(tf)},
        "backend": {"region": region},
    })
    s3, ddb = FakeS3(), FakeDynamo()
    migrator = BackendMigrator(cfg, s3, ddb, ACCOUNT, now_fn=Clock())
    return cfg, migrator, s3, ddb


# ── TestRender ───────────────────────────────────────────────────────────


class TestRender:
    def test_backend_block(self):
        text = render_backend(
            bucket="b", key="k/terraform.tfstate", region="us-east-1", lock_table="t",
        )
        assert 'backend "s3"' in text
        assert 'bucket         = "b"' in text
        assert 'dynamodb_table = "t"' in text
        assert "encrypt        = true" in text
        assert "${" not in text

    def test_missing_key_raises(self):
        with pytest.raises(ValueError, match="BACKEND_BUCKET"):
            render_template("${BACKEND_BUCKET}", {"BACKEND_KEY": "k"})


# ── TestMigrate ──────────────────────────────────────────────────────────


class TestMigrate:
    def test_full_migration(self, tmp_path):
        cfg, migrator, s3, ddb = _setup(tmp_path)
        result = migrator.migrate()
        assert result.outcome == Outcome.MIGRATED
        assert result.bucket == f"phoenix-terraform-state-{ACCOUNT}"
        assert result.lock_table == "phoenix-terraform-locks"
        assert result.actions["bucket"] == ActionOutcome.CREATED
        assert result.actions["lock-table"] == ActionOutcome.CREATED

        backend_tf = cfg.terraform_dir / "backend.tf"
        text = backend_tf.read_text()
        assert f'"phoenix-terraform-state-{ACCOUNT}"' in text
        assert '"phoenix-cluster/terraform.tfstate"' in text

    def test_us_east_1_has_no_location_constraint(self, tmp_path):
        _, migrator, s3, _ = _setup(tmp_path)
        migrator.migrate()
        assert "CreateBucketConfiguration" not in s3.create_calls[0]

    def test_other_region_sets_location_constraint(self, tmp_path):
        _, migrator, s3, _ = _setup(tmp_path, region="eu-west-1")
        migrator.migrate()
        assert s3.create_calls[0]["CreateBucketConfiguration"] == {
            "LocationConstraint": "eu-west-1",
        }

    def test_hardening_applied(self, tmp_path):
        _, migrator, s3, _ = _setup(tmp_path)
        migrator.migrate()
        steps = dict(s3.hardening)
        assert steps["versioning"]["VersioningConfiguration"] == {"Status": "Enabled"}
        assert (
            steps["encryption"]["ServerSideEncryptionConfiguration"]
            == ENCRYPTION_CONFIGURATION
        )
        assert (
            steps["public-access"]["PublicAccessBlockConfiguration"]
            == PUBLIC_ACCESS_BLOCK
        )
        assert all(PUBLIC_ACCESS_BLOCK.values())

    def test_lock_table_shape(self, tmp_path):
        _, migrator, _, ddb = _setup(tmp_path)
        migrator.migrate()
        call = ddb.create_calls[0]
        assert call["KeySchema"] == [{"AttributeName": "LockID", "KeyType": "HASH"}]
        assert call["AttributeDefinitions"] == [
            {"AttributeName": "LockID", "AttributeType": "S"},
        ]
        assert call["BillingMode"] == "PAY_PER_REQUEST"
        assert {"Key": "Project", "Value": "Phoenix"} in call["Tags"]
        ddb.waiter.wait.assert_called_once_with(TableName="phoenix-terraform-locks")

    def test_run_twice_is_idempotent_with_two_backups(self, tmp_path):
        cfg, migrator, s3, ddb = _setup(tmp_path)
        first = migrator.migrate()
        second = migrator.migrate()
        assert first.ok and second.ok
        assert len(s3.create_calls) == 1
        assert len(ddb.create_calls) == 1
        assert second.actions["bucket"] == ActionOutcome.ALREADY_EXISTS
        assert second.actions["lock-table"] == ActionOutcome.ALREADY_EXISTS
        assert second.actions["backend-file"] == ActionOutcome.ALREADY_EXISTS
        backups = sorted(cfg.terraform_dir.glob("terraform.tfstate.backup.*"))
        assert len(backups) == 2
        assert first.backup.destination_path != second.backup.destination_path

    def test_engine_backup_copied_too(self, tmp_path):
        cfg, migrator, _, _ = _setup(tmp_path)
        (cfg.terraform_dir / "terraform.tfstate.backup").write_text("{}")
        result = migrator.migrate()
        assert len(result.backup.extra_paths) == 1
        assert ".backup.backup." in result.backup.extra_paths[0]

    def test_no_local_state_creates_nothing(self, tmp_path):
        s3, ddb = MagicMock(), MagicMock()
        tf = tmp_path / "terraform"
        tf.mkdir()
        cfg = OrchestratorConfig.model_validate({"terraform": {"working_dir": str(tf)}})
        result = BackendMigrator(cfg, s3, ddb, ACCOUNT).migrate()
        assert result.outcome == Outcome.MISSING_REQUIREMENTS
        assert result.to_phase_result().exit_code == EXIT_PRECONDITION
        assert s3.mock_calls == []
        assert ddb.mock_calls == []
        assert not (tf / "backend.tf").exists()

    def test_bucket_already_owned_by_you(self, tmp_path):
        _, migrator, s3, _ = _setup(tmp_path)
        s3.create_bucket = MagicMock(
            side_effect=_client_error("BucketAlreadyOwnedByYou", "CreateBucket"),
        )
        result = migrator.migrate()
        assert result.ok
        assert result.actions["bucket"] == ActionOutcome.ALREADY_EXISTS

    def test_bucket_owned_elsewhere_fails(self, tmp_path):
        _, migrator, s3, ddb = _setup(tmp_path)
        s3.head_bucket = MagicMock(side_effect=_client_error("403", "HeadBucket"))
        result = migrator.migrate()
        assert result.outcome == Outcome.FAILED
        assert result.failed_step == "bucket"
        assert result.to_phase_result().exit_code == EXIT_PHASE_FAILURE
        assert ddb.create_calls == []

    def test_table_race_counts_as_existing(self, tmp_path):
        _, migrator, _, ddb = _setup(tmp_path)
        ddb.create_table = MagicMock(
            side_effect=_client_error("ResourceInUseException", "CreateTable"),
        )
        result = migrator.migrate()
        assert result.actions["lock-table"] == ActionOutcome.ALREADY_EXISTS

    def test_hardening_failure_names_step(self, tmp_path):
        _, migrator, s3, _ = _setup(tmp_path)
        s3.put_bucket_encryption = MagicMock(
            side_effect=_client_error("AccessDenied", "PutBucketEncryption"),
        )
        result = migrator.migrate()
        assert result.failed_step == "encryption"
        assert "AccessDenied" in result.reason

    def test_next_steps(self, tmp_path):
        cfg, migrator, _, _ = _setup(tmp_path)
        result = migrator.migrate()
        steps = next_steps(result, cfg.terraform_dir, cfg.backend.state_key)
        assert any("init -migrate-state" in s for s in steps)
        assert any(f"s3://{result.bucket}/phoenix-cluster/" in s for s in steps)
