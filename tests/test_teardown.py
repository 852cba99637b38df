"""Tests for phoenix_infra.workflow.teardown."""

from __future__ import annotations

from phoenix_infra.config.models import OrchestratorConfig
from phoenix_infra.gate import ConfirmationGate, ScriptedAnswers, Severity
from phoenix_infra.workflow.phases import EXIT_DECLINED, Outcome
from phoenix_infra.workflow.preflight import PreflightChecker
from phoenix_infra.workflow.provision import ProvisioningPhase
from phoenix_infra.workflow.teardown import TeardownPhase

from fakes import FakeTerraform


def _teardown(tmp_path, fake, answers, checklist=None):
    raw = {"terraform": {"working_dir": str(tmp_path)}}
    if checklist is not None:
        raw["teardown"] = {"checklist": checklist}
    cfg = OrchestratorConfig.model_validate(raw)
    scripted = ScriptedAnswers(list(answers))
    gate = ConfirmationGate(scripted)
    provisioning = ProvisioningPhase(
        cfg, fake, gate, PreflightChecker(write_report=False),
        requirements=lambda: [],
    )
    return TeardownPhase(cfg, provisioning, gate), scripted


class TestTeardown:
    def test_destroys_after_both_confirmations(self, tmp_path):
        fake = FakeTerraform(tmp_path, state=["aws_vpc.main", "aws_instance.master"])
        phase, answers = _teardown(tmp_path, fake, ["yes", "cleared"])
        result = phase.teardown()
        assert result.outcome == Outcome.DESTROYED
        assert result.phase == "teardown"
        assert result.details["destroyed"] == ["aws_vpc.main", "aws_instance.master"]
        assert fake.subcommands() == ["state", "destroy"]
        assert len(answers.prompts) == 2

    def test_first_decline_aborts_without_destroy(self, tmp_path):
        fake = FakeTerraform(tmp_path)
        phase, answers = _teardown(tmp_path, fake, ["no"])
        result = phase.teardown()
        assert result.outcome == Outcome.ABORTED
        assert len(answers.prompts) == 1
        assert "destroy" not in fake.subcommands()

    def test_checklist_decline_aborts_without_destroy(self, tmp_path):
        fake = FakeTerraform(tmp_path)
        phase, answers = _teardown(tmp_path, fake, ["yes", "no"])
        result = phase.teardown()
        assert result.outcome == Outcome.ABORTED
        assert result.exit_code == EXIT_DECLINED
        assert "destroy" not in fake.subcommands()

    def test_empty_inventory_no_prompt(self, tmp_path):
        fake = FakeTerraform(tmp_path, state=[])
        phase, answers = _teardown(tmp_path, fake, [])
        assert phase.teardown().outcome == Outcome.DESTROYED
        assert answers.prompts == []
        assert "destroy" not in fake.subcommands()

    def test_request_shows_inventory_then_checklist(self, tmp_path):
        fake = FakeTerraform(tmp_path)
        phase, _ = _teardown(tmp_path, fake, [], checklist=["ELBs gone"])
        req = phase.build_request(["aws_vpc.main"])
        assert req.severity == Severity.DOUBLE
        first, second = req.stages
        assert first.resources == ("aws_vpc.main",)
        assert second.resources == ("ELBs gone",)
        assert second.required_response == "cleared"

    def test_destroy_failure_named(self, tmp_path):
        fake = FakeTerraform(tmp_path, failures={"destroy": "Error: DependencyViolation"})
        phase, _ = _teardown(tmp_path, fake, ["yes", "cleared"])
        result = phase.teardown()
        assert result.outcome == Outcome.FAILED
        assert result.step == "destroy"
        assert "DependencyViolation" in result.reason
