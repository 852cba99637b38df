"""Tests for phoenix_infra.workflow.configure and ansible.runner."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from phoenix_infra.ansible.runner import AnsibleRunner
from phoenix_infra.config.models import OrchestratorConfig, RemoteTarget
from phoenix_infra.gate import ConfirmationGate, ScriptedAnswers
from phoenix_infra.runner.readiness import Readiness, ReadinessPoller
from phoenix_infra.workflow.configure import ConfigurationPhase
from phoenix_infra.workflow.phases import EXIT_PHASE_FAILURE, Outcome
from phoenix_infra.workflow.preflight import PreflightChecker

from fakes import FakeAnsible

COMMON = "playbooks/common.yml"
CONTROL = "playbooks/control-plane.yml"
WORKERS = "playbooks/workers.yml"
PLATFORM = "install-platform.yml"
UPGRADE = "upgrade-k8s.yml"


# ── helpers ──────────────────────────────────────────────────────────────


def _config(**overrides) -> OrchestratorConfig:
    raw = {
        "control_plane": "10.0.0.10",
        "workers": ["10.0.0.11", "10.0.0.12"],
        "readiness": {"timeout": 5, "interval": 1, "attempts": 2},
    }
    raw.update(overrides)
    return OrchestratorConfig.model_validate(raw)


def _phase(fake, *, cfg=None, poller=None, answers=None) -> ConfigurationPhase:
    cfg = cfg or _config()
    gate = ConfirmationGate(ScriptedAnswers(answers)) if answers is not None else None
    return ConfigurationPhase(
        cfg,
        fake,
        poller or ReadinessPoller(fake, _sleep_fn=lambda s: None),
        gate,
        PreflightChecker(write_report=False),
        requirements=lambda: [],
    )


# ── TestAnsibleRunner ────────────────────────────────────────────────────


class TestAnsibleRunner:
    def test_playbook_command(self):
        cfg = _config()
        cmd = AnsibleRunner(cfg.ansible, MagicMock()).playbook_command(
            COMMON, limit="cp1", check=True, private_key="/k",
        )
        assert cmd == [
            "ansible-playbook", "-i", "inventory.ini", COMMON,
            "--limit", "cp1", "--private-key", "/k", "--check",
        ]

    def test_syntax_check_command(self):
        cfg = _config()
        cmd = AnsibleRunner(cfg.ansible, MagicMock()).playbook_command(
            COMMON, limit="cp1", syntax_only=True,
        )
        assert cmd[-1] == "--syntax-check"
        assert "--limit" not in cmd

    def test_runs_in_ansible_dir(self):
        cfg = _config()
        runner = MagicMock()
        AnsibleRunner(cfg.ansible, runner).syntax_check(COMMON)
        assert runner.run.call_args.kwargs["cwd"] == "ansible"

    def test_limit_uses_inventory_alias(self):
        cfg = _config(host_aliases={"10.0.0.10": "master-1"})
        runner = MagicMock()
        AnsibleRunner(cfg.ansible, runner).run_playbook(
            COMMON, cfg.control_plane_target(),
        )
        cmd = runner.run.call_args.args[0]
        assert cmd[cmd.index("--limit") + 1] == "master-1"


# ── TestBootstrap ────────────────────────────────────────────────────────


class TestBootstrap:
    def test_step_order(self):
        fake = FakeAnsible()
        result = _phase(fake).bootstrap()
        assert result.outcome == Outcome.BOOTSTRAPPED
        assert fake.runs() == [
            (COMMON, "10.0.0.10"),
            (COMMON, "10.0.0.11"),
            (COMMON, "10.0.0.12"),
            (CONTROL, "10.0.0.10"),
            (WORKERS, "10.0.0.11"),
            (WORKERS, "10.0.0.12"),
            (PLATFORM, "10.0.0.10"),
        ]

    def test_control_plane_step_only_on_designated_host(self):
        fake = FakeAnsible()
        _phase(fake).bootstrap()
        assert [t for p, t in fake.runs() if p == CONTROL] == ["10.0.0.10"]

    def test_readiness_before_any_playbook(self):
        fake = FakeAnsible()
        _phase(fake).bootstrap()
        assert fake.probes == ["10.0.0.10", "10.0.0.11", "10.0.0.12"]

    def test_first_failure_aborts_and_names_step_and_target(self):
        fake = FakeAnsible(failures={(WORKERS, "10.0.0.11"): "fatal: apt lock"})
        result = _phase(fake).bootstrap()
        assert result.outcome == Outcome.FAILED
        assert result.exit_code == EXIT_PHASE_FAILURE
        assert result.phase == "bootstrap"
        assert result.step == "workers"
        assert result.target == "10.0.0.11"
        assert "apt lock" in result.reason
        assert (WORKERS, "10.0.0.12") not in fake.runs()
        assert (PLATFORM, "10.0.0.10") not in fake.runs()

    def test_unreachable_target_fails_bootstrap(self):
        fake = FakeAnsible()
        poller = MagicMock()

        def wait(target, **kw):
            if target.address == "10.0.0.12":
                return Readiness.TIMED_OUT
            return Readiness.READY

        poller.wait_until_ready.side_effect = wait
        result = _phase(fake, poller=poller).bootstrap()
        assert result.outcome == Outcome.FAILED
        assert result.step == "readiness"
        assert result.target == "10.0.0.12"
        assert fake.runs() == []
        # two outer attempts for the unreachable host
        attempts = [
            c.args[0].address for c in poller.wait_until_ready.call_args_list
        ]
        assert attempts.count("10.0.0.12") == 2

    def test_readiness_uses_configured_bounds(self):
        poller = MagicMock()
        poller.wait_until_ready.return_value = Readiness.READY
        _phase(FakeAnsible(), poller=poller).bootstrap()
        kwargs = poller.wait_until_ready.call_args.kwargs
        assert kwargs == {"timeout": 5.0, "interval": 1.0}

    def test_check_mode_syntax_checks_then_runs_with_check(self):
        fake = FakeAnsible()
        result = _phase(fake).bootstrap(check=True)
        assert result.outcome == Outcome.VALIDATED
        syntax = [c for c in fake.calls if "--syntax-check" in c]
        assert [c[3] for c in syntax] == [COMMON, CONTROL, WORKERS, PLATFORM]
        runs = [c for c in fake.calls if "--limit" in c]
        assert runs and all("--check" in c for c in runs)

    def test_check_mode_syntax_error_stops_before_hosts(self):
        fake = FakeAnsible(syntax_failures={CONTROL: "ERROR! bad yaml"})
        result = _phase(fake).bootstrap(check=True)
        assert result.outcome == Outcome.FAILED
        assert result.step == "syntax-check"
        assert fake.probes == []
        assert fake.runs() == []

    def test_declined(self):
        fake = FakeAnsible()
        result = _phase(fake, answers=["no"]).bootstrap()
        assert result.outcome == Outcome.ABORTED
        assert fake.runs() == []

    def test_approved(self):
        fake = FakeAnsible()
        result = _phase(fake, answers=["yes"]).bootstrap()
        assert result.outcome == Outcome.BOOTSTRAPPED

    def test_explicit_targets(self):
        fake = FakeAnsible()
        targets = [
            RemoteTarget(name="w", address="10.0.0.20"),
            RemoteTarget(name="cp", address="10.0.0.10"),
        ]
        _phase(fake).bootstrap(targets)
        assert (CONTROL, "10.0.0.10") in fake.runs()
        assert (WORKERS, "10.0.0.20") in fake.runs()

    def test_empty_targets_rejected(self):
        with pytest.raises(ValueError):
            _phase(FakeAnsible()).bootstrap([])


# ── TestValidateAndUpgrade ───────────────────────────────────────────────


class TestValidateAndUpgrade:
    def test_validate_touches_no_host(self):
        fake = FakeAnsible()
        result = _phase(fake).validate()
        assert result.outcome == Outcome.VALIDATED
        assert fake.probes == []
        assert all("--syntax-check" in c for c in fake.calls)

    def test_upgrade_control_plane_first(self):
        fake = FakeAnsible()
        result = _phase(fake).upgrade()
        assert result.ok
        assert fake.runs() == [
            (UPGRADE, "10.0.0.10"),
            (UPGRADE, "10.0.0.11"),
            (UPGRADE, "10.0.0.12"),
        ]

    def test_upgrade_failure(self):
        fake = FakeAnsible(failures={(UPGRADE, "10.0.0.10"): "kubeadm failed"})
        result = _phase(fake).upgrade()
        assert result.phase == "upgrade"
        assert result.target == "10.0.0.10"
        assert len(fake.runs()) == 1
