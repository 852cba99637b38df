"""Fake collaborators shared by the workflow tests.

Each fake exposes the ``run(command, target=None, retry_policy=None, **kw)``
shape of :class:`phoenix_infra.runner.command.CommandRunner` and records
every call.
"""

from __future__ import annotations

import base64
import json
from pathlib import Path

from phoenix_infra.runner.command import CommandResult
from phoenix_infra.terraform.runner import PLAN_HAS_CHANGES
from phoenix_infra.vault.auth import VAULT_SHELL

SHOW_OUTPUT = """\
Terraform will perform the following actions:

  # aws_instance.master will be created
  + resource "aws_instance" "master" {
    }

  # aws_security_group.k8s must be replaced
-/+ resource "aws_security_group" "k8s" {
    }

Plan: 2 to add, 0 to change, 1 to destroy.
"""


class FakeTerraform:
    """Stand-in for CommandRunner that plays terraform against *workdir*."""

    def __init__(self, workdir: Path, *, plan_rc: int = PLAN_HAS_CHANGES,
                 show: str = SHOW_OUTPUT, failures=None, state=None) -> None:
        self.workdir = workdir
        self.plan_rc = plan_rc
        self.show = show
        self.failures = failures or {}
        self.state = state if state is not None else ["aws_vpc.main"]
        self.calls = []

    def subcommands(self):
        return [c[2] for c in self.calls]

    def run(self, command, target=None, retry_policy=None, **kwargs):
        cmd = list(command)
        self.calls.append(cmd)
        sub = cmd[2]
        if sub in self.failures:
            return CommandResult(" ".join(cmd), 1, stderr=self.failures[sub])
        if sub == "plan":
            (self.workdir / "tfplan").write_bytes(b"plan-v1")
            return CommandResult(" ".join(cmd), self.plan_rc)
        if sub == "show":
            return CommandResult(" ".join(cmd), 0, stdout=self.show)
        if sub == "state":
            return CommandResult(" ".join(cmd), 0, stdout="\n".join(self.state))
        return CommandResult(" ".join(cmd), 0)


class FakeAnsible:
    """Records ansible-playbook runs; fails ``(playbook, limit)`` pairs on demand."""

    connect_timeout = 10

    def __init__(self, failures=None, syntax_failures=None) -> None:
        self.failures = failures or {}
        self.syntax_failures = syntax_failures or {}
        self.calls = []
        self.probes = []

    def run(self, command, target=None, retry_policy=None, **kwargs):
        cmd = list(command)
        if target is not None:
            self.probes.append(target.address)
            return CommandResult("ssh true", 0)
        self.calls.append(cmd)
        playbook = cmd[3]
        if "--syntax-check" in cmd:
            err = self.syntax_failures.get(playbook)
            return CommandResult(" ".join(cmd), 4 if err else 0, stderr=err or "")
        limit = cmd[cmd.index("--limit") + 1]
        err = self.failures.get((playbook, limit))
        if err:
            return CommandResult(" ".join(cmd), 2, stdout=err)
        return CommandResult(" ".join(cmd), 0)

    def runs(self):
        """``(playbook, limit)`` for every non-syntax run, in order."""
        return [
            (c[3], c[c.index("--limit") + 1]) for c in self.calls
            if "--limit" in c
        ]


class FakeVault:
    """Stateful kubectl + vault on the control plane.

    ``fail_once`` names steps (``auth-config``, ``policy``...) that fail on
    their first invocation only.  Vault calls read their token from the
    first stdin line, as the shell wrapper in the pod does.
    """

    CA_PEM = "-----BEGIN CERTIFICATE-----\nMIIB\n-----END CERTIFICATE-----\n"
    JWT = "eyJhbGciOiJSUzI1NiJ9.sa-token"

    def __init__(self, *, mounts=None, fail_once=(), enable_race=False) -> None:
        self._ca_b64 = base64.b64encode(self.CA_PEM.encode()).decode()
        self.mounts = dict(mounts or {})
        self.fail_once = set(fail_once)
        self.enable_race = enable_race
        self.config = {}
        self.policies = {}
        self.roles = {}
        self.calls = []
        self.secrets_seen = []
        self.tokens_seen = []
        self.enable_calls = 0

    def _fail(self, step, cmd):
        if step in self.fail_once:
            self.fail_once.discard(step)
            return CommandResult(" ".join(cmd), 2, stderr=f"Error: {step} refused")
        return None

    def run(self, command, target=None, retry_policy=None, *, input_text=None,
            secrets=(), **kwargs):
        cmd = list(command)
        self.calls.append(cmd)
        self.secrets_seen.append(list(secrets))
        ok = lambda out="": CommandResult(" ".join(cmd), 0, stdout=out)  # noqa: E731

        if cmd[:3] == ["kubectl", "config", "view"]:
            return self._fail("cluster-info", cmd) or ok(json.dumps({
                "clusters": [{"cluster": {
                    "server": "https://10.0.0.10:6443",
                    "certificate-authority-data": self._ca_b64,
                }}],
            }))
        if cmd[:3] == ["kubectl", "create", "token"]:
            return self._fail("service-token", cmd) or ok(self.JWT)

        args = cmd[cmd.index(VAULT_SHELL) + 2:]
        token, _, input_text = (input_text or "").partition("\n")
        self.tokens_seen.append(token)
        if args[:2] == ["auth", "list"]:
            return ok(json.dumps(self.mounts))
        if args[:2] == ["auth", "enable"]:
            self.enable_calls += 1
            path = args[2].split("=", 1)[1] + "/"
            if path in self.mounts or self.enable_race:
                return CommandResult(
                    " ".join(cmd), 2,
                    stderr=f"Error enabling: path is already in use at {path}",
                )
            self.mounts[path] = {"type": "kubernetes"}
            return ok()
        if args[:2] == ["policy", "write"]:
            failed = self._fail("policy", cmd)
            if failed:
                return failed
            self.policies[args[2]] = input_text
            return ok()
        if args[0] == "write" and args[1].endswith("/config"):
            failed = self._fail("auth-config", cmd)
            if failed:
                return failed
            if args[2:] == ["-"]:
                self.config = json.loads(input_text)
            else:
                self.config = dict(a.split("=", 1) for a in args[2:])
            return ok()
        if args[0] == "write" and "/role/" in args[1]:
            failed = self._fail("role", cmd)
            if failed:
                return failed
            self.roles[args[1].rsplit("/", 1)[1]] = dict(
                a.split("=", 1) for a in args[2:]
            )
            return ok()
        return CommandResult(" ".join(cmd), 1, stderr=f"unexpected: {cmd}")

    def state(self):
        return (dict(self.mounts), dict(self.config), dict(self.policies), dict(self.roles))
