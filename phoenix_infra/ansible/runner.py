"""ansible-playbook CLI wrapper.

Runs playbooks from the ansible working directory against the configured
inventory, limited to one host at a time so a failure names its target.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from phoenix_infra.config.models import AnsibleSettings, RemoteTarget
from phoenix_infra.runner.command import CommandResult, CommandRunner

logger = logging.getLogger(__name__)


class AnsibleRunner:
    """Build and run ``ansible-playbook`` invocations."""

    def __init__(self, settings: AnsibleSettings, runner: CommandRunner) -> None:
        self.settings = settings
        self.runner = runner

    def playbook_command(
        self,
        playbook: str,
        *,
        limit: Optional[str] = None,
        check: bool = False,
        syntax_only: bool = False,
        private_key: Optional[str] = None,
    ) -> List[str]:
        cmd = [self.settings.binary, "-i", self.settings.inventory, playbook]
        if syntax_only:
            cmd.append("--syntax-check")
            return cmd
        if limit:
            cmd.extend(["--limit", limit])
        if private_key:
            cmd.extend(["--private-key", private_key])
        if check:
            cmd.append("--check")
        return cmd

    def syntax_check(self, playbook: str) -> CommandResult:
        return self.runner.run(
            self.playbook_command(playbook, syntax_only=True),
            cwd=self.settings.working_dir,
        )

    def run_playbook(
        self,
        playbook: str,
        target: RemoteTarget,
        *,
        check: bool = False,
    ) -> CommandResult:
        """Run *playbook* limited to *target*."""
        if check:
            logger.info("Running %s on %s in DRY RUN mode (--check)",
                        playbook, target.address)
        return self.runner.run(
            self.playbook_command(
                playbook,
                limit=target.limit,
                check=check,
                private_key=target.expanded_key_path,
            ),
            cwd=self.settings.working_dir,
        )
