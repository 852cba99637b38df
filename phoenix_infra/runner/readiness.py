"""SSH readiness polling ahead of configuration.

Replaces the ad-hoc "sleep and try ssh again" loops with a bounded
poller: probes run at a fixed start-to-start interval and the poller
gives up with :attr:`Readiness.TIMED_OUT` instead of raising.
"""

from __future__ import annotations

import logging
import math
import time
from enum import Enum
from typing import Any, Callable, Optional

from phoenix_infra import ui
from phoenix_infra.config.models import Reachability, RemoteTarget
from phoenix_infra.runner.command import CommandRunner, RetryPolicy

logger = logging.getLogger(__name__)

#: Trivial remote command used as the default probe.
PROBE_COMMAND = ["true"]

#: Smallest time slice handed to a probe that starts right at the deadline.
MIN_PROBE_BUDGET = 0.5

#: A probe gets the target and the seconds left before the deadline.
Probe = Callable[[RemoteTarget, float], bool]


class Readiness(str, Enum):
    """Outcome of :meth:`ReadinessPoller.wait_until_ready`."""

    READY = "READY"
    TIMED_OUT = "TIMED_OUT"


class ReadinessPoller:
    """Probe a :class:`RemoteTarget` until it answers or a deadline passes.

    The *_sleep_fn* / *_clock_fn* parameters are for test injection.
    """

    def __init__(
        self,
        runner: CommandRunner,
        *,
        _sleep_fn: Any = None,
        _clock_fn: Any = None,
    ) -> None:
        self.runner = runner
        self._sleep = _sleep_fn or time.sleep
        self._clock = _clock_fn or time.monotonic

    def ssh_probe(self, target: RemoteTarget, budget: float) -> bool:
        """Default probe: run ``true`` on the target over SSH.

        The whole ssh process is killed after *budget* seconds and its
        ``ConnectTimeout`` never exceeds that budget.
        """
        connect = max(1, min(self.runner.connect_timeout, math.ceil(budget)))
        return self.runner.run(
            PROBE_COMMAND,
            target=target,
            retry_policy=RetryPolicy(attempt_timeout=budget),
            connect_timeout=connect,
        ).ok

    def wait_until_ready(
        self,
        target: RemoteTarget,
        probe: Optional[Probe] = None,
        *,
        timeout: float,
        interval: float,
    ) -> Readiness:
        """Block until *probe* succeeds or *timeout* seconds have elapsed.

        Probes start no closer together than *interval* seconds and each is
        given only the time left before the deadline (at least
        :data:`MIN_PROBE_BUDGET`).  No probe starts after the deadline, so a
        probe that honours its budget keeps the total wait within
        ``timeout + MIN_PROBE_BUDGET``.
        Sets ``target.reachability`` accordingly.
        """
        if interval <= 0:
            raise ValueError("interval must be > 0")
        check = probe or self.ssh_probe
        start = self._clock()
        deadline = start + timeout
        attempt = 0

        while True:
            attempt += 1
            probe_started = self._clock()
            budget = max(deadline - probe_started, MIN_PROBE_BUDGET)
            if check(target, budget):
                target.reachability = Reachability.REACHABLE
                ui.clear_progress()
                logger.info(
                    "%s (%s) reachable after %d probe(s)",
                    target.name, target.address, attempt,
                )
                return Readiness.READY

            now = self._clock()
            next_probe = max(probe_started + interval, now)
            if next_probe > deadline:
                target.reachability = Reachability.UNREACHABLE
                ui.clear_progress()
                logger.warning(
                    "%s (%s) not reachable within %.0fs (%d probes)",
                    target.name, target.address, timeout, attempt,
                )
                return Readiness.TIMED_OUT

            ui.progress_line(
                f"Waiting for {target.name} ({target.address}) "
                f"{ui.elapsed_str(now - start)} elapsed"
            )
            self._sleep(max(0.0, next_probe - now))
