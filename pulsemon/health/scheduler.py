"""Probe scheduler — one independent poll loop per probe.

Each loop runs its probe with retries, records state transitions, bumps the
shared cache watermark and fires notifications on edges only. Blocking
attempts run in a thread pool so the event loop (and the HTTP server
sharing it) is never blocked.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Awaitable, Callable
from concurrent.futures import Executor, ThreadPoolExecutor
from datetime import datetime
from functools import partial

from ..notifications import NotificationDispatcher
from ..probes.registry import ProbeEntry, ProbeRegistry, ProbeSpec
from .engine import ProbeOutcome, ShellProcesses, execute_probe
from .state import CacheWatermark

logger = logging.getLogger(__name__)

Prober = Callable[[ProbeSpec], ProbeOutcome]


def _now() -> datetime:
    return datetime.now().astimezone()


class ProbeLoop:
    """Poll loop of a single probe: attempt, transition, notify, sleep."""

    def __init__(
        self,
        entry: ProbeEntry,
        watermark: CacheWatermark,
        dispatcher: NotificationDispatcher,
        executor: Executor | None = None,
        prober: Prober = execute_probe,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.entry = entry
        self.watermark = watermark
        self.dispatcher = dispatcher
        self.executor = executor
        self.prober = prober
        self._sleep = sleep

    @property
    def spec(self) -> ProbeSpec:
        return self.entry.spec

    def validate(self) -> bool:
        """Check the probe's configuration once.

        A misconfigured probe is logged, marked failed for good and never
        polled.
        """
        error = self.spec.config_error
        if not error:
            try:
                self.spec.pattern
            except re.error as e:
                error = f"invalid match pattern {self.spec.match!r}: {e}"
        if not error:
            return True

        logger.error("Disabled: %s: %s", self.spec.display_name or "(unnamed probe)", error)
        self.entry.state.disable(error)
        self.watermark.bump()
        return False

    async def attempt(self) -> ProbeOutcome:
        """Run up to ``max_attempts`` attempts, stopping at the first success."""
        loop = asyncio.get_running_loop()
        tries = max(self.spec.max_attempts, 1)
        outcome = ProbeOutcome(ok=False)
        for i in range(tries):
            outcome = await loop.run_in_executor(self.executor, self.prober, self.spec)
            if outcome.ok:
                break
            if i + 1 < tries:
                logger.debug(
                    "%s: attempt %d/%d failed, retrying in %ss",
                    self.spec.display_name, i + 1, tries, self.spec.retry_delay,
                )
                await self._sleep(self.spec.retry_delay)
        return outcome

    async def run_cycle(self) -> bool | None:
        """One poll cycle.

        Returns True for a healthy → failed edge, False for failed → healthy,
        None when the state did not change.
        """
        outcome = await self.attempt()
        name = self.spec.display_name
        state = self.entry.state

        if outcome.ok:
            if not state.mark_healthy(_now()):
                return None
            self.watermark.bump()
            subject = f"Fixed: {name}"
            logger.info(subject)
            self.dispatcher.dispatch(self.spec, False, subject)
            return False

        if not state.mark_failed(outcome.message, _now()):
            return None
        self.watermark.bump()
        subject = f"Failed: {name}"
        logger.warning("%s\n%s", subject, outcome.message)
        self.dispatcher.dispatch(self.spec, True, subject, outcome.message)
        return True

    async def run(self) -> None:
        """Poll until cancelled."""
        if not self.validate():
            return
        while True:
            try:
                await self.run_cycle()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Probe loop error: %s", self.spec.display_name)
            await self._sleep(self.spec.poll_interval)


class ProbeScheduler:
    """Starts and stops the poll loops of every registered probe."""

    def __init__(
        self,
        registry: ProbeRegistry,
        dispatcher: NotificationDispatcher | None = None,
        prober: Prober | None = None,
    ) -> None:
        self.registry = registry
        self.dispatcher = dispatcher or NotificationDispatcher()
        self.processes = ShellProcesses()
        self.prober = prober or partial(execute_probe, processes=self.processes)
        # One worker per probe; attempts never queue behind each other
        self._executor = ThreadPoolExecutor(
            max_workers=max(len(registry), 1), thread_name_prefix="probe",
        )
        self._tasks: list[asyncio.Task[None]] = []
        self._running = False

    def loops(self) -> list[ProbeLoop]:
        return [
            ProbeLoop(
                entry,
                self.registry.watermark,
                self.dispatcher,
                executor=self._executor,
                prober=self.prober,
            )
            for entry in self.registry.entries
        ]

    async def start(self) -> None:
        """Spawn one task per probe."""
        if self._running:
            return
        self._running = True

        if not self.registry.entries:
            logger.info("No probes configured — scheduler idle")
            return

        for i, probe_loop in enumerate(self.loops()):
            task = asyncio.create_task(probe_loop.run(), name=f"probe-{i}-{probe_loop.spec.display_name}")
            self._tasks.append(task)

        logger.info("Probe scheduler started: %d probes", len(self._tasks))

    async def stop(self) -> None:
        """Cancel all loops; in-flight attempts are abandoned.

        Running shell probes are killed so no worker thread outlives the
        scheduler by more than an HTTP timeout.
        """
        self._running = False
        for task in self._tasks:
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        self.processes.kill_all()
        self._executor.shutdown(wait=False, cancel_futures=True)
        logger.info("Probe scheduler stopped")
