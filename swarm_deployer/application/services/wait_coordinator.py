"""Runs the event watcher and rollout monitor until the deploy resolves."""

from __future__ import annotations

import asyncio
from typing import Optional

from swarm_deployer.application.cancellation import DoneSignal
from swarm_deployer.application.ports import CancellationSource, Logger
from swarm_deployer.application.services.event_watcher import EventWatcher
from swarm_deployer.application.services.rollout_monitor import RolloutMonitor
from swarm_deployer.models import DeployOutcome, ServiceHandle


class WaitCoordinator:
    """Races the rollout outcome against interrupt and context cancellation.

    The first of these to resolve wins, checked in that order when several
    are ready at once. Both subordinate tasks are cancelled and awaited
    before ``wait`` returns, whichever way it returns.
    """

    def __init__(self, watcher: EventWatcher, monitor: RolloutMonitor, logger: Logger):
        self._watcher = watcher
        self._monitor = monitor
        self._logger = logger

    async def wait(
        self,
        handle: ServiceHandle,
        *,
        interrupt: Optional[CancellationSource] = None,
        context: Optional[CancellationSource] = None,
        until_running: bool = False,
    ) -> DeployOutcome:
        """Wait for the rollout outcome, or with ``until_running`` for a first running task."""
        done = DoneSignal()
        run = self._monitor.run_until_running if until_running else self._monitor.run
        watcher = asyncio.create_task(
            self._watcher.watch(handle.id), name=f"watch-events-{handle.name}"
        )
        monitor = asyncio.create_task(
            run(handle, done), name=f"monitor-rollout-{handle.name}"
        )
        monitor.add_done_callback(lambda task: self._monitor_finished(task, handle, done))

        done_waiter = asyncio.create_task(done.wait())
        waiters: dict[str, asyncio.Task] = {"done": done_waiter}
        if interrupt is not None:
            waiters["interrupt"] = asyncio.create_task(interrupt.wait())
        if context is not None:
            waiters["context"] = asyncio.create_task(context.wait())

        try:
            await asyncio.wait(waiters.values(), return_when=asyncio.FIRST_COMPLETED)
            return self._resolve(handle, done, interrupt, context)
        finally:
            await self._shutdown([watcher, monitor, *waiters.values()])

    @staticmethod
    def _resolve(
        handle: ServiceHandle,
        done: DoneSignal,
        interrupt: Optional[CancellationSource],
        context: Optional[CancellationSource],
    ) -> DeployOutcome:
        if done.is_set and done.outcome is not None:
            return done.outcome
        if interrupt is not None and interrupt.is_cancelled:
            return DeployOutcome(
                status="cancelled", service_id=handle.id, reason="deployment cancelled"
            )
        return DeployOutcome(
            status="context_cancelled", service_id=handle.id, reason="context cancelled"
        )

    def _monitor_finished(self, task: asyncio.Task, handle: ServiceHandle, done: DoneSignal) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is None:
            return
        self._logger.error("Rollout monitor for %s crashed: %s", handle.name, exc)
        done.set(DeployOutcome(status="failed", service_id=handle.id, reason=str(exc)))

    async def _shutdown(self, tasks: list[asyncio.Task]) -> None:
        for task in tasks:
            task.cancel()
        results = await asyncio.gather(*tasks, return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                self._logger.debug("Background task ended with %r", result)
