"""Cancellation tokens and the single-shot rollout completion signal."""

from __future__ import annotations

import asyncio
from typing import Optional

from swarm_deployer.models import DeployOutcome


class CancellationToken:
    """Explicit cancellation request passed into long-running waits.

    Process-level concerns such as OS signals set the token from the
    outside; the deploy engine only ever waits on it.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: Optional[str] = None) -> None:
        if self._event.is_set():
            return
        self.reason = reason
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()


class DoneSignal:
    """Carries the rollout outcome; only the first ``set`` takes effect."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._outcome: Optional[DeployOutcome] = None

    @property
    def is_set(self) -> bool:
        return self._event.is_set()

    @property
    def outcome(self) -> Optional[DeployOutcome]:
        return self._outcome

    def set(self, outcome: DeployOutcome) -> bool:
        """Record ``outcome``; returns False if an outcome was already recorded."""
        if self._event.is_set():
            return False
        self._outcome = outcome
        self._event.set()
        return True

    async def wait(self) -> DeployOutcome:
        await self._event.wait()
        assert self._outcome is not None
        return self._outcome
