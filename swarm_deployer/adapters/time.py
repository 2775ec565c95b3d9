"""Clock adapter for application services."""

from __future__ import annotations

from datetime import datetime, timezone

from swarm_deployer.application.ports import Clock


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)
