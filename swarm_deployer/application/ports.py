"""Port definitions for Hexagonal architecture."""

from __future__ import annotations

from datetime import datetime
from typing import AsyncIterator, Protocol, Sequence

from swarm_deployer.models import (
    ContainerEvent,
    ContainerHealth,
    ProxyRoute,
    ServiceHandle,
    ServiceSpec,
    ServiceStatus,
    TaskSummary,
)


class Clock(Protocol):
    """Provides wall-clock timestamps."""

    def now(self) -> datetime:
        ...


class Logger(Protocol):
    """Light-weight logging port."""

    def info(self, msg: str, *args: object, **kwargs: object) -> None:
        ...

    def warning(self, msg: str, *args: object, **kwargs: object) -> None:
        ...

    def debug(self, msg: str, *args: object, **kwargs: object) -> None:
        ...

    def error(self, msg: str, *args: object, **kwargs: object) -> None:
        ...


class Output(Protocol):
    """Operator-facing progress text, one line per call."""

    def line(self, text: str) -> None:
        ...


class ControlPlane(Protocol):
    """Cluster control-plane operations used by the deploy engine.

    Failures are reported as :class:`swarm_deployer.errors.ControlPlaneError`
    subclasses, except where a method documents a more specific error.
    """

    async def list_services(self, name: str) -> list[ServiceHandle]:
        """Services whose name matches ``name`` (the filter may be a prefix match)."""
        ...

    async def create_service(self, spec: ServiceSpec) -> str:
        ...

    async def update_service(self, service_id: str, version: int, spec: ServiceSpec) -> None:
        """Raises :class:`swarm_deployer.errors.UpdateConflict` for a stale ``version``."""
        ...

    async def remove_service(self, service_id: str) -> None:
        ...

    async def inspect_service(self, service_id: str) -> ServiceStatus:
        ...

    async def list_tasks(self, service_id: str) -> list[TaskSummary]:
        ...

    async def create_secret(self, name: str, data: bytes) -> str:
        ...

    async def ensure_network(self, name: str) -> bool:
        """Create an attachable overlay network unless it exists; True if created."""
        ...

    def events(self, event_type: str) -> AsyncIterator[ContainerEvent]:
        """Cluster-wide event subscription filtered by event type."""
        ...

    async def inspect_container(self, container_id: str) -> ContainerHealth:
        ...


class ProxyWriter(Protocol):
    """Maintains per-application reverse proxy configuration fragments."""

    async def add(self, app_id: str, routes: Sequence[ProxyRoute], upstream: str) -> None:
        ...

    async def remove(self, app_id: str) -> None:
        ...


class SecretNamer(Protocol):
    """Generates control-plane names for newly created secrets."""

    def name_for(self, key: str) -> str:
        ...


class CancellationSource(Protocol):
    """Anything that can be awaited until cancellation is requested."""

    @property
    def is_cancelled(self) -> bool:
        ...

    async def wait(self) -> None:
        ...

