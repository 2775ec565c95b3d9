"""Docker-based adapter for the control-plane port."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import AsyncIterator, Callable

from swarm_deployer.application.ports import ControlPlane
from swarm_deployer.docker_client import SwarmClient, parse_event
from swarm_deployer.models import (
    ContainerEvent,
    ContainerHealth,
    ServiceHandle,
    ServiceSpec,
    ServiceStatus,
    TaskSummary,
)


@dataclass(slots=True)
class DockerControlPlane(ControlPlane):
    """Runs the blocking docker SDK calls in worker threads.

    The event feed is read in consecutive ``[since, until]`` windows of
    ``event_window`` seconds. Each window's stream ends on the daemon side,
    so a reader thread is released within one window even on transports
    where the stream cannot be closed from another thread.
    """

    client: SwarmClient
    event_window: float = 2.0
    now: Callable[[], float] = field(default=time.time)

    async def list_services(self, name: str) -> list[ServiceHandle]:
        return await asyncio.to_thread(self.client.list_services, name)

    async def create_service(self, spec: ServiceSpec) -> str:
        return await asyncio.to_thread(self.client.create_service, spec)

    async def update_service(self, service_id: str, version: int, spec: ServiceSpec) -> None:
        await asyncio.to_thread(self.client.update_service, service_id, version, spec)

    async def remove_service(self, service_id: str) -> None:
        await asyncio.to_thread(self.client.remove_service, service_id)

    async def inspect_service(self, service_id: str) -> ServiceStatus:
        return await asyncio.to_thread(self.client.inspect_service, service_id)

    async def list_tasks(self, service_id: str) -> list[TaskSummary]:
        return await asyncio.to_thread(self.client.list_tasks, service_id)

    async def create_secret(self, name: str, data: bytes) -> str:
        return await asyncio.to_thread(self.client.create_secret, name, data)

    async def ensure_network(self, name: str) -> bool:
        return await asyncio.to_thread(self.client.ensure_network, name)

    async def events(self, event_type: str) -> AsyncIterator[ContainerEvent]:
        since = self.now()
        while True:
            until = since + self.event_window
            stream = await asyncio.to_thread(
                self.client.open_events, event_type, since=since, until=until
            )
            try:
                while True:
                    raw = await asyncio.to_thread(self.client.next_event, stream)
                    if raw is None:
                        break
                    event = parse_event(raw)
                    if event is not None:
                        yield event
            finally:
                self.client.close_events(stream)
            since = until

    async def inspect_container(self, container_id: str) -> ContainerHealth:
        return await asyncio.to_thread(self.client.inspect_container, container_id)
