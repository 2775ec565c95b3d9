"""Renders container lifecycle and health events for one service."""

from __future__ import annotations

import asyncio
from typing import Optional

from swarm_deployer.application.ports import ControlPlane, Logger, Output
from swarm_deployer.errors import ControlPlaneError
from swarm_deployer.models import ContainerEvent

PREFIX = "swarm-deployer"
SOURCE = "swarm"

_MESSAGES = {
    "create": "creating container {name}...",
    "start": "starting container {name}...",
    "die": "container {name} stopped.",
    "health_status: healthy": "container {name} is healthy.",
    "health_status: unhealthy": "container {name} is unhealthy.",
}


class EventWatcher:
    """Follows the cluster-wide container event feed for a single service.

    The feed is not scoped to a service, so events are matched on their
    service id here. Watching never decides the rollout outcome.
    """

    def __init__(
        self,
        control_plane: ControlPlane,
        output: Output,
        logger: Logger,
        *,
        retry_interval: float = 0.5,
    ):
        self._control_plane = control_plane
        self._output = output
        self._logger = logger
        self._retry_interval = retry_interval

    async def watch(self, service_id: str) -> None:
        """Run until cancelled, re-subscribing after feed errors."""
        while True:
            try:
                async for event in self._control_plane.events("container"):
                    await self.handle_event(event, service_id)
            except ControlPlaneError as exc:
                self._output.line(f"{PREFIX}: event error: {exc}")
                self._logger.warning("Event feed failed: %s", exc)
            else:
                self._logger.debug("Event feed ended; re-subscribing")
            await asyncio.sleep(self._retry_interval)

    async def handle_event(self, event: ContainerEvent, service_id: str) -> None:
        if event.service_id != service_id:
            return
        template = _MESSAGES.get(event.action)
        if template is None:
            return
        self._output.line(f"{SOURCE}: " + template.format(name=event.container_name))
        if event.action == "health_status: unhealthy":
            message = await self._health_error(event.container_id)
            if message:
                self._output.line(f"{PREFIX}: health check error:\n {message}")

    async def _health_error(self, container_id: str) -> Optional[str]:
        try:
            health = await self._control_plane.inspect_container(container_id)
        except ControlPlaneError as exc:
            self._logger.debug("Inspecting container %s failed: %s", container_id, exc)
            return None
        if health.status != "unhealthy":
            return None
        return health.latest_output
