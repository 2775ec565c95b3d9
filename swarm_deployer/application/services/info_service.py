"""Read-oriented summary of a deployed service."""

from __future__ import annotations

from swarm_deployer.application.ports import ControlPlane
from swarm_deployer.application.services.reconciler import find_service
from swarm_deployer.models import ServiceInfo, TaskSummary

_CURRENT_STATES = {"running", "starting"}


class InfoService:
    """Provides a status summary for one service."""

    def __init__(self, control_plane: ControlPlane):
        self._control_plane = control_plane

    async def describe(self, name: str) -> ServiceInfo:
        info = ServiceInfo(name=name)
        handle = await find_service(self._control_plane, name)
        if handle is None:
            return info

        status = await self._control_plane.inspect_service(handle.id)
        info.image = status.image
        info.env = status.env
        info.labels = status.labels
        info.secrets = status.secret_names
        info.healthcheck = status.healthcheck
        info.update_state = status.update_state
        info.update_message = status.update_message

        tasks = self.current_tasks(await self._control_plane.list_tasks(handle.id))
        if not tasks:
            info.status = "Deployed (no containers)"
            return info

        health_status, health_error = await self._container_status(tasks)
        info.status = f"Deployed ({health_status})"
        info.health_error = health_error or None
        return info

    @staticmethod
    def current_tasks(tasks: list[TaskSummary]) -> list[TaskSummary]:
        return [
            task
            for task in tasks
            if task.desired_state == "running" and task.state in _CURRENT_STATES
        ]

    async def _container_status(self, tasks: list[TaskSummary]) -> tuple[str, str]:
        for task in tasks:
            if not task.container_id:
                continue
            health = await self._control_plane.inspect_container(task.container_id)
            if health.status is None:
                continue
            if health.status == "unhealthy":
                return health.status, "\n".join(health.log)
            return health.status, health.error or ""
        return "unknown", ""
