"""Polls a service's update status until the rollout reaches a terminal state."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Optional

from swarm_deployer.application.cancellation import DoneSignal
from swarm_deployer.application.ports import ControlPlane, Logger, Output
from swarm_deployer.errors import ControlPlaneError, TaskLookupFailed
from swarm_deployer.models import DeployOutcome, ServiceHandle, ServiceStatus

PREFIX = "swarm-deployer"

# States that show an update or rollback is under way during this call.
IN_PROGRESS_STATES = frozenset({"updating", "rollback_started", "rollback_paused"})
FAILED_TASK_STATES = frozenset({"failed", "rejected"})

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


class RolloutMonitor:
    """Turns the sequence of polled update states into a single outcome.

    Only changes between consecutive observed states are acted on. A
    ``rollback_completed`` state is honoured only once an in-progress state
    has been seen by this monitor: a fresh deploy may inherit that state
    from an earlier failed rollout before its own update starts.

    There is no timeout; callers stop the monitor by cancelling its task.
    """

    def __init__(
        self,
        control_plane: ControlPlane,
        output: Output,
        logger: Logger,
        *,
        poll_interval: float = 0.5,
    ):
        self._control_plane = control_plane
        self._output = output
        self._logger = logger
        self._poll_interval = poll_interval

    async def run(self, handle: ServiceHandle, done: DoneSignal) -> None:
        last_state: Optional[str] = None
        seen_in_progress = False

        while True:
            await asyncio.sleep(self._poll_interval)
            try:
                status = await self._control_plane.inspect_service(handle.id)
            except ControlPlaneError as exc:
                self._output.line(f"{PREFIX}: service inspection error: {exc}")
                self._logger.warning("Inspecting %s failed: %s", handle.id, exc)
                continue

            state = status.update_state
            if state is None or state == last_state:
                continue
            self._logger.debug("Service %s update state %s -> %s", handle.id, last_state, state)

            outcome = await self._transition(handle, status, seen_in_progress)
            if state in IN_PROGRESS_STATES:
                seen_in_progress = True
            last_state = state

            if outcome is not None:
                if not done.set(outcome):
                    self._logger.debug("Outcome for %s already signalled", handle.id)
                return

    async def run_until_running(self, handle: ServiceHandle, done: DoneSignal) -> None:
        """Signal success once the service has a running task.

        Used for services created by this tool for which the control plane
        reports no update status.
        """
        while True:
            await asyncio.sleep(self._poll_interval)
            try:
                tasks = await self._control_plane.list_tasks(handle.id)
            except ControlPlaneError as exc:
                self._output.line(f"{PREFIX}: task lookup error: {exc}")
                self._logger.warning("Listing tasks of %s failed: %s", handle.id, exc)
                continue
            if any(task.state == "running" and task.desired_state == "running" for task in tasks):
                self._output.line(f"{PREFIX}: service '{handle.name}' is running.")
                if not done.set(DeployOutcome(status="success", service_id=handle.id)):
                    self._logger.debug("Outcome for %s already signalled", handle.id)
                return

    async def _transition(
        self, handle: ServiceHandle, status: ServiceStatus, seen_in_progress: bool
    ) -> Optional[DeployOutcome]:
        name = status.name or handle.name
        state = status.update_state

        if state == "completed":
            self._output.line(f"{PREFIX}: service '{name}' updated successfully.")
            return DeployOutcome(status="success", service_id=handle.id)
        if state == "paused":
            self._output.line(f"{PREFIX}: service '{name}' update paused.")
            return DeployOutcome(
                status="paused", service_id=handle.id, reason=status.update_message
            )
        if state == "rollback_paused":
            self._output.line(f"{PREFIX}: service '{name}' rollback paused.")
            return DeployOutcome(
                status="rollback_paused", service_id=handle.id, reason=status.update_message
            )
        if state == "rollback_completed":
            if not seen_in_progress:
                self._logger.debug(
                    "Ignoring rollback_completed on %s left over from a previous rollout", name
                )
                return None
            self._output.line(f"{PREFIX}: service '{name}' rolled back successfully.")
            return DeployOutcome(
                status="rolled_back", service_id=handle.id, reason=status.update_message
            )
        if state == "rollback_started":
            self._output.line(
                f"{PREFIX}: service '{name}' update failed, rolling back. "
                f"message: {status.update_message or ''}"
            )
            await self._report_task_error(handle)
        return None

    async def _report_task_error(self, handle: ServiceHandle) -> None:
        try:
            error = await self.latest_task_error(handle.id)
        except TaskLookupFailed as exc:
            self._output.line(f"{PREFIX}: failed to get task error: {exc}")
            self._logger.warning("Task lookup for %s failed: %s", handle.id, exc)
            return
        if error:
            self._output.line(f"{PREFIX}: task error: {error}")

    async def latest_task_error(self, service_id: str) -> Optional[str]:
        """Error text of the most recently created failed or rejected task."""
        try:
            tasks = await self._control_plane.list_tasks(service_id)
        except ControlPlaneError as exc:
            raise TaskLookupFailed(f"listing tasks: {exc}") from exc

        failed = [task for task in tasks if task.state in FAILED_TASK_STATES]
        if not failed:
            return None
        latest = max(failed, key=lambda task: task.created_at or _EPOCH)
        return latest.error
