"""Create-or-update reconciliation of a service spec."""

from __future__ import annotations

from typing import Optional

from swarm_deployer.application.ports import ControlPlane, Logger, Output
from swarm_deployer.errors import ControlPlaneError, ServiceCreationFailed, ServiceUpdateFailed
from swarm_deployer.models import ServiceHandle, ServiceSpec

PREFIX = "swarm-deployer"


async def find_service(control_plane: ControlPlane, name: str) -> Optional[ServiceHandle]:
    """Exact-name lookup; the control plane's name filter may also match prefixes."""
    services = await control_plane.list_services(name)
    return next((service for service in services if service.name == name), None)


class Reconciler:
    """Creates a service when absent, otherwise updates it in place."""

    def __init__(self, control_plane: ControlPlane, output: Output, logger: Logger):
        self._control_plane = control_plane
        self._output = output
        self._logger = logger

    async def reconcile(self, spec: ServiceSpec) -> tuple[ServiceHandle, str]:
        """Submit ``spec`` and return the handle to wait on plus the progress line emitted.

        The version token comes from the lookup made in this call. Stale
        tokens surface as :class:`UpdateConflict` from the control plane and
        are not retried here.
        """
        try:
            existing = await find_service(self._control_plane, spec.name)
        except ControlPlaneError as exc:
            raise ServiceUpdateFailed(f"looking up service '{spec.name}' failed: {exc}") from exc

        if existing is None:
            line = f"{PREFIX}: creating service '{spec.name}'..."
            self._output.line(line)
            try:
                service_id = await self._control_plane.create_service(spec)
            except ControlPlaneError as exc:
                raise ServiceCreationFailed(f"service creation failed: {exc}") from exc
            self._logger.info("Created service %s (%s)", spec.name, service_id)
            return ServiceHandle(id=service_id, name=spec.name), line

        if existing.version is None:
            raise ServiceUpdateFailed(f"service '{spec.name}' has no version to update against")

        line = f"{PREFIX}: updating service '{spec.name}'..."
        self._output.line(line)
        try:
            await self._control_plane.update_service(existing.id, existing.version, spec)
        except ControlPlaneError as exc:
            raise ServiceUpdateFailed(f"service update failed: {exc}") from exc
        self._logger.info(
            "Submitted update for %s (%s) at version %s", spec.name, existing.id, existing.version
        )
        return existing, line
