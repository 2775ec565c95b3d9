"""Deployment orchestration service."""

from __future__ import annotations

from datetime import timedelta
from typing import Optional

from swarm_deployer.application.ports import (
    CancellationSource,
    ControlPlane,
    Logger,
    Output,
    ProxyWriter,
)
from swarm_deployer.application.services.reconciler import PREFIX, Reconciler, find_service
from swarm_deployer.application.services.secret_provisioner import (
    SecretProvisioner,
    parse_secret_payloads,
)
from swarm_deployer.application.services.spec_builder import (
    build_service_spec,
    resolve_networks,
    resolve_update_order,
)
from swarm_deployer.application.services.wait_coordinator import WaitCoordinator
from swarm_deployer.errors import (
    ControlPlaneError,
    DeployError,
    ProxyConfigError,
    ServiceNotFound,
)
from swarm_deployer.models import AppConfig, DeployOutcome, ProxyRoute, ServiceSpec


class DeploymentService:
    """Coordinates a deploy via defined ports."""

    def __init__(
        self,
        *,
        control_plane: ControlPlane,
        secret_provisioner: SecretProvisioner,
        reconciler: Reconciler,
        wait_coordinator: WaitCoordinator,
        proxy_writer: ProxyWriter,
        output: Output,
        logger: Logger,
        internal_network: str,
        public_network: str,
        update_monitor: timedelta = timedelta(seconds=10),
        proxy_spec: Optional[ServiceSpec] = None,
    ):
        self._control_plane = control_plane
        self._secrets = secret_provisioner
        self._reconciler = reconciler
        self._waiter = wait_coordinator
        self._proxy = proxy_writer
        self._output = output
        self._logger = logger
        self._internal_network = internal_network
        self._public_network = public_network
        self._update_monitor = update_monitor
        self._proxy_spec = proxy_spec

    async def deploy(
        self,
        app: AppConfig,
        *,
        interrupt: Optional[CancellationSource] = None,
        context: Optional[CancellationSource] = None,
    ) -> DeployOutcome:
        """Create or update the service for ``app`` and wait for the rollout.

        Validation and control-plane failures raise :class:`DeployError`;
        every other result, including cancellation, is returned as an outcome.
        Cancellation requested before the service is submitted leaves it
        untouched.
        """
        resolve_update_order(app.deploy.order)
        payloads = parse_secret_payloads(app.secrets)
        networks = resolve_networks(
            app, internal=self._internal_network, public=self._public_network
        )

        await self._prepare_networks(networks)
        if app.public.address and self._proxy_spec is not None:
            stopped = await self._ensure_proxy_service(interrupt, context)
            if stopped is not None:
                return stopped

        stopped = self._stop_requested(app.name, interrupt, context)
        if stopped is not None:
            return stopped
        secret_refs = await self._secrets.provision(
            payloads, should_stop=lambda: _is_cancelled(interrupt) or _is_cancelled(context)
        )
        spec = build_service_spec(
            app, secrets=secret_refs, networks=networks, monitor=self._update_monitor
        )

        stopped = self._stop_requested(app.name, interrupt, context)
        if stopped is not None:
            return stopped
        handle, _ = await self._reconciler.reconcile(spec)
        self._logger.info("Waiting for rollout of %s (%s)", handle.name, handle.id)

        outcome = await self._waiter.wait(handle, interrupt=interrupt, context=context)
        self._logger.info("Deploy of %s resolved as %s", app.name, outcome.status)

        if outcome.succeeded and app.public.address:
            self._output.line(f"{PREFIX}: configuring public access for {app.public.address}")
            route = ProxyRoute(address=app.public.address, target_port=app.public.target_port)
            await self._proxy.add(app.name, [route], app.name)
        return outcome

    async def destroy(self, name: str) -> None:
        """Remove the service and its reverse proxy fragment."""
        try:
            existing = await find_service(self._control_plane, name)
        except ControlPlaneError as exc:
            raise DeployError(f"looking up service '{name}' failed: {exc}") from exc
        if existing is None:
            raise ServiceNotFound(name)

        self._output.line(f"{PREFIX}: removing service {name}...")
        try:
            await self._control_plane.remove_service(existing.id)
        except ControlPlaneError as exc:
            raise DeployError(f"failed to remove service {name}: {exc}") from exc

        self._output.line(f"{PREFIX}: removing proxy config for service {name}...")
        await self._proxy.remove(name)

    async def _ensure_proxy_service(
        self,
        interrupt: Optional[CancellationSource],
        context: Optional[CancellationSource],
    ) -> Optional[DeployOutcome]:
        """Create the proxy service when absent and wait for it to run."""
        spec = self._proxy_spec
        assert spec is not None
        try:
            existing = await find_service(self._control_plane, spec.name)
        except ControlPlaneError as exc:
            raise ProxyConfigError(f"looking up proxy service {spec.name} failed: {exc}") from exc
        if existing is not None:
            return None

        stopped = self._stop_requested(spec.name, interrupt, context)
        if stopped is not None:
            return stopped
        self._output.line(f"{PREFIX}: preparing proxy service {spec.name}...")
        handle, _ = await self._reconciler.reconcile(spec)
        outcome = await self._waiter.wait(
            handle, interrupt=interrupt, context=context, until_running=True
        )
        if outcome.cancelled:
            return outcome
        if not outcome.succeeded:
            raise ProxyConfigError(
                f"proxy service {spec.name} did not start: {outcome.reason or outcome.status}"
            )
        return None

    def _stop_requested(
        self,
        name: str,
        interrupt: Optional[CancellationSource],
        context: Optional[CancellationSource],
    ) -> Optional[DeployOutcome]:
        if _is_cancelled(interrupt):
            outcome = DeployOutcome(status="cancelled", reason="deployment cancelled")
        elif _is_cancelled(context):
            outcome = DeployOutcome(status="context_cancelled", reason="context cancelled")
        else:
            return None
        self._output.line(f"{PREFIX}: {outcome.reason}, service '{name}' not submitted.")
        return outcome

    async def _prepare_networks(self, networks: list[str]) -> None:
        for network in networks:
            try:
                created = await self._control_plane.ensure_network(network)
            except ControlPlaneError as exc:
                raise DeployError(f"preparing network {network} failed: {exc}") from exc
            if created:
                self._output.line(f"{PREFIX}: created network {network}")


def _is_cancelled(source: Optional[CancellationSource]) -> bool:
    return source is not None and source.is_cancelled
