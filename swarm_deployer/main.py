"""Composition root wiring adapters into the application services."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import timedelta

from swarm_deployer.adapters.caddy import CaddyProxyWriter
from swarm_deployer.adapters.docker import DockerControlPlane
from swarm_deployer.adapters.time import SystemClock
from swarm_deployer.application.ports import Output
from swarm_deployer.application.services.deployment_service import DeploymentService
from swarm_deployer.application.services.event_watcher import EventWatcher
from swarm_deployer.application.services.info_service import InfoService
from swarm_deployer.application.services.reconciler import Reconciler
from swarm_deployer.application.services.rollout_monitor import RolloutMonitor
from swarm_deployer.application.services.secret_provisioner import (
    SecretProvisioner,
    TimestampSecretNamer,
)
from swarm_deployer.application.services.spec_builder import build_proxy_spec
from swarm_deployer.application.services.wait_coordinator import WaitCoordinator
from swarm_deployer.config import Settings
from swarm_deployer.docker_client import SwarmClient

logger = logging.getLogger("swarm_deployer")


@dataclass(slots=True)
class Application:
    deployment_service: DeploymentService
    info_service: InfoService


@asynccontextmanager
async def open_application(settings: Settings, output: Output) -> AsyncIterator[Application]:
    """Connect to Docker and yield the wired services, closing the client afterwards."""
    swarm_client = await asyncio.to_thread(SwarmClient, base_url=settings.docker_host)
    control_plane = DockerControlPlane(swarm_client)

    watcher = EventWatcher(
        control_plane, output, logger, retry_interval=settings.poll_interval_seconds
    )
    monitor = RolloutMonitor(
        control_plane, output, logger, poll_interval=settings.poll_interval_seconds
    )
    update_monitor = timedelta(seconds=settings.update_monitor_seconds)
    deployment_service = DeploymentService(
        control_plane=control_plane,
        secret_provisioner=SecretProvisioner(
            control_plane, TimestampSecretNamer(SystemClock()), logger
        ),
        reconciler=Reconciler(control_plane, output, logger),
        wait_coordinator=WaitCoordinator(watcher, monitor, logger),
        proxy_writer=CaddyProxyWriter(
            swarm_client,
            service_name=settings.proxy_service_name,
            sites_dir=settings.proxy_sites_dir,
        ),
        output=output,
        logger=logger,
        internal_network=settings.internal_network,
        public_network=settings.public_network,
        update_monitor=update_monitor,
        proxy_spec=build_proxy_spec(
            settings.proxy_service_name,
            image=settings.proxy_image,
            network=settings.public_network,
            sites_dir=settings.proxy_sites_dir,
            monitor=update_monitor,
        ),
    )
    try:
        yield Application(
            deployment_service=deployment_service,
            info_service=InfoService(control_plane),
        )
    finally:
        swarm_client.close()
