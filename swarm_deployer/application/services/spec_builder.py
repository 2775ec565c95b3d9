"""Translate an app description into a cluster service specification."""

from __future__ import annotations

from datetime import timedelta
from typing import Optional, Sequence, cast

from swarm_deployer.errors import InvalidUpdateOrder
from swarm_deployer.models import (
    AppConfig,
    HealthCheck,
    HealthCheckConfig,
    PortBinding,
    SecretRef,
    ServiceSpec,
    UpdateOrderType,
    UpdatePolicy,
    VolumeMount,
)

DEFAULT_UPDATE_ORDER: UpdateOrderType = "stop_first"
_VALID_ORDERS = ("start_first", "stop_first")

PROXY_CADDYFILE = "/etc/caddy/Caddyfile"
PROXY_DATA_VOLUME = "caddy_data"
PROXY_SITES_VOLUME = "caddy_sites"


def resolve_update_order(order: Optional[str]) -> UpdateOrderType:
    """Return the update order to use, defaulting to stop-first."""
    if not order:
        return DEFAULT_UPDATE_ORDER
    if order not in _VALID_ORDERS:
        raise InvalidUpdateOrder(order)
    return cast(UpdateOrderType, order)


def resolve_networks(app: AppConfig, *, internal: str, public: str) -> list[str]:
    """The internal network always; the public one only for publicly addressed apps."""
    networks = [internal]
    if app.public.address:
        networks.append(public)
    return networks


def build_healthcheck(config: HealthCheckConfig) -> Optional[HealthCheck]:
    if not config.test:
        return None
    return HealthCheck(
        test=tuple(config.test),
        interval=config.interval,
        timeout=config.timeout,
        start_period=config.start_period,
        start_interval=config.start_interval,
        retries=config.retries,
    )


def build_mounts(volumes: dict[str, str]) -> list[VolumeMount]:
    return [VolumeMount(source=source, target=target) for source, target in sorted(volumes.items())]


def build_service_spec(
    app: AppConfig,
    *,
    secrets: Sequence[SecretRef],
    networks: Sequence[str],
    monitor: timedelta = timedelta(seconds=10),
) -> ServiceSpec:
    """Build the spec submitted on create and update.

    Updates replace one task at a time and roll back on failure; a failed
    rollback pauses. Raises :class:`InvalidUpdateOrder` before anything else.
    """
    order = resolve_update_order(app.deploy.order)
    update_policy = UpdatePolicy(order=order, failure_action="rollback", monitor=monitor)
    rollback_policy = UpdatePolicy(order=order, failure_action="pause", monitor=monitor)

    return ServiceSpec(
        name=app.name,
        image=app.image,
        env=dict(app.env),
        labels=dict(app.labels),
        secrets=tuple(secrets),
        healthcheck=build_healthcheck(app.healthcheck),
        mounts=tuple(build_mounts(app.volumes)),
        networks=tuple(networks),
        replicas=app.replicas or 1,
        update_policy=update_policy,
        rollback_policy=rollback_policy,
    )


def build_proxy_spec(
    name: str,
    *,
    image: str,
    network: str,
    sites_dir: str,
    monitor: timedelta = timedelta(seconds=10),
) -> ServiceSpec:
    """Caddy service serving every ``*.conf`` fragment in ``sites_dir`` on ports 80 and 443."""
    command = (
        "/bin/sh",
        "-c",
        f"echo 'import {sites_dir}/*.conf' > {PROXY_CADDYFILE}"
        f" && caddy run --config {PROXY_CADDYFILE} --adapter caddyfile",
    )
    ports = tuple(
        PortBinding(target=port, published=port, protocol=protocol)
        for protocol in ("tcp", "udp")
        for port in (80, 443)
    )
    return ServiceSpec(
        name=name,
        image=image,
        mounts=(
            VolumeMount(source=PROXY_DATA_VOLUME, target="/data"),
            VolumeMount(source=PROXY_SITES_VOLUME, target=sites_dir),
        ),
        networks=(network,),
        command=command,
        ports=ports,
        update_policy=UpdatePolicy(order=DEFAULT_UPDATE_ORDER, monitor=monitor),
        rollback_policy=UpdatePolicy(
            order=DEFAULT_UPDATE_ORDER, failure_action="pause", monitor=monitor
        ),
    )
