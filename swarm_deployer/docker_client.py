"""Docker Swarm control-plane integration."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Any, Iterator, Optional

import docker
from docker.errors import APIError, DockerException, NotFound
from docker.types import (
    ContainerSpec,
    DriverConfig,
    EndpointSpec,
    Healthcheck,
    Mount,
    NetworkAttachmentConfig,
    RollbackConfig,
    SecretReference,
    ServiceMode,
    TaskTemplate,
    UpdateConfig,
)

from .errors import (
    ControlPlaneError,
    EventFeedError,
    PollInspectionError,
    TaskLookupFailed,
    UpdateConflict,
)
from .models import (
    ContainerEvent,
    ContainerHealth,
    HealthCheck,
    ServiceHandle,
    ServiceSpec,
    ServiceStatus,
    TaskSummary,
    UpdatePolicy,
)

logger = logging.getLogger(__name__)

SERVICE_ID_ATTRIBUTE = "com.docker.swarm.service.id"
_ORDERS = {"start_first": "start-first", "stop_first": "stop-first"}


class SwarmClient:
    """Blocking wrapper over the docker SDK's low-level API client.

    All docker SDK failures surface as :class:`ControlPlaneError` subclasses.
    """

    def __init__(self, *, base_url: Optional[str] = None, client: Optional[docker.DockerClient] = None):
        try:
            if client is not None:
                self._client = client
            elif base_url:
                self._client = docker.DockerClient(base_url=base_url)
            else:
                self._client = docker.from_env()
            self._client.ping()
            logger.debug("Connected to Docker daemon")
        except DockerException as exc:
            logger.warning("Docker connection failed: %s", exc)
            raise ControlPlaneError(f"cannot connect to Docker: {exc}") from exc
        self._api = self._client.api

    def close(self) -> None:
        self._client.close()

    def list_services(self, name: str) -> list[ServiceHandle]:
        with _translate_errors("listing services"):
            services = self._api.services(filters={"name": name})
        return [
            ServiceHandle(
                id=service["ID"],
                name=service.get("Spec", {}).get("Name", ""),
                version=service.get("Version", {}).get("Index"),
            )
            for service in services
        ]

    def create_service(self, spec: ServiceSpec) -> str:
        with _translate_errors("creating service"):
            response = self._api.create_service(**service_kwargs(spec))
        for warning in response.get("Warnings") or []:
            logger.warning("Docker warning for %s: %s", spec.name, warning)
        return response["ID"]

    def update_service(self, service_id: str, version: int, spec: ServiceSpec) -> None:
        try:
            response = self._api.update_service(service_id, version, **service_kwargs(spec))
        except APIError as exc:
            if _is_version_conflict(exc):
                raise UpdateConflict(spec.name, exc) from exc
            raise ControlPlaneError(f"updating service: {exc}") from exc
        except DockerException as exc:
            raise ControlPlaneError(f"updating service: {exc}") from exc
        for warning in (response or {}).get("Warnings") or []:
            logger.warning("Docker warning for %s: %s", spec.name, warning)

    def remove_service(self, service_id: str) -> None:
        with _translate_errors("removing service"):
            self._api.remove_service(service_id)

    def inspect_service(self, service_id: str) -> ServiceStatus:
        with _translate_errors("inspecting service", PollInspectionError):
            attrs = self._api.inspect_service(service_id)
        return parse_service_status(attrs)

    def list_tasks(self, service_id: str, *, desired_state: Optional[str] = None) -> list[TaskSummary]:
        filters = {"service": service_id}
        if desired_state:
            filters["desired-state"] = desired_state
        with _translate_errors("listing tasks", TaskLookupFailed):
            tasks = self._api.tasks(filters=filters)
        return [parse_task(task) for task in tasks]

    def create_secret(self, name: str, data: bytes) -> str:
        with _translate_errors("creating secret"):
            response = self._api.create_secret(name, data)
        return response["ID"]

    def ensure_network(self, name: str) -> bool:
        with _translate_errors("preparing network"):
            existing = self._api.networks(names=[name])
            if any(network.get("Name") == name for network in existing):
                return False
            self._api.create_network(name, driver="overlay", attachable=True)
        logger.info("Created overlay network %s", name)
        return True

    def open_events(
        self, event_type: str, *, since: Optional[float] = None, until: Optional[float] = None
    ) -> Any:
        """Start a blocking, decoded event stream; close it to stop reading.

        With ``until`` set the daemon ends the stream at that time, which
        bounds how long a reader can stay blocked on it.
        """
        with _translate_errors("subscribing to events", EventFeedError):
            return self._api.events(
                since=_event_time(since),
                until=_event_time(until),
                filters={"type": event_type},
                decode=True,
            )

    @staticmethod
    def close_events(stream: Any) -> None:
        """Close an event stream, unblocking its reader where the transport allows."""
        try:
            stream.close()
            return
        except DockerException as exc:
            # ssh:// transports refuse CancellableStream.close()
            logger.debug("Closing event stream failed (%s); closing the response", exc)
        response = getattr(stream, "_response", None)
        if response is None:
            return
        try:
            response.close()
        except (OSError, DockerException) as exc:
            logger.debug("Closing event response failed: %s", exc)

    @staticmethod
    def next_event(stream: Any) -> Optional[dict[str, Any]]:
        """Next raw event, or None once the stream has ended."""
        try:
            return next(stream)
        except StopIteration:
            return None
        except (DockerException, OSError, ValueError) as exc:
            raise EventFeedError(f"reading events: {exc}") from exc

    def inspect_container(self, container_id: str) -> ContainerHealth:
        with _translate_errors("inspecting container"):
            attrs = self._api.inspect_container(container_id)
        return parse_container_health(attrs)

    def exec_in_container(self, container_id: str, command: list[str]) -> tuple[int, str]:
        with _translate_errors("executing in container"):
            exec_id = self._api.exec_create(container_id, command)["Id"]
            output = self._api.exec_start(exec_id)
            exit_code = self._api.exec_inspect(exec_id).get("ExitCode")
        text = output.decode("utf-8", "replace") if isinstance(output, bytes) else str(output or "")
        return int(exit_code or 0), text.strip()

    def put_archive(self, container_id: str, path: str, data: bytes) -> None:
        with _translate_errors("copying into container"):
            self._api.put_archive(container_id, path, data)


@contextmanager
def _translate_errors(
    action: str, error_type: type[ControlPlaneError] = ControlPlaneError
) -> Iterator[None]:
    try:
        yield
    except NotFound as exc:
        raise error_type(f"{action}: not found: {exc.explanation or exc}") from exc
    except DockerException as exc:
        raise error_type(f"{action}: {exc}") from exc


def _is_version_conflict(exc: APIError) -> bool:
    if exc.status_code == 409:
        return True
    explanation = str(exc.explanation or exc).lower()
    return "out of sequence" in explanation


def _event_time(value: Optional[float]) -> Optional[str]:
    return None if value is None else f"{value:.9f}"


def _nanoseconds(value: timedelta) -> int:
    return int(value.total_seconds() * 1_000_000_000)


def _seconds(value: Optional[int]) -> timedelta:
    return timedelta(microseconds=(value or 0) / 1000)


def _update_config(policy: UpdatePolicy, config_type: type[UpdateConfig]) -> UpdateConfig:
    return config_type(
        parallelism=policy.parallelism,
        failure_action=policy.failure_action,
        monitor=_nanoseconds(policy.monitor),
        max_failure_ratio=policy.max_failure_ratio,
        order=_ORDERS[policy.order],
    )


def _healthcheck(check: Optional[HealthCheck]) -> Optional[Healthcheck]:
    if check is None:
        return None
    result = Healthcheck(
        test=list(check.test),
        interval=_nanoseconds(check.interval),
        timeout=_nanoseconds(check.timeout),
        retries=check.retries,
        start_period=_nanoseconds(check.start_period),
    )
    if check.start_interval:
        result["StartInterval"] = _nanoseconds(check.start_interval)
    return result


def service_kwargs(spec: ServiceSpec) -> dict[str, Any]:
    """Keyword arguments for ``APIClient.create_service``/``update_service``."""
    container_spec = ContainerSpec(
        image=spec.image,
        command=list(spec.command) or None,
        env=dict(spec.env),
        mounts=[Mount(target=m.target, source=m.source, type=m.type) for m in spec.mounts],
        secrets=[
            SecretReference(
                secret_id=ref.id,
                secret_name=ref.name,
                filename=ref.file.name,
                uid=ref.file.uid,
                gid=ref.file.gid,
                mode=ref.file.mode,
            )
            for ref in spec.secrets
        ],
        healthcheck=_healthcheck(spec.healthcheck),
    )
    task_template = TaskTemplate(
        container_spec=container_spec,
        log_driver=DriverConfig(spec.log_driver.name, options=dict(spec.log_driver.options)),
        networks=[NetworkAttachmentConfig(target=network) for network in spec.networks],
    )
    kwargs: dict[str, Any] = {
        "task_template": task_template,
        "name": spec.name,
        "labels": dict(spec.labels),
        "mode": ServiceMode("replicated", replicas=spec.replicas),
        "update_config": _update_config(spec.update_policy, UpdateConfig),
        "rollback_config": _update_config(spec.rollback_policy, RollbackConfig),
    }
    if spec.ports:
        kwargs["endpoint_spec"] = EndpointSpec(
            ports=[
                {
                    "Protocol": port.protocol,
                    "TargetPort": port.target,
                    "PublishedPort": port.published,
                    "PublishMode": "ingress",
                }
                for port in spec.ports
            ]
        )
    return kwargs


def parse_service_status(attrs: dict[str, Any]) -> ServiceStatus:
    spec = attrs.get("Spec", {})
    container_spec = spec.get("TaskTemplate", {}).get("ContainerSpec", {})
    update_status = attrs.get("UpdateStatus")
    state: Optional[str] = None
    if isinstance(update_status, dict):
        state = update_status.get("State") or None
    env: dict[str, str] = {}
    for entry in container_spec.get("Env") or []:
        key, _, value = entry.partition("=")
        env[key] = value
    raw_check = container_spec.get("Healthcheck") or {}
    healthcheck = None
    if raw_check.get("Test"):
        healthcheck = HealthCheck(
            test=tuple(raw_check["Test"]),
            interval=_seconds(raw_check.get("Interval")),
            timeout=_seconds(raw_check.get("Timeout")),
            start_period=_seconds(raw_check.get("StartPeriod")),
            start_interval=_seconds(raw_check.get("StartInterval")),
            retries=raw_check.get("Retries") or 0,
        )
    return ServiceStatus(
        id=attrs.get("ID", ""),
        name=spec.get("Name", ""),
        version=attrs.get("Version", {}).get("Index"),
        update_state=state,
        update_message=_extract_update_message(attrs),
        image=container_spec.get("Image"),
        env=env,
        labels=spec.get("Labels") or {},
        secret_names=[secret.get("SecretName", "") for secret in container_spec.get("Secrets") or []],
        healthcheck=healthcheck,
    )


def parse_task(task: dict[str, Any]) -> TaskSummary:
    status = task.get("Status", {})
    return TaskSummary(
        id=task.get("ID", ""),
        service_id=task.get("ServiceID", ""),
        state=status.get("State", ""),
        desired_state=task.get("DesiredState"),
        error=status.get("Err") or None,
        container_id=(status.get("ContainerStatus") or {}).get("ContainerID") or None,
        created_at=_parse_timestamp(task.get("CreatedAt")),
    )


def parse_event(raw: dict[str, Any]) -> Optional[ContainerEvent]:
    actor = raw.get("Actor") or {}
    attributes = actor.get("Attributes") or {}
    action = raw.get("Action") or raw.get("status")
    container_id = actor.get("ID") or raw.get("id")
    if not action or not container_id:
        return None
    return ContainerEvent(
        action=action,
        container_id=container_id,
        container_name=attributes.get("name", ""),
        service_id=attributes.get(SERVICE_ID_ATTRIBUTE),
    )


def parse_container_health(attrs: dict[str, Any]) -> ContainerHealth:
    state = attrs.get("State") or {}
    health = state.get("Health") or {}
    return ContainerHealth(
        status=health.get("Status") or None,
        error=state.get("Error") or None,
        log=[entry.get("Output", "").strip() for entry in health.get("Log") or []],
    )


def _parse_timestamp(raw: Optional[str]) -> Optional[datetime]:
    if not raw:
        return None
    try:
        cleaned = raw.replace("Z", "+00:00")
        if "." in cleaned:
            head, tail = cleaned.split(".", 1)
            if "+" in tail:
                fraction, tz = tail.split("+", 1)
                cleaned = f"{head}.{fraction[:6]}+{tz}"
            elif "-" in tail:
                fraction, tz = tail.split("-", 1)
                cleaned = f"{head}.{fraction[:6]}-{tz}"
            else:
                cleaned = f"{head}.{tail[:6]}"
        return datetime.fromisoformat(cleaned)
    except ValueError:
        logger.debug("Unable to parse docker timestamp: %s", raw)
        return None


def _extract_update_message(attrs: dict[str, Any]) -> Optional[str]:
    update_status = attrs.get("UpdateStatus")
    if isinstance(update_status, dict):
        message = update_status.get("Message")
        if isinstance(message, str) and message.strip():
            return message.strip()
    return None
