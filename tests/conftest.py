import asyncio
import logging
from typing import AsyncIterator, Optional, Sequence, Union

import pytest

from swarm_deployer.application.ports import ControlPlane, Output, ProxyWriter
from swarm_deployer.errors import ControlPlaneError
from swarm_deployer.models import (
    ContainerEvent,
    ContainerHealth,
    ProxyRoute,
    ServiceHandle,
    ServiceSpec,
    ServiceStatus,
    TaskSummary,
)

StatusStep = Union[Optional[str], Exception]


class RecordingOutput(Output):
    def __init__(self) -> None:
        self.lines: list[str] = []

    def line(self, text: str) -> None:
        self.lines.append(text)

    def matching(self, fragment: str) -> list[str]:
        return [line for line in self.lines if fragment in line]


class FakeControlPlane(ControlPlane):
    """In-memory control plane with scripted update states and an event queue."""

    def __init__(self) -> None:
        self.services: dict[str, ServiceHandle] = {}
        self.specs: dict[str, ServiceSpec] = {}
        self.status_script: list[StatusStep] = []
        self.update_message: Optional[str] = None
        self.tasks: list[TaskSummary] = []
        self.task_error: Optional[Exception] = None
        self.container_health: dict[str, ContainerHealth] = {}
        self.secret_failures: set[str] = set()
        self.update_error: Optional[Exception] = None
        self.network_names: set[str] = set()
        self.event_queue: asyncio.Queue = asyncio.Queue()

        self.list_calls: list[str] = []
        self.created: list[ServiceSpec] = []
        self.updated: list[tuple[str, int, ServiceSpec]] = []
        self.removed: list[str] = []
        self.secrets: list[tuple[str, bytes]] = []
        self.inspect_calls = 0
        self.subscriptions = 0
        self.closed_subscriptions = 0
        self._next_id = 0

    def add_service(self, name: str, version: int = 1) -> ServiceHandle:
        handle = ServiceHandle(id=f"svc-{name}", name=name, version=version)
        self.services[name] = handle
        return handle

    async def list_services(self, name: str) -> list[ServiceHandle]:
        self.list_calls.append(name)
        return [handle for key, handle in self.services.items() if key.startswith(name)]

    async def create_service(self, spec: ServiceSpec) -> str:
        self.created.append(spec)
        handle = self.add_service(spec.name, version=1)
        self.specs[handle.id] = spec
        return handle.id

    async def update_service(self, service_id: str, version: int, spec: ServiceSpec) -> None:
        if self.update_error is not None:
            raise self.update_error
        self.updated.append((service_id, version, spec))
        self.specs[service_id] = spec
        handle = self.services[spec.name]
        self.services[spec.name] = handle.model_copy(update={"version": version + 1})

    async def remove_service(self, service_id: str) -> None:
        self.removed.append(service_id)
        self.services = {k: v for k, v in self.services.items() if v.id != service_id}

    async def inspect_service(self, service_id: str) -> ServiceStatus:
        self.inspect_calls += 1
        if self.status_script:
            step = self.status_script.pop(0) if len(self.status_script) > 1 else self.status_script[0]
        else:
            step = None
        if isinstance(step, Exception):
            raise step
        spec = self.specs.get(service_id)
        return ServiceStatus(
            id=service_id,
            name=spec.name if spec else service_id.removeprefix("svc-"),
            update_state=step,
            update_message=self.update_message,
            image=spec.image if spec else None,
            env=dict(spec.env) if spec else {},
            secret_names=[ref.name for ref in spec.secrets] if spec else [],
        )

    async def list_tasks(self, service_id: str) -> list[TaskSummary]:
        if self.task_error is not None:
            raise self.task_error
        return [task for task in self.tasks if task.service_id == service_id]

    async def create_secret(self, name: str, data: bytes) -> str:
        if any(name.startswith(f"{key}-") for key in self.secret_failures):
            raise ControlPlaneError(f"secret {name} rejected")
        self.secrets.append((name, data))
        self._next_id += 1
        return f"secret-{self._next_id}"

    async def ensure_network(self, name: str) -> bool:
        if name in self.network_names:
            return False
        self.network_names.add(name)
        return True

    async def events(self, event_type: str) -> AsyncIterator[ContainerEvent]:
        self.subscriptions += 1
        try:
            while True:
                item = await self.event_queue.get()
                if isinstance(item, Exception):
                    raise item
                yield item
        finally:
            self.closed_subscriptions += 1

    async def inspect_container(self, container_id: str) -> ContainerHealth:
        if container_id not in self.container_health:
            raise ControlPlaneError(f"no such container {container_id}")
        return self.container_health[container_id]


class FakeProxyWriter(ProxyWriter):
    def __init__(self) -> None:
        self.added: list[tuple[str, list[ProxyRoute], str]] = []
        self.removed: list[str] = []

    async def add(self, app_id: str, routes: Sequence[ProxyRoute], upstream: str) -> None:
        self.added.append((app_id, list(routes), upstream))

    async def remove(self, app_id: str) -> None:
        self.removed.append(app_id)


@pytest.fixture
def control_plane() -> FakeControlPlane:
    return FakeControlPlane()


@pytest.fixture
def output() -> RecordingOutput:
    return RecordingOutput()


@pytest.fixture
def proxy_writer() -> FakeProxyWriter:
    return FakeProxyWriter()


@pytest.fixture
def app_logger() -> logging.Logger:
    return logging.getLogger("tests")

