"""Pydantic models representing deployer domain objects."""

from __future__ import annotations

import re
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

UpdateOrderType = Literal["start_first", "stop_first"]
UpdateStateType = Literal[
    "updating",
    "paused",
    "completed",
    "rollback_started",
    "rollback_paused",
    "rollback_completed",
]
OutcomeStatusType = Literal[
    "success",
    "paused",
    "rolled_back",
    "rollback_paused",
    "cancelled",
    "context_cancelled",
    "failed",
]

_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")
# ISO 8601 durations and plain seconds are left to pydantic.
_ISO_OR_SECONDS = re.compile(r"P.*|\d+(?:\.\d+)?")
_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


def parse_duration(raw: str) -> timedelta:
    """Parse a Go-style duration such as ``"1m30s"`` or ``"500ms"``."""
    text = raw.strip()
    if text in {"0", ""}:
        return timedelta(0)
    position = 0
    seconds = 0.0
    for match in _DURATION_PART.finditer(text):
        if match.start() != position:
            break
        seconds += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        position = match.end()
    if position != len(text):
        raise ValueError(f"invalid duration: {raw!r}")
    return timedelta(seconds=seconds)


class HealthCheckConfig(BaseModel):
    """Container health check as written in the app description."""

    test: list[str] = Field(default_factory=list)
    interval: timedelta = timedelta(0)
    timeout: timedelta = timedelta(0)
    start_period: timedelta = timedelta(0)
    start_interval: timedelta = timedelta(0)
    retries: int = 0

    @field_validator("interval", "timeout", "start_period", "start_interval", mode="before")
    @classmethod
    def _parse_go_duration(cls, value: Any) -> Any:
        if isinstance(value, str) and not _ISO_OR_SECONDS.fullmatch(value.strip()):
            return parse_duration(value)
        return value


class PublicConfig(BaseModel):
    address: str = ""
    target_port: int = 0


class DeployConfig(BaseModel):
    order: str = "stop_first"


class AppConfig(BaseModel):
    """Declarative description of an application to deploy."""

    name: str = Field(..., min_length=1)
    image: str = Field(..., min_length=1)
    replicas: int = Field(0, ge=0)
    env: dict[str, str] = Field(default_factory=dict)
    labels: dict[str, str] = Field(default_factory=dict)
    secrets: dict[str, str] = Field(default_factory=dict)
    volumes: dict[str, str] = Field(default_factory=dict)
    healthcheck: HealthCheckConfig = Field(default_factory=HealthCheckConfig)
    public: PublicConfig = Field(default_factory=PublicConfig)
    deploy: DeployConfig = Field(default_factory=DeployConfig)

    @classmethod
    def load(cls, path: Path) -> "AppConfig":
        """Read an app description from a JSON document."""
        return cls.model_validate_json(Path(path).read_text(encoding="utf-8"))


class HealthCheck(BaseModel):
    model_config = ConfigDict(frozen=True)

    test: tuple[str, ...]
    interval: timedelta = timedelta(0)
    timeout: timedelta = timedelta(0)
    start_period: timedelta = timedelta(0)
    start_interval: timedelta = timedelta(0)
    retries: int = 0


class VolumeMount(BaseModel):
    model_config = ConfigDict(frozen=True)

    source: str
    target: str
    type: Literal["volume"] = "volume"


class SecretFileTarget(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    uid: str = "0"
    gid: str = "0"
    mode: int = 0o444


class SecretRef(BaseModel):
    """A created secret and where it is mounted inside the container."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    key: str
    file: SecretFileTarget


class UpdatePolicy(BaseModel):
    model_config = ConfigDict(frozen=True)

    order: UpdateOrderType
    parallelism: int = 1
    failure_action: Literal["rollback", "pause", "continue"] = "rollback"
    max_failure_ratio: float = 0.0
    monitor: timedelta = timedelta(seconds=10)


class PortBinding(BaseModel):
    model_config = ConfigDict(frozen=True)

    target: int
    published: int
    protocol: Literal["tcp", "udp"] = "tcp"


class LogDriver(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = "local"
    options: dict[str, str] = Field(
        default_factory=lambda: {"max-size": "100m", "max-file": "3"}
    )


class ServiceSpec(BaseModel):
    """Immutable service description submitted to the control plane."""

    model_config = ConfigDict(frozen=True)

    name: str
    image: str
    env: dict[str, str] = Field(default_factory=dict)
    labels: dict[str, str] = Field(default_factory=dict)
    secrets: tuple[SecretRef, ...] = ()
    healthcheck: Optional[HealthCheck] = None
    mounts: tuple[VolumeMount, ...] = ()
    networks: tuple[str, ...] = ()
    replicas: int = 1
    update_policy: UpdatePolicy
    rollback_policy: UpdatePolicy
    command: tuple[str, ...] = ()
    ports: tuple[PortBinding, ...] = ()
    log_driver: LogDriver = Field(default_factory=LogDriver)


class ServiceHandle(BaseModel):
    """Identifies a service; ``version`` is only set for updates."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    version: Optional[int] = None


class ServiceStatus(BaseModel):
    """Snapshot of a service as returned by an inspect call."""

    id: str
    name: str
    version: Optional[int] = None
    update_state: Optional[str] = None
    update_message: Optional[str] = None
    image: Optional[str] = None
    env: dict[str, str] = Field(default_factory=dict)
    labels: dict[str, str] = Field(default_factory=dict)
    secret_names: list[str] = Field(default_factory=list)
    healthcheck: Optional[HealthCheck] = None


class TaskSummary(BaseModel):
    id: str
    service_id: str
    state: str
    desired_state: Optional[str] = None
    error: Optional[str] = None
    container_id: Optional[str] = None
    created_at: Optional[datetime] = None


class ContainerEvent(BaseModel):
    """A container lifecycle or health event from the cluster feed."""

    action: str
    container_id: str
    container_name: str = ""
    service_id: Optional[str] = None


class ContainerHealth(BaseModel):
    status: Optional[str] = None
    error: Optional[str] = None
    log: list[str] = Field(default_factory=list)

    @property
    def latest_output(self) -> Optional[str]:
        return self.log[-1] if self.log else None


class ProxyRoute(BaseModel):
    address: str
    target_port: int = 0


class DeployOutcome(BaseModel):
    """Resolution of a single deploy call."""

    status: OutcomeStatusType
    service_id: Optional[str] = None
    reason: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == "success"

    @property
    def cancelled(self) -> bool:
        return self.status in ("cancelled", "context_cancelled")


class ServiceInfo(BaseModel):
    """Human-oriented summary of a deployed service."""

    name: str
    status: str = "Not Deployed"
    health_error: Optional[str] = None
    image: Optional[str] = None
    env: dict[str, str] = Field(default_factory=dict)
    labels: dict[str, str] = Field(default_factory=dict)
    secrets: list[str] = Field(default_factory=list)
    healthcheck: Optional[HealthCheck] = None
    update_state: Optional[str] = None
    update_message: Optional[str] = None
