"""Configuration management for the swarm deployer."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv


@dataclass(slots=True)
class Settings:
    """Deployer configuration loaded from environment variables."""

    docker_host: Optional[str]
    poll_interval_seconds: float
    update_monitor_seconds: float
    internal_network: str
    public_network: str
    proxy_service_name: str
    proxy_image: str
    proxy_sites_dir: str
    log_level: str

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "Settings":
        """Create settings from environment variables (optionally loading a .env file)."""
        if env_file:
            load_dotenv(env_file, override=True)
        else:
            load_dotenv(override=False)

        poll_interval = _to_float("POLL_INTERVAL_SECONDS", "0.5")
        if poll_interval <= 0:
            raise ValueError("POLL_INTERVAL_SECONDS must be greater than zero")

        return cls(
            docker_host=os.environ.get("DOCKER_HOST") or None,
            poll_interval_seconds=poll_interval,
            update_monitor_seconds=_to_float("UPDATE_MONITOR_SECONDS", "10"),
            internal_network=_network_name("INTERNAL_NETWORK", "swarm-deployer-internal"),
            public_network=_network_name("PUBLIC_NETWORK", "swarm-deployer-public"),
            proxy_service_name=os.environ.get("PROXY_SERVICE_NAME", "swarm-deployer-caddy"),
            proxy_image=os.environ.get("PROXY_IMAGE", "caddy:latest"),
            proxy_sites_dir=os.environ.get("PROXY_SITES_DIR", "/etc/caddy/sites").rstrip("/"),
            log_level=_log_level(),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings.from_env()


def _to_float(name: str, default: str) -> float:
    raw = os.environ.get(name, default).strip()
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc


def _network_name(name: str, default: str) -> str:
    value = os.environ.get(name, default).strip()
    if not value:
        raise ValueError(f"{name} environment variable must not be empty")
    return value


def _log_level() -> str:
    value = os.environ.get("LOG_LEVEL", "WARNING").strip().upper()
    if not isinstance(logging.getLevelName(value), int):
        raise ValueError(f"LOG_LEVEL must be a logging level name, got {value!r}")
    return value
