"""Caddy-backed reverse proxy configuration."""

from __future__ import annotations

import asyncio
import io
import logging
import tarfile
from pathlib import Path
from typing import Optional, Sequence

from jinja2 import Environment, FileSystemLoader

from swarm_deployer.application.ports import ProxyWriter
from swarm_deployer.application.services.spec_builder import PROXY_CADDYFILE
from swarm_deployer.docker_client import SwarmClient
from swarm_deployer.errors import ControlPlaneError, ProxyConfigError
from swarm_deployer.models import ProxyRoute

logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).resolve().parent.parent / "proxy_templates"


class CaddyProxyWriter(ProxyWriter):
    """Writes one site fragment per application into the running Caddy container.

    The Caddyfile is expected to ``import`` every ``*.conf`` file in
    ``sites_dir``; each write or removal is followed by ``caddy reload``.
    """

    def __init__(
        self,
        client: SwarmClient,
        *,
        service_name: str,
        sites_dir: str = "/etc/caddy/sites",
        template_dir: Optional[Path] = None,
    ):
        self._client = client
        self._service_name = service_name
        self._sites_dir = sites_dir
        self._template_env = Environment(
            loader=FileSystemLoader(template_dir or TEMPLATE_DIR),
            autoescape=False,
        )

    def render(self, routes: Sequence[ProxyRoute], upstream: str) -> str:
        template = self._template_env.get_template("site.conf.j2")
        return template.render(routes=routes, upstream=upstream)

    async def add(self, app_id: str, routes: Sequence[ProxyRoute], upstream: str) -> None:
        content = self.render(routes, upstream)
        await asyncio.to_thread(self._write_fragment, app_id, content)

    async def remove(self, app_id: str) -> None:
        await asyncio.to_thread(self._remove_fragment, app_id)

    def _write_fragment(self, app_id: str, content: str) -> None:
        container_id = self._container_id()
        self._run(container_id, ["mkdir", "-p", self._sites_dir])
        try:
            self._client.put_archive(container_id, self._sites_dir, _tar_file(f"{app_id}.conf", content))
        except ControlPlaneError as exc:
            raise ProxyConfigError(f"failed to write proxy config for {app_id}: {exc}") from exc
        logger.info("Wrote proxy config for %s", app_id)
        self._reload(container_id)

    def _remove_fragment(self, app_id: str) -> None:
        container_id = self._container_id()
        try:
            self._run(container_id, ["rm", "-f", f"{self._sites_dir}/{app_id}.conf"])
        except ProxyConfigError as exc:
            logger.warning("Failed to remove proxy config for %s: %s", app_id, exc)
        self._reload(container_id)

    def _reload(self, container_id: str) -> None:
        self._run(container_id, ["caddy", "reload", "--config", PROXY_CADDYFILE])

    def _run(self, container_id: str, command: list[str]) -> str:
        try:
            exit_code, output = self._client.exec_in_container(container_id, command)
        except ControlPlaneError as exc:
            raise ProxyConfigError(f"{' '.join(command)} failed: {exc}") from exc
        if exit_code != 0:
            raise ProxyConfigError(f"{' '.join(command)} exited with code {exit_code}: {output}")
        return output

    def _container_id(self) -> str:
        try:
            tasks = self._client.list_tasks(self._service_name, desired_state="running")
        except ControlPlaneError as exc:
            raise ProxyConfigError(f"proxy service {self._service_name} not reachable: {exc}") from exc
        for task in tasks:
            if task.container_id:
                return task.container_id
        raise ProxyConfigError(f"no running tasks found for proxy service {self._service_name}")


def _tar_file(name: str, content: str) -> bytes:
    data = content.encode("utf-8")
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w") as archive:
        info = tarfile.TarInfo(name=name)
        info.size = len(data)
        info.mode = 0o644
        archive.addfile(info, io.BytesIO(data))
    return buffer.getvalue()
