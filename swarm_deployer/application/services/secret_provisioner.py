"""Secret provisioning for service deployments."""

from __future__ import annotations

import secrets
from pathlib import Path
from typing import Callable, Mapping, Optional

from swarm_deployer.application.ports import Clock, ControlPlane, Logger, SecretNamer
from swarm_deployer.errors import ControlPlaneError, SecretCreationFailed, SecretFileError
from swarm_deployer.models import SecretFileTarget, SecretRef

FILE_SUFFIX = "_file"


def parse_secret_payloads(raw: Mapping[str, str]) -> dict[str, bytes]:
    """Turn configured secret values into payloads.

    ``<key>_file`` entries name a local file whose contents become the
    payload for ``<key>``; other entries are used verbatim. Empty values
    are skipped.
    """
    payloads: dict[str, bytes] = {}
    for key, value in raw.items():
        if not value:
            continue
        if key.endswith(FILE_SUFFIX):
            path = Path(value).expanduser()
            try:
                payloads[key[: -len(FILE_SUFFIX)]] = path.read_bytes()
            except OSError as exc:
                raise SecretFileError(key, value, exc) from exc
        else:
            payloads[key] = value.encode("utf-8")
    return payloads


class TimestampSecretNamer(SecretNamer):
    """``<key>-<unix-timestamp>-<random hex>``.

    Secret content is immutable once created, so every deploy creates new
    secrets; the random suffix keeps same-second deploys apart.
    """

    def __init__(self, clock: Clock, *, suffix_bytes: int = 3):
        self._clock = clock
        self._suffix_bytes = suffix_bytes

    def name_for(self, key: str) -> str:
        timestamp = int(self._clock.now().timestamp())
        return f"{key}-{timestamp}-{secrets.token_hex(self._suffix_bytes)}"


class SecretProvisioner:
    """Creates secrets on the control plane and returns references to them."""

    def __init__(
        self,
        control_plane: ControlPlane,
        namer: SecretNamer,
        logger: Optional[Logger] = None,
    ):
        self._control_plane = control_plane
        self._namer = namer
        self._logger = logger

    async def provision(
        self,
        payloads: Mapping[str, bytes],
        *,
        should_stop: Optional[Callable[[], bool]] = None,
    ) -> list[SecretRef]:
        """Create one secret per non-empty payload, in key order.

        When ``should_stop`` returns True the remaining keys are skipped and
        the references created so far are returned.
        """
        refs: list[SecretRef] = []
        for key in sorted(payloads):
            if should_stop is not None and should_stop():
                break
            data = payloads[key]
            if not data:
                continue
            name = self._namer.name_for(key)
            try:
                secret_id = await self._control_plane.create_secret(name, data)
            except ControlPlaneError as exc:
                if self._logger:
                    self._logger.error(
                        "Secret %s failed after %d created: %s", key, len(refs), exc
                    )
                raise SecretCreationFailed(key, exc) from exc
            if self._logger:
                self._logger.debug("Created secret %s as %s (%s)", key, name, secret_id)
            refs.append(SecretRef(id=secret_id, name=name, key=key, file=SecretFileTarget(name=key)))
        return refs
