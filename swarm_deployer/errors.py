"""Exception hierarchy for deployment operations."""

from __future__ import annotations


class DeployError(Exception):
    """Base class for errors that abort a deploy, destroy or info call."""


class InvalidUpdateOrder(DeployError):
    """Raised when the requested update order is not supported."""

    def __init__(self, order: str):
        self.order = order
        super().__init__(f"invalid update order: {order!r} (expected 'start_first' or 'stop_first')")


class SecretFileError(DeployError):
    """Raised when a file-backed secret cannot be read."""

    def __init__(self, key: str, path: str, cause: Exception):
        self.key = key
        self.path = path
        self.cause = cause
        super().__init__(f"failed to read secret file {path} for '{key}': {cause}")


class SecretCreationFailed(DeployError):
    """Raised when the control plane rejects a secret.

    Secrets created earlier in the same call are left in place.
    """

    def __init__(self, key: str, cause: Exception):
        self.key = key
        self.cause = cause
        super().__init__(f"creating secret '{key}' failed: {cause}")


class ServiceCreationFailed(DeployError):
    """Raised when a new service cannot be created."""


class ServiceUpdateFailed(DeployError):
    """Raised when an existing service cannot be updated."""


class UpdateConflict(ServiceUpdateFailed):
    """Raised when an update was submitted with a stale version token."""

    def __init__(self, service: str, cause: Exception):
        self.service = service
        self.cause = cause
        super().__init__(
            f"service '{service}' was modified concurrently, re-run the deploy: {cause}"
        )


class ServiceNotFound(DeployError):
    """Raised when a named service does not exist."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"service '{name}' not found")


class ProxyConfigError(DeployError):
    """Raised when the reverse proxy configuration cannot be written or reloaded."""


class ControlPlaneError(DeployError):
    """A control-plane call failed."""


class PollInspectionError(ControlPlaneError):
    """Inspecting a service while waiting for its rollout failed."""


class EventFeedError(ControlPlaneError):
    """The container event subscription failed."""


class TaskLookupFailed(ControlPlaneError):
    """Listing tasks for rollback diagnostics failed."""
