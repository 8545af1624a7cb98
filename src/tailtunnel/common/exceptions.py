"""Custom exceptions for the tunnel service."""

from typing import Any

from pydantic import BaseModel, Field


class ApiMessage(BaseModel):
    """Structured message with a stable i18n key and interpolation values."""

    id: str = Field(min_length=1, description="Machine-readable message key")
    params: dict[str, Any] = Field(
        default_factory=dict, description="Values for client-side interpolation"
    )


class TailTunnelError(Exception):
    """Base exception for all tunnel service errors."""
    pass


class ProcessError(TailTunnelError):
    """Raised when a forwarder process fails to start or dies during startup."""
    pass


class PersistenceError(TailTunnelError):
    """Raised when the tunnel list cannot be written to disk."""
    pass


class TunnelRegistryError(TailTunnelError):
    """Raised for inconsistent registry operations."""
    pass


class TunnelApiError(TailTunnelError):
    """Lifecycle rejection carrying a structured message for API clients."""

    status_code: int = 500

    def __init__(
        self,
        message_id: str,
        params: dict[str, Any] | None = None,
        *,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message_id)
        self.message_id = message_id
        self.params = params or {}
        if status_code is not None:
            self.status_code = status_code

    @property
    def message(self) -> ApiMessage:
        return ApiMessage(id=self.message_id, params=self.params)


class ValidationFailedError(TunnelApiError):
    """Malformed tunnel fields (empty name or host, zero port)."""

    status_code = 400


class SelfLoopError(TunnelApiError):
    """Tunnel would forward to its own local listener."""

    status_code = 400

    def __init__(self, port: int) -> None:
        super().__init__("api.error.self_loop", {"port": port})


class PortConflictError(TunnelApiError):
    """Local port is bound on the host or already claimed by another tunnel."""

    status_code = 409


class HostUnreachableError(TunnelApiError):
    """Target host did not answer the reachability probe."""

    status_code = 502

    def __init__(self, host: str, reason: str) -> None:
        super().__init__("api.error.host_unreachable", {"host": host, "reason": reason})


class ForwarderStartError(TunnelApiError):
    """Forwarder process could not be started."""

    status_code = 500

    def __init__(self, detail: str) -> None:
        super().__init__("api.error.socat_failed", {"detail": detail})


class TunnelNotFoundError(TunnelApiError):
    """No tunnel with the requested id."""

    status_code = 404

    def __init__(self, tunnel_id: str) -> None:
        super().__init__("api.error.tunnel_not_found", {"id": tunnel_id})
