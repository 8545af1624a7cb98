"""Tunnel models and API schemas using Pydantic for type safety and validation."""

import uuid
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from ..common.exceptions import ApiMessage

PORT_CLOSED_WARNING = "api.warning.port_closed"


def new_tunnel_id() -> str:
    """Generate an opaque, collision-resistant tunnel identifier."""
    return str(uuid.uuid4())


class Tunnel(BaseModel):
    """A local port forwarded to a remote host:port.

    Instances are immutable; the controller replaces stored records with
    ``model_copy(update=...)`` instead of mutating them.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1, description="Unique tunnel identifier")
    name: str = Field(description="Human readable tunnel name")
    local_port: int = Field(ge=0, le=65535, description="Port the forwarder listens on")
    target_host: str = Field(description="Host traffic is forwarded to")
    target_port: int = Field(ge=0, le=65535, description="Port on the target host")
    enabled: bool = Field(description="Whether a forwarder should be running")
    pid: int | None = Field(
        default=None,
        exclude=True,
        description="Forwarder process id; runtime only, never serialized",
    )
    warning_id: str | None = Field(
        default=None, description="Key of the last non-fatal reachability condition"
    )

    @property
    def is_running(self) -> bool:
        return self.pid is not None

    def with_pid(self, pid: int | None) -> "Tunnel":
        return self.model_copy(update={"pid": pid})

    def disabled(self) -> "Tunnel":
        """Copy with the forwarder marked as not wanted and not running."""
        return self.model_copy(update={"enabled": False, "pid": None})


class TunnelListItem(Tunnel):
    """Tunnel as returned by the listing endpoint."""

    connection_url: str | None = Field(
        default=None, description="<hostname>:<local_port>, only when enabled"
    )

    @classmethod
    def from_tunnel(cls, tunnel: Tunnel, hostname: str, **extra: Any) -> "TunnelListItem":
        return cls(
            **tunnel.model_dump(),
            connection_url=connection_url_for(tunnel, hostname),
            **extra,
        )


class TunnelResponse(TunnelListItem):
    """Tunnel returned from create/update, with an optional soft warning."""

    warning: ApiMessage | None = Field(default=None, description="Non-fatal condition")


def connection_url_for(tunnel: Tunnel, hostname: str) -> str | None:
    """Build ``<hostname>:<local_port>`` for enabled tunnels, else None."""
    if not tunnel.enabled:
        return None
    return f"{hostname}:{tunnel.local_port}"


class CreateTunnelRequest(BaseModel):
    """Body of POST /api/tunnels."""

    name: str
    local_port: int = Field(ge=0, le=65535)
    target_host: str
    target_port: int = Field(ge=0, le=65535)
    enabled: bool = True


class UpdateTunnelRequest(BaseModel):
    """Body of PUT /api/tunnels/{id}; every field is optional."""

    name: str | None = None
    local_port: int | None = Field(default=None, ge=0, le=65535)
    target_host: str | None = None
    target_port: int | None = Field(default=None, ge=0, le=65535)
    enabled: bool | None = None


class TestConnectionRequest(BaseModel):
    """Body of POST /api/test."""

    __test__ = False

    target_host: str
    target_port: int = Field(ge=0, le=65535)


class TestConnectionResponse(BaseModel):
    __test__ = False

    success: bool
    log: str


class ConfigResponse(BaseModel):
    hostname: str
    version: str


@dataclass(frozen=True)
class Reachable:
    """TCP handshake with the target succeeded."""


@dataclass(frozen=True)
class PortClosed:
    """Target host answered with a reset; nothing listens on the port."""


@dataclass(frozen=True)
class Unreachable:
    """Target host could not be contacted at all."""

    reason: str


ReachabilityResult = Reachable | PortClosed | Unreachable
