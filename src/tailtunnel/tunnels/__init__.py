"""Tunnel orchestration: model, store, persistence, pre-flight checks and lifecycle."""

from .controller import RestoreSummary, TunnelController
from .models import (
    PORT_CLOSED_WARNING,
    ConfigResponse,
    CreateTunnelRequest,
    PortClosed,
    Reachable,
    ReachabilityResult,
    TestConnectionRequest,
    TestConnectionResponse,
    Tunnel,
    TunnelListItem,
    TunnelResponse,
    Unreachable,
    UpdateTunnelRequest,
    connection_url_for,
    new_tunnel_id,
)
from .persistence import TunnelRepository
from .reachability import is_port_available, probe_target
from .store import ReadWriteLock, TunnelRegistry, TunnelStore

__all__ = [
    # Models
    "Tunnel",
    "TunnelListItem",
    "TunnelResponse",
    "CreateTunnelRequest",
    "UpdateTunnelRequest",
    "TestConnectionRequest",
    "TestConnectionResponse",
    "ConfigResponse",
    "Reachable",
    "PortClosed",
    "Unreachable",
    "ReachabilityResult",
    "PORT_CLOSED_WARNING",
    "connection_url_for",
    "new_tunnel_id",
    # State
    "ReadWriteLock",
    "TunnelRegistry",
    "TunnelStore",
    "TunnelRepository",
    # Checks
    "probe_target",
    "is_port_available",
    # Lifecycle
    "TunnelController",
    "RestoreSummary",
]
