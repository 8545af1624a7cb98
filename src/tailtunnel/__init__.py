"""tailtunnel - TCP port-forwarding tunnels orchestrated over socat."""

__version__ = "0.1.0"

from .common.exceptions import (  # noqa: E402
    ApiMessage,
    ForwarderStartError,
    HostUnreachableError,
    PersistenceError,
    PortConflictError,
    ProcessError,
    SelfLoopError,
    TailTunnelError,
    TunnelApiError,
    TunnelNotFoundError,
    ValidationFailedError,
)
from .common.logging import get_logger, setup_logging  # noqa: E402
from .config import Settings, get_settings  # noqa: E402
from .process import ConnectivityTester, ForwarderProcessManager  # noqa: E402
from .tunnels import (  # noqa: E402
    CreateTunnelRequest,
    PortClosed,
    Reachable,
    TunnelController,
    TunnelRepository,
    TunnelStore,
    Unreachable,
    UpdateTunnelRequest,
    probe_target,
)

# Package level logger
logger = get_logger(__name__)


__all__ = [
    "__version__",
    # Lifecycle
    "TunnelController",
    "TunnelStore",
    "TunnelRepository",
    "CreateTunnelRequest",
    "UpdateTunnelRequest",
    # Processes
    "ForwarderProcessManager",
    "ConnectivityTester",
    # Reachability
    "probe_target",
    "Reachable",
    "PortClosed",
    "Unreachable",
    # Settings
    "Settings",
    "get_settings",
    # Exceptions
    "ApiMessage",
    "TailTunnelError",
    "ProcessError",
    "PersistenceError",
    "TunnelApiError",
    "ValidationFailedError",
    "SelfLoopError",
    "PortConflictError",
    "HostUnreachableError",
    "ForwarderStartError",
    "TunnelNotFoundError",
    # Logging
    "get_logger",
    "setup_logging",
]
