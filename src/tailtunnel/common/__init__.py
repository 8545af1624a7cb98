"""Common utilities and shared functionality."""

from .exceptions import (
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
    TunnelRegistryError,
    ValidationFailedError,
)
from .logging import (
    bind_request_context,
    clear_request_context,
    get_logger,
    setup_logging,
)
from .utils import (
    MAX_PORT,
    MIN_PORT,
    is_loopback_host,
    is_self_loop,
    validate_non_empty_string,
    validate_port,
)

__all__ = [
    # Exceptions
    "ApiMessage",
    "TailTunnelError",
    "ProcessError",
    "PersistenceError",
    "TunnelRegistryError",
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
    "bind_request_context",
    "clear_request_context",
    # Utils
    "validate_port",
    "validate_non_empty_string",
    "is_loopback_host",
    "is_self_loop",
    "MIN_PORT",
    "MAX_PORT",
]
