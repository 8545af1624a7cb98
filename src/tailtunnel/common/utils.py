"""Validation helpers shared by the forwarder manager and the controller."""

import ipaddress

MIN_PORT = 1
MAX_PORT = 65535

_LOOPBACK_NAMES = frozenset({"localhost", "::1", "0.0.0.0"})


def validate_port(port: int, port_name: str = "Port") -> None:
    """Reject anything that is not an int in 1..65535.

    Booleans are rejected even though ``bool`` subclasses ``int``.

    Raises:
        ValueError: Naming ``port_name`` and the allowed range
    """
    if (
        not isinstance(port, int)
        or isinstance(port, bool)
        or not (MIN_PORT <= port <= MAX_PORT)
    ):
        raise ValueError(f"{port_name} must be between {MIN_PORT} and {MAX_PORT}")


def validate_non_empty_string(value: str, field_name: str) -> str:
    """Return ``value`` trimmed, or raise ValueError when nothing is left."""
    trimmed = value.strip() if value else ""
    if not trimmed:
        raise ValueError(f"{field_name} cannot be empty")
    return trimmed


def is_loopback_host(host: str) -> bool:
    """Return True when ``host`` names this machine's loopback or wildcard address.

    Covers ``localhost``, all of 127.0.0.0/8, IPv6 loopback and ``0.0.0.0``.
    Hostnames other than ``localhost`` are not resolved.
    """
    normalized = host.strip().lower()
    if normalized in _LOOPBACK_NAMES:
        return True
    try:
        return ipaddress.ip_address(normalized).is_loopback
    except ValueError:
        return False


def is_self_loop(local_port: int, target_host: str, target_port: int) -> bool:
    """A tunnel whose target is its own listening socket."""
    return local_port == target_port and is_loopback_host(target_host)
