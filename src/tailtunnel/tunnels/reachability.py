"""Pre-flight TCP checks: target reachability and local port availability."""

import asyncio
import contextlib
import socket

from ..common.logging import get_logger
from .models import PortClosed, Reachable, ReachabilityResult, Unreachable

logger = get_logger(__name__)

PROBE_TIMEOUT = 3.0


async def probe_target(
    host: str, port: int, timeout: float = PROBE_TIMEOUT
) -> ReachabilityResult:
    """Classify ``host:port`` with a bounded TCP connection attempt.

    - ``Reachable``: handshake succeeded; the connection is closed without
      sending anything.
    - ``PortClosed``: the host refused the connection (RST).
    - ``Unreachable``: timeout, resolution failure, no route or any other
      error, with a human-readable reason.
    """
    address = f"{host}:{port}"
    logger.debug("Checking target reachability", target=address)
    try:
        result = await asyncio.wait_for(_connect(host, port), timeout)
    except TimeoutError:
        result = Unreachable("Connection timed out")

    if isinstance(result, Reachable):
        logger.info("Target reachable", target=address)
    elif isinstance(result, PortClosed):
        logger.info("Target host reachable but port closed", target=address)
    else:
        logger.warning("Target unreachable", target=address, reason=result.reason)
    return result


async def _connect(host: str, port: int) -> ReachabilityResult:
    loop = asyncio.get_running_loop()
    try:
        infos = await loop.getaddrinfo(host, port, type=socket.SOCK_STREAM)
    except (OSError, UnicodeError) as e:
        # UnicodeError: name the idna codec cannot encode (empty or oversized label)
        return Unreachable(str(e))
    if not infos:
        return Unreachable(f"No addresses found for {host}")

    last_error: OSError | None = None
    for _family, _type, _proto, _canonname, sockaddr in infos:
        try:
            _reader, writer = await asyncio.open_connection(sockaddr[0], sockaddr[1])
        except OSError as e:
            last_error = e
            continue
        writer.close()
        with contextlib.suppress(OSError):
            await writer.wait_closed()
        return Reachable()

    if isinstance(last_error, ConnectionRefusedError):
        return PortClosed()
    return Unreachable(str(last_error))


def is_port_available(port: int, host: str = "0.0.0.0") -> bool:
    """Check whether a TCP listener could bind ``port`` right now."""
    with contextlib.closing(socket.socket(socket.AF_INET, socket.SOCK_STREAM)) as sock:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((host, port))
        except OSError:
            return False
    return True
