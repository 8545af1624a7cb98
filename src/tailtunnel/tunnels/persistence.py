"""JSON file persistence for the tunnel list."""

import asyncio
from pathlib import Path

from pydantic import TypeAdapter, ValidationError

from ..common.exceptions import PersistenceError
from ..common.logging import get_logger
from .models import Tunnel

logger = get_logger(__name__)

_TUNNEL_LIST = TypeAdapter(list[Tunnel])


class TunnelRepository:
    """Loads and saves the tunnel list as a JSON array.

    Loading never fails: a missing or corrupt file yields an empty list so
    the service can always boot. Saving overwrites the file in place.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)

    async def load(self) -> list[Tunnel]:
        """Read persisted tunnels, falling back to an empty list."""
        try:
            raw = await asyncio.to_thread(self.path.read_bytes)
        except FileNotFoundError:
            logger.info("No tunnel file, starting with empty list", path=str(self.path))
            return []
        except OSError as e:
            logger.warning(
                "Could not read tunnel file, starting with empty list",
                path=str(self.path),
                error=str(e),
            )
            return []

        try:
            tunnels = _TUNNEL_LIST.validate_json(raw)
        except ValidationError as e:
            logger.warning(
                "Tunnel file is invalid, starting with empty list",
                path=str(self.path),
                error_count=e.error_count(),
            )
            return []

        # process ids do not survive a restart
        tunnels = [tunnel.with_pid(None) for tunnel in tunnels]
        logger.info("Loaded tunnels", count=len(tunnels), path=str(self.path))
        return tunnels

    async def save(self, tunnels: list[Tunnel] | tuple[Tunnel, ...]) -> None:
        """Overwrite the tunnel file with ``tunnels``.

        Raises:
            PersistenceError: If the file cannot be written
        """
        payload = _TUNNEL_LIST.dump_json(list(tunnels), indent=2, exclude_none=True)
        try:
            await asyncio.to_thread(self.path.write_bytes, payload)
        except OSError as e:
            raise PersistenceError(f"Failed to write {self.path}: {e}") from e
        logger.info("Persisted tunnels", count=len(tunnels), path=str(self.path))
