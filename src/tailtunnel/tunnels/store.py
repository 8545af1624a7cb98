"""In-memory tunnel store guarded by an asyncio reader/writer lock."""

import asyncio
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager

from pydantic import BaseModel, Field

from ..common.exceptions import TunnelRegistryError
from ..common.logging import get_logger
from .models import Tunnel

logger = get_logger(__name__)


class ReadWriteLock:
    """Many concurrent readers or a single writer.

    Writers are preferred: once a writer is waiting, new readers queue
    behind it so a steady stream of reads cannot starve mutations.
    """

    def __init__(self) -> None:
        self._cond = asyncio.Condition()
        self._readers = 0
        self._writer = False
        self._waiting_writers = 0

    @property
    def readers(self) -> int:
        return self._readers

    @property
    def write_locked(self) -> bool:
        return self._writer

    @asynccontextmanager
    async def read(self) -> AsyncIterator[None]:
        async with self._cond:
            await self._cond.wait_for(
                lambda: not self._writer and self._waiting_writers == 0
            )
            self._readers += 1
        try:
            yield
        finally:
            async with self._cond:
                self._readers -= 1
                self._cond.notify_all()

    @asynccontextmanager
    async def write(self) -> AsyncIterator[None]:
        async with self._cond:
            self._waiting_writers += 1
            try:
                await self._cond.wait_for(
                    lambda: not self._writer and self._readers == 0
                )
            except BaseException:
                # readers parked behind this writer must re-check
                self._waiting_writers -= 1
                self._cond.notify_all()
                raise
            self._waiting_writers -= 1
            self._writer = True
        try:
            yield
        finally:
            async with self._cond:
                self._writer = False
                self._cond.notify_all()


class TunnelRegistry(BaseModel):
    """Ordered tunnel list with positional add/replace/remove operations."""

    tunnels: list[Tunnel] = Field(default_factory=list, description="Tunnels in creation order")

    def __len__(self) -> int:
        return len(self.tunnels)

    def index_of(self, tunnel_id: str) -> int | None:
        """Position of the tunnel with ``tunnel_id``, or None."""
        for index, tunnel in enumerate(self.tunnels):
            if tunnel.id == tunnel_id:
                return index
        return None

    def get(self, index: int) -> Tunnel:
        return self.tunnels[index]

    def claims_port(self, port: int, exclude_index: int | None = None) -> bool:
        """Whether any tunnel, enabled or not, already owns ``port``.

        Args:
            port: Local port to look for
            exclude_index: Position to skip (the tunnel being updated)
        """
        return any(
            index != exclude_index and tunnel.local_port == port
            for index, tunnel in enumerate(self.tunnels)
        )

    def append(self, tunnel: Tunnel) -> None:
        """Add tunnel at the end of the list.

        Raises:
            TunnelRegistryError: If a tunnel with the same id is already stored
        """
        if self.index_of(tunnel.id) is not None:
            raise TunnelRegistryError(f"Tunnel with ID '{tunnel.id}' already exists")
        self.tunnels.append(tunnel)
        logger.debug("Added tunnel to registry", tunnel_id=tunnel.id)

    def replace(self, index: int, tunnel: Tunnel) -> None:
        if self.tunnels[index].id != tunnel.id:
            raise TunnelRegistryError(
                f"Cannot replace tunnel '{self.tunnels[index].id}' with '{tunnel.id}'"
            )
        self.tunnels[index] = tunnel

    def remove(self, index: int) -> Tunnel:
        """Remove by position; the order of the remaining tunnels is kept."""
        tunnel = self.tunnels.pop(index)
        logger.debug("Removed tunnel from registry", tunnel_id=tunnel.id)
        return tunnel

    def reset(self, tunnels: Iterable[Tunnel]) -> None:
        self.tunnels = list(tunnels)

    def snapshot(self) -> tuple[Tunnel, ...]:
        return tuple(self.tunnels)


class TunnelStore:
    """Owner of the canonical tunnel list.

    All access goes through :meth:`read` (shared, yields an immutable
    snapshot) or :meth:`write` (exclusive, yields the registry itself).
    """

    def __init__(self, tunnels: Iterable[Tunnel] | None = None) -> None:
        self._registry = TunnelRegistry(tunnels=list(tunnels or []))
        self._lock = ReadWriteLock()

    @property
    def lock(self) -> ReadWriteLock:
        return self._lock

    @asynccontextmanager
    async def read(self) -> AsyncIterator[tuple[Tunnel, ...]]:
        async with self._lock.read():
            yield self._registry.snapshot()

    @asynccontextmanager
    async def write(self) -> AsyncIterator[TunnelRegistry]:
        async with self._lock.write():
            yield self._registry
