"""Tests for the tunnel registry and reader/writer-locked store."""

import asyncio

import pytest

from tailtunnel.common.exceptions import TunnelRegistryError
from tailtunnel.tunnels.models import Tunnel
from tailtunnel.tunnels.store import ReadWriteLock, TunnelRegistry, TunnelStore


def _tunnel(tunnel_id: str, local_port: int, enabled: bool = True) -> Tunnel:
    return Tunnel(
        id=tunnel_id,
        name=tunnel_id,
        local_port=local_port,
        target_host="10.0.0.5",
        target_port=22,
        enabled=enabled,
    )


class TestTunnelRegistry:
    """Test suite for TunnelRegistry component."""

    def test_registry_starts_empty(self):
        registry = TunnelRegistry()
        assert len(registry) == 0
        assert registry.snapshot() == ()

    def test_append_and_index_of(self):
        registry = TunnelRegistry()
        registry.append(_tunnel("a", 1000))
        registry.append(_tunnel("b", 1001))

        assert registry.index_of("b") == 1
        assert registry.index_of("missing") is None

    def test_append_duplicate_id_raises_error(self):
        registry = TunnelRegistry()
        registry.append(_tunnel("a", 1000))

        with pytest.raises(TunnelRegistryError, match="already exists"):
            registry.append(_tunnel("a", 2000))

    def test_remove_preserves_order(self):
        """Removal is positional, not swap-with-last."""
        registry = TunnelRegistry()
        for index, tunnel_id in enumerate("abcd"):
            registry.append(_tunnel(tunnel_id, 1000 + index))

        removed = registry.remove(1)

        assert removed.id == "b"
        assert [t.id for t in registry.snapshot()] == ["a", "c", "d"]

    def test_claims_port_includes_disabled_tunnels(self):
        registry = TunnelRegistry()
        registry.append(_tunnel("a", 1000, enabled=False))

        assert registry.claims_port(1000)
        assert not registry.claims_port(1001)

    def test_claims_port_can_exclude_self(self):
        registry = TunnelRegistry()
        registry.append(_tunnel("a", 1000))
        registry.append(_tunnel("b", 1001))

        assert not registry.claims_port(1000, exclude_index=0)
        assert registry.claims_port(1001, exclude_index=0)

    def test_replace_requires_same_id(self):
        registry = TunnelRegistry()
        registry.append(_tunnel("a", 1000))

        registry.replace(0, _tunnel("a", 1000).with_pid(7))
        assert registry.get(0).pid == 7

        with pytest.raises(TunnelRegistryError):
            registry.replace(0, _tunnel("b", 1000))

    def test_reset_replaces_contents(self):
        registry = TunnelRegistry()
        registry.append(_tunnel("a", 1000))
        registry.reset([_tunnel("x", 1), _tunnel("y", 2)])

        assert [t.id for t in registry.snapshot()] == ["x", "y"]


class TestTunnelStore:
    """Test guarded access to the canonical list."""

    @pytest.mark.asyncio
    async def test_read_yields_snapshot(self):
        store = TunnelStore([_tunnel("a", 1000)])

        async with store.read() as tunnels:
            assert isinstance(tunnels, tuple)
            assert tunnels[0].id == "a"

    @pytest.mark.asyncio
    async def test_write_mutations_visible_to_readers(self):
        store = TunnelStore()

        async with store.write() as registry:
            registry.append(_tunnel("a", 1000))

        async with store.read() as tunnels:
            assert [t.id for t in tunnels] == ["a"]


class TestReadWriteLock:
    """Test reader/writer exclusion semantics."""

    @pytest.mark.asyncio
    async def test_readers_share_the_lock(self):
        lock = ReadWriteLock()

        async with lock.read():
            async with lock.read():
                assert lock.readers == 2

    @pytest.mark.asyncio
    async def test_writer_excludes_readers(self):
        lock = ReadWriteLock()
        order: list[str] = []

        async def reader() -> None:
            async with lock.read():
                order.append("read")

        async with lock.write():
            task = asyncio.create_task(reader())
            await asyncio.sleep(0.01)
            assert order == []
            order.append("write-done")

        await task
        assert order == ["write-done", "read"]

    @pytest.mark.asyncio
    async def test_writers_are_serialized(self):
        lock = ReadWriteLock()
        active = 0
        peak = 0

        async def writer() -> None:
            nonlocal active, peak
            async with lock.write():
                active += 1
                peak = max(peak, active)
                await asyncio.sleep(0.005)
                active -= 1

        await asyncio.gather(*(writer() for _ in range(5)))
        assert peak == 1

    @pytest.mark.asyncio
    async def test_waiting_writer_blocks_new_readers(self):
        lock = ReadWriteLock()
        order: list[str] = []

        async def writer() -> None:
            async with lock.write():
                order.append("write")

        async def late_reader() -> None:
            async with lock.read():
                order.append("late-read")

        async with lock.read():
            writer_task = asyncio.create_task(writer())
            await asyncio.sleep(0.01)
            reader_task = asyncio.create_task(late_reader())
            await asyncio.sleep(0.01)
            assert order == []

        await asyncio.gather(writer_task, reader_task)
        assert order == ["write", "late-read"]

    @pytest.mark.asyncio
    async def test_cancelled_writer_releases_waiting_readers(self):
        lock = ReadWriteLock()
        order: list[str] = []

        async def writer() -> None:
            async with lock.write():
                order.append("write")

        async def late_reader() -> None:
            async with lock.read():
                order.append("late-read")

        async with lock.read():
            writer_task = asyncio.create_task(writer())
            await asyncio.sleep(0.01)
            reader_task = asyncio.create_task(late_reader())
            await asyncio.sleep(0.01)
            writer_task.cancel()
            await asyncio.sleep(0.01)
            assert order == ["late-read"]

        await reader_task
        assert not lock.write_locked
