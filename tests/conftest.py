"""Shared pytest fixtures for tunnel service tests."""

import itertools
import stat
from collections.abc import Callable
from pathlib import Path

import pytest

from tailtunnel.common.exceptions import ProcessError
from tailtunnel.tunnels import (
    Reachable,
    ReachabilityResult,
    TunnelController,
    TunnelRepository,
    TunnelStore,
)


class FakeForwarder:
    """Stands in for ForwarderProcessManager without starting processes."""

    def __init__(self) -> None:
        self._pids = itertools.count(4000)
        self.running: dict[int, tuple[int, str, int]] = {}
        self.spawned: list[tuple[int, str, int]] = []
        self.killed: list[int] = []
        self.fail_with: str | None = None

    async def spawn(self, local_port: int, target_host: str, target_port: int) -> int:
        self.spawned.append((local_port, target_host, target_port))
        if self.fail_with is not None:
            raise ProcessError(self.fail_with)
        pid = next(self._pids)
        self.running[pid] = (local_port, target_host, target_port)
        return pid

    async def kill(self, pid: int) -> bool:
        self.killed.append(pid)
        return self.running.pop(pid, None) is not None


class FakeProber:
    """Returns a configurable reachability result and records calls."""

    def __init__(self) -> None:
        self.result: ReachabilityResult = Reachable()
        self.calls: list[tuple[str, int]] = []

    async def __call__(self, host: str, port: int) -> ReachabilityResult:
        self.calls.append((host, port))
        return self.result


class FakeTester:
    def __init__(self) -> None:
        self.result = (True, "Connection to db 5432 port [tcp/postgresql] succeeded!")
        self.calls: list[tuple[str, int]] = []

    async def run(self, target_host: str, target_port: int) -> tuple[bool, str]:
        self.calls.append((target_host, target_port))
        return self.result


@pytest.fixture
def forwarder() -> FakeForwarder:
    return FakeForwarder()


@pytest.fixture
def prober() -> FakeProber:
    return FakeProber()


@pytest.fixture
def tester() -> FakeTester:
    return FakeTester()


@pytest.fixture
def busy_ports() -> set[int]:
    """Ports the fake system-level bind check reports as taken."""
    return set()


@pytest.fixture
def tunnels_file(tmp_path: Path) -> Path:
    return tmp_path / "tunnels.json"


@pytest.fixture
def make_controller(
    forwarder: FakeForwarder,
    prober: FakeProber,
    tester: FakeTester,
    busy_ports: set[int],
    tunnels_file: Path,
) -> Callable[..., TunnelController]:
    """Factory building a controller around the fakes.

    Keyword arguments override the store or repository.
    """

    def factory(
        store: TunnelStore | None = None, repository: TunnelRepository | None = None
    ) -> TunnelController:
        return TunnelController(
            store=store or TunnelStore(),
            repository=repository or TunnelRepository(tunnels_file),
            forwarder=forwarder,  # type: ignore[arg-type]
            tester=tester,  # type: ignore[arg-type]
            hostname="tunnel-box",
            prober=prober,
            port_checker=lambda port: port not in busy_ports,
            port_release_delay=0,
        )

    return factory


@pytest.fixture
def controller(make_controller: Callable[..., TunnelController]) -> TunnelController:
    return make_controller()


@pytest.fixture
def make_script(tmp_path: Path) -> Callable[[str, str], Path]:
    """Write an executable /bin/sh script and return its path.

    Args:
        name: File name inside tmp_path
        body: Script body without the shebang line
    """

    def factory(name: str, body: str) -> Path:
        path = tmp_path / name
        path.write_text(f"#!/bin/sh\n{body}\n")
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return path

    return factory
