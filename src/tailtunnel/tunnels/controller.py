"""Tunnel lifecycle controller: create, update, delete, list, restore."""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from .. import __version__
from ..common.exceptions import (
    ApiMessage,
    ForwarderStartError,
    HostUnreachableError,
    PersistenceError,
    PortConflictError,
    ProcessError,
    SelfLoopError,
    TunnelNotFoundError,
    ValidationFailedError,
)
from ..common.logging import get_logger
from ..common.utils import is_self_loop, validate_non_empty_string
from ..process import ConnectivityTester, ForwarderProcessManager
from .models import (
    PORT_CLOSED_WARNING,
    ConfigResponse,
    CreateTunnelRequest,
    PortClosed,
    ReachabilityResult,
    TestConnectionResponse,
    Tunnel,
    TunnelListItem,
    TunnelResponse,
    Unreachable,
    UpdateTunnelRequest,
    new_tunnel_id,
)
from .persistence import TunnelRepository
from .reachability import is_port_available, probe_target
from .store import TunnelRegistry, TunnelStore

logger = get_logger(__name__)

Prober = Callable[[str, int], Awaitable[ReachabilityResult]]
PortChecker = Callable[[int], bool]

PORT_RELEASE_DELAY = 0.2

T = TypeVar("T")


@dataclass(frozen=True)
class RestoreSummary:
    total: int
    restored: int
    failed: int

    @property
    def skipped(self) -> int:
        return self.total - self.restored - self.failed


@dataclass(frozen=True)
class _Preflight:
    """Outcome of a reachability check that did not reject the operation."""

    warning_id: str | None
    warning: ApiMessage | None


class TunnelController:
    """Composes store, prober, forwarder manager and repository.

    Every mutating operation holds the store's write lock from the first
    check to the final save, so at most one configuration change is in
    flight and a port can never be handed out twice.
    """

    def __init__(
        self,
        store: TunnelStore,
        repository: TunnelRepository,
        forwarder: ForwarderProcessManager,
        tester: ConnectivityTester,
        hostname: str,
        *,
        prober: Prober = probe_target,
        port_checker: PortChecker = is_port_available,
        port_release_delay: float = PORT_RELEASE_DELAY,
    ):
        self.store = store
        self.repository = repository
        self.forwarder = forwarder
        self.tester = tester
        self.hostname = hostname
        self._prober = prober
        self._port_checker = port_checker
        self._port_release_delay = port_release_delay

    # Queries ------------------------------------------------------------
    def config(self) -> ConfigResponse:
        return ConfigResponse(hostname=self.hostname, version=__version__)

    async def list_tunnels(self) -> list[TunnelListItem]:
        async with self.store.read() as tunnels:
            return [TunnelListItem.from_tunnel(t, self.hostname) for t in tunnels]

    async def test_connection(self, target_host: str, target_port: int) -> TestConnectionResponse:
        success, log = await self.tester.run(target_host, target_port)
        return TestConnectionResponse(success=success, log=log)

    # Mutations ----------------------------------------------------------
    async def create(self, request: CreateTunnelRequest) -> TunnelResponse:
        """Validate, pre-flight and start a new tunnel.

        Nothing is added to the store unless every check passed and, for
        enabled tunnels, the forwarder is running.

        Raises:
            ValidationFailedError, SelfLoopError, PortConflictError,
            HostUnreachableError, ForwarderStartError
        """
        name, target_host = _validate_fields(
            request.name, request.target_host, request.local_port, request.target_port
        )
        if is_self_loop(request.local_port, target_host, request.target_port):
            logger.warning("Rejected self-loop tunnel", port=request.local_port)
            raise SelfLoopError(request.local_port)

        async with self.store.write() as registry:
            self._ensure_port_free(registry, request.local_port)

            tunnel = Tunnel(
                id=new_tunnel_id(),
                name=name,
                local_port=request.local_port,
                target_host=target_host,
                target_port=request.target_port,
                enabled=request.enabled,
            )

            warning: ApiMessage | None = None
            if tunnel.enabled:
                preflight = await self._preflight(tunnel.target_host, tunnel.target_port)
                warning = preflight.warning
                pid = await self._spawn(tunnel)
                tunnel = tunnel.model_copy(
                    update={"pid": pid, "warning_id": preflight.warning_id}
                )

            registry.append(tunnel)
            await self._persist(registry)

        logger.info(
            "Created tunnel",
            tunnel_id=tunnel.id,
            name=tunnel.name,
            local_port=tunnel.local_port,
            target=f"{tunnel.target_host}:{tunnel.target_port}",
            enabled=tunnel.enabled,
        )
        return TunnelResponse.from_tunnel(tunnel, self.hostname, warning=warning)

    async def update(self, tunnel_id: str, request: UpdateTunnelRequest) -> TunnelResponse:
        """Apply a partial update, restarting the forwarder as needed.

        Raises:
            TunnelNotFoundError, ValidationFailedError, SelfLoopError,
            PortConflictError, HostUnreachableError, ForwarderStartError
        """
        async with self.store.write() as registry:
            index = registry.index_of(tunnel_id)
            if index is None:
                logger.warning("Tunnel not found", tunnel_id=tunnel_id)
                raise TunnelNotFoundError(tunnel_id)
            current = registry.get(index)

            local_port = _pick(request.local_port, current.local_port)
            target_port = _pick(request.target_port, current.target_port)
            enabled = _pick(request.enabled, current.enabled)
            name, target_host = _validate_fields(
                _pick(request.name, current.name),
                _pick(request.target_host, current.target_host),
                local_port,
                target_port,
            )

            port_changed = local_port != current.local_port
            if port_changed:
                self._ensure_port_free(registry, local_port, exclude_index=index)

            if is_self_loop(local_port, target_host, target_port):
                logger.warning("Rejected self-loop tunnel", tunnel_id=tunnel_id, port=local_port)
                raise SelfLoopError(local_port)

            target_changed = (
                target_host != current.target_host or target_port != current.target_port
            )
            needs_check = enabled and (not current.enabled or target_changed or port_changed)

            preflight: _Preflight | None = None
            if needs_check:
                preflight = await self._preflight(target_host, target_port)

            if current.pid is not None:
                await self.forwarder.kill(current.pid)
                current = current.with_pid(None)
                registry.replace(index, current)
                if not port_changed:
                    # let the kernel release the listening socket before rebinding
                    await asyncio.sleep(self._port_release_delay)

            updated = current.model_copy(
                update={
                    "name": name,
                    "local_port": local_port,
                    "target_host": target_host,
                    "target_port": target_port,
                    "enabled": enabled,
                }
            )
            pid = await self._spawn(updated) if enabled else None

            if preflight is not None:
                warning_id = preflight.warning_id
            elif not enabled:
                warning_id = None
            else:
                warning_id = current.warning_id

            updated = updated.model_copy(update={"pid": pid, "warning_id": warning_id})
            registry.replace(index, updated)
            await self._persist(registry)

        logger.info(
            "Updated tunnel", tunnel_id=tunnel_id, name=updated.name, enabled=updated.enabled
        )
        return TunnelResponse.from_tunnel(
            updated,
            self.hostname,
            warning=preflight.warning if preflight is not None else None,
        )

    async def delete(self, tunnel_id: str) -> None:
        """Stop the tunnel's forwarder and drop it from the store.

        Raises:
            TunnelNotFoundError: If no tunnel has ``tunnel_id``
        """
        async with self.store.write() as registry:
            index = registry.index_of(tunnel_id)
            if index is None:
                logger.warning("Tunnel not found", tunnel_id=tunnel_id)
                raise TunnelNotFoundError(tunnel_id)

            tunnel = registry.get(index)
            if tunnel.pid is not None:
                await self.forwarder.kill(tunnel.pid)

            registry.remove(index)
            await self._persist(registry)

        logger.info("Deleted tunnel", tunnel_id=tunnel_id, name=tunnel.name)

    # Boot / shutdown ----------------------------------------------------
    async def boot(self) -> RestoreSummary:
        """Load the persisted list into the store and restore forwarders."""
        tunnels = await self.repository.load()
        async with self.store.write() as registry:
            registry.reset(tunnels)
        return await self.restore()

    async def restore(self) -> RestoreSummary:
        """Try once to start a forwarder for every enabled tunnel.

        Tunnels whose port is taken or whose forwarder fails to start are
        disabled so they are never retried in a loop. No reachability
        probing happens here.
        """
        restored = failed = 0
        async with self.store.write() as registry:
            total = len(registry)
            logger.info("Restoring tunnels", total=total)

            for index in range(total):
                tunnel = registry.get(index)
                if not tunnel.enabled:
                    registry.replace(index, tunnel.with_pid(None))
                    continue

                if not self._port_checker(tunnel.local_port):
                    logger.warning(
                        "Port already in use, disabling tunnel",
                        tunnel_id=tunnel.id,
                        name=tunnel.name,
                        port=tunnel.local_port,
                    )
                    registry.replace(index, tunnel.disabled())
                    failed += 1
                    continue

                try:
                    pid = await self.forwarder.spawn(
                        tunnel.local_port, tunnel.target_host, tunnel.target_port
                    )
                except ProcessError as e:
                    logger.error(
                        "Failed to restore tunnel, disabling it",
                        tunnel_id=tunnel.id,
                        name=tunnel.name,
                        error=str(e),
                    )
                    registry.replace(index, tunnel.disabled())
                    failed += 1
                    continue

                registry.replace(index, tunnel.with_pid(pid))
                restored += 1

            summary = RestoreSummary(total=total, restored=restored, failed=failed)
            if failed:
                await self._persist(registry)

        logger.info(
            "Restore complete",
            restored=summary.restored,
            failed=summary.failed,
            skipped=summary.skipped,
        )
        return summary

    async def shutdown(self) -> int:
        """Kill every running forwarder; ``enabled`` flags are left as they are.

        Returns:
            Number of forwarders that were signalled successfully
        """
        stopped = 0
        async with self.store.write() as registry:
            for index, tunnel in enumerate(registry.snapshot()):
                if tunnel.pid is None:
                    continue
                if await self.forwarder.kill(tunnel.pid):
                    stopped += 1
                registry.replace(index, tunnel.with_pid(None))
        logger.info("Stopped forwarders", count=stopped)
        return stopped

    # Helpers ------------------------------------------------------------
    def _ensure_port_free(
        self, registry: TunnelRegistry, port: int, exclude_index: int | None = None
    ) -> None:
        # Store claim first: a repeated create reports port_assigned even
        # though the first tunnel's forwarder already holds the port.
        if registry.claims_port(port, exclude_index=exclude_index):
            logger.warning("Port already assigned to another tunnel", port=port)
            raise PortConflictError("api.error.port_assigned", {"port": port})
        if not self._port_checker(port):
            logger.warning("Port in use on the system", port=port)
            raise PortConflictError("api.error.port_in_use", {"port": port})

    async def _preflight(self, host: str, port: int) -> _Preflight:
        result = await self._prober(host, port)
        if isinstance(result, Unreachable):
            raise HostUnreachableError(host, result.reason)
        if isinstance(result, PortClosed):
            return _Preflight(
                warning_id=PORT_CLOSED_WARNING,
                warning=ApiMessage(id=PORT_CLOSED_WARNING, params={"host": host, "port": port}),
            )
        return _Preflight(warning_id=None, warning=None)

    async def _spawn(self, tunnel: Tunnel) -> int:
        try:
            return await self.forwarder.spawn(
                tunnel.local_port, tunnel.target_host, tunnel.target_port
            )
        except ProcessError as e:
            logger.error("Forwarder failed to start", tunnel_id=tunnel.id, error=str(e))
            raise ForwarderStartError(str(e)) from e

    async def _persist(self, registry: TunnelRegistry) -> None:
        # Running processes are authoritative; a failed save never fails the request.
        try:
            await self.repository.save(registry.snapshot())
        except PersistenceError as e:
            logger.error("Persistence failed, in-memory state kept", error=str(e))


def _pick(value: T | None, current: T) -> T:
    return current if value is None else value


def _validate_fields(
    name: str, target_host: str, local_port: int, target_port: int
) -> tuple[str, str]:
    """Trim and check the user-editable fields shared by create and update."""
    try:
        name = validate_non_empty_string(name, "name")
    except ValueError:
        raise ValidationFailedError("api.error.name_empty") from None
    try:
        target_host = validate_non_empty_string(target_host, "target_host")
    except ValueError:
        raise ValidationFailedError("api.error.target_host_empty") from None
    if local_port == 0:
        raise ValidationFailedError("api.error.local_port_range")
    if target_port == 0:
        raise ValidationFailedError("api.error.target_port_range")
    return name, target_host
