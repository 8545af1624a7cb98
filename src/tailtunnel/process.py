"""Process management for forwarder and connectivity-test binaries."""

import asyncio
import contextlib
import os
import signal

from .common.exceptions import ProcessError
from .common.logging import get_logger
from .common.utils import validate_non_empty_string, validate_port

logger = get_logger(__name__)

STARTUP_GRACE = 0.25


class ForwarderProcessManager:
    """Spawns, verifies and kills per-tunnel forwarder processes.

    Each forwarder runs in its own session, so its pid is also its process
    group id and a single signal to the group reaches every connection
    handler it forked.
    """

    def __init__(self, binary_path: str = "socat", startup_grace: float = STARTUP_GRACE):
        """Initialize the forwarder manager.

        Args:
            binary_path: Forwarding program (looked up on PATH when not absolute)
            startup_grace: Seconds a fresh forwarder must survive to count as started
        """
        self.binary_path = binary_path
        self.startup_grace = startup_grace
        self._watchers: set[asyncio.Task[None]] = set()

    @property
    def active_watchers(self) -> int:
        """Number of spawned forwarders whose exit has not been observed yet."""
        return len(self._watchers)

    def build_command(self, local_port: int, target_host: str, target_port: int) -> list[str]:
        """Command line forwarding ``local_port`` to ``target_host:target_port``.

        Raises:
            ValueError: If a port is out of range or the host is empty
        """
        validate_port(local_port, "Local port")
        validate_port(target_port, "Target port")
        host = validate_non_empty_string(target_host, "Target host")
        return [
            self.binary_path,
            f"TCP-LISTEN:{local_port},fork,reuseaddr",
            f"TCP:{host}:{target_port}",
        ]

    async def spawn(self, local_port: int, target_host: str, target_port: int) -> int:
        """Start a forwarder and return its pid once it survived the grace period.

        Raises:
            ProcessError: If the process cannot be started or exits during startup
        """
        try:
            command = self.build_command(local_port, target_host, target_port)
        except ValueError as e:
            raise ProcessError(str(e)) from e

        logger.info("Spawning forwarder", command=" ".join(command))
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=True,
            )
        except OSError as e:
            logger.error("Failed to spawn forwarder", binary=self.binary_path, error=str(e))
            raise ProcessError(f"Failed to spawn {self.binary_path}: {e}") from e

        pid = process.pid
        try:
            returncode = await asyncio.wait_for(process.wait(), timeout=self.startup_grace)
        except TimeoutError:
            self._watch(process, local_port)
            logger.info("Forwarder started", pid=pid, local_port=local_port)
            return pid

        # Exited during startup: drop anything it forked before reading its output
        _signal_group(pid, signal.SIGKILL)
        stderr = b""
        if process.stderr is not None:
            stderr = await process.stderr.read()
        output = stderr.decode(errors="replace").strip()
        detail = f"exit {returncode}: {output}" if output else f"exit {returncode}"
        logger.error("Forwarder exited immediately", pid=pid, detail=detail)
        raise ProcessError(f"Forwarder PID {pid} exited immediately ({detail})")

    async def kill(self, pid: int) -> bool:
        """Force-kill the forwarder's whole process group.

        Failures are logged and reported as False, never raised; callers
        treat the slot as free either way.
        """
        logger.info("Killing forwarder process group", pid=pid)
        try:
            os.killpg(pid, signal.SIGKILL)
        except ProcessLookupError:
            logger.warning("Forwarder process group already gone", pid=pid)
            return False
        except PermissionError as e:
            logger.error("Not permitted to kill forwarder", pid=pid, error=str(e))
            return False
        return True

    def _watch(self, process: asyncio.subprocess.Process, local_port: int) -> None:
        task = asyncio.create_task(self._reap(process, local_port))
        self._watchers.add(task)
        task.add_done_callback(self._watchers.discard)

    async def _reap(self, process: asyncio.subprocess.Process, local_port: int) -> None:
        # Only observes the exit; stored tunnel state is left alone.
        try:
            _stdout, stderr = await process.communicate()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("Forwarder wait failed", pid=process.pid, error=str(e))
            return
        output = (stderr or b"").decode(errors="replace").strip()
        logger.warning(
            "Forwarder exited",
            pid=process.pid,
            local_port=local_port,
            returncode=process.returncode,
            stderr=output or None,
        )


def _signal_group(pgid: int, sig: int) -> None:
    with contextlib.suppress(ProcessLookupError, PermissionError):
        os.killpg(pgid, sig)


class ConnectivityTester:
    """Runs an external netcat-style probe and collects its diagnostics."""

    def __init__(self, binary_path: str = "nc", timeout: int = 3):
        self.binary_path = binary_path
        self.timeout = timeout

    def build_command(self, target_host: str, target_port: int) -> list[str]:
        return [
            self.binary_path,
            f"-zvw{self.timeout}",
            target_host,
            str(target_port),
        ]

    async def run(self, target_host: str, target_port: int) -> tuple[bool, str]:
        """Test ``target_host:target_port``.

        Returns:
            (success, log) where log is the program's combined stdout/stderr
        """
        target = f"{target_host}:{target_port}"
        logger.info("Testing connection", target=target)
        try:
            process = await asyncio.create_subprocess_exec(
                *self.build_command(target_host, target_port),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            message = f"Failed to run {os.path.basename(self.binary_path)}: {e}"
            logger.error("Connection test could not start", target=target, error=str(e))
            return False, message

        stdout, stderr = await process.communicate()
        success = process.returncode == 0

        parts = [
            chunk.decode(errors="replace")
            for chunk in (stdout, stderr)
            if chunk
        ]
        log = "\n".join(parts)
        if not log:
            log = (
                "Connection succeeded"
                if success
                else f"Connection to {target} failed (no output)"
            )

        if success:
            logger.info("Connection test passed", target=target)
        else:
            logger.warning("Connection test failed", target=target, log=log)
        return success, log
