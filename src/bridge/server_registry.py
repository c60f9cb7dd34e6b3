"""
Managed Server Registry.

The single authority over bridge-mode child servers. Every operation on a
name runs under that name's lock, so a start can never race a stop for
the same server. Different names never wait on each other.

Lifecycle::

    (none) --add--> installing --start ok--> running
    installing|stopped|error --start fail--> error
    running --stop--> stopped
    running --restart--> running   (tool list re-fetched)
    any --remove--> removed        (name reusable)
"""

import asyncio
from datetime import datetime
from typing import Awaitable, Callable, Dict, List, Optional, Set, Tuple

import psutil
from returns.result import Failure, Result, Success
from structlog import get_logger

from ..core.result_pattern import (
    AppError,
    duplicate_name_error,
    launch_failure_error,
    not_found_error,
    timeout_error,
)
from .connections import ChildConnection, open_connection
from .container_runtime import ContainerRuntime
from .models import (
    BridgeConfig,
    ContainerStatus,
    HealthCheckEntry,
    ManagedServer,
    RegistryStats,
    ServerHealth,
    ServerInfo,
    ServerStatus,
)

logger = get_logger(__name__)

ConnectionFactory = Callable[[ManagedServer, BridgeConfig], Awaitable[ChildConnection]]

CONNECTION_LOST = "connection lost"


class ManagedServerRegistry:
    """In-memory table of bridge-mode servers and their live connections."""

    def __init__(
        self,
        config: BridgeConfig,
        connection_factory: ConnectionFactory = open_connection,
        runtime: Optional[ContainerRuntime] = None,
    ):
        self.config = config
        self.runtime = runtime
        self._connection_factory = connection_factory
        self._servers: Dict[str, ManagedServer] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._background: Set[asyncio.Task] = set()

    def _lock_for(self, name: str) -> asyncio.Lock:
        return self._locks.setdefault(name, asyncio.Lock())

    def _active(self, name: str) -> Optional[ManagedServer]:
        server = self._servers.get(name)
        if server is None or server.status is ServerStatus.REMOVED:
            return None
        return server

    # Lifecycle

    async def add(self, server: ManagedServer) -> Result[ServerInfo, AppError]:
        """Register a new server in ``installing`` state."""
        async with self._lock_for(server.name):
            if self._active(server.name) is not None:
                return Failure(duplicate_name_error(server.name, "bridge registry"))

            server.status = ServerStatus.INSTALLING
            server.connection = None
            server.advertised_tools = set()
            self._servers[server.name] = server

        logger.info(
            "Registered managed server",
            name=server.name,
            origin=server.origin_type.value,
            container=server.container_name,
        )
        return Success(server.snapshot())

    async def start(self, name: str) -> Result[ServerInfo, AppError]:
        """Connect to the server and fetch its tools; no-op when already running."""
        async with self._lock_for(name):
            server = self._active(name)
            if server is None:
                return Failure(not_found_error("Server", name))
            return await self._start_locked(server)

    async def stop(self, name: str) -> Result[ServerInfo, AppError]:
        """Tear down the connection. Stopping a non-running server succeeds."""
        async with self._lock_for(name):
            server = self._active(name)
            if server is None:
                return Failure(not_found_error("Server", name))
            if not server.is_running:
                logger.debug("Server not running, nothing to stop", name=name, status=server.status.value)
                return Success(server.snapshot())
            await self._stop_locked(server)
            return Success(server.snapshot())

    async def restart(self, name: str) -> Result[ServerInfo, AppError]:
        """Stop then start under one hold of the lock; the tool list is re-fetched."""
        async with self._lock_for(name):
            server = self._active(name)
            if server is None:
                return Failure(not_found_error("Server", name))
            if server.is_running:
                await self._stop_locked(server)
            logger.info("Restarting managed server", name=name)
            return await self._start_locked(server)

    async def remove(self, name: str) -> Result[ServerInfo, AppError]:
        """Stop if needed, drop the container and free the name."""
        async with self._lock_for(name):
            server = self._active(name)
            if server is None:
                return Failure(not_found_error("Server", name))

            await self._teardown(server)
            if server.container_name and self.runtime is not None:
                await self.runtime.remove_container(server.container_name)
            server.status = ServerStatus.REMOVED
            server.last_known_tools = set()

        logger.info("Removed managed server", name=name)
        return Success(server.snapshot())

    async def _start_locked(self, server: ManagedServer) -> Result[ServerInfo, AppError]:
        if server.is_running:
            return Success(server.snapshot())

        logger.info("Starting managed server", name=server.name, previous=server.status.value)
        try:
            connection, tools = await asyncio.wait_for(
                self._connect(server), timeout=self.config.start_timeout
            )
        except asyncio.CancelledError:
            self._mark_error(server, "start cancelled")
            raise
        except asyncio.TimeoutError:
            self._mark_error(server, f"start timed out after {self.config.start_timeout}s")
            return Failure(
                timeout_error(f"Starting {server.name}", self.config.start_timeout, name=server.name)
            )
        except Exception as e:
            self._mark_error(server, str(e) or type(e).__name__)
            return Failure(
                launch_failure_error(
                    server.name,
                    f"Failed to start {server.name}: {e}",
                    exception_type=type(e).__name__,
                )
            )

        server.connection = connection
        server.status = ServerStatus.RUNNING
        server.advertised_tools = set(tools)
        server.last_known_tools = set(tools)
        server.last_error = None
        server.started_at = datetime.now()
        connection.set_close_callback(self._on_connection_closed(server.name))

        logger.info(
            "Managed server running",
            name=server.name,
            pid=connection.pid,
            tools=len(tools),
        )
        return Success(server.snapshot())

    async def _connect(self, server: ManagedServer) -> Tuple[ChildConnection, List[str]]:
        connection = await self._connection_factory(server, self.config)
        try:
            tools = await connection.list_tools()
        except BaseException:
            await connection.close()
            raise
        return connection, [tool["name"] for tool in tools]

    async def _stop_locked(self, server: ManagedServer) -> None:
        await self._teardown(server)
        server.status = ServerStatus.STOPPED
        logger.info("Stopped managed server", name=server.name)

    async def _teardown(self, server: ManagedServer) -> None:
        """Close the connection and stop the container; never raises."""
        connection, server.connection = server.connection, None
        server.advertised_tools = set()
        server.started_at = None

        if connection is not None:
            try:
                await connection.close()
            except Exception as e:
                logger.warning("Error closing connection", name=server.name, error=str(e))

        if server.container_name and self.runtime is not None:
            status = await self.runtime.container_status(server.container_name)
            if status is ContainerStatus.RUNNING:
                await self.runtime.stop_container(server.container_name)

    def _mark_error(self, server: ManagedServer, message: str) -> None:
        server.connection = None
        server.advertised_tools = set()
        server.status = ServerStatus.ERROR
        server.last_error = message
        server.started_at = None
        logger.error("Managed server failed", name=server.name, error=message)

    def _on_connection_closed(self, name: str) -> Callable[[ChildConnection], Awaitable[None]]:
        async def callback(connection: ChildConnection) -> None:
            # Runs inside the transport's reader; take the lock elsewhere.
            task = asyncio.create_task(self._handle_connection_lost(name, connection))
            self._background.add(task)
            task.add_done_callback(self._background.discard)

        return callback

    async def _handle_connection_lost(self, name: str, connection: ChildConnection) -> None:
        async with self._lock_for(name):
            server = self._active(name)
            if server is None or server.connection is not connection:
                return
            await self._teardown(server)
            self._mark_error(server, CONNECTION_LOST)

    # Queries

    def has(self, name: str) -> bool:
        return self._active(name) is not None

    def get_connection(self, name: str) -> Optional[ChildConnection]:
        """Live connection, only while the server is running."""
        server = self._active(name)
        if server is None or not server.is_running:
            return None
        return server.connection

    def get_info(self, name: str) -> Result[ServerInfo, AppError]:
        server = self._active(name)
        if server is None:
            return Failure(not_found_error("Server", name))
        return Success(server.snapshot())

    def list(self) -> List[ServerInfo]:
        """Snapshots of all non-removed servers."""
        return [s.snapshot() for s in self._servers.values() if s.status is not ServerStatus.REMOVED]

    def list_by_status(self, status: ServerStatus) -> List[ServerInfo]:
        return [s.snapshot() for s in self._servers.values() if s.status is status]

    def health(self, name: str) -> Result[ServerHealth, AppError]:
        server = self._active(name)
        if server is None:
            return Failure(not_found_error("Server", name))

        health = ServerHealth(
            status=server.status,
            tool_count=len(server.advertised_tools),
            last_error=server.last_error,
        )
        if server.started_at:
            health.uptime_seconds = (datetime.now() - server.started_at).total_seconds()

        pid = server.connection.pid if server.connection else None
        if pid:
            health.pid = pid
            try:
                proc = psutil.Process(pid)
                health.cpu_percent = proc.cpu_percent()
                health.memory_mb = proc.memory_info().rss / 1024 / 1024
            except (psutil.NoSuchProcess, psutil.AccessDenied):
                pass
        return Success(health)

    async def recent_logs(self, name: str, lines: int = 50) -> Result[str, AppError]:
        """Tail of the server's container log; empty when it has no container."""
        server = self._active(name)
        if server is None:
            return Failure(not_found_error("Server", name))
        if not server.container_name or self.runtime is None:
            return Success("")
        return Success(await self.runtime.container_logs(server.container_name, lines))

    def get_stats(self) -> RegistryStats:
        stats = RegistryStats()
        for server in self._servers.values():
            if server.status is ServerStatus.REMOVED:
                continue
            stats.total += 1
            stats.total_tools += len(server.advertised_tools)
            if server.status is ServerStatus.RUNNING:
                stats.running += 1
            elif server.status is ServerStatus.STOPPED:
                stats.stopped += 1
            elif server.status is ServerStatus.ERROR:
                stats.error += 1
            elif server.status is ServerStatus.INSTALLING:
                stats.installing += 1
        return stats

    # Maintenance

    async def health_check_all(self) -> Dict[str, HealthCheckEntry]:
        """Inspect every server without changing any state."""
        report: Dict[str, HealthCheckEntry] = {}
        for server in list(self._servers.values()):
            if server.status is ServerStatus.REMOVED:
                continue
            issues: List[str] = []
            if server.status is ServerStatus.ERROR:
                issues.append(server.last_error or "server in error state")
            if server.is_running:
                if server.connection is None or not server.connection.is_alive:
                    issues.append("connection not alive")
                if server.container_name and self.runtime is not None:
                    status = await self.runtime.container_status(server.container_name)
                    if status is not ContainerStatus.RUNNING:
                        issues.append(f"container {status.value}")
            report[server.name] = HealthCheckEntry(
                status=server.status,
                healthy=not issues,
                issues=issues,
            )
        return report

    async def auto_restart(self) -> List[str]:
        """Try to restart every server in ``error``; returns the ones that came back."""
        restarted: List[str] = []
        for info in self.list_by_status(ServerStatus.ERROR):
            result = await self.restart(info.name)
            if isinstance(result, Success):
                restarted.append(info.name)
            else:
                logger.warning("Auto-restart failed", name=info.name, error=str(result.failure()))
        if restarted:
            logger.info("Auto-restarted servers", servers=restarted)
        return restarted

    async def cleanup(self) -> List[str]:
        """Remove leftover containers of stopped servers."""
        if self.runtime is None:
            return []
        cleaned: List[str] = []
        for server in list(self._servers.values()):
            if server.status is not ServerStatus.STOPPED or not server.container_name:
                continue
            async with self._lock_for(server.name):
                if server.status is not ServerStatus.STOPPED:
                    continue
                status = await self.runtime.container_status(server.container_name)
                if status is ContainerStatus.NOT_FOUND:
                    continue
                if await self.runtime.remove_container(server.container_name):
                    cleaned.append(server.container_name)
        return cleaned

    async def close(self) -> None:
        """Stop every running server and wait for pending loss handlers."""
        running = [s.name for s in self._servers.values() if s.is_running]
        if running:
            await asyncio.gather(*(self.stop(name) for name in running), return_exceptions=True)
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        logger.info("Managed server registry closed", stopped=len(running))
