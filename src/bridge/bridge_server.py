"""MCP Bridge server: wires the components together and serves the front server."""

import asyncio
from dataclasses import asdict
from datetime import datetime
from typing import Any, Dict, Optional

import uvicorn
from returns.result import Failure
from structlog import get_logger

from ..core.result_pattern import collect_results
from .config import BridgeSettings, get_settings
from .connections import open_connection
from .container_runtime import ContainerRuntime
from .external_config import ExternalConfigStore
from .front_server import BridgeFastMCP
from .installer import InstallationOrchestrator
from .management_tools import ManagementTools
from .server_registry import ConnectionFactory, ManagedServerRegistry
from .tool_registry import DynamicToolRegistry

logger = get_logger(__name__)


class BridgeServer:
    """
    Owns exactly one of each component and injects them into each other.

    Args:
        settings: Bridge settings; read from the environment when omitted
        connection_factory: Opens child connections (replaced in tests)
        runtime: Container runtime wrapper
        config_store: External config store
    """

    def __init__(
        self,
        settings: Optional[BridgeSettings] = None,
        connection_factory: ConnectionFactory = open_connection,
        runtime: Optional[ContainerRuntime] = None,
        config_store: Optional[ExternalConfigStore] = None,
    ):
        self.settings = settings or get_settings()
        self.config = self.settings.to_bridge_config()

        self.runtime = runtime or ContainerRuntime(
            self.config.container_runtime, self.config.runtime_command_timeout
        )
        self.config_store = config_store or ExternalConfigStore(self.config.external_config_path)
        self.mcp = BridgeFastMCP(self.config.server_name, host=self.settings.host, port=self.settings.port)

        self.server_registry = ManagedServerRegistry(self.config, connection_factory, self.runtime)
        self.tool_registry = DynamicToolRegistry(self.mcp, self.server_registry, self.config.tool_call_timeout)
        self.orchestrator = InstallationOrchestrator(
            self.server_registry,
            self.tool_registry,
            self.config_store,
            self.runtime,
            self.config,
        )
        self.management_tools = ManagementTools(self.orchestrator, self.server_registry, self.config_store)
        self.management_tools.register(self.mcp)

        self._maintenance_task: Optional[asyncio.Task] = None
        self._start_time = datetime.now()
        self._started = False

    async def start(self) -> None:
        if self._started:
            return
        self._started = True
        self._start_time = datetime.now()
        await self.log_startup_info()
        if self.config.maintenance_interval:
            self._maintenance_task = asyncio.create_task(self._maintenance_loop())

    async def run(self) -> None:
        """Serve until the transport ends, then shut everything down."""
        await self.start()
        try:
            if self.settings.is_stdio:
                await self.mcp.run_stdio_async()
            else:
                await self._serve_http()
        finally:
            await self.shutdown()

    async def _serve_http(self) -> None:
        uvicorn_config = uvicorn.Config(
            self.mcp.streamable_http_app(),
            host=self.settings.host,
            port=self.settings.port,
            log_level=self.settings.log_level.lower(),
            access_log=self.settings.log_requests,
        )
        server = uvicorn.Server(uvicorn_config)
        await server.serve()

    async def shutdown(self) -> None:
        """Stop maintenance, forget proxied tools and stop every child server."""
        if self._maintenance_task:
            self._maintenance_task.cancel()
            try:
                await self._maintenance_task
            except asyncio.CancelledError:
                pass
            self._maintenance_task = None

        self.tool_registry.clear_all()
        await self.server_registry.close()
        self._started = False
        logger.info("MCP Bridge stopped")

    async def log_startup_info(self) -> None:
        runtime_available = await self.runtime.is_available()
        info = self.settings.get_runtime_info()
        logger.info(
            "MCP Bridge starting",
            **info,
            runtime_available=runtime_available,
            external_config=str(self.config_store.get_config_path()),
        )
        if not runtime_available:
            logger.warning(
                "Container runtime not available; only endpoint-based servers can be started",
                runtime=self.config.container_runtime,
            )

    async def _maintenance_loop(self) -> None:
        try:
            while True:
                await asyncio.sleep(self.config.maintenance_interval)
                try:
                    await self.perform_maintenance()
                except Exception as e:
                    logger.error("Maintenance run failed", error=str(e))
        except asyncio.CancelledError:
            pass

    async def perform_maintenance(self) -> Dict[str, Any]:
        """Restart failed servers and remove containers left behind by stopped ones."""
        restarted = await self.server_registry.auto_restart()
        refreshed = collect_results([await self.tool_registry.refresh_server_tools(name) for name in restarted])
        if isinstance(refreshed, Failure):
            logger.warning("Tool refresh after restart failed", error=str(refreshed.failure()))
        cleaned = await self.server_registry.cleanup()
        report = {"restarted": restarted, "cleaned_containers": cleaned}
        logger.info("Maintenance complete", **report)
        return report

    def get_stats(self) -> Dict[str, Any]:
        return {
            "servers": asdict(self.server_registry.get_stats()),
            "tools": asdict(self.tool_registry.get_stats()),
            "uptime_seconds": (datetime.now() - self._start_time).total_seconds(),
        }

    async def health_check(self) -> Dict[str, Any]:
        servers = await self.server_registry.health_check_all()
        return {
            "healthy": all(entry.healthy for entry in servers.values()),
            "runtime_available": await self.runtime.is_available(),
            "servers": {name: entry.model_dump(mode="json") for name, entry in servers.items()},
        }

    def export_state(self) -> Dict[str, Any]:
        """Serializable snapshot for diagnostics; env values are never included."""
        return {
            "exported_at": datetime.now().isoformat(),
            "servers": [info.model_dump(mode="json") for info in self.server_registry.list()],
            "tools": self.tool_registry.export_state(),
            "stats": self.get_stats(),
        }
