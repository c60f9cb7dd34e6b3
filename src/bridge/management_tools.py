"""
MCP tool definitions for managing child servers.

These are the bridge's own tools, registered on the front server next to
the proxied ones. Every tool answers with the same envelope:
``{"success": True, "data": ...}`` or ``{"success": False, "error": {...}}``.
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel
from returns.result import Failure, Result, Success
from structlog import get_logger

from ..core.result_pattern import AppError, ErrorKind, not_found_error, result_to_response
from .external_config import ExternalConfigStore
from .installer import InstallationOrchestrator, detect_origin_type, generate_server_name
from .models import InstallMode, OriginType, ServerStatus, env_keys_from_args, redact_env_args
from .server_registry import ManagedServerRegistry

logger = get_logger(__name__)

HINTS = {
    ErrorKind.VALIDATION: "Please check the input parameters and try again.",
    ErrorKind.NOT_FOUND: "Use list_managed_servers or list_external_servers to see known servers.",
    ErrorKind.DUPLICATE_NAME: "Choose a different name or remove the existing server first.",
    ErrorKind.NOT_RUNNING: "Start the server with control_mcp_server first.",
    ErrorKind.LAUNCH_FAILURE: "Check the package name and the server logs, then retry with action 'start'.",
    ErrorKind.RUNTIME_UNAVAILABLE: "Install or start the container runtime and try again.",
    ErrorKind.CONFIG_IO: "Fix or restore the external config file before retrying.",
    ErrorKind.TIMEOUT: "The server was too slow to respond; try again.",
}

ORIGIN_ALIASES = {
    "npm": OriginType.NPM_PACKAGE,
    "docker": OriginType.CONTAINER_IMAGE,
    "image": OriginType.CONTAINER_IMAGE,
}


def _jsonable(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, list):
        return [_jsonable(v) for v in value]
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    return value


def format_mcp_response(result: Result[Any, AppError]) -> Dict[str, Any]:
    """Render a Result as a tool response, with a recovery hint on failure."""
    response = result_to_response(result.map(_jsonable))
    if isinstance(result, Failure):
        hint = HINTS.get(result.failure().kind)
        if hint:
            response["error"]["hint"] = hint
    return response


class ManagementTools:
    """Install, inspect and control child servers through MCP tools."""

    def __init__(
        self,
        orchestrator: InstallationOrchestrator,
        server_registry: ManagedServerRegistry,
        config_store: ExternalConfigStore,
    ):
        self.orchestrator = orchestrator
        self.server_registry = server_registry
        self.config_store = config_store

    def register(self, mcp_server) -> None:
        """
        Register the management tools with the MCP server.

        Args:
            mcp_server: The FastMCP server instance
        """
        mcp_server.tool()(self.install_mcp_server)
        mcp_server.tool()(self.list_managed_servers)
        mcp_server.tool()(self.control_mcp_server)
        mcp_server.tool()(self.get_server_health)
        mcp_server.tool()(self.list_external_servers)
        mcp_server.tool()(self.remove_external_server)
        mcp_server.tool()(self.validate_external_config)

        logger.info("Management tools registered with MCP server")

    async def install_mcp_server(
        self,
        package: str,
        name: Optional[str] = None,
        type: Optional[str] = None,
        mode: str = "bridge",
        auto_start: bool = True,
        env: Optional[Dict[str, str]] = None,
        endpoint: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Install an MCP server from an npm package or a container image.

        Args:
            package: npm package (e.g. @modelcontextprotocol/server-github) or image (e.g. mcp/fetch:latest)
            name: Server name, also the tool prefix in bridge mode; derived from the package when omitted
            type: 'npm' or 'docker'; detected from the package when omitted
            mode: 'bridge' (supervised, tools proxied here) or 'direct' (written to the external client's config)
            auto_start: Start the server right away (bridge mode only)
            env: Environment variables passed to the server
            endpoint: URL of an already running HTTP MCP server (bridge mode only)

        Returns:
            What was installed and what to do next
        """
        if type is not None and type.lower() not in ORIGIN_ALIASES:
            return format_mcp_response(
                Failure(AppError(ErrorKind.VALIDATION, f"Unknown type '{type}', expected 'npm' or 'docker'"))
            )
        origin = ORIGIN_ALIASES[type.lower()] if type else detect_origin_type(package)
        if mode not in (m.value for m in InstallMode):
            return format_mcp_response(
                Failure(AppError(ErrorKind.VALIDATION, f"Unknown mode '{mode}', expected 'bridge' or 'direct'"))
            )

        result = await self.orchestrator.install(
            {
                "name": name or generate_server_name(package),
                "package": package,
                "origin_type": origin,
                "mode": mode,
                "auto_start": auto_start,
                "env": env or {},
                "endpoint": endpoint,
            }
        )
        return format_mcp_response(result)

    async def list_managed_servers(self) -> Dict[str, Any]:
        """
        List bridge-mode servers with their status and tools.

        Returns:
            Snapshot of every managed server
        """
        return format_mcp_response(Success(self.server_registry.list()))

    async def control_mcp_server(self, name: str, action: str) -> Dict[str, Any]:
        """
        Start, stop, restart or remove a bridge-mode server.

        Args:
            name: Server name
            action: One of start, stop, restart, remove

        Returns:
            The server's state after the action
        """
        return format_mcp_response(await self.orchestrator.control(name, action))

    async def get_server_health(self, name: Optional[str] = None) -> Dict[str, Any]:
        """
        Health of one bridge-mode server, or a check of all of them.

        Args:
            name: Server name; omit to check every server

        Returns:
            Status, tool count, last error and process statistics; recent
            container logs for a server in the error state
        """
        if name:
            result = self.server_registry.health(name)
            if isinstance(result, Success) and result.unwrap().status is ServerStatus.ERROR:
                logs = (await self.server_registry.recent_logs(name)).value_or("")
                result.unwrap().recent_logs = logs or None
            return format_mcp_response(result)
        return format_mcp_response(Success(await self.server_registry.health_check_all()))

    async def list_external_servers(self) -> Dict[str, Any]:
        """
        List direct-mode servers from the external client's config file.

        Returns:
            Entries with command, args and env variable names
        """
        result = await self.config_store.list()
        if isinstance(result, Failure):
            return format_mcp_response(result)
        servers = [
            {
                "name": entry.name,
                "command": entry.command,
                "args": redact_env_args(entry.args),
                "env_keys": sorted(set(entry.env) | set(env_keys_from_args(entry.args))),
                "mode": InstallMode.DIRECT.value,
            }
            for entry in result.unwrap()
        ]
        return format_mcp_response(
            Success({"config_path": str(self.config_store.get_config_path()), "servers": servers})
        )

    async def remove_external_server(self, name: str) -> Dict[str, Any]:
        """
        Remove a direct-mode server from the external client's config file.

        Args:
            name: Server name

        Returns:
            Confirmation; the external client must be restarted
        """
        result = await self.config_store.remove(name)
        if isinstance(result, Success) and not result.unwrap():
            return format_mcp_response(Failure(not_found_error("External server", name)))
        return format_mcp_response(
            result.map(lambda _: {"removed": name, "next_steps": ["Restart the external client"]})
        )

    async def validate_external_config(self) -> Dict[str, Any]:
        """
        Check the external client's config file for shape errors.

        Returns:
            Whether the file is valid and every problem found
        """
        return format_mcp_response(await self.config_store.validate())
