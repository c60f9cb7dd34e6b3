"""
Dynamic Tool Registry.

Exposes every tool of a running managed server on the front server as
``{server}_{tool}``. Handlers are never unregistered; instead each call
looks up the server's live connection and this registry's bookkeeping,
and answers with an error result once either is gone.
"""

import asyncio
import json
from dataclasses import asdict
from typing import Any, Dict, List, Set

from returns.result import Failure, Result, Success
from structlog import get_logger

from ..core.result_pattern import (
    AppError,
    invocation_error,
    not_found_error,
    not_running_error,
    timeout_error,
)
from .front_server import FrontServer, ToolHandler
from .models import ToolRegistryStats
from .server_registry import ManagedServerRegistry

logger = get_logger(__name__)


def namespaced(server_name: str, tool_name: str) -> str:
    return f"{server_name}_{tool_name}"


def error_result(message: str) -> Dict[str, Any]:
    return {"content": [{"type": "text", "text": message}], "isError": True}


class DynamicToolRegistry:
    """Bookkeeping of proxied tools per managed server."""

    def __init__(
        self,
        front_server: FrontServer,
        server_registry: ManagedServerRegistry,
        call_timeout: float = 60.0,
    ):
        self.front_server = front_server
        self.server_registry = server_registry
        self.call_timeout = call_timeout
        self._entries: Dict[str, Set[str]] = {}
        # Every name ever registered on the front server and who owns it.
        self._owners: Dict[str, str] = {}

    async def add_server_tools(self, name: str) -> Result[List[str], AppError]:
        """Register the running server's tools; returns the namespaced names."""
        connection = self.server_registry.get_connection(name)
        if connection is None:
            if not self.server_registry.has(name):
                return Failure(not_found_error("Server", name))
            return Failure(not_running_error(name))

        try:
            tools = await asyncio.wait_for(connection.list_tools(), timeout=self.call_timeout)
        except asyncio.CancelledError:
            raise
        except asyncio.TimeoutError:
            return Failure(timeout_error(f"Listing tools of {name}", self.call_timeout, name=name))
        except Exception as e:
            return Failure(invocation_error(name, "tools/list", str(e)))

        registered: Set[str] = set()
        for tool in tools:
            raw_name = tool["name"]
            tool_name = namespaced(name, raw_name)
            owner = self._owners.get(tool_name)
            if owner is not None and owner != name and owner in self._entries:
                logger.warning(
                    "Tool name already owned by another server, skipping",
                    tool=tool_name,
                    server=name,
                    owner=owner,
                )
                continue

            description = tool.get("description") or raw_name
            accepted = self.front_server.register_tool(
                tool_name,
                tool.get("inputSchema"),
                self._make_handler(name, raw_name),
                description=f"[{name}] {description}",
            )
            if not accepted:
                logger.warning("Front server refused tool name, skipping", tool=tool_name, server=name)
                continue
            self._owners[tool_name] = name
            registered.add(tool_name)

        self._entries[name] = registered
        logger.info("Registered server tools", server=name, tools=len(registered))
        return Success(sorted(registered))

    def remove_server_tools(self, name: str) -> int:
        """
        Forget the server's tools.

        The front server has no unregister call, so the handlers stay
        listed but answer with an error from now on.
        """
        removed = self._entries.pop(name, set())
        if removed:
            logger.info("Removed server tools", server=name, tools=len(removed))
        return len(removed)

    async def refresh_server_tools(self, name: str) -> Result[List[str], AppError]:
        self.remove_server_tools(name)
        return await self.add_server_tools(name)

    def get_server_tools(self, name: str) -> List[str]:
        return sorted(self._entries.get(name, set()))

    def is_tool_registered(self, server_name: str, tool_name: str) -> bool:
        return namespaced(server_name, tool_name) in self._entries.get(server_name, set())

    def get_stats(self) -> ToolRegistryStats:
        per_server = {name: len(tools) for name, tools in self._entries.items()}
        return ToolRegistryStats(
            total_servers=len(per_server),
            total_tools=sum(per_server.values()),
            per_server_counts=per_server,
        )

    def clear_all(self) -> None:
        for name in list(self._entries):
            self.remove_server_tools(name)

    def export_state(self) -> Dict[str, Any]:
        return {
            "servers": {name: self.get_server_tools(name) for name in self._entries},
            "stats": asdict(self.get_stats()),
        }

    def _make_handler(self, server_name: str, tool_name: str) -> ToolHandler:
        async def handler(arguments: Dict[str, Any]) -> Dict[str, Any]:
            return await self._invoke(server_name, tool_name, arguments)

        return handler

    async def _invoke(self, server_name: str, tool_name: str, arguments: Dict[str, Any]) -> Dict[str, Any]:
        """Forward one call; every failure becomes an ``isError`` result."""
        prefix = f"Error calling {tool_name} on {server_name}"

        connection = self.server_registry.get_connection(server_name)
        if connection is None:
            return error_result(f"{prefix}: {not_running_error(server_name).message}")
        if not self.is_tool_registered(server_name, tool_name):
            return error_result(f"{prefix}: tool is no longer provided by {server_name}")

        try:
            result = await asyncio.wait_for(
                connection.call_tool(tool_name, arguments, timeout=self.call_timeout),
                timeout=self.call_timeout,
            )
        except asyncio.CancelledError:
            raise
        except asyncio.TimeoutError:
            logger.warning("Proxied tool call timed out", server=server_name, tool=tool_name, timeout=self.call_timeout)
            return error_result(f"{prefix}: timed out after {self.call_timeout}s")
        except Exception as e:
            logger.warning("Proxied tool call failed", server=server_name, tool=tool_name, error=str(e))
            return error_result(f"{prefix}: {e}")

        if result.get("isError"):
            return {"content": result.get("content") or error_result(prefix)["content"], "isError": True}

        content = result.get("content")
        if not content:
            content = [{"type": "text", "text": json.dumps(result, indent=2, default=str)}]
        return {"content": content, "isError": False}
