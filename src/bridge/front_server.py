"""FastMCP front server that can expose tools registered at runtime."""

import json
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Sequence

from mcp.server.fastmcp import FastMCP
from mcp.server.fastmcp.exceptions import ToolError
from mcp.types import EmbeddedResource, ImageContent, TextContent
from mcp.types import Tool as MCPTool
from pydantic import ValidationError
from structlog import get_logger

logger = get_logger(__name__)

ToolHandler = Callable[[Dict[str, Any]], Awaitable[Dict[str, Any]]]

EMPTY_SCHEMA: Dict[str, Any] = {"type": "object", "properties": {}}


class FrontServer(Protocol):
    """The only front-server capability the tool registry relies on."""

    def register_tool(
        self,
        name: str,
        schema: Optional[Dict[str, Any]],
        handler: ToolHandler,
        description: Optional[str] = None,
    ) -> bool: ...


def to_content_blocks(result: Dict[str, Any]) -> List[Any]:
    """Convert a child ``tools/call`` result into MCP content blocks."""
    blocks: List[Any] = []
    for item in result.get("content") or []:
        if not isinstance(item, dict):
            blocks.append(TextContent(type="text", text=json.dumps(item, default=str)))
            continue
        try:
            match item.get("type"):
                case "text":
                    blocks.append(TextContent.model_validate(item))
                case "image":
                    blocks.append(ImageContent.model_validate(item))
                case "resource":
                    blocks.append(EmbeddedResource.model_validate(item))
                case _:
                    blocks.append(TextContent(type="text", text=json.dumps(item, default=str)))
        except ValidationError:
            blocks.append(TextContent(type="text", text=json.dumps(item, default=str)))

    if not blocks:
        blocks.append(TextContent(type="text", text=json.dumps(result, indent=2, default=str)))
    return blocks


def error_text(result: Dict[str, Any]) -> str:
    texts = [
        item.get("text", "")
        for item in result.get("content") or []
        if isinstance(item, dict) and item.get("type") == "text"
    ]
    return "\n".join(t for t in texts if t) or "Tool call failed"


class BridgeFastMCP(FastMCP):
    """
    FastMCP with a second tool table for proxied tools.

    Proxied tools keep the child's JSON schema verbatim instead of going
    through FastMCP's function introspection. There is no way to remove a
    registration; re-registering a name replaces its handler. Names taken
    by the bridge's own tools can never be proxied.
    """

    def __init__(self, name: Optional[str] = None, **settings: Any):
        super().__init__(name, **settings)
        self._proxied: Dict[str, MCPTool] = {}
        self._proxied_handlers: Dict[str, ToolHandler] = {}

    def register_tool(
        self,
        name: str,
        schema: Optional[Dict[str, Any]],
        handler: ToolHandler,
        description: Optional[str] = None,
    ) -> bool:
        """Add or replace a proxied tool; False when the name is one of the bridge's own."""
        if self._tool_manager.get_tool(name) is not None:
            logger.warning("Tool name is reserved by the bridge, skipping", tool=name)
            return False
        self._proxied[name] = MCPTool(
            name=name,
            description=description or "",
            inputSchema=schema or EMPTY_SCHEMA,
        )
        self._proxied_handlers[name] = handler
        logger.debug("Registered proxied tool", tool=name)
        return True

    async def list_tools(self) -> List[MCPTool]:
        tools = list(await super().list_tools())
        return tools + list(self._proxied.values())

    async def call_tool(self, name: str, arguments: Dict[str, Any]) -> Sequence[Any]:
        handler = self._proxied_handlers.get(name)
        if handler is None:
            return await super().call_tool(name, arguments)

        result = await handler(arguments or {})
        if result.get("isError"):
            raise ToolError(error_text(result))
        return to_content_blocks(result)
