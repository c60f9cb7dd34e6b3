"""MCP Bridge server-management core.

Installs, supervises and proxies child MCP servers (local processes or
containers) behind one front-facing MCP server, and manages direct-mode
entries in an external client's config file.
"""

from .bridge_server import BridgeServer
from .external_config import ExternalConfigStore
from .installer import InstallationOrchestrator
from .server_registry import ManagedServerRegistry
from .tool_registry import DynamicToolRegistry

__all__ = [
    "BridgeServer",
    "DynamicToolRegistry",
    "ExternalConfigStore",
    "InstallationOrchestrator",
    "ManagedServerRegistry",
]

__version__ = "0.1.0"
