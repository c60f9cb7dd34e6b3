"""Shared fakes and fixtures for the bridge tests."""

import asyncio
from typing import Any, Dict, List, Optional

import pytest

from src.bridge.external_config import ExternalConfigStore
from src.bridge.installer import InstallationOrchestrator
from src.bridge.models import BridgeConfig, ContainerStatus, ManagedServer, OriginType
from src.bridge.server_registry import ManagedServerRegistry
from src.bridge.tool_registry import DynamicToolRegistry


def tool_definition(name: str) -> Dict[str, Any]:
    return {
        "name": name,
        "description": f"The {name} tool",
        "inputSchema": {"type": "object", "properties": {"value": {"type": "string"}}},
    }


class FakeConnection:
    """In-memory child connection with scriptable tools and results."""

    def __init__(self, name: str, tools: Optional[List[str]] = None, pid: Optional[int] = None):
        self.name = name
        self.tools = list(tools or [])
        self.pid = pid
        self.calls: List[Dict[str, Any]] = []
        self.results: Dict[str, Any] = {}
        self.call_delay = 0.0
        self.closed = False
        self._close_callback = None

    @property
    def is_alive(self) -> bool:
        return not self.closed

    def set_close_callback(self, callback) -> None:
        self._close_callback = callback

    async def list_tools(self) -> List[Dict[str, Any]]:
        return [tool_definition(name) for name in self.tools]

    async def call_tool(self, name: str, arguments: Dict[str, Any], timeout: Optional[float] = None) -> Dict[str, Any]:
        self.calls.append({"name": name, "arguments": arguments, "timeout": timeout})
        if self.call_delay:
            await asyncio.sleep(self.call_delay)
        result = self.results.get(name)
        if isinstance(result, Exception):
            raise result
        if result is not None:
            return result
        return {"content": [{"type": "text", "text": f"{name} called"}]}

    async def close(self) -> None:
        self.closed = True
        self._close_callback = None

    async def simulate_loss(self) -> None:
        """Behave like a child process that exited on its own."""
        self.closed = True
        callback, self._close_callback = self._close_callback, None
        if callback is not None:
            await callback(self)


class FakeChildFactory:
    """Connection factory handing out FakeConnections per server name."""

    def __init__(self):
        self.tools: Dict[str, List[str]] = {}
        self.failures: Dict[str, Exception] = {}
        self.delays: Dict[str, float] = {}
        self.connections: Dict[str, List[FakeConnection]] = {}

    async def __call__(self, server: ManagedServer, config: BridgeConfig) -> FakeConnection:
        delay = self.delays.get(server.name)
        if delay:
            await asyncio.sleep(delay)
        if server.name in self.failures:
            raise self.failures[server.name]
        connection = FakeConnection(server.name, self.tools.get(server.name, ["echo"]), pid=None)
        self.connections.setdefault(server.name, []).append(connection)
        return connection

    def latest(self, name: str) -> FakeConnection:
        return self.connections[name][-1]


class FakeFrontServer:
    """Records register_tool calls and lets tests invoke the handlers."""

    def __init__(self, reserved=()):
        self.tools: Dict[str, Dict[str, Any]] = {}
        self.reserved = set(reserved)

    def register_tool(self, name, schema, handler, description=None) -> bool:
        if name in self.reserved:
            return False
        self.tools[name] = {"schema": schema, "handler": handler, "description": description}
        return True

    async def call(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return await self.tools[name]["handler"](arguments or {})


class FakeRuntime:
    """Container runtime that keeps container state in a dict."""

    def __init__(self, available: bool = True):
        self.available = available
        self.containers: Dict[str, ContainerStatus] = {}
        self.stopped: List[str] = []
        self.removed: List[str] = []
        self.logs: Dict[str, str] = {}

    async def is_available(self) -> bool:
        return self.available

    async def container_status(self, container_name: str) -> ContainerStatus:
        return self.containers.get(container_name, ContainerStatus.NOT_FOUND)

    async def stop_container(self, container_name: str) -> bool:
        self.stopped.append(container_name)
        if container_name in self.containers:
            self.containers[container_name] = ContainerStatus.STOPPED
        return True

    async def remove_container(self, container_name: str) -> bool:
        self.removed.append(container_name)
        self.containers.pop(container_name, None)
        return True

    async def container_logs(self, container_name: str, lines: int = 50) -> str:
        return self.logs.get(container_name, "")


def make_server(name: str, **kwargs: Any) -> ManagedServer:
    kwargs.setdefault("origin_type", OriginType.NPM_PACKAGE)
    kwargs.setdefault("launch_command", ("node", f"{name}.js"))
    return ManagedServer(name=name, **kwargs)


@pytest.fixture
def bridge_config():
    """Bridge configuration with short timeouts."""
    return BridgeConfig(
        start_timeout=2.0,
        stop_timeout=1.0,
        tool_call_timeout=1.0,
        request_timeout=1.0,
        runtime_command_timeout=1.0,
    )


@pytest.fixture
def child_factory():
    return FakeChildFactory()


@pytest.fixture
def fake_runtime():
    return FakeRuntime()


@pytest.fixture
def front_server():
    return FakeFrontServer()


@pytest.fixture
def server_registry(bridge_config, child_factory, fake_runtime):
    return ManagedServerRegistry(bridge_config, child_factory, fake_runtime)


@pytest.fixture
def tool_registry(front_server, server_registry, bridge_config):
    return DynamicToolRegistry(front_server, server_registry, bridge_config.tool_call_timeout)


@pytest.fixture
def config_path(tmp_path):
    return tmp_path / "claude_desktop_config.json"


@pytest.fixture
def config_store(config_path):
    return ExternalConfigStore(str(config_path))


@pytest.fixture
def orchestrator(server_registry, tool_registry, config_store, fake_runtime, bridge_config):
    return InstallationOrchestrator(server_registry, tool_registry, config_store, fake_runtime, bridge_config)
