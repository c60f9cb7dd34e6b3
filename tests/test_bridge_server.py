"""Tests for the bridge server wiring and maintenance."""

import json

import pytest
import pytest_asyncio

from src.bridge.bridge_server import BridgeServer
from src.bridge.config import BridgeSettings
from src.bridge.external_config import ExternalConfigStore
from src.bridge.models import ContainerStatus, ServerStatus
from src.core.error_handling import LaunchError

from conftest import FakeChildFactory, FakeRuntime


@pytest.fixture
def settings():
    return BridgeSettings(start_timeout=2.0, tool_call_timeout=1.0, stop_timeout=1.0)


@pytest_asyncio.fixture
async def bridge(settings, config_path):
    server = BridgeServer(
        settings=settings,
        connection_factory=FakeChildFactory(),
        runtime=FakeRuntime(),
        config_store=ExternalConfigStore(str(config_path)),
    )
    await server.start()
    yield server
    await server.shutdown()


class TestWiring:
    @pytest.mark.asyncio
    async def test_management_tools_registered(self, bridge):
        names = {tool.name for tool in await bridge.mcp.list_tools()}
        assert "install_mcp_server" in names
        assert "control_mcp_server" in names

    @pytest.mark.asyncio
    async def test_installed_tools_reach_front_server(self, bridge):
        result = await bridge.orchestrator.install({"name": "alpha", "package": "alpha-pkg"})
        assert result.unwrap().status is ServerStatus.RUNNING

        names = {tool.name for tool in await bridge.mcp.list_tools()}
        assert "alpha_echo" in names

        blocks = await bridge.mcp.call_tool("alpha_echo", {})
        assert blocks[0].text == "echo called"

    @pytest.mark.asyncio
    async def test_settings_flow_into_components(self, bridge, settings):
        assert bridge.config.start_timeout == settings.start_timeout
        assert bridge.tool_registry.call_timeout == settings.tool_call_timeout


class TestMaintenance:
    @pytest.mark.asyncio
    async def test_perform_maintenance(self, bridge):
        factory = bridge.server_registry._connection_factory
        factory.failures["flaky"] = LaunchError("boom")
        await bridge.orchestrator.install({"name": "flaky", "package": "flaky-pkg"})
        await bridge.orchestrator.install({"name": "idle", "package": "idle-pkg"})
        await bridge.orchestrator.control("idle", "stop")
        bridge.runtime.containers["mcp-idle"] = ContainerStatus.STOPPED
        del factory.failures["flaky"]

        report = await bridge.perform_maintenance()

        assert report == {"restarted": ["flaky"], "cleaned_containers": ["mcp-idle"]}
        assert bridge.tool_registry.get_server_tools("flaky") == ["flaky_echo"]

    @pytest.mark.asyncio
    async def test_maintenance_loop_runs(self, config_path):
        settings = BridgeSettings(maintenance_interval=1, start_timeout=2.0)
        server = BridgeServer(
            settings=settings,
            connection_factory=FakeChildFactory(),
            runtime=FakeRuntime(),
            config_store=ExternalConfigStore(str(config_path)),
        )
        await server.start()
        assert server._maintenance_task is not None

        await server.shutdown()

        assert server._maintenance_task is None


class TestIntrospection:
    @pytest.mark.asyncio
    async def test_stats_and_export(self, bridge):
        await bridge.orchestrator.install({"name": "alpha", "package": "alpha-pkg", "env": {"TOKEN": "secret"}})

        stats = bridge.get_stats()
        assert stats["servers"]["running"] == 1
        assert stats["tools"]["total_tools"] == 1

        state = bridge.export_state()
        assert state["servers"][0]["name"] == "alpha"
        assert "secret" not in json.dumps(state)

    @pytest.mark.asyncio
    async def test_health_check(self, bridge):
        await bridge.orchestrator.install({"name": "alpha", "package": "alpha-pkg"})
        bridge.runtime.containers["mcp-alpha"] = ContainerStatus.RUNNING

        health = await bridge.health_check()

        assert health["healthy"] is True
        assert health["runtime_available"] is True
        assert health["servers"]["alpha"]["status"] == "running"

    @pytest.mark.asyncio
    async def test_shutdown_stops_children(self, bridge):
        await bridge.orchestrator.install({"name": "alpha", "package": "alpha-pkg"})
        connection = bridge.server_registry.get_connection("alpha")

        await bridge.shutdown()

        assert connection.closed
        assert bridge.tool_registry.get_stats().total_tools == 0
        assert bridge.server_registry.get_info("alpha").unwrap().status is ServerStatus.STOPPED
