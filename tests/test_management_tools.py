"""Tests for the bridge's management tools."""

import json

import pytest
from returns.result import Failure, Success

from src.bridge.front_server import BridgeFastMCP
from src.bridge.management_tools import ManagementTools, format_mcp_response
from src.core.error_handling import LaunchError
from src.core.result_pattern import AppError, ErrorKind


@pytest.fixture
def tools(orchestrator, server_registry, config_store):
    return ManagementTools(orchestrator, server_registry, config_store)


class TestFormatResponse:
    def test_success(self):
        assert format_mcp_response(Success({"a": 1})) == {"success": True, "data": {"a": 1}}

    def test_failure_carries_hint(self):
        response = format_mcp_response(Failure(AppError(ErrorKind.DUPLICATE_NAME, "taken", {"name": "x"})))

        assert response["success"] is False
        assert response["error"]["code"] == "duplicate_name"
        assert response["error"]["details"] == {"name": "x"}
        assert "hint" in response["error"]

    def test_failure_without_hint(self):
        response = format_mcp_response(Failure(AppError(ErrorKind.SYSTEM, "boom")))
        assert "hint" not in response["error"]


class TestRegistration:
    @pytest.mark.asyncio
    async def test_tools_listed_on_front_server(self, tools):
        mcp = BridgeFastMCP("test")
        tools.register(mcp)

        names = {tool.name for tool in await mcp.list_tools()}

        assert names == {
            "install_mcp_server",
            "list_managed_servers",
            "control_mcp_server",
            "get_server_health",
            "list_external_servers",
            "remove_external_server",
            "validate_external_config",
        }


class TestInstallTool:
    @pytest.mark.asyncio
    async def test_bridge_install_derives_name(self, tools, front_server):
        response = await tools.install_mcp_server("@modelcontextprotocol/server-github")

        assert response["success"] is True
        data = response["data"]
        assert data["name"] == "modelcontextprotocol-server-github"
        assert data["status"] == "running"
        assert data["tools"] == ["modelcontextprotocol-server-github_echo"]
        assert "modelcontextprotocol-server-github_echo" in front_server.tools

    @pytest.mark.asyncio
    async def test_bridge_install_keeps_env_values_out_of_responses(self, tools):
        installed = await tools.install_mcp_server("@scope/pkg", name="pkg", env={"TOKEN": "s3cr3t"})
        listed = await tools.list_managed_servers()

        assert "TOKEN=***" in installed["data"]["args"]
        assert listed["data"][0]["env_keys"] == ["TOKEN"]
        assert "s3cr3t" not in json.dumps(installed)
        assert "s3cr3t" not in json.dumps(listed)

    @pytest.mark.asyncio
    async def test_direct_install(self, tools, config_path):
        response = await tools.install_mcp_server("mcp-server-time", name="time", mode="direct")

        assert response["success"] is True
        assert response["data"]["config_path"] == str(config_path)
        assert "time" in json.loads(config_path.read_text())["mcpServers"]

    @pytest.mark.asyncio
    async def test_type_alias(self, tools):
        response = await tools.install_mcp_server("acme/mcp", name="acme", type="docker", auto_start=False)

        assert response["data"]["origin_type"] == "container_image"

    @pytest.mark.asyncio
    async def test_unknown_type(self, tools):
        response = await tools.install_mcp_server("x", type="pip")

        assert response["success"] is False
        assert response["error"]["code"] == "validation"

    @pytest.mark.asyncio
    async def test_unknown_mode(self, tools):
        response = await tools.install_mcp_server("x", mode="sideways")
        assert response["error"]["code"] == "validation"

    @pytest.mark.asyncio
    async def test_duplicate(self, tools):
        await tools.install_mcp_server("x", name="dup")

        response = await tools.install_mcp_server("y", name="dup")

        assert response["error"]["code"] == "duplicate_name"
        assert response["error"]["hint"]


class TestServerTools:
    @pytest.mark.asyncio
    async def test_list_and_control(self, tools):
        await tools.install_mcp_server("x", name="alpha")

        listed = await tools.list_managed_servers()
        assert [s["name"] for s in listed["data"]] == ["alpha"]
        assert listed["data"][0]["status"] == "running"

        stopped = await tools.control_mcp_server("alpha", "stop")
        assert stopped["data"]["status"] == "stopped"

        bad = await tools.control_mcp_server("alpha", "explode")
        assert bad["error"]["code"] == "validation"

    @pytest.mark.asyncio
    async def test_health(self, tools, child_factory, fake_runtime):
        child_factory.failures["broken"] = LaunchError("boom")
        fake_runtime.logs["mcp-broken"] = "npm ERR! 404 Not Found"
        await tools.install_mcp_server("x", name="alpha")
        await tools.install_mcp_server("y", name="broken")

        single = await tools.get_server_health("alpha")
        assert single["data"]["status"] == "running"
        assert single["data"]["tool_count"] == 1
        assert single["data"]["recent_logs"] is None

        failed = await tools.get_server_health("broken")
        assert failed["data"]["status"] == "error"
        assert failed["data"]["recent_logs"] == "npm ERR! 404 Not Found"

        sweep = await tools.get_server_health()
        assert sweep["data"]["broken"]["healthy"] is False

        missing = await tools.get_server_health("ghost")
        assert missing["error"]["code"] == "not_found"


class TestExternalTools:
    @pytest.mark.asyncio
    async def test_list_hides_env_values(self, tools, config_path):
        await tools.install_mcp_server("@scope/pkg", name="pkg", mode="direct", env={"TOKEN": "s3cr3t"})

        response = await tools.list_external_servers()

        assert response["data"]["config_path"] == str(config_path)
        server = response["data"]["servers"][0]
        assert server["env_keys"] == ["TOKEN"]
        assert "TOKEN=***" in server["args"]
        assert "s3cr3t" not in json.dumps(response)
        assert "TOKEN=s3cr3t" in config_path.read_text()

    @pytest.mark.asyncio
    async def test_list_reports_env_section_keys(self, tools, config_store):
        await config_store.add("x", "docker", ["run"], {"TOKEN": "secret"})

        server = (await tools.list_external_servers())["data"]["servers"][0]

        assert server["env_keys"] == ["TOKEN"]

    @pytest.mark.asyncio
    async def test_remove(self, tools, config_store):
        await config_store.add("x", "docker")

        removed = await tools.remove_external_server("x")
        missing = await tools.remove_external_server("x")

        assert removed["data"]["removed"] == "x"
        assert missing["error"]["code"] == "not_found"

    @pytest.mark.asyncio
    async def test_validate(self, tools, config_path):
        config_path.write_text(json.dumps({"mcpServers": {"bad": {"args": []}}}))

        response = await tools.validate_external_config()

        assert response["data"]["valid"] is False
        assert len(response["data"]["errors"]) == 1

    @pytest.mark.asyncio
    async def test_malformed_file(self, tools, config_path):
        config_path.write_text("{")

        response = await tools.list_external_servers()

        assert response["error"]["code"] == "config_io"
