"""Configuration module for the MCP Bridge."""

from functools import cached_property
from typing import Annotated, Any, Dict, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import BridgeConfig


class BridgeSettings(BaseSettings):
    """Bridge configuration loaded from the environment and ``.env``."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        env_prefix="BRIDGE_",
        extra="ignore",
    )

    # Front server
    server_name: Annotated[str, Field(default="mcp-bridge")]
    transport: Annotated[str, Field(default="stdio", pattern="^(stdio|http)$")]
    host: Annotated[str, Field(default="127.0.0.1")]
    port: Annotated[int, Field(default=3000, ge=1, le=65535)]

    # Container runtime
    container_runtime: Annotated[str, Field(default="docker")]
    runtime_image: Annotated[str, Field(default="node:18-alpine")]
    container_memory: Annotated[Optional[str], Field(default="512m")]
    container_cpus: Annotated[Optional[str], Field(default="0.5")]
    container_pids_limit: Annotated[Optional[int], Field(default=100, ge=1)]
    runtime_command_timeout: Annotated[float, Field(default=30.0, gt=0)]

    # Child servers
    start_timeout: Annotated[float, Field(default=120.0, gt=0)]
    stop_timeout: Annotated[float, Field(default=5.0, gt=0)]
    tool_call_timeout: Annotated[float, Field(default=60.0, gt=0)]
    request_timeout: Annotated[float, Field(default=30.0, gt=0)]

    # External client config
    external_config_path: Annotated[Optional[str], Field(default=None)]

    # Maintenance
    maintenance_interval: Annotated[int, Field(default=0, ge=0)]

    # Logging
    log_level: Annotated[
        str,
        Field(
            default="INFO",
            pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
        ),
    ]
    log_file: Annotated[Optional[str], Field(default=None)]
    log_requests: Annotated[bool, Field(default=False)]
    log_responses: Annotated[bool, Field(default=False)]

    @field_validator("log_level", "transport", mode="before")
    @classmethod
    def normalize_case(cls, v: Any) -> Any:
        """Accept ``info`` as well as ``INFO`` and ``HTTP`` as well as ``http``."""
        match v:
            case str() as s if s.lower() in ("stdio", "http"):
                return s.lower()
            case str() as s:
                return s.upper()
            case _:
                return v

    @field_validator("external_config_path", "container_memory", "container_cpus", mode="before")
    @classmethod
    def empty_as_none(cls, v: Any) -> Any:
        match v:
            case str() as s if not s.strip():
                return None
            case _:
                return v

    @cached_property
    def is_stdio(self) -> bool:
        """True when stdout is reserved for the front server's JSON-RPC stream."""
        return self.transport == "stdio"

    def to_bridge_config(self) -> BridgeConfig:
        """Convert settings to the BridgeConfig consumed by components."""
        return BridgeConfig(
            server_name=self.server_name,
            container_runtime=self.container_runtime,
            runtime_image=self.runtime_image,
            container_memory=self.container_memory,
            container_cpus=self.container_cpus,
            container_pids_limit=self.container_pids_limit,
            runtime_command_timeout=self.runtime_command_timeout,
            start_timeout=self.start_timeout,
            stop_timeout=self.stop_timeout,
            tool_call_timeout=self.tool_call_timeout,
            request_timeout=self.request_timeout,
            external_config_path=self.external_config_path,
            maintenance_interval=self.maintenance_interval,
            log_requests=self.log_requests,
            log_responses=self.log_responses,
        )

    def get_runtime_info(self) -> Dict[str, Any]:
        """Get runtime configuration information for the startup banner."""
        return {
            "server_name": self.server_name,
            "transport": self.transport,
            "endpoint": f"http://{self.host}:{self.port}/mcp" if not self.is_stdio else "stdio",
            "container_runtime": self.container_runtime,
            "runtime_image": self.runtime_image,
            "timeouts": {
                "start": self.start_timeout,
                "tool_call": self.tool_call_timeout,
                "runtime_command": self.runtime_command_timeout,
            },
            "maintenance_interval": self.maintenance_interval or None,
        }


_settings: Optional[BridgeSettings] = None


def get_settings() -> BridgeSettings:
    """Get or create the settings instance."""
    global _settings
    if _settings is None:
        _settings = BridgeSettings()
    return _settings


def reload_settings() -> BridgeSettings:
    """Reload settings from the environment (useful for testing)."""
    global _settings
    _settings = BridgeSettings()
    return _settings
