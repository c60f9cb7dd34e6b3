"""Data models for the MCP Bridge server-management core."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence, Set, Tuple

from pydantic import BaseModel, Field, field_validator, model_validator

if TYPE_CHECKING:
    from .connections import ChildConnection


class ServerStatus(Enum):
    """Lifecycle states of a managed server."""

    INSTALLING = "installing"
    RUNNING = "running"
    STOPPED = "stopped"
    ERROR = "error"
    REMOVED = "removed"


class OriginType(Enum):
    """Where a child server comes from."""

    CONTAINER_IMAGE = "container_image"
    NPM_PACKAGE = "npm_package"


class InstallMode(Enum):
    """Installation modes."""

    BRIDGE = "bridge"
    DIRECT = "direct"


class ControlAction(Enum):
    """Lifecycle actions exposed to callers."""

    START = "start"
    STOP = "stop"
    RESTART = "restart"
    REMOVE = "remove"


class ContainerStatus(Enum):
    """Container state as reported by the runtime."""

    RUNNING = "running"
    STOPPED = "stopped"
    NOT_FOUND = "not_found"


REDACTED = "***"
ENV_FLAGS = ("-e", "--env")


def _split_env_arg(previous: Optional[str], arg: str) -> Optional[Tuple[str, str]]:
    """``(prefix, KEY)`` when ``arg`` sets an env value, else None."""
    if previous in ENV_FLAGS and "=" in arg:
        return "", arg.split("=", 1)[0]
    if arg.startswith("--env=") and "=" in arg[len("--env="):]:
        return "--env=", arg[len("--env="):].split("=", 1)[0]
    return None


def redact_env_args(args: Sequence[str]) -> List[str]:
    """Copy of a command line with the value of every ``-e KEY=VALUE`` masked."""
    redacted: List[str] = []
    previous: Optional[str] = None
    for arg in args:
        split = _split_env_arg(previous, arg)
        redacted.append(f"{split[0]}{split[1]}={REDACTED}" if split else arg)
        previous = arg
    return redacted


def env_keys_from_args(args: Sequence[str]) -> List[str]:
    """Names of the variables a container command line sets."""
    keys: Set[str] = set()
    previous: Optional[str] = None
    for arg in args:
        split = _split_env_arg(previous, arg)
        if split:
            keys.add(split[1])
        previous = arg
    return sorted(keys)


@dataclass
class ResourceLimits:
    """Resource caps applied to hardened containers."""

    memory: Optional[str] = "512m"
    cpus: Optional[str] = "0.5"
    pids_limit: Optional[int] = 100


@dataclass
class ManagedServer:
    """A bridge-mode child server and its live connection."""

    name: str
    origin_type: OriginType
    launch_command: Tuple[str, ...] = ()
    env: Dict[str, str] = field(default_factory=dict, repr=False)
    status: ServerStatus = ServerStatus.INSTALLING
    advertised_tools: Set[str] = field(default_factory=set)
    connection: Optional["ChildConnection"] = field(default=None, repr=False)
    endpoint: Optional[str] = None
    container_name: Optional[str] = None
    last_error: Optional[str] = None
    last_known_tools: Set[str] = field(default_factory=set)
    created_at: datetime = field(default_factory=datetime.now)
    started_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        self.launch_command = tuple(self.launch_command)

    @property
    def is_running(self) -> bool:
        return self.status is ServerStatus.RUNNING

    def snapshot(self) -> "ServerInfo":
        """Detached copy without the connection handle or env values."""
        return ServerInfo(
            name=self.name,
            origin_type=self.origin_type,
            status=self.status,
            tools=sorted(self.advertised_tools),
            last_known_tools=sorted(self.last_known_tools),
            endpoint=self.endpoint,
            container_name=self.container_name,
            launch_command=redact_env_args(self.launch_command),
            env_keys=sorted(set(self.env) | set(env_keys_from_args(self.launch_command))),
            last_error=self.last_error,
            created_at=self.created_at,
            started_at=self.started_at,
        )


class ServerInfo(BaseModel):
    """Read-only snapshot of a managed server."""

    name: str
    origin_type: OriginType
    status: ServerStatus
    tools: List[str] = Field(default_factory=list)
    last_known_tools: List[str] = Field(default_factory=list)
    endpoint: Optional[str] = None
    container_name: Optional[str] = None
    launch_command: List[str] = Field(default_factory=list)
    env_keys: List[str] = Field(default_factory=list)
    last_error: Optional[str] = None
    created_at: datetime
    started_at: Optional[datetime] = None


class ServerHealth(BaseModel):
    """Health report for a single managed server."""

    status: ServerStatus
    tool_count: int = 0
    last_error: Optional[str] = None
    pid: Optional[int] = None
    memory_mb: Optional[float] = None
    cpu_percent: Optional[float] = None
    uptime_seconds: Optional[float] = None
    recent_logs: Optional[str] = None


class HealthCheckEntry(BaseModel):
    """Result of checking one server during a sweep."""

    status: ServerStatus
    healthy: bool
    issues: List[str] = Field(default_factory=list)


@dataclass
class RegistryStats:
    """Counts of managed servers per status."""

    total: int = 0
    running: int = 0
    stopped: int = 0
    error: int = 0
    installing: int = 0
    total_tools: int = 0


@dataclass
class ToolRegistryStats:
    """Aggregate view of dynamically registered tools."""

    total_servers: int = 0
    total_tools: int = 0
    per_server_counts: Dict[str, int] = field(default_factory=dict)


@dataclass
class CommandResult:
    """Outcome of one container runtime invocation."""

    exit_code: int
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not self.timed_out


class ExternalServerConfig(BaseModel):
    """One server entry of the external client's config file."""

    name: str
    command: str
    args: List[str] = Field(default_factory=list)
    env: Dict[str, str] = Field(default_factory=dict)

    def to_entry(self) -> Dict[str, Any]:
        """Shape stored under ``mcpServers[name]``; empty env is omitted."""
        entry: Dict[str, Any] = {"command": self.command, "args": list(self.args)}
        if self.env:
            entry["env"] = dict(self.env)
        return entry


class ValidationReport(BaseModel):
    """All shape violations found in the external config file."""

    valid: bool
    errors: List[str] = Field(default_factory=list)


class ConfigFileInfo(BaseModel):
    """Location and metadata of the external config file."""

    path: str
    exists: bool
    size: Optional[int] = None
    modified: Optional[datetime] = None


class InstallOptions(BaseModel):
    """Validated install request."""

    name: str
    package: str
    origin_type: OriginType = OriginType.NPM_PACKAGE
    mode: InstallMode = InstallMode.BRIDGE
    auto_start: bool = True
    env: Dict[str, str] = Field(default_factory=dict)
    endpoint: Optional[str] = None

    @field_validator("name", "package")
    @classmethod
    def not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be empty")
        return v

    @field_validator("name")
    @classmethod
    def no_whitespace(cls, v: str) -> str:
        if any(ch.isspace() for ch in v):
            raise ValueError("must not contain whitespace")
        return v

    @model_validator(mode="after")
    def endpoint_is_bridge_only(self) -> "InstallOptions":
        if self.endpoint and self.mode is InstallMode.DIRECT:
            raise ValueError("endpoint is only supported in bridge mode")
        return self


class InstallOutcome(BaseModel):
    """What an install did and what the caller has to do next."""

    name: str
    mode: InstallMode
    origin_type: OriginType
    status: Optional[ServerStatus] = None
    command: str = ""
    args: List[str] = Field(default_factory=list)
    tools: List[str] = Field(default_factory=list)
    config_path: Optional[str] = None
    next_steps: List[str] = Field(default_factory=list)


@dataclass
class BridgeConfig:
    """Runtime knobs consumed by the bridge components."""

    # Front server
    server_name: str = "mcp-bridge"

    # Container runtime
    container_runtime: str = "docker"
    runtime_image: str = "node:18-alpine"
    container_memory: Optional[str] = "512m"
    container_cpus: Optional[str] = "0.5"
    container_pids_limit: Optional[int] = 100
    runtime_command_timeout: float = 30.0  # seconds

    # Child servers
    start_timeout: float = 120.0  # seconds, includes image pulls
    stop_timeout: float = 5.0  # seconds
    tool_call_timeout: float = 60.0  # seconds
    request_timeout: float = 30.0  # seconds, for protocol housekeeping calls

    # External client config
    external_config_path: Optional[str] = None

    # Maintenance
    maintenance_interval: int = 0  # seconds, 0 disables

    # Logging
    log_requests: bool = False
    log_responses: bool = False

    @property
    def resource_limits(self) -> ResourceLimits:
        return ResourceLimits(
            memory=self.container_memory,
            cpus=self.container_cpus,
            pids_limit=self.container_pids_limit,
        )
