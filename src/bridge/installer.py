"""
Installation Orchestrator.

Turns an install request into either a supervised bridge-mode server
(registry entry, live connection, proxied tools) or a direct-mode entry
in the external client's config file. Also hosts the start, stop,
restart and remove use-cases, which must touch the server registry and
the tool registry in matching order.
"""

import re
import shlex
from dataclasses import replace
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import ValidationError
from returns.result import Failure, Result, Success
from structlog import get_logger

from ..core.result_pattern import (
    AppError,
    duplicate_name_error,
    map_error,
    runtime_unavailable_error,
    validation_error,
)
from .container_runtime import ContainerRuntime
from .containers import (
    CONTAINER_PREFIX,
    add_environment_variables,
    build_direct_mode_args,
    build_image_container_command,
    build_npm_container_command,
    container_name_for,
    container_name_from_command,
    harden_command,
    is_container_command,
    split_for_external_config,
)
from .external_config import ExternalConfigStore
from .models import (
    BridgeConfig,
    ControlAction,
    InstallMode,
    InstallOptions,
    InstallOutcome,
    ManagedServer,
    OriginType,
    ServerInfo,
    ServerStatus,
    redact_env_args,
)
from .server_registry import ManagedServerRegistry
from .tool_registry import DynamicToolRegistry

logger = get_logger(__name__)


def generate_server_name(package: str) -> str:
    """``@modelcontextprotocol/server-github`` -> ``modelcontextprotocol-server-github``."""
    name = re.sub(r"[@/]", "-", package)
    name = re.sub(r"[^a-zA-Z0-9-]", "", name)
    return name.strip("-").lower()


def detect_origin_type(package: str) -> OriginType:
    """Image references look like ``name:tag``; everything else is npm."""
    package = package.strip()
    if package.startswith("docker "):
        return OriginType.CONTAINER_IMAGE
    if ":" in package and " " not in package and not package.startswith("@"):
        return OriginType.CONTAINER_IMAGE
    return OriginType.NPM_PACKAGE


class InstallationOrchestrator:
    """Drives the registries and the config store for install and control."""

    def __init__(
        self,
        server_registry: ManagedServerRegistry,
        tool_registry: DynamicToolRegistry,
        config_store: ExternalConfigStore,
        runtime: Optional[ContainerRuntime],
        config: BridgeConfig,
    ):
        self.server_registry = server_registry
        self.tool_registry = tool_registry
        self.config_store = config_store
        self.runtime = runtime
        self.config = config

    async def install(
        self, options: Union[InstallOptions, Dict[str, Any]]
    ) -> Result[InstallOutcome, AppError]:
        if not isinstance(options, InstallOptions):
            try:
                options = InstallOptions.model_validate(options)
            except ValidationError as e:
                errors = [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]
                return Failure(validation_error("Invalid installation options", errors=errors))

        logger.info(
            "Installing server",
            name=options.name,
            mode=options.mode.value,
            origin=options.origin_type.value,
        )
        match options.mode:
            case InstallMode.BRIDGE:
                return await self._install_bridge(options)
            case InstallMode.DIRECT:
                return await self._install_direct(options)

    # Launch commands

    def _image_command(self, options: InstallOptions, container_name: str, mode: InstallMode) -> List[str]:
        """Image name, or a full ``docker run ...`` command line given verbatim."""
        binary = self.config.container_runtime
        if options.package.startswith(f"{binary} "):
            command = add_environment_variables(shlex.split(options.package), options.env)
            if mode is InstallMode.DIRECT:
                command = harden_command(command, self.config.resource_limits)
            return command
        return build_image_container_command(
            options.package,
            container_name=container_name,
            mode=mode,
            env=options.env,
            limits=self.config.resource_limits,
            runtime=binary,
        )

    def build_bridge_command(self, options: InstallOptions) -> List[str]:
        container_name = container_name_for(options.name)
        if options.origin_type is OriginType.NPM_PACKAGE:
            return build_npm_container_command(
                options.package,
                container_name=container_name,
                mode=InstallMode.BRIDGE,
                env=options.env,
                image=self.config.runtime_image,
                runtime=self.config.container_runtime,
            )
        return self._image_command(options, container_name, InstallMode.BRIDGE)

    def build_direct_entry(self, options: InstallOptions) -> Tuple[str, List[str]]:
        """``(command, args)`` of a hardened container for the external config."""
        if options.origin_type is OriginType.NPM_PACKAGE:
            args = build_direct_mode_args(
                options.package,
                env=options.env,
                image=self.config.runtime_image,
                limits=self.config.resource_limits,
                runtime=self.config.container_runtime,
            )
            return self.config.container_runtime, args
        container_name = container_name_for(options.package, prefix=f"{CONTAINER_PREFIX}-direct")
        return split_for_external_config(self._image_command(options, container_name, InstallMode.DIRECT))

    # Modes

    async def _install_bridge(self, options: InstallOptions) -> Result[InstallOutcome, AppError]:
        if self.server_registry.has(options.name):
            return Failure(duplicate_name_error(options.name, "bridge registry"))

        command: List[str] = [] if options.endpoint else self.build_bridge_command(options)
        container_name = None
        if command and is_container_command(command, self.config.container_runtime):
            container_name = container_name_from_command(command)
            if options.auto_start and self.runtime is not None and not await self.runtime.is_available():
                return Failure(runtime_unavailable_error(self.config.container_runtime))

        server = ManagedServer(
            name=options.name,
            origin_type=options.origin_type,
            launch_command=tuple(command),
            env=dict(options.env),
            endpoint=options.endpoint,
            container_name=container_name,
        )
        added = await self.server_registry.add(server)
        if isinstance(added, Failure):
            return added

        outcome = InstallOutcome(
            name=options.name,
            mode=InstallMode.BRIDGE,
            origin_type=options.origin_type,
            status=ServerStatus.INSTALLING,
            command=command[0] if command else "",
            args=redact_env_args(command[1:]),
        )
        if not options.auto_start:
            outcome.next_steps = [f"Start the server with control_mcp_server(name='{options.name}', action='start')"]
            return Success(outcome)

        started = await self.server_registry.start(options.name)
        if isinstance(started, Failure):
            # The entry stays registered in the error state.
            retry = f"control_mcp_server(name='{options.name}', action='start')"
            return map_error(started, lambda error: replace(error, details={**error.details, "retry": retry}))
        tools = await self.tool_registry.add_server_tools(options.name)
        if isinstance(tools, Failure):
            return tools

        outcome.status = ServerStatus.RUNNING
        outcome.tools = tools.unwrap()
        outcome.next_steps = [f"Tools are available with the prefix '{options.name}_'"]
        logger.info("Installed bridge server", name=options.name, tools=len(outcome.tools))
        return Success(outcome)

    async def _install_direct(self, options: InstallOptions) -> Result[InstallOutcome, AppError]:
        exists = await self.config_store.has(options.name)
        if isinstance(exists, Failure):
            return exists
        if exists.unwrap():
            return Failure(duplicate_name_error(options.name, "external config"))

        command, args = self.build_direct_entry(options)
        # Env is already part of the container args.
        added = await self.config_store.add(options.name, command, args)
        if isinstance(added, Failure):
            return added

        config_path = str(self.config_store.get_config_path())
        logger.info("Installed direct server", name=options.name, path=config_path)
        return Success(
            InstallOutcome(
                name=options.name,
                mode=InstallMode.DIRECT,
                origin_type=options.origin_type,
                command=command,
                args=redact_env_args(args),
                config_path=config_path,
                next_steps=[
                    f"Config updated at {config_path}",
                    "Restart the external client to load the server",
                ],
            )
        )

    # Control

    async def control(
        self, name: str, action: Union[ControlAction, str]
    ) -> Result[ServerInfo, AppError]:
        """Run a lifecycle action and keep the proxied tools in step with it."""
        try:
            action = ControlAction(action)
        except ValueError:
            return Failure(validation_error(f"Unknown action: {action}", field="action"))

        logger.info("Controlling server", name=name, action=action.value)
        match action:
            case ControlAction.START:
                result = await self.server_registry.start(name)
                if isinstance(result, Success):
                    tools = await self.tool_registry.add_server_tools(name)
                    if isinstance(tools, Failure):
                        return tools
            case ControlAction.STOP:
                result = await self.server_registry.stop(name)
                if isinstance(result, Success):
                    self.tool_registry.remove_server_tools(name)
            case ControlAction.RESTART:
                result = await self.server_registry.restart(name)
                if isinstance(result, Success):
                    tools = await self.tool_registry.refresh_server_tools(name)
                    if isinstance(tools, Failure):
                        return tools
                else:
                    self.tool_registry.remove_server_tools(name)
            case ControlAction.REMOVE:
                result = await self.server_registry.remove(name)
                if isinstance(result, Success):
                    self.tool_registry.remove_server_tools(name)

        if isinstance(result, Failure):
            return result
        return self.server_registry.get_info(name) if action is not ControlAction.REMOVE else result
