"""
Container command construction.

Pure functions that turn a package identifier or image plus an
environment map into a sandboxed container invocation. Nothing here
executes anything; see ``container_runtime`` for that.

npm packages are installed at container start and then executed
(``npm install -g pkg && npx pkg``) on a stock Node image, so there is
no image to build or maintain per package.
"""

import re
from typing import Dict, List, Optional, Sequence, Tuple

from .models import InstallMode, ResourceLimits

DEFAULT_RUNTIME = "docker"
DEFAULT_RUNTIME_IMAGE = "node:18-alpine"
CONTAINER_PREFIX = "mcp"
PUBLISHED_PORT = "0:3000"

SECURITY_OPTIONS = (
    "--read-only",
    "--no-new-privileges",
    "--security-opt",
    "no-new-privileges:true",
)


def container_name_for(identifier: str, prefix: str = CONTAINER_PREFIX) -> str:
    """``@scope/pkg`` -> ``mcp--scope-pkg``; image tags lose their colon."""
    cleaned = re.sub(r"[@/]", "-", identifier)
    cleaned = re.sub(r"[^a-zA-Z0-9_.-]", "-", cleaned)
    return f"{prefix}-{cleaned}"


def _insert_after_run(command: Sequence[str], options: Sequence[str]) -> List[str]:
    command = list(command)
    if not options or "run" not in command:
        return command
    run_index = command.index("run")
    return command[: run_index + 1] + list(options) + command[run_index + 1 :]


def add_environment_variables(command: Sequence[str], env: Optional[Dict[str, str]]) -> List[str]:
    """Insert ``-e KEY=VALUE`` pairs right after ``run``, keys sorted."""
    options: List[str] = []
    for key in sorted(env or {}):
        options.extend(["-e", f"{key}={env[key]}"])
    return _insert_after_run(command, options)


def add_resource_limits(command: Sequence[str], limits: Optional[ResourceLimits] = None) -> List[str]:
    """Insert memory, CPU and process-count caps right after ``run``."""
    limits = limits or ResourceLimits()
    options: List[str] = []
    if limits.memory:
        options.extend(["--memory", limits.memory])
    if limits.cpus:
        options.extend(["--cpus", limits.cpus])
    if limits.pids_limit:
        options.extend(["--pids-limit", str(limits.pids_limit)])
    return _insert_after_run(command, options)


def add_security_options(command: Sequence[str]) -> List[str]:
    """Insert read-only root and no-new-privileges right after ``run``."""
    return _insert_after_run(command, SECURITY_OPTIONS)


def harden_command(command: Sequence[str], limits: Optional[ResourceLimits] = None) -> List[str]:
    """Resource caps plus security options, as used for unsupervised containers."""
    return add_security_options(add_resource_limits(command, limits))


def build_npm_container_command(
    package: str,
    container_name: Optional[str] = None,
    mode: InstallMode = InstallMode.BRIDGE,
    env: Optional[Dict[str, str]] = None,
    include_port_mapping: bool = False,
    image: str = DEFAULT_RUNTIME_IMAGE,
    limits: Optional[ResourceLimits] = None,
    runtime: str = DEFAULT_RUNTIME,
) -> List[str]:
    """
    Build the argv that installs and runs an npm MCP server in a container.

    Bridge mode talks to the child over its stdio pipe, so nothing is
    published and no hardening is applied. Direct mode containers run for
    the life of the external client without supervision and always get
    resource caps and security options.
    """
    command = [runtime, "run", "--rm", "-i", "--name", container_name or container_name_for(package)]
    if include_port_mapping:
        command.extend(["-p", PUBLISHED_PORT])
    command.extend([image, "sh", "-c", f"npm install -g {package} && npx {package}"])

    command = add_environment_variables(command, env)
    if mode is InstallMode.DIRECT:
        command = harden_command(command, limits)
    return command


def build_image_container_command(
    image: str,
    container_name: Optional[str] = None,
    mode: InstallMode = InstallMode.BRIDGE,
    env: Optional[Dict[str, str]] = None,
    limits: Optional[ResourceLimits] = None,
    runtime: str = DEFAULT_RUNTIME,
) -> List[str]:
    """Pass-through command for an origin that already is a container image."""
    command = [runtime, "run", "--rm", "-i", "--name", container_name or container_name_for(image), image]
    command = add_environment_variables(command, env)
    if mode is InstallMode.DIRECT:
        command = harden_command(command, limits)
    return command


def split_for_external_config(command: Sequence[str]) -> Tuple[str, List[str]]:
    """Split argv into the ``command`` + ``args`` shape of the external config."""
    if not command:
        raise ValueError("empty command")
    return command[0], list(command[1:])


def build_direct_mode_args(
    package: str,
    env: Optional[Dict[str, str]] = None,
    image: str = DEFAULT_RUNTIME_IMAGE,
    limits: Optional[ResourceLimits] = None,
    runtime: str = DEFAULT_RUNTIME,
) -> List[str]:
    """Hardened npm container argv without the leading runtime token."""
    command = build_npm_container_command(
        package,
        container_name=container_name_for(package, prefix=f"{CONTAINER_PREFIX}-direct"),
        mode=InstallMode.DIRECT,
        env=env,
        image=image,
        limits=limits,
        runtime=runtime,
    )
    return split_for_external_config(command)[1]


def is_container_command(command: Sequence[str], runtime: str = DEFAULT_RUNTIME) -> bool:
    return len(command) >= 2 and command[0] == runtime and "run" in command


def container_name_from_command(command: Sequence[str], fallback: Optional[str] = None) -> Optional[str]:
    """Value of ``--name`` in argv, else ``fallback``."""
    command = list(command)
    if "--name" in command:
        index = command.index("--name")
        if index + 1 < len(command):
            return command[index + 1]
    return fallback
