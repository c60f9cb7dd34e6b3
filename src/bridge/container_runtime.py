"""Thin async wrapper over the container engine CLI."""

import asyncio
from typing import Optional

from structlog import get_logger

from .models import CommandResult, ContainerStatus

logger = get_logger(__name__)

MISSING_BINARY_EXIT_CODE = 127


class ContainerRuntime:
    """Runs container engine commands (``docker ps``, ``docker stop``...)."""

    def __init__(self, binary: str = "docker", timeout: float = 30.0):
        self.binary = binary
        self.timeout = timeout

    async def _run(self, *args: str, timeout: Optional[float] = None) -> CommandResult:
        """Run ``binary *args`` and capture its output; never raises for exit codes."""
        timeout = timeout or self.timeout
        try:
            process = await asyncio.create_subprocess_exec(
                self.binary,
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except (FileNotFoundError, PermissionError) as e:
            logger.debug("Container runtime binary not executable", binary=self.binary, error=str(e))
            return CommandResult(exit_code=MISSING_BINARY_EXIT_CODE, stderr=str(e))

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            logger.warning(
                "Container runtime command timed out",
                binary=self.binary,
                args=list(args),
                timeout=timeout,
            )
            return CommandResult(exit_code=-1, timed_out=True)

        return CommandResult(
            exit_code=process.returncode if process.returncode is not None else -1,
            stdout=stdout.decode(errors="replace"),
            stderr=stderr.decode(errors="replace"),
        )

    async def is_available(self) -> bool:
        """True when the engine binary answers ``--version``."""
        result = await self._run("--version")
        if not result.ok:
            logger.info("Container runtime not available", binary=self.binary, stderr=result.stderr.strip())
        return result.ok

    async def container_status(self, container_name: str) -> ContainerStatus:
        result = await self._run(
            "ps",
            "-a",
            "--filter",
            f"name=^{container_name}$",
            "--format",
            "{{.Status}}",
        )
        output = result.stdout.strip()
        if not result.ok or not output:
            return ContainerStatus.NOT_FOUND
        if "up" in output.lower():
            return ContainerStatus.RUNNING
        return ContainerStatus.STOPPED

    async def stop_container(self, container_name: str) -> bool:
        result = await self._run("stop", container_name)
        if result.ok:
            logger.info("Stopped container", container=container_name)
        else:
            logger.debug("Container stop failed", container=container_name, stderr=result.stderr.strip())
        return result.ok

    async def remove_container(self, container_name: str) -> bool:
        result = await self._run("rm", "-f", container_name)
        if result.ok:
            logger.info("Removed container", container=container_name)
        else:
            logger.debug("Container remove failed", container=container_name, stderr=result.stderr.strip())
        return result.ok

    async def container_logs(self, container_name: str, lines: int = 50) -> str:
        """Last ``lines`` log lines (stdout and stderr combined); empty on failure."""
        result = await self._run("logs", "--tail", str(lines), container_name)
        if not result.ok:
            return ""
        return result.stdout + result.stderr
