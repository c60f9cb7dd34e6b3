"""Live transport handles to child MCP servers (stdio subprocess or HTTP)."""

import asyncio
import itertools
import json
import os
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Sequence, runtime_checkable

import httpx
from structlog import get_logger

from ..core.error_handling import InvocationError, LaunchError, TransportError
from .models import BridgeConfig, ManagedServer

logger = get_logger(__name__)

PROTOCOL_VERSION = "2024-11-05"
CLIENT_INFO = {"name": "mcp-bridge", "version": "0.1.0"}
STREAM_LIMIT = 1024 * 1024  # 1MB line buffer

CloseCallback = Callable[["ChildConnection"], Awaitable[None]]


@runtime_checkable
class ChildConnection(Protocol):
    """What the registry and tool registry need from a child transport."""

    @property
    def pid(self) -> Optional[int]: ...

    @property
    def is_alive(self) -> bool: ...

    def set_close_callback(self, callback: Optional[CloseCallback]) -> None: ...

    async def list_tools(self) -> List[Dict[str, Any]]: ...

    async def call_tool(
        self, name: str, arguments: Dict[str, Any], timeout: Optional[float] = None
    ) -> Dict[str, Any]: ...

    async def close(self) -> None: ...


class BaseConnection(ABC):
    """JSON-RPC client half shared by both transports."""

    def __init__(self, name: str, request_timeout: float = 30.0):
        self.name = name
        self.request_timeout = request_timeout
        self.server_info: Dict[str, Any] = {}
        self.capabilities: Dict[str, Any] = {}
        self._ids = itertools.count(1)
        self._closed = False
        self._close_callback: Optional[CloseCallback] = None

    @property
    def pid(self) -> Optional[int]:
        return None

    @property
    def is_alive(self) -> bool:
        return not self._closed

    def set_close_callback(self, callback: Optional[CloseCallback]) -> None:
        """Called once if the transport goes away without ``close()``."""
        self._close_callback = callback

    async def _notify_lost(self) -> None:
        callback, self._close_callback = self._close_callback, None
        if callback is None:
            return
        try:
            await callback(self)
        except Exception as e:
            logger.error("Connection close callback failed", server=self.name, error=str(e))

    @abstractmethod
    async def request(
        self, method: str, params: Optional[Dict[str, Any]] = None, timeout: Optional[float] = None
    ) -> Dict[str, Any]:
        """Send a request and return its ``result``."""

    @abstractmethod
    async def notify(self, method: str, params: Optional[Dict[str, Any]] = None) -> None:
        """Send a notification (no response)."""

    @abstractmethod
    async def close(self) -> None:
        """Tear down the transport."""

    async def initialize(self) -> None:
        """MCP handshake: ``initialize`` then ``notifications/initialized``."""
        result = await self.request(
            "initialize",
            {
                "protocolVersion": PROTOCOL_VERSION,
                "capabilities": {},
                "clientInfo": CLIENT_INFO,
            },
        )
        self.capabilities = result.get("capabilities", {})
        self.server_info = result.get("serverInfo", {})
        await self.notify("notifications/initialized")
        logger.info(
            "Child connection initialized",
            server=self.name,
            child=self.server_info.get("name"),
            protocol=result.get("protocolVersion"),
        )

    async def list_tools(self) -> List[Dict[str, Any]]:
        """All tools, following ``nextCursor`` pagination."""
        tools: List[Dict[str, Any]] = []
        cursor: Optional[str] = None
        while True:
            result = await self.request("tools/list", {"cursor": cursor} if cursor else {})
            tools.extend(t for t in result.get("tools", []) if isinstance(t, dict) and t.get("name"))
            cursor = result.get("nextCursor")
            if not cursor:
                return tools

    async def call_tool(
        self, name: str, arguments: Dict[str, Any], timeout: Optional[float] = None
    ) -> Dict[str, Any]:
        return await self.request("tools/call", {"name": name, "arguments": arguments or {}}, timeout=timeout)

    def _next_id(self) -> int:
        return next(self._ids)

    @staticmethod
    def _result_or_raise(message: Dict[str, Any], method: str) -> Dict[str, Any]:
        if "error" in message:
            error = message["error"] or {}
            raise InvocationError(
                f"MCP error: {error.get('message', 'unknown error')}",
                method=method,
                code=error.get("code"),
            )
        result = message.get("result")
        return result if isinstance(result, dict) else {}


class StdioConnection(BaseConnection):
    """Child server spoken to over newline-delimited JSON-RPC on its stdio."""

    def __init__(
        self,
        name: str,
        command: Sequence[str],
        env: Optional[Dict[str, str]] = None,
        request_timeout: float = 30.0,
        stop_timeout: float = 5.0,
        log_requests: bool = False,
        log_responses: bool = False,
    ):
        super().__init__(name, request_timeout)
        self.command = list(command)
        self.env = env or {}
        self.stop_timeout = stop_timeout
        self.log_requests = log_requests
        self.log_responses = log_responses
        self.process: Optional[asyncio.subprocess.Process] = None
        self.reader_task: Optional[asyncio.Task] = None
        self.stderr_task: Optional[asyncio.Task] = None
        self.pending_requests: Dict[str, asyncio.Future] = {}
        self._write_lock = asyncio.Lock()

    @property
    def pid(self) -> Optional[int]:
        return self.process.pid if self.process else None

    @property
    def is_alive(self) -> bool:
        return not self._closed and self.process is not None and self.process.returncode is None

    async def open(self) -> None:
        """Spawn the process and run the handshake."""
        if not self.command:
            raise LaunchError("Empty launch command", command="")

        process_env = os.environ.copy()
        process_env.update(self.env)

        logger.info("Starting child process", server=self.name, executable=self.command[0])
        try:
            self.process = await asyncio.create_subprocess_exec(
                *self.command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=process_env,
                limit=STREAM_LIMIT,
            )
        except (FileNotFoundError, PermissionError) as e:
            self._closed = True
            raise LaunchError(f"Cannot execute {self.command[0]}: {e}", command=self.command[0]) from e

        self.reader_task = asyncio.create_task(self._read_output())
        self.stderr_task = asyncio.create_task(self._drain_stderr())

        try:
            await self.initialize()
        except BaseException:
            await self.close()
            raise

        logger.info("Child process started", server=self.name, pid=self.process.pid)

    async def request(
        self, method: str, params: Optional[Dict[str, Any]] = None, timeout: Optional[float] = None
    ) -> Dict[str, Any]:
        if not self.is_alive:
            raise TransportError(f"Connection to {self.name} is closed")

        request_id = self._next_id()
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self.pending_requests[str(request_id)] = future
        timeout = timeout or self.request_timeout

        try:
            await self._write_message(
                {"jsonrpc": "2.0", "id": request_id, "method": method, "params": params or {}}
            )
            message = await asyncio.wait_for(future, timeout=timeout)
        except asyncio.TimeoutError:
            await self._cancel_remote(request_id, f"timed out after {timeout}s")
            raise TimeoutError(f"Request {method} timed out after {timeout}s")
        except asyncio.CancelledError:
            await self._cancel_remote(request_id, "cancelled by caller")
            raise
        finally:
            self.pending_requests.pop(str(request_id), None)

        return self._result_or_raise(message, method)

    async def notify(self, method: str, params: Optional[Dict[str, Any]] = None) -> None:
        message: Dict[str, Any] = {"jsonrpc": "2.0", "method": method}
        if params:
            message["params"] = params
        await self._write_message(message)

    async def _cancel_remote(self, request_id: int, reason: str) -> None:
        if not self.is_alive:
            return
        try:
            await self.notify("notifications/cancelled", {"requestId": request_id, "reason": reason})
        except (TransportError, OSError) as e:
            logger.debug("Could not send cancellation", server=self.name, error=str(e))

    async def _write_message(self, message: Dict[str, Any]) -> None:
        if not self.process or not self.process.stdin:
            raise TransportError(f"Connection to {self.name} has no stdin")

        data = json.dumps(message) + "\n"
        try:
            async with self._write_lock:
                self.process.stdin.write(data.encode())
                await self.process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            raise TransportError(f"Failed to write to {self.name}: {e}") from e

        if self.log_requests:
            logger.debug("Sent message to child", server=self.name, method=message.get("method"), id=message.get("id"))

    async def _read_output(self) -> None:
        if not self.process or not self.process.stdout:
            return

        try:
            while True:
                line = await self.process.stdout.readline()
                if not line:
                    logger.warning("Child process ended", server=self.name)
                    break

                try:
                    message = json.loads(line.decode().strip())
                except json.JSONDecodeError:
                    # Non-JSON output is usually stray debug logging.
                    logger.debug("Non-JSON output from child", server=self.name, output=line.decode(errors="replace").strip())
                    continue

                if self.log_responses:
                    logger.debug("Received message from child", server=self.name, id=message.get("id"))

                if isinstance(message, dict):
                    await self._handle_message(message)

        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("Error reading child output", server=self.name, error=str(e))
        finally:
            self._fail_pending(TransportError(f"Connection to {self.name} lost"))

        if not self._closed:
            self._closed = True
            await self._notify_lost()

    async def _handle_message(self, message: Dict[str, Any]) -> None:
        if "method" in message:
            if "id" in message:
                await self._answer_server_request(message)
            else:
                logger.debug("Notification from child", server=self.name, method=message["method"])
            return

        future = self.pending_requests.pop(str(message.get("id")), None)
        if future is not None and not future.done():
            future.set_result(message)

    async def _answer_server_request(self, message: Dict[str, Any]) -> None:
        """Reply to child-initiated requests; only ``ping`` is supported."""
        if message["method"] == "ping":
            reply: Dict[str, Any] = {"jsonrpc": "2.0", "id": message["id"], "result": {}}
        else:
            reply = {
                "jsonrpc": "2.0",
                "id": message["id"],
                "error": {"code": -32601, "message": f"Method not found: {message['method']}"},
            }
        try:
            await self._write_message(reply)
        except TransportError as e:
            logger.debug("Could not answer child request", server=self.name, error=str(e))

    async def _drain_stderr(self) -> None:
        if not self.process or not self.process.stderr:
            return
        while True:
            line = await self.process.stderr.readline()
            if not line:
                return
            logger.debug("Child stderr", server=self.name, line=line.decode(errors="replace").rstrip())

    def _fail_pending(self, error: Exception) -> None:
        for future in self.pending_requests.values():
            if not future.done():
                future.set_exception(error)
        self.pending_requests.clear()

    async def close(self) -> None:
        """Terminate the process; kill it if it does not exit in time."""
        self._closed = True
        self._close_callback = None

        for task in (self.reader_task, self.stderr_task):
            if task and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._fail_pending(TransportError(f"Connection to {self.name} closed"))

        if self.process is None:
            return
        if self.process.returncode is None:
            try:
                if self.process.stdin:
                    self.process.stdin.close()
                self.process.terminate()
                try:
                    await asyncio.wait_for(self.process.wait(), timeout=self.stop_timeout)
                except asyncio.TimeoutError:
                    self.process.kill()
                    await self.process.wait()
            except ProcessLookupError:
                pass
        logger.info("Child process stopped", server=self.name, pid=self.process.pid, returncode=self.process.returncode)


class HttpConnection(BaseConnection):
    """Child server reached over the streamable HTTP transport."""

    def __init__(
        self,
        name: str,
        endpoint: str,
        request_timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(name, request_timeout)
        self.endpoint = endpoint
        self.session_id: Optional[str] = None
        self._client = client
        self._owns_client = client is None

    async def open(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.request_timeout)
        try:
            await self.initialize()
        except httpx.HTTPError as e:
            await self.close()
            raise LaunchError(f"Cannot reach {self.endpoint}: {e}") from e
        except BaseException:
            await self.close()
            raise

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json, text/event-stream"}
        if self.session_id:
            headers["Mcp-Session-Id"] = self.session_id
        return headers

    async def _post(self, payload: Dict[str, Any], timeout: float) -> httpx.Response:
        if self._closed or self._client is None:
            raise TransportError(f"Connection to {self.name} is closed")
        try:
            response = await self._client.post(self.endpoint, json=payload, headers=self._headers(), timeout=timeout)
        except httpx.TimeoutException as e:
            raise TimeoutError(f"Request {payload.get('method')} timed out after {timeout}s") from e
        except httpx.TransportError as e:
            self._closed = True
            await self._notify_lost()
            raise TransportError(f"Connection to {self.name} lost: {e}") from e

        if response.status_code == 404 and self.session_id:
            self._closed = True
            await self._notify_lost()
            raise TransportError(f"Session with {self.name} expired")
        if response.status_code >= 400:
            raise TransportError(f"HTTP {response.status_code} from {self.name}")

        session_id = response.headers.get("mcp-session-id")
        if session_id:
            self.session_id = session_id
        return response

    async def request(
        self, method: str, params: Optional[Dict[str, Any]] = None, timeout: Optional[float] = None
    ) -> Dict[str, Any]:
        request_id = self._next_id()
        response = await self._post(
            {"jsonrpc": "2.0", "id": request_id, "method": method, "params": params or {}},
            timeout or self.request_timeout,
        )
        message = self._parse_response(response, request_id)
        return self._result_or_raise(message, method)

    async def notify(self, method: str, params: Optional[Dict[str, Any]] = None) -> None:
        message: Dict[str, Any] = {"jsonrpc": "2.0", "method": method}
        if params:
            message["params"] = params
        await self._post(message, self.request_timeout)

    @staticmethod
    def _parse_response(response: httpx.Response, request_id: int) -> Dict[str, Any]:
        """Plain JSON body or an SSE stream carrying the matching response."""
        content_type = response.headers.get("content-type", "")
        if content_type.startswith("text/event-stream"):
            for line in response.text.splitlines():
                if not line.startswith("data:"):
                    continue
                try:
                    message = json.loads(line[len("data:"):].strip())
                except json.JSONDecodeError:
                    continue
                if isinstance(message, dict) and message.get("id") == request_id:
                    return message
            raise TransportError("No response in event stream")

        try:
            message = response.json()
        except ValueError as e:
            raise TransportError(f"Invalid JSON response: {e}") from e
        if not isinstance(message, dict):
            raise TransportError("Unexpected response shape")
        return message

    async def close(self) -> None:
        self._closed = True
        self._close_callback = None
        if self._client is None:
            return
        if self.session_id:
            try:
                await self._client.delete(self.endpoint, headers=self._headers())
            except httpx.HTTPError as e:
                logger.debug("Session delete failed", server=self.name, error=str(e))
        if self._owns_client:
            await self._client.aclose()
        self._client = None


async def open_connection(server: ManagedServer, config: BridgeConfig) -> ChildConnection:
    """Default connection factory: HTTP when an endpoint is set, else stdio."""
    connection: BaseConnection
    if server.endpoint:
        connection = HttpConnection(server.name, server.endpoint, request_timeout=config.request_timeout)
    else:
        connection = StdioConnection(
            server.name,
            server.launch_command,
            env=server.env,
            request_timeout=config.request_timeout,
            stop_timeout=config.stop_timeout,
            log_requests=config.log_requests,
            log_responses=config.log_responses,
        )
    await connection.open()
    return connection
