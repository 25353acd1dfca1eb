"""McpClient: supervises an MCP server subprocess and correlates calls.

Every outstanding call owns a :class:`PendingCall` keyed by its request id.
A single background task reads the server's stdout and hands each response
to the record with the matching id, so any number of calls can be in flight
and responses may arrive in any order.

The pending table and the connection state share one ``asyncio.Lock``:
registering a call, resolving it and failing everything on disconnect are
serialized, so a call can never register after the connection was declared
lost and then wait forever.
"""

import asyncio
import contextlib
import enum
import itertools
import shlex
from dataclasses import dataclass
from typing import Any, Mapping, Sequence, TypeVar

from pydantic import BaseModel, ValidationError

from mcpengine.config.loader import Settings, get_settings
from mcpengine.mcp.errors import (
    METHOD_NOT_FOUND,
    CallTimeoutError,
    ConnectionLostError,
    McpError,
    MessageParseError,
    NotConnectedError,
    RpcError,
    TransportError,
)
from mcpengine.mcp.jsonrpc import parse_message, serialize_message
from mcpengine.mcp.models import (
    InitializeResult,
    JsonRpcNotification,
    JsonRpcRequest,
    JsonRpcResponse,
    Prompt,
    PromptGetResult,
    PromptsListResult,
    Resource,
    ResourceContents,
    ResourceReadResult,
    ResourcesListResult,
    ServerCapabilities,
    ServerInfo,
    Tool,
    ToolCallResult,
    ToolsListResult,
)
from mcpengine.mcp.transport import StdioTransport, Transport
from mcpengine.utils.logging import get_logger

log = get_logger(__name__)

M = TypeVar("M", bound=BaseModel)

# Request ids are drawn from one counter shared by every client in the process
_request_ids = itertools.count(1)


class ClientState(str, enum.Enum):
    NOT_CONNECTED = "not_connected"
    STARTING = "starting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    STOPPED = "stopped"


@dataclass
class PendingCall:
    """Bookkeeping for one request awaiting its response."""

    id: int
    method: str
    submitted_at: float
    future: "asyncio.Future[JsonRpcResponse]"

    def resolve(self, response: JsonRpcResponse) -> bool:
        """Deliver the response; False if the call already ended."""
        if self.future.done():
            return False
        self.future.set_result(response)
        return True

    def fail(self, exc: BaseException) -> bool:
        if self.future.done():
            return False
        self.future.set_exception(exc)
        return True


class McpClient:
    """Async MCP client for a tool-provider subprocess.

    Usage::

        async with McpClient() as client:
            await client.start("mcpengine-server")
            tools = await client.list_tools()
            result = await client.call_tool("example-echo", {"message": "hi"})
    """

    def __init__(
        self,
        *,
        client_name: str | None = None,
        client_version: str | None = None,
        protocol_version: str | None = None,
        default_timeout: float | None = None,
        shutdown_grace: float | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self.client_name = client_name or self._settings.client_name
        self.client_version = client_version or self._settings.client_version
        self.protocol_version = protocol_version or self._settings.protocol_version
        self.default_timeout = (
            self._settings.request_timeout if default_timeout is None else default_timeout
        )
        self.shutdown_grace = (
            self._settings.shutdown_grace if shutdown_grace is None else shutdown_grace
        )

        self._lock = asyncio.Lock()
        self._state = ClientState.NOT_CONNECTED
        self._pending: dict[int, PendingCall] = {}
        self._transport: Transport | None = None
        self._process: asyncio.subprocess.Process | None = None
        self._reader_task: asyncio.Task[None] | None = None

        self.server_info: ServerInfo | None = None
        self.server_capabilities: ServerCapabilities | None = None
        self.negotiated_version: str | None = None

    async def __aenter__(self) -> "McpClient":
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.stop()

    @property
    def state(self) -> ClientState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ClientState.CONNECTED

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def process(self) -> asyncio.subprocess.Process | None:
        return self._process

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(
        self,
        command: str | Sequence[str],
        *,
        env: Mapping[str, str] | None = None,
        cwd: str | None = None,
    ) -> InitializeResult:
        """Spawn the server process, connect to its pipes and initialize."""
        argv = shlex.split(command) if isinstance(command, str) else list(command)
        if not argv:
            raise ValueError("command must not be empty")

        await self._begin_starting()
        log.info("Starting MCP server process", command=argv)
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                env=dict(env) if env is not None else None,
                cwd=cwd,
                limit=self._settings.transport_line_limit,
            )
        except BaseException as e:
            async with self._lock:
                if self._state is ClientState.STARTING:
                    self._state = ClientState.NOT_CONNECTED
            if isinstance(e, OSError):
                raise TransportError(f"Could not start {argv[0]!r}: {e}") from e
            raise

        self._process = process
        assert process.stdout is not None and process.stdin is not None
        transport = StdioTransport(
            process.stdout,
            process.stdin,
            max_queue_size=self._settings.transport_queue_max_size,
            name=f"mcp-server[{process.pid}]",
        )
        return await self._connect(transport)

    async def connect(self, transport: Transport) -> InitializeResult:
        """Initialize over an already-built transport (no subprocess)."""
        await self._begin_starting()
        return await self._connect(transport)

    async def _begin_starting(self) -> None:
        async with self._lock:
            if self._state in (ClientState.STARTING, ClientState.CONNECTED):
                raise McpError(f"Client is already {self._state.value}")
            self._state = ClientState.STARTING
        # Release whatever a previous, lost connection left behind
        await self._teardown()

    async def _connect(self, transport: Transport) -> InitializeResult:
        self._transport = transport
        try:
            await transport.start()
            async with self._lock:
                if self._state is not ClientState.STARTING:
                    raise ConnectionLostError(f"Client was {self._state.value} while starting")
                self._state = ClientState.CONNECTED
                self._reader_task = asyncio.create_task(
                    self._read_loop(transport), name="mcp-client-reader"
                )
            result = await self._initialize()
        except BaseException:
            await self._teardown()
            async with self._lock:
                if self._state is not ClientState.STOPPED:
                    self._state = ClientState.NOT_CONNECTED
                self._fail_all_pending("client failed to start")
            raise

        log.info(
            "Connected to MCP server",
            server=result.serverInfo.name,
            server_version=result.serverInfo.version,
            protocol_version=result.protocolVersion,
        )
        return result

    async def _initialize(self) -> InitializeResult:
        result = await self.call(
            "initialize",
            {
                "protocolVersion": self.protocol_version,
                "capabilities": {},
                "clientInfo": {"name": self.client_name, "version": self.client_version},
            },
        )
        init = self._validate(InitializeResult, result, "initialize")
        self.server_info = init.serverInfo
        self.server_capabilities = init.capabilities
        self.negotiated_version = init.protocolVersion
        await self.notify("notifications/initialized")
        return init

    async def stop(self) -> None:
        """Fail outstanding calls, then stop reading, close pipes, end the process."""
        async with self._lock:
            already_stopped = self._state is ClientState.STOPPED
            self._state = ClientState.STOPPED
            failed = self._fail_all_pending("client stopped")
        if not already_stopped:
            log.info("Stopping MCP client", failed_calls=failed)
        await self._teardown()

    async def _teardown(self) -> None:
        # Fixed order: stop reading -> close pipes -> terminate -> reap/kill
        task, self._reader_task = self._reader_task, None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        transport, self._transport = self._transport, None
        if transport is not None:
            await transport.stop()

        process, self._process = self._process, None
        if process is not None:
            await self._terminate(process)

    async def _terminate(self, process: asyncio.subprocess.Process) -> None:
        if process.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                process.terminate()
            try:
                await asyncio.wait_for(process.wait(), self.shutdown_grace)
            except asyncio.TimeoutError:
                log.warning("MCP server did not exit in time, killing", pid=process.pid)
                with contextlib.suppress(ProcessLookupError):
                    process.kill()
                await process.wait()
        else:
            await process.wait()
        log.info("MCP server process exited", pid=process.pid, returncode=process.returncode)

    # -------------------------------------------------------------------------
    # Correlation
    # -------------------------------------------------------------------------

    def _fail_all_pending(self, reason: str) -> int:
        """Fail every pending call. Caller must hold the lock."""
        records = list(self._pending.values())
        self._pending.clear()
        for record in records:
            record.fail(ConnectionLostError(f"{reason} (call {record.method!r}, id={record.id})"))
        return len(records)

    async def _connection_lost(self, reason: str) -> None:
        async with self._lock:
            if self._state is not ClientState.CONNECTED:
                return
            self._state = ClientState.DISCONNECTED
            failed = self._fail_all_pending(reason)
        log.warning("MCP connection lost", reason=reason, failed_calls=failed)

    async def _read_loop(self, transport: Transport) -> None:
        try:
            async for line in transport.receive():
                await self._handle_line(transport, line)
        except asyncio.CancelledError:
            raise
        except Exception:
            log.exception("MCP client reader failed")
        await self._connection_lost("server closed the connection")

    async def _handle_line(self, transport: Transport, line: str) -> None:
        try:
            message = parse_message(line)
        except MessageParseError as e:
            log.warning("Skipping undecodable line from server", error=e.message)
            return

        if isinstance(message, JsonRpcResponse):
            await self._resolve(message)
        elif isinstance(message, JsonRpcRequest):
            await self._answer_server_request(transport, message)
        else:
            log.debug("Server notification", method=message.method)

    async def _resolve(self, response: JsonRpcResponse) -> None:
        async with self._lock:
            record = self._pending.pop(response.id, None) if response.id is not None else None

        if record is None or not record.resolve(response):
            log.warning(
                "Discarding response without a pending call",
                id=response.id,
                error=response.error.message if response.error else None,
            )
            return

        elapsed = asyncio.get_running_loop().time() - record.submitted_at
        log.debug("Call completed", method=record.method, id=record.id, elapsed=round(elapsed, 4))

    async def _answer_server_request(self, transport: Transport, request: JsonRpcRequest) -> None:
        if request.method == "ping":
            response = JsonRpcResponse.success(request.id, {})
        else:
            response = JsonRpcResponse.failure(
                request.id, METHOD_NOT_FOUND, f"Method not found: {request.method}"
            )
        try:
            await transport.send(serialize_message(response))
        except TransportError as e:
            log.warning("Could not answer server request", method=request.method, error=str(e))

    # -------------------------------------------------------------------------
    # Calls
    # -------------------------------------------------------------------------

    async def request(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> JsonRpcResponse:
        """Send a request and wait for the response with the same id."""
        timeout = self.default_timeout if timeout is None else timeout
        loop = asyncio.get_running_loop()

        async with self._lock:
            if self._state is not ClientState.CONNECTED or self._transport is None:
                raise NotConnectedError(f"Cannot call {method!r}: client is {self._state.value}")
            request_id = next(_request_ids)
            line = serialize_message(JsonRpcRequest(id=request_id, method=method, params=params))
            record = PendingCall(request_id, method, loop.time(), loop.create_future())
            self._pending[request_id] = record
            transport = self._transport

        try:
            await transport.send(line)
        except TransportError as e:
            async with self._lock:
                self._pending.pop(request_id, None)
            # stop() may already have failed the record while we were sending
            if record.future.done() and not record.future.cancelled():
                record.future.exception()
            await self._connection_lost(str(e))
            raise ConnectionLostError(f"Connection lost while sending {method!r}: {e}") from e

        try:
            return await asyncio.wait_for(record.future, timeout)
        except asyncio.TimeoutError:
            log.warning("Call timed out", method=method, id=request_id, timeout=timeout)
            raise CallTimeoutError(method, request_id, timeout) from None
        finally:
            async with self._lock:
                self._pending.pop(request_id, None)

    async def call(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> Any:
        """Like :meth:`request`, returning the result or raising :class:`RpcError`."""
        response = await self.request(method, params, timeout)
        if response.error is not None:
            raise RpcError(response.error.code, response.error.message, response.error.data)
        return response.result

    async def notify(self, method: str, params: dict[str, Any] | None = None) -> None:
        """Send a notification; nothing is awaited from the server."""
        async with self._lock:
            if self._state is not ClientState.CONNECTED or self._transport is None:
                raise NotConnectedError(f"Cannot notify {method!r}: client is {self._state.value}")
            transport = self._transport

        try:
            await transport.send(serialize_message(JsonRpcNotification(method=method, params=params)))
        except TransportError as e:
            await self._connection_lost(str(e))
            raise ConnectionLostError(f"Connection lost while notifying {method!r}: {e}") from e

    @staticmethod
    def _validate(model: type[M], result: Any, method: str) -> M:
        try:
            return model.model_validate(result)
        except ValidationError as e:
            raise McpError(f"Malformed {method} result: {e}") from e

    # -------------------------------------------------------------------------
    # MCP convenience methods
    # -------------------------------------------------------------------------

    async def list_tools(self) -> list[Tool]:
        result = await self.call("tools/list")
        return self._validate(ToolsListResult, result, "tools/list").tools

    async def call_tool(
        self,
        name: str,
        arguments: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> ToolCallResult:
        result = await self.call(
            "tools/call", {"name": name, "arguments": arguments or {}}, timeout
        )
        return self._validate(ToolCallResult, result, "tools/call")

    async def list_resources(self) -> list[Resource]:
        result = await self.call("resources/list")
        return self._validate(ResourcesListResult, result, "resources/list").resources

    async def read_resource(self, uri: str) -> list[ResourceContents]:
        result = await self.call("resources/read", {"uri": uri})
        return self._validate(ResourceReadResult, result, "resources/read").contents

    async def list_prompts(self) -> list[Prompt]:
        result = await self.call("prompts/list")
        return self._validate(PromptsListResult, result, "prompts/list").prompts

    async def get_prompt(
        self, name: str, arguments: dict[str, str] | None = None
    ) -> PromptGetResult:
        result = await self.call("prompts/get", {"name": name, "arguments": arguments or {}})
        return self._validate(PromptGetResult, result, "prompts/get")
