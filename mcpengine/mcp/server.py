"""MCP server: reads messages from a transport and dispatches them to handlers.

The read loop only decodes and schedules. Every request and notification
runs on its own task, so a slow handler never stalls reading, and a failing
handler is turned into an error response instead of ending the loop.
"""

import asyncio
import enum
from typing import Any, Mapping

from mcpengine.config.loader import Settings, get_settings
from mcpengine.mcp.errors import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    MessageParseError,
    RpcError,
    TransportError,
)
from mcpengine.mcp.handlers import MCPHandlers, NotificationHandler, RequestHandler
from mcpengine.mcp.jsonrpc import error_response, parse_message, serialize_message
from mcpengine.mcp.models import JsonRpcNotification, JsonRpcRequest, JsonRpcResponse
from mcpengine.mcp.registry import CapabilityRegistry
from mcpengine.mcp.transport import Transport
from mcpengine.utils.logging import get_logger, set_request_id

log = get_logger(__name__)


class ServerState(str, enum.Enum):
    CREATED = "created"
    LISTENING = "listening"
    STOPPED = "stopped"


class McpServer:
    """Dispatches inbound JSON-RPC messages to a static table of handlers.

    Usage::

        server = McpServer.from_registry(get_registry())
        await server.serve(StdioTransport())
    """

    def __init__(
        self,
        request_handlers: Mapping[str, RequestHandler],
        notification_handlers: Mapping[str, NotificationHandler] | None = None,
        *,
        require_initialize: bool = False,
    ) -> None:
        self._request_handlers = dict(request_handlers)
        self._notification_handlers = dict(notification_handlers or {})
        self._require_initialize = require_initialize
        self._initialized = False
        self._state = ServerState.CREATED
        self._transport: Transport | None = None
        self._loop_task: asyncio.Task[None] | None = None
        self._inflight: set[asyncio.Task[None]] = set()

    @classmethod
    def from_registry(
        cls, registry: CapabilityRegistry, settings: Settings | None = None
    ) -> "McpServer":
        """Build a server whose handler table is backed by ``registry``."""
        settings = settings or get_settings()
        handlers = MCPHandlers(registry, settings)
        return cls(
            handlers.request_handlers(),
            handlers.notification_handlers(),
            require_initialize=settings.require_initialize,
        )

    @property
    def state(self) -> ServerState:
        return self._state

    @property
    def methods(self) -> list[str]:
        return sorted(self._request_handlers)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(self, transport: Transport) -> None:
        """Start the transport and begin consuming its messages."""
        if self._state is not ServerState.CREATED:
            raise RuntimeError(f"Server cannot start from state {self._state.value}")

        await transport.start()
        self._transport = transport
        self._state = ServerState.LISTENING
        self._loop_task = asyncio.create_task(self._dispatch_loop(), name="mcp-server-loop")
        log.info("MCP server listening", methods=self.methods)

    async def wait_closed(self) -> None:
        """Wait until the read loop ends (end of input or stop())."""
        if self._loop_task is not None:
            await asyncio.wait({self._loop_task})

    async def serve(self, transport: Transport) -> None:
        """Run until the peer closes the stream, then shut down."""
        await self.start(transport)
        try:
            await self.wait_closed()
        finally:
            await self.stop()

    async def stop(self) -> None:
        """Stop dispatching and release the transport. Idempotent."""
        if self._state is ServerState.STOPPED:
            return
        self._state = ServerState.STOPPED

        current = asyncio.current_task()
        tasks = [
            t for t in (self._loop_task, *self._inflight) if t is not None and t is not current
        ]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._inflight.clear()

        if self._transport is not None:
            await self._transport.stop()
        log.info("MCP server stopped")

    # -------------------------------------------------------------------------
    # Dispatch
    # -------------------------------------------------------------------------

    async def _dispatch_loop(self) -> None:
        assert self._transport is not None
        async for line in self._transport.receive():
            if self._state is not ServerState.LISTENING:
                break
            try:
                message = parse_message(line)
            except MessageParseError as e:
                log.warning("Undecodable message", code=e.code, error=e.message)
                await self._send(error_response(e))
                continue

            if isinstance(message, JsonRpcRequest):
                self._spawn(self._answer(message), f"mcp-request-{message.id}")
            elif isinstance(message, JsonRpcNotification):
                self._spawn(self._notify(message), f"mcp-notification-{message.method}")
            else:
                log.warning("Ignoring response sent to server", id=message.id)

        log.info("Input closed, draining in-flight requests", pending=len(self._inflight))
        if self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    def _spawn(self, coro: Any, name: str) -> None:
        task = asyncio.create_task(coro, name=name)
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    async def _answer(self, request: JsonRpcRequest) -> None:
        response = await self.handle_request(request)
        await self._send(response)

    async def _notify(self, notification: JsonRpcNotification) -> None:
        handler = self._notification_handlers.get(notification.method)
        if handler is None:
            log.warning("Unknown notification dropped", method=notification.method)
            return
        params = notification.params if isinstance(notification.params, dict) else {}
        try:
            await handler(params)
        except Exception:
            log.exception("Notification handler failed", method=notification.method)

    async def _send(self, response: JsonRpcResponse) -> None:
        if self._transport is None:
            return
        try:
            line = serialize_message(response)
        except (TypeError, ValueError) as e:
            log.exception("Response is not serializable", id=response.id)
            line = serialize_message(
                JsonRpcResponse.failure(
                    response.id, INTERNAL_ERROR, f"Result is not serializable: {e}"
                )
            )
        try:
            await self._transport.send(line)
        except TransportError as e:
            log.error("Could not send response", id=response.id, error=str(e))

    async def handle_request(self, request: JsonRpcRequest) -> JsonRpcResponse:
        """Run the handler for one request and build its response."""
        set_request_id(request.id)
        method = request.method

        handler = self._request_handlers.get(method)
        if handler is None:
            return JsonRpcResponse.failure(
                request.id, METHOD_NOT_FOUND, f"Method not found: {method}"
            )

        if self._require_initialize and not self._initialized and method != "initialize":
            return JsonRpcResponse.failure(
                request.id, INVALID_REQUEST, f"Server not initialized, cannot call {method}"
            )

        params = request.params
        if params is None:
            params = {}
        elif not isinstance(params, dict):
            return JsonRpcResponse.failure(
                request.id, INVALID_PARAMS, "Params must be an object"
            )

        log.debug("Handling request", method=method)
        try:
            result = await handler(params)
        except RpcError as e:
            return JsonRpcResponse.failure(request.id, e.code, e.message, e.data)
        except Exception as e:
            log.exception("Error handling method", method=method)
            return JsonRpcResponse.failure(
                request.id, INTERNAL_ERROR, f"Error processing request: {str(e) or type(e).__name__}"
            )

        if method == "initialize":
            self._initialized = True
        return JsonRpcResponse.success(request.id, result)

    async def handle_message(self, raw_data: str | bytes) -> JsonRpcResponse | None:
        """
        Handle a raw JSON-RPC message end-to-end.

        Returns a response, or None for notifications and stray responses.
        """
        try:
            message = parse_message(raw_data)
        except MessageParseError as e:
            return error_response(e)

        if isinstance(message, JsonRpcRequest):
            return await self.handle_request(message)
        if isinstance(message, JsonRpcNotification):
            await self._notify(message)
        return None
