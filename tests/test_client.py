"""Tests for the MCP client: correlation, timeouts, disconnects and shutdown."""

import asyncio
import gc

import pytest

from mcpengine.mcp.client import ClientState, McpClient
from mcpengine.mcp.errors import (
    METHOD_NOT_FOUND,
    CallTimeoutError,
    ConnectionLostError,
    McpError,
    NotConnectedError,
    RpcError,
    TransportError,
)
from mcpengine.mcp.server import McpServer


INITIALIZE_RESULT = {
    "protocolVersion": "2025-03-26",
    "capabilities": {"tools": {"listChanged": False}},
    "serverInfo": {"name": "fake-server", "version": "9.9"},
}


async def handshake(client: McpClient, transport) -> None:
    """Drive connect() by playing the server side of initialize."""
    connecting = asyncio.create_task(client.connect(transport))
    init = await transport.next_sent()
    assert init["method"] == "initialize"
    transport.feed({"jsonrpc": "2.0", "id": init["id"], "result": INITIALIZE_RESULT})
    await connecting

    initialized = await transport.next_sent()
    assert initialized == {"jsonrpc": "2.0", "method": "notifications/initialized"}


@pytest.fixture
async def client(fast_settings, transport):
    """A client connected to a scripted in-memory server."""
    client = McpClient(settings=fast_settings)
    await handshake(client, transport)
    yield client
    await client.stop()


class TestHandshake:
    """Tests for connect() and the initialize exchange."""

    @pytest.mark.asyncio
    async def test_connect_records_server_info(self, client):
        """Test that connecting stores what the server reported."""
        assert client.state is ClientState.CONNECTED
        assert client.server_info.name == "fake-server"
        assert client.server_capabilities.tools == {"listChanged": False}
        assert client.negotiated_version == "2025-03-26"

    @pytest.mark.asyncio
    async def test_initialize_request_carries_client_info(self, fast_settings, transport):
        """Test the shape of the initialize request."""
        client = McpClient(client_name="probe", client_version="2.0", settings=fast_settings)
        connecting = asyncio.create_task(client.connect(transport))

        init = await transport.next_sent()
        assert init["params"] == {
            "protocolVersion": fast_settings.protocol_version,
            "capabilities": {},
            "clientInfo": {"name": "probe", "version": "2.0"},
        }

        transport.feed({"jsonrpc": "2.0", "id": init["id"], "result": INITIALIZE_RESULT})
        await connecting
        await client.stop()

    @pytest.mark.asyncio
    async def test_initialize_error_leaves_client_not_connected(self, fast_settings, transport):
        """Test that a failed initialize tears the connection down."""
        client = McpClient(settings=fast_settings)
        connecting = asyncio.create_task(client.connect(transport))

        init = await transport.next_sent()
        transport.feed(
            {"jsonrpc": "2.0", "id": init["id"], "error": {"code": -32600, "message": "no"}}
        )

        with pytest.raises(RpcError):
            await connecting
        assert client.state is ClientState.NOT_CONNECTED
        assert transport.stopped

    @pytest.mark.asyncio
    async def test_connect_twice_is_rejected(self, client, make_transport):
        """Test that a connected client cannot connect again."""
        with pytest.raises(McpError):
            await client.connect(make_transport())

    @pytest.mark.asyncio
    async def test_call_before_connect_fails_fast(self, fast_settings):
        """Test that calls on a fresh client raise immediately."""
        client = McpClient(settings=fast_settings)
        with pytest.raises(NotConnectedError):
            await client.call("tools/list")
        with pytest.raises(NotConnectedError):
            await client.notify("notifications/initialized")


class TestCorrelation:
    """Tests for matching responses to calls by id."""

    @pytest.mark.asyncio
    async def test_out_of_order_responses(self, client, transport):
        """Test that each caller receives the response carrying its own id."""
        first = asyncio.create_task(client.call("first"))
        second = asyncio.create_task(client.call("second"))

        sent = {}
        for _ in range(2):
            request = await transport.next_sent()
            sent[request["method"]] = request["id"]
        assert sent["first"] != sent["second"]
        assert client.pending_count == 2

        transport.feed({"jsonrpc": "2.0", "id": sent["second"], "result": "B"})
        transport.feed({"jsonrpc": "2.0", "id": sent["first"], "result": "A"})

        assert await first == "A"
        assert await second == "B"
        assert client.pending_count == 0

    @pytest.mark.asyncio
    async def test_error_response_raises_rpc_error(self, client, transport):
        """Test that an error response is raised with its code."""
        calling = asyncio.create_task(client.call("missing"))
        request = await transport.next_sent()
        transport.feed(
            {
                "jsonrpc": "2.0",
                "id": request["id"],
                "error": {"code": METHOD_NOT_FOUND, "message": "Method not found: missing"},
            }
        )

        with pytest.raises(RpcError) as exc_info:
            await calling
        assert exc_info.value.code == METHOD_NOT_FOUND

    @pytest.mark.asyncio
    async def test_request_returns_raw_error_response(self, client, transport):
        """Test that request() hands back the error response instead of raising."""
        calling = asyncio.create_task(client.request("missing"))
        request = await transport.next_sent()
        transport.feed(
            {"jsonrpc": "2.0", "id": request["id"], "error": {"code": -1, "message": "x"}}
        )

        response = await calling
        assert response.is_error
        assert response.error.code == -1

    @pytest.mark.asyncio
    async def test_unknown_response_id_is_discarded(self, client, transport):
        """Test that a response nobody waits for is dropped without harm."""
        transport.feed({"jsonrpc": "2.0", "id": 123456789, "result": "stray"})

        calling = asyncio.create_task(client.call("after"))
        request = await transport.next_sent()
        transport.feed({"jsonrpc": "2.0", "id": request["id"], "result": "ok"})
        assert await calling == "ok"

    @pytest.mark.asyncio
    async def test_undecodable_line_is_skipped(self, client, transport):
        """Test that garbage from the server does not break the connection."""
        transport.feed("not json at all")

        calling = asyncio.create_task(client.call("after"))
        request = await transport.next_sent()
        transport.feed({"jsonrpc": "2.0", "id": request["id"], "result": 1})
        assert await calling == 1
        assert client.state is ClientState.CONNECTED

    @pytest.mark.asyncio
    async def test_response_with_float_id_does_not_resolve_call(self, client, transport):
        """Test that an id of 1.0 is not taken for the pending integer id 1."""
        calling = asyncio.create_task(client.call("exact"))
        request = await transport.next_sent()

        transport.feed({"jsonrpc": "2.0", "id": float(request["id"]), "result": "wrong"})
        await asyncio.sleep(0.01)
        assert not calling.done()

        transport.feed({"jsonrpc": "2.0", "id": request["id"], "result": "right"})
        assert await calling == "right"

    @pytest.mark.asyncio
    async def test_response_with_boolean_id_is_discarded(self, client, transport):
        """Test that an id of true never matches a pending call."""
        calling = asyncio.create_task(client.call("exact"))
        request = await transport.next_sent()

        transport.feed({"jsonrpc": "2.0", "id": True, "result": "wrong"})
        await asyncio.sleep(0.01)
        assert not calling.done()
        assert client.state is ClientState.CONNECTED

        transport.feed({"jsonrpc": "2.0", "id": request["id"], "result": "right"})
        assert await calling == "right"


class TestTimeouts:
    """Tests for per-call timeouts."""

    @pytest.mark.asyncio
    async def test_call_times_out_and_late_response_is_discarded(self, client, transport):
        """Test that a timed-out call is forgotten and its late response dropped."""
        with pytest.raises(CallTimeoutError) as exc_info:
            await client.call("slow", timeout=0.05)
        assert exc_info.value.method == "slow"
        assert isinstance(exc_info.value, TimeoutError)
        assert client.pending_count == 0

        late = await transport.next_sent()
        transport.feed({"jsonrpc": "2.0", "id": late["id"], "result": "too late"})

        calling = asyncio.create_task(client.call("next"))
        request = await transport.next_sent()
        transport.feed({"jsonrpc": "2.0", "id": request["id"], "result": "on time"})
        assert await calling == "on time"
        assert client.state is ClientState.CONNECTED


class TestDisconnect:
    """Tests for losing the connection and stopping the client."""

    @pytest.mark.asyncio
    async def test_end_of_stream_fails_pending_calls(self, client, transport):
        """Test that EOF from the server fails every outstanding call."""
        calling = asyncio.create_task(client.call("hanging"))
        await transport.next_sent()

        transport.close_input()

        with pytest.raises(ConnectionLostError):
            await calling
        assert client.state is ClientState.DISCONNECTED
        assert client.pending_count == 0

        with pytest.raises(NotConnectedError):
            await client.call("tools/list")

    @pytest.mark.asyncio
    async def test_stop_fails_pending_calls(self, client, transport):
        """Test that stop() fails outstanding calls instead of leaving them hanging."""
        calling = asyncio.create_task(client.call("hanging"))
        await transport.next_sent()

        await client.stop()

        with pytest.raises(ConnectionLostError):
            await calling
        assert client.state is ClientState.STOPPED
        assert transport.stopped

    @pytest.mark.asyncio
    async def test_calls_after_stop_fail_fast(self, client):
        """Test that a stopped client refuses new calls."""
        await client.stop()
        with pytest.raises(NotConnectedError):
            await client.call("tools/list")

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self, client):
        """Test that stopping twice is harmless."""
        await client.stop()
        await client.stop()
        assert client.state is ClientState.STOPPED

    @pytest.mark.asyncio
    async def test_stop_without_connect(self, fast_settings):
        """Test that stop() is safe on a client that never connected."""
        client = McpClient(settings=fast_settings)
        await client.stop()
        assert client.state is ClientState.STOPPED

    @pytest.mark.asyncio
    async def test_reconnect_after_disconnect(self, client, transport, make_transport):
        """Test that a disconnected client can connect to a new transport."""
        transport.close_input()
        await asyncio.sleep(0.01)
        assert client.state is ClientState.DISCONNECTED
        assert transport.stopped is False

        replacement = make_transport()
        await handshake(client, replacement)
        assert client.state is ClientState.CONNECTED
        assert transport.stopped

    @pytest.mark.asyncio
    async def test_stop_during_send_leaves_no_unretrieved_failure(self, client, transport):
        """Test that a call failed by stop() while sending does not leak its exception."""
        loop = asyncio.get_running_loop()
        reported = []
        previous_handler = loop.get_exception_handler()
        loop.set_exception_handler(lambda _loop, context: reported.append(context))

        async def stop_then_fail(line):
            await client.stop()
            raise TransportError("pipe closed")

        transport.send = stop_then_fail
        try:
            with pytest.raises(ConnectionLostError):
                await client.call("tools/list")
            gc.collect()
            await asyncio.sleep(0)
        finally:
            loop.set_exception_handler(previous_handler)

        assert client.state is ClientState.STOPPED
        assert client.pending_count == 0
        assert not [c for c in reported if "never retrieved" in c.get("message", "")]


class TestServerRequests:
    """Tests for requests initiated by the server."""

    @pytest.mark.asyncio
    async def test_ping_is_answered(self, client, transport):
        """Test that a server ping gets an empty result."""
        transport.feed({"jsonrpc": "2.0", "id": "srv-1", "method": "ping"})

        data = await transport.next_sent()
        assert data == {"jsonrpc": "2.0", "id": "srv-1", "result": {}}

    @pytest.mark.asyncio
    async def test_other_requests_get_method_not_found(self, client, transport):
        """Test that unsupported server requests are refused."""
        transport.feed({"jsonrpc": "2.0", "id": "srv-2", "method": "sampling/createMessage"})

        data = await transport.next_sent()
        assert data["id"] == "srv-2"
        assert data["error"]["code"] == METHOD_NOT_FOUND


class TestSubprocess:
    """Tests for spawning the server process."""

    @pytest.mark.asyncio
    async def test_spawn_failure(self, fast_settings):
        """Test that a missing executable raises and leaves the client reusable."""
        client = McpClient(settings=fast_settings)
        with pytest.raises(TransportError):
            await client.start(["/nonexistent/mcpengine-no-such-binary"])
        assert client.state is ClientState.NOT_CONNECTED
        assert client.process is None

    @pytest.mark.asyncio
    async def test_empty_command_rejected(self, fast_settings):
        """Test that an empty command line is refused."""
        client = McpClient(settings=fast_settings)
        with pytest.raises(ValueError):
            await client.start("")

    @pytest.mark.asyncio
    async def test_invalid_argument_leaves_client_reusable(self, fast_settings):
        """Test that a spawn rejected before exec does not leave the client starting."""
        client = McpClient(settings=fast_settings)
        with pytest.raises(ValueError):
            await client.start(["mcpengine-server", "bad\0arg"])
        assert client.state is ClientState.NOT_CONNECTED

        # A second attempt gets past the state check and fails on the spawn itself
        with pytest.raises(TransportError):
            await client.start(["/nonexistent/mcpengine-no-such-binary"])
        assert client.state is ClientState.NOT_CONNECTED


class TestAgainstServer:
    """Tests running the client against the real dispatcher in-process."""

    @pytest.mark.asyncio
    async def test_convenience_methods(self, registry, settings, fast_settings, transport_pair):
        """Test the typed helpers end to end over a memory pipe."""
        client_side, server_side = transport_pair
        server = McpServer.from_registry(registry, settings)
        await server.start(server_side)

        async with McpClient(settings=fast_settings) as client:
            init = await client.connect(client_side)
            assert init.serverInfo.name == settings.server_name

            tools = await client.list_tools()
            assert [t.name for t in tools] == ["example-ping", "example-echo"]

            result = await client.call_tool("example-echo", {"message": "hi"})
            assert result.isError is False
            assert result.text == "Echo: hi"

            resources = await client.list_resources()
            assert resources[0].uri == "example://server-info"
            contents = await client.read_resource("example://server-info")
            assert settings.server_name in contents[0].text

            prompts = await client.list_prompts()
            assert prompts[0].arguments[0].required is True
            rendered = await client.get_prompt("example-summarize", {"text": "abc"})
            assert "abc" in rendered.messages[0].content.text

            with pytest.raises(RpcError):
                await client.call_tool("no-such-tool")

        assert client.state is ClientState.STOPPED
        await asyncio.wait_for(server.wait_closed(), 1.0)
        await server.stop()

    @pytest.mark.asyncio
    async def test_many_concurrent_calls(self, registry, settings, fast_settings, transport_pair):
        """Test that concurrent calls each get their own result."""
        client_side, server_side = transport_pair
        server = McpServer.from_registry(registry, settings)
        await server.start(server_side)

        async with McpClient(settings=fast_settings) as client:
            await client.connect(client_side)
            results = await asyncio.gather(
                *(client.call_tool("example-echo", {"message": str(i)}) for i in range(20))
            )
            assert [r.text for r in results] == [f"Echo: {i}" for i in range(20)]
            assert client.pending_count == 0

        await server.stop()
