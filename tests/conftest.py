"""Pytest configuration and fixtures."""

import asyncio
import json
from typing import Any, AsyncIterator

import pytest

from mcpengine.config.loader import Settings, get_settings
from mcpengine.mcp.errors import TransportError
from mcpengine.mcp.registry import get_registry, reset_registry
from mcpengine.mcp.transport import Transport


class MemoryTransport(Transport):
    """In-process transport backed by two queues.

    Used standalone, a test plays the peer with :meth:`feed` and
    :meth:`next_sent`. Two transports built by :func:`memory_pipe` are wired
    back to back, so a client and a server can talk without a subprocess.
    ``None`` in a queue marks end of input.
    """

    def __init__(
        self,
        inbound: "asyncio.Queue[str | None] | None" = None,
        outbound: "asyncio.Queue[str | None] | None" = None,
    ) -> None:
        self.inbound: asyncio.Queue[str | None] = inbound or asyncio.Queue()
        self.outbound: asyncio.Queue[str | None] = outbound or asyncio.Queue()
        self._running = False
        self.stopped = False

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self.stopped:
            raise TransportError("memory transport was stopped")
        self._running = True

    async def stop(self) -> None:
        if self.stopped:
            return
        self.stopped = True
        self._running = False
        self.inbound.put_nowait(None)
        self.outbound.put_nowait(None)

    async def send(self, message: str) -> None:
        if not self._running:
            raise TransportError("memory transport is not running")
        self.outbound.put_nowait(message)

    async def receive(self) -> AsyncIterator[str]:
        while True:
            item = await self.inbound.get()
            if item is None:
                self.inbound.put_nowait(None)
                return
            yield item

    def feed(self, message: str | dict[str, Any]) -> None:
        """Queue one inbound line, as if the peer had written it."""
        if isinstance(message, dict):
            message = json.dumps(message)
        self.inbound.put_nowait(message)

    def close_input(self) -> None:
        """Simulate the peer closing its end of the stream."""
        self.inbound.put_nowait(None)

    async def next_sent(self, timeout: float = 2.0) -> dict[str, Any]:
        """Wait for the next outbound message and decode it."""
        line = await asyncio.wait_for(self.outbound.get(), timeout)
        assert line is not None, "transport closed before sending"
        return json.loads(line)


def memory_pipe() -> tuple[MemoryTransport, MemoryTransport]:
    """Two transports where each one's output is the other's input."""
    a_to_b: asyncio.Queue[str | None] = asyncio.Queue()
    b_to_a: asyncio.Queue[str | None] = asyncio.Queue()
    return MemoryTransport(b_to_a, a_to_b), MemoryTransport(a_to_b, b_to_a)


@pytest.fixture(autouse=True)
def reset_global_registry():
    """Reset the global registry before each test and reload the example provider."""
    reset_registry()
    registry = get_registry()
    registry.load_provider("example")
    yield
    reset_registry()


@pytest.fixture
def registry():
    """Get the global registry with the example provider loaded."""
    return get_registry()


@pytest.fixture
def settings():
    """Get application settings."""
    return get_settings()


@pytest.fixture
def fast_settings():
    """Settings with short timeouts for client tests."""
    return Settings(request_timeout=2.0, shutdown_grace=1.0)


@pytest.fixture
def transport():
    """A standalone in-memory transport."""
    return MemoryTransport()


@pytest.fixture
def sample_jsonrpc_request():
    """Sample JSON-RPC request factory."""
    def _make_request(method: str, params: dict = None, id: int = 1):
        return {
            "jsonrpc": "2.0",
            "id": id,
            "method": method,
            "params": params or {},
        }
    return _make_request


@pytest.fixture
def make_transport():
    """Factory for extra standalone in-memory transports."""
    return MemoryTransport


@pytest.fixture
def transport_pair():
    """A (client side, server side) pair of connected in-memory transports."""
    return memory_pipe()
