"""Line-delimited transports for MCP.

A transport moves raw message strings, one per line, and knows nothing about
their meaning. :class:`StdioTransport` reads its input stream on a single
background task and buffers lines in a queue, so a slow consumer never
blocks the reader (and a reader never deadlocks against a writer).
"""

import asyncio
import contextlib
import logging
import sys
from abc import ABC, abstractmethod
from typing import AsyncIterator

from mcpengine.mcp.errors import TransportError

logger = logging.getLogger(__name__)

# Queue marker for end of input
_EOF = object()


class Transport(ABC):
    """Abstract byte-stream transport carrying one message per line."""

    @abstractmethod
    async def start(self) -> None:
        """Acquire the underlying stream and begin background reading."""

    @abstractmethod
    async def stop(self) -> None:
        """Stop reading and release the stream. Safe to call repeatedly."""

    @abstractmethod
    async def send(self, message: str) -> None:
        """Write one message followed by the line delimiter."""

    @abstractmethod
    def receive(self) -> AsyncIterator[str]:
        """Yield raw messages until the stream closes, then stop iterating."""

    @property
    @abstractmethod
    def is_running(self) -> bool:
        """Whether the transport is started and not yet stopped."""


async def open_process_stdio(
    limit: int,
) -> tuple[asyncio.StreamReader, asyncio.StreamWriter, asyncio.BaseTransport]:
    """Wrap this process's stdin/stdout as asyncio streams."""
    loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader(limit=limit)
    read_pipe, _ = await loop.connect_read_pipe(
        lambda: asyncio.StreamReaderProtocol(reader), sys.stdin
    )
    write_pipe, write_protocol = await loop.connect_write_pipe(
        asyncio.streams.FlowControlMixin, sys.stdout
    )
    writer = asyncio.StreamWriter(write_pipe, write_protocol, reader, loop)
    return reader, writer, read_pipe


class StdioTransport(Transport):
    """Newline-delimited transport over a pair of asyncio streams.

    Without explicit streams it attaches to the current process's
    stdin/stdout when started (the tool-provider side). The client passes a
    subprocess's stdout as ``reader`` and its stdin as ``writer``.

    ``max_queue_size`` caps the number of buffered inbound lines; ``0``
    means unbounded. Overflowing the cap is fatal: reading stops and the
    stream is reported as closed.
    """

    def __init__(
        self,
        reader: asyncio.StreamReader | None = None,
        writer: asyncio.StreamWriter | None = None,
        *,
        max_queue_size: int = 0,
        line_limit: int = 16 * 1024 * 1024,
        name: str = "stdio",
    ) -> None:
        if (reader is None) != (writer is None):
            raise ValueError("reader and writer must be given together")
        self.name = name
        self._reader = reader
        self._writer = writer
        self._read_pipe: asyncio.BaseTransport | None = None
        self._max_queue_size = max_queue_size
        self._line_limit = line_limit
        self._queue: asyncio.Queue[object] = asyncio.Queue()
        self._send_lock = asyncio.Lock()
        self._reader_task: asyncio.Task[None] | None = None
        self._running = False
        self._stopped = False

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Attach the streams (if needed) and launch the reader task."""
        if self._stopped:
            raise TransportError(f"{self.name} transport was stopped and cannot be restarted")
        if self._running:
            return

        if self._reader is None:
            try:
                self._reader, self._writer, self._read_pipe = await open_process_stdio(
                    self._line_limit
                )
            except (OSError, ValueError) as e:
                raise TransportError(f"Could not attach to process stdio: {e}") from e

        self._running = True
        self._reader_task = asyncio.create_task(
            self._read_loop(), name=f"{self.name}-reader"
        )
        logger.debug(f"{self.name} transport started")

    async def _read_loop(self) -> None:
        assert self._reader is not None
        try:
            while True:
                try:
                    line = await self._reader.readline()
                except ValueError as e:
                    # Raised by StreamReader when a line exceeds the stream limit
                    logger.error(f"{self.name}: oversized line, closing stream: {e}")
                    break
                if not line:
                    logger.info(f"{self.name}: EOF reached, stopping transport")
                    break

                text = line.decode("utf-8", errors="replace").rstrip("\r\n")
                if not text.strip():
                    continue

                if self._max_queue_size and self._queue.qsize() >= self._max_queue_size:
                    logger.error(
                        f"{self.name}: inbound queue full ({self._max_queue_size}), closing stream"
                    )
                    break
                self._queue.put_nowait(text)
        except OSError as e:
            logger.error(f"{self.name}: error reading stream: {e}")
        finally:
            self._queue.put_nowait(_EOF)

    async def receive(self) -> AsyncIterator[str]:
        while True:
            item = await self._queue.get()
            if item is _EOF:
                # Leave the marker for any later consumer
                self._queue.put_nowait(_EOF)
                return
            yield item  # type: ignore[misc]

    async def send(self, message: str) -> None:
        if "\n" in message:
            raise ValueError("message must not contain raw newlines")

        async with self._send_lock:
            if not self._running or self._writer is None:
                raise TransportError(f"{self.name} transport is not running")
            try:
                self._writer.write(message.encode("utf-8") + b"\n")
                await self._writer.drain()
            except (OSError, RuntimeError) as e:
                raise TransportError(f"{self.name}: write failed: {e}") from e

    async def stop(self) -> None:
        """Cancel the reader, close the streams and unblock consumers."""
        if self._stopped:
            return
        self._stopped = True
        self._running = False

        task = self._reader_task
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        if task is None:
            self._queue.put_nowait(_EOF)

        if self._writer is not None:
            self._writer.close()
            try:
                await self._writer.wait_closed()
            except (OSError, RuntimeError) as e:
                logger.debug(f"{self.name}: error closing writer: {e}")
        if self._read_pipe is not None:
            self._read_pipe.close()

        logger.debug(f"{self.name} transport stopped")
