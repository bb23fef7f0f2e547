"""
BufferedSink - Backpressure-aware buffered writer.

The producer must never block on device I/O, and memory must stay bounded
no matter how fast the producer is. Chunks are queued in memory and
flushed to the output device by a single background task.

Architecture:
    producer → submit() → pending FIFO → flush task → device.write()
                  ↑                                       │
                  └──── False / on_drained() ◄────────────┘

Components:
    SinkConfig: Thresholds and write coalescing settings
    BufferedSink: Bounded queue with drain notifications
    pipe_chunks: Drive an iterable of chunks through a sink
"""

import asyncio
import logging
import os
from collections import deque
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import (
    Any,
    AsyncIterable,
    Callable,
    Deque,
    Dict,
    Iterable,
    List,
    Optional,
    Union,
)

from .devices import FileDevice, OutputDevice

logger = logging.getLogger(__name__)

DEFAULT_HIGH_WATER_MARK = 16384
DEFAULT_MAX_WRITE_BYTES = 65536

DrainCallback = Callable[["asyncio.Future[None]"], Any]
Chunks = Union[Iterable[bytes], AsyncIterable[bytes]]


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class FlowSinkError(Exception):
    """Base class for sink errors."""


class ClosedSinkError(FlowSinkError):
    """Raised when submit() is called after close() or after a fatal flush error.

    Attributes:
        state: The sink state at the time of the rejected submit.
    """

    def __init__(self, state: "SinkState"):
        self.state = state
        super().__init__(f"Cannot submit to a sink in state {state.value}")


class FlushError(FlowSinkError):
    """Raised when the output device fails to write or close.

    The underlying exception is available as ``__cause__``.

    Attributes:
        bytes_flushed: Bytes confirmed written before the failure.
    """

    def __init__(self, message: str, bytes_flushed: int = 0):
        self.bytes_flushed = bytes_flushed
        super().__init__(message)


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

class SinkState(Enum):
    """Lifecycle states of a BufferedSink."""
    OPEN = "open"
    DRAINING = "draining"  # producer told to pause, waiting for drain
    CLOSING = "closing"
    CLOSED = "closed"


@dataclass
class SinkConfig:
    """Configuration for BufferedSink."""
    high_water_mark: int = DEFAULT_HIGH_WATER_MARK  # Pause threshold in bytes
    coalesce: bool = True  # Join adjacent queued chunks into one write
    max_write_bytes: int = DEFAULT_MAX_WRITE_BYTES  # Upper bound for a coalesced write

    def validate(self) -> "SinkConfig":
        """Check thresholds, returning self for chaining."""
        if self.high_water_mark <= 0:
            raise ValueError(f"high_water_mark must be positive, got {self.high_water_mark}")
        if self.max_write_bytes <= 0:
            raise ValueError(f"max_write_bytes must be positive, got {self.max_write_bytes}")
        return self

    @classmethod
    def from_env(cls) -> "SinkConfig":
        """Create config from environment variables."""
        coalesce = os.environ.get("FLOWSINK_COALESCE", "true").strip().lower()
        return cls(
            high_water_mark=int(
                os.environ.get("FLOWSINK_HIGH_WATER_MARK", str(DEFAULT_HIGH_WATER_MARK))
            ),
            coalesce=coalesce not in ("0", "false", "no", "off"),
            max_write_bytes=int(
                os.environ.get("FLOWSINK_MAX_WRITE_BYTES", str(DEFAULT_MAX_WRITE_BYTES))
            ),
        ).validate()


# ---------------------------------------------------------------------------
# BufferedSink
# ---------------------------------------------------------------------------

class BufferedSink:
    """
    Bounded write buffer in front of an asynchronous output device.

    submit() never suspends. It queues the chunk and reports whether the
    producer may keep going. Once pending bytes exceed the high water mark
    the producer should wait for a drain (on_drained() or wait_drained())
    before submitting more. Memory is therefore capped at roughly
    high_water_mark plus one chunk.

    The device is owned by the caller. The sink only writes to it and
    closes it once from close().

    All methods must be called from the thread running the event loop.

    Usage:
        sink = BufferedSink(FileDevice("out.txt"))
        for chunk in chunks:
            if not sink.submit(chunk):
                await sink.wait_drained()
        await sink.close()
    """

    def __init__(self, device: OutputDevice, config: Optional[SinkConfig] = None):
        """
        Initialize the BufferedSink.

        Args:
            device: Output device to flush to
            config: Sink configuration. If None, uses defaults.
        """
        self.config = (config or SinkConfig()).validate()
        self._device = device
        self._state = SinkState.OPEN
        self._pending: Deque[bytes] = deque()
        self._pending_bytes = 0
        self._needs_drain = False
        self._drain_waiters: List["asyncio.Future[None]"] = []
        self._flush_task: Optional["asyncio.Task[None]"] = None
        self._close_task: Optional["asyncio.Task[None]"] = None
        self._error: Optional[FlushError] = None

        # Statistics
        self._max_pending_bytes = 0
        self._bytes_flushed = 0
        self._write_calls = 0

    # -- Producer API -------------------------------------------------------

    def submit(self, chunk: bytes) -> bool:
        """
        Queue a chunk for writing (non-blocking).

        Args:
            chunk: Non-empty bytes-like object

        Returns:
            True if the producer may keep submitting, False if it should
            wait for a drain first.

        Raises:
            ClosedSinkError: If close() was called or the sink failed
        """
        if self._state in (SinkState.CLOSING, SinkState.CLOSED):
            raise ClosedSinkError(self._state) from self._error

        if isinstance(chunk, (bytearray, memoryview)):
            chunk = bytes(chunk)
        elif not isinstance(chunk, bytes):
            raise TypeError(f"chunk must be bytes-like, got {type(chunk).__name__}")
        if not chunk:
            raise ValueError("chunk must not be empty")

        self._pending.append(chunk)
        self._pending_bytes += len(chunk)
        if self._pending_bytes > self._max_pending_bytes:
            self._max_pending_bytes = self._pending_bytes

        if self._pending_bytes > self.high_water_mark:
            self._needs_drain = True
            self._state = SinkState.DRAINING

        if self._flush_task is None:
            loop = asyncio.get_running_loop()
            self._flush_task = loop.create_task(self._flush_loop())

        return self._pending_bytes <= self.high_water_mark

    def on_drained(self, callback: Optional[DrainCallback] = None) -> "asyncio.Future[None]":
        """
        Register a one-shot drain notification.

        The returned future resolves the next time pending bytes fall from
        above the high water mark to at or below it. It is rejected with
        the FlushError if the sink fails first, and cancelled if the sink
        closes without another drain.

        Args:
            callback: Optional callable receiving the future once it is done

        Returns:
            Future resolved on the next drain
        """
        loop = asyncio.get_running_loop()
        waiter: "asyncio.Future[None]" = loop.create_future()
        if callback is not None:
            waiter.add_done_callback(callback)

        if self._error is not None:
            waiter.set_exception(self._error)
        elif self._state == SinkState.CLOSED:
            waiter.cancel()
        else:
            self._drain_waiters.append(waiter)
        return waiter

    async def wait_drained(self) -> None:
        """Wait until the producer may submit again."""
        if self._error is not None:
            raise self._error
        if not self._needs_drain:
            return
        await self.on_drained()

    def close(self) -> "asyncio.Task[None]":
        """
        Stop accepting chunks, flush the rest and close the device.

        Calling close() again returns the same task; the device is closed
        only once.

        Returns:
            Task that completes once the sink is CLOSED

        Raises (from the task):
            FlushError: If any write or the device close failed
        """
        if self._close_task is None:
            if self._state != SinkState.CLOSED:
                self._state = SinkState.CLOSING
            loop = asyncio.get_running_loop()
            self._close_task = loop.create_task(self._close())
        return self._close_task

    async def aclose(self) -> None:
        """Close the sink and wait for it."""
        await self.close()

    async def __aenter__(self) -> "BufferedSink":
        return self

    async def __aexit__(self, *args) -> None:
        await self.close()

    # -- Flush path ---------------------------------------------------------

    def _next_batch(self) -> bytes:
        """Build the next device write from the head of the queue."""
        if not self.config.coalesce or len(self._pending) == 1:
            return self._pending[0]

        parts = []
        size = 0
        for chunk in self._pending:
            if parts and size + len(chunk) > self.config.max_write_bytes:
                break
            parts.append(chunk)
            size += len(chunk)
        return b"".join(parts) if len(parts) > 1 else parts[0]

    async def _write_fully(self, data: bytes) -> None:
        """Write data, retrying the remainder after partial writes."""
        view = memoryview(data)
        offset = 0
        while offset < len(data):
            written = await self._device.write(view[offset:].tobytes() if offset else data)
            self._write_calls += 1
            if written <= 0:
                raise OSError(f"device accepted {written!r} bytes")
            offset += written

    async def _flush_loop(self) -> None:
        """
        Background task that writes queued chunks in order.

        Exits when the queue is empty; submit() starts a new one as needed.
        """
        try:
            while self._pending and self._error is None:
                batch = self._next_batch()
                try:
                    await self._write_fully(batch)
                except Exception as e:
                    self._fail(e, "write")
                    return
                self._confirm(len(batch))
        finally:
            self._flush_task = None

    def _confirm(self, size: int) -> None:
        """Drop confirmed chunks from the queue and fire a drain if due."""
        remaining = size
        while remaining > 0:
            remaining -= len(self._pending.popleft())
        self._pending_bytes -= size
        self._bytes_flushed += size
        logger.debug(f"Flushed {size} bytes, {self._pending_bytes} pending")

        if self._needs_drain and self._pending_bytes <= self.high_water_mark:
            self._needs_drain = False
            if self._state == SinkState.DRAINING:
                self._state = SinkState.OPEN
            # Waiters run on the next loop iteration, outside the flush stack
            waiters, self._drain_waiters = self._drain_waiters, []
            asyncio.get_running_loop().call_soon(self._resolve_drain_waiters, waiters)

    @staticmethod
    def _resolve_drain_waiters(waiters: List["asyncio.Future[None]"]) -> None:
        for waiter in waiters:
            if not waiter.done():
                waiter.set_result(None)

    def _fail(self, exc: BaseException, operation: str) -> None:
        """Terminate the sink after a device failure."""
        error = FlushError(
            f"Output device {operation} failed: {exc}",
            bytes_flushed=self._bytes_flushed,
        )
        error.__cause__ = exc
        self._error = error
        self._state = SinkState.CLOSED
        logger.error(f"BufferedSink terminated, {self._pending_bytes} bytes unflushed: {exc}")

        waiters, self._drain_waiters = self._drain_waiters, []
        for waiter in waiters:
            if not waiter.done():
                waiter.set_exception(error)

    async def _close(self) -> None:
        if self._flush_task is not None:
            await self._flush_task

        try:
            await self._device.close()
        except Exception as e:
            if self._error is None:
                self._fail(e, "close")
            else:
                logger.warning(f"Device close after failure also failed: {e}")

        self._state = SinkState.CLOSED
        for waiter in self._drain_waiters:
            waiter.cancel()
        self._drain_waiters.clear()

        if self._error is not None:
            raise self._error
        logger.info(
            f"BufferedSink closed: {self._bytes_flushed} bytes in {self._write_calls} writes"
        )

    # -- Introspection ------------------------------------------------------

    @property
    def state(self) -> SinkState:
        return self._state

    @property
    def high_water_mark(self) -> int:
        return self.config.high_water_mark

    @property
    def device(self) -> OutputDevice:
        return self._device

    @property
    def pending_bytes(self) -> int:
        """Bytes submitted but not yet confirmed written."""
        return self._pending_bytes

    @property
    def pending_chunks(self) -> int:
        return len(self._pending)

    @property
    def max_pending_bytes(self) -> int:
        """Highest pending_bytes observed so far."""
        return self._max_pending_bytes

    @property
    def bytes_flushed(self) -> int:
        return self._bytes_flushed

    @property
    def write_calls(self) -> int:
        """Number of device.write() calls issued, including partial retries."""
        return self._write_calls

    @property
    def error(self) -> Optional[FlushError]:
        return self._error

    @property
    def closed(self) -> bool:
        return self._state == SinkState.CLOSED

    def get_stats(self) -> Dict[str, Any]:
        """Get sink statistics."""
        return {
            "state": self._state.value,
            "high_water_mark": self.high_water_mark,
            "pending_bytes": self._pending_bytes,
            "pending_chunks": len(self._pending),
            "max_pending_bytes": self._max_pending_bytes,
            "bytes_flushed": self._bytes_flushed,
            "write_calls": self._write_calls,
            "error": str(self._error) if self._error else None,
        }


# ---------------------------------------------------------------------------
# Producer helpers
# ---------------------------------------------------------------------------

async def pipe_chunks(sink: BufferedSink, chunks: Chunks, close: bool = True) -> int:
    """
    Submit every chunk to the sink, pausing whenever it reports full.

    Args:
        sink: Destination sink
        chunks: Sync or async iterable of bytes
        close: Whether to close the sink afterwards

    Returns:
        Number of bytes submitted

    Raises:
        FlushError: If the device failed

    When close is True the sink is closed even if the producer or the
    device fails; the first error is the one raised.
    """
    total = 0

    async def _submit(chunk: bytes) -> None:
        nonlocal total
        # A flush may have failed while the producer was not paused
        if sink.error is not None:
            raise sink.error
        total += len(chunk)
        if not sink.submit(chunk):
            await sink.wait_drained()

    try:
        if hasattr(chunks, "__aiter__"):
            async for chunk in chunks:
                if chunk:
                    await _submit(chunk)
        else:
            for chunk in chunks:
                if chunk:
                    await _submit(chunk)
    except BaseException as exc:
        if close:
            try:
                await sink.close()
            except FlushError as close_error:
                if close_error is not exc:
                    logger.warning(f"Closing sink after error also failed: {close_error}")
        raise

    if close:
        await sink.close()
    return total


def open_file_sink(
    path: Union[str, Path],
    config: Optional[SinkConfig] = None,
    append: bool = False,
) -> BufferedSink:
    """
    Create a BufferedSink writing to a local file.

    Convenience function for the common case.

    Args:
        path: Target file path
        config: Sink configuration. If None, uses defaults from env.
        append: Append to the file instead of truncating it

    Returns:
        The configured BufferedSink
    """
    device = FileDevice(path, mode="a" if append else "w")
    return BufferedSink(device, config or SinkConfig.from_env())
