"""
Throttled forwarding of text deltas to an output sink.

The generate stream can emit many tiny fragments per second. The
aggregator batches them so the sink sees at most one write per
min_interval, while the concatenation of everything written always
equals the concatenation of everything received, in order.
"""

from __future__ import annotations

import asyncio
import inspect
import io
import time
from collections.abc import AsyncIterable, AsyncIterator, Awaitable, Callable

import structlog

from .cancellation import CancellationToken

logger = structlog.get_logger(__name__)

# Constants
DEFAULT_MIN_INTERVAL = 0.05

OutputSink = Callable[[str], Awaitable[None] | None]

_END = object()


async def _next_delta(iterator: AsyncIterator[str]) -> str | object:
    try:
        return await anext(iterator)
    except StopAsyncIteration:
        return _END


class TranslationBuffer:
    """Sink that accumulates forwarded text and exposes snapshots."""

    def __init__(self) -> None:
        self._buffer = io.StringIO()
        self.writes = 0

    def __call__(self, text: str) -> None:
        self.append(text)

    def append(self, text: str) -> None:
        """Append text efficiently."""
        self._buffer.write(text)
        self.writes += 1

    def get_value(self) -> str:
        """Get the current text snapshot."""
        return self._buffer.getvalue()

    def clear(self) -> None:
        """Clear the buffer for reuse."""
        self._buffer.seek(0)
        self._buffer.truncate(0)
        self.writes = 0


class ThrottledAggregator:
    """
    Coalesce deltas into rate-limited sink writes.

    Features:
    - At most one sink write per min_interval
    - Held text is flushed when the interval elapses, even without new input
    - Exactly one forced flush on completion, cancellation or error
    - Sink writes are awaited one at a time
    """

    def __init__(
        self,
        sink: OutputSink,
        min_interval: float = DEFAULT_MIN_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ):
        if min_interval < 0:
            raise ValueError("min_interval must be >= 0")
        self.sink = sink
        self.min_interval = min_interval
        self._clock = clock
        self._pending: list[str] = []
        self._last_flush: float | None = None
        self._closed = False
        self.stats = {
            "deltas": 0,
            "flushes": 0,
            "characters": 0,
        }

    @property
    def pending_size(self) -> int:
        """Number of characters waiting to be flushed."""
        return sum(len(chunk) for chunk in self._pending)

    @property
    def closed(self) -> bool:
        return self._closed

    def _time_until_flush(self) -> float:
        if self._last_flush is None:
            return 0.0
        elapsed = self._clock() - self._last_flush
        return max(0.0, self.min_interval - elapsed)

    async def _write(self, text: str) -> None:
        result = self.sink(text)
        if inspect.isawaitable(result):
            await result

    async def flush(self) -> None:
        """Forward the pending buffer to the sink, if non-empty."""
        if not self._pending:
            return
        text = "".join(self._pending)
        self._pending.clear()
        self._last_flush = self._clock()
        self.stats["flushes"] += 1
        self.stats["characters"] += len(text)
        await self._write(text)

    async def feed(self, delta: str) -> None:
        """
        Accept one delta, flushing if the interval has elapsed.

        Raises:
            RuntimeError: If the aggregator already reached a terminal state
        """
        if self._closed:
            raise RuntimeError("Aggregator is closed")
        if not delta:
            return
        self.stats["deltas"] += 1
        self._pending.append(delta)
        if self._time_until_flush() <= 0:
            await self.flush()

    async def close(self) -> None:
        """Forced terminal flush. Runs once; later calls are no-ops."""
        if self._closed:
            return
        self._closed = True
        await self.flush()

    async def run(
        self,
        deltas: AsyncIterable[str],
        token: CancellationToken | None = None,
    ) -> None:
        """
        Drive a delta source to its end, forwarding through the throttle.

        While text is held, the next delta is awaited only until the
        interval elapses, then the held text is flushed.

        Raises:
            TranslationCancelled: If the token is cancelled
            Whatever the delta source raises, after the forced flush
        """
        iterator = aiter(deltas)
        next_item: asyncio.Task[str | object] | None = None
        try:
            while True:
                if token is not None:
                    token.raise_if_cancelled()

                if next_item is None:
                    next_item = asyncio.create_task(_next_delta(iterator))

                timeout = self._time_until_flush() if self._pending else None
                done, _ = await asyncio.wait({next_item}, timeout=timeout)
                if not done:
                    await self.flush()
                    continue

                item, next_item = next_item, None
                delta = item.result()
                if delta is _END:
                    break
                await self.feed(delta)
        finally:
            if next_item is not None and not next_item.done():
                next_item.cancel()
                await asyncio.wait({next_item})
                if not next_item.cancelled():
                    next_item.exception()
            aclose = getattr(iterator, "aclose", None)
            if aclose is not None:
                await aclose()
            await self.close()
            logger.debug("Aggregator closed", **self.stats)

    def get_stats(self) -> dict[str, int]:
        """Get aggregation statistics for monitoring."""
        return self.stats.copy()
