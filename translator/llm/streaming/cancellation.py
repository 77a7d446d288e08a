"""
Cooperative cancellation token shared by the decoder, aggregator and session.
"""

from __future__ import annotations

import asyncio

from ..exceptions import TranslationCancelled


class CancellationToken:
    """One-shot cancellation flag that can also be awaited."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        """Request cancellation. Idempotent."""
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise TranslationCancelled()

    async def wait(self) -> None:
        """Suspend until cancellation is requested."""
        await self._event.wait()
