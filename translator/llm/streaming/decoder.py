"""
Newline-delimited JSON decoder for the Ollama generate stream.

Lenient by policy: a line that cannot be decoded into a fragment is
dropped and the stream continues. Only in-band {"error": ...} objects
and transport failures end the stream with an error.
"""

from __future__ import annotations

from collections.abc import AsyncIterable, AsyncIterator

import structlog
from pydantic import ValidationError

from ..classifier import upstream_message
from ..exceptions import TranslationError
from ..models import ResponseFragment
from .cancellation import CancellationToken

logger = structlog.get_logger(__name__)

# Constants
DEFAULT_MAX_LINE_BYTES = 1024 * 1024


class StreamDecoder:
    """Decode text lines into ResponseFragments with skip statistics."""

    def __init__(self, max_line_bytes: int = DEFAULT_MAX_LINE_BYTES):
        self.max_line_bytes = max_line_bytes
        self.stats = {
            "lines": 0,
            "fragments": 0,
            "skipped_lines": 0,
        }

    def parse_line(self, line: str) -> ResponseFragment | None:
        """
        Parse a single line.

        Returns:
            The fragment, or None when the line must be skipped

        Raises:
            TranslationError: If the line is an upstream error object
        """
        stripped = line.strip()
        if not stripped:
            return None

        if len(stripped.encode("utf-8")) > self.max_line_bytes:
            logger.debug(
                "Skipping oversized stream line",
                size=len(stripped),
                limit=self.max_line_bytes,
            )
            return None

        try:
            return ResponseFragment.model_validate_json(stripped)
        except ValidationError:
            pass

        if (message := upstream_message(stripped)) is not None:
            raise TranslationError.upstream(message)

        logger.debug("Skipping undecodable stream line", line=stripped[:200])
        return None

    async def decode(
        self,
        lines: AsyncIterable[str],
        token: CancellationToken | None = None,
    ) -> AsyncIterator[ResponseFragment]:
        """
        Yield fragments until done, end of input, or cancellation.

        Args:
            lines: Line-oriented text source
            token: Checked before each fragment is forwarded

        Raises:
            TranslationCancelled: If the token is cancelled
            TranslationError: On an upstream error object
        """
        async for line in lines:
            self.stats["lines"] += 1
            fragment = self.parse_line(line)
            if fragment is None:
                if line.strip():
                    self.stats["skipped_lines"] += 1
                continue

            if token is not None:
                token.raise_if_cancelled()

            self.stats["fragments"] += 1
            yield fragment

            if fragment.done:
                return

    def get_stats(self) -> dict[str, int]:
        """Get decoding statistics for monitoring."""
        return self.stats.copy()

    def reset_stats(self) -> None:
        """Reset statistics counters."""
        self.stats = {
            "lines": 0,
            "fragments": 0,
            "skipped_lines": 0,
        }

