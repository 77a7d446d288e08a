"""
Streaming functionality for the generate endpoint.

This package contains:
- NDJSON line decoding
- Cooperative cancellation
- Throttled delta aggregation
"""

from __future__ import annotations

from .cancellation import CancellationToken
from .decoder import StreamDecoder
from .throttle import ThrottledAggregator, TranslationBuffer

__all__ = [
    "CancellationToken",
    "StreamDecoder",
    "ThrottledAggregator",
    "TranslationBuffer",
]
