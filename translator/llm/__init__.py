"""
Ollama integration for streaming translation.

This package provides:
- Streaming generate client with a shared connection pool
- Closed error taxonomy with transport classification
- Lenient NDJSON stream decoding
- Throttled forwarding of text deltas
"""

from __future__ import annotations

from .classifier import classify, classify_status
from .client import OllamaClient
from .exceptions import ErrorKind, TranslationCancelled, TranslationError
from .models import (
    GenerationRequest,
    ModelSummary,
    ModelsResponse,
    ResponseFragment,
    SamplingOptions,
)

__all__ = [
    # Errors
    "ErrorKind",
    # Models
    "GenerationRequest",
    "ModelSummary",
    "ModelsResponse",
    # Client
    "OllamaClient",
    "ResponseFragment",
    "SamplingOptions",
    "TranslationCancelled",
    "TranslationError",
    "classify",
    "classify_status",
]
