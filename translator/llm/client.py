"""
Streaming HTTP client for a local Ollama server.

One OllamaClient owns one httpx connection pool. Translations stream
through the generate endpoint; model listing is a plain request that may
run concurrently with an active translation on the same pool.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import httpx
import structlog
from pydantic import ValidationError

from ..config import Configuration, resolve_base_url
from ..logging_utils import log_operation
from .classifier import HTTP_OK, classify, classify_status
from .exceptions import TranslationError
from .models import GenerationRequest, ModelsResponse
from .streaming.cancellation import CancellationToken
from .streaming.decoder import DEFAULT_MAX_LINE_BYTES, StreamDecoder

logger = structlog.get_logger(__name__)

GENERATE_PATH = "/api/generate"
TAGS_PATH = "/api/tags"

DEFAULT_HTTP_CONFIG: dict[str, Any] = {
    "max_connections": 10,
    "max_keepalive": 5,
    "keepalive_expiry": 30.0,
    "connect_timeout": 10.0,
    "read_timeout": 120.0,
    "write_timeout": 30.0,
    "pool_timeout": 10.0,
}


class OllamaClient:
    """HTTP client for streaming translations and model listing."""

    def __init__(
        self,
        base_url: str | None = None,
        http_config: dict[str, Any] | None = None,
        *,
        max_line_bytes: int = DEFAULT_MAX_LINE_BYTES,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize the client and its connection pool.

        Args:
            base_url: Server address, resolved with the default fallback
            http_config: Pool limits and timeouts, see DEFAULT_HTTP_CONFIG
            max_line_bytes: Stream lines longer than this are dropped
            transport: Optional transport, e.g. httpx.MockTransport
        """
        self.base_url = resolve_base_url(base_url)
        self.max_line_bytes = max_line_bytes
        config = {**DEFAULT_HTTP_CONFIG, **(http_config or {})}

        self.client: httpx.AsyncClient = httpx.AsyncClient(
            base_url=self.base_url,
            headers={"Accept": "application/json"},
            limits=httpx.Limits(
                max_connections=config["max_connections"],
                max_keepalive_connections=config["max_keepalive"],
                keepalive_expiry=config["keepalive_expiry"],
            ),
            timeout=httpx.Timeout(
                connect=config["connect_timeout"],
                read=config["read_timeout"],
                write=config["write_timeout"],
                pool=config["pool_timeout"],
            ),
            transport=transport,
        )

    @classmethod
    def from_configuration(
        cls,
        configuration: Configuration,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> OllamaClient:
        """Build a client from the loaded configuration."""
        return cls(
            base_url=configuration.base_url,
            http_config=configuration.get_http_client_config(),
            max_line_bytes=configuration.get_streaming_config()["max_line_bytes"],
            transport=transport,
        )

    @asynccontextmanager
    async def open_generation(
        self,
        model: str,
        prompt: str,
        token: CancellationToken | None = None,
    ):
        """
        Open a streaming generation and validate the response status.

        The body of the context is the Streaming phase; everything before
        it is the Connecting phase. The response is closed on every exit.

        Args:
            model: Model name, must be non-empty
            prompt: Fully rendered prompt
            token: Checked before each fragment is forwarded

        Yields:
            Async iterator of non-empty text deltas, in order

        Raises:
            TranslationError: On connection failure, bad status or read error
            TranslationCancelled: If the token is cancelled while streaming
        """
        try:
            request = GenerationRequest(model=model, prompt=prompt)
        except ValidationError as e:
            raise ValueError(f"Invalid generation request: {e}") from e

        log = logger.bind(model=model, base_url=self.base_url)
        try:
            async with self.client.stream(
                "POST", GENERATE_PATH, json=request.to_payload()
            ) as response:
                if response.status_code != HTTP_OK:
                    body = await response.aread()
                    error = classify_status(response.status_code, body)
                    log.warning(
                        "Generate request rejected",
                        status_code=response.status_code,
                        error_kind=error.kind.value,
                    )
                    raise error

                log.debug("Generate stream opened")
                decoder = StreamDecoder(max_line_bytes=self.max_line_bytes)
                deltas = self._deltas(decoder, response, token)
                try:
                    yield deltas
                finally:
                    await deltas.aclose()
                    log.debug("Generate stream closed", **decoder.get_stats())
        except httpx.HTTPError as e:
            error = classify(e)
            log.warning(
                "Generate transport failure",
                error_type=type(e).__name__,
                error_kind=error.kind.value,
            )
            raise error from e

    async def _deltas(
        self,
        decoder: StreamDecoder,
        response: httpx.Response,
        token: CancellationToken | None,
    ) -> AsyncIterator[str]:
        try:
            async for fragment in decoder.decode(response.aiter_lines(), token):
                if fragment.delta_text:
                    yield fragment.delta_text
        except httpx.HTTPError as e:
            raise classify(e) from e

    async def translate(
        self,
        model: str,
        prompt: str,
        token: CancellationToken | None = None,
    ) -> AsyncIterator[str]:
        """
        Stream the translation of an already rendered prompt.

        Raises:
            TranslationError: On any transport or protocol failure
            TranslationCancelled: If the token is cancelled
        """
        async with self.open_generation(model, prompt, token) as deltas:
            async for delta in deltas:
                yield delta

    @log_operation("list_models")
    async def list_models(self) -> list[str]:
        """
        List the names of the models installed on the server.

        Returns:
            Model names in server order

        Raises:
            TranslationError: On connection failure, bad status or bad body
        """
        try:
            response = await self.client.get(TAGS_PATH)
        except httpx.HTTPError as e:
            raise classify(e) from e

        error = classify_status(response.status_code, response.content)
        if error is not None:
            raise error

        try:
            listing = ModelsResponse.model_validate_json(response.content)
        except ValidationError as e:
            raise TranslationError.invalid_response() from e

        return [entry.name for entry in listing.models]

    async def aclose(self) -> None:
        """Close the connection pool."""
        await self.client.aclose()

    async def __aenter__(self) -> OllamaClient:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()
