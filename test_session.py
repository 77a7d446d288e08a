#!/usr/bin/env python3
"""
Test translation sessions and the single-session Translator.
"""

import asyncio
import json

import httpx
import pytest

from translator.config import Configuration
from translator.languages import Language
from translator.llm.client import OllamaClient
from translator.llm.exceptions import ErrorKind
from translator.session import (
    CANCELLED_PLACEHOLDER,
    SessionOutcome,
    SessionState,
    TranslationSession,
    Translator,
)


def ndjson(*objects) -> bytes:
    return b"".join(json.dumps(obj).encode() + b"\n" for obj in objects)


def make_configuration(flush_interval=0.05) -> Configuration:
    return Configuration.from_dict({
        "ollama": {"model": "llama3"},
        "translation": {
            "prompt_template": "{source_language}->{target_language}: {text}",
            "streaming": {"flush_interval": flush_interval, "max_line_bytes": 65536},
        },
    })


def make_client(handler) -> OllamaClient:
    return OllamaClient("http://ollama.test:11434", transport=httpx.MockTransport(handler))


class RecordingSink:
    """Sink that records writes and signals the first one."""

    def __init__(self):
        self.writes = []
        self.first_write = asyncio.Event()

    def __call__(self, text):
        self.writes.append(text)
        self.first_write.set()

    @property
    def text(self):
        return "".join(self.writes)


def hanging_body(*lines):
    """Response body that sends some lines then never finishes."""
    async def body():
        for line in lines:
            yield json.dumps(line).encode() + b"\n"
        await asyncio.Event().wait()
    return body()


class TestTranslationSession:
    """Test one session's lifecycle."""

    @pytest.mark.asyncio
    async def test_completed(self):
        """Test a two-fragment stream end to end."""
        def handler(request):
            return httpx.Response(200, content=ndjson(
                {"model": "llama3", "created_at": "t", "response": "你", "done": False},
                {"model": "llama3", "created_at": "t", "response": "好", "done": True},
            ))

        sink = RecordingSink()
        async with make_client(handler) as client:
            session = TranslationSession(client, "llama3", "Translate: Hello", sink)
            assert session.state is SessionState.IDLE
            session.start()
            outcome = await session.wait()

        assert outcome.state is SessionState.COMPLETED
        assert outcome.text == "你好"
        assert outcome.error is None
        assert sink.text == "你好"
        assert session.aggregator.closed

    @pytest.mark.asyncio
    async def test_model_not_found(self):
        sink = RecordingSink()
        async with make_client(lambda request: httpx.Response(404)) as client:
            session = TranslationSession(client, "missing", "p", sink)
            session.start()
            outcome = await session.wait()

        assert outcome.state is SessionState.FAILED
        assert outcome.error.kind is ErrorKind.MODEL_NOT_FOUND
        assert outcome.text == ""
        assert sink.writes == []

    @pytest.mark.asyncio
    async def test_connection_refused(self):
        def handler(request):
            raise httpx.ConnectError("cannot connect to host", request=request)

        async with make_client(handler) as client:
            session = TranslationSession(client, "llama3", "p", RecordingSink())
            session.start()
            outcome = await session.wait()

        assert outcome.state is SessionState.FAILED
        assert outcome.error.kind is ErrorKind.CONNECTION_REFUSED
        assert outcome.error.recovery_suggestion

    @pytest.mark.asyncio
    async def test_failure_keeps_partial_text(self):
        """Test that text held by the throttle is delivered before the failure."""
        async def body():
            yield b'{"response": "Hel", "done": false}\n'
            yield b'{"response": "lo", "done": false}\n'
            raise httpx.ReadError("connection reset")

        sink = RecordingSink()
        async with make_client(lambda request: httpx.Response(200, content=body())) as client:
            session = TranslationSession(client, "llama3", "p", sink, flush_interval=10.0)
            session.start()
            outcome = await session.wait()

        assert outcome.state is SessionState.FAILED
        assert outcome.error.kind is ErrorKind.NETWORK_UNAVAILABLE
        assert outcome.text == "Hello"
        assert sink.writes == ["Hel", "lo"]

    @pytest.mark.asyncio
    async def test_cancel_while_streaming(self):
        """Test that cancelling mid-stream keeps delivered text and stops writes."""
        def handler(request):
            return httpx.Response(200, content=hanging_body({"response": "Hel", "done": False}))

        sink = RecordingSink()
        async with make_client(handler) as client:
            session = TranslationSession(client, "llama3", "p", sink)
            session.start()
            await asyncio.wait_for(sink.first_write.wait(), 1.0)
            assert session.state is SessionState.STREAMING

            session.cancel()
            outcome = await asyncio.wait_for(session.wait(), 1.0)
            await asyncio.sleep(0.1)

        assert outcome.state is SessionState.CANCELLED
        assert outcome.text == "Hel"
        assert outcome.display_text == "Hel"
        assert sink.writes == ["Hel"]

    @pytest.mark.asyncio
    async def test_cancel_from_sink(self):
        """Test cancelling from inside the session's own sink callback."""
        body = ndjson(
            {"response": "a", "done": False},
            {"response": "b", "done": False},
            {"response": "c", "done": True},
        )
        writes = []
        holder = {}

        def sink(text):
            writes.append(text)
            holder["session"].cancel()

        async with make_client(lambda request: httpx.Response(200, content=body)) as client:
            session = TranslationSession(client, "llama3", "p", sink, flush_interval=0.0)
            holder["session"] = session
            session.start()
            outcome = await asyncio.wait_for(session.wait(), 1.0)

        assert outcome.state is SessionState.CANCELLED
        assert writes == ["a"]

    @pytest.mark.asyncio
    async def test_cancel_is_noop_when_terminal(self):
        async with make_client(lambda request: httpx.Response(404)) as client:
            session = TranslationSession(client, "llama3", "p", RecordingSink())
            session.start()
            await session.wait()
            session.cancel()
        assert session.state is SessionState.FAILED
        assert not session.token.cancelled

    @pytest.mark.asyncio
    async def test_cancel_before_start(self):
        session = TranslationSession(
            make_client(lambda request: httpx.Response(404)), "llama3", "p", RecordingSink()
        )
        outcome = await session.cancel_and_wait()
        await session.client.aclose()

        assert outcome.state is SessionState.CANCELLED
        assert outcome.display_text == CANCELLED_PLACEHOLDER

    @pytest.mark.asyncio
    async def test_start_twice_raises(self):
        async with make_client(lambda request: httpx.Response(404)) as client:
            session = TranslationSession(client, "llama3", "p", RecordingSink())
            session.start()
            with pytest.raises(RuntimeError):
                session.start()
            await session.wait()

    @pytest.mark.asyncio
    async def test_unexpected_sink_error_propagates(self):
        def sink(text):
            raise KeyError("broken sink")

        body = ndjson({"response": "a", "done": True})
        async with make_client(lambda request: httpx.Response(200, content=body)) as client:
            session = TranslationSession(client, "llama3", "p", sink)
            session.start()
            with pytest.raises(KeyError):
                await session.wait()
        assert session.state is SessionState.FAILED

    @pytest.mark.asyncio
    async def test_wait_before_start_raises(self):
        async with make_client(lambda request: httpx.Response(404)) as client:
            session = TranslationSession(client, "llama3", "p", RecordingSink())
            with pytest.raises(RuntimeError):
                await session.wait()


class TestSessionOutcome:
    """Test display text rules."""

    def test_placeholder_only_for_empty_cancelled(self):
        assert SessionOutcome(SessionState.CANCELLED, "").display_text == CANCELLED_PLACEHOLDER
        assert SessionOutcome(SessionState.CANCELLED, "Hel").display_text == "Hel"
        assert SessionOutcome(SessionState.FAILED, "").display_text == ""
        assert SessionOutcome(SessionState.COMPLETED, "你好").display_text == "你好"

    def test_terminal_states(self):
        assert not SessionState.IDLE.is_terminal
        assert not SessionState.CONNECTING.is_terminal
        assert not SessionState.STREAMING.is_terminal
        assert SessionState.COMPLETED.is_terminal
        assert SessionState.CANCELLED.is_terminal
        assert SessionState.FAILED.is_terminal


class TestTranslator:
    """Test the single active session owner."""

    @pytest.mark.asyncio
    async def test_translate_text(self):
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, content=ndjson(
                {"response": "你", "done": False},
                {"response": "好", "done": True},
            ))

        sink = RecordingSink()
        async with make_client(handler) as client:
            translator = Translator(client, make_configuration())
            outcome = await translator.translate_text(
                Language.ENGLISH, Language.CHINESE, "Hello", sink
            )

        assert outcome.state is SessionState.COMPLETED
        assert outcome.text == "你好"
        assert seen["body"]["prompt"] == "English->Chinese: Hello"
        assert seen["body"]["model"] == "llama3"
        assert not translator.is_translating

    @pytest.mark.asyncio
    @pytest.mark.parametrize("text, source, target", [
        ("", Language.ENGLISH, Language.CHINESE),
        ("   \n", Language.ENGLISH, Language.CHINESE),
        ("Hello", Language.ENGLISH, Language.ENGLISH),
    ])
    async def test_translate_text_rejects(self, text, source, target):
        async with make_client(lambda request: httpx.Response(500)) as client:
            translator = Translator(client, make_configuration())
            with pytest.raises(ValueError):
                await translator.translate_text(source, target, text, RecordingSink())
            assert translator.session is None

    def test_can_translate(self):
        assert Translator.can_translate("Hello", Language.ENGLISH, Language.JAPANESE)
        assert not Translator.can_translate(" ", Language.ENGLISH, Language.JAPANESE)
        assert not Translator.can_translate("Hello", Language.KOREAN, Language.KOREAN)

    @pytest.mark.asyncio
    async def test_new_start_supersedes_active_session(self):
        """Test that starting again cancels the first session before the second runs."""
        requests = []

        def handler(request):
            requests.append(request)
            if len(requests) == 1:
                return httpx.Response(200, content=hanging_body({"response": "Hel", "done": False}))
            return httpx.Response(200, content=ndjson({"response": "Bonjour", "done": True}))

        first_sink = RecordingSink()
        second_sink = RecordingSink()
        async with make_client(handler) as client:
            translator = Translator(client, make_configuration())
            first = await translator.start("p1", first_sink)
            await asyncio.wait_for(first_sink.first_write.wait(), 1.0)
            assert translator.is_translating

            second = await translator.start("p2", second_sink)
            assert first.state is SessionState.CANCELLED
            assert translator.session is second

            outcome = await asyncio.wait_for(second.wait(), 1.0)

        assert outcome.state is SessionState.COMPLETED
        assert first_sink.writes == ["Hel"]
        assert second_sink.text == "Bonjour"

    @pytest.mark.asyncio
    async def test_immediate_restart(self):
        """Test superseding a session that has not run yet."""
        body = ndjson({"response": "ok", "done": True})
        first_sink = RecordingSink()
        async with make_client(lambda request: httpx.Response(200, content=body)) as client:
            translator = Translator(client, make_configuration())
            first = await translator.start("p1", first_sink)
            second = await translator.start("p2", RecordingSink())
            outcome = await second.wait()

        assert first.state is SessionState.CANCELLED
        assert first_sink.writes == []
        assert outcome.text == "ok"

    @pytest.mark.asyncio
    async def test_cancel(self):
        def handler(request):
            return httpx.Response(200, content=hanging_body({"response": "Hel", "done": False}))

        sink = RecordingSink()
        async with make_client(handler) as client:
            translator = Translator(client, make_configuration())
            await translator.start("p", sink)
            await asyncio.wait_for(sink.first_write.wait(), 1.0)
            outcome = await translator.cancel()
            assert await translator.cancel() is None

        assert outcome.state is SessionState.CANCELLED
        assert outcome.text == "Hel"
        assert not translator.is_translating

    @pytest.mark.asyncio
    async def test_model_override(self):
        seen = {}

        def handler(request):
            seen["model"] = json.loads(request.content)["model"]
            return httpx.Response(200, content=ndjson({"response": "x", "done": True}))

        async with make_client(handler) as client:
            translator = Translator(client, make_configuration())
            session = await translator.start("p", RecordingSink(), model="qwen2")
            await session.wait()
            with pytest.raises(ValueError):
                await translator.start("p", RecordingSink(), model="  ")

        assert seen["model"] == "qwen2"
