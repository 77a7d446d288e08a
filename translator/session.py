"""
Translation sessions and the single-session owner.

A TranslationSession is one run of one translation, from request to a
terminal state. A Translator owns at most one active session and cancels
and awaits the previous one before starting the next, so two sessions
never write into the same output sink.
"""

from __future__ import annotations

import asyncio
import inspect
import itertools
from dataclasses import dataclass
from enum import Enum

from .config import Configuration
from .languages import Language
from .llm.client import OllamaClient
from .llm.exceptions import TranslationCancelled, TranslationError
from .llm.streaming.cancellation import CancellationToken
from .llm.streaming.throttle import (
    DEFAULT_MIN_INTERVAL,
    OutputSink,
    ThrottledAggregator,
    TranslationBuffer,
)
from .logging_utils import ContextualLogger, operation_context

CANCELLED_PLACEHOLDER = "Translation cancelled"

_session_ids = itertools.count(1)


class SessionState(Enum):
    """Lifecycle states of a translation session."""
    IDLE = "idle"
    CONNECTING = "connecting"
    STREAMING = "streaming"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATES


_TERMINAL_STATES = frozenset({
    SessionState.COMPLETED,
    SessionState.CANCELLED,
    SessionState.FAILED,
})


@dataclass(frozen=True)
class SessionOutcome:
    """Final result of a session."""
    state: SessionState
    text: str
    error: TranslationError | None = None

    @property
    def display_text(self) -> str:
        """Text to show, with a placeholder for an empty cancelled run."""
        if self.state is SessionState.CANCELLED and not self.text:
            return CANCELLED_PLACEHOLDER
        return self.text


class TranslationSession:
    """
    One cancellable in-flight translation.

    The session runs as its own task. cancel() sets the cancellation
    token and cancels the task, so a pending read or throttle wait is
    interrupted at its next suspension point.
    """

    def __init__(
        self,
        client: OllamaClient,
        model: str,
        prompt: str,
        sink: OutputSink,
        *,
        flush_interval: float = DEFAULT_MIN_INTERVAL,
    ):
        self.session_id = next(_session_ids)
        self.client = client
        self.model = model
        self.prompt = prompt
        self.token = CancellationToken()
        self.state = SessionState.IDLE
        self.error: TranslationError | None = None

        self._delivered = TranslationBuffer()
        self._sink = sink
        self.aggregator = ThrottledAggregator(self._deliver, min_interval=flush_interval)
        self._task: asyncio.Task[SessionOutcome] | None = None
        self._log = ContextualLogger({"session_id": self.session_id, "model": model})

    async def _deliver(self, text: str) -> None:
        if self.state.is_terminal:
            return
        self._delivered.append(text)
        result = self._sink(text)
        if inspect.isawaitable(result):
            await result

    @property
    def text(self) -> str:
        """Everything delivered to the sink so far."""
        return self._delivered.get_value()

    @property
    def done(self) -> bool:
        return self.state.is_terminal

    def _transition(self, state: SessionState) -> None:
        self._log.debug(
            "Session state changed", previous=self.state.value, state=state.value
        )
        self.state = state

    def start(self) -> asyncio.Task[SessionOutcome]:
        """
        Start the session task.

        Raises:
            RuntimeError: If the session was already started
        """
        if self._task is not None or self.state is not SessionState.IDLE:
            raise RuntimeError("A session can only be started once")
        self._task = asyncio.create_task(
            self._run(), name=f"translation-session-{self.session_id}"
        )
        return self._task

    async def _run(self) -> SessionOutcome:
        self._transition(SessionState.CONNECTING)
        try:
            async with operation_context(
                "translate",
                context={"session_id": self.session_id, "model": self.model},
                cancelled_on=(TranslationCancelled,),
            ):
                self.token.raise_if_cancelled()
                async with self.client.open_generation(
                    self.model, self.prompt, self.token
                ) as deltas:
                    self._transition(SessionState.STREAMING)
                    await self.aggregator.run(deltas, self.token)
        except TranslationCancelled:
            self._transition(SessionState.CANCELLED)
        except asyncio.CancelledError:
            # An explicit cancel() is an outcome; any other cancellation propagates.
            self._transition(SessionState.CANCELLED)
            if not self.token.cancelled:
                raise
            task = asyncio.current_task()
            if task is not None:
                task.uncancel()
        except TranslationError as e:
            self.error = e
            self._transition(SessionState.FAILED)
        except Exception:
            self._transition(SessionState.FAILED)
            raise
        else:
            self._transition(SessionState.COMPLETED)
        finally:
            await self.aggregator.close()

        return self.outcome()

    def outcome(self) -> SessionOutcome:
        """Snapshot of the current outcome."""
        return SessionOutcome(state=self.state, text=self.text, error=self.error)

    def cancel(self) -> None:
        """Request cancellation. No effect once the session is terminal."""
        if self.state.is_terminal:
            return
        self.token.cancel()
        if self._task is None or self._task.done():
            return
        # From inside the session task (e.g. a sink), the token alone is enough.
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        if self._task is not current:
            self._task.cancel()

    async def wait(self) -> SessionOutcome:
        """Wait for the terminal state and return the outcome."""
        if self._task is None:
            raise RuntimeError("Session was never started")
        try:
            return await asyncio.shield(self._task)
        except asyncio.CancelledError:
            # Cancelled before the task ever ran
            if self._task.cancelled() and self.token.cancelled:
                self._transition(SessionState.CANCELLED)
                return self.outcome()
            raise

    async def cancel_and_wait(self) -> SessionOutcome:
        """Cancel and wait for teardown to finish."""
        self.cancel()
        if self._task is None:
            self._transition(SessionState.CANCELLED)
            return self.outcome()
        return await self.wait()


class Translator:
    """
    Owner of at most one active TranslationSession.

    Starting a translation first cancels and awaits the current session.
    """

    def __init__(
        self,
        client: OllamaClient,
        configuration: Configuration,
    ):
        self.client = client
        self.configuration = configuration
        self._session: TranslationSession | None = None
        self._lock = asyncio.Lock()

    @property
    def session(self) -> TranslationSession | None:
        return self._session

    @property
    def is_translating(self) -> bool:
        return self._session is not None and not self._session.done

    @staticmethod
    def can_translate(
        text: str, source: Language | str, target: Language | str
    ) -> bool:
        """Non-blank text and two different languages."""
        return bool(text.strip()) and source != target

    async def start(
        self,
        prompt: str,
        sink: OutputSink,
        model: str | None = None,
    ) -> TranslationSession:
        """
        Start a session for an already rendered prompt.

        Args:
            prompt: Rendered prompt
            sink: Receives throttled text chunks
            model: Model name, defaults to the configured model

        Raises:
            ValueError: If the model name is empty
        """
        model = model if model is not None else self.configuration.selected_model
        if not model.strip():
            raise ValueError("model must be a non-empty string")

        async with self._lock:
            await self.cancel()
            session = TranslationSession(
                self.client,
                model,
                prompt,
                sink,
                flush_interval=self.configuration.get_streaming_config()[
                    "flush_interval"
                ],
            )
            self._session = session
            session.start()
            return session

    async def cancel(self) -> SessionOutcome | None:
        """Cancel the active session and wait for its teardown."""
        session = self._session
        if session is None or session.done:
            return None
        return await session.cancel_and_wait()

    async def translate_text(
        self,
        source: Language | str,
        target: Language | str,
        text: str,
        sink: OutputSink,
    ) -> SessionOutcome:
        """
        Render the configured prompt, translate, and wait for the outcome.

        Raises:
            ValueError: If the text is blank or both languages are the same
        """
        if not self.can_translate(text, source, target):
            raise ValueError(
                "Text must be non-blank and languages must differ"
            )
        prompt = self.configuration.build_prompt(source, target, text)
        session = await self.start(prompt, sink)
        return await session.wait()
