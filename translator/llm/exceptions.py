"""
Error taxonomy for translation requests.

Every failure a caller can observe is a TranslationError carrying one
ErrorKind from a closed set:
- Transport failures (refused, timed out, network gone)
- HTTP status failures (not found, server errors, anything else)
- Upstream failures reported by the server in an {"error": ...} body
- Malformed responses

Cancellation is not part of the taxonomy; it is signalled
with TranslationCancelled.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(Enum):
    """Closed set of domain error kinds."""
    INVALID_RESPONSE = "invalid_response"
    HTTP_ERROR = "http_error"
    SERVER_ERROR = "server_error"
    CONNECTION_REFUSED = "connection_refused"
    CONNECTION_TIMEOUT = "connection_timeout"
    NETWORK_UNAVAILABLE = "network_unavailable"
    MODEL_NOT_FOUND = "model_not_found"
    UPSTREAM_ERROR = "upstream_error"


_RECOVERY_SUGGESTIONS: dict[ErrorKind, str] = {
    ErrorKind.CONNECTION_REFUSED: "Run 'ollama serve' to start the server",
    ErrorKind.MODEL_NOT_FOUND: "Run 'ollama pull <model>' to download the model",
    ErrorKind.CONNECTION_TIMEOUT: "Check the configured Ollama server address",
    ErrorKind.UPSTREAM_ERROR: "Check the model name and the Ollama server logs",
}


class TranslationError(Exception):
    """Domain error with a fixed description and optional recovery hint."""

    def __init__(
        self,
        kind: ErrorKind,
        *,
        status_code: int | None = None,
        upstream_message: str | None = None,
    ):
        self.kind = kind
        self.status_code = status_code
        self.upstream_message = upstream_message
        super().__init__(self.description)

    @classmethod
    def invalid_response(cls) -> TranslationError:
        return cls(ErrorKind.INVALID_RESPONSE)

    @classmethod
    def http_error(cls, code: int) -> TranslationError:
        return cls(ErrorKind.HTTP_ERROR, status_code=code)

    @classmethod
    def server_error(cls, code: int) -> TranslationError:
        return cls(ErrorKind.SERVER_ERROR, status_code=code)

    @classmethod
    def connection_refused(cls) -> TranslationError:
        return cls(ErrorKind.CONNECTION_REFUSED)

    @classmethod
    def connection_timeout(cls) -> TranslationError:
        return cls(ErrorKind.CONNECTION_TIMEOUT)

    @classmethod
    def network_unavailable(cls) -> TranslationError:
        return cls(ErrorKind.NETWORK_UNAVAILABLE)

    @classmethod
    def model_not_found(cls) -> TranslationError:
        return cls(ErrorKind.MODEL_NOT_FOUND)

    @classmethod
    def upstream(cls, message: str) -> TranslationError:
        return cls(ErrorKind.UPSTREAM_ERROR, upstream_message=message)

    @property
    def description(self) -> str:
        """Fixed, human-readable description of the failure."""
        match self.kind:
            case ErrorKind.INVALID_RESPONSE:
                return "Invalid server response"
            case ErrorKind.HTTP_ERROR:
                return f"HTTP error: {self.status_code}"
            case ErrorKind.SERVER_ERROR:
                return (
                    f"Internal server error ({self.status_code}), "
                    "check the Ollama logs"
                )
            case ErrorKind.CONNECTION_REFUSED:
                return "Connection refused, make sure the Ollama server is running"
            case ErrorKind.CONNECTION_TIMEOUT:
                return "Connection timed out, check the server address"
            case ErrorKind.NETWORK_UNAVAILABLE:
                return "Network unavailable, check your network connection"
            case ErrorKind.MODEL_NOT_FOUND:
                return "Model not found, download the model first"
            case ErrorKind.UPSTREAM_ERROR:
                return f"Ollama error: {self.upstream_message}"

    @property
    def recovery_suggestion(self) -> str | None:
        """Actionable remediation hint, only for a subset of kinds."""
        return _RECOVERY_SUGGESTIONS.get(self.kind)

    @property
    def user_message(self) -> str:
        """Description plus recovery hint, ready for display."""
        if suggestion := self.recovery_suggestion:
            return f"{self.description}\n\nSuggestion: {suggestion}"
        return self.description

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TranslationError):
            return NotImplemented
        return (
            self.kind is other.kind
            and self.status_code == other.status_code
            and self.upstream_message == other.upstream_message
        )

    def __hash__(self) -> int:
        return hash((self.kind, self.status_code, self.upstream_message))

    def __repr__(self) -> str:
        return (
            f"TranslationError(kind={self.kind.value!r}, "
            f"status_code={self.status_code!r}, "
            f"upstream_message={self.upstream_message!r})"
        )


class TranslationCancelled(Exception):
    """Raised when a translation is stopped by an explicit cancel request."""

    def __init__(self, message: str = "Translation cancelled"):
        super().__init__(message)
