"""
Mapping from transport failures and HTTP statuses to TranslationError.

Both functions are pure: the same input always yields an equal error.
"""

from __future__ import annotations

import errno
import json
import socket

import httpx

from .exceptions import TranslationError

HTTP_OK = 200
HTTP_NOT_FOUND = 404

UNKNOWN_ERROR_CODE = -1

_REFUSED_ERRNOS = frozenset({errno.ECONNREFUSED, errno.EHOSTUNREACH})
_NETWORK_DOWN_ERRNOS = frozenset({errno.ENETUNREACH, errno.ENETDOWN})

_CONNECTION_LOST = (
    httpx.ReadError,
    httpx.WriteError,
    httpx.CloseError,
    httpx.RemoteProtocolError,
    ConnectionResetError,
    ConnectionAbortedError,
    BrokenPipeError,
)


def _cause_chain(error: BaseException) -> list[BaseException]:
    chain: list[BaseException] = []
    seen: set[int] = set()
    current: BaseException | None = error
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        chain.append(current)
        current = current.__cause__ or current.__context__
    return chain


def _first_errno(error: BaseException) -> int | None:
    for exc in _cause_chain(error):
        if isinstance(exc, OSError) and exc.errno is not None:
            return exc.errno
    return None


def _is_network_down(error: BaseException) -> bool:
    return _first_errno(error) in _NETWORK_DOWN_ERRNOS


def _is_host_unreachable(error: BaseException) -> bool:
    if isinstance(error, httpx.ConnectError):
        return not _is_network_down(error)
    if isinstance(error, ConnectionRefusedError | socket.gaierror):
        return True
    return _first_errno(error) in _REFUSED_ERRNOS


def _is_timeout(error: BaseException) -> bool:
    return isinstance(error, httpx.TimeoutException | TimeoutError)


def _is_connection_lost(error: BaseException) -> bool:
    return isinstance(error, _CONNECTION_LOST) or _is_network_down(error)


def classify(error: BaseException) -> TranslationError:
    """
    Map a low-level transport failure to a TranslationError.

    Checked in order, first match wins:
    host unreachable, timeout, connection lost, anything else.

    Args:
        error: The exception raised by the transport

    Returns:
        The matching TranslationError
    """
    if isinstance(error, TranslationError):
        return error
    if _is_host_unreachable(error):
        return TranslationError.connection_refused()
    if _is_timeout(error):
        return TranslationError.connection_timeout()
    if _is_connection_lost(error):
        return TranslationError.network_unavailable()

    code = _first_errno(error)
    return TranslationError.http_error(
        code if code is not None else UNKNOWN_ERROR_CODE
    )


def upstream_message(body: bytes | str | None) -> str | None:
    """Extract the message of an {"error": ...} body, if there is one."""
    if not body:
        return None
    try:
        data = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    if isinstance(data, dict) and isinstance(data.get("error"), str):
        return data["error"]
    return None


def classify_status(
    status_code: int, body: bytes | str | None = None
) -> TranslationError | None:
    """
    Validate an HTTP status code.

    Args:
        status_code: Status of the received response
        body: Response body, inspected for an upstream error message

    Returns:
        None for 200, otherwise the TranslationError to raise
    """
    if status_code == HTTP_OK:
        return None
    if (message := upstream_message(body)) is not None:
        return TranslationError.upstream(message)
    if status_code == HTTP_NOT_FOUND:
        return TranslationError.model_not_found()
    if 500 <= status_code <= 599:
        return TranslationError.server_error(status_code)
    return TranslationError.http_error(status_code)
