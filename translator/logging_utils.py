"""
Centralized logging utilities for the translator.

This module provides decorators and helper functions to standardize logging
across the codebase, reducing boilerplate and ensuring consistent reporting.

Features:
- Structured logging with contextual information
- Operation logging decorator with timing
- Async operation context manager
- Context-aware loggers for long-lived objects such as sessions
"""

from __future__ import annotations

import functools
import logging
import time
from collections.abc import Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any, ParamSpec, TypeVar

import structlog

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer(colors=True),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

# Type variables for generic decorators
P = ParamSpec("P")
T = TypeVar("T")
AsyncCallable = Callable[P, Awaitable[T]]

NOISY_LOGGERS = ("asyncio", "httpx", "httpcore")

logger = structlog.get_logger(__name__)


def configure_logging(level: str = "INFO") -> None:
    """
    Configure the stdlib root logger that structlog renders through.

    Args:
        level: Log level name, unknown names fall back to INFO
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(level=numeric_level, format="%(message)s", force=True)
    for noisy in NOISY_LOGGERS:
        logging.getLogger(noisy).setLevel(max(numeric_level, logging.WARNING))


def _error_log_data(error: BaseException) -> dict[str, Any]:
    data: dict[str, Any] = {
        "error_type": type(error).__name__,
        "error_message": str(error),
    }
    kind = getattr(error, "kind", None)
    if kind is not None:
        data["error_kind"] = getattr(kind, "value", kind)
    return data


def log_operation(
    operation: str,
    *,
    log_args: bool = False,
    log_result: bool = False,
    log_timing: bool = True,
    context: dict[str, Any] | None = None,
) -> Callable[[AsyncCallable[P, T]], AsyncCallable[P, T]]:
    """
    Decorator for logging async operations with structured context.

    Args:
        operation: Description of the operation being performed
        log_args: Whether to log function arguments
        log_result: Whether to log function result
        log_timing: Whether to log execution timing
        context: Additional context to include in logs

    Returns:
        Decorated function with logging
    """
    def decorator(func: AsyncCallable[P, T]) -> AsyncCallable[P, T]:
        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            operation_logger = logger.bind(
                operation=operation,
                function=func.__name__,
                **(context or {}),
            )

            log_data = {}
            if log_args:
                log_data.update({
                    "args": args[1:] if args else [],  # Skip 'self' if present
                    "kwargs": kwargs,
                })

            operation_logger.info("Operation started", **log_data)

            start_time = time.perf_counter() if log_timing else None

            try:
                result = await func(*args, **kwargs)

                end_log_data: dict[str, Any] = {}
                if log_timing and start_time is not None:
                    duration = round((time.perf_counter() - start_time) * 1000, 2)
                    end_log_data["duration_ms"] = duration
                if log_result:
                    end_log_data["result"] = result

                operation_logger.info(
                    "Operation completed successfully", **end_log_data
                )
                return result

            except Exception as e:
                error_log_data = _error_log_data(e)
                if log_timing and start_time is not None:
                    duration = round((time.perf_counter() - start_time) * 1000, 2)
                    error_log_data["duration_ms"] = duration

                operation_logger.error("Operation failed", **error_log_data)
                raise

        return wrapper
    return decorator


@asynccontextmanager
async def operation_context(
    operation: str,
    *,
    context: dict[str, Any] | None = None,
    log_timing: bool = True,
    cancelled_on: tuple[type[BaseException], ...] = (),
):
    """
    Async context manager for operation logging.

    Args:
        operation: Description of the operation
        context: Additional context for logging
        log_timing: Whether to log operation timing
        cancelled_on: Exception types logged as a cancellation, not a failure

    Yields:
        Bound logger for the operation
    """
    operation_logger = logger.bind(
        operation=operation,
        **(context or {}),
    )

    operation_logger.info("Operation started")
    start_time = time.perf_counter() if log_timing else None

    def timing() -> dict[str, Any]:
        if log_timing and start_time is not None:
            return {
                "duration_ms": round((time.perf_counter() - start_time) * 1000, 2)
            }
        return {}

    try:
        yield operation_logger
        operation_logger.info("Operation completed successfully", **timing())

    except Exception as e:
        if isinstance(e, cancelled_on):
            operation_logger.info("Operation cancelled", **timing())
            raise
        operation_logger.error("Operation failed", **_error_log_data(e), **timing())
        raise


class ContextualLogger:
    """Logger that maintains context across related operations."""

    def __init__(self, base_context: dict[str, Any] | None = None):
        self.base_context = base_context or {}
        self._logger = logger.bind(**self.base_context)

    def bind(self, **context: Any) -> ContextualLogger:
        """Create a new logger with additional context."""
        merged_context = {**self.base_context, **context}
        return ContextualLogger(merged_context)

    def info(self, message: str, **context: Any) -> None:
        """Log info message with context."""
        self._logger.info(message, **context)

    def warning(self, message: str, **context: Any) -> None:
        """Log warning message with context."""
        self._logger.warning(message, **context)

    def error(self, message: str, **context: Any) -> None:
        """Log error message with context."""
        self._logger.error(message, **context)

    def debug(self, message: str, **context: Any) -> None:
        """Log debug message with context."""
        self._logger.debug(message, **context)
