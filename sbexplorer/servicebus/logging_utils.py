"""
Structured Logging for the Service Bus clients

Provides correlation tracking and context-aware logging for async
management and messaging operations. Output formatting and redaction are
configured once by ``sbexplorer.core.logging_config.setup_logging``.
"""

import logging
import time
import uuid
from contextlib import contextmanager
from functools import wraps
from typing import Iterator, Optional

from sbexplorer.core.logging_config import correlation_id


class CorrelationContext:
    """Manages correlation ID context for request tracing."""

    @staticmethod
    def current() -> Optional[str]:
        return correlation_id.get()

    @staticmethod
    @contextmanager
    def scope(corr_id: Optional[str] = None) -> Iterator[str]:
        """
        Bind a correlation ID for the duration of an operation.

        An ID already bound by an enclosing operation (or by the caller) is
        kept, so nested calls log under the outermost ID.
        """
        existing = correlation_id.get()
        if existing:
            yield existing
            return
        token = correlation_id.set(corr_id or str(uuid.uuid4()))
        try:
            yield correlation_id.get()
        finally:
            correlation_id.reset(token)


class StructuredLogger:
    """Logger that attaches operation context as a ``context`` record attribute."""

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)

    def _log(self, level: int, message: str, **kwargs) -> None:
        context = {k: v for k, v in kwargs.items() if v is not None}
        extra = {"context": context} if context else {}
        self.logger.log(level, message, extra=extra)

    def debug(self, message: str, **kwargs) -> None:
        self._log(logging.DEBUG, message, **kwargs)

    def info(self, message: str, **kwargs) -> None:
        self._log(logging.INFO, message, **kwargs)

    def warning(self, message: str, **kwargs) -> None:
        self._log(logging.WARNING, message, **kwargs)

    def log_operation(self, operation: str, entity_type: str, entity_name: str, **kwargs) -> None:
        """Log a management operation on an entity."""
        self.info(
            f"{operation}: {entity_type}/{entity_name}",
            operation=operation,
            entity_type=entity_type,
            entity_name=entity_name,
            **kwargs
        )

    def log_message_operation(
        self,
        operation: str,
        entity_path: str,
        count: int,
        message_id: Optional[str] = None,
        **kwargs
    ) -> None:
        """Log a data-plane operation and how many messages it touched."""
        suffix = f" message={message_id}" if message_id else ""
        self.info(
            f"{operation}: {entity_path} count={count}{suffix}",
            operation=operation,
            entity_path=entity_path,
            count=count,
            message_id=message_id,
            **kwargs
        )


def track_operation_time(logger: StructuredLogger, operation: str):
    """Decorator to log the duration of an async operation, and its failure."""
    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            with CorrelationContext.scope():
                return await _timed(*args, **kwargs)

        async def _timed(*args, **kwargs):
            start_time = time.perf_counter()
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                duration_ms = (time.perf_counter() - start_time) * 1000
                logger.warning(
                    f"Operation failed: {operation}",
                    operation=operation,
                    duration_ms=round(duration_ms, 2),
                    error_type=type(e).__name__,
                    error_message=str(e)
                )
                raise
            duration_ms = (time.perf_counter() - start_time) * 1000
            logger.debug(
                f"Operation completed: {operation}",
                operation=operation,
                duration_ms=round(duration_ms, 2)
            )
            return result
        return wrapper
    return decorator
