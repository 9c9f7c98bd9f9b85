"""Start-up helpers for talking to a database that may not be ready yet."""

from __future__ import annotations

import time
from typing import Callable, Optional, Tuple, Type, TypeVar

from sqlalchemy.exc import OperationalError

from app_logging import get_logger
from store import StoreError, StoreErrorKind

T = TypeVar("T")

_logger = get_logger("classroom.db")


def _is_transient(exc: Exception) -> bool:
    if isinstance(exc, StoreError):
        return exc.kind is StoreErrorKind.UNAVAILABLE
    return isinstance(exc, OperationalError)


def retry_with_backoff(
    func: Callable[[], T],
    attempts: int = 3,
    base_delay: float = 0.1,
    max_total_delay: float = 2.0,
    retry_on: Tuple[Type[Exception], ...] = (OperationalError, StoreError),
    sleep: Optional[Callable[[float], None]] = None,
) -> T:
    """Call ``func``, retrying transient database failures with exponential backoff.

    Only connection-type failures are retried; anything else propagates on
    the first attempt. Total sleeping never exceeds ``max_total_delay``.
    """

    sleep = sleep or time.sleep
    total_delay = 0.0
    for attempt in range(1, attempts + 1):
        try:
            return func()
        except retry_on as exc:
            if not _is_transient(exc):
                raise
            _logger.warning("database not ready", extra={"attempt": attempt, "error": str(exc)})
            if attempt >= attempts or total_delay >= max_total_delay:
                raise
            delay = min(base_delay * (2 ** (attempt - 1)), max_total_delay - total_delay)
            if delay > 0:
                sleep(delay)
                total_delay += delay
    raise RuntimeError("retry_with_backoff called with attempts < 1")


__all__ = ["retry_with_backoff"]
