"""Bounded retry with exponential backoff."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

_logger = logging.getLogger(__name__)

T = TypeVar("T")


async def call_with_backoff(
    func: Callable[[], Awaitable[T]],
    *,
    action: str,
    attempts: int,
    base_delay_seconds: float,
    retry_on: tuple[type[Exception], ...],
    max_delay_seconds: float = 30.0,
) -> T:
    """Call an async function, retrying the given errors with doubling delays.

    `attempts` is the total number of calls made, so the last error is raised
    after `attempts` failures.
    """
    if attempts < 1:
        raise ValueError("attempts must be at least 1")
    attempt = 0
    while True:
        try:
            return await func()
        except retry_on as exc:
            attempt += 1
            _logger.warning(
                "%s failed (attempt %s/%s, status=%s): %s",
                action,
                attempt,
                attempts,
                status_code_from_exception(exc),
                exc,
            )
            if attempt >= attempts:
                raise
            delay = min(base_delay_seconds * (2 ** (attempt - 1)), max_delay_seconds)
            await asyncio.sleep(delay)


def status_code_from_exception(exc: Exception) -> str:
    """Extract an HTTP status code from an exception, if available."""
    status_code = getattr(exc, "status_code", None)
    if status_code is None:
        response = getattr(exc, "response", None)
        status_code = getattr(response, "status_code", None)
    if isinstance(status_code, int):
        return str(status_code)
    return "n/a"
