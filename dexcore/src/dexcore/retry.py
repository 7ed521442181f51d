"""
Bounded retry for daemon calls.

Fixed attempt count, no backoff: the daemon is local and a failed call is
usually a transient lock or a node still loading its block index.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import TypeVar

from loguru import logger

from dexcore.errors import DecodeError, RetryExhaustedError, RPCError

T = TypeVar("T")


async def retry_async(
    func: Callable[..., Awaitable[T]],
    *args: object,
    attempts: int = 3,
    retry_on: tuple[type[BaseException], ...] = (RPCError,),
    **kwargs: object,
) -> T:
    """
    Call ``func(*args, **kwargs)`` up to ``attempts`` times.

    Only exceptions in ``retry_on`` are retried; anything else propagates
    immediately.

    Raises:
        RetryExhaustedError: After the last attempt fails, chained to the
            last error. A ``DecodeError`` on the final attempt is re-raised
            as-is so callers can tell a malformed transaction apart.
    """
    if attempts < 1:
        raise ValueError(f"attempts must be >= 1, got {attempts}")

    name = getattr(func, "__name__", repr(func))
    last_error: BaseException | None = None

    for attempt in range(attempts):
        try:
            return await func(*args, **kwargs)
        except retry_on as e:
            last_error = e
            logger.debug(f"{name} failed (attempt {attempt + 1}/{attempts}): {e}")

    assert last_error is not None
    if isinstance(last_error, DecodeError):
        raise last_error
    logger.warning(f"{name} failed after {attempts} attempts: {last_error}")
    raise RetryExhaustedError(
        f"{name} failed after {attempts} attempts: {last_error}",
        attempts=attempts,
        method=getattr(last_error, "method", None),
    ) from last_error
