"""
Tests for dexcore.retry
"""

from unittest.mock import AsyncMock

import pytest

from dexcore.errors import DecodeError, InsufficientFundsError, RetryExhaustedError, RPCError
from dexcore.retry import retry_async


@pytest.mark.asyncio
async def test_retry_succeeds_after_failures():
    func = AsyncMock(side_effect=[RPCError("busy"), RPCError("busy"), 42])

    assert await retry_async(func, "a", attempts=3) == 42
    assert func.await_count == 3
    func.assert_awaited_with("a")


@pytest.mark.asyncio
async def test_retry_exhausted_chains_last_error():
    last = RPCError("still busy", method="gettransaction")
    func = AsyncMock(side_effect=[RPCError("busy"), last])

    with pytest.raises(RetryExhaustedError) as exc_info:
        await retry_async(func, attempts=2)

    assert exc_info.value.attempts == 2
    assert exc_info.value.__cause__ is last
    assert exc_info.value.method == "gettransaction"
    assert func.await_count == 2


@pytest.mark.asyncio
async def test_retry_does_not_retry_other_errors():
    func = AsyncMock(side_effect=InsufficientFundsError("nope"))

    with pytest.raises(InsufficientFundsError):
        await retry_async(func, attempts=5)
    assert func.await_count == 1


@pytest.mark.asyncio
async def test_retry_reraises_decode_error():
    func = AsyncMock(side_effect=DecodeError("bad hex"))

    with pytest.raises(DecodeError):
        await retry_async(func, attempts=3)
    assert func.await_count == 3


@pytest.mark.asyncio
async def test_retry_rejects_zero_attempts():
    with pytest.raises(ValueError):
        await retry_async(AsyncMock(), attempts=0)
