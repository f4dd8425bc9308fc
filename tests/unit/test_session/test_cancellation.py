import asyncio

import pytest

from fscrape.session.cancellation import CancellationToken
from fscrape.utils.exceptions import OperationCancelledError


def test_cancel_is_idempotent():
    token = CancellationToken("s1")
    assert token.cancelled is False

    token.cancel("paused")
    token.cancel("shutdown")

    assert token.cancelled is True
    assert token.reason == "paused"


def test_raise_if_cancelled():
    token = CancellationToken("s1")
    token.raise_if_cancelled()

    token.cancel("cancelled")

    with pytest.raises(OperationCancelledError) as exc_info:
        token.raise_if_cancelled()
    assert exc_info.value.session_id == "s1"
    assert "cancelled" in str(exc_info.value)


@pytest.mark.asyncio
async def test_wait_returns_after_cancel():
    token = CancellationToken("s1")

    async def cancel_soon():
        await asyncio.sleep(0)
        token.cancel()

    await asyncio.gather(token.wait(), cancel_soon())

    assert token.cancelled is True
