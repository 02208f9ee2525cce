import asyncio

import pytest

from tether.concurrency import wait_until_cancelled
from tether.errors import ExecutionCancelled
from tether.sessions import CancellationToken


async def _value(value: str, delay: float = 0) -> str:
    await asyncio.sleep(delay)
    return value


@pytest.mark.asyncio
async def test_returns_result_when_not_cancelled() -> None:
    assert await wait_until_cancelled(_value("ok"), CancellationToken()) == "ok"


@pytest.mark.asyncio
async def test_already_cancelled_token_raises_immediately() -> None:
    token = CancellationToken()
    token.cancel()

    with pytest.raises(ExecutionCancelled):
        await wait_until_cancelled(_value("never"), token)


@pytest.mark.asyncio
async def test_cancel_interrupts_pending_await() -> None:
    token = CancellationToken()
    started = asyncio.Event()
    interrupted = asyncio.Event()

    async def slow() -> str:
        started.set()
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            interrupted.set()
            raise
        return "late"

    task = asyncio.create_task(wait_until_cancelled(slow(), token))
    await started.wait()
    token.cancel()

    with pytest.raises(ExecutionCancelled):
        await task
    assert interrupted.is_set()


@pytest.mark.asyncio
async def test_errors_propagate() -> None:
    async def broken() -> str:
        raise ValueError("bad")

    with pytest.raises(ValueError, match="bad"):
        await wait_until_cancelled(broken(), CancellationToken())
