from __future__ import annotations

import asyncio
import inspect
from collections.abc import Awaitable
from contextlib import suppress
from typing import TypeVar

from tether.errors import ExecutionCancelled
from tether.sessions import CancellationToken

T = TypeVar("T")


async def wait_until_cancelled(aw: Awaitable[T], token: CancellationToken) -> T:
    """Await ``aw`` unless ``token`` is cancelled first, in which case raise ExecutionCancelled."""
    if token.cancelled:
        if inspect.iscoroutine(aw):
            aw.close()
        raise ExecutionCancelled()

    fut = asyncio.ensure_future(aw)
    waiter = asyncio.ensure_future(token.wait())
    try:
        await asyncio.wait({fut, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except BaseException:
        fut.cancel()
        await asyncio.wait({fut})
        raise
    finally:
        waiter.cancel()

    if fut.done():
        return fut.result()
    fut.cancel()
    with suppress(asyncio.CancelledError):
        await fut
    raise ExecutionCancelled()
