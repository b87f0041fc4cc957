"""Bridge from sync service code to the event loop that owns the WebSockets."""

from __future__ import annotations

import asyncio
from typing import Coroutine, TypeVar

import anyio

T = TypeVar("T")


def run_async(coro: Coroutine[object, object, T]) -> T:
    """
    Drive `coro` to completion from synchronous code.

    Request and gateway worker threads (anyio.to_thread) hand the coroutine
    back to the loop serving the sockets. Plain threads with no loop (CLI,
    thread pools in tests) get a private loop. Calling this on the loop
    thread itself is a bug: the coroutine is closed unawaited and
    RuntimeError is raised.
    """

    async def _await() -> T:
        return await coro

    try:
        return anyio.from_thread.run(_await)
    except RuntimeError:
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return anyio.run(_await)
        coro.close()
        raise RuntimeError("run_async called from async context; use await instead")
