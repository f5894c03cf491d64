"""Bridge for driving async services from the synchronous CLI."""

from __future__ import annotations

import asyncio
from typing import Coroutine, TypeVar

import anyio

T = TypeVar("T")


def run_async(coro: Coroutine[object, object, T]) -> T:
    """Run a coroutine to completion on a fresh event loop.

    Raises:
        RuntimeError: called while an event loop is already running in this thread
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        pass
    else:
        coro.close()
        raise RuntimeError("run_async called from async context; use await instead")

    async def _runner() -> T:
        return await coro

    return anyio.run(_runner)
