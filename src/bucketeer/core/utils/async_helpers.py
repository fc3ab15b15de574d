"""Async utilities: stage deadlines and running coroutines from sync contexts."""

import asyncio
from collections.abc import AsyncIterable, AsyncIterator, Awaitable
from concurrent.futures import ThreadPoolExecutor
from typing import TypeVar

from ..exceptions import DeadlineExceededError

T = TypeVar("T")


async def with_deadline(awaitable: Awaitable[T], seconds: float | None, stage: str) -> T:
    """Await *awaitable*, raising DeadlineExceededError if it outlives *seconds*.

    A falsy *seconds* disables the deadline.
    """
    if not seconds:
        return await awaitable
    try:
        return await asyncio.wait_for(awaitable, timeout=seconds)
    except asyncio.TimeoutError as e:
        raise DeadlineExceededError(stage, seconds) from e


async def iterate_with_deadline(
    chunks: AsyncIterable[bytes], seconds: float | None, stage: str
) -> AsyncIterator[bytes]:
    """Re-yield *chunks*, bounding the wait for each individual chunk."""
    iterator = aiter(chunks)
    while True:
        try:
            chunk = await with_deadline(anext(iterator), seconds, stage)
        except StopAsyncIteration:
            return
        yield chunk


def run_async_safely(coro):
    """
    Run an async coroutine from a sync context.

    If no event loop is running, uses asyncio.run() directly.
    If one is already running (e.g. inside a notebook or an ASGI app), dispatches
    to a thread pool to avoid "cannot run nested event loop" errors.
    """
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        loop = None

    if loop and loop.is_running():
        with ThreadPoolExecutor(max_workers=1) as executor:
            future = executor.submit(asyncio.run, coro)
            return future.result()
    else:
        return asyncio.run(coro)
