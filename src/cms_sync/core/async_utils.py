"""Async utilities for bridging blocking CMS calls into the event loop."""

import asyncio
import inspect
import logging
from typing import Any, Callable, TypeVar

T = TypeVar("T")
logger = logging.getLogger(__name__)


async def run_sync(
    func: Callable[..., T], *args: Any, **kwargs: Any
) -> T:
    """Run a synchronous function in a thread pool without blocking the event loop.

    Used by the change scheduler and watcher to drive the blocking
    ``requests``-based client and file I/O.

    Args:
        func: Synchronous function to call
        *args: Positional arguments for func
        **kwargs: Keyword arguments for func

    Returns:
        Result of func(*args, **kwargs)

    Example:
        engine = SyncEngine(client, config)
        report = await run_sync(engine.pull)
    """
    return await asyncio.to_thread(func, *args, **kwargs)


async def call_maybe_async(
    func: Callable[..., Any], *args: Any, **kwargs: Any
) -> Any:
    """Await *func* if it is a coroutine function, else run it in a thread."""
    if inspect.iscoroutinefunction(func):
        return await func(*args, **kwargs)
    result = await run_sync(func, *args, **kwargs)
    if inspect.isawaitable(result):
        return await result
    return result
