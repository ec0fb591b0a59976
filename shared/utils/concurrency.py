import asyncio
from typing import Callable, TypeVar

T = TypeVar("T")


async def run_blocking(func: Callable[..., T], *args, **kwargs) -> T:
    """Run blocking function in default executor.

    Central helper to reduce scattered asyncio.to_thread calls and make future
    switching to a custom ThreadPool simpler.
    """
    return await asyncio.to_thread(func, *args, **kwargs)


async def run_blocking_with_timeout(
    func: Callable[..., T], timeout: float, *args, **kwargs
) -> T:
    """Run blocking function in a worker thread, bounded by ``timeout`` seconds.

    On timeout the awaiting side raises asyncio.TimeoutError; the worker thread
    is left to finish on its own and its result is discarded.
    """
    return await asyncio.wait_for(run_blocking(func, *args, **kwargs), timeout)
