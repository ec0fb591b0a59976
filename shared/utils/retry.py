import asyncio
import random
from typing import Awaitable, Callable, Iterable, Optional, TypeVar

T = TypeVar("T")


def backoff_schedule(
    retries: int, base_delay: float, max_delay: float
) -> list[float]:
    """Capped exponential delays slept between ``retries`` attempts (no jitter)."""
    delays = []
    delay = base_delay
    for _ in range(max(retries - 1, 0)):
        delays.append(min(delay, max_delay))
        delay = min(delay * 2, max_delay)
    return delays


async def retry_async(
    func: Callable[[], Awaitable[T]],
    retries: int = 5,
    base_delay: float = 0.5,
    max_delay: float = 10.0,
    jitter: float = 0.1,
    retry_on: Iterable[type[BaseException]] = (Exception,),
    on_retry: Optional[
        Callable[[int, BaseException, float], Awaitable[None] | None]
    ] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Await ``func`` up to ``retries`` times with capped exponential backoff.

    The last failure is re-raised once the attempts are used up.
    """
    retry_on = tuple(retry_on)
    delays = backoff_schedule(retries, base_delay, max_delay)
    for attempt in range(retries):
        try:
            return await func()
        except retry_on as exc:  # type: ignore[misc]
            if attempt == retries - 1:
                raise
            delay = delays[attempt]
            sleep_for = delay + random.uniform(0, delay * jitter)
            if on_retry:
                try:
                    result = on_retry(attempt + 1, exc, sleep_for)
                    if result is not None:
                        await result  # support async callback
                except Exception:
                    pass
            await sleep(sleep_for)
    raise RuntimeError("async retry exhausted")
