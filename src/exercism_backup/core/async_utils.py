"""Async utilities for running blocking HTTP and filesystem calls from the engine."""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any, Callable, TypeVar

T = TypeVar("T")
logger = logging.getLogger(__name__)

DEFAULT_MAX_DOWNLOADS = 4


class ConcurrencyLimiter:
    """Counting permit pool shared by every remote and filesystem call in a run.

    One instance is created per run and handed to every unit of work, so the
    number of in-flight operations stays bounded no matter how deep the
    fan-out goes.

    Args:
        max_parallel: Number of permits (must be at least 1).
    """

    def __init__(self, max_parallel: int = DEFAULT_MAX_DOWNLOADS) -> None:
        if max_parallel < 1:
            raise ValueError(
                f"Invalid concurrency limit {max_parallel}: must be at least 1"
            )
        self.max_parallel = max_parallel
        self._semaphore = asyncio.Semaphore(max_parallel)
        logger.debug(
            "Concurrency limiter initialized: max_parallel=%d", max_parallel
        )

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[None]:
        """Hold one permit for the duration of the ``async with`` block.

        The permit is released on every exit path, including exceptions
        and cancellation.
        """
        async with self._semaphore:
            yield

    async def run(
        self, func: Callable[..., T], *args: Any, **kwargs: Any
    ) -> T:
        """Run a blocking function in a worker thread while holding a permit.

        Example:
            files = await limiter.run(client.get_solution_files, uuid)
        """
        async with self.acquire():
            return await run_sync(func, *args, **kwargs)


async def run_sync(
    func: Callable[..., T], *args: Any, **kwargs: Any
) -> T:
    """Run a synchronous function in a thread pool without blocking the event loop.

    Does NOT acquire a permit; use ``ConcurrencyLimiter.run`` for remote
    and filesystem calls made during a backup.
    """
    return await asyncio.to_thread(func, *args, **kwargs)
