"""Fan-out scheduler that collects per-unit failures without aborting siblings."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine
from typing import Any

from ..errors import MultiError, TaskCancelledError, is_defect

logger = logging.getLogger(__name__)


class TaskPool:
    """Run independently spawned coroutines concurrently.

    ``spawn()`` schedules a unit immediately; ``join()`` waits for every
    unit and sorts the outcomes into two channels:

    * failures (ordinary exceptions, cancelled units) are collected and
      raised together as a single ``MultiError``;
    * defects (see ``errors.is_defect``) are re-raised as soon as they are
      seen, after cancelling whatever is still pending.

    A failing unit never stops its siblings.
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[Any]] = set()

    def __len__(self) -> int:
        return len(self._tasks)

    def spawn(self, unit: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        """Schedule *unit*; the returned task can be used to cancel it."""
        task = asyncio.create_task(unit)
        self._tasks.add(task)
        return task

    async def join(self, context: str) -> None:
        """Wait for all spawned units.

        Args:
            context: Label describing what the pool was doing; becomes the
                message of the aggregated error.

        Raises:
            MultiError: If one or more units failed.
        """
        errors: list[BaseException] = []
        try:
            while self._tasks:
                done, _ = await asyncio.wait(
                    self._tasks, return_when=asyncio.FIRST_COMPLETED
                )
                for task in done:
                    self._tasks.discard(task)
                    self._collect(task, errors)
        finally:
            await self.abort()

        MultiError.check(errors, context)

    async def abort(self) -> None:
        """Cancel every unit that has not completed yet and wait for them to stop."""
        if not self._tasks:
            return
        pending = list(self._tasks)
        self._tasks.clear()
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _collect(task: asyncio.Task[Any], errors: list[BaseException]) -> None:
        if task.cancelled():
            cancelled = TaskCancelledError("join error")
            cancelled.__cause__ = asyncio.CancelledError(
                f"task {task.get_name()} was cancelled"
            )
            errors.append(cancelled)
            return

        error = task.exception()
        if error is None:
            return
        if is_defect(error):
            raise error
        logger.debug("Unit %s failed: %s", task.get_name(), error)
        errors.append(error)
