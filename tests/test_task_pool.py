"""Tests for TaskPool: failure aggregation, defect propagation, cancellation."""

from __future__ import annotations

import asyncio

import pytest

from exercism_backup.core.task_pool import TaskPool
from exercism_backup.errors import (
    BackupError,
    MultiError,
    TaskCancelledError,
)


async def _succeed(results: list[int], value: int) -> int:
    await asyncio.sleep(0)
    results.append(value)
    return value


async def _fail(message: str) -> None:
    await asyncio.sleep(0)
    raise BackupError(message)


class TestJoin:
    """Tests for TaskPool.join()."""

    async def test_join_empty_pool(self):
        pool = TaskPool()
        await pool.join("nothing to do")
        assert len(pool) == 0

    async def test_join_all_successful(self):
        pool = TaskPool()
        results: list[int] = []
        for i in range(5):
            pool.spawn(_succeed(results, i))

        await pool.join("errors detected")

        assert sorted(results) == [0, 1, 2, 3, 4]
        assert len(pool) == 0

    async def test_k_failures_out_of_n_are_all_reported(self):
        """3 of 10 units fail: the other 7 complete and exactly 3 errors are reported."""
        pool = TaskPool()
        results: list[int] = []
        for i in range(10):
            if i in (2, 5, 7):
                pool.spawn(_fail(f"unit {i} failed"))
            else:
                pool.spawn(_succeed(results, i))

        with pytest.raises(MultiError) as exc_info:
            await pool.join("errors detected while testing")

        error = exc_info.value
        assert error.context == "errors detected while testing"
        assert len(error.errors) == 3
        assert sorted(str(e) for e in error.errors) == [
            "unit 2 failed",
            "unit 5 failed",
            "unit 7 failed",
        ]
        assert sorted(results) == [0, 1, 3, 4, 6, 8, 9]

    async def test_failure_does_not_cancel_slow_siblings(self):
        pool = TaskPool()
        finished = asyncio.Event()

        async def _slow():
            await asyncio.sleep(0.05)
            finished.set()

        pool.spawn(_fail("fast failure"))
        pool.spawn(_slow())

        with pytest.raises(MultiError):
            await pool.join("errors")
        assert finished.is_set()

    async def test_multi_error_message_lists_causes(self):
        pool = TaskPool()

        async def _chained():
            try:
                raise OSError("connection reset")
            except OSError as exc:
                raise BackupError("failed to download file lib.rs") from exc

        pool.spawn(_chained())
        with pytest.raises(MultiError) as exc_info:
            await pool.join("errors detected while backing up solution")

        message = str(exc_info.value)
        assert message.startswith(
            "errors detected while backing up solution: multiple errors encountered:"
        )
        assert "0: failed to download file lib.rs: connection reset" in message

    async def test_spawned_units_may_spawn_more_units(self):
        """Units added while joining are awaited too."""
        pool = TaskPool()
        results: list[int] = []

        async def _parent():
            pool.spawn(_succeed(results, 2))
            results.append(1)

        pool.spawn(_parent())
        await pool.join("errors")
        assert sorted(results) == [1, 2]


class TestCancellation:
    """Units cancelled through their handle are reported as failures."""

    async def test_cancelled_unit_is_reported_as_join_error(self):
        pool = TaskPool()
        results: list[int] = []

        handle = pool.spawn(asyncio.sleep(10))
        pool.spawn(_succeed(results, 1))
        handle.cancel()

        with pytest.raises(MultiError) as exc_info:
            await pool.join("errors")

        (error,) = exc_info.value.errors
        assert isinstance(error, TaskCancelledError)
        assert str(error) == "join error"
        assert isinstance(error.__cause__, asyncio.CancelledError)
        assert results == [1]

    async def test_abort_cancels_pending_units(self):
        pool = TaskPool()
        handle = pool.spawn(asyncio.sleep(10))
        await asyncio.sleep(0)

        await pool.abort()

        assert handle.cancelled()
        assert len(pool) == 0


class TestDefects:
    """Defects propagate out of join() instead of being aggregated."""

    async def test_assertion_error_propagates(self):
        pool = TaskPool()

        async def _broken():
            raise AssertionError("invariant violated")

        pool.spawn(_broken())
        with pytest.raises(AssertionError, match="invariant violated"):
            await pool.join("errors")

    async def test_defect_cancels_pending_units(self):
        pool = TaskPool()
        slow = pool.spawn(asyncio.sleep(10))

        async def _broken():
            await asyncio.sleep(0)
            raise AssertionError("boom")

        pool.spawn(_broken())
        with pytest.raises(AssertionError):
            await pool.join("errors")

        assert slow.cancelled()
        assert len(pool) == 0

    async def test_defect_wins_over_collected_failures(self):
        pool = TaskPool()

        async def _late_defect():
            await asyncio.sleep(0.01)
            raise AssertionError("late defect")

        pool.spawn(_fail("ordinary failure"))
        pool.spawn(_late_defect())

        with pytest.raises(AssertionError, match="late defect"):
            await pool.join("errors")
