"""Concurrency building blocks shared by the backup engine and the CLI."""

from .async_utils import ConcurrencyLimiter, run_sync
from .task_pool import TaskPool

__all__ = ["ConcurrencyLimiter", "TaskPool", "run_sync"]
