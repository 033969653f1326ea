"""Error types raised by the backup engine.

Three kinds of problems can occur during a backup run:

* **Consistency errors** (``ConsistencyError``) -- the local state does not
  belong to the remote solution (wrong output directory, iteration count
  going backwards).  Fatal for the solution, never retried.
* **I/O errors** (``ExercismApiError``, or ``BackupError`` wrapping an
  ``OSError``) -- reported per unit of work and aggregated into a
  ``MultiError`` when a ``TaskPool`` is joined.
* **Defects** -- ``AssertionError`` and any ``BaseException`` that is not
  an ``Exception``.  These are never aggregated; see ``is_defect()``.

Context is attached by chaining: ``raise BackupError("...") from exc``.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence


class BackupError(Exception):
    """Base class for all expected backup failures."""


class ConsistencyError(BackupError):
    """Local backup state disagrees with the remote solution."""


class ExercismApiError(BackupError):
    """A request to the Exercism API failed (transport or HTTP status)."""


class TaskCancelledError(BackupError):
    """A unit spawned in a ``TaskPool`` was cancelled before completing."""


class MultiError(BackupError):
    """Aggregate of every failure collected while joining a ``TaskPool``.

    ``args[0]`` is the context label given to ``TaskPool.join()``; the
    individual failures are available in ``errors``, each with its own
    ``__cause__`` chain.
    """

    def __init__(self, context: str, errors: Sequence[BaseException]) -> None:
        super().__init__(context)
        self.context = context
        self.errors: list[BaseException] = list(errors)

    def __str__(self) -> str:
        lines = [f"{self.context}: multiple errors encountered:"]
        for i, error in enumerate(self.errors):
            lines.append(f"  {i}: {describe_error(error)}")
        return "\n".join(lines)

    @classmethod
    def check(cls, errors: Sequence[BaseException], context: str) -> None:
        """Raise a ``MultiError`` labelled *context* if *errors* is non-empty."""
        if errors:
            raise cls(context, errors)


def describe_error(error: BaseException) -> str:
    """Render *error* and its ``__cause__`` chain on one line.

    Example: ``failed to download file src/lib.rs: connection reset``
    """
    parts = []
    current: BaseException | None = error
    while current is not None:
        text = str(current) or type(current).__name__
        parts.append(text.replace("\n", "\n    "))
        current = current.__cause__
    return ": ".join(parts)


def is_defect(error: BaseException) -> bool:
    """Return ``True`` if *error* must propagate instead of being aggregated.

    Cancellation is handled separately by the caller and is not a defect.
    """
    if isinstance(error, asyncio.CancelledError):
        return False
    if isinstance(error, AssertionError):
        return True
    return not isinstance(error, Exception)
