"""Reconcile a solution's remote iterations with those backed up on disk.

Iterations are stored as ``<solution>/<iterations dir>/<idx>/``.  The name
of the iterations directory can be overridden with the
``EXERCISM_BACKUP_ITERATIONS_DIR`` environment variable.
"""

from __future__ import annotations

import os
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path

from .models import Iteration
from .options import IterationsSyncPolicy

ITERATIONS_DIR_ENV_VAR_NAME = "EXERCISM_BACKUP_ITERATIONS_DIR"
DEFAULT_ITERATIONS_DIR_NAME = "_iterations"


def get_iterations_dir_name() -> str:
    """Return the name of the directory holding iterations in a solution."""
    return os.getenv(ITERATIONS_DIR_ENV_VAR_NAME) or DEFAULT_ITERATIONS_DIR_NAME


@dataclass
class SyncOps:
    """Iteration operations to apply to one solution.

    Attributes:
        clean_up: Indices of local iteration directories to delete.
        to_backup: Remote iterations to download.
    """

    clean_up: list[int] = field(default_factory=list)
    to_backup: list[Iteration] = field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.clean_up or self.to_backup)


def plan_iteration_sync(
    remote: Sequence[Iteration],
    local: Sequence[int],
    policy: IterationsSyncPolicy,
) -> SyncOps:
    """Merge ascending *remote* iterations with ascending *local* indices.

    Local indices lower than the next remote index are stale and go to
    ``clean_up``; remote iterations without a local match go to
    ``to_backup``; local indices left over after the last remote iteration
    are stale too.  Both inputs must already be sorted; duplicates are not
    removed.

    Operations the policy does not ask for are dropped from the result.

    Example:
        remote [1, 2, 3, 5] and local [1, 3, 4] give
        ``to_backup=[2, 5]`` and ``clean_up=[4]``.
    """
    ops = SyncOps()
    pos = 0

    for iteration in remote:
        while pos < len(local) and local[pos] < iteration.index:
            ops.clean_up.append(local[pos])
            pos += 1

        if pos < len(local) and local[pos] == iteration.index:
            pos += 1
        else:
            ops.to_backup.append(iteration)

    ops.clean_up.extend(local[pos:])

    if not policy.clean_up_old():
        ops.clean_up.clear()
    if not policy.backup_new():
        ops.to_backup.clear()
    return ops


def list_local_iterations(iterations_path: Path) -> list[int]:
    """Return the sorted iteration indices found in *iterations_path*.

    Entries that are not directories named by a decimal integer are ignored.
    A missing directory has no iterations.
    """
    if not iterations_path.is_dir():
        return []

    indices = []
    for entry in iterations_path.iterdir():
        if entry.is_dir() and entry.name.isascii() and entry.name.isdigit():
            indices.append(int(entry.name))
    return sorted(indices)
