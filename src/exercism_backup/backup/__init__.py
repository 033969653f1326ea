"""Solutions backup engine.

Public API for mirroring an Exercism account's solutions (and optionally
their iterations) into a local directory tree laid out as
``<output>/<track>/<exercise>/``.

Architecture
------------
The engine fans out one unit of work per solution, each unit fanning out
again per file and per iteration.  All remote and filesystem calls share a
single ``ConcurrencyLimiter``, and every fan-out point uses a ``TaskPool``
so that one failure never aborts its siblings.

Modules:

- ``engine``      -- ``BackupEngine``: orchestrates a full backup run.
- ``state``       -- ``BackupState``, ``BackupStateStore``: per-solution
  JSON state with legacy-schema migration.
- ``decisions``   -- ``decide_content_action``: skip / create / purge.
- ``iterations``  -- ``plan_iteration_sync``: merge remote iterations with
  those on disk.
- ``directory``   -- ``DirectorySynchronizer``: limited filesystem changes.
- ``options``     -- ``BackupOptions`` and the run policies.
- ``models``      -- API payload models.

Usage example
-------------
::

    import asyncio
    from pathlib import Path
    from exercism_backup.backup import BackupEngine, BackupOptions
    from exercism_backup.config import load_config
    from exercism_backup.core.client import ExercismClient

    client = ExercismClient(load_config())
    options = BackupOptions(path=Path("backup"), tracks=("rust",))
    asyncio.run(BackupEngine(client, options).run())
"""

from .decisions import ContentAction, decide_content_action
from .engine import BackupEngine
from .iterations import SyncOps, list_local_iterations, plan_iteration_sync
from .models import Iteration, ResponseMeta, Solution, SubmissionFile
from .options import (
    BackupOptions,
    IterationsSyncPolicy,
    OverwritePolicy,
    SolutionStatus,
)
from .state import BackupState, BackupStateStore, LastIterationMarker

__all__ = [
    "BackupEngine",
    "BackupOptions",
    "BackupState",
    "BackupStateStore",
    "ContentAction",
    "Iteration",
    "IterationsSyncPolicy",
    "LastIterationMarker",
    "OverwritePolicy",
    "ResponseMeta",
    "Solution",
    "SolutionStatus",
    "SubmissionFile",
    "SyncOps",
    "decide_content_action",
    "list_local_iterations",
    "plan_iteration_sync",
]
