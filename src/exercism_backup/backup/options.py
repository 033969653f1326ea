"""Run options and policies for the backup engine.

``BackupOptions`` is built once per run (from CLI arguments and config
files) and shared read-only by every unit of work.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path

from pydantic import BaseModel, Field

from ..core.async_utils import DEFAULT_MAX_DOWNLOADS
from .models import Iteration, IterationStatus, RemoteSolutionStatus, Solution


class SolutionStatus(str, Enum):
    """Minimum solution status to back up (ordered: any < ... < published)."""

    ANY = "any"
    SUBMITTED = "submitted"
    COMPLETED = "completed"
    PUBLISHED = "published"

    @property
    def rank(self) -> int:
        return _STATUS_RANKS[self]

    @classmethod
    def from_remote(cls, status: RemoteSolutionStatus) -> SolutionStatus | None:
        """Map a remote status to a filter level; ``None`` if unsupported."""
        return _REMOTE_STATUSES.get(status)


_STATUS_RANKS = {
    SolutionStatus.ANY: 0,
    SolutionStatus.SUBMITTED: 1,
    SolutionStatus.COMPLETED: 2,
    SolutionStatus.PUBLISHED: 3,
}

_REMOTE_STATUSES = {
    RemoteSolutionStatus.STARTED: SolutionStatus.ANY,
    RemoteSolutionStatus.ITERATED: SolutionStatus.SUBMITTED,
    RemoteSolutionStatus.COMPLETED: SolutionStatus.COMPLETED,
    RemoteSolutionStatus.PUBLISHED: SolutionStatus.PUBLISHED,
}


class OverwritePolicy(str, Enum):
    """What to do with solutions that already exist on disk."""

    ALWAYS = "always"
    IF_NEWER = "if-newer"
    NEVER = "never"


class IterationsSyncPolicy(str, Enum):
    """Whether (and how) to mirror the iterations of each solution."""

    DO_NOT_SYNC = "do-not-sync"
    NEW = "new"
    FULL_SYNC = "full-sync"
    CLEAN_UP = "clean-up"

    def sync(self) -> bool:
        """Whether iterations are synchronized at all."""
        return self is not IterationsSyncPolicy.DO_NOT_SYNC

    def backup_new(self) -> bool:
        """Whether iterations missing on disk are backed up."""
        return self in (IterationsSyncPolicy.NEW, IterationsSyncPolicy.FULL_SYNC)

    def clean_up_old(self) -> bool:
        """Whether iterations on disk that no longer match are removed."""
        return self in (
            IterationsSyncPolicy.FULL_SYNC,
            IterationsSyncPolicy.CLEAN_UP,
        )


class BackupOptions(BaseModel):
    """Options for one backup run.

    Attributes:
        path: Output directory.
        tracks: Only back up solutions in these tracks (empty: all).
        exercises: Only back up solutions to these exercises (empty: all).
        status: Minimum solution status to back up.
        overwrite: Policy for solutions already on disk.
        iterations_sync_policy: Policy for iterations.
        dry_run: Determine what to back up without writing anything.
        max_downloads: Maximum number of concurrent remote/filesystem calls.
    """

    path: Path
    tracks: tuple[str, ...] = ()
    exercises: tuple[str, ...] = ()
    status: SolutionStatus = SolutionStatus.ANY
    overwrite: OverwritePolicy = OverwritePolicy.IF_NEWER
    iterations_sync_policy: IterationsSyncPolicy = IterationsSyncPolicy.DO_NOT_SYNC
    dry_run: bool = False
    max_downloads: int = Field(default=DEFAULT_MAX_DOWNLOADS, ge=1, le=100)

    model_config = {"frozen": True}

    def solution_matches(self, solution: Solution) -> bool:
        """Return ``True`` if *solution* passes the track/exercise/status filters."""
        return (
            self._track_matches(solution.track.name)
            and self._exercise_matches(solution.exercise.name)
            and self._status_matches(solution.status)
        )

    def iteration_matches(self, iteration: Iteration) -> bool:
        """Return ``True`` if *iteration* should exist in the local backup.

        Deleted iterations never match; when only published solutions are
        requested, only published iterations match.
        """
        if iteration.status is IterationStatus.DELETED:
            return False
        return self.status is not SolutionStatus.PUBLISHED or iteration.is_published

    def _track_matches(self, track_name: str) -> bool:
        return not self.tracks or track_name in self.tracks

    def _exercise_matches(self, exercise_name: str) -> bool:
        return not self.exercises or exercise_name in self.exercises

    def _status_matches(self, remote_status: RemoteSolutionStatus) -> bool:
        status = SolutionStatus.from_remote(remote_status)
        return status is not None and status.rank >= self.status.rank
