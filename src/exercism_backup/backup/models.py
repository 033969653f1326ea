"""Pydantic models for the Exercism API payloads consumed by the backup engine.

- ``Solution``: one solution in the ``/v2/solutions`` listing.
- ``ResponseMeta``: paging information for the listing.
- ``Iteration``: one submitted iteration of a solution.
- ``SubmissionFile``: file content of an iteration's submission.

Only the fields the engine needs are declared; everything else in the
payloads is ignored.  Status enums accept unknown values (mapped to
``UNKNOWN``) so new server-side statuses do not break a run.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field


class RemoteSolutionStatus(str, Enum):
    """Status of a solution as reported by the API."""

    STARTED = "started"
    ITERATED = "iterated"
    COMPLETED = "completed"
    PUBLISHED = "published"
    UNKNOWN = "unknown"

    @classmethod
    def _missing_(cls, value: object) -> RemoteSolutionStatus:
        return cls.UNKNOWN


class IterationStatus(str, Enum):
    """Status of an iteration as reported by the API."""

    UNTESTED = "untested"
    TESTING = "testing"
    TESTS_FAILED = "tests_failed"
    ANALYZING = "analyzing"
    ESSENTIAL_AUTOMATED_FEEDBACK = "essential_automated_feedback"
    ACTIONABLE_AUTOMATED_FEEDBACK = "actionable_automated_feedback"
    CELEBRATORY_AUTOMATED_FEEDBACK = "celebratory_automated_feedback"
    NON_ACTIONABLE_AUTOMATED_FEEDBACK = "non_actionable_automated_feedback"
    NO_AUTOMATED_FEEDBACK = "no_automated_feedback"
    DELETED = "deleted"
    UNKNOWN = "unknown"

    @classmethod
    def _missing_(cls, value: object) -> IterationStatus:
        return cls.UNKNOWN


class Track(BaseModel):
    """Language track a solution belongs to (``slug`` is exposed as ``name``)."""

    name: str = Field(alias="slug")
    title: str = ""

    model_config = {"frozen": True, "populate_by_name": True}


class Exercise(BaseModel):
    """Exercise a solution solves (``slug`` is exposed as ``name``)."""

    name: str = Field(alias="slug")
    title: str = ""

    model_config = {"frozen": True, "populate_by_name": True}


class Solution(BaseModel):
    """A solution as returned by the solutions listing.

    Attributes:
        uuid: Opaque identifier of the solution.
        status: Solution status.
        num_iterations: Number of iterations submitted so far.
        last_iterated_at: Timestamp of the latest iteration, if the API
            provides one.
        track: Track the exercise belongs to.
        exercise: Exercise being solved.
    """

    uuid: str
    status: RemoteSolutionStatus = RemoteSolutionStatus.UNKNOWN
    num_iterations: int = 0
    last_iterated_at: str | None = None
    track: Track
    exercise: Exercise

    model_config = {"frozen": True}

    @property
    def label(self) -> str:
        """``track/exercise`` string used in log and error messages."""
        return f"{self.track.name}/{self.exercise.name}"


class ResponseMeta(BaseModel):
    """Paging information returned with each page of solutions."""

    current_page: int
    total_count: int = 0
    total_pages: int

    model_config = {"frozen": True}


class Iteration(BaseModel):
    """One iteration of a solution.

    Attributes:
        index: Ordinal of the iteration (``idx`` in the API), ascending.
        uuid: Identifier of the iteration.
        submission_uuid: Identifier of the submission holding the files.
        status: Iteration status.
        is_published: Whether this iteration is part of the published solution.
    """

    index: int = Field(alias="idx", ge=0)
    uuid: str | None = None
    submission_uuid: str | None = None
    status: IterationStatus = IterationStatus.UNKNOWN
    is_published: bool = False

    model_config = {"frozen": True, "populate_by_name": True}


class SubmissionFile(BaseModel):
    """A file of an iteration's submission, with its full content."""

    filename: str
    content: str

    model_config = {"frozen": True}
