"""Backup state persistence layer.

Each backed-up solution directory holds a small JSON file
(``.exercism_backup/backup_state.json``) recording which solution was backed
up there and how far its iteration history went.  On the next run the
stored marker is compared with the solution's current listing entry to
decide whether its content must be fetched again.

Key design choices:

* **Atomic writes** -- ``save()`` writes to a temp file in the state
  directory then calls ``os.replace()`` so readers never see partial data.
* **Ordered schema decoding** -- ``load()`` tries the current schema first,
  then every legacy schema in ``_DECODERS`` order.  Each legacy schema has a
  pure migration function to the current ``BackupState``.  The file format
  therefore stays readable forever; old shapes are migrated, never rejected.
* **Defaults on failure** -- a missing or unreadable file yields a state
  with no marker, which always triggers a full backup.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from enum import Enum
from pathlib import Path
from typing import Any, Callable

from pydantic import BaseModel, ValidationError, model_serializer, model_validator

from ..errors import ConsistencyError
from .models import Solution

logger = logging.getLogger(__name__)

STATE_DIR_NAME = ".exercism_backup"
BACKUP_STATE_FILE_NAME = "backup_state.json"


class MarkerKind(str, Enum):
    """Kind of information stored in a ``LastIterationMarker``."""

    NONE = "none"
    LAST_ITERATED_AT = "last_iterated_at"
    NUM_ITERATIONS = "num_iterations"


class LastIterationMarker(BaseModel):
    """Tagged union recording the last iteration seen for a solution.

    Serialized as ``"none"``, ``{"last_iterated_at": "<timestamp>"}`` or
    ``{"num_iterations": <count>}``.
    """

    kind: MarkerKind = MarkerKind.NONE
    value: str | int | None = None

    model_config = {"frozen": True}

    @classmethod
    def none(cls) -> LastIterationMarker:
        return cls(kind=MarkerKind.NONE)

    @classmethod
    def last_iterated_at(cls, timestamp: str) -> LastIterationMarker:
        return cls(kind=MarkerKind.LAST_ITERATED_AT, value=timestamp)

    @classmethod
    def num_iterations(cls, count: int) -> LastIterationMarker:
        return cls(kind=MarkerKind.NUM_ITERATIONS, value=count)

    @model_validator(mode="before")
    @classmethod
    def _from_tagged(cls, data: Any) -> Any:
        if isinstance(data, str):
            if data != MarkerKind.NONE.value:
                raise ValueError(f"unknown iteration marker {data!r}")
            return {"kind": MarkerKind.NONE}
        if isinstance(data, dict) and "kind" not in data:
            if len(data) != 1:
                raise ValueError(
                    f"iteration marker must have exactly one key, got {sorted(data)}"
                )
            ((key, value),) = data.items()
            try:
                kind = MarkerKind(key)
            except ValueError:
                raise ValueError(f"unknown iteration marker {key!r}") from None
            return {"kind": kind, "value": value}
        return data

    @model_validator(mode="after")
    def _check_value(self) -> LastIterationMarker:
        if self.kind is MarkerKind.NONE and self.value is not None:
            raise ValueError("'none' iteration marker cannot carry a value")
        if self.kind is MarkerKind.LAST_ITERATED_AT and not isinstance(
            self.value, str
        ):
            raise ValueError("'last_iterated_at' marker must be a string")
        if self.kind is MarkerKind.NUM_ITERATIONS and (
            not isinstance(self.value, int) or isinstance(self.value, bool)
        ):
            raise ValueError("'num_iterations' marker must be an integer")
        return self

    @model_serializer
    def _to_tagged(self) -> Any:
        if self.kind is MarkerKind.NONE:
            return self.kind.value
        return {self.kind.value: self.value}


class BackupState(BaseModel):
    """Current schema of the persisted backup state.

    Attributes:
        uuid: Uuid of the solution backed up in this directory.
        last_iteration_marker: Marker describing the last iteration seen.
    """

    uuid: str
    last_iteration_marker: LastIterationMarker

    model_config = {"frozen": True, "extra": "forbid"}

    @classmethod
    def for_solution_uuid(cls, uuid: str) -> BackupState:
        """Default state used when nothing has been persisted yet."""
        return cls(uuid=uuid, last_iteration_marker=LastIterationMarker.none())

    @classmethod
    def for_solution(cls, solution: Solution) -> BackupState:
        """State to persist after *solution* has been backed up."""
        if solution.last_iterated_at is not None:
            marker = LastIterationMarker.last_iterated_at(
                solution.last_iterated_at
            )
        else:
            marker = LastIterationMarker.num_iterations(solution.num_iterations)
        return cls(uuid=solution.uuid, last_iteration_marker=marker)

    def needs_update(self, solution: Solution) -> bool:
        """Return ``True`` if *solution* changed since this state was saved.

        Raises:
            ConsistencyError: If the state belongs to another solution, if the
                solution has fewer iterations than recorded, or if it lost its
                ``last_iterated_at`` timestamp.  All of these mean the output
                directory does not match the remote data.
        """
        if self.uuid != solution.uuid:
            raise ConsistencyError(
                f"solution to {solution.label} has a different uuid "
                f"({solution.uuid}) than what we last saw ({self.uuid}): "
                "did you choose the wrong output directory?"
            )

        marker = self.last_iteration_marker
        match marker.kind:
            case MarkerKind.NONE:
                return True
            case MarkerKind.NUM_ITERATIONS:
                if marker.value > solution.num_iterations:
                    raise ConsistencyError(
                        f"solution to {solution.label} has less iterations "
                        f"({solution.num_iterations}) than what we last saw "
                        f"({marker.value}): did you choose the wrong output directory?"
                    )
                return marker.value != solution.num_iterations
            case MarkerKind.LAST_ITERATED_AT:
                if solution.last_iterated_at is None:
                    raise ConsistencyError(
                        f"solution to {solution.label} used to have a 'last iterated at' "
                        f"timestamp ({marker.value}) but no longer has one: "
                        "did you choose the wrong output directory?"
                    )
                return marker.value != solution.last_iterated_at

        raise AssertionError(f"unhandled iteration marker kind: {marker.kind}")


class V1BackupState(BaseModel):
    """Legacy schema: the list of iteration indices that were backed up."""

    uuid: str
    iterations: list[int]

    model_config = {"frozen": True, "extra": "forbid"}

    def migrate(self) -> BackupState:
        count = self.iterations[-1] if self.iterations else 0
        return BackupState(
            uuid=self.uuid,
            last_iteration_marker=LastIterationMarker.num_iterations(count),
        )


# Decode attempts in order: current schema first, then legacy schemas.
_DECODERS: list[tuple[type[BaseModel], Callable[[Any], BackupState]]] = [
    (BackupState, lambda state: state),
    (V1BackupState, V1BackupState.migrate),
]


def decode_state(raw: str | bytes) -> BackupState | None:
    """Decode a persisted state, migrating legacy shapes.

    Returns ``None`` if the data is not JSON (including undecodable bytes)
    or no known schema matches.
    """
    try:
        data = json.loads(raw)
    except ValueError:
        return None

    for schema, migrate in _DECODERS:
        try:
            decoded = schema.model_validate(data)
        except ValidationError:
            continue
        return migrate(decoded)
    return None


class BackupStateStore:
    """Load and save ``BackupState`` files inside solution directories."""

    @staticmethod
    def state_dir(solution_path: Path) -> Path:
        return solution_path / STATE_DIR_NAME

    @classmethod
    def state_path(cls, solution_path: Path) -> Path:
        """Return the canonical state file path for *solution_path*."""
        return cls.state_dir(solution_path) / BACKUP_STATE_FILE_NAME

    def load(self, solution: Solution, solution_path: Path) -> BackupState:
        """Load the state stored for *solution* under *solution_path*.

        Returns:
            The decoded (and migrated) state, or a default state carrying only
            the solution's uuid if the file is missing or unreadable.
        """
        path = self.state_path(solution_path)
        try:
            raw = path.read_bytes()
        except OSError:
            logger.debug("No backup state at %s", path)
            return BackupState.for_solution_uuid(solution.uuid)

        state = decode_state(raw)
        if state is None:
            logger.warning(
                "Ignoring unreadable backup state for %s at %s",
                solution.label,
                path,
            )
            return BackupState.for_solution_uuid(solution.uuid)
        return state

    def save(self, state: BackupState, solution_path: Path) -> None:
        """Persist *state* atomically under *solution_path*.

        Creates the state directory if needed, writes to a temporary file in
        it, then replaces the canonical file.
        """
        state_dir = self.state_dir(solution_path)
        state_dir.mkdir(parents=True, exist_ok=True)

        target = self.state_path(solution_path)
        fd, tmp_path = tempfile.mkstemp(
            dir=str(state_dir), prefix=f"{BACKUP_STATE_FILE_NAME}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(state.model_dump_json())
            os.replace(tmp_path, target)
        except BaseException:
            # Clean up temp file on any failure.
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise
