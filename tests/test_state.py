"""Tests for backup state persistence layer.

Covers:
- Default state for a solution never backed up
- needs_update for each marker kind, including consistency errors
- Tagged JSON format of the marker
- Legacy (v1) state migration
- Load falls back to defaults when the file is missing or unreadable
- Save writes atomically and leaves no temp files behind
"""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import patch

import pytest

from exercism_backup.backup.state import (
    BACKUP_STATE_FILE_NAME,
    STATE_DIR_NAME,
    BackupState,
    BackupStateStore,
    LastIterationMarker,
    MarkerKind,
    V1BackupState,
    decode_state,
)
from exercism_backup.errors import ConsistencyError

# ---------------------------------------------------------------------------
# needs_update
# ---------------------------------------------------------------------------


class TestNeedsUpdate:
    """Tests for BackupState.needs_update()."""

    def test_default_state_always_needs_update(self, make_solution):
        solution = make_solution()
        state = BackupState.for_solution_uuid(solution.uuid)

        assert state.last_iteration_marker.kind is MarkerKind.NONE
        assert state.needs_update(solution) is True

    def test_uuid_mismatch_is_an_error(self, make_solution):
        state = BackupState.for_solution(make_solution(uuid="aaa"))

        with pytest.raises(ConsistencyError, match="different uuid"):
            state.needs_update(make_solution(uuid="bbb"))

    def test_last_iterated_at_unchanged(self, make_solution):
        solution = make_solution()
        state = BackupState.for_solution(solution)

        assert state.last_iteration_marker == LastIterationMarker.last_iterated_at(
            "2023-05-07T02:31:08Z"
        )
        assert state.needs_update(solution) is False

    def test_last_iterated_at_changed(self, make_solution):
        state = BackupState.for_solution(make_solution())

        newer = make_solution(last_iterated_at="2023-06-01T10:00:00Z")
        assert state.needs_update(newer) is True

    def test_last_iterated_at_lost_is_an_error(self, make_solution):
        state = BackupState.for_solution(make_solution())

        with pytest.raises(ConsistencyError, match="no longer has one"):
            state.needs_update(make_solution(last_iterated_at=None))

    def test_num_iterations_used_without_timestamp(self, make_solution):
        solution = make_solution(last_iterated_at=None, num_iterations=2)
        state = BackupState.for_solution(solution)

        assert state.last_iteration_marker == LastIterationMarker.num_iterations(2)
        assert state.needs_update(solution) is False
        assert state.needs_update(
            make_solution(last_iterated_at=None, num_iterations=3)
        ) is True

    def test_num_iterations_going_down_is_an_error(self, make_solution):
        state = BackupState.for_solution(
            make_solution(last_iterated_at=None, num_iterations=4)
        )

        with pytest.raises(ConsistencyError, match="less iterations"):
            state.needs_update(make_solution(last_iterated_at=None, num_iterations=3))

    def test_num_iterations_marker_ignores_new_timestamp(self, make_solution):
        """A count marker keeps comparing counts even once a timestamp appears."""
        state = BackupState.for_solution(
            make_solution(last_iterated_at=None, num_iterations=3)
        )

        assert state.needs_update(make_solution(num_iterations=3)) is False


# ---------------------------------------------------------------------------
# JSON format and migration
# ---------------------------------------------------------------------------


class TestStateFormat:
    """Tests for the persisted JSON shapes."""

    @pytest.mark.parametrize(
        "marker, expected",
        [
            (LastIterationMarker.none(), "none"),
            (
                LastIterationMarker.last_iterated_at("2023-05-07T02:31:08Z"),
                {"last_iterated_at": "2023-05-07T02:31:08Z"},
            ),
            (LastIterationMarker.num_iterations(5), {"num_iterations": 5}),
        ],
    )
    def test_marker_is_serialized_as_tagged_value(self, marker, expected):
        state = BackupState(uuid="abc", last_iteration_marker=marker)
        data = json.loads(state.model_dump_json())

        assert data == {"uuid": "abc", "last_iteration_marker": expected}
        assert decode_state(json.dumps(data)) == state

    def test_none_marker_built_in_code_matches_stored_form(self):
        marker = LastIterationMarker.none()

        assert marker.kind is MarkerKind.NONE
        assert marker.value is None
        assert marker == LastIterationMarker.model_validate("none")

    @pytest.mark.parametrize(
        "marker",
        ["sometimes", {"num_iterations": "three"}, {"unknown": 1}, {}],
    )
    def test_invalid_markers_are_rejected(self, marker):
        raw = json.dumps({"uuid": "abc", "last_iteration_marker": marker})
        assert decode_state(raw) is None

    def test_legacy_state_migrates_to_last_iteration_count(self):
        raw = json.dumps({"uuid": "abc", "iterations": [1, 2, 4]})

        state = decode_state(raw)

        assert state == BackupState(
            uuid="abc",
            last_iteration_marker=LastIterationMarker.num_iterations(4),
        )

    def test_legacy_state_without_iterations_migrates_to_zero(self):
        state = V1BackupState(uuid="abc", iterations=[]).migrate()
        assert state.last_iteration_marker == LastIterationMarker.num_iterations(0)

    @pytest.mark.parametrize("num_iterations", [2, 3, 4])
    def test_legacy_state_decides_like_equivalent_current_state(
        self, make_solution, num_iterations
    ):
        solution = make_solution(
            uuid="abc", last_iterated_at=None, num_iterations=num_iterations
        )
        legacy = decode_state(json.dumps({"uuid": "abc", "iterations": [1, 2, 3]}))
        current = BackupState(
            uuid="abc", last_iteration_marker=LastIterationMarker.num_iterations(3)
        )

        if num_iterations < 3:
            with pytest.raises(ConsistencyError):
                legacy.needs_update(solution)
            with pytest.raises(ConsistencyError):
                current.needs_update(solution)
        else:
            assert legacy.needs_update(solution) == current.needs_update(solution)

    def test_current_schema_rejects_unknown_fields(self):
        raw = json.dumps(
            {"uuid": "abc", "last_iteration_marker": "none", "extra": True}
        )
        assert decode_state(raw) is None

    def test_garbage_is_not_decoded(self):
        assert decode_state("{not json") is None
        assert decode_state("[]") is None


# ---------------------------------------------------------------------------
# Load / Save
# ---------------------------------------------------------------------------


class TestBackupStateStore:
    """Tests for BackupStateStore.load() and save()."""

    def test_state_path(self, tmp_path: Path):
        path = BackupStateStore.state_path(tmp_path)
        assert path == tmp_path / STATE_DIR_NAME / BACKUP_STATE_FILE_NAME

    def test_load_missing_file_returns_default(self, tmp_path: Path, make_solution):
        solution = make_solution()
        state = BackupStateStore().load(solution, tmp_path / "nonexistent")

        assert state == BackupState.for_solution_uuid(solution.uuid)

    def test_load_unreadable_file_returns_default(
        self, tmp_path: Path, make_solution, caplog
    ):
        solution = make_solution()
        path = BackupStateStore.state_path(tmp_path)
        path.parent.mkdir(parents=True)
        path.write_text("this is not json", encoding="utf-8")

        state = BackupStateStore().load(solution, tmp_path)

        assert state == BackupState.for_solution_uuid(solution.uuid)
        assert "Ignoring unreadable backup state" in caplog.text

    def test_load_undecodable_bytes_returns_default(
        self, tmp_path: Path, make_solution, caplog
    ):
        solution = make_solution()
        path = BackupStateStore.state_path(tmp_path)
        path.parent.mkdir(parents=True)
        path.write_bytes(b"\xff\xfe{garbage")

        state = BackupStateStore().load(solution, tmp_path)

        assert state == BackupState.for_solution_uuid(solution.uuid)
        assert "Ignoring unreadable backup state" in caplog.text

    def test_save_load_round_trip(self, tmp_path: Path, make_solution):
        solution = make_solution()
        store = BackupStateStore()
        state = BackupState.for_solution(solution)

        store.save(state, tmp_path)

        assert store.load(solution, tmp_path) == state
        assert store.load(solution, tmp_path).needs_update(solution) is False

    def test_load_legacy_file(self, tmp_path: Path, make_solution):
        solution = make_solution(uuid="abc", last_iterated_at=None, num_iterations=2)
        path = BackupStateStore.state_path(tmp_path)
        path.parent.mkdir(parents=True)
        path.write_text('{"uuid": "abc", "iterations": [1, 2]}', encoding="utf-8")

        state = BackupStateStore().load(solution, tmp_path)

        assert state.needs_update(solution) is False

    def test_save_overwrites_and_leaves_no_temp_files(
        self, tmp_path: Path, make_solution
    ):
        store = BackupStateStore()
        store.save(BackupState.for_solution_uuid("abc"), tmp_path)
        store.save(BackupState.for_solution(make_solution(uuid="abc")), tmp_path)

        entries = sorted(p.name for p in (tmp_path / STATE_DIR_NAME).iterdir())
        assert entries == [BACKUP_STATE_FILE_NAME]

    def test_failed_save_keeps_previous_file(self, tmp_path: Path, make_solution):
        store = BackupStateStore()
        original = BackupState.for_solution(make_solution(uuid="abc"))
        store.save(original, tmp_path)

        with patch(
            "exercism_backup.backup.state.os.replace",
            side_effect=OSError("disk full"),
        ):
            with pytest.raises(OSError, match="disk full"):
                store.save(BackupState.for_solution_uuid("abc"), tmp_path)

        state_dir = tmp_path / STATE_DIR_NAME
        assert sorted(p.name for p in state_dir.iterdir()) == [BACKUP_STATE_FILE_NAME]
        assert decode_state(
            (state_dir / BACKUP_STATE_FILE_NAME).read_text(encoding="utf-8")
        ) == original
