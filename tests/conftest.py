"""Shared pytest fixtures for exercism-backup tests."""

import pytest

from exercism_backup.backup.models import Solution
from exercism_backup.config import Config

_ISOLATED_ENV_VARS = (
    "EXERCISM_API_TOKEN",
    "EXERCISM_API_BASE_URL",
    "EXERCISM_BACKUP_MAX_DOWNLOADS",
    "EXERCISM_BACKUP_ITERATIONS_DIR",
    "EXERCISM_BACKUP_CONFIG",
    "LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path_factory):
    """Keep the developer's environment and Exercism CLI config out of tests."""
    for name in _ISOLATED_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    cli_home = tmp_path_factory.mktemp("exercism_cli")
    monkeypatch.setenv("EXERCISM_CONFIG_HOME", str(cli_home))
    return cli_home


@pytest.fixture
def mock_config():
    """Create a Config instance for testing."""
    return Config(
        api_token="test-token",
        api_base_url="https://exercism.example.com/api",
    )


@pytest.fixture
def make_solution():
    """Factory fixture for creating Solution models."""

    def _create_solution(
        track="rust",
        exercise="poker",
        uuid=None,
        status="published",
        num_iterations=3,
        last_iterated_at="2023-05-07T02:31:08Z",
    ):
        return Solution.model_validate(
            {
                "uuid": uuid or f"{track}-{exercise}-uuid",
                "status": status,
                "num_iterations": num_iterations,
                "last_iterated_at": last_iterated_at,
                "track": {"slug": track, "title": track.title()},
                "exercise": {"slug": exercise, "title": exercise.title()},
            }
        )

    return _create_solution
