"""Unified configuration schema for exercism_backup.

Defines Pydantic models for the YAML config file, with dedicated sections
for the Exercism connection, backup defaults and logging.

Usage:
    from exercism_backup.config_schema import build_config

    raw = load_hierarchical_config()
    unified = build_config(raw)
"""

from __future__ import annotations

import logging

from pydantic import BaseModel, Field

from .backup.options import IterationsSyncPolicy, OverwritePolicy, SolutionStatus

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class ExercismConfig(BaseModel):
    """Exercism API connection settings.

    All fields are optional: env vars, CLI args and the Exercism CLI
    configuration can supply them at runtime instead.
    """

    token: str | None = Field(default=None, description="Exercism API token")
    api_base_url: str | None = Field(
        default=None, description="Exercism API root URL"
    )
    max_downloads: int = Field(
        default=4,
        ge=1,
        le=100,
        description="Maximum concurrent downloads (1-100)",
    )
    debug: bool = Field(default=False, description="Enable debug mode")

    model_config = {"frozen": True}


class BackupDefaults(BaseModel):
    """Defaults for ``backup`` options not given on the command line."""

    tracks: list[str] = Field(default_factory=list)
    exercises: list[str] = Field(default_factory=list)
    status: SolutionStatus = SolutionStatus.ANY
    overwrite: OverwritePolicy = OverwritePolicy.IF_NEWER
    iterations: IterationsSyncPolicy = IterationsSyncPolicy.DO_NOT_SYNC

    model_config = {"frozen": True}


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file: Optional log file path.
        format: "text" or "json".
    """

    level: str = Field(default="INFO", description="Log level")
    file: str | None = Field(default=None, description="Log file path")
    format: str = Field(default="text", pattern="^(text|json)$")

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Top-level unified config
# ---------------------------------------------------------------------------


class UnifiedConfig(BaseModel):
    """Top-level unified configuration.

    Every section has sensible defaults, so ``UnifiedConfig()`` (zero-config)
    is always valid.
    """

    exercism: ExercismConfig = Field(default_factory=ExercismConfig)
    backup: BackupDefaults = Field(default_factory=BackupDefaults)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True}


def build_config(raw_data: dict) -> UnifiedConfig:
    """Construct a ``UnifiedConfig`` from the raw dict returned by
    ``load_hierarchical_config()``.

    Handles missing sections gracefully -- anything absent gets defaults.
    """
    if not raw_data:
        return UnifiedConfig()

    return UnifiedConfig(**raw_data)
