"""Configuration schema for ralph-task.

Pydantic models for the config file, one model per section.  Keys are
camelCase in the file (``prdFile``, ``storyPrefix``) and snake_case in
Python.  Every section except ``paths`` and ``trello`` has defaults, so a
minimal config only names the PRD file, the board and the credentials.

Usage:
    from ralph_task.config_schema import build_config

    config = build_config(raw)
    config.mapping.story_prefix  # "US"
"""

from __future__ import annotations

import logging
from typing import Literal

from pydantic import (
    BaseModel,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """Raised when a config file is missing, unparsable or invalid."""


_SECTION_CONFIG = {
    "frozen": True,
    "populate_by_name": True,
    "alias_generator": to_camel,
    "extra": "forbid",
}


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class PathsConfig(BaseModel):
    """File locations.  Relative paths are resolved by the loader."""

    prd_file: str = Field(description="Path to the PRD JSON document")
    state_file: str = Field(
        default=".ralph-task/state.json",
        description="Path to the incremental sync state file",
    )

    model_config = _SECTION_CONFIG

    @field_validator("prd_file")
    @classmethod
    def _prd_file_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("paths.prdFile must be a non-empty string")
        return value


class TrelloConfig(BaseModel):
    """Trello credentials and target board."""

    api_key: str | None = Field(default=None, description="Trello API key")
    token: str | None = Field(default=None, description="Trello API token")
    board_id: str = Field(description="Trello board ID")

    model_config = _SECTION_CONFIG

    @model_validator(mode="after")
    def _require_credentials(self) -> TrelloConfig:
        missing = [
            name
            for name, value in (("apiKey", self.api_key), ("token", self.token))
            if not value
        ]
        if missing:
            raise ValueError(
                "Missing required Trello credentials: " + ", ".join(missing)
            )
        return self


class StatusToListConfig(BaseModel):
    """Trello list name bound to each story status."""

    open: str = Field(default="To Do")
    in_progress: str = Field(default="In Progress")
    done: str = Field(default="Done")

    model_config = {"frozen": True, "extra": "forbid"}


class MappingConfig(BaseModel):
    """How stories are rendered onto the board."""

    story_prefix: str = Field(default="US")
    id_pattern: str = Field(default="{prefix}-{number:3}")
    card_title_format: str = Field(default="[{id}] {title}")
    depends_on_label_prefix: str = Field(default="")
    status_to_list: StatusToListConfig = Field(
        default_factory=StatusToListConfig
    )
    acceptance_criteria_checklist_name: str = Field(
        default="Acceptance Criteria"
    )

    model_config = _SECTION_CONFIG


class RetryConfig(BaseModel):
    """Retry policy for transient Trello failures."""

    max_retries: int = Field(default=5, ge=0)
    base_delay_ms: int = Field(default=500, ge=0)

    model_config = _SECTION_CONFIG


class SyncSettings(BaseModel):
    direction: Literal["two-way", "trello-to-prd", "prd-to-trello"] = "two-way"
    incremental: bool = True
    dry_run: bool = False
    max_concurrency: int = Field(
        default=4,
        ge=1,
        description="Maximum concurrent Trello reads",
    )
    retry: RetryConfig = Field(default_factory=RetryConfig)

    model_config = _SECTION_CONFIG


class ConflictConfig(BaseModel):
    """Conflict policy.

    Attributes:
        strategy: Only ``last-write-wins`` is supported.
        default_prefer: Tie-break when both sides changed at the same
            instant (``none`` records a conflict).
        block_writes: Skip every write when the plan has a conflict.
        create_missing_labels: Create dependency labels absent from the
            board instead of recording a conflict.
    """

    strategy: Literal["last-write-wins"] = "last-write-wins"
    default_prefer: Literal["none", "trello", "prd"] = "none"
    block_writes: bool = False
    create_missing_labels: bool = True

    model_config = _SECTION_CONFIG


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: ``debug``, ``info``, ``warn``, ``error`` or ``silent``.
        format: ``text`` or ``json`` (one JSON object per line).
        file: Optional log file path.
    """

    level: Literal["debug", "info", "warn", "error", "silent"] = "info"
    format: Literal["text", "json"] = "text"
    file: str | None = Field(default=None, description="Log file path")

    model_config = _SECTION_CONFIG


# ---------------------------------------------------------------------------
# Top-level config
# ---------------------------------------------------------------------------


class RalphTaskConfig(BaseModel):
    """Top-level configuration."""

    version: int = Field(default=1, ge=1)
    paths: PathsConfig
    trello: TrelloConfig
    mapping: MappingConfig = Field(default_factory=MappingConfig)
    sync: SyncSettings = Field(default_factory=SyncSettings)
    conflict: ConflictConfig = Field(default_factory=ConflictConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True, "extra": "ignore"}


# ---------------------------------------------------------------------------
# Factory function
# ---------------------------------------------------------------------------


def build_config(raw_data: dict | None) -> RalphTaskConfig:
    """Validate the raw dict produced by the loader.

    Args:
        raw_data: Parsed (and interpolated) config file contents.

    Returns:
        Validated ``RalphTaskConfig`` instance.

    Raises:
        ConfigError: If validation fails.  The message names the first
            offending key.
    """
    try:
        return RalphTaskConfig.model_validate(raw_data or {})
    except ValidationError as exc:
        raise ConfigError(f"Invalid config: {_describe(exc)}") from exc


def _describe(exc: ValidationError) -> str:
    error = exc.errors()[0]
    location = ".".join(str(part) for part in error["loc"])
    message = error["msg"]
    if message.startswith("Value error, "):
        message = message[len("Value error, ") :]
    if location:
        return f"{location}: {message}"
    return message
