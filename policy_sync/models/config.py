"""Configuration models for policy synchronization."""

import re

from pydantic import BaseModel, Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class SourceConfig(BaseModel):
    """Configuration for the source repository connection."""

    base_url: HttpUrl = Field(
        default="https://api.github.com",
        validate_default=True,
        description="REST API base URL",
    )
    owner: str = Field(default=..., min_length=1, description="Repository owner")
    repo: str = Field(default=..., min_length=1, description="Repository name")
    branch: str = Field(default="main", description="Branch whose head is synced")
    token: str | None = Field(default=None, description="Optional API token")
    timeout_seconds: float = Field(default=5.0, gt=0, description="Per-request timeout")
    max_retries: int = Field(default=3, ge=0, le=10, description="Retries for transient errors")
    retry_base_delay: float = Field(default=1.0, ge=0, description="Initial backoff delay")
    retry_max_delay: float = Field(default=10.0, ge=0, description="Backoff delay ceiling")


class DocumentConfig(BaseModel):
    """Rules deciding which source paths are policy documents."""

    suffix: str = Field(default=".md", min_length=1, description="Recognized document suffix")
    excluded_filenames: list[str] = Field(
        default_factory=lambda: ["readme.md"],
        description="Filenames never treated as documents (case-insensitive)",
    )


class SyncConfig(BaseModel):
    """Batching and storage layout for change detection and reconciliation."""

    fetch_batch_size: int = Field(
        default=40, ge=1, description="Concurrent content fetches per batch"
    )
    write_batch_size: int = Field(
        default=100, ge=1, description="Concurrent registry writes per batch"
    )
    version_token_pattern: str = Field(
        default=r"^[0-9a-fA-F]{40}$",
        description="Regex a version token must match to be reconciled",
    )
    registry_prefix: str = Field(default="policy:", description="Key prefix for records")
    queue_prefix: str = Field(default="queue:", description="Key prefix for work items")
    dead_letter_prefix: str = Field(
        default="dead-letter:", description="Key prefix for dead-lettered work items"
    )
    metadata_key: str = Field(
        default="metadata:sync:lastRun", description="Key of the sync metadata marker"
    )

    @field_validator("version_token_pattern")
    @classmethod
    def validate_pattern_compiles(cls, v: str) -> str:
        """Reject patterns that are not valid regular expressions."""
        try:
            re.compile(v)
        except re.error as e:
            raise ValueError(f"version_token_pattern is not a valid regex: {e}") from e
        return v


class LoggingConfig(BaseModel):
    """Configuration for logging."""

    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    json_logs: bool = Field(
        default=True,
        description="If True, output JSON logs. If False, use console format.",
    )
    log_file: str | None = Field(
        default=None,
        description="Optional path to log file. If None, logs only to stdout.",
    )


class AppConfig(BaseSettings):
    """Main application configuration.

    Values can be overridden with environment variables using the
    POLICY_SYNC_ prefix, e.g. ``POLICY_SYNC_SYNC__FETCH_BATCH_SIZE=20``.
    """

    model_config = SettingsConfigDict(
        env_prefix="POLICY_SYNC_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    source: SourceConfig
    documents: DocumentConfig = Field(default_factory=DocumentConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
