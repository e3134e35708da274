"""Configuration models for star-watcher."""

from pathlib import Path

from pydantic import BaseModel, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class GitHubConfig(BaseModel):
    """Configuration for the GitHub REST API."""

    api_url: str = Field(default="https://api.github.com", description="GitHub API base URL")
    token: SecretStr | None = Field(default=None, description="Optional personal access token")
    request_timeout: float = Field(
        default=30.0, gt=0.0, le=300.0, description="Per-request timeout in seconds"
    )
    per_page: int = Field(default=100, ge=1, le=100, description="Items requested per page")
    use_keyring: bool = Field(
        default=True, description="Read the token from, and store prompted tokens in, the system keyring"
    )


class IncrementalConfig(BaseModel):
    """Configuration for incremental fetching and change detection."""

    enabled: bool = Field(default=True, description="Enable incremental fetching globally")
    full_sync_interval_hours: int = Field(
        default=24, ge=0, description="Hours between full fetches (0 = every check)"
    )
    fallback_on_error: bool = Field(
        default=True, description="Fall back to a full fetch when incremental fails"
    )
    max_incremental_pages: int = Field(
        default=10, ge=1, description="Upper bound on pages read by one incremental fetch"
    )
    detect_unstars: bool = Field(default=True, description="Report repositories no longer starred")
    detect_restars: bool = Field(default=True, description="Report repositories starred again")
    timestamp_tolerance_seconds: float = Field(
        default=60.0, ge=0.0, description="Clock-skew window around the last starred timestamp"
    )
    restar_threshold_seconds: float = Field(
        default=600.0,
        gt=0.0,
        description="starred_at advance at or above which a restar is reported as a new star",
    )


class RetryConfig(BaseModel):
    """Configuration for retrying remote calls."""

    max_retries: int = Field(default=3, ge=0, le=20, description="Retries after the first attempt")
    initial_delay: float = Field(default=1.0, gt=0.0, description="First backoff delay in seconds")
    max_delay: float = Field(default=30.0, gt=0.0, description="Backoff delay cap in seconds")
    backoff_multiplier: float = Field(default=2.0, ge=1.0, description="Exponential backoff factor")
    jitter_ratio: float = Field(
        default=0.25, ge=0.0, lt=1.0, description="Symmetric jitter applied to backoff delays"
    )
    retry_on_rate_limit: bool = Field(default=True, description="Wait out rate limits and retry")
    rate_limit_buffer: float = Field(
        default=30.0, ge=0.0, description="Seconds added to the server-reported reset delay"
    )


class LoggingConfig(BaseModel):
    """Configuration for logging."""

    log_level: str = Field(
        default="WARNING",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    json_logs: bool = Field(
        default=False,
        description="If True, output JSON logs. If False, use console format.",
    )
    log_file: str | None = Field(
        default=None,
        description="Optional path to log file. If None, logs only to stderr.",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unsupported log level: {v}")
        return level


class StorageConfig(BaseModel):
    """Configuration for state files."""

    state_dir: Path = Field(
        default_factory=lambda: Path.home() / ".star-watcher",
        description="Directory holding one JSON state file per user",
    )

    @field_validator("state_dir")
    @classmethod
    def expand_state_dir(cls, v: Path) -> Path:
        return v.expanduser()

    def state_path(self, username: str) -> Path:
        return self.state_dir / f"{username}.json"


class AppConfig(BaseSettings):
    """Main application configuration.

    This class uses pydantic-settings to load configuration from environment
    variables with the STAR_WATCHER_ prefix.
    """

    model_config = SettingsConfigDict(
        env_prefix="STAR_WATCHER_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    github: GitHubConfig = Field(default_factory=GitHubConfig)
    incremental: IncrementalConfig = Field(default_factory=IncrementalConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    max_workers: int = Field(
        default=4, ge=1, le=32, description="Users monitored concurrently in one invocation"
    )
