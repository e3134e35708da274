"""Pydantic models for starred repositories and persisted user state."""

import re
from datetime import datetime, timedelta
from typing import Any
from urllib.parse import urlparse

from pydantic import BaseModel, Field, ValidationInfo, field_validator, model_validator

from star_watcher.utils.clock import ensure_utc, utc_now

STATE_VERSION = "1.0.0"

# Capacity of the timestamp audit log kept in each state file
AUDIT_LOG_CAPACITY = 100

CLOCK_SKEW_TOLERANCE = timedelta(minutes=1)

REPOSITORY_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9_.-]+/[a-zA-Z0-9_.-]+$")
GITHUB_USERNAME_PATTERN = re.compile(r"^[a-zA-Z0-9]([a-zA-Z0-9-]{0,37}[a-zA-Z0-9])?$")
SEMANTIC_VERSION_PATTERN = re.compile(
    r"^(0|[1-9]\d*)\.(0|[1-9]\d*)\.(0|[1-9]\d*)"
    r"(?:-((?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*)(?:\.(?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*))*))?"
    r"(?:\+([0-9a-zA-Z-]+(?:\.[0-9a-zA-Z-]+)*))?$"
)

TIMESTAMP_UPDATE_TYPES = {"starred_at", "full_sync", "incremental", "first_run", "fallback"}


def is_valid_username(username: str) -> bool:
    """Check a GitHub username against the allowed format."""
    return bool(GITHUB_USERNAME_PATTERN.match(username))


def _normalize_timestamp(value: datetime | None) -> datetime | None:
    # State files from older releases encode "never" as year 1
    if value is None or value.year == 1:
        return None
    return ensure_utc(value)


def _check_not_future(name: str, value: datetime | None) -> None:
    if value is not None and value > utc_now() + CLOCK_SKEW_TOLERANCE:
        raise ValueError(f"{name} cannot be in the future: {value.isoformat()}")


class Repository(BaseModel):
    """A starred GitHub repository with the metadata used for comparison and display."""

    full_name: str = Field(default=..., description="Owner/repo identity, e.g. 'microsoft/vscode'")
    description: str = Field(default="", description="Repository description")
    star_count: int = Field(default=0, ge=0, description="Current number of stargazers")
    updated_at: datetime | None = Field(default=None, description="Last repository update")
    url: str = Field(default="", description="Browser URL of the repository")
    starred_at: datetime = Field(default=..., description="When the watched user starred it")
    language: str = Field(default="", description="Primary language")
    private: bool = Field(default=False, description="Whether the repository is private")

    model_config = {
        "json_schema_extra": {
            "example": {
                "full_name": "microsoft/vscode",
                "description": "Visual Studio Code",
                "star_count": 160000,
                "updated_at": "2024-01-15T14:30:00Z",
                "url": "https://github.com/microsoft/vscode",
                "starred_at": "2024-01-10T09:00:00Z",
                "language": "TypeScript",
                "private": False,
            }
        }
    }

    @field_validator("full_name")
    @classmethod
    def validate_full_name(cls, v: str) -> str:
        """Validate the owner/name format."""
        if not REPOSITORY_NAME_PATTERN.match(v):
            raise ValueError(f"invalid repository full name format: {v}")
        return v

    @field_validator("description", "language", mode="before")
    @classmethod
    def none_to_empty(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Empty, or an HTTPS URL on github.com."""
        if not v:
            return v
        parsed = urlparse(v)
        if parsed.scheme != "https":
            raise ValueError(f"repository URL must use HTTPS: {v}")
        if parsed.netloc != "github.com":
            raise ValueError(f"repository URL must be on github.com: {v}")
        return v

    @field_validator("updated_at")
    @classmethod
    def normalize_updated_at(cls, v: datetime | None) -> datetime | None:
        return _normalize_timestamp(v)

    @field_validator("starred_at")
    @classmethod
    def validate_starred_at(cls, v: datetime) -> datetime:
        v = ensure_utc(v)
        _check_not_future("starred timestamp", v)
        return v

    def __str__(self) -> str:
        return f"{self.full_name} ({self.star_count} stars) - {self.description}"


class TimestampUpdate(BaseModel):
    """Audit record of a bookkeeping timestamp change."""

    timestamp: datetime = Field(default_factory=utc_now, description="When the update occurred")
    old_value: datetime | None = Field(default=None, description="Previous value")
    new_value: datetime | None = Field(default=None, description="New value")
    update_type: str = Field(default=..., description="starred_at, full_sync, incremental, ...")
    repo_count: int = Field(default=0, ge=0, description="Repositories processed in this update")
    api_calls_saved: int = Field(default=0, ge=0, description="Estimated API calls saved")
    reason: str = Field(default="", description="Why the update happened")

    @field_validator("update_type")
    @classmethod
    def validate_update_type(cls, v: str) -> str:
        if v not in TIMESTAMP_UPDATE_TYPES:
            raise ValueError(f"invalid update type: {v}")
        return v

    @field_validator("old_value", "new_value")
    @classmethod
    def normalize_values(cls, v: datetime | None) -> datetime | None:
        return _normalize_timestamp(v)

    @field_validator("timestamp")
    @classmethod
    def validate_timestamp(cls, v: datetime) -> datetime:
        v = ensure_utc(v)
        _check_not_future("timestamp update", v)
        return v


class UserState(BaseModel):
    """Persisted monitoring state for one GitHub user.

    Field names match the JSON state files written by earlier releases so
    existing files keep loading.
    """

    username: str = Field(default=..., description="GitHub username being monitored")
    last_check: datetime | None = Field(default=None, description="Last successful check")
    repositories: list[Repository] = Field(
        default_factory=list, description="Starred repositories as of the last check"
    )
    total_count: int = Field(default=0, ge=0, description="Repository count at the last check")
    state_version: str = Field(default=STATE_VERSION, description="State schema version")
    check_count: int = Field(default=0, ge=0, description="Number of successful checks")

    last_starred_at: datetime | None = Field(
        default=None, description="Most recent starred_at across all repositories"
    )
    last_full_sync_at: datetime | None = Field(default=None, description="Last full fetch")
    incremental_enabled: bool = Field(default=True, description="Whether incremental fetch is allowed")
    full_sync_interval: int = Field(default=24, ge=0, description="Hours between full fetches")

    last_incremental_at: datetime | None = Field(default=None, description="Last incremental fetch")
    api_calls_saved: int = Field(default=0, ge=0, description="Cumulative API calls saved")
    timestamp_updates: list[TimestampUpdate] = Field(
        default_factory=list, description="Bounded audit log of timestamp changes"
    )

    @field_validator("username")
    @classmethod
    def validate_username(cls, v: str) -> str:
        if not is_valid_username(v):
            raise ValueError(f"invalid GitHub username format: {v}")
        return v

    @field_validator("state_version")
    @classmethod
    def validate_state_version(cls, v: str) -> str:
        if v and not SEMANTIC_VERSION_PATTERN.match(v):
            raise ValueError(f"invalid semantic version format: {v}")
        return v

    @field_validator("last_check", "last_starred_at", "last_full_sync_at", "last_incremental_at")
    @classmethod
    def validate_bookkeeping_timestamp(
        cls, v: datetime | None, info: ValidationInfo
    ) -> datetime | None:
        v = _normalize_timestamp(v)
        _check_not_future(info.field_name, v)
        return v

    @field_validator("timestamp_updates")
    @classmethod
    def bound_audit_log(cls, v: list[TimestampUpdate]) -> list[TimestampUpdate]:
        return v[-AUDIT_LOG_CAPACITY:]

    @model_validator(mode="after")
    def validate_unique_repositories(self) -> "UserState":
        seen: set[str] = set()
        for repo in self.repositories:
            if repo.full_name in seen:
                raise ValueError(f"duplicate repository in state: {repo.full_name}")
            seen.add(repo.full_name)
        return self

    @classmethod
    def new(
        cls,
        username: str,
        incremental_enabled: bool = True,
        full_sync_interval: int = 24,
    ) -> "UserState":
        """Create the empty baseline used on a first run."""
        return cls(
            username=username,
            incremental_enabled=incremental_enabled,
            full_sync_interval=full_sync_interval,
        )

    @property
    def repository_map(self) -> dict[str, Repository]:
        return {repo.full_name: repo for repo in self.repositories}

    def should_use_incremental(self) -> bool:
        """Incremental fetch needs to be enabled and to have a starting timestamp."""
        return self.incremental_enabled and self.last_starred_at is not None

    def should_perform_full_sync(self, now: datetime | None = None) -> bool:
        """True when no full sync happened yet or the interval has elapsed.

        An interval of zero forces a full sync on every check.
        """
        if self.last_full_sync_at is None or self.full_sync_interval == 0:
            return True
        now = now or utc_now()
        return now >= self.last_full_sync_at + timedelta(hours=self.full_sync_interval)

    def record_timestamp_update(self, update: TimestampUpdate) -> None:
        """Append to the audit log, dropping the oldest entries beyond capacity."""
        self.timestamp_updates.append(update)
        if len(self.timestamp_updates) > AUDIT_LOG_CAPACITY:
            del self.timestamp_updates[: len(self.timestamp_updates) - AUDIT_LOG_CAPACITY]

    def update_last_starred_at(
        self, value: datetime, repo_count: int, api_calls_saved: int, reason: str
    ) -> None:
        old_value = self.last_starred_at
        self.last_starred_at = value
        self.record_timestamp_update(
            TimestampUpdate(
                old_value=old_value,
                new_value=value,
                update_type="starred_at",
                repo_count=repo_count,
                api_calls_saved=api_calls_saved,
                reason=reason,
            )
        )

    def update_full_sync_timestamp(self, now: datetime, repo_count: int, reason: str) -> None:
        old_value = self.last_full_sync_at
        self.last_full_sync_at = now
        self.record_timestamp_update(
            TimestampUpdate(
                timestamp=now,
                old_value=old_value,
                new_value=now,
                update_type="full_sync",
                repo_count=repo_count,
                reason=reason,
            )
        )

    def update_incremental_timestamp(
        self, now: datetime, repo_count: int, api_calls_saved: int, reason: str
    ) -> None:
        old_value = self.last_incremental_at
        self.last_incremental_at = now
        self.api_calls_saved += api_calls_saved
        self.record_timestamp_update(
            TimestampUpdate(
                timestamp=now,
                old_value=old_value,
                new_value=now,
                update_type="incremental",
                repo_count=repo_count,
                api_calls_saved=api_calls_saved,
                reason=reason,
            )
        )
