"""Data models for star-watcher."""

from star_watcher.models.config import (
    AppConfig,
    GitHubConfig,
    IncrementalConfig,
    LoggingConfig,
    RetryConfig,
    StorageConfig,
)
from star_watcher.models.repository import (
    Repository,
    TimestampUpdate,
    UserState,
    is_valid_username,
)

__all__ = [
    "Repository",
    "TimestampUpdate",
    "UserState",
    "is_valid_username",
    "AppConfig",
    "GitHubConfig",
    "IncrementalConfig",
    "LoggingConfig",
    "RetryConfig",
    "StorageConfig",
]
