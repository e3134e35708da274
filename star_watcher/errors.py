"""Typed error hierarchy shared by the adapters, retry executor and monitor service."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Classification tag carried by every monitor error."""

    VALIDATION = "validation"
    AUTH = "auth"
    RATE_LIMIT = "rate_limit"
    NETWORK = "network"
    API = "api"
    STORAGE = "storage"
    CANCELLED = "cancelled"
    UNKNOWN = "unknown"


class MonitorError(Exception):
    """Base class for errors raised while monitoring starred repositories."""

    kind: ErrorKind = ErrorKind.UNKNOWN
    retryable: bool = False

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context: dict[str, Any] = context

    def user_message(self) -> str:
        """Return a message suitable for showing to the person running the CLI."""
        return self.message


class EntityValidationError(MonitorError):
    """Raised when a username is malformed or cannot be validated."""

    kind = ErrorKind.VALIDATION

    def __init__(self, username: str, message: str | None = None) -> None:
        super().__init__(message or f"Invalid GitHub username: {username}", username=username)
        self.username = username

    def user_message(self) -> str:
        return f"{self.message}. Verify the username exists and is accessible."


class EntityNotFoundError(EntityValidationError):
    """Raised when the GitHub user does not exist."""

    def __init__(self, username: str) -> None:
        super().__init__(username, f"GitHub user not found: {username}")


class AuthenticationError(MonitorError):
    """Raised when GitHub rejects the supplied credential."""

    kind = ErrorKind.AUTH

    def user_message(self) -> str:
        return "Authentication failed. Please check your GitHub token and permissions."


class RateLimitError(MonitorError):
    """Raised when the API quota is exhausted."""

    kind = ErrorKind.RATE_LIMIT
    retryable = True

    def __init__(
        self,
        message: str = "GitHub API rate limit exceeded",
        reset_at: datetime | None = None,
        limit: int | None = None,
        remaining: int | None = None,
    ) -> None:
        super().__init__(message, reset_at=reset_at, limit=limit, remaining=remaining)
        self.reset_at = reset_at
        self.limit = limit
        self.remaining = remaining

    def retry_after(self, now: datetime | None = None) -> float | None:
        """Seconds until the quota resets, or None when the server gave no reset time."""
        if self.reset_at is None:
            return None
        now = now or datetime.now(timezone.utc)
        return max(0.0, (self.reset_at - now).total_seconds())

    def user_message(self) -> str:
        reset = self.reset_at.strftime("%H:%M:%S") if self.reset_at else "unknown"
        return f"Rate limit exceeded. Try again after {reset}."


class TransientNetworkError(MonitorError):
    """Timeouts, connection failures and 5xx responses."""

    kind = ErrorKind.NETWORK
    retryable = True

    def __init__(self, message: str, status_code: int | None = None, url: str | None = None) -> None:
        super().__init__(message, status_code=status_code, url=url)
        self.status_code = status_code
        self.url = url

    def user_message(self) -> str:
        return f"Network error ({self.message}). Please check your connection and try again."


class RemoteAPIError(MonitorError):
    """Non-retryable API failure (unexpected 4xx, malformed payload)."""

    kind = ErrorKind.API

    def __init__(self, message: str, status_code: int | None = None, url: str | None = None) -> None:
        super().__init__(message, status_code=status_code, url=url)
        self.status_code = status_code
        self.url = url

    def user_message(self) -> str:
        return f"GitHub API error: {self.message}"


class RetryExhaustedError(MonitorError):
    """Raised after every allowed attempt failed with a retryable error."""

    def __init__(self, attempts: int, last_error: MonitorError) -> None:
        super().__init__(
            f"operation failed after {attempts} attempts, last error: {last_error}",
            attempts=attempts,
            **last_error.context,
        )
        self.attempts = attempts
        self.last_error = last_error
        self.kind = last_error.kind

    def user_message(self) -> str:
        return f"{self.last_error.user_message()} (gave up after {self.attempts} attempts)"


class OperationCancelledError(MonitorError):
    """Raised when the cancel signal is set during a wait."""

    kind = ErrorKind.CANCELLED

    def __init__(self, message: str = "operation cancelled") -> None:
        super().__init__(message)


class StateNotFoundError(MonitorError):
    """No state file exists yet; expected on the first run."""

    kind = ErrorKind.STORAGE

    def __init__(self, path: str) -> None:
        super().__init__(f"state file not found: {path}", path=path)
        self.path = path


class StateCorruptionError(MonitorError):
    """The state file exists but cannot be parsed or fails validation."""

    kind = ErrorKind.STORAGE

    def __init__(self, path: str, cause: str) -> None:
        super().__init__(f"state file corrupted at {path}: {cause}", path=path)
        self.path = path


class PersistenceError(MonitorError):
    """Writing the state file failed; the previous file is left intact."""

    kind = ErrorKind.STORAGE

    def __init__(self, path: str, cause: str) -> None:
        super().__init__(f"failed to save state to {path}: {cause}", path=path)
        self.path = path

    def user_message(self) -> str:
        return f"Storage error: {self.message}. Please check file permissions and available disk space."


class CredentialStorageError(MonitorError):
    """The system keyring could not store or remove the GitHub token."""

    kind = ErrorKind.STORAGE

    def user_message(self) -> str:
        return f"Keyring error: {self.message}"


class UnexpectedError(MonitorError):
    """Wraps an exception outside the monitor hierarchy so one user's failure stays contained."""

    def __init__(self, cause: Exception) -> None:
        super().__init__(f"unexpected {type(cause).__name__}: {cause}", error_type=type(cause).__name__)
        self.cause = cause

    def user_message(self) -> str:
        return f"Unexpected error: {self.cause}"


class IncrementalFetchError(MonitorError):
    """Incremental fetch failed and falling back to a full fetch is disabled."""

    def __init__(self, cause: MonitorError) -> None:
        super().__init__(f"incremental fetch failed and fallback disabled: {cause}", **cause.context)
        self.cause = cause
        self.kind = cause.kind

    def user_message(self) -> str:
        return f"Incremental fetch failed: {self.cause.user_message()}"
