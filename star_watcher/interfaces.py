"""Interfaces for the adapters the monitor service depends on."""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import NamedTuple

from star_watcher.github.models import StarredOptions, StarredPage
from star_watcher.models.repository import UserState


class StarSource(ABC):
    """Interface for reading a user's starred repositories."""

    label: str = "source"

    @abstractmethod
    def list_starred(self, username: str, options: StarredOptions) -> StarredPage:
        """Fetch one page of starred repositories."""
        pass

    @abstractmethod
    def validate_user(self, username: str) -> None:
        """Raise EntityNotFoundError when the user does not exist."""
        pass

    def close(self) -> None:
        """Release network resources. No-op by default."""


class StateStore(ABC):
    """Interface for loading and saving per-user state."""

    @abstractmethod
    def load(self, path: Path) -> UserState:
        """Load state, raising StateNotFoundError or StateCorruptionError."""
        pass

    @abstractmethod
    def save(self, path: Path, state: UserState) -> None:
        """Persist state atomically, raising PersistenceError on failure."""
        pass

    @abstractmethod
    def delete(self, path: Path) -> bool:
        """Delete state; return False when there was nothing to delete."""
        pass


class Credential(NamedTuple):
    value: str
    source: str


class CredentialProvider(ABC):
    """Interface for resolving a GitHub token."""

    @abstractmethod
    def get_credential(self) -> Credential | None:
        """Return a credential, or None to run unauthenticated."""
        pass
