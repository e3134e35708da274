"""JSON file persistence for per-user monitoring state."""

import json
import os
import shutil
import tempfile
from pathlib import Path

import structlog
from pydantic import ValidationError

from star_watcher.errors import PersistenceError, StateCorruptionError, StateNotFoundError
from star_watcher.interfaces import StateStore
from star_watcher.models.repository import UserState

log = structlog.stdlib.get_logger()

BACKUP_SUFFIX = ".bak"


def backup_path(path: Path) -> Path:
    return path.with_name(path.name + BACKUP_SUFFIX)


def _fsync_directory(directory: Path) -> None:
    # Persists the rename itself; directories cannot be opened this way on Windows
    if os.name != "posix":
        return
    fd = os.open(directory, os.O_RDONLY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


class JsonStateStore(StateStore):
    """Stores one ``UserState`` per JSON file.

    Writes go to a temporary file in the target directory which is fsynced
    and then renamed over the destination, so a crash leaves either the old
    or the new file. The previous file is copied to ``<name>.bak`` first.
    """

    def __init__(self, keep_backup: bool = True) -> None:
        self.keep_backup = keep_backup

    def load(self, path: Path) -> UserState:
        """
        Load and validate a state file.

        Raises:
            StateNotFoundError: If the file does not exist
            StateCorruptionError: If the file is not UTF-8 JSON or fails validation
            PersistenceError: If the path exists but cannot be read
        """
        path = Path(path)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError as e:
            raise StateNotFoundError(str(path)) from e
        except UnicodeDecodeError as e:
            raise StateCorruptionError(str(path), f"invalid UTF-8: {e}") from e
        except OSError as e:
            raise PersistenceError(str(path), f"read failed: {e}") from e

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise StateCorruptionError(str(path), f"invalid JSON: {e}") from e

        try:
            state = UserState.model_validate(data)
        except ValidationError as e:
            raise StateCorruptionError(str(path), f"invalid state: {e}") from e

        log.debug(
            "state_loaded",
            path=str(path),
            username=state.username,
            repositories=len(state.repositories),
        )
        return state

    def save(self, path: Path, state: UserState) -> None:
        """
        Validate and atomically write a state file.

        Raises:
            PersistenceError: If validation or any filesystem step fails
        """
        path = Path(path)
        try:
            # Re-validate: callers mutate states in place
            payload = UserState.model_validate(state.model_dump()).model_dump_json(indent=2)
        except ValidationError as e:
            raise PersistenceError(str(path), f"state validation failed: {e}") from e

        tmp_name: str | None = None
        try:
            path.parent.mkdir(parents=True, exist_ok=True, mode=0o700)
            if self.keep_backup and path.exists():
                shutil.copy2(path, backup_path(path))

            fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
                f.write("\n")
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp_name, 0o600)
            os.replace(tmp_name, path)
            tmp_name = None
            _fsync_directory(path.parent)
        except OSError as e:
            raise PersistenceError(str(path), str(e)) from e
        finally:
            if tmp_name is not None and os.path.exists(tmp_name):
                os.unlink(tmp_name)

        log.debug(
            "state_saved",
            path=str(path),
            username=state.username,
            repositories=len(state.repositories),
        )

    def delete(self, path: Path) -> bool:
        """Remove a state file and its backup; False if no state file existed."""
        path = Path(path)
        try:
            backup_path(path).unlink(missing_ok=True)
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise PersistenceError(str(path), f"delete failed: {e}") from e
        log.info("state_deleted", path=str(path))
        return True

    def list_states(self, directory: Path) -> list[Path]:
        """State files in ``directory``, sorted by name."""
        directory = Path(directory)
        if not directory.is_dir():
            return []
        return sorted(p for p in directory.glob("*.json") if p.is_file())

    def delete_all(self, directory: Path) -> list[Path]:
        """Delete every state file in ``directory`` and return the removed paths."""
        return [path for path in self.list_states(directory) if self.delete(path)]
