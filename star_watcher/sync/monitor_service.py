"""Monitor service orchestrating one poll-diff-persist cycle per user."""

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from pathlib import Path
from typing import Callable

import structlog

from star_watcher.errors import (
    EntityValidationError,
    MonitorError,
    StateCorruptionError,
    StateNotFoundError,
    UnexpectedError,
)
from star_watcher.github.client import GitHubClient
from star_watcher.interfaces import CredentialProvider, StarSource, StateStore
from star_watcher.models.config import AppConfig
from star_watcher.models.repository import UserState, is_valid_username
from star_watcher.sync.change_detector import ChangeDetector
from star_watcher.sync.fetch_planner import IncrementalFetchPlanner, ProgressCallback
from star_watcher.sync.models import ChangeSet, FetchOutcome, MonitorResult
from star_watcher.utils.clock import utc_now
from star_watcher.utils.retry import RetryExecutor

log = structlog.stdlib.get_logger()

SourceFactory = Callable[[str | None], StarSource]


def github_source_factory(config: AppConfig) -> SourceFactory:
    """Build a factory that opens a new GitHubClient (and session) per cycle."""

    def factory(token: str | None) -> StarSource:
        return GitHubClient(config.github, token=token)

    return factory


class MonitorService:
    """Runs monitoring cycles: validate, load, fetch, diff, persist."""

    def __init__(
        self,
        config: AppConfig,
        store: StateStore,
        credentials: CredentialProvider,
        source_factory: SourceFactory | None = None,
        retry: RetryExecutor | None = None,
        progress_callback: ProgressCallback | None = None,
        clock: Callable[[], datetime] = utc_now,
        logger=None,
    ) -> None:
        """
        Initialize the monitor service.

        Args:
            config: Application configuration
            store: Persistence for per-user state
            credentials: Token lookup; None from it means unauthenticated access
            source_factory: Builds a StarSource from an optional token
            retry: Retry executor for remote calls (built from config if None)
            progress_callback: Receives human-readable progress messages
            clock: Source of the current time
            logger: Optional structlog logger
        """
        self.config = config
        self.store = store
        self.credentials = credentials
        self.source_factory = source_factory or github_source_factory(config)
        self.retry = retry or RetryExecutor(config.retry)
        self.progress_callback = progress_callback
        self._clock = clock
        self._log = logger or log.bind(component="monitor_service")

        self.planner = IncrementalFetchPlanner(
            config.incremental, self.retry, per_page=config.github.per_page, logger=self._log
        )
        self.detector = ChangeDetector(config.incremental, logger=self._log)

    def run_cycle(
        self,
        username: str,
        state_path: Path,
        cancel_event: threading.Event | None = None,
    ) -> MonitorResult:
        """
        Run one monitoring cycle for a user.

        Args:
            username: GitHub username to check
            state_path: JSON state file for this user
            cancel_event: Set to abort retry waits

        Returns:
            MonitorResult describing what changed since the previous run

        Raises:
            EntityValidationError: Malformed or unknown username (state untouched)
            IncrementalFetchError: Incremental failed with fallback disabled
            PersistenceError: The new state could not be written
            MonitorError: Any other unrecovered remote failure
        """
        state_path = Path(state_path)
        cancel_event = cancel_event or threading.Event()
        progress = self._progress
        cycle_log = self._log.bind(username=username)
        cycle_log.info("monitor_cycle_started", state_path=str(state_path))
        progress(f"Starting monitor for user: {username}")

        credential = self.credentials.get_credential()
        source = self.source_factory(credential.value if credential else None)
        if credential:
            progress(f"Using authentication from {credential.source}")
        else:
            progress("Using unauthenticated access (rate limits may apply)")

        try:
            progress("Validating user exists...")
            self.validate_username(source, username, cancel_event)

            progress("Loading previous state...")
            previous = self.load_previous_state(username, state_path)
            is_first_run = previous.check_count == 0

            progress("Fetching starred repositories...")
            outcome = self.planner.fetch(
                source, username, previous, cancel_event=cancel_event, progress=progress, now=self._clock()
            )
        finally:
            source.close()

        progress("Analyzing repository changes...")
        if is_first_run:
            changes = ChangeSet()
            cycle_log.info("baseline_established", repositories=len(outcome.repositories))
        else:
            changes = self.detector.detect_changes(previous.repositories, outcome.repositories)

        progress("Updating state...")
        now = self._clock()
        updated = self.build_updated_state(previous, outcome, changes, now)
        self.store.save(state_path, updated)

        progress("Monitor complete")
        cycle_log.info(
            "monitor_cycle_completed",
            total_repositories=len(updated.repositories),
            total_changes=changes.total_changes,
            full_sync=outcome.is_full_sync,
            fallback_used=outcome.fallback_used,
            api_calls_saved=outcome.api_calls_saved,
        )
        return MonitorResult(
            username=username,
            changes=changes,
            total_repositories=len(updated.repositories),
            previous_check=previous.last_check,
            current_check=now,
            rate_limit=outcome.rate_limit,
            is_first_run=is_first_run,
            is_full_sync=outcome.is_full_sync,
            api_calls_saved=outcome.api_calls_saved,
            incremental_enabled=updated.incremental_enabled,
            fallback_used=outcome.fallback_used,
        )

    def validate_username(
        self, source: StarSource, username: str, cancel_event: threading.Event | None = None
    ) -> None:
        """Check the username format locally, then its existence on GitHub."""
        if not is_valid_username(username):
            raise EntityValidationError(username, f"Invalid GitHub username format: {username}")
        self.retry.execute(
            lambda: source.validate_user(username),
            cancel_event=cancel_event,
            description=f"validate user {username}",
        )

    def load_previous_state(self, username: str, state_path: Path) -> UserState:
        """Load prior state, or an empty baseline when missing or corrupted."""
        try:
            state = self.store.load(state_path)
        except StateNotFoundError:
            self._log.info("no_previous_state", username=username, path=str(state_path))
            return self._new_state(username)
        except StateCorruptionError as e:
            self._log.warning(
                "state_corrupted_rebuilding", username=username, path=str(state_path), error=str(e)
            )
            return self._new_state(username)

        if state.username.lower() != username.lower():
            self._log.warning(
                "state_username_mismatch_rebuilding",
                username=username,
                stored_username=state.username,
                path=str(state_path),
            )
            return self._new_state(username)

        return self._migrate(state)

    def build_updated_state(
        self, previous: UserState, outcome: FetchOutcome, changes: ChangeSet, now: datetime
    ) -> UserState:
        """Carry bookkeeping forward and record this cycle's timestamps."""
        state = previous.model_copy(deep=True)
        state.repositories = list(outcome.repositories)
        state.total_count = len(outcome.repositories)
        state.check_count = previous.check_count + 1
        state.last_check = now

        if outcome.is_full_sync:
            reason = "fallback_full_sync" if outcome.fallback_used else "scheduled_full_sync"
            state.update_full_sync_timestamp(now, len(outcome.repositories), reason)
        else:
            state.update_incremental_timestamp(
                now, len(changes.new_stars), outcome.api_calls_saved, "incremental_fetch"
            )

        most_recent = outcome.most_recent_starred_at
        if most_recent is not None and (
            state.last_starred_at is None or most_recent > state.last_starred_at
        ):
            state.update_last_starred_at(
                most_recent, len(changes.new_stars), outcome.api_calls_saved, "repository_update"
            )
        return state

    def monitor_users(
        self,
        usernames: list[str],
        state_path_for: Callable[[str], Path],
        cancel_event: threading.Event | None = None,
        max_workers: int | None = None,
    ) -> tuple[dict[str, MonitorResult], dict[str, MonitorError]]:
        """
        Run independent cycles for several users concurrently.

        Each user has its own source session and state file. Failures are
        collected per user instead of aborting the other cycles.

        Returns:
            (results, errors), both keyed by username in input order
        """
        cancel_event = cancel_event or threading.Event()
        unique = list(dict.fromkeys(usernames))
        workers = max(1, min(max_workers or self.config.max_workers, len(unique) or 1))

        results: dict[str, MonitorResult] = {}
        errors: dict[str, MonitorError] = {}
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="star-watcher") as pool:
            futures = {
                username: pool.submit(self.run_cycle, username, state_path_for(username), cancel_event)
                for username in unique
            }
            for username, future in futures.items():
                try:
                    results[username] = future.result()
                except MonitorError as e:
                    self._log.error(
                        "monitor_cycle_failed", username=username, error_kind=e.kind.value, error=str(e)
                    )
                    errors[username] = e
                except Exception as e:
                    self._log.exception("monitor_cycle_crashed", username=username, error=str(e))
                    errors[username] = UnexpectedError(e)
        return results, errors

    def _new_state(self, username: str) -> UserState:
        return UserState.new(
            username,
            incremental_enabled=self.config.incremental.enabled,
            full_sync_interval=self.config.incremental.full_sync_interval_hours,
        )

    def _migrate(self, state: UserState) -> UserState:
        # Files written before incremental fetching existed carry (False, 0)
        if not state.incremental_enabled and state.full_sync_interval == 0:
            state.incremental_enabled = self.config.incremental.enabled
            state.full_sync_interval = self.config.incremental.full_sync_interval_hours
            self._log.info(
                "state_migrated",
                username=state.username,
                incremental_enabled=state.incremental_enabled,
                full_sync_interval=state.full_sync_interval,
            )
        return state

    def _progress(self, message: str) -> None:
        if self.progress_callback is not None:
            self.progress_callback(message)
