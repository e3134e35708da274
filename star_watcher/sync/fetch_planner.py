"""Chooses between full and incremental fetches and runs the chosen one."""

import threading
from datetime import datetime, timedelta
from typing import Callable

import structlog

from star_watcher.errors import IncrementalFetchError, MonitorError, OperationCancelledError
from star_watcher.github.models import RateLimitInfo, StarredOptions, StarredPage
from star_watcher.interfaces import StarSource
from star_watcher.models.config import IncrementalConfig
from star_watcher.models.repository import Repository, UserState
from star_watcher.sync.models import FetchOutcome
from star_watcher.utils.clock import utc_now
from star_watcher.utils.retry import RetryExecutor

log = structlog.stdlib.get_logger()

ProgressCallback = Callable[[str], None]


def _noop_progress(message: str) -> None:
    pass


class IncrementalFetchPlanner:
    """Fetches a user's starred repositories with as few requests as possible.

    A full fetch reads every page and replaces the stored repositories. An
    incremental fetch reads pages ordered by star time, newest first, and
    stops as soon as it reaches repositories that were already known; the
    result is overlaid on the stored repositories.
    """

    def __init__(
        self,
        config: IncrementalConfig,
        retry: RetryExecutor,
        per_page: int = 100,
        logger=None,
    ) -> None:
        self.config = config
        self.retry = retry
        self.per_page = per_page
        self._log = logger or log.bind(component="fetch_planner")

    @property
    def tolerance(self) -> timedelta:
        return timedelta(seconds=self.config.timestamp_tolerance_seconds)

    def choose_strategy(self, state: UserState, now: datetime | None = None) -> tuple[bool, str]:
        """Return ``(use_incremental, reason)`` for the given prior state."""
        if not self.config.enabled:
            return False, "incremental fetching disabled in configuration"
        if not state.should_use_incremental():
            if not state.incremental_enabled:
                return False, "incremental fetching disabled for this user"
            return False, "no previous starred timestamp"
        if not state.repositories:
            return False, "no previously stored repositories"
        if state.should_perform_full_sync(now or utc_now()):
            return False, "full sync interval elapsed"
        return True, "previous state is recent"

    def fetch(
        self,
        source: StarSource,
        username: str,
        state: UserState,
        cancel_event: threading.Event | None = None,
        progress: ProgressCallback | None = None,
        now: datetime | None = None,
    ) -> FetchOutcome:
        """
        Fetch and merge starred repositories for one user.

        Raises:
            IncrementalFetchError: If incremental fails and fallback is disabled
            OperationCancelledError: If ``cancel_event`` is set
            MonitorError: If the full fetch fails
        """
        progress = progress or _noop_progress
        use_incremental, reason = self.choose_strategy(state, now)

        if use_incremental:
            progress("Attempting incremental fetch...")
            self._log.info("incremental_fetch_started", username=username, since=state.last_starred_at)
            try:
                return self.fetch_incremental(source, username, state, cancel_event, progress, reason)
            except OperationCancelledError:
                raise
            except MonitorError as e:
                if not self.config.fallback_on_error:
                    self._log.error("incremental_fetch_failed", username=username, error=str(e))
                    raise IncrementalFetchError(e) from e
                self._log.warning(
                    "incremental_fetch_failed_falling_back",
                    username=username,
                    error_kind=e.kind.value,
                    error=str(e),
                )
                progress(f"Incremental fetch failed ({e}), falling back to full sync")
                outcome = self.fetch_full(
                    source, username, cancel_event, progress, "fallback after incremental failure"
                )
                outcome.fallback_used = True
                return outcome

        progress("Performing full sync...")
        self._log.info("full_fetch_started", username=username, reason=reason)
        return self.fetch_full(source, username, cancel_event, progress, reason)

    def fetch_full(
        self,
        source: StarSource,
        username: str,
        cancel_event: threading.Event | None = None,
        progress: ProgressCallback | None = None,
        reason: str = "",
    ) -> FetchOutcome:
        """Read every page; the fetched set becomes the new repository set."""
        progress = progress or _noop_progress
        repositories: list[Repository] = []
        rate_limit = RateLimitInfo()
        options = StarredOptions(per_page=self.per_page)
        pages = 0

        while True:
            page = self._fetch_page(source, username, options, cancel_event, pages + 1)
            pages += 1
            repositories.extend(page.repositories)
            rate_limit = page.rate_limit

            if not page.page_info.has_next:
                break
            options = options.model_copy(update={"cursor": page.page_info.next_cursor})
            progress(f"Fetched {len(repositories)} repositories...")

        self._log.info(
            "full_fetch_completed", username=username, repositories=len(repositories), pages=pages
        )
        return FetchOutcome(
            repositories=self.merge([], repositories),
            rate_limit=rate_limit,
            is_full_sync=True,
            pages_fetched=pages,
            fetched_count=len(repositories),
            reason=reason,
        )

    def fetch_incremental(
        self,
        source: StarSource,
        username: str,
        state: UserState,
        cancel_event: threading.Event | None = None,
        progress: ProgressCallback | None = None,
        reason: str = "",
    ) -> FetchOutcome:
        """Read newest-first pages until a page contains nothing new."""
        progress = progress or _noop_progress
        if state.last_starred_at is None:
            raise ValueError("incremental fetch needs a previous starred timestamp")
        known = state.repository_map

        fetched: list[Repository] = []
        rate_limit = RateLimitInfo()
        options = StarredOptions(per_page=self.per_page)
        pages = 0
        items_read = 0
        reached_end = False

        while pages < self.config.max_incremental_pages:
            page = self._fetch_page(source, username, options, cancel_event, pages + 1)
            pages += 1
            items_read += len(page.repositories)
            rate_limit = page.rate_limit

            new_in_page = [
                repo for repo in page.repositories if self.is_new(repo, state.last_starred_at, known)
            ]
            fetched.extend(new_in_page)

            if not new_in_page:
                progress("No new repositories found in this page, stopping incremental fetch")
                break
            if len(page.repositories) < options.per_page or not page.page_info.has_next:
                reached_end = True
                break
            options = options.model_copy(update={"cursor": page.page_info.next_cursor})
            progress(f"Incremental fetch: found {len(fetched)} new repositories so far...")
        else:
            progress(
                f"Reached maximum incremental pages limit ({self.config.max_incremental_pages}), stopping"
            )

        api_calls_saved = 0
        if not reached_end:
            api_calls_saved = max(0, (state.total_count - items_read) // self.per_page)

        self._log.info(
            "incremental_fetch_completed",
            username=username,
            new_repositories=len(fetched),
            pages=pages,
            api_calls_saved=api_calls_saved,
        )
        progress(
            f"Incremental fetch complete: {len(fetched)} new repositories, "
            f"estimated {api_calls_saved} API calls saved"
        )
        return FetchOutcome(
            repositories=self.merge(state.repositories, fetched),
            rate_limit=rate_limit,
            api_calls_saved=api_calls_saved,
            is_full_sync=False,
            pages_fetched=pages,
            fetched_count=len(fetched),
            reason=reason,
        )

    def is_new(self, repo: Repository, last_starred_at: datetime, known: dict[str, Repository]) -> bool:
        """Whether a repository from an incremental page was starred after the last check.

        Repositories inside the tolerance window around ``last_starred_at``
        count as new when their identity is unknown, or when their
        ``starred_at`` moved past the stored one (a re-star).
        """
        if repo.starred_at > last_starred_at + self.tolerance:
            return True
        if abs(repo.starred_at - last_starred_at) > self.tolerance:
            return False
        known_repo = known.get(repo.full_name)
        return known_repo is None or repo.starred_at > known_repo.starred_at

    @staticmethod
    def merge(previous: list[Repository], fetched: list[Repository]) -> list[Repository]:
        """Overlay fetched repositories on previous ones by ``full_name``; fetched data wins."""
        merged = {repo.full_name: repo for repo in previous}
        for repo in fetched:
            merged[repo.full_name] = repo
        return list(merged.values())

    def _fetch_page(
        self,
        source: StarSource,
        username: str,
        options: StarredOptions,
        cancel_event: threading.Event | None,
        page_number: int,
    ) -> StarredPage:
        return self.retry.execute(
            lambda: source.list_starred(username, options),
            cancel_event=cancel_event,
            description=f"list starred page {page_number} for {username}",
        )
