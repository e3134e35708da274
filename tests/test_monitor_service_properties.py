"""Scenario and property tests for the monitoring cycle."""

import threading
import time
from datetime import timedelta
from pathlib import Path

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from fakes import (
    BASE_TIME,
    FAST_RETRY,
    FakeStarSource,
    InMemoryStateStore,
    StaticCredentials,
    make_repo,
    make_repos,
)
from star_watcher.errors import (
    EntityNotFoundError,
    EntityValidationError,
    ErrorKind,
    IncrementalFetchError,
    PersistenceError,
    RateLimitError,
    RemoteAPIError,
    UnexpectedError,
)
from star_watcher.models.config import AppConfig, IncrementalConfig, RetryConfig
from star_watcher.models.repository import UserState
from star_watcher.storage.state_store import JsonStateStore
from star_watcher.sync.monitor_service import MonitorService
from star_watcher.utils.clock import utc_now

STATE_PATH = Path("/state/octocat.json")


def make_service(source: FakeStarSource, store=None, config=None, token=None, **kwargs):
    config = config or AppConfig(retry=FAST_RETRY)
    tokens_seen: list = []

    def factory(value):
        tokens_seen.append(value)
        return source

    service = MonitorService(
        config=config,
        store=store or InMemoryStateStore(),
        credentials=StaticCredentials(token),
        source_factory=factory,
        **kwargs,
    )
    service.tokens_seen = tokens_seen
    return service


class TestFirstRun:
    def test_first_run_establishes_baseline(self):
        """Scenario: the first run reports no changes and stores every repository."""
        store = InMemoryStateStore()
        source = FakeStarSource(make_repos(7))
        result = make_service(source, store).run_cycle("octocat", STATE_PATH)

        assert result.is_first_run
        assert result.is_full_sync
        assert result.changes.total_changes == 0
        assert result.total_repositories == 7
        assert result.previous_check is None

        saved = store.load(STATE_PATH)
        assert saved.check_count == 1
        assert saved.total_count == 7
        assert saved.last_starred_at == BASE_TIME
        assert saved.last_full_sync_at is not None
        assert source.closed

    def test_first_run_with_no_stars(self):
        store = InMemoryStateStore()
        result = make_service(FakeStarSource([]), store).run_cycle("octocat", STATE_PATH)
        assert result.is_first_run
        assert result.total_repositories == 0
        assert store.load(STATE_PATH).last_starred_at is None


class TestSimpleNewStar:
    def test_new_star_reported_on_second_run(self):
        """Scenario: a repository starred between runs is reported as a new star."""
        store = InMemoryStateStore()
        source = FakeStarSource(make_repos(5))
        service = make_service(source, store)
        service.run_cycle("octocat", STATE_PATH)

        added = make_repo(42, starred_at=BASE_TIME + timedelta(hours=3))
        source.repositories.append(added)
        result = service.run_cycle("octocat", STATE_PATH)

        assert not result.is_first_run
        assert not result.is_full_sync
        assert [r.full_name for r in result.changes.new_stars] == [added.full_name]
        assert result.changes.total_changes == 1
        assert result.total_repositories == 6
        assert result.previous_check is not None

        saved = store.load(STATE_PATH)
        assert saved.check_count == 2
        assert saved.last_starred_at == added.starred_at
        assert saved.last_incremental_at is not None

    def test_unstar_reported_after_full_sync(self):
        store = InMemoryStateStore()
        repos = make_repos(4)
        source = FakeStarSource(repos)
        config = AppConfig(retry=FAST_RETRY, incremental=IncrementalConfig(enabled=False))
        service = make_service(source, store, config=config)
        service.run_cycle("octocat", STATE_PATH)

        source.repositories = repos[1:]
        result = service.run_cycle("octocat", STATE_PATH)

        assert [r.full_name for r in result.changes.unstars] == [repos[0].full_name]
        assert store.load(STATE_PATH).total_count == 3

    @given(st.integers(min_value=1, max_value=30), st.booleans())
    @settings(max_examples=20, deadline=None)
    def test_unchanged_remote_is_idempotent(self, count: int, incremental: bool):
        """Property 15: repeated checks of an unchanged remote report nothing and keep the set."""
        store = InMemoryStateStore()
        source = FakeStarSource(make_repos(count))
        config = AppConfig(retry=FAST_RETRY, incremental=IncrementalConfig(enabled=incremental))
        service = make_service(source, store, config=config)

        service.run_cycle("octocat", STATE_PATH)
        first = store.load(STATE_PATH)
        for _ in range(2):
            result = service.run_cycle("octocat", STATE_PATH)
            assert result.changes.total_changes == 0

        final = store.load(STATE_PATH)
        assert {r.full_name for r in final.repositories} == {r.full_name for r in first.repositories}
        assert final.check_count == 3


class TestRecovery:
    def test_corrupted_state_rebuilds_baseline(self):
        """Scenario: a corrupted state file is replaced by a new baseline."""
        store = InMemoryStateStore()
        store.corrupted.add(STATE_PATH)
        result = make_service(FakeStarSource(make_repos(3)), store).run_cycle("octocat", STATE_PATH)

        assert result.is_first_run
        assert result.changes.total_changes == 0
        assert store.load(STATE_PATH).total_count == 3

    def test_undecodable_state_file_rebuilds_baseline(self, tmp_path: Path):
        """Scenario: a state file with invalid UTF-8 is treated as corrupted."""
        path = tmp_path / "octocat.json"
        path.write_bytes(b'{"username": "octo\xff\xfe"}')
        store = JsonStateStore()
        result = make_service(FakeStarSource(make_repos(3)), store).run_cycle("octocat", path)

        assert result.is_first_run
        assert store.load(path).total_count == 3

    def test_string_state_path_reaches_store_as_path(self):
        class RecordingStore(InMemoryStateStore):
            def __init__(self) -> None:
                super().__init__()
                self.paths: list = []

            def load(self, path):
                self.paths.append(path)
                return super().load(path)

            def save(self, path, state):
                self.paths.append(path)
                super().save(path, state)

        store = RecordingStore()
        make_service(FakeStarSource(make_repos(1)), store).run_cycle("octocat", str(STATE_PATH))
        assert store.paths == [STATE_PATH, STATE_PATH]
        assert all(isinstance(p, Path) for p in store.paths)

    def test_rate_limit_then_recovery(self):
        """Scenario: a rate-limited page is retried after the reported reset time."""
        reset_at = utc_now() + timedelta(seconds=2)
        source = FakeStarSource(
            make_repos(3), failures=[RateLimitError(reset_at=reset_at, limit=60, remaining=0)]
        )
        config = AppConfig(retry=RetryConfig(max_retries=2, rate_limit_buffer=0.0, jitter_ratio=0.0))
        service = make_service(source, config=config)

        started = time.monotonic()
        result = service.run_cycle("octocat", STATE_PATH)
        elapsed = time.monotonic() - started

        assert elapsed >= 1.5
        assert result.total_repositories == 3
        assert len(source.calls) == 2

    def test_state_username_mismatch_rebuilds_baseline(self):
        store = InMemoryStateStore()
        store.save(STATE_PATH, UserState.new("someone-else").model_copy(update={"check_count": 4}))
        result = make_service(FakeStarSource(make_repos(2)), store).run_cycle("octocat", STATE_PATH)
        assert result.is_first_run
        assert store.load(STATE_PATH).username == "octocat"

    def test_legacy_state_is_migrated(self):
        store = InMemoryStateStore()
        legacy = UserState(
            username="octocat",
            repositories=make_repos(2),
            total_count=2,
            check_count=5,
            last_check=BASE_TIME,
            incremental_enabled=False,
            full_sync_interval=0,
        )
        store.save(STATE_PATH, legacy)
        make_service(FakeStarSource(make_repos(2)), store).run_cycle("octocat", STATE_PATH)

        saved = store.load(STATE_PATH)
        assert saved.incremental_enabled
        assert saved.full_sync_interval == 24


class TestFailures:
    def test_invalid_username_aborts_before_state(self):
        store = InMemoryStateStore()
        source = FakeStarSource(make_repos(2))
        with pytest.raises(EntityValidationError):
            make_service(source, store).run_cycle("bad_user!", STATE_PATH)
        assert source.validate_calls == 0
        assert store.files == {}

    def test_unknown_user_aborts_before_state(self):
        store = InMemoryStateStore()
        source = FakeStarSource(make_repos(2), user_exists=False)
        with pytest.raises(EntityNotFoundError):
            make_service(source, store).run_cycle("ghost", STATE_PATH)
        assert store.save_count == 0
        assert source.closed

    def test_persistence_failure_raises(self):
        store = InMemoryStateStore()
        store.fail_saves = True
        with pytest.raises(PersistenceError):
            make_service(FakeStarSource(make_repos(2)), store).run_cycle("octocat", STATE_PATH)

    def test_incremental_failure_without_fallback(self):
        store = InMemoryStateStore()
        source = FakeStarSource(make_repos(3))
        config = AppConfig(retry=FAST_RETRY, incremental=IncrementalConfig(fallback_on_error=False))
        service = make_service(source, store, config=config)
        service.run_cycle("octocat", STATE_PATH)
        before = store.files[STATE_PATH]

        source.failures.append(RemoteAPIError("unexpected status 422"))
        with pytest.raises(IncrementalFetchError):
            service.run_cycle("octocat", STATE_PATH)
        assert store.files[STATE_PATH] == before


class TestCredentialsAndProgress:
    def test_token_passed_to_source_factory(self):
        service = make_service(FakeStarSource(make_repos(1)), token="ghp_secret")
        service.run_cycle("octocat", STATE_PATH)
        assert service.tokens_seen == ["ghp_secret"]

    def test_unauthenticated_without_credential(self):
        messages: list[str] = []
        service = make_service(FakeStarSource(make_repos(1)), progress_callback=messages.append)
        service.run_cycle("octocat", STATE_PATH)
        assert service.tokens_seen == [None]
        assert any("unauthenticated" in m for m in messages)
        assert messages[-1] == "Monitor complete"


class TestMultipleUsers:
    def test_users_run_independently(self):
        store = InMemoryStateStore()
        sources = {
            "alice": FakeStarSource(make_repos(3)),
            "bob": FakeStarSource(make_repos(2), user_exists=False),
            "carol": FakeStarSource(make_repos(5)),
        }
        lock = threading.Lock()
        handed_out: list[FakeStarSource] = []
        pending = {name: source for name, source in sources.items()}

        def factory(token):
            # One worker, so sources are handed out in submission order
            with lock:
                name = next(iter(pending))
                source = pending.pop(name)
                handed_out.append(source)
                return source

        service = MonitorService(
            config=AppConfig(retry=FAST_RETRY, max_workers=1),
            store=store,
            credentials=StaticCredentials(),
            source_factory=factory,
        )
        results, errors = service.monitor_users(
            ["alice", "bob", "carol"], lambda name: Path(f"/state/{name}.json")
        )

        assert list(results) == ["alice", "carol"]
        assert list(errors) == ["bob"]
        assert isinstance(errors["bob"], EntityNotFoundError)
        assert results["alice"].total_repositories == 3
        assert results["carol"].total_repositories == 5
        assert len(handed_out) == 3

    def test_duplicate_usernames_checked_once(self):
        store = InMemoryStateStore()
        service = make_service(FakeStarSource(make_repos(2)), store)
        results, errors = service.monitor_users(
            ["octocat", "octocat"], lambda name: Path(f"/state/{name}.json")
        )
        assert list(results) == ["octocat"]
        assert errors == {}
        assert store.save_count == 1

    def test_unexpected_exception_is_contained_per_user(self):
        class BrokenForBob(InMemoryStateStore):
            def load(self, path):
                if path.stem == "bob":
                    raise RuntimeError("disk controller on fire")
                return super().load(path)

        store = BrokenForBob()
        service = make_service(
            FakeStarSource(make_repos(2)), store, config=AppConfig(retry=FAST_RETRY, max_workers=1)
        )
        results, errors = service.monitor_users(
            ["alice", "bob", "carol"], lambda name: Path(f"/state/{name}.json")
        )

        assert list(results) == ["alice", "carol"]
        assert isinstance(errors["bob"], UnexpectedError)
        assert errors["bob"].kind is ErrorKind.UNKNOWN
        assert "disk controller on fire" in errors["bob"].user_message()
