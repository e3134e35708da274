"""Change detection for new, removed, re-starred and updated repositories."""

from datetime import timedelta

import structlog

from star_watcher.models.config import IncrementalConfig
from star_watcher.models.repository import Repository
from star_watcher.sync.models import ChangeSet

log = structlog.stdlib.get_logger()

# Repository attributes compared to detect metadata updates
COMPARED_FIELDS = ("description", "star_count", "updated_at", "language", "private")


class ChangeDetector:
    """Classifies differences between two snapshots of a user's stars."""

    def __init__(self, config: IncrementalConfig | None = None, logger=None) -> None:
        self.config = config or IncrementalConfig()
        self._log = logger or log.bind(component="change_detector")

    @property
    def restar_threshold(self) -> timedelta:
        return timedelta(seconds=self.config.restar_threshold_seconds)

    def detect_changes(self, previous: list[Repository], current: list[Repository]) -> ChangeSet:
        """
        Compare previous and current repositories by ``full_name``.

        A repository present in both snapshots whose ``starred_at`` moved
        forward was unstarred and starred again. If it moved by at least the
        restar threshold it is reported as a new star, otherwise as a re-star.
        Only repositories that were not re-starred are checked for metadata
        updates, so every repository lands in at most one list.

        Args:
            previous: Repositories from the stored state
            current: Merged repositories from this check

        Returns:
            ChangeSet with disjoint, sorted lists
        """
        previous_map = {repo.full_name: repo for repo in previous}
        current_map = {repo.full_name: repo for repo in current}

        new_stars: list[Repository] = []
        re_stars: list[Repository] = []
        updated: list[Repository] = []
        updated_fields: dict[str, list[str]] = {}

        for name, repo in current_map.items():
            old = previous_map.get(name)
            if old is None:
                new_stars.append(repo)
                continue

            if self.config.detect_restars and repo.starred_at > old.starred_at:
                delta = repo.starred_at - old.starred_at
                if delta >= self.restar_threshold:
                    new_stars.append(repo)
                else:
                    re_stars.append(repo)
                self._log.debug(
                    "restar_detected",
                    repository=name,
                    delta_seconds=delta.total_seconds(),
                    reported_as_new=delta >= self.restar_threshold,
                )
                continue

            fields = self.changed_fields(old, repo)
            if fields:
                updated.append(repo)
                updated_fields[name] = fields

        unstars: list[Repository] = []
        if self.config.detect_unstars:
            unstars = [repo for name, repo in previous_map.items() if name not in current_map]

        new_stars.sort(key=lambda r: r.starred_at, reverse=True)
        unstars.sort(key=lambda r: r.full_name)
        re_stars.sort(key=lambda r: r.full_name)
        updated.sort(key=lambda r: r.full_name)

        change_set = ChangeSet(
            new_stars=new_stars,
            unstars=unstars,
            re_stars=re_stars,
            updated=updated,
            updated_fields=updated_fields,
        )
        self._log.info(
            "changes_detected",
            new_stars=len(new_stars),
            unstars=len(unstars),
            re_stars=len(re_stars),
            updated=len(updated),
            total_changes=change_set.total_changes,
        )
        return change_set

    @staticmethod
    def changed_fields(previous: Repository, current: Repository) -> list[str]:
        """Names of compared attributes that differ between two versions of a repository."""
        return [
            field for field in COMPARED_FIELDS if getattr(previous, field) != getattr(current, field)
        ]
