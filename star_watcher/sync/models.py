"""Data models for monitoring cycles."""

from datetime import datetime

from pydantic import BaseModel, Field, computed_field

from star_watcher.github.models import RateLimitInfo
from star_watcher.models.repository import Repository


class ChangeSet(BaseModel):
    """Differences between the previous and the current starred repositories.

    The four lists are disjoint: each repository appears in at most one.
    """

    new_stars: list[Repository] = Field(
        default_factory=list, description="Repositories starred since the last check"
    )
    unstars: list[Repository] = Field(
        default_factory=list, description="Repositories no longer starred"
    )
    re_stars: list[Repository] = Field(
        default_factory=list, description="Repositories unstarred and starred again shortly after"
    )
    updated: list[Repository] = Field(
        default_factory=list, description="Repositories whose metadata changed"
    )
    updated_fields: dict[str, list[str]] = Field(
        default_factory=dict, description="Changed field names keyed by full_name of updated repositories"
    )

    @property
    def has_changes(self) -> bool:
        return bool(self.new_stars or self.unstars or self.re_stars or self.updated)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total_changes(self) -> int:
        return len(self.new_stars) + len(self.unstars) + len(self.re_stars) + len(self.updated)


class FetchOutcome(BaseModel):
    """Result of the fetch step: the merged repository set plus fetch telemetry."""

    repositories: list[Repository] = Field(default_factory=list, description="Merged repositories")
    rate_limit: RateLimitInfo = Field(default_factory=RateLimitInfo)
    api_calls_saved: int = Field(default=0, ge=0, description="Estimated requests avoided")
    is_full_sync: bool = Field(default=True)
    pages_fetched: int = Field(default=0, ge=0)
    fetched_count: int = Field(default=0, ge=0, description="Repositories returned by the API")
    reason: str = Field(default="", description="Why this strategy was chosen")
    fallback_used: bool = Field(default=False, description="Incremental failed and full ran instead")

    @property
    def most_recent_starred_at(self) -> datetime | None:
        if not self.repositories:
            return None
        return max(repo.starred_at for repo in self.repositories)


class MonitorResult(BaseModel):
    """Outcome of one monitoring cycle for one user."""

    username: str = Field(..., description="GitHub username that was checked")
    changes: ChangeSet = Field(default_factory=ChangeSet)
    total_repositories: int = Field(default=0, ge=0)
    previous_check: datetime | None = Field(default=None, description="Previous successful check")
    current_check: datetime = Field(..., description="When this check completed")
    rate_limit: RateLimitInfo = Field(default_factory=RateLimitInfo)
    is_first_run: bool = Field(default=False)
    is_full_sync: bool = Field(default=True)
    api_calls_saved: int = Field(default=0, ge=0)
    incremental_enabled: bool = Field(default=True)
    fallback_used: bool = Field(default=False)
