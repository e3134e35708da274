"""Request and response models for the GitHub starred-repositories API."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field, model_validator

from star_watcher.models.repository import Repository


class RateLimitInfo(BaseModel):
    """Quota snapshot taken from the X-RateLimit-* response headers."""

    limit: int = Field(default=0, ge=0, description="Maximum requests per window")
    remaining: int = Field(default=0, ge=0, description="Requests left in the window")
    reset_at: datetime | None = Field(default=None, description="When the window resets")
    used: int = Field(default=0, ge=0, description="Requests used in the window")

    @property
    def is_low(self) -> bool:
        """Fewer than 100 requests left in a known window."""
        return self.limit > 0 and self.remaining < 100


class PageInfo(BaseModel):
    has_next: bool = False
    next_cursor: str = ""
    per_page: int = Field(default=100, ge=1, le=100)

    @model_validator(mode="after")
    def validate_cursor(self) -> "PageInfo":
        if self.has_next and not self.next_cursor:
            raise ValueError("next cursor cannot be empty when has_next is true")
        return self


class StarredOptions(BaseModel):
    """Paging and ordering options for one list request."""

    cursor: str = Field(default="", description="Opaque page cursor, empty for the first page")
    per_page: int = Field(default=100, ge=1, le=100, description="Items per page")
    sort: Literal["created", "updated"] = Field(
        default="created", description="'created' orders by when the star was added"
    )
    direction: Literal["asc", "desc"] = Field(default="desc")


class StarredPage(BaseModel):
    """One page of starred repositories with paging and quota metadata."""

    repositories: list[Repository] = Field(default_factory=list)
    page_info: PageInfo = Field(default_factory=PageInfo)
    rate_limit: RateLimitInfo = Field(default_factory=RateLimitInfo)
