"""GitHub REST API adapter.

The client lives in ``star_watcher.github.client``; it is not re-exported
here because it depends on ``star_watcher.interfaces``, which imports these
models.
"""

from star_watcher.github.models import PageInfo, RateLimitInfo, StarredOptions, StarredPage

__all__ = ["PageInfo", "RateLimitInfo", "StarredOptions", "StarredPage"]
