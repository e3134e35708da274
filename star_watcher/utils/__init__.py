"""Shared utilities for clocks, configuration, logging, and retries"""

from star_watcher.utils.clock import ensure_utc, utc_now

__all__ = ["ensure_utc", "utc_now"]
