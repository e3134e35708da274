"""Fetch planning, change detection and the monitoring cycle."""

from star_watcher.sync.change_detector import ChangeDetector
from star_watcher.sync.fetch_planner import IncrementalFetchPlanner
from star_watcher.sync.models import ChangeSet, FetchOutcome, MonitorResult
from star_watcher.sync.monitor_service import MonitorService

__all__ = [
    "ChangeDetector",
    "ChangeSet",
    "FetchOutcome",
    "IncrementalFetchPlanner",
    "MonitorResult",
    "MonitorService",
]
