"""State persistence"""

from star_watcher.storage.state_store import JsonStateStore

__all__ = ["JsonStateStore"]
