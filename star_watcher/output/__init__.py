"""Report rendering"""

from star_watcher.output.result_formatter import ResultFormatter

__all__ = ["ResultFormatter"]
