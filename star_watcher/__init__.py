"""Monitor GitHub users' starred repositories and report what changed between runs."""

__version__ = "0.1.0"
