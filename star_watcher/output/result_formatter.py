"""Rendering of monitoring results as text reports or JSON."""

import json
from datetime import datetime
from typing import Any

import structlog

from star_watcher.errors import MonitorError
from star_watcher.github.models import RateLimitInfo
from star_watcher.models.repository import Repository
from star_watcher.sync.models import MonitorResult

log = structlog.stdlib.get_logger()

OUTPUT_FORMATS = ("text", "json")

SEPARATOR = "=" * 50


class ResultFormatter:
    """Formats monitor results for the console.

    Text output is meant for people; JSON output is a stable document for
    scripts, with one entry per user and one per failed user.
    """

    def __init__(self, output_format: str = "text", verbose: bool = False) -> None:
        """Initialize the result formatter.

        Args:
            output_format: "text" or "json"
            verbose: Include changed-field details and fetch statistics in text output
        """
        if output_format not in OUTPUT_FORMATS:
            raise ValueError(f"unsupported output format: {output_format}")
        self.output_format = output_format
        self.verbose = verbose

    def format_result(self, result: MonitorResult) -> str:
        if self.output_format == "json":
            return json.dumps(result.model_dump(mode="json"), indent=2)
        return self._format_text(result)

    def format_results(
        self, results: dict[str, MonitorResult], errors: dict[str, MonitorError]
    ) -> str:
        """Format the outcome of a multi-user run.

        A single successful user is rendered exactly like ``format_result``.
        """
        log.debug(
            "results_formatted",
            output_format=self.output_format,
            succeeded=len(results),
            failed=len(errors),
        )
        if len(results) == 1 and not errors:
            return self.format_result(next(iter(results.values())))

        if self.output_format == "json":
            document = {
                "results": [result.model_dump(mode="json") for result in results.values()],
                "errors": [self._error_entry(name, error) for name, error in errors.items()],
                "summary": {
                    "users": len(results) + len(errors),
                    "succeeded": len(results),
                    "failed": len(errors),
                    "total_changes": sum(r.changes.total_changes for r in results.values()),
                },
            }
            return json.dumps(document, indent=2)

        sections = [self._format_text(result) for result in results.values()]
        for name, error in errors.items():
            sections.append(f"Error monitoring {name}: {error.user_message()}")
        sections.append(
            f"Checked {len(results) + len(errors)} users: "
            f"{len(results)} succeeded, {len(errors)} failed"
        )
        return f"\n{SEPARATOR}\n".join(sections)

    def format_error(self, error: MonitorError, context: str = "") -> str:
        if self.output_format == "json":
            entry = self._error_entry(context, error)
            return json.dumps(entry, indent=2)
        prefix = f"Error {context}: " if context else "Error: "
        return prefix + error.user_message()

    def _format_text(self, result: MonitorResult) -> str:
        lines: list[str] = []

        if result.is_first_run:
            lines.append(
                f"First run for {result.username} - baseline established with "
                f"{result.total_repositories} starred repositories."
            )
            lines.append("Run again to detect newly starred repositories.")
            lines.extend(self._rate_limit_warning(result.rate_limit))
            return "\n".join(lines)

        changes = result.changes
        if not changes.has_changes:
            lines.append(f"No changes in starred repositories for {result.username}.")
        else:
            lines.append(f"GitHub stars report for {result.username}")
            lines.append("")
            lines.extend(self._section("NEWLY STARRED REPOSITORIES", changes.new_stars, "added"))
            lines.extend(self._section("UNSTARRED REPOSITORIES", changes.unstars, "removed"))
            lines.extend(self._section("RE-STARRED REPOSITORIES", changes.re_stars, "added"))
            if changes.updated:
                lines.append(f"UPDATED REPOSITORIES ({len(changes.updated)})")
                lines.append(SEPARATOR)
                for repo in changes.updated:
                    lines.append(f"* {repo.full_name}")
                    fields = changes.updated_fields.get(repo.full_name)
                    if self.verbose and fields:
                        lines.append(f"   Changes: {', '.join(fields)}")
                    lines.append(f"   {repo.url}")
                lines.append("")

        lines.append(f"Total repositories: {result.total_repositories}")
        if result.previous_check is not None:
            lines.append(f"Previous check: {self._format_time(result.previous_check)}")
        if self.verbose:
            lines.append(f"Fetch: {self._fetch_summary(result)}")
        lines.extend(self._rate_limit_warning(result.rate_limit))
        return "\n".join(lines)

    def _section(self, title: str, repositories: list[Repository], action: str) -> list[str]:
        if not repositories:
            return []
        lines = [f"{title} ({len(repositories)})", SEPARATOR]
        for repo in repositories:
            lines.extend(self._format_repository(repo, action))
        return lines

    def _format_repository(self, repo: Repository, action: str) -> list[str]:
        marker = "-" if action == "removed" else "+"
        lines = [f"{marker} {repo.full_name}"]
        if repo.description:
            lines.append(f"   {repo.description}")
        details = f"   Language: {repo.language or 'None'} | Stars: {repo.star_count}"
        if action == "added":
            details += f" | Starred: {repo.starred_at.strftime('%Y-%m-%d')}"
        lines.append(details)
        if repo.url:
            lines.append(f"   {repo.url}")
        lines.append("")
        return lines

    @staticmethod
    def _fetch_summary(result: MonitorResult) -> str:
        if result.is_full_sync:
            summary = "full sync"
            if result.fallback_used:
                summary += " (fallback after incremental failure)"
            return summary
        return f"incremental, about {result.api_calls_saved} API calls saved"

    @staticmethod
    def _rate_limit_warning(rate_limit: RateLimitInfo) -> list[str]:
        if not rate_limit.is_low:
            return []
        reset = ResultFormatter._format_time(rate_limit.reset_at) if rate_limit.reset_at else "unknown"
        return [
            f"Warning: GitHub API rate limit low "
            f"({rate_limit.remaining}/{rate_limit.limit} remaining, resets {reset})"
        ]

    @staticmethod
    def _format_time(value: datetime) -> str:
        return value.strftime("%Y-%m-%d %H:%M:%S %Z").strip()

    @staticmethod
    def _error_entry(username: str, error: MonitorError) -> dict[str, Any]:
        return {
            "username": username,
            "error": error.user_message(),
            "kind": error.kind.value,
        }
