"""GitHub REST client for a user's starred repositories."""

from datetime import datetime, timedelta, timezone
from typing import Any
from urllib.parse import parse_qs, urlparse

import requests
import structlog
from pydantic import ValidationError
from requests.exceptions import ConnectionError, RequestException, Timeout

from star_watcher.errors import (
    AuthenticationError,
    EntityNotFoundError,
    RateLimitError,
    RemoteAPIError,
    TransientNetworkError,
)
from star_watcher.github.models import PageInfo, RateLimitInfo, StarredOptions, StarredPage
from star_watcher.interfaces import StarSource
from star_watcher.models.config import GitHubConfig
from star_watcher.models.repository import Repository

log = structlog.stdlib.get_logger()

# Adds starred_at to each item of /users/{user}/starred
STAR_MEDIA_TYPE = "application/vnd.github.star+json"
API_VERSION = "2022-11-28"


class GitHubClient(StarSource):
    """Thin wrapper around ``requests`` for the starred-repositories endpoints.

    Every HTTP failure is translated into a typed ``MonitorError`` so the
    retry executor can classify it without inspecting messages. Each
    instance owns its own ``requests.Session``.
    """

    def __init__(
        self,
        config: GitHubConfig | None = None,
        token: str | None = None,
        session: requests.Session | None = None,
    ) -> None:
        """
        Initialize the client.

        Args:
            config: API URL, timeout and page size settings
            token: Optional personal access token; None means unauthenticated
            session: Optional pre-built session (used by tests)
        """
        self.config = config or GitHubConfig()
        self._base_url = self.config.api_url.rstrip("/")
        self._session = session or requests.Session()
        self._session.headers.update(
            {
                "Accept": STAR_MEDIA_TYPE,
                "X-GitHub-Api-Version": API_VERSION,
                "User-Agent": "star-watcher",
            }
        )
        if token:
            self._session.headers["Authorization"] = f"Bearer {token}"
        self.label = "authenticated GitHub API" if token else "unauthenticated GitHub API"
        log.debug("github_client_initialized", base_url=self._base_url, authenticated=bool(token))

    def close(self) -> None:
        self._session.close()

    def validate_user(self, username: str) -> None:
        """
        Check that a GitHub user exists.

        Raises:
            EntityNotFoundError: If GitHub answers 404 for the user
        """
        self._get(f"/users/{username}", username=username)
        log.debug("github_user_validated", username=username)

    def validate_token(self) -> str:
        """
        Check the client's token against ``GET /user``.

        Returns:
            Login of the account the token belongs to

        Raises:
            AuthenticationError: If the client has no token or GitHub rejects it
        """
        if "Authorization" not in self._session.headers:
            raise AuthenticationError("no GitHub token to validate")
        response = self._get("/user", username="")
        try:
            payload = response.json()
        except ValueError as e:
            raise RemoteAPIError(
                f"invalid JSON in user response: {e}", status_code=response.status_code, url=response.url
            ) from e
        login = str(payload.get("login", "")) if isinstance(payload, dict) else ""
        log.debug("github_token_validated", login=login)
        return login

    def list_starred(self, username: str, options: StarredOptions) -> StarredPage:
        """
        Fetch one page of a user's starred repositories.

        Args:
            username: GitHub username
            options: Cursor, page size and ordering

        Returns:
            StarredPage with repositories, paging info and rate-limit snapshot

        Raises:
            MonitorError: A typed error for any HTTP or payload failure
        """
        params: dict[str, Any] = {
            "per_page": options.per_page,
            "sort": options.sort,
            "direction": options.direction,
        }
        if options.cursor:
            params["page"] = options.cursor

        response = self._get(f"/users/{username}/starred", username=username, params=params)

        try:
            payload = response.json()
        except ValueError as e:
            raise RemoteAPIError(
                f"invalid JSON in starred response: {e}",
                status_code=response.status_code,
                url=response.url,
            ) from e
        if not isinstance(payload, list):
            raise RemoteAPIError(
                "unexpected starred response shape", status_code=response.status_code, url=response.url
            )

        repositories = [self._convert_to_repository(item) for item in payload]
        next_cursor = self._next_cursor(response)

        log.debug(
            "starred_page_fetched",
            username=username,
            cursor=options.cursor or "1",
            count=len(repositories),
            has_next=bool(next_cursor),
        )
        return StarredPage(
            repositories=repositories,
            page_info=PageInfo(
                has_next=bool(next_cursor),
                next_cursor=next_cursor,
                per_page=options.per_page,
            ),
            rate_limit=self._rate_limit_from_headers(response.headers),
        )

    def _get(
        self, path: str, username: str, params: dict[str, Any] | None = None
    ) -> requests.Response:
        url = f"{self._base_url}{path}"
        try:
            response = self._session.get(url, params=params, timeout=self.config.request_timeout)
        except Timeout as e:
            raise TransientNetworkError(f"request timed out: {e}", url=url) from e
        except ConnectionError as e:
            raise TransientNetworkError(f"connection failed: {e}", url=url) from e
        except RequestException as e:
            raise RemoteAPIError(f"request failed: {e}", url=url) from e

        if response.status_code >= 400:
            self._raise_for_status(response, username)
        return response

    def _raise_for_status(self, response: requests.Response, username: str) -> None:
        status = response.status_code
        message = self._error_message(response)
        log.debug("github_request_failed", status_code=status, url=response.url, message=message)

        if status == 404:
            raise EntityNotFoundError(username)
        if status in (403, 429):
            rate_limit = self._rate_limit_from_headers(response.headers)
            retry_after = response.headers.get("Retry-After")
            exhausted = "X-RateLimit-Remaining" in response.headers and rate_limit.remaining == 0
            if exhausted or retry_after is not None or status == 429:
                reset_at = rate_limit.reset_at if exhausted else None
                if retry_after is not None and retry_after.isdigit():
                    reset_at = datetime.now(timezone.utc) + timedelta(seconds=int(retry_after))
                raise RateLimitError(
                    f"GitHub API rate limit exceeded: {message}",
                    reset_at=reset_at,
                    limit=rate_limit.limit,
                    remaining=rate_limit.remaining,
                )
        if status in (401, 403):
            raise AuthenticationError(f"GitHub rejected the request ({status}): {message}")
        if status >= 500:
            raise TransientNetworkError(
                f"GitHub server error ({status}): {message}", status_code=status, url=response.url
            )
        raise RemoteAPIError(f"unexpected status {status}: {message}", status_code=status, url=response.url)

    @staticmethod
    def _error_message(response: requests.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.reason or ""
        if isinstance(body, dict) and body.get("message"):
            return str(body["message"])
        return response.reason or ""

    @staticmethod
    def _next_cursor(response: requests.Response) -> str:
        """Page number of the ``rel="next"`` link, or empty when on the last page."""
        next_link = response.links.get("next")
        if not next_link:
            return ""
        pages = parse_qs(urlparse(next_link.get("url", "")).query).get("page")
        return pages[0] if pages else ""

    @staticmethod
    def _rate_limit_from_headers(headers: Any) -> RateLimitInfo:
        def header_int(name: str) -> int:
            value = headers.get(name)
            try:
                return max(0, int(value)) if value is not None else 0
            except ValueError:
                return 0

        reset = header_int("X-RateLimit-Reset")
        return RateLimitInfo(
            limit=header_int("X-RateLimit-Limit"),
            remaining=header_int("X-RateLimit-Remaining"),
            reset_at=datetime.fromtimestamp(reset, tz=timezone.utc) if reset else None,
            used=header_int("X-RateLimit-Used"),
        )

    def _convert_to_repository(self, item: dict) -> Repository:
        """
        Convert a star+json item into a Repository.

        Raises:
            RemoteAPIError: If required fields are missing or invalid
        """
        try:
            repo = item["repo"]
            return Repository(
                full_name=repo["full_name"],
                description=repo.get("description"),
                star_count=repo.get("stargazers_count", 0),
                updated_at=repo.get("updated_at"),
                url=repo.get("html_url", ""),
                starred_at=item["starred_at"],
                language=repo.get("language"),
                private=repo.get("private", False),
            )
        except (KeyError, TypeError) as e:
            raise RemoteAPIError(f"missing field in starred item: {e}") from e
        except ValidationError as e:
            raise RemoteAPIError(f"invalid starred item: {e}") from e
