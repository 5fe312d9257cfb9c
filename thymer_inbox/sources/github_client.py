"""GitHub adapter listing issues and pull requests per repository."""

import time
from datetime import datetime
from typing import Any, Iterator

import requests
import structlog
from pydantic import ValidationError

from thymer_inbox.exceptions import FetchError, RateLimitedError
from thymer_inbox.models.record import IssueRecord, RetractionPolicy, SourceKind
from thymer_inbox.sources.base import HttpSourceAdapter

log = structlog.stdlib.get_logger()


class GitHubClient(HttpSourceAdapter):
    """Lists every issue and pull request, open or closed, for each configured repo.

    Closed items stay in the result set with ``state="closed"``, so a record
    dropping out of a fetch is never read as a deletion.
    """

    source = SourceKind.GITHUB
    retraction_policy = RetractionPolicy.NEVER

    PER_PAGE = 100

    def __init__(
        self,
        token: str,
        repos: list[str],
        api_url: str = "https://api.github.com",
        session: requests.Session | None = None,
        timeout: float = 20.0,
    ):
        super().__init__(session=session, timeout=timeout)
        self._token = token
        self._repos = list(repos)
        self._api_url = api_url.rstrip("/")
        log.info("github_client_initialized", repos=self._repos, api_url=self._api_url)

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }

    def scopes(self) -> list[str]:
        return list(self._repos)

    def fetch(self, scope: str, since: datetime | None = None) -> list[IssueRecord]:
        owner, name = self._split_repo(scope)
        base = f"{self._api_url}/repos/{owner}/{name}"

        records: list[IssueRecord] = []
        issue_count = 0
        for item in self._paginate(f"{base}/issues", scope):
            # The issues endpoint also lists pull requests
            if "pull_request" in item:
                continue
            records.append(self._to_record(scope, item, "issue"))
            issue_count += 1

        for item in self._paginate(f"{base}/pulls", scope):
            records.append(self._to_record(scope, item, "pull_request"))

        log.info(
            "github_repo_fetched",
            repo=scope,
            issues=issue_count,
            pull_requests=len(records) - issue_count,
        )
        return records

    def _split_repo(self, scope: str) -> tuple[str, str]:
        owner, _, name = scope.strip().partition("/")
        if not owner or not name or "/" in name:
            raise FetchError(
                f"Invalid repository {scope!r}, expected owner/repo",
                source=self.source.value,
                scope=scope,
            )
        return owner, name

    def _paginate(self, url: str, scope: str) -> Iterator[dict[str, Any]]:
        params: dict[str, Any] | None = {"state": "all", "per_page": self.PER_PAGE}
        next_url: str | None = url
        while next_url:
            response = self._get(next_url, params=params, scope=scope)
            page = self._json(response, scope)
            if not isinstance(page, list):
                raise FetchError(
                    f"Unexpected GitHub response for {scope}",
                    source=self.source.value,
                    scope=scope,
                )
            yield from page
            # The next link already carries the query string
            next_url = response.links.get("next", {}).get("url")
            params = None

    def _to_record(self, scope: str, item: dict[str, Any], item_type: str) -> IssueRecord:
        try:
            return IssueRecord(
                repo=scope,
                number=item["number"],
                item_type=item_type,
                title=item.get("title") or "",
                body=item.get("body") or "",
                state=item.get("state") or "open",
                merged=bool(item.get("merged_at")),
                url=item.get("html_url") or "",
                author=(item.get("user") or {}).get("login") or "",
                labels=[label["name"] for label in item.get("labels") or [] if label.get("name")],
                created_at=item.get("created_at"),
                updated_at=item.get("updated_at"),
                closed_at=item.get("closed_at"),
            )
        except (KeyError, TypeError, ValidationError) as e:
            raise FetchError(
                f"Malformed GitHub {item_type} in {scope}: {e}",
                source=self.source.value,
                scope=scope,
            ) from e

    def _raise_for_status(
        self, response: requests.Response, url: str, scope: str | None
    ) -> None:
        # Primary rate limits come back as 403 with an exhausted quota
        if response.status_code in (403, 429) and (
            response.headers.get("X-RateLimit-Remaining") == "0"
        ):
            raise RateLimitedError(
                "GitHub API rate limit exhausted",
                retry_after=self._reset_delay(response),
                source=self.source.value,
                scope=scope,
            )
        super()._raise_for_status(response, url, scope)

    def _reset_delay(self, response: requests.Response) -> float | None:
        retry_after = self._retry_after(response)
        if retry_after is not None:
            return retry_after
        reset = response.headers.get("X-RateLimit-Reset")
        if reset is None:
            return None
        try:
            return max(float(reset) - time.time(), 1.0)
        except ValueError:
            return None
