"""Base classes shared by every source adapter."""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, ClassVar

import requests
import structlog

from thymer_inbox.exceptions import FetchError, RateLimitedError, TransientHTTPError
from thymer_inbox.models.record import RetractionPolicy, SourceKind, SyncRecord
from thymer_inbox.utils.retry import exponential_backoff_retry

log = structlog.stdlib.get_logger()

USER_AGENT = "thymer-inbox"


class SourceAdapter(ABC):
    """Fetches the complete current state of one remote source, scope by scope.

    ``fetch`` either returns every live record in the scope or raises; it
    never returns a partial page set. Adapters do not touch the snapshot
    store.
    """

    source: ClassVar[SourceKind]
    retraction_policy: ClassVar[RetractionPolicy] = RetractionPolicy.NEVER
    uses_watermark: ClassVar[bool] = False

    @abstractmethod
    def scopes(self) -> list[str]:
        """Configured scopes to poll, e.g. repositories or calendar ids."""

    @abstractmethod
    def fetch(self, scope: str, since: datetime | None = None) -> list[SyncRecord]:
        """Fetch every record in ``scope``.

        Args:
            scope: One entry of ``scopes()``
            since: Watermark of the last clean sync, only used when
                ``uses_watermark`` is set

        Raises:
            FetchError: If the scope cannot be fetched completely
        """

    def close(self) -> None:
        """Release network resources."""


class HttpSourceAdapter(SourceAdapter):
    """Adapter talking JSON over HTTP through a shared ``requests.Session``."""

    def __init__(self, session: requests.Session | None = None, timeout: float = 20.0):
        self._session = session or requests.Session()
        self._session.headers.setdefault("User-Agent", USER_AGENT)
        self._timeout = timeout

    def _headers(self) -> dict[str, str]:
        """Per-request headers, typically authentication."""
        return {}

    @exponential_backoff_retry(
        max_retries=3,
        base_delay=1.0,
        max_delay=30.0,
        exceptions=(TransientHTTPError,),
    )
    def _get(
        self,
        url: str,
        params: dict[str, Any] | None = None,
        scope: str | None = None,
    ) -> requests.Response:
        """GET one page, retrying transient failures and rate limits."""
        try:
            response = self._session.get(
                url, params=params, headers=self._headers(), timeout=self._timeout
            )
        except (requests.ConnectionError, requests.Timeout) as e:
            raise TransientHTTPError(
                f"{self.source.value} request failed: {e}",
                source=self.source.value,
                scope=scope,
            ) from e
        except requests.RequestException as e:
            raise FetchError(
                f"{self.source.value} request failed: {e}",
                source=self.source.value,
                scope=scope,
            ) from e

        self._raise_for_status(response, url, scope)
        return response

    def _raise_for_status(
        self, response: requests.Response, url: str, scope: str | None
    ) -> None:
        """Map an upstream status code onto the adapter error taxonomy."""
        status = response.status_code
        if 200 <= status < 300:
            return

        if status == 429:
            raise RateLimitedError(
                f"{self.source.value} rate limited (HTTP 429)",
                retry_after=self._retry_after(response),
                source=self.source.value,
                scope=scope,
            )

        if status >= 500:
            raise TransientHTTPError(
                f"{self.source.value} returned HTTP {status} for {url}",
                source=self.source.value,
                scope=scope,
            )

        log.warning(
            "upstream_request_rejected",
            source=self.source.value,
            scope=scope,
            status=status,
            url=url,
        )
        raise FetchError(
            f"{self.source.value} returned HTTP {status} for {url}",
            source=self.source.value,
            scope=scope,
        )

    @staticmethod
    def _retry_after(response: requests.Response) -> float | None:
        value = response.headers.get("Retry-After")
        if value is None:
            return None
        try:
            return max(float(value), 0.0)
        except ValueError:
            return None

    def _json(self, response: requests.Response, scope: str | None) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise FetchError(
                f"{self.source.value} returned a malformed JSON body",
                source=self.source.value,
                scope=scope,
            ) from e

    def close(self) -> None:
        self._session.close()
