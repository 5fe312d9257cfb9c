"""Readwise Reader adapter turning the document feed into highlighted documents."""

from datetime import datetime, timezone
from typing import Any, Iterator

import requests
import structlog
from pydantic import ValidationError

from thymer_inbox.exceptions import FetchError
from thymer_inbox.models.record import (
    DocumentRecord,
    HighlightRecord,
    RetractionPolicy,
    SourceKind,
)
from thymer_inbox.sources.base import HttpSourceAdapter

log = structlog.stdlib.get_logger()

READER_SCOPE = "reader"


class ReadwiseClient(HttpSourceAdapter):
    """Pages through the Reader list feed modified since the last clean sync.

    The feed mixes documents and highlights; a highlight is any item with a
    ``parent_id``. Only documents that end up with at least one highlight
    are returned.
    """

    source = SourceKind.READWISE
    retraction_policy = RetractionPolicy.NEVER
    uses_watermark = True

    def __init__(
        self,
        token: str,
        api_url: str = "https://readwise.io/api/v3/list/",
        session: requests.Session | None = None,
        timeout: float = 20.0,
    ):
        super().__init__(session=session, timeout=timeout)
        self._token = token
        self._api_url = api_url
        log.info("readwise_client_initialized", api_url=api_url)

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Token {self._token}"}

    def scopes(self) -> list[str]:
        return [READER_SCOPE]

    def fetch(self, scope: str, since: datetime | None = None) -> list[DocumentRecord]:
        params: dict[str, Any] = {}
        if since is not None:
            if since.tzinfo is None:
                since = since.replace(tzinfo=timezone.utc)
            params["updatedAfter"] = since.astimezone(timezone.utc).isoformat()

        documents: dict[str, dict[str, Any]] = {}
        highlights: dict[str, list[dict[str, Any]]] = {}
        for item in self._paginate(params, scope):
            parent_id = item.get("parent_id")
            if parent_id:
                highlights.setdefault(parent_id, []).append(item)
            elif item.get("id"):
                documents[item["id"]] = item

        # Highlights on documents that were not modified in this window
        for parent_id in highlights.keys() - documents.keys():
            parent = self._fetch_document(parent_id, scope)
            if parent is not None:
                documents[parent_id] = parent

        records = [
            self._to_record(documents[doc_id], children, scope)
            for doc_id, children in highlights.items()
            if doc_id in documents
        ]
        log.info(
            "readwise_feed_fetched",
            since=since.isoformat() if since else None,
            documents=len(documents),
            highlighted_documents=len(records),
            highlights=sum(len(children) for children in highlights.values()),
        )
        return records

    def _paginate(self, params: dict[str, Any], scope: str) -> Iterator[dict[str, Any]]:
        cursor: str | None = None
        while True:
            page_params = dict(params)
            if cursor:
                page_params["pageCursor"] = cursor
            payload = self._json(self._get(self._api_url, params=page_params, scope=scope), scope)
            yield from payload.get("results") or []
            cursor = payload.get("nextPageCursor")
            if not cursor:
                return

    def _fetch_document(self, doc_id: str, scope: str) -> dict[str, Any] | None:
        payload = self._json(self._get(self._api_url, params={"id": doc_id}, scope=scope), scope)
        for item in payload.get("results") or []:
            if item.get("id") == doc_id:
                return item
        log.warning("readwise_parent_missing", document_id=doc_id)
        return None

    def _to_record(
        self, document: dict[str, Any], children: list[dict[str, Any]], scope: str
    ) -> DocumentRecord:
        try:
            return DocumentRecord(
                native_id=document["id"],
                title=document.get("title") or "",
                author=document.get("author") or "",
                category=document.get("category") or "",
                summary=document.get("summary") or "",
                url=document.get("url") or "",
                source_url=document.get("source_url") or "",
                updated_at=document.get("updated_at"),
                highlights=[
                    HighlightRecord(
                        id=child["id"],
                        content=child.get("content") or "",
                        note=child.get("notes") or child.get("note") or "",
                        updated_at=child.get("updated_at"),
                    )
                    for child in children
                ],
            )
        except (KeyError, ValidationError) as e:
            raise FetchError(
                f"Malformed Readwise item: {e}", source=self.source.value, scope=scope
            ) from e
