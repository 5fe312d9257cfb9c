"""Shared fixtures: temporary snapshot stores and record factories."""

from datetime import datetime, timedelta, timezone
from unittest.mock import Mock, patch

import pytest

from thymer_inbox.models.record import (
    DocumentRecord,
    EventRecord,
    HighlightRecord,
    IssueRecord,
    SourceKind,
    SyncRecord,
)
from thymer_inbox.sources.base import SourceAdapter
from thymer_inbox.storage.state_store import StateStore

BASE_TIME = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


def make_issue(number: int = 9, repo: str = "acme/api", **overrides) -> IssueRecord:
    fields = {
        "repo": repo,
        "number": number,
        "title": f"Issue {number}",
        "body": "Steps to reproduce",
        "state": "open",
        "url": f"https://github.com/{repo}/issues/{number}",
        "author": "octocat",
        "labels": ["bug"],
        "created_at": BASE_TIME,
        "updated_at": BASE_TIME,
    }
    fields.update(overrides)
    return IssueRecord(**fields)


def make_event(native_id: str = "evt1", **overrides) -> EventRecord:
    fields = {
        "native_id": native_id,
        "calendar_id": "primary",
        "calendar_label": "Primary",
        "title": "Standup",
        "body": "Daily sync",
        "location": "Room 4",
        "start": BASE_TIME + timedelta(days=1),
        "end": BASE_TIME + timedelta(days=1, minutes=30),
        "status": "confirmed",
        "updated_at": BASE_TIME,
    }
    fields.update(overrides)
    return EventRecord(**fields)


def make_document(native_id: str = "doc1", highlight_ids=("h1",), **overrides) -> DocumentRecord:
    fields = {
        "native_id": native_id,
        "title": "Deep Work: Rules",
        "author": "Cal Newport",
        "category": "book",
        "updated_at": BASE_TIME,
        "highlights": [
            HighlightRecord(id=highlight_id, content=f"Text of {highlight_id}")
            for highlight_id in highlight_ids
        ],
    }
    fields.update(overrides)
    return DocumentRecord(**fields)


def mock_response(status_code: int = 200, payload=None, headers=None, links=None) -> Mock:
    """A stand-in for ``requests.Response`` carrying only what adapters read."""
    response = Mock()
    response.status_code = status_code
    response.headers = headers or {}
    response.links = links or {}
    response.json.return_value = payload if payload is not None else {}
    return response


@pytest.fixture
def store(tmp_path) -> StateStore:
    return StateStore(tmp_path / "state")


@pytest.fixture
def no_sleep():
    with patch("thymer_inbox.utils.retry.time.sleep") as sleep:
        yield sleep


class FakeAdapter(SourceAdapter):
    """In-memory adapter: each scope maps to records, an exception, or a callable."""

    def __init__(
        self, results: dict, source: SourceKind = SourceKind.GITHUB, uses_watermark: bool = False
    ):
        self.source = source
        self.uses_watermark = uses_watermark
        self.results = results
        self.calls: list[tuple[str, datetime | None]] = []
        self.closed = False

    def scopes(self) -> list[str]:
        return list(self.results)

    def fetch(self, scope: str, since: datetime | None = None) -> list[SyncRecord]:
        self.calls.append((scope, since))
        result = self.results[scope]
        if isinstance(result, Exception):
            raise result
        if callable(result):
            return result()
        return list(result)

    def close(self) -> None:
        self.closed = True
