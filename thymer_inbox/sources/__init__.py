"""Adapters that fetch and normalize remote records."""

from thymer_inbox.sources.base import HttpSourceAdapter, SourceAdapter
from thymer_inbox.sources.calendar_client import (
    CalendarClient,
    CredentialProvider,
    GoogleTokenFile,
    normalize_calendar_name,
)
from thymer_inbox.sources.github_client import GitHubClient
from thymer_inbox.sources.readwise_client import ReadwiseClient

__all__ = [
    "CalendarClient",
    "CredentialProvider",
    "GitHubClient",
    "GoogleTokenFile",
    "HttpSourceAdapter",
    "ReadwiseClient",
    "SourceAdapter",
    "normalize_calendar_name",
]
