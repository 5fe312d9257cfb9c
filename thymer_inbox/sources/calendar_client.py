"""Google Calendar adapter and the OAuth token provider it depends on."""

import json
import threading
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Iterator, Protocol
from urllib.parse import quote

import requests
import structlog

from thymer_inbox.exceptions import FetchError
from thymer_inbox.models.record import EventRecord, RetractionPolicy, SourceKind
from thymer_inbox.sources.base import HttpSourceAdapter

log = structlog.stdlib.get_logger()

TOKEN_URL = "https://oauth2.googleapis.com/token"


class CredentialProvider(Protocol):
    """Anything that can hand out a currently valid bearer token."""

    def access_token(self) -> str: ...


class GoogleTokenFile:
    """OAuth token stored as JSON on disk, refreshed in place when it expires.

    The file is written by the browser consent flow and holds at least
    ``access_token``; with ``refresh_token`` and ``expiry`` present the token
    is refreshed against Google's token endpoint a minute before it expires.
    """

    REFRESH_MARGIN = timedelta(seconds=60)

    def __init__(
        self,
        path: Path,
        client_id: str | None = None,
        client_secret: str | None = None,
        session: requests.Session | None = None,
        token_url: str = TOKEN_URL,
        timeout: float = 20.0,
    ):
        self._path = Path(path)
        self._client_id = client_id
        self._client_secret = client_secret
        self._session = session or requests.Session()
        self._token_url = token_url
        self._timeout = timeout
        self._token: dict[str, Any] | None = None
        self._lock = threading.Lock()

    def access_token(self) -> str:
        with self._lock:
            if self._token is None:
                self._token = self._load()
            if self._is_expired(self._token):
                self._token = self._refresh(self._token)
            return self._token["access_token"]

    def _load(self) -> dict[str, Any]:
        try:
            token = json.loads(self._path.read_text())
        except FileNotFoundError as e:
            raise FetchError(
                f"Google token file not found: {self._path}", source=SourceKind.CALENDAR.value
            ) from e
        except (OSError, ValueError) as e:
            raise FetchError(
                f"Google token file {self._path} is unreadable: {e}",
                source=SourceKind.CALENDAR.value,
            ) from e

        if not isinstance(token, dict) or not token.get("access_token"):
            raise FetchError(
                f"Google token file {self._path} has no access_token",
                source=SourceKind.CALENDAR.value,
            )
        return token

    def _is_expired(self, token: dict[str, Any]) -> bool:
        expiry = token.get("expiry")
        if not expiry:
            return False
        try:
            expires_at = datetime.fromisoformat(str(expiry).replace("Z", "+00:00"))
        except ValueError:
            return True
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return datetime.now(timezone.utc) >= expires_at - self.REFRESH_MARGIN

    def _refresh(self, token: dict[str, Any]) -> dict[str, Any]:
        refresh_token = token.get("refresh_token")
        if not refresh_token or not self._client_id or not self._client_secret:
            raise FetchError(
                "Google token expired and cannot be refreshed; re-run the auth flow",
                source=SourceKind.CALENDAR.value,
            )

        log.info("google_token_refreshing", token_file=str(self._path))
        try:
            response = self._session.post(
                self._token_url,
                data={
                    "grant_type": "refresh_token",
                    "refresh_token": refresh_token,
                    "client_id": self._client_id,
                    "client_secret": self._client_secret,
                },
                timeout=self._timeout,
            )
        except requests.RequestException as e:
            raise FetchError(
                f"Google token refresh failed: {e}", source=SourceKind.CALENDAR.value
            ) from e

        if response.status_code != 200:
            raise FetchError(
                f"Google token refresh rejected (HTTP {response.status_code})",
                source=SourceKind.CALENDAR.value,
            )

        payload = response.json()
        expires_in = int(payload.get("expires_in", 3600))
        refreshed = {
            **token,
            "access_token": payload["access_token"],
            "token_type": payload.get("token_type", token.get("token_type", "Bearer")),
            "expiry": (datetime.now(timezone.utc) + timedelta(seconds=expires_in)).isoformat(),
        }
        if payload.get("refresh_token"):
            refreshed["refresh_token"] = payload["refresh_token"]

        try:
            self._path.write_text(json.dumps(refreshed, indent=2))
        except OSError as e:
            log.warning("google_token_save_failed", token_file=str(self._path), error=str(e))

        log.info("google_token_refreshed", expires_in=expires_in)
        return refreshed


def normalize_calendar_name(calendar_id: str, calendar_name: str) -> str:
    """Collapse a calendar id/name into the label shown on calendar records."""
    lowered_id = calendar_id.lower()
    lowered_name = calendar_name.lower()

    if (
        calendar_id == "primary"
        or "@gmail.com" in lowered_id
        or "@googlemail.com" in lowered_id
    ):
        return "Primary"
    if "work" in lowered_id or "work" in lowered_name:
        return "Work"
    if "personal" in lowered_name:
        return "Personal"
    # A bare email address is the owner's main calendar
    if (
        "@" in calendar_id
        and "group.calendar.google.com" not in lowered_id
        and "import.calendar.google.com" not in lowered_id
    ):
        return "Primary"
    return calendar_name or calendar_id


class CalendarClient(HttpSourceAdapter):
    """Lists event instances in a sliding window around now, per calendar.

    Events leave the window as time passes, so absence means nothing here.
    Cancellation is read from the event's ``status`` field, which is why the
    listing asks for deleted events too.
    """

    source = SourceKind.CALENDAR
    retraction_policy = RetractionPolicy.STATUS_FIELD

    PAGE_SIZE = 250

    def __init__(
        self,
        credentials: CredentialProvider,
        calendars: list[str],
        api_url: str = "https://www.googleapis.com/calendar/v3",
        past_days: int = 7,
        future_days: int = 84,
        session: requests.Session | None = None,
        timeout: float = 20.0,
        clock: Callable[[], datetime] | None = None,
    ):
        super().__init__(session=session, timeout=timeout)
        self._credentials = credentials
        self._calendars = list(calendars)
        self._api_url = api_url.rstrip("/")
        self._past = timedelta(days=past_days)
        self._future = timedelta(days=future_days)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._calendar_names: dict[str, str] | None = None
        log.info("calendar_client_initialized", calendars=self._calendars)

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._credentials.access_token()}"}

    def scopes(self) -> list[str]:
        return list(self._calendars)

    def fetch(self, scope: str, since: datetime | None = None) -> list[EventRecord]:
        label = normalize_calendar_name(scope, self._calendar_names_by_id().get(scope, scope))
        now = self._clock()
        params = {
            "timeMin": (now - self._past).isoformat(),
            "timeMax": (now + self._future).isoformat(),
            "singleEvents": "true",
            "orderBy": "startTime",
            "showDeleted": "true",
            "maxResults": self.PAGE_SIZE,
        }
        url = f"{self._api_url}/calendars/{quote(scope, safe='')}/events"

        records = [
            self._to_record(scope, label, item) for item in self._paginate(url, params, scope)
        ]
        log.info(
            "calendar_events_fetched",
            calendar=scope,
            label=label,
            events=len(records),
            cancelled=sum(1 for record in records if record.is_retracted),
        )
        return records

    def _paginate(
        self, url: str, params: dict[str, Any], scope: str
    ) -> Iterator[dict[str, Any]]:
        page_token: str | None = None
        while True:
            page_params = dict(params)
            if page_token:
                page_params["pageToken"] = page_token
            payload = self._json(self._get(url, params=page_params, scope=scope), scope)
            yield from payload.get("items") or []
            page_token = payload.get("nextPageToken")
            if not page_token:
                return

    def _calendar_names_by_id(self) -> dict[str, str]:
        """Display names from the user's calendar list, fetched once."""
        if self._calendar_names is not None:
            return self._calendar_names

        names: dict[str, str] = {}
        try:
            response = self._get(f"{self._api_url}/users/me/calendarList")
            for entry in self._json(response, None).get("items") or []:
                names[entry.get("id", "")] = entry.get("summaryOverride") or entry.get(
                    "summary", ""
                )
        except FetchError as e:
            log.warning("calendar_list_unavailable", error=str(e))
            return names

        self._calendar_names = names
        return names

    def _to_record(self, scope: str, label: str, item: dict[str, Any]) -> EventRecord:
        attendees = [
            attendee.get("displayName") or attendee.get("email")
            for attendee in item.get("attendees") or []
            if attendee.get("displayName") or attendee.get("email")
        ]

        meet_link = item.get("hangoutLink") or ""
        if not meet_link:
            for entry in (item.get("conferenceData") or {}).get("entryPoints") or []:
                if entry.get("entryPointType") == "video":
                    meet_link = entry.get("uri", "")
                    break

        try:
            start, all_day = self._parse_when(item.get("start"))
            end, _ = self._parse_when(item.get("end"))
            return EventRecord(
                native_id=item["id"],
                calendar_id=scope,
                calendar_label=label,
                title=item.get("summary") or "",
                body=item.get("description") or "",
                location=item.get("location") or "",
                start=start,
                end=end,
                all_day=all_day,
                attendees=attendees,
                meet_link=meet_link,
                status=item.get("status") or "confirmed",
                created_at=item.get("created"),
                updated_at=item.get("updated"),
            )
        except (KeyError, ValueError) as e:
            raise FetchError(
                f"Malformed calendar event in {scope}: {e}",
                source=self.source.value,
                scope=scope,
            ) from e

    @staticmethod
    def _parse_when(when: dict[str, Any] | None) -> tuple[datetime | None, bool]:
        """Return the instant and whether it was an all-day date."""
        if not when:
            return None, False
        if when.get("dateTime"):
            return datetime.fromisoformat(when["dateTime"].replace("Z", "+00:00")), False
        if when.get("date"):
            day = date.fromisoformat(when["date"])
            return datetime(day.year, day.month, day.day, tzinfo=timezone.utc), True
        return None, False
