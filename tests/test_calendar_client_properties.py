"""Tests for the Google Calendar adapter, its token file and calendar labels."""

import json
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

import pytest
from conftest import BASE_TIME, mock_response

from thymer_inbox.exceptions import FetchError
from thymer_inbox.models.record import RetractionPolicy
from thymer_inbox.sources.calendar_client import (
    CalendarClient,
    GoogleTokenFile,
    normalize_calendar_name,
)

CALENDAR_LIST = mock_response(
    payload={"items": [{"id": "team@group.calendar.google.com", "summary": "Team"}]}
)


def event_payload(event_id: str = "evt1", **extra) -> dict:
    payload = {
        "id": event_id,
        "summary": "Standup",
        "description": "Daily sync",
        "location": "Room 4",
        "status": "confirmed",
        "start": {"dateTime": "2025-03-02T09:00:00+01:00"},
        "end": {"dateTime": "2025-03-02T09:30:00+01:00"},
        "updated": "2025-03-01T10:00:00Z",
    }
    payload.update(extra)
    return payload


def make_client(*responses, calendars=("team@group.calendar.google.com",)):
    credentials = Mock()
    credentials.access_token.return_value = "ya29.test"
    session = Mock()
    session.get.side_effect = list(responses)
    client = CalendarClient(
        credentials=credentials,
        calendars=list(calendars),
        session=session,
        clock=lambda: BASE_TIME,
    )
    return client, session


class TestFetch:
    def test_events_are_normalized(self):
        client, _ = make_client(
            CALENDAR_LIST,
            mock_response(
                payload={
                    "items": [
                        event_payload(
                            attendees=[
                                {"email": "a@example.com", "displayName": "Ada"},
                                {"email": "b@example.com"},
                                {},
                            ],
                            hangoutLink="https://meet.google.com/abc",
                        )
                    ]
                }
            ),
        )

        [record] = client.fetch("team@group.calendar.google.com")

        assert record.id == "gcal_evt1"
        assert record.calendar_label == "Team"
        assert record.attendees == ["Ada", "b@example.com"]
        assert record.meet_link == "https://meet.google.com/abc"
        assert record.start == datetime(2025, 3, 2, 8, 0, tzinfo=timezone.utc)
        assert record.all_day is False

    def test_all_day_events(self):
        client, _ = make_client(
            CALENDAR_LIST,
            mock_response(
                payload={
                    "items": [
                        event_payload(start={"date": "2025-03-05"}, end={"date": "2025-03-06"})
                    ]
                }
            ),
        )

        [record] = client.fetch("team@group.calendar.google.com")

        assert record.all_day is True
        assert record.start == datetime(2025, 3, 5, tzinfo=timezone.utc)

    def test_video_entry_point_is_used_without_hangout_link(self):
        conference = {
            "entryPoints": [
                {"entryPointType": "phone", "uri": "tel:+1"},
                {"entryPointType": "video", "uri": "https://zoom.us/j/1"},
            ]
        }
        client, _ = make_client(
            CALENDAR_LIST,
            mock_response(payload={"items": [event_payload(conferenceData=conference)]}),
        )

        [record] = client.fetch("team@group.calendar.google.com")

        assert record.meet_link == "https://zoom.us/j/1"

    def test_window_and_deleted_events_are_requested(self):
        client, session = make_client(CALENDAR_LIST, mock_response(payload={"items": []}))

        client.fetch("team@group.calendar.google.com")

        call = session.get.call_args_list[1]
        assert call.args[0] == (
            "https://www.googleapis.com/calendar/v3/calendars/"
            "team%40group.calendar.google.com/events"
        )
        params = call.kwargs["params"]
        assert params["showDeleted"] == "true"
        assert params["singleEvents"] == "true"
        assert params["timeMin"] == (BASE_TIME - timedelta(days=7)).isoformat()
        assert params["timeMax"] == (BASE_TIME + timedelta(days=84)).isoformat()
        assert call.kwargs["headers"] == {"Authorization": "Bearer ya29.test"}

    def test_cancelled_events_are_returned(self):
        client, _ = make_client(
            CALENDAR_LIST,
            mock_response(payload={"items": [event_payload(status="cancelled")]}),
        )

        [record] = client.fetch("team@group.calendar.google.com")

        assert record.is_retracted
        assert client.retraction_policy is RetractionPolicy.STATUS_FIELD

    def test_pages_follow_next_page_token(self):
        client, session = make_client(
            CALENDAR_LIST,
            mock_response(payload={"items": [event_payload("a")], "nextPageToken": "p2"}),
            mock_response(payload={"items": [event_payload("b")]}),
        )

        records = client.fetch("team@group.calendar.google.com")

        assert [r.id for r in records] == ["gcal_a", "gcal_b"]
        assert session.get.call_args_list[2].kwargs["params"]["pageToken"] == "p2"

    def test_calendar_list_is_fetched_once(self):
        client, session = make_client(
            CALENDAR_LIST,
            mock_response(payload={"items": []}),
            mock_response(payload={"items": []}),
        )

        client.fetch("team@group.calendar.google.com")
        client.fetch("team@group.calendar.google.com")

        assert session.get.call_count == 3

    def test_calendar_list_failure_is_not_fatal(self):
        client, _ = make_client(
            mock_response(status_code=403),
            mock_response(payload={"items": [event_payload()]}),
        )

        [record] = client.fetch("team@group.calendar.google.com")

        assert record.calendar_label == "team@group.calendar.google.com"


class TestErrors:
    def test_event_without_id_is_a_fetch_error(self):
        broken = event_payload()
        del broken["id"]
        client, _ = make_client(CALENDAR_LIST, mock_response(payload={"items": [broken]}))

        with pytest.raises(FetchError, match="Malformed"):
            client.fetch("team@group.calendar.google.com")

    def test_bad_date_is_a_fetch_error(self):
        client, _ = make_client(
            CALENDAR_LIST,
            mock_response(payload={"items": [event_payload(start={"date": "soon"})]}),
        )

        with pytest.raises(FetchError):
            client.fetch("team@group.calendar.google.com")


class TestGoogleTokenFile:
    def test_valid_token_is_returned_without_refresh(self, tmp_path):
        path = tmp_path / "token.json"
        expiry = (datetime.now(timezone.utc) + timedelta(hours=1)).isoformat()
        path.write_text(json.dumps({"access_token": "abc", "expiry": expiry}))
        session = Mock()

        assert GoogleTokenFile(path, session=session).access_token() == "abc"
        session.post.assert_not_called()

    def test_expired_token_is_refreshed_and_saved(self, tmp_path):
        path = tmp_path / "token.json"
        path.write_text(
            json.dumps(
                {
                    "access_token": "old",
                    "refresh_token": "r1",
                    "expiry": "2020-01-01T00:00:00Z",
                }
            )
        )
        session = Mock()
        session.post.return_value = mock_response(
            payload={"access_token": "new", "expires_in": 3600}
        )
        tokens = GoogleTokenFile(path, client_id="cid", client_secret="secret", session=session)

        assert tokens.access_token() == "new"
        assert tokens.access_token() == "new"

        session.post.assert_called_once()
        assert session.post.call_args.kwargs["data"]["grant_type"] == "refresh_token"
        saved = json.loads(path.read_text())
        assert saved["access_token"] == "new"
        assert saved["refresh_token"] == "r1"

    def test_expired_token_without_client_credentials(self, tmp_path):
        path = tmp_path / "token.json"
        path.write_text(
            json.dumps(
                {"access_token": "old", "refresh_token": "r1", "expiry": "2020-01-01T00:00:00Z"}
            )
        )

        with pytest.raises(FetchError, match="re-run the auth flow"):
            GoogleTokenFile(path, session=Mock()).access_token()

    def test_rejected_refresh(self, tmp_path):
        path = tmp_path / "token.json"
        path.write_text(
            json.dumps(
                {"access_token": "old", "refresh_token": "r1", "expiry": "2020-01-01T00:00:00Z"}
            )
        )
        session = Mock()
        session.post.return_value = mock_response(status_code=400)

        with pytest.raises(FetchError, match="HTTP 400"):
            GoogleTokenFile(path, "cid", "secret", session=session).access_token()

    def test_missing_file(self, tmp_path):
        with pytest.raises(FetchError, match="not found"):
            GoogleTokenFile(tmp_path / "absent.json", session=Mock()).access_token()

    def test_file_without_access_token(self, tmp_path):
        path = tmp_path / "token.json"
        path.write_text(json.dumps({"refresh_token": "r1"}))

        with pytest.raises(FetchError, match="no access_token"):
            GoogleTokenFile(path, session=Mock()).access_token()


class TestNormalizeCalendarName:
    @pytest.mark.parametrize(
        ("calendar_id", "name", "expected"),
        [
            ("primary", "anything", "Primary"),
            ("me@gmail.com", "Me", "Primary"),
            ("team@group.calendar.google.com", "Work projects", "Work"),
            ("team@group.calendar.google.com", "Personal stuff", "Personal"),
            ("team@group.calendar.google.com", "Family", "Family"),
            ("me@company.com", "Me", "Primary"),
            ("team@group.calendar.google.com", "", "team@group.calendar.google.com"),
        ],
    )
    def test_labels(self, calendar_id: str, name: str, expected: str):
        assert normalize_calendar_name(calendar_id, name) == expected
