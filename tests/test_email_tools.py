"""Tests for Gmail and Calendar parsing and the Gmail send path."""

import base64
import email
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from advisor_bot.calendar_tools import CalendarClient, _parse_event
from advisor_bot.email_tools import GmailClient, build_raw_message, parse_email
from advisor_bot.errors import ProviderError, ValidationError


def _b64(text: str) -> str:
    return base64.urlsafe_b64encode(text.encode()).decode().rstrip("=")


def test_parse_multipart_email_prefers_plain_text():
    message = {
        "id": "m1",
        "threadId": "t1",
        "snippet": "Hi there",
        "payload": {
            "mimeType": "multipart/alternative",
            "headers": [
                {"name": "Subject", "value": "Baseball"},
                {"name": "From", "value": "Bill <bill@example.com>"},
                {"name": "To", "value": "advisor@example.com"},
                {"name": "Date", "value": "Wed, 01 May 2024 15:30:00 +0000"},
            ],
            "parts": [
                {"mimeType": "text/html", "body": {"data": _b64("<p>html</p>")}},
                {"mimeType": "text/plain", "body": {"data": _b64("Plain body text")}},
            ],
        },
    }

    parsed = parse_email(message)

    assert parsed["subject"] == "Baseball"
    assert parsed["from"] == "Bill <bill@example.com>"
    assert parsed["body"] == "Plain body text"
    assert parsed["date"] == datetime(2024, 5, 1, 15, 30, tzinfo=timezone.utc)


def test_parse_email_without_headers_or_body():
    parsed = parse_email({"id": "m2", "snippet": "just a snippet", "payload": {}})
    assert parsed["subject"] == "(no subject)"
    assert parsed["body"] == "just a snippet"
    assert parsed["date"] is None


def test_build_raw_message():
    raw = build_raw_message("jane@example.com", "Hello", "Body text", cc="boss@example.com")
    decoded = email.message_from_bytes(base64.urlsafe_b64decode(raw))
    assert decoded["To"] == "jane@example.com"
    assert decoded["Cc"] == "boss@example.com"
    assert decoded.get_payload().strip() == "Body text"


def test_send_email_calls_gmail_api():
    service = MagicMock()
    send = service.users.return_value.messages.return_value.send
    send.return_value.execute.return_value = {"id": "sent-1", "threadId": "thr-1"}

    result = GmailClient(service).send_email("jane@example.com", "Hi", "Hello")

    assert result == {"id": "sent-1", "thread_id": "thr-1", "to": "jane@example.com", "subject": "Hi"}
    assert send.call_args.kwargs["userId"] == "me"
    assert "raw" in send.call_args.kwargs["body"]


def test_send_email_rejects_bad_recipient():
    with pytest.raises(ValidationError):
        GmailClient(MagicMock()).send_email("nobody", "Hi", "Hello")


def test_parse_event_all_day_and_attendees():
    event = _parse_event({
        "id": "e1",
        "summary": "Offsite",
        "start": {"date": "2024-06-01"},
        "end": {"date": "2024-06-02"},
        "htmlLink": "https://cal/e1",
        "attendees": [{"email": "bob@example.com"}],
    })
    assert event["start"] == "2024-06-01"
    assert event["link"] == "https://cal/e1"
    assert event["attendees"] == ["bob@example.com"]


def test_create_event_invites_attendees():
    service = MagicMock()
    insert = service.events.return_value.insert
    insert.return_value.execute.return_value = {"id": "e9", "summary": "Review", "htmlLink": "https://cal/e9"}

    start = datetime(2024, 5, 11, 14, 0, tzinfo=timezone.utc)
    event = CalendarClient(service).create_event(
        "Review", start, start.replace(hour=15), attendees=["bob@example.com"]
    )

    assert event["link"] == "https://cal/e9"
    kwargs = insert.call_args.kwargs
    assert kwargs["sendUpdates"] == "all"
    assert kwargs["body"]["attendees"] == [{"email": "bob@example.com"}]
    assert kwargs["body"]["start"] == {"dateTime": "2024-05-11T14:00:00+00:00"}


def test_create_event_rejects_reversed_times():
    start = datetime(2024, 5, 11, 14, 0, tzinfo=timezone.utc)
    with pytest.raises(ValidationError):
        CalendarClient(MagicMock()).create_event("Review", start, start)


def test_transport_failures_become_provider_errors():
    service = MagicMock()
    service.users.return_value.messages.return_value.get.return_value.execute.side_effect = TimeoutError("timed out")
    with pytest.raises(ProviderError, match="get email"):
        GmailClient(service).get_email("m1")

    service = MagicMock()
    service.events.return_value.list.return_value.execute.side_effect = ConnectionResetError("reset")
    with pytest.raises(ProviderError, match="list events"):
        CalendarClient(service).list_events(
            datetime(2024, 5, 1, tzinfo=timezone.utc), datetime(2024, 5, 8, tzinfo=timezone.utc)
        )
