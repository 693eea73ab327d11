"""
Google Calendar client for Advisor_bot.

Lists, searches and creates events through the Calendar API v3 using the
user's connected Google account (the same grant as Gmail).

Errors from the API surface as ProviderError.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from .config import settings
from .errors import ProviderError, ValidationError

logger = logging.getLogger(__name__)


def _parse_event(event: dict) -> dict[str, Any]:
    """Extract the fields we care about from a raw Calendar API event."""
    start = event.get("start", {})
    end = event.get("end", {})

    result: dict[str, Any] = {
        "id": event.get("id", ""),
        "summary": event.get("summary", "(no title)"),
        "start": start.get("dateTime") or start.get("date", ""),
        "end": end.get("dateTime") or end.get("date", ""),
        "location": event.get("location", ""),
        "description": event.get("description", ""),
        "link": event.get("htmlLink", ""),
    }

    attendees = event.get("attendees", [])
    if attendees:
        result["attendees"] = [a.get("email", "") for a in attendees]

    return result


def _timed_field(dt: datetime) -> dict[str, str]:
    """Build a Calendar API start/end object.

    Naive datetimes are interpreted in the configured CALENDAR_TIMEZONE.
    """
    if dt.tzinfo is None:
        return {"dateTime": dt.replace(microsecond=0).isoformat(), "timeZone": settings.calendar_timezone}
    return {"dateTime": dt.replace(microsecond=0).isoformat()}


def _rfc3339(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.isoformat()


class CalendarClient:
    """Thin wrapper over the Calendar API v3 service for one user."""

    def __init__(self, service, calendar_id: str = "primary"):
        self.service = service
        self.calendar_id = calendar_id

    @classmethod
    def for_user(cls, user, accounts) -> "CalendarClient":
        """Build an authenticated client, refreshing the user's token if needed."""
        from googleapiclient.discovery import build

        from .accounts import google_credentials

        creds = google_credentials(user, accounts)
        return cls(build("calendar", "v3", credentials=creds, cache_discovery=False))

    def _execute(self, request, action: str) -> dict:
        import httplib2
        from google.auth.exceptions import GoogleAuthError
        from googleapiclient.errors import HttpError

        try:
            return request.execute()
        except HttpError as e:
            status = getattr(e.resp, "status", None)
            logger.error("Calendar %s failed: %s", action, e)
            raise ProviderError(f"Failed to {action}: {status}", status) from e
        except (httplib2.HttpLib2Error, GoogleAuthError, OSError) as e:
            logger.error("Calendar %s failed: %s", action, e)
            raise ProviderError(f"Failed to {action}: {e}") from e

    def list_events(
        self,
        time_min: datetime,
        time_max: datetime,
        query: str | None = None,
        max_results: int = 50,
    ) -> list[dict[str, Any]]:
        """Single (expanded) events between two instants, ordered by start time."""
        params: dict[str, Any] = {
            "calendarId": self.calendar_id,
            "timeMin": _rfc3339(time_min),
            "timeMax": _rfc3339(time_max),
            "singleEvents": True,
            "orderBy": "startTime",
            "maxResults": max_results,
        }
        if query:
            params["q"] = query

        response = self._execute(self.service.events().list(**params), "list events")
        return [_parse_event(e) for e in response.get("items", [])]

    def get_upcoming_events(self, days: int = 7) -> list[dict[str, Any]]:
        now = datetime.now(timezone.utc)
        return self.list_events(now, now + timedelta(days=days))

    def search_events(self, query: str, days: int = 30) -> list[dict[str, Any]]:
        """Keyword search over events in the next `days` days."""
        now = datetime.now(timezone.utc)
        return self.list_events(now, now + timedelta(days=days), query=query)

    def create_event(
        self,
        summary: str,
        start: datetime,
        end: datetime,
        description: str | None = None,
        attendees: list[str] | None = None,
    ) -> dict[str, Any]:
        """Create an event and invite the attendees.

        Returns:
            The parsed event, including its htmlLink as "link"
        """
        if end <= start:
            raise ValidationError("Event end time must be after its start time")

        body: dict[str, Any] = {
            "summary": summary,
            "start": _timed_field(start),
            "end": _timed_field(end),
        }
        if description:
            body["description"] = description
        if attendees:
            body["attendees"] = [{"email": email} for email in attendees]

        created = self._execute(
            self.service.events().insert(
                calendarId=self.calendar_id,
                body=body,
                sendUpdates="all" if attendees else "none",
            ),
            "create event",
        )
        logger.info("Created calendar event %s", created.get("id"))
        return _parse_event(created)
