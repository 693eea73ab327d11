"""
Gmail client for Advisor_bot.

Reads recent messages for the sync job and sends mail on the user's behalf
through the Gmail API v1. Requires the user's Google account to be connected:
`python -m advisor_bot connect-google`

Errors from the API surface as ProviderError.
"""

import base64
import logging
from datetime import datetime, timedelta, timezone
from email.message import EmailMessage
from email.utils import parsedate_to_datetime
from typing import Any

from .errors import ProviderError, ValidationError

logger = logging.getLogger(__name__)


# =============================================================================
# Parsing helpers
# =============================================================================

def _decode_base64url(data: str) -> str:
    padded = data + "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8", errors="replace")


def _find_body(payload: dict, mime_type: str) -> str | None:
    """Depth-first search of a message payload for the first part of `mime_type`."""
    if payload.get("mimeType") == mime_type:
        data = (payload.get("body") or {}).get("data")
        if data:
            return _decode_base64url(data)
    for part in payload.get("parts") or []:
        found = _find_body(part, mime_type)
        if found:
            return found
    return None


def _parse_date(value: str) -> datetime | None:
    if not value:
        return None
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        logger.debug("Unparseable Date header: %r", value)
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_email(message: dict) -> dict[str, Any]:
    """Extract the fields we care about from a raw Gmail API message.

    Returns:
        Dict with id, thread_id, subject, from, to, date, body, snippet
    """
    payload = message.get("payload") or {}
    headers = {h.get("name", "").lower(): h.get("value", "") for h in payload.get("headers") or []}

    body = _find_body(payload, "text/plain")
    if body is None:
        body = _find_body(payload, "text/html")
    if body is None:
        # Single-part message without a mimeType match
        data = (payload.get("body") or {}).get("data")
        body = _decode_base64url(data) if data else message.get("snippet", "")

    return {
        "id": message.get("id", ""),
        "thread_id": message.get("threadId", ""),
        "subject": headers.get("subject", "(no subject)"),
        "from": headers.get("from", ""),
        "to": headers.get("to", ""),
        "date": _parse_date(headers.get("date", "")),
        "body": body.strip(),
        "snippet": message.get("snippet", ""),
    }


def build_raw_message(to: str, subject: str, body: str, cc: str | None = None) -> str:
    """Build an RFC 2822 message, base64url-encoded for the Gmail API."""
    msg = EmailMessage()
    msg["To"] = to
    msg["Subject"] = subject
    if cc:
        msg["Cc"] = cc
    msg.set_content(body)
    return base64.urlsafe_b64encode(msg.as_bytes()).decode("ascii")


# =============================================================================
# Client
# =============================================================================

class GmailClient:
    """Thin wrapper over the Gmail API v1 service for one user."""

    def __init__(self, service):
        self.service = service

    @classmethod
    def for_user(cls, user, accounts) -> "GmailClient":
        """Build an authenticated client, refreshing the user's token if needed."""
        from googleapiclient.discovery import build

        from .accounts import google_credentials

        creds = google_credentials(user, accounts)
        return cls(build("gmail", "v1", credentials=creds, cache_discovery=False))

    def _execute(self, request, action: str) -> dict:
        import httplib2
        from google.auth.exceptions import GoogleAuthError
        from googleapiclient.errors import HttpError

        try:
            return request.execute()
        except HttpError as e:
            status = getattr(e.resp, "status", None)
            logger.error("Gmail %s failed: %s", action, e)
            raise ProviderError(f"Failed to {action}: {status}", status) from e
        except (httplib2.HttpLib2Error, GoogleAuthError, OSError) as e:
            logger.error("Gmail %s failed: %s", action, e)
            raise ProviderError(f"Failed to {action}: {e}") from e

    def list_messages(self, query: str | None = None, max_results: int = 100) -> list[dict]:
        """List message ids (newest first), following pages up to max_results."""
        messages: list[dict] = []
        page_token = None

        while len(messages) < max_results:
            params: dict[str, Any] = {"userId": "me", "maxResults": min(500, max_results - len(messages))}
            if query:
                params["q"] = query
            if page_token:
                params["pageToken"] = page_token

            response = self._execute(self.service.users().messages().list(**params), "list emails")
            messages.extend(response.get("messages", []))
            page_token = response.get("nextPageToken")
            if not page_token:
                break

        return messages[:max_results]

    def get_email(self, message_id: str) -> dict[str, Any]:
        """Fetch one message and return it parsed (see parse_email)."""
        raw = self._execute(
            self.service.users().messages().get(userId="me", id=message_id, format="full"),
            "get email",
        )
        return parse_email(raw)

    def sync_recent_emails(self, days: int = 30, max_results: int = 100) -> list[dict[str, Any]]:
        """Fetch and parse the emails received in the last `days` days.

        Messages that fail to download are logged and skipped.
        """
        cutoff = datetime.now(timezone.utc) - timedelta(days=days)
        query = f"after:{cutoff.strftime('%Y/%m/%d')}"

        emails = []
        for item in self.list_messages(query=query, max_results=max_results):
            try:
                emails.append(self.get_email(item["id"]))
            except ProviderError as e:
                logger.warning("Skipping message %s: %s", item.get("id"), e)
        return emails

    def send_email(
        self,
        to: str,
        subject: str,
        body: str,
        cc: str | None = None,
        thread_id: str | None = None,
    ) -> dict[str, Any]:
        """Send a plain text email from the user's account.

        Returns:
            Dict with the sent message's id and thread_id
        """
        if not to or "@" not in to:
            raise ValidationError(f"Invalid recipient: {to!r}")

        message: dict[str, Any] = {"raw": build_raw_message(to, subject, body, cc)}
        if thread_id:
            message["threadId"] = thread_id

        sent = self._execute(
            self.service.users().messages().send(userId="me", body=message),
            "send email",
        )
        logger.info("Sent email %s to %s", sent.get("id"), to)
        return {"id": sent.get("id"), "thread_id": sent.get("threadId"), "to": to, "subject": subject}
