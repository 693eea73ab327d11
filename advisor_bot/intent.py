"""
Intent shortcut parser.

Recognizes a handful of literal phrasings (list my meetings, schedule a
meeting, send an email, look up a contact) and turns them straight into a tool
call without asking the LLM. Checks run in a fixed order and the first match
wins. A recognized intent with a missing slot asks the user for it instead of
guessing; anything unrecognized falls through to free chat.

Pure functions only: no I/O, no LLM.
"""

import re
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any

EMAIL_RE = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")
NUMBER_RE = re.compile(r"(\d+)")
DAY_MONTH_RE = re.compile(r"on\s+(\d{1,2})(?:st|nd|rd|th)?\s+(\w+)")
TIME_RE = re.compile(r"(\d{1,2})\s*(?::(\d{2}))?\s*(am|pm)?", re.IGNORECASE)
SUMMARY_STOP_RE = re.compile(r"\s+on\s+|\s+at\s+|\s+with\s+")
COMMAND_RE = re.compile(r"(send|email|write).+(to|@)\S+", re.IGNORECASE)

DEFAULT_LIST_DAYS = 7
EVENT_DURATION = timedelta(minutes=60)
DEFAULT_SUMMARY = "Meeting"
DEFAULT_SUBJECT = "Message from AI Assistant"

SCHEDULE_CLARIFICATION = (
    "I need more details to schedule the event. "
    "Please provide: who (email), when (date/time), and what (subject/title)."
)
EMAIL_CLARIFICATION = "I need the recipient's email, subject, and message body to send an email."
CONTACT_CLARIFICATION = "Please provide the contact's email address."

LIST_EVENTS_PATTERNS = [["upcoming", "meeting"], ["what", "meeting"], ["show", "calendar"], ["list", "event"]]
SCHEDULE_PATTERNS = [["schedule", "event"], ["schedule", "meeting"], ["create", "event"], ["book", "meeting"]]
SEND_EMAIL_PATTERNS = [["send", "email"], ["email", "to"], ["write", "email"]]
CONTACT_PATTERNS = [["find", "contact"], ["look up", "contact"], ["hubspot", "contact"]]

MONTHS = {
    "jan": 1, "january": 1,
    "feb": 2, "february": 2,
    "mar": 3, "march": 3,
    "apr": 4, "april": 4,
    "may": 5,
    "jun": 6, "june": 6,
    "jul": 7, "july": 7,
    "aug": 8, "august": 8,
    "sep": 9, "september": 9,
    "oct": 10, "october": 10,
    "nov": 11, "november": 11,
    "dec": 12, "december": 12,
}


@dataclass(frozen=True)
class DirectToolCall:
    """Run this tool with these arguments, no LLM needed."""
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class NeedsClarification:
    """A known intent with missing details; reply with the prompt."""
    prompt: str


@dataclass(frozen=True)
class FreeChat:
    """Nothing matched; hand the message to the agent loop."""
    message: str


Intent = DirectToolCall | NeedsClarification | FreeChat


def classify(text: str, now: datetime | None = None) -> Intent:
    """Classify a user message.

    Args:
        text: The raw user message
        now: Reference time for "today"/"tomorrow" (default: local now)

    Returns:
        DirectToolCall, NeedsClarification or FreeChat
    """
    now = now or datetime.now().astimezone()
    lower = text.lower()

    if _matches_any(lower, LIST_EVENTS_PATTERNS):
        return DirectToolCall("list_calendar_events", {"days": _first_number(text, DEFAULT_LIST_DAYS)})

    if _matches_any(lower, SCHEDULE_PATTERNS):
        details = _event_details(text, now)
        if details is None:
            return NeedsClarification(SCHEDULE_CLARIFICATION)
        return DirectToolCall("create_calendar_event", details)

    if _matches_any(lower, SEND_EMAIL_PATTERNS):
        details = _email_details(text)
        if details is None:
            return NeedsClarification(EMAIL_CLARIFICATION)
        return DirectToolCall("send_email", details)

    if _matches_any(lower, CONTACT_PATTERNS):
        email = extract_email(text)
        if email is None:
            return NeedsClarification(CONTACT_CLARIFICATION)
        return DirectToolCall("get_hubspot_contact", {"email": email})

    return FreeChat(text)


def _matches_any(text: str, patterns: list[list[str]]) -> bool:
    """True if every word of at least one pattern occurs in the text."""
    return any(all(word in text for word in words) for words in patterns)


def _first_number(text: str, default: int) -> int:
    match = NUMBER_RE.search(text)
    return int(match.group(1)) if match else default


def extract_email(text: str) -> str | None:
    match = EMAIL_RE.search(text)
    return match.group(0) if match else None


# =============================================================================
# Calendar events
# =============================================================================

def _event_details(text: str, now: datetime) -> dict[str, Any] | None:
    email = extract_email(text)
    if email is None:
        return None
    start = extract_datetime(text, now)
    if start is None:
        return None

    return {
        "summary": _extract_summary(text),
        "start_time": start.isoformat(),
        "end_time": (start + EVENT_DURATION).isoformat(),
        "attendees": [email],
    }


def extract_datetime(text: str, now: datetime) -> datetime | None:
    """Loose date/time parsing: "today", "tomorrow" or "on <day> <month>".

    The time of day comes from a 12-hour clock expression ("2pm", "2:30 pm")
    and defaults to 14:00 (today/tomorrow) or 12:00 (explicit date).
    Returns None when there is no date marker or the values are impossible.
    """
    lower = text.lower()
    # Digits inside addresses are never times
    time_source = EMAIL_RE.sub(" ", lower)

    if "tomorrow" in lower:
        day = (now + timedelta(days=1)).date()
        default_hour = 14
    elif "today" in lower:
        day = now.date()
        default_hour = 14
    else:
        match = DAY_MONTH_RE.search(time_source)
        if match is None:
            return None
        try:
            day = date(now.year, _parse_month(match.group(2)), int(match.group(1)))
        except ValueError:
            return None
        default_hour = 12
        time_source = time_source[:match.start()] + " " + time_source[match.end():]

    clock = _extract_time(time_source, default_hour)
    if clock is None:
        return None
    hour, minute = clock
    return datetime(day.year, day.month, day.day, hour, minute, tzinfo=now.tzinfo)


def _extract_time(text: str, default_hour: int) -> tuple[int, int] | None:
    match = TIME_RE.search(text)
    if match is None:
        return default_hour, 0

    hour = int(match.group(1))
    minute = int(match.group(2)) if match.group(2) else 0
    meridiem = (match.group(3) or "").lower()
    if meridiem == "pm" and hour < 12:
        hour += 12
    elif meridiem == "am" and hour == 12:
        hour = 0

    if hour > 23 or minute > 59:
        return None
    return hour, minute


def _parse_month(name: str) -> int:
    # Unknown month names fall back to January
    return MONTHS.get(name.lower(), 1)


def _extract_summary(text: str) -> str:
    if "for " not in text:
        return DEFAULT_SUMMARY
    after = text.split("for ", 1)[1]
    summary = SUMMARY_STOP_RE.split(after, 1)[0].strip()
    return summary or DEFAULT_SUMMARY


# =============================================================================
# Emails
# =============================================================================

def _email_details(text: str) -> dict[str, Any] | None:
    to = extract_email(text)
    if to is None:
        return None

    body = _extract_body(text)
    if body is None:
        body = COMMAND_RE.sub("", text).strip()
    if not body:
        return None

    return {
        "to": to,
        "subject": _extract_subject(text) or DEFAULT_SUBJECT,
        "body": body,
    }


def _extract_subject(text: str) -> str | None:
    if "subject:" not in text:
        return None
    return text.split("subject:", 1)[1].split("\n", 1)[0].strip() or None


def _extract_body(text: str) -> str | None:
    for marker in ("body:", "saying "):
        if marker in text:
            return text.split(marker, 1)[1].strip()
    return None
