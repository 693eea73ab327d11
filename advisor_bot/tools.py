"""
Tools that the agent can use on the advisor's behalf.

Each tool is defined as:
1. A schema (for the LLM to understand how to call it)
2. An executor that validates its arguments and calls an adapter

The catalog is closed: ten tools, keyed by the ToolName enum, exposed to the
LLM in a fixed order. Side effects (sending email, creating events, writing to
the CRM) are real; there is no dry run.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable

from .errors import AdvisorBotError, ConfigurationError, UnknownToolError, ValidationError

logger = logging.getLogger(__name__)


class ToolName(str, Enum):
    SEARCH_EMAILS = "search_emails"
    SEARCH_CONTACTS = "search_contacts"
    SEND_EMAIL = "send_email"
    CREATE_CALENDAR_EVENT = "create_calendar_event"
    LIST_CALENDAR_EVENTS = "list_calendar_events"
    SEARCH_CALENDAR_EVENTS = "search_calendar_events"
    GET_HUBSPOT_CONTACT = "get_hubspot_contact"
    CREATE_HUBSPOT_CONTACT = "create_hubspot_contact"
    CREATE_HUBSPOT_NOTE = "create_hubspot_note"
    LIST_HUBSPOT_DEALS = "list_hubspot_deals"


# =============================================================================
# Execution context & results
# =============================================================================

@dataclass
class ToolContext:
    """Everything an executor may need for one user.

    Adapters are built on first use from the user's stored tokens unless
    they were passed in.
    """
    user: Any
    retriever: Any = None
    accounts: Any = None
    gmail: Any = None
    calendar: Any = None
    hubspot: Any = None
    _owned: list = field(default_factory=list, repr=False)

    def get_gmail(self):
        if self.gmail is None:
            from .email_tools import GmailClient
            self.gmail = GmailClient.for_user(self.user, self.accounts)
        return self.gmail

    def get_calendar(self):
        if self.calendar is None:
            from .calendar_tools import CalendarClient
            self.calendar = CalendarClient.for_user(self.user, self.accounts)
        return self.calendar

    def get_hubspot(self):
        if self.hubspot is None:
            from .contacts_tools import HubSpotClient
            self.hubspot = HubSpotClient.for_user(self.user, self.accounts)
            self._owned.append(self.hubspot)
        return self.hubspot

    def close(self) -> None:
        """Close the HTTP clients this context built itself."""
        while self._owned:
            self._owned.pop().close()


@dataclass
class ToolCall:
    """One tool invocation: name, arguments and outcome.

    `result` is the executor's dict on success, or {"error": message}.
    """
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)
    result: dict[str, Any] = field(default_factory=dict)
    exception: AdvisorBotError | None = None

    @property
    def ok(self) -> bool:
        return "error" not in self.result

    @property
    def error(self) -> str | None:
        return self.result.get("error")

    def to_message_content(self) -> str:
        """JSON body of the tool result message sent back to the LLM."""
        return json.dumps(self.result, default=str)

    def summary(self) -> dict[str, Any]:
        """The {tool, success} pair persisted in message metadata."""
        return {"tool": self.name, "success": self.ok}


# =============================================================================
# Argument helpers
# =============================================================================

def _normalize_key(key: Any) -> str:
    if isinstance(key, Enum):
        key = key.value
    if isinstance(key, bytes):
        key = key.decode("utf-8")
    return str(key)


def normalize_arguments(arguments: Any) -> dict[str, Any]:
    """Accept dicts with str/Enum/bytes keys, a JSON object string, or None."""
    if arguments is None:
        return {}
    if isinstance(arguments, (str, bytes)):
        try:
            arguments = json.loads(arguments) if arguments.strip() else {}
        except json.JSONDecodeError as e:
            raise ValidationError(f"Arguments are not valid JSON: {e}") from e
    if not isinstance(arguments, dict):
        raise ValidationError("Invalid arguments")
    return {_normalize_key(k): v for k, v in arguments.items()}


def _missing(args: dict[str, Any], names: tuple[str, ...]) -> bool:
    return any(args.get(name) in (None, "") for name in names)


def _require(args: dict[str, Any], *names: str) -> None:
    """Raise ValidationError naming all required arguments if any is missing."""
    if _missing(args, names):
        noun = "argument" if len(names) == 1 else "arguments"
        raise ValidationError(f"Missing required {noun}: {', '.join(names)}")


def _int_arg(args: dict[str, Any], name: str, default: int) -> int:
    value = args.get(name)
    if value in (None, ""):
        return default
    try:
        number = int(float(value))
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid integer for {name}: {value!r}")
    if number <= 0:
        raise ValidationError(f"{name} must be positive, got {number}")
    return number


def _datetime_arg(value: Any) -> datetime:
    if not isinstance(value, str):
        raise ValidationError("Datetime must be a string")
    try:
        return datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        raise ValidationError(f"Invalid datetime format: {value}")


def _require_retriever(ctx: ToolContext) -> None:
    if ctx.retriever is None:
        raise ConfigurationError("Search is unavailable: RAG is disabled")


def _list_arg(value: Any) -> list[str]:
    if value in (None, ""):
        return []
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    return [str(item) for item in value]


# =============================================================================
# Executors
# =============================================================================

def search_emails(args: dict[str, Any], ctx: ToolContext) -> dict[str, Any]:
    _require(args, "query")
    _require_retriever(ctx)
    limit = _int_arg(args, "limit", 5)
    hits = ctx.retriever.search_emails(ctx.user.id, args["query"], limit=limit)
    results = [
        {
            "subject": hit.record.subject,
            "from": hit.record.from_email,
            "date": hit.record.date.isoformat() if hit.record.date else None,
            "snippet": hit.record.body[:200],
            "similarity": round(hit.similarity, 2),
        }
        for hit in hits
    ]
    return {"results": results, "count": len(results)}


def search_contacts(args: dict[str, Any], ctx: ToolContext) -> dict[str, Any]:
    _require(args, "query")
    _require_retriever(ctx)
    limit = _int_arg(args, "limit", 5)
    hits = ctx.retriever.search_contacts(ctx.user.id, args["query"], limit=limit)
    results = [
        {
            "name": hit.record.name,
            "email": hit.record.email,
            "notes": hit.record.notes,
            "similarity": round(hit.similarity, 2),
        }
        for hit in hits
    ]
    return {"results": results, "count": len(results)}


def send_email(args: dict[str, Any], ctx: ToolContext) -> dict[str, Any]:
    _require(args, "to", "subject", "body")
    sent = ctx.get_gmail().send_email(to=args["to"], subject=args["subject"], body=args["body"])
    return {"success": True, **sent}


def create_calendar_event(args: dict[str, Any], ctx: ToolContext) -> dict[str, Any]:
    _require(args, "summary", "start_time", "end_time")
    start = _datetime_arg(args["start_time"])
    end = _datetime_arg(args["end_time"])
    event = ctx.get_calendar().create_event(
        summary=args["summary"],
        start=start,
        end=end,
        description=args.get("description") or None,
        attendees=_list_arg(args.get("attendees")) or None,
    )
    return {"success": True, "event": event, "link": event.get("link", "")}


def list_calendar_events(args: dict[str, Any], ctx: ToolContext) -> dict[str, Any]:
    days = _int_arg(args, "days", 7)
    events = ctx.get_calendar().get_upcoming_events(days=days)
    return {"events": events, "count": len(events), "days": days}


def search_calendar_events(args: dict[str, Any], ctx: ToolContext) -> dict[str, Any]:
    _require(args, "query")
    days = _int_arg(args, "days", 30)
    events = ctx.get_calendar().search_events(args["query"], days=days)
    return {"events": events, "count": len(events), "query": args["query"]}


def get_hubspot_contact(args: dict[str, Any], ctx: ToolContext) -> dict[str, Any]:
    _require(args, "email")
    return {"contact": ctx.get_hubspot().search_contact_by_email(args["email"])}


def create_hubspot_contact(args: dict[str, Any], ctx: ToolContext) -> dict[str, Any]:
    _require(args, "email")
    properties = {
        key: args.get(key)
        for key in ("email", "firstname", "lastname", "phone", "company")
        if args.get(key) not in (None, "")
    }
    return {"success": True, "contact": ctx.get_hubspot().create_contact(properties)}


def create_hubspot_note(args: dict[str, Any], ctx: ToolContext) -> dict[str, Any]:
    _require(args, "contact_id", "body")
    note = ctx.get_hubspot().create_note(str(args["contact_id"]), args["body"])
    return {"success": True, "note": note}


def list_hubspot_deals(args: dict[str, Any], ctx: ToolContext) -> dict[str, Any]:
    limit = _int_arg(args, "limit", 20)
    deals = ctx.get_hubspot().list_deals(limit=limit)
    return {"deals": deals, "count": len(deals)}


# =============================================================================
# Registry (what the LLM sees)
# =============================================================================

@dataclass(frozen=True)
class ToolSpec:
    schema: dict[str, Any]
    executor: Callable[[dict[str, Any], ToolContext], dict[str, Any]]


def _schema(name: ToolName, description: str, properties: dict[str, Any], required: list[str]) -> dict[str, Any]:
    return {
        "name": name.value,
        "description": description,
        "input_schema": {"type": "object", "properties": properties, "required": required},
    }


TOOLS: dict[ToolName, ToolSpec] = {
    ToolName.SEARCH_EMAILS: ToolSpec(
        _schema(
            ToolName.SEARCH_EMAILS,
            "Search the user's emails using semantic search (RAG). "
            "Use this to find emails about specific topics, people, or keywords.",
            {
                "query": {"type": "string", "description": "The search query (e.g., 'emails from Bill about baseball')"},
                "limit": {"type": "integer", "description": "Maximum number of results to return (default: 5)"},
            },
            ["query"],
        ),
        search_emails,
    ),
    ToolName.SEARCH_CONTACTS: ToolSpec(
        _schema(
            ToolName.SEARCH_CONTACTS,
            "Search HubSpot contacts using semantic search (RAG). "
            "Use this to find contacts by description, industry, notes, etc.",
            {
                "query": {"type": "string", "description": "The search query (e.g., 'real estate investors in Boston')"},
                "limit": {"type": "integer", "description": "Maximum number of results to return (default: 5)"},
            },
            ["query"],
        ),
        search_contacts,
    ),
    ToolName.SEND_EMAIL: ToolSpec(
        _schema(
            ToolName.SEND_EMAIL,
            "Send an email via Gmail. Use this when the user asks to send an email or reply to someone.",
            {
                "to": {"type": "string", "description": "Recipient email address"},
                "subject": {"type": "string", "description": "Email subject line"},
                "body": {"type": "string", "description": "Email body content"},
            },
            ["to", "subject", "body"],
        ),
        send_email,
    ),
    ToolName.CREATE_CALENDAR_EVENT: ToolSpec(
        _schema(
            ToolName.CREATE_CALENDAR_EVENT,
            "Create a new Google Calendar event. Use this to schedule meetings or appointments.",
            {
                "summary": {"type": "string", "description": "Event title/summary"},
                "start_time": {
                    "type": "string",
                    "description": "Start time in ISO 8601 format (e.g., '2024-01-15T14:00:00Z')",
                },
                "end_time": {"type": "string", "description": "End time in ISO 8601 format"},
                "description": {"type": "string", "description": "Event description (optional)"},
                "attendees": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "List of attendee email addresses (optional)",
                },
            },
            ["summary", "start_time", "end_time"],
        ),
        create_calendar_event,
    ),
    ToolName.LIST_CALENDAR_EVENTS: ToolSpec(
        _schema(
            ToolName.LIST_CALENDAR_EVENTS,
            "List upcoming calendar events. Use this to see what meetings are scheduled.",
            {"days": {"type": "integer", "description": "Number of days to look ahead (default: 7)"}},
            [],
        ),
        list_calendar_events,
    ),
    ToolName.SEARCH_CALENDAR_EVENTS: ToolSpec(
        _schema(
            ToolName.SEARCH_CALENDAR_EVENTS,
            "Search calendar events by keyword. Use this to find specific meetings or events.",
            {
                "query": {"type": "string", "description": "Search query (e.g., 'baseball', 'Bill', 'quarterly meeting')"},
                "days": {"type": "integer", "description": "Number of days to search (default: 30)"},
            },
            ["query"],
        ),
        search_calendar_events,
    ),
    ToolName.GET_HUBSPOT_CONTACT: ToolSpec(
        _schema(
            ToolName.GET_HUBSPOT_CONTACT,
            "Get a HubSpot contact by email address. Use this to look up contact details.",
            {"email": {"type": "string", "description": "Email address of the contact to look up"}},
            ["email"],
        ),
        get_hubspot_contact,
    ),
    ToolName.CREATE_HUBSPOT_CONTACT: ToolSpec(
        _schema(
            ToolName.CREATE_HUBSPOT_CONTACT,
            "Create a new contact in HubSpot CRM. Use this when the user wants to add a new contact.",
            {
                "email": {"type": "string", "description": "Contact's email address"},
                "firstname": {"type": "string", "description": "Contact's first name"},
                "lastname": {"type": "string", "description": "Contact's last name"},
                "phone": {"type": "string", "description": "Contact's phone number (optional)"},
                "company": {"type": "string", "description": "Contact's company name (optional)"},
            },
            ["email"],
        ),
        create_hubspot_contact,
    ),
    ToolName.CREATE_HUBSPOT_NOTE: ToolSpec(
        _schema(
            ToolName.CREATE_HUBSPOT_NOTE,
            "Create a note in HubSpot associated with a contact. Use this to log interactions.",
            {
                "contact_id": {"type": "string", "description": "HubSpot contact ID to associate the note with"},
                "body": {"type": "string", "description": "Note content"},
            },
            ["contact_id", "body"],
        ),
        create_hubspot_note,
    ),
    ToolName.LIST_HUBSPOT_DEALS: ToolSpec(
        _schema(
            ToolName.LIST_HUBSPOT_DEALS,
            "List recent deals from HubSpot CRM. Use this to see current opportunities.",
            {"limit": {"type": "integer", "description": "Maximum number of deals to return (default: 20)"}},
            [],
        ),
        list_hubspot_deals,
    ),
}

TOOL_SCHEMAS: list[dict[str, Any]] = [spec.schema for spec in TOOLS.values()]

TOOL_IMPLEMENTATIONS: dict[str, Callable[[dict[str, Any], ToolContext], dict[str, Any]]] = {
    name.value: spec.executor for name, spec in TOOLS.items()
}


def list_tool_schemas() -> list[dict[str, Any]]:
    """Tool schemas in their fixed order, as sent to the LLM."""
    return [dict(schema) for schema in TOOL_SCHEMAS]


# =============================================================================
# Tool Dispatcher
# =============================================================================

def execute_tool(name: Any, arguments: Any, ctx: ToolContext) -> ToolCall:
    """
    Execute a tool by name with the given arguments.

    This is the main entry point called by the agent loop. It never raises:
    every failure is reported as {"error": ...} in the returned ToolCall.
    """
    tool_name = _normalize_key(name)

    try:
        args = normalize_arguments(arguments)
    except ValidationError as e:
        return ToolCall(tool_name, {}, {"error": str(e)}, e)

    if tool_name not in TOOL_IMPLEMENTATIONS:
        error = UnknownToolError(tool_name)
        logger.warning("LLM requested unknown tool %r", tool_name)
        return ToolCall(tool_name, args, {"error": str(error)}, error)

    logger.info("Executing tool %s", tool_name)
    try:
        result = TOOL_IMPLEMENTATIONS[tool_name](args, ctx)
    except AdvisorBotError as e:
        logger.warning("Tool %s failed: %s", tool_name, e)
        return ToolCall(tool_name, args, {"error": str(e)}, e)
    except Exception as e:
        logger.exception("Tool %s crashed", tool_name)
        return ToolCall(tool_name, args, {"error": f"Tool execution failed: {e}"})

    return ToolCall(tool_name, args, result)
