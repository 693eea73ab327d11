"""Tests for the tool registry and dispatcher."""

import json
from enum import Enum
from unittest.mock import MagicMock

import pytest

from advisor_bot.contacts_tools import HubSpotClient
from advisor_bot.errors import UnknownToolError
from advisor_bot.tools import (
    TOOL_IMPLEMENTATIONS,
    TOOL_SCHEMAS,
    ToolContext,
    ToolName,
    execute_tool,
    list_tool_schemas,
    normalize_arguments,
)

EXPECTED_ORDER = [
    "search_emails",
    "search_contacts",
    "send_email",
    "create_calendar_event",
    "list_calendar_events",
    "search_calendar_events",
    "get_hubspot_contact",
    "create_hubspot_contact",
    "create_hubspot_note",
    "list_hubspot_deals",
]


class Arg(Enum):
    QUERY = "query"


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class TestRegistry:
    def test_schema_order_is_fixed(self):
        assert [s["name"] for s in TOOL_SCHEMAS] == EXPECTED_ORDER
        assert [s["name"] for s in list_tool_schemas()] == EXPECTED_ORDER
        assert [t.value for t in ToolName] == EXPECTED_ORDER

    def test_every_schema_has_an_executor(self):
        assert set(TOOL_IMPLEMENTATIONS) == set(EXPECTED_ORDER)

    def test_required_fields(self):
        required = {s["name"]: s["input_schema"]["required"] for s in TOOL_SCHEMAS}
        assert required["send_email"] == ["to", "subject", "body"]
        assert required["create_calendar_event"] == ["summary", "start_time", "end_time"]
        assert required["list_calendar_events"] == []
        assert required["create_hubspot_note"] == ["contact_id", "body"]


# ---------------------------------------------------------------------------
# Argument normalisation
# ---------------------------------------------------------------------------


class TestArguments:
    @pytest.mark.parametrize(
        "arguments",
        [
            {"query": "What did Bill say"},
            {Arg.QUERY: "What did Bill say"},
            {b"query": "What did Bill say"},
            '{"query": "What did Bill say"}',
        ],
    )
    def test_key_forms_are_equivalent(self, indexed, tool_ctx, arguments):
        call = execute_tool("search_emails", arguments, tool_ctx)
        assert call.ok
        assert call.arguments == {"query": "What did Bill say"}
        assert call.result["count"] == 1
        assert call.result["results"][0]["subject"] == "Baseball game Saturday"
        assert call.result["results"][0]["similarity"] == 0.9

    def test_tool_name_forms(self, tool_ctx):
        for name in (ToolName.LIST_HUBSPOT_DEALS, "list_hubspot_deals", b"list_hubspot_deals"):
            assert execute_tool(name, None, tool_ctx).name == "list_hubspot_deals"

    def test_none_and_empty_string(self):
        assert normalize_arguments(None) == {}
        assert normalize_arguments("") == {}

    def test_invalid_json(self, tool_ctx):
        call = execute_tool("search_emails", "{not json", tool_ctx)
        assert not call.ok
        assert call.error.startswith("Arguments are not valid JSON")


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


class TestExecuteTool:
    def test_unknown_tool(self, tool_ctx):
        call = execute_tool("fly_to_moon", {}, tool_ctx)
        assert call.result == {"error": "Unknown tool: fly_to_moon"}
        assert isinstance(call.exception, UnknownToolError)
        assert call.summary() == {"tool": "fly_to_moon", "success": False}

    def test_missing_arguments_never_reach_adapter(self, tool_ctx, gmail):
        call = execute_tool("send_email", {"to": "jane@example.com"}, tool_ctx)
        assert call.error == "Missing required arguments: to, subject, body"
        assert gmail.sent == []

    def test_missing_single_argument(self, tool_ctx):
        call = execute_tool("search_contacts", {}, tool_ctx)
        assert call.error == "Missing required argument: query"

    def test_invalid_datetime(self, tool_ctx, calendar):
        call = execute_tool(
            "create_calendar_event",
            {"summary": "Review", "start_time": "tomorrow", "end_time": "2024-05-11T15:00:00"},
            tool_ctx,
        )
        assert call.error == "Invalid datetime format: tomorrow"
        assert calendar.created == []

    def test_send_email(self, tool_ctx, gmail):
        call = execute_tool(
            "send_email", {"to": "jane@example.com", "subject": "Hi", "body": "Hello"}, tool_ctx
        )
        assert call.ok
        assert call.result["success"] is True
        assert gmail.sent == [{"to": "jane@example.com", "subject": "Hi", "body": "Hello"}]

    def test_create_calendar_event(self, tool_ctx, calendar):
        call = execute_tool(
            "create_calendar_event",
            {
                "summary": "Review",
                "start_time": "2024-05-11T14:00:00Z",
                "end_time": "2024-05-11T15:00:00Z",
                "attendees": "bob@example.com, ann@example.com",
            },
            tool_ctx,
        )
        assert call.ok
        assert call.result["link"] == "https://calendar.google.com/event?eid=evt-1"
        assert calendar.created[0]["attendees"] == ["bob@example.com", "ann@example.com"]
        assert calendar.created[0]["start"] == "2024-05-11T14:00:00+00:00"

    def test_list_and_search_calendar(self, tool_ctx, calendar):
        calendar.events = [{"id": "e1", "summary": "Quarterly review", "start": "2024-05-12T10:00:00Z"}]

        listed = execute_tool("list_calendar_events", {"days": "3"}, tool_ctx)
        assert listed.result == {"events": calendar.events, "count": 1, "days": 3}

        found = execute_tool("search_calendar_events", {"query": "quarterly"}, tool_ctx)
        assert found.result["count"] == 1
        assert calendar.requests[-1] == {"query": "quarterly", "days": 30}

    def test_non_positive_days(self, tool_ctx):
        call = execute_tool("list_calendar_events", {"days": 0}, tool_ctx)
        assert call.error == "days must be positive, got 0"

    def test_hubspot_tools(self, tool_ctx, hubspot):
        found = execute_tool("get_hubspot_contact", {"email": "sara@example.com"}, tool_ctx)
        assert found.result["contact"]["firstname"] == "Sara"

        missing = execute_tool("get_hubspot_contact", {"email": "nobody@example.com"}, tool_ctx)
        assert missing.error == "Contact not found: nobody@example.com"

        created = execute_tool(
            "create_hubspot_contact", {"email": "new@example.com", "firstname": "New", "phone": ""}, tool_ctx
        )
        assert created.result["contact"] == {"id": "101", "email": "new@example.com", "firstname": "New"}

        note = execute_tool("create_hubspot_note", {"contact_id": 501, "body": "Called"}, tool_ctx)
        assert note.result["note"]["contact_id"] == "501"

        deals = execute_tool("list_hubspot_deals", {"limit": 5}, tool_ctx)
        assert deals.result["count"] == 1
        assert hubspot.deal_limits == [5]

    def test_search_without_retriever(self, user, gmail):
        ctx = ToolContext(user=user, gmail=gmail)
        call = execute_tool("search_emails", {"query": "x"}, ctx)
        assert call.error == "Search is unavailable: RAG is disabled"

    def test_adapter_crash_is_reported(self, tool_ctx, gmail, monkeypatch):
        def boom(**kwargs):
            raise RuntimeError("boom")

        monkeypatch.setattr(gmail, "send_email", boom)
        call = execute_tool("send_email", {"to": "a@b.com", "subject": "s", "body": "b"}, tool_ctx)
        assert call.error == "Tool execution failed: boom"
        assert call.exception is None

    def test_message_content_is_json(self, tool_ctx):
        call = execute_tool("list_hubspot_deals", {}, tool_ctx)
        assert json.loads(call.to_message_content()) == call.result


class TestContextLifecycle:
    def test_close_releases_lazily_built_hubspot_client(self, user, monkeypatch):
        built = MagicMock()
        monkeypatch.setattr(HubSpotClient, "for_user", classmethod(lambda cls, u, a: built))
        ctx = ToolContext(user=user)

        assert ctx.get_hubspot() is built
        assert ctx.get_hubspot() is built
        ctx.close()

        built.close.assert_called_once()

    def test_close_leaves_supplied_adapters_open(self, user):
        supplied = MagicMock()
        ctx = ToolContext(user=user, hubspot=supplied)

        ctx.get_hubspot()
        ctx.close()

        supplied.close.assert_not_called()
