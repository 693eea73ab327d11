"""Tests for provider message conversion and response parsing."""

import json
from types import SimpleNamespace
from unittest.mock import MagicMock

from advisor_bot.llm import AnthropicClient, OllamaClient, OpenAIClient, _convert_tools_to_gemini_format
from advisor_bot.tools import TOOL_SCHEMAS

TOOL_TURN = [
    {"role": "system", "content": "You are helpful."},
    {"role": "user", "content": "Find Sara and list deals"},
    {
        "role": "assistant",
        "content": "Calling tools...",
        "tool_calls": [
            {"id": "c1", "name": "get_hubspot_contact", "arguments": {"email": "sara@example.com"}},
            {"id": "c2", "name": "list_hubspot_deals", "arguments": {}},
        ],
    },
    {"role": "tool", "tool_call_id": "c1", "name": "get_hubspot_contact", "content": '{"contact": {}}'},
    {"role": "tool", "tool_call_id": "c2", "name": "list_hubspot_deals", "content": '{"deals": []}'},
]


def test_anthropic_merges_tool_results_into_one_user_turn():
    converted = AnthropicClient._convert_messages(TOOL_TURN[1:])

    assert [m["role"] for m in converted] == ["user", "assistant", "user"]
    tool_uses = [b for b in converted[1]["content"] if b["type"] == "tool_use"]
    assert [b["id"] for b in tool_uses] == ["c1", "c2"]
    assert [b["tool_use_id"] for b in converted[2]["content"]] == ["c1", "c2"]


def test_anthropic_chat_parses_tool_use():
    client = MagicMock()
    client.messages.create.return_value = SimpleNamespace(
        content=[
            SimpleNamespace(type="text", text="Let me check."),
            SimpleNamespace(type="tool_use", id="tu_1", name="list_hubspot_deals", input={"limit": 3}),
        ],
        stop_reason="tool_use",
    )
    llm = AnthropicClient("key", "claude-test", client=client)

    response = llm.chat(TOOL_TURN[:2], TOOL_SCHEMAS)

    assert response.content == "Let me check."
    assert response.tool_calls[0].id == "tu_1"
    assert response.tool_calls[0].arguments == {"limit": 3}
    params = client.messages.create.call_args.kwargs
    assert params["system"] == "You are helpful."
    assert params["tools"] == TOOL_SCHEMAS


def test_openai_serialises_arguments_and_keeps_raw_json_back():
    converted = OpenAIClient._convert_messages(TOOL_TURN)
    call = converted[2]["tool_calls"][0]
    assert json.loads(call["function"]["arguments"]) == {"email": "sara@example.com"}
    assert converted[3] == {"role": "tool", "tool_call_id": "c1", "content": '{"contact": {}}'}

    client = MagicMock()
    tool_call = SimpleNamespace(
        id="call_9", function=SimpleNamespace(name="search_emails", arguments='{"query": "baseball"}')
    )
    client.chat.completions.create.return_value = SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=None, tool_calls=[tool_call]), finish_reason="tool_calls")]
    )

    response = OpenAIClient("key", "gpt-test", client=client).chat(TOOL_TURN[:2], TOOL_SCHEMAS)

    assert response.content == ""
    assert response.tool_calls[0].arguments == '{"query": "baseball"}'
    sent_tools = client.chat.completions.create.call_args.kwargs["tools"]
    assert sent_tools[0]["function"]["parameters"] == TOOL_SCHEMAS[0]["input_schema"]


def test_ollama_tool_messages_carry_tool_name():
    converted = OllamaClient._convert_messages(TOOL_TURN)
    assert converted[3] == {"role": "tool", "content": '{"contact": {}}', "tool_name": "get_hubspot_contact"}
    assert converted[2]["tool_calls"][1]["function"] == {"name": "list_hubspot_deals", "arguments": {}}


def test_gemini_tool_declarations():
    declarations = _convert_tools_to_gemini_format(TOOL_SCHEMAS)
    assert [d["name"] for d in declarations] == [s["name"] for s in TOOL_SCHEMAS]
    assert declarations[2]["parameters"]["required"] == ["to", "subject", "body"]
