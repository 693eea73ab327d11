"""
LLM clients for Advisor_bot.

One client per backend behind a common `chat(messages, tools)` call, chosen
once by `create_llm_client()`. Messages use a provider-neutral shape:

    {"role": "system" | "user" | "assistant", "content": "..."}
    {"role": "assistant", "content": "Calling tools...", "tool_calls": [{"id", "name", "arguments"}]}
    {"role": "tool", "tool_call_id": "...", "name": "...", "content": "<json>"}

Tool schemas use the Anthropic shape (name, description, input_schema) and
are converted per provider. API failures surface as ProviderError.
"""

import json
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

import httpx

from .config import settings
from .errors import ConfigurationError, ProviderError

logger = logging.getLogger(__name__)


@dataclass
class LLMToolCall:
    """A tool invocation requested by the model."""
    name: str
    arguments: Any = field(default_factory=dict)
    id: str = field(default_factory=lambda: f"call_{uuid.uuid4().hex[:12]}")


@dataclass
class LLMResponse:
    content: str = ""
    tool_calls: list[LLMToolCall] = field(default_factory=list)
    finish_reason: str | None = None


def _split_system(messages: list[dict[str, Any]]) -> tuple[str, list[dict[str, Any]]]:
    """Separate system messages (joined) from the rest."""
    system = "\n\n".join(m["content"] for m in messages if m["role"] == "system")
    rest = [m for m in messages if m["role"] != "system"]
    return system, rest


def _tool_result(content: str) -> Any:
    try:
        return json.loads(content)
    except (TypeError, json.JSONDecodeError):
        return content


class LLMClient(ABC):
    """Common interface for all chat backends."""

    provider: str = "base"

    def __init__(self, model: str, max_tokens: int | None = None, temperature: float | None = None):
        self.model = model
        self.max_tokens = max_tokens or settings.llm_max_tokens
        self.temperature = settings.llm_temperature if temperature is None else temperature

    @abstractmethod
    def chat(self, messages: list[dict[str, Any]], tools: list[dict[str, Any]] | None = None) -> LLMResponse:
        """Send the conversation (and optional tool schemas), return the reply."""


# =============================================================================
# Anthropic
# =============================================================================

class AnthropicClient(LLMClient):
    provider = "anthropic"

    def __init__(self, api_key: str, model: str, client=None, **kwargs):
        super().__init__(model, **kwargs)
        if client is None:
            import anthropic
            client = anthropic.Anthropic(api_key=api_key, timeout=settings.http_timeout_seconds)
        self.client = client

    @staticmethod
    def _convert_messages(messages: list[dict[str, Any]]) -> list[dict[str, Any]]:
        converted: list[dict[str, Any]] = []
        for msg in messages:
            if msg["role"] == "tool":
                block = {
                    "type": "tool_result",
                    "tool_use_id": msg["tool_call_id"],
                    "content": msg["content"],
                }
                # Consecutive tool results go into one user turn
                if converted and converted[-1]["role"] == "user" and isinstance(converted[-1]["content"], list):
                    converted[-1]["content"].append(block)
                else:
                    converted.append({"role": "user", "content": [block]})
            elif msg["role"] == "assistant" and msg.get("tool_calls"):
                blocks: list[dict[str, Any]] = []
                if msg.get("content"):
                    blocks.append({"type": "text", "text": msg["content"]})
                for call in msg["tool_calls"]:
                    blocks.append({
                        "type": "tool_use",
                        "id": call["id"],
                        "name": call["name"],
                        "input": call["arguments"] if isinstance(call["arguments"], dict) else _tool_result(call["arguments"]),
                    })
                converted.append({"role": "assistant", "content": blocks})
            else:
                converted.append({"role": msg["role"], "content": msg["content"] or ""})
        return converted

    def chat(self, messages, tools=None) -> LLMResponse:
        import anthropic

        system, rest = _split_system(messages)
        params: dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "messages": self._convert_messages(rest),
        }
        if system:
            params["system"] = system
        if tools:
            params["tools"] = tools

        try:
            response = self.client.messages.create(**params)
        except anthropic.APIError as e:
            logger.error("Anthropic request failed: %s", e)
            raise ProviderError(f"Anthropic API error: {e}") from e

        text_blocks = [block.text for block in response.content if block.type == "text"]
        tool_calls = [
            LLMToolCall(name=block.name, arguments=block.input, id=block.id)
            for block in response.content
            if block.type == "tool_use"
        ]
        return LLMResponse("\n".join(text_blocks), tool_calls, response.stop_reason)


# =============================================================================
# Gemini
# =============================================================================

def _convert_tools_to_gemini_format(tool_schemas: list[dict]) -> list[dict]:
    """Convert Anthropic-style tool schemas to Gemini function declarations."""
    return [
        {
            "name": tool["name"],
            "description": tool["description"],
            "parameters": tool["input_schema"],
        }
        for tool in tool_schemas
    ]


class GeminiClient(LLMClient):
    provider = "gemini"

    def __init__(self, api_key: str, model: str, client=None, **kwargs):
        super().__init__(model, **kwargs)
        if client is None:
            from google import genai
            client = genai.Client(api_key=api_key)
        self.client = client

    @staticmethod
    def _convert_messages(messages: list[dict[str, Any]]) -> list:
        """Convert neutral messages to Gemini's Content format."""
        from google.genai import types as genai_types

        contents: list[genai_types.Content] = []
        for msg in messages:
            if msg["role"] == "tool":
                part = genai_types.Part(
                    function_response=genai_types.FunctionResponse(
                        name=msg["name"],
                        response={"result": _tool_result(msg["content"])},
                    )
                )
                last = contents[-1] if contents else None
                if last is not None and last.role == "user" and last.parts and last.parts[0].function_response:
                    last.parts.append(part)
                else:
                    contents.append(genai_types.Content(role="user", parts=[part]))
            elif msg["role"] == "assistant" and msg.get("tool_calls"):
                parts = [
                    genai_types.Part(
                        function_call=genai_types.FunctionCall(
                            name=call["name"],
                            args=call["arguments"] if isinstance(call["arguments"], dict) else _tool_result(call["arguments"]),
                        )
                    )
                    for call in msg["tool_calls"]
                ]
                contents.append(genai_types.Content(role="model", parts=parts))
            else:
                role = "model" if msg["role"] == "assistant" else "user"
                contents.append(genai_types.Content(role=role, parts=[genai_types.Part(text=msg["content"] or "")]))
        return contents

    def chat(self, messages, tools=None) -> LLMResponse:
        from google.genai import errors as genai_errors
        from google.genai import types as genai_types

        system, rest = _split_system(messages)
        config_args: dict[str, Any] = {
            "temperature": self.temperature,
            "max_output_tokens": self.max_tokens,
            "automatic_function_calling": genai_types.AutomaticFunctionCallingConfig(disable=True),
        }
        if system:
            config_args["system_instruction"] = system
        if tools:
            config_args["tools"] = [
                genai_types.Tool(function_declarations=_convert_tools_to_gemini_format(tools))
            ]

        try:
            response = self.client.models.generate_content(
                model=self.model,
                contents=self._convert_messages(rest),
                config=genai_types.GenerateContentConfig(**config_args),
            )
        except genai_errors.APIError as e:
            logger.error("Gemini request failed: %s", e)
            raise ProviderError(f"Gemini API error: {e.message}", e.code) from e
        except (httpx.HTTPError, OSError) as e:
            logger.error("Gemini request failed: %s", e)
            raise ProviderError(f"Gemini request failed: {e}") from e

        if not response.candidates:
            raise ProviderError("Unexpected response format from Gemini")

        candidate = response.candidates[0]
        parts = (candidate.content.parts if candidate.content else None) or []
        texts = [part.text for part in parts if part.text]
        tool_calls = []
        for part in parts:
            if part.function_call:
                fc = part.function_call
                call = LLMToolCall(name=fc.name, arguments=dict(fc.args or {}))
                if fc.id:
                    call.id = fc.id
                tool_calls.append(call)

        finish = str(candidate.finish_reason) if candidate.finish_reason else None
        return LLMResponse("".join(texts), tool_calls, finish)


# =============================================================================
# Ollama
# =============================================================================

class OllamaClient(LLMClient):
    provider = "ollama"

    def __init__(self, model: str, host: str | None = None, client=None, **kwargs):
        super().__init__(model, **kwargs)
        if client is None:
            import ollama
            client = ollama.Client(host=host or settings.ollama_base_url)
        self.client = client

    @staticmethod
    def _convert_messages(messages: list[dict[str, Any]]) -> list[dict[str, Any]]:
        converted = []
        for msg in messages:
            if msg["role"] == "tool":
                converted.append({"role": "tool", "content": msg["content"], "tool_name": msg["name"]})
            elif msg["role"] == "assistant" and msg.get("tool_calls"):
                converted.append({
                    "role": "assistant",
                    "content": "",
                    "tool_calls": [
                        {"function": {"name": call["name"], "arguments": call["arguments"]}}
                        for call in msg["tool_calls"]
                    ],
                })
            else:
                converted.append({"role": msg["role"], "content": msg["content"] or ""})
        return converted

    def chat(self, messages, tools=None) -> LLMResponse:
        import ollama

        ollama_tools = [
            {
                "type": "function",
                "function": {
                    "name": tool["name"],
                    "description": tool["description"],
                    "parameters": tool["input_schema"],
                },
            }
            for tool in tools or []
        ]

        try:
            response = self.client.chat(
                model=self.model,
                messages=self._convert_messages(messages),
                tools=ollama_tools or None,
                options={"num_predict": self.max_tokens, "temperature": self.temperature},
            )
        except (ollama.ResponseError, httpx.HTTPError, ConnectionError) as e:
            logger.error("Ollama request failed: %s", e)
            raise ProviderError(f"Ollama error: {e}") from e

        message = response.message
        tool_calls = [
            LLMToolCall(name=tc.function.name, arguments=dict(tc.function.arguments or {}))
            for tc in message.tool_calls or []
        ]
        return LLMResponse(message.content or "", tool_calls, getattr(response, "done_reason", None))


# =============================================================================
# OpenAI
# =============================================================================

class OpenAIClient(LLMClient):
    provider = "openai"

    def __init__(self, api_key: str, model: str, client=None, **kwargs):
        super().__init__(model, **kwargs)
        if client is None:
            from openai import OpenAI
            client = OpenAI(api_key=api_key, timeout=settings.http_timeout_seconds)
        self.client = client

    @staticmethod
    def _convert_messages(messages: list[dict[str, Any]]) -> list[dict[str, Any]]:
        converted = []
        for msg in messages:
            if msg["role"] == "tool":
                converted.append({"role": "tool", "tool_call_id": msg["tool_call_id"], "content": msg["content"]})
            elif msg["role"] == "assistant" and msg.get("tool_calls"):
                converted.append({
                    "role": "assistant",
                    "content": msg.get("content") or None,
                    "tool_calls": [
                        {
                            "id": call["id"],
                            "type": "function",
                            "function": {
                                "name": call["name"],
                                "arguments": call["arguments"] if isinstance(call["arguments"], str)
                                else json.dumps(call["arguments"]),
                            },
                        }
                        for call in msg["tool_calls"]
                    ],
                })
            else:
                converted.append({"role": msg["role"], "content": msg["content"] or ""})
        return converted

    def chat(self, messages, tools=None) -> LLMResponse:
        import openai

        params: dict[str, Any] = {
            "model": self.model,
            "messages": self._convert_messages(messages),
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
        }
        if tools:
            params["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": tool["name"],
                        "description": tool["description"],
                        "parameters": tool["input_schema"],
                    },
                }
                for tool in tools
            ]

        try:
            response = self.client.chat.completions.create(**params)
        except openai.OpenAIError as e:
            logger.error("OpenAI request failed: %s", e)
            raise ProviderError(f"OpenAI API error: {e}") from e

        choice = response.choices[0]
        # Arguments stay a JSON string; the tool registry parses them
        tool_calls = [
            LLMToolCall(name=tc.function.name, arguments=tc.function.arguments, id=tc.id)
            for tc in choice.message.tool_calls or []
        ]
        return LLMResponse(choice.message.content or "", tool_calls, choice.finish_reason)


# =============================================================================
# Factory
# =============================================================================

def create_llm_client(provider: str | None = None, model: str | None = None) -> LLMClient:
    """Build the chat client for the configured (or given) provider.

    Raises:
        ConfigurationError: If the provider's API key is not set.
    """
    provider = provider or settings.llm_provider

    if provider == "anthropic":
        return AnthropicClient(settings.get_api_key("anthropic"), model or settings.model_name)
    elif provider == "gemini":
        return GeminiClient(settings.get_api_key("gemini"), model or settings.gemini_model)
    elif provider == "ollama":
        return OllamaClient(model or settings.ollama_model)
    elif provider == "openai":
        return OpenAIClient(settings.get_api_key("openai"), model or settings.openai_model)
    else:
        raise ConfigurationError(f"Unknown LLM provider: {provider}")
