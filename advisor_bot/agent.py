"""
The Agent Loop - the heart of Advisor_bot.

For every user message:
1. Try the intent shortcut parser; a recognized command runs its tool directly
   (or asks for missing details) without calling the LLM
2. Otherwise build the prompt: system prompt, prior history and the new
   message, prefixed with retrieved email/contact context when it looks useful
3. Send to the LLM with all tool schemas
4. If the LLM wants tools → execute them in order → append results → goto 3
5. If the LLM responds with text → that is the answer

The loop is bounded: running out of iterations while the LLM still asks for
tools is an error, not a partial answer.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from .chat import DEFAULT_TITLE, ChatStore, Message
from .config import settings
from .errors import AdvisorBotError, MaxIterationsExceeded, NotFoundError
from .intent import DirectToolCall, NeedsClarification, classify
from .llm import LLMClient
from .rag import ContextRetriever, should_use_rag
from .tools import TOOL_SCHEMAS, ToolCall, ToolContext, ToolName, execute_tool

logger = logging.getLogger(__name__)


# =============================================================================
# System Prompt
# =============================================================================

SYSTEM_PROMPT = """You are a helpful AI assistant for financial advisors.

When the user asks questions, relevant context from their emails and contacts is provided automatically.
This context appears in the user's message under "CONTEXT (from user's emails and contacts)".

Use this context to answer questions accurately. If the context contains relevant information, use it directly in your response.

If the context doesn't contain enough information to answer the question, say so clearly.

You can also act for the advisor with your tools: search emails and contacts, send email,
list, search and create calendar events, and read or update HubSpot contacts, notes and deals.
Use a tool rather than describing what you would do.

Be concise, professional, and helpful.

Current date: {date}
"""

CONTEXT_TEMPLATE = "CONTEXT (from user's emails and contacts):\n{context}\n\nUSER QUESTION:\n{question}"
TOOL_CALL_PLACEHOLDER = "Calling tools..."
EMPTY_RESPONSE_REPLY = "I'm sorry, I couldn't generate a proper response. Please try rephrasing your question."
TITLE_WORDS = 6
TITLE_MAX_CHARS = 51


@dataclass
class AgentResult:
    """Outcome of processing one message."""
    response: str
    tool_calls: list[ToolCall] = field(default_factory=list)
    shortcut: bool = False


@dataclass
class ChatTurn:
    """A persisted exchange: the conversation it landed in and the reply."""
    conversation_id: int
    response: str
    tool_calls: list[ToolCall] = field(default_factory=list)
    failed: bool = False


def generate_conversation_title(first_message: str) -> str:
    """First few words of the opening message."""
    title = " ".join(first_message.split()[:TITLE_WORDS])[:TITLE_MAX_CHARS].strip()
    return title or DEFAULT_TITLE


def format_tool_response(call: ToolCall) -> str:
    """Human-readable summary of a directly executed tool call."""
    if not call.ok:
        return f"I encountered an error: {call.error}"

    result = call.result
    if call.name == ToolName.LIST_CALENDAR_EVENTS.value:
        events = result.get("events", [])
        if not events:
            return "You have no upcoming events in your calendar."
        lines = [f"{idx}. {event.get('summary')} - {event.get('start')}" for idx, event in enumerate(events, 1)]
        return "Here are your upcoming calendar events:\n\n" + "\n".join(lines)

    if call.name == ToolName.CREATE_CALENDAR_EVENT.value:
        return f"✓ Event created successfully! You can view it here: {result.get('link', '')}"

    if call.name == ToolName.SEND_EMAIL.value:
        return "✓ Email sent successfully!"

    if call.name == ToolName.GET_HUBSPOT_CONTACT.value:
        contact = result.get("contact", {})
        return (
            f"Found contact: {contact.get('firstname') or ''} {contact.get('lastname') or ''} "
            f"({contact.get('email')})"
        )

    return "✓ Action completed successfully.\n\n" + json.dumps(result, indent=2, default=str)


# =============================================================================
# Agent
# =============================================================================

class Agent:
    """
    Orchestrates intent shortcuts, retrieval, the LLM and tool execution.
    """

    def __init__(
        self,
        llm: LLMClient,
        chat_store: ChatStore,
        retriever: ContextRetriever | None = None,
        accounts=None,
        max_iterations: int | None = None,
        use_rag: bool | None = None,
        adapters: dict[str, Any] | None = None,
    ):
        """
        Args:
            llm: Chat backend
            chat_store: Conversation persistence
            retriever: Context retriever (None disables RAG and the search tools)
            accounts: AccountStore used to refresh OAuth tokens for adapters
            max_iterations: Tool-calling rounds allowed per message
            use_rag: Inject retrieved context into prompts
            adapters: Prebuilt gmail/calendar/hubspot clients (mainly for tests)
        """
        self.llm = llm
        self.chat_store = chat_store
        self.retriever = retriever
        self.accounts = accounts
        self.max_iterations = max_iterations or settings.agent_max_iterations
        self.use_rag = settings.rag_enabled if use_rag is None else use_rag
        self.adapters = adapters or {}

    def _tool_context(self, user) -> ToolContext:
        return ToolContext(user=user, retriever=self.retriever, accounts=self.accounts, **self.adapters)

    def _get_system_prompt(self) -> str:
        return SYSTEM_PROMPT.format(date=datetime.now().strftime("%Y-%m-%d %H:%M"))

    def _user_content(self, user, message: str, use_rag: bool) -> str:
        """The new user message, prefixed with retrieved context when useful."""
        if not (use_rag and self.retriever and should_use_rag(message)):
            return message

        try:
            context = self.retriever.retrieve_context(user.id, message)
        except AdvisorBotError as e:
            # Retrieval is best effort; answer without context
            logger.warning("RAG retrieval failed for user %s: %s", user.id, e)
            return message

        logger.info("RAG context retrieved (%d chars)", len(context))
        return CONTEXT_TEMPLATE.format(context=context, question=message)

    def build_messages(
        self,
        user,
        history: list[Message],
        message: str,
        use_rag: bool | None = None,
    ) -> list[dict[str, Any]]:
        """System prompt + non-system history + the new (maybe augmented) message."""
        use_rag = self.use_rag if use_rag is None else use_rag
        messages: list[dict[str, Any]] = [{"role": "system", "content": self._get_system_prompt()}]
        messages.extend(m.to_dict() for m in history if m.role != "system")
        messages.append({"role": "user", "content": self._user_content(user, message, use_rag)})
        return messages

    def run_loop(self, messages: list[dict[str, Any]], ctx: ToolContext) -> AgentResult:
        """Call the LLM, executing requested tools, until it answers in text.

        Raises:
            MaxIterationsExceeded: If tools are still requested after max_iterations rounds.
            ProviderError: If the LLM call fails.
        """
        tool_calls_made: list[ToolCall] = []

        for iteration in range(1, self.max_iterations + 1):
            response = self.llm.chat(messages, TOOL_SCHEMAS)

            if not response.tool_calls:
                return AgentResult(response.content, tool_calls_made)

            logger.info(
                "Iteration %d: LLM requested %s",
                iteration, ", ".join(call.name for call in response.tool_calls),
            )
            messages.append({
                "role": "assistant",
                "content": TOOL_CALL_PLACEHOLDER,
                "tool_calls": [
                    {"id": call.id, "name": call.name, "arguments": call.arguments}
                    for call in response.tool_calls
                ],
            })

            # Sequential: later calls may depend on earlier side effects
            for requested in response.tool_calls:
                call = execute_tool(requested.name, requested.arguments, ctx)
                tool_calls_made.append(call)
                messages.append({
                    "role": "tool",
                    "tool_call_id": requested.id,
                    "name": call.name,
                    "content": call.to_message_content(),
                })

        logger.warning("Agent hit max iterations (%d)", self.max_iterations)
        raise MaxIterationsExceeded(self.max_iterations)

    def process_message(
        self,
        user,
        message: str,
        conversation_id: int | None = None,
        history: list[Message] | None = None,
    ) -> AgentResult:
        """
        Process a user message and return the assistant's response.

        Shortcut intents never reach the LLM. Free chat runs the tool loop
        with the conversation's history.
        """
        intent = classify(message)

        if isinstance(intent, DirectToolCall):
            logger.info("Intent detected: calling tool %s with args %s", intent.name, intent.arguments)
            ctx = self._tool_context(user)
            try:
                call = execute_tool(intent.name, intent.arguments, ctx)
            finally:
                ctx.close()
            return AgentResult(format_tool_response(call), [call], shortcut=True)

        if isinstance(intent, NeedsClarification):
            return AgentResult(intent.prompt, shortcut=True)

        if history is None:
            history = self.chat_store.list_messages(conversation_id) if conversation_id else []
        messages = self.build_messages(user, history, message)
        ctx = self._tool_context(user)
        try:
            return self.run_loop(messages, ctx)
        finally:
            ctx.close()

    def process_and_save_message(self, user, message: str, conversation_id: int | None = None) -> ChatTurn:
        """Persist the user message, run the agent, persist and return the reply.

        Never raises for agent failures: the error becomes the assistant reply.
        """
        if conversation_id is None:
            conversation = self.chat_store.create_conversation(user.id, generate_conversation_title(message))
        else:
            try:
                conversation = self.chat_store.get_conversation(conversation_id)
            except NotFoundError as e:
                logger.warning("Cannot continue conversation %s: %s", conversation_id, e)
                return ChatTurn(conversation_id, f"I encountered an error: {e}", failed=True)

        history = self.chat_store.list_messages(conversation.id)
        if not history and conversation.title == DEFAULT_TITLE:
            self.chat_store.update_title(conversation.id, generate_conversation_title(message))

        self.chat_store.append_message(conversation.id, "user", message)

        try:
            result = self.process_message(user, message, conversation.id, history=history)
        except AdvisorBotError as e:
            logger.error("Agent failed for conversation %s: %s", conversation.id, e)
            reply = f"I encountered an error: {e}"
            self.chat_store.append_message(conversation.id, "assistant", reply, {"error": type(e).__name__})
            return ChatTurn(conversation.id, reply, failed=True)
        except Exception as e:
            logger.exception("Unexpected agent failure for conversation %s", conversation.id)
            reply = f"I encountered an error: {e}"
            self.chat_store.append_message(conversation.id, "assistant", reply, {"error": type(e).__name__})
            return ChatTurn(conversation.id, reply, failed=True)

        reply = result.response.strip() or EMPTY_RESPONSE_REPLY
        metadata = {"tool_calls": [call.summary() for call in result.tool_calls]}
        self.chat_store.append_message(conversation.id, "assistant", reply, metadata)
        return ChatTurn(conversation.id, reply, result.tool_calls)

    def quick_response(self, user, message: str, conversation_id: int | None = None) -> str:
        """One LLM call without tools or retrieval."""
        history = self.chat_store.list_messages(conversation_id) if conversation_id else []
        messages = self.build_messages(user, history, message, use_rag=False)
        return self.llm.chat(messages, None).content


def check_user_integrations(user) -> list[str]:
    """Providers the user still has to connect ("google", "hubspot")."""
    missing = []
    if not user.has_google:
        missing.append("google")
    if not user.has_hubspot:
        missing.append("hubspot")
    return missing


# =============================================================================
# Convenience function
# =============================================================================

def create_agent(accounts=None) -> Agent:
    """Build an agent from settings: LLM, chat store and (if enabled) retrieval."""
    from .accounts import AccountStore
    from .embeddings import create_embedder
    from .llm import create_llm_client
    from .memory import VectorStore

    retriever = None
    if settings.rag_enabled:
        store = VectorStore(settings.chroma_dir, settings.embedding_dimensions)
        retriever = ContextRetriever(store, create_embedder())

    return Agent(
        llm=create_llm_client(),
        chat_store=ChatStore(settings.db_path),
        retriever=retriever,
        accounts=accounts or AccountStore(settings.db_path),
    )
