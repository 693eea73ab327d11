"""
Retrieval over a user's emails and contacts.

Two classes:
- RecordIndexer: turns synced emails/contacts into embedded records and stores them
- ContextRetriever: embeds a question and renders the closest records as a
  context block for the LLM prompt

Usage:
    retriever = ContextRetriever(store, embedder)
    context = retriever.retrieve_context(user.id, "What did Bill say about baseball?")
"""

import logging
from datetime import datetime
from enum import Enum
from typing import Any

from .config import settings
from .embeddings import EmbeddingProvider
from .memory import ContactRecord, EmailRecord, SearchHit, VectorStore

logger = logging.getLogger(__name__)

MAX_EMBED_BODY_CHARS = 10_000
TRUNCATION_MARKER = "\n\n[Email truncated for embedding...]"
CONTEXT_BODY_CHARS = 300
RAG_DATA_FLOOR = 5

QUESTION_MARKERS = ["?", "what", "who", "when", "where", "why", "how"]
RAG_KEYWORDS = [
    "email", "emails", "sent", "received", "wrote",
    "meeting", "meetings", "calendar", "event",
    "contact", "client", "customer",
    "said", "told", "mentioned", "discussed",
    "last time", "previously", "before",
    "find", "search", "look up", "show me",
    "what is", "what are", "tell me about", "info",
    "update", "application", "project", "task",
]


class RagAdvice(str, Enum):
    """Whether retrieval is likely to help, judged by how much data a user has."""
    NO = "no"
    MAYBE = "maybe"
    YES = "yes"


def should_use_rag(message: str) -> bool:
    """Heuristic trigger: a question marker or a known keyword anywhere in the text."""
    text = message.lower()
    return any(marker in text for marker in QUESTION_MARKERS) or any(
        keyword in text for keyword in RAG_KEYWORDS
    )


def _format_date(value: datetime | None) -> str:
    if value is None:
        return "N/A"
    return value.strftime("%Y-%m-%d %I:%M %p")


def _excerpt(text: str, limit: int) -> str:
    text = text or ""
    return text[:limit] + "..." if len(text) > limit else text


# =============================================================================
# Indexing
# =============================================================================

class RecordIndexer:
    """Builds embedding text for emails and contacts and stores the records."""

    def __init__(self, store: VectorStore, embedder: EmbeddingProvider):
        self.store = store
        self.embedder = embedder

    @staticmethod
    def truncate_body(body: str, max_chars: int = MAX_EMBED_BODY_CHARS) -> str:
        body = body or ""
        if len(body) <= max_chars:
            return body
        return body[:max_chars] + TRUNCATION_MARKER

    @staticmethod
    def email_text(email: dict[str, Any], body: str) -> str:
        """The text embedded for an email: header lines, blank line, body."""
        date = email.get("date")
        date_str = date.isoformat() if isinstance(date, datetime) else (date or "")
        return (
            f"Subject: {email.get('subject', '')}\n"
            f"From: {email.get('from', '')}\n"
            f"To: {email.get('to', '')}\n"
            f"Date: {date_str}\n"
            f"\n"
            f"{body}"
        )

    @staticmethod
    def contact_text(name: str, email: str, notes: str, properties: dict[str, Any]) -> str:
        """The text embedded for a contact: name, email, notes, then key: value lines."""
        lines = [f"Name: {name}", f"Email: {email}", f"Notes: {notes}"]
        lines.extend(f"{key}: {value}" for key, value in properties.items() if value not in (None, ""))
        return "\n".join(lines)

    def index_email(self, user_id: int, email: dict[str, Any]) -> tuple[EmailRecord, bool]:
        """Embed and store a parsed email unless it is already stored.

        Args:
            user_id: Owning user
            email: Parsed email (see email_tools.parse_email)

        Returns:
            (stored record, True if it was newly embedded)
        """
        existing = self.store.get(user_id, "email", email["id"])
        if existing is not None:
            return existing, False

        body = self.truncate_body(email.get("body", ""))
        record = EmailRecord(
            source_id=email["id"],
            subject=email.get("subject", ""),
            from_email=email.get("from", ""),
            to_email=email.get("to", ""),
            date=email.get("date"),
            body=body,
            embedding=self.embedder.embed(self.email_text(email, body)),
        )
        return self.store.put(user_id, record), True

    def index_contact(
        self,
        user_id: int,
        source_id: str,
        name: str,
        email: str,
        notes: str,
        properties: dict[str, Any] | None = None,
    ) -> tuple[ContactRecord, bool]:
        """Embed and store a contact unless it is already stored.

        Stored contacts are never re-embedded, see VectorStore.update.
        """
        existing = self.store.get(user_id, "contact", source_id)
        if existing is not None:
            self.store.update(user_id, existing)
            return existing, False

        properties = properties or {}
        record = ContactRecord(
            source_id=source_id,
            name=name,
            email=email,
            notes=notes,
            properties=properties,
            embedding=self.embedder.embed(self.contact_text(name, email, notes, properties)),
        )
        return self.store.put(user_id, record), True


# =============================================================================
# Retrieval
# =============================================================================

class ContextRetriever:
    """Semantic search over stored emails and contacts."""

    def __init__(self, store: VectorStore, embedder: EmbeddingProvider):
        self.store = store
        self.embedder = embedder

    def search_emails(
        self,
        user_id: int,
        query: str,
        limit: int | None = None,
        min_similarity: float | None = None,
    ) -> list[SearchHit]:
        """Emails most similar to the query, best first."""
        vector = self.embedder.embed(query)
        return self.store.top_k(
            user_id, "email", vector,
            k=settings.rag_search_limit if limit is None else limit,
            min_similarity=settings.rag_min_similarity if min_similarity is None else min_similarity,
        )

    def search_contacts(
        self,
        user_id: int,
        query: str,
        limit: int | None = None,
        min_similarity: float | None = None,
    ) -> list[SearchHit]:
        """Contacts most similar to the query, best first."""
        vector = self.embedder.embed(query)
        return self.store.top_k(
            user_id, "contact", vector,
            k=settings.rag_search_limit if limit is None else limit,
            min_similarity=settings.rag_min_similarity if min_similarity is None else min_similarity,
        )

    def retrieve_context(
        self,
        user_id: int,
        query_text: str,
        email_limit: int | None = None,
        contact_limit: int | None = None,
        min_similarity: float | None = None,
    ) -> str:
        """Render the emails and contacts closest to `query_text` as a context block.

        The query is embedded once and both collections are searched with the
        same vector and threshold. An empty section renders a placeholder line.

        Args:
            user_id: Owner whose records are searched
            query_text: The user's message
            email_limit: Max emails in the block (default: settings.rag_email_limit)
            contact_limit: Max contacts in the block (default: settings.rag_contact_limit)
            min_similarity: Threshold (default: settings.rag_min_similarity)

        Returns:
            The formatted "RELEVANT EMAILS / RELEVANT CONTACTS" block
        """
        email_limit = settings.rag_email_limit if email_limit is None else email_limit
        contact_limit = settings.rag_contact_limit if contact_limit is None else contact_limit
        threshold = settings.rag_min_similarity if min_similarity is None else min_similarity
        k = max(email_limit, contact_limit)

        vector = self.embedder.embed(query_text)
        emails = self.store.top_k(user_id, "email", vector, k=k, min_similarity=threshold)[:email_limit]
        contacts = self.store.top_k(user_id, "contact", vector, k=k, min_similarity=threshold)[:contact_limit]
        logger.debug("Retrieved %d emails, %d contacts for user %s", len(emails), len(contacts), user_id)

        return format_context(emails, contacts)

    def would_help(self, user_id: int) -> RagAdvice:
        """Advisory signal from the amount of stored data (not a gate)."""
        total = self.store.count(user_id)
        if total == 0:
            return RagAdvice.NO
        if total < RAG_DATA_FLOOR:
            return RagAdvice.MAYBE
        return RagAdvice.YES


def format_context(emails: list[SearchHit], contacts: list[SearchHit]) -> str:
    """Render search hits into the two-section block injected into prompts."""
    email_entries = []
    for idx, hit in enumerate(emails, 1):
        email = hit.record
        email_entries.append(
            f"{idx}. [Similarity: {round(hit.similarity, 2)}]\n"
            f"   Subject: {email.subject}\n"
            f"   From: {email.from_email}\n"
            f"   To: {email.to_email}\n"
            f"   Date: {_format_date(email.date)}\n"
            f"   Body: {_excerpt(email.body, CONTEXT_BODY_CHARS)}\n"
        )

    contact_entries = []
    for idx, hit in enumerate(contacts, 1):
        contact = hit.record
        contact_entries.append(
            f"{idx}. [Similarity: {round(hit.similarity, 2)}]\n"
            f"   Name: {contact.name}\n"
            f"   Email: {contact.email}\n"
            f"   Notes: {_excerpt(contact.notes, CONTEXT_BODY_CHARS) if contact.notes else 'N/A'}\n"
        )

    email_section = "\n".join(email_entries) if email_entries else "No relevant emails found.\n"
    contact_section = "\n".join(contact_entries) if contact_entries else "No relevant contacts found.\n"
    return f"RELEVANT EMAILS:\n{email_section}\nRELEVANT CONTACTS:\n{contact_section}"
