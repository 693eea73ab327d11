"""Shared pytest fixtures.

Provides:
- Settings pinned to known values, with data under tmp_path
- SQLite account and chat stores, a ChromaDB vector store on disk
- Fake embedder, LLM and Gmail / Calendar / HubSpot adapters
"""

import pytest

from advisor_bot.accounts import AccountStore
from advisor_bot.agent import Agent
from advisor_bot.chat import ChatStore
from advisor_bot.config import settings
from advisor_bot.memory import VectorStore
from advisor_bot.rag import ContextRetriever, RecordIndexer
from advisor_bot.tools import ToolContext

from tests.fakes import (
    BASEBALL_EMAIL,
    BASEBALL_VECTORS,
    DIMENSIONS,
    TAX_EMAIL,
    FakeCalendar,
    FakeEmbedder,
    FakeGmail,
    FakeHubSpot,
    FakeLLM,
)


# ============================================================================
# Settings
# ============================================================================


@pytest.fixture(autouse=True)
def pinned_settings(monkeypatch, tmp_path):
    """Pin every setting the tests depend on, regardless of the local .env."""
    monkeypatch.setattr(settings, "data_dir", tmp_path / "data")
    monkeypatch.setattr(settings, "embedding_dimensions", DIMENSIONS)
    monkeypatch.setattr(settings, "embedding_model", None)
    monkeypatch.setattr(settings, "default_user_email", None)
    monkeypatch.setattr(settings, "rag_enabled", True)
    monkeypatch.setattr(settings, "rag_min_similarity", 0.3)
    monkeypatch.setattr(settings, "rag_email_limit", 3)
    monkeypatch.setattr(settings, "rag_contact_limit", 3)
    monkeypatch.setattr(settings, "rag_search_limit", 5)
    monkeypatch.setattr(settings, "agent_max_iterations", 5)
    monkeypatch.setattr(settings, "sync_days_back", 30)
    monkeypatch.setattr(settings, "sync_max_emails", 100)
    monkeypatch.setattr(settings, "hubspot_client_id", None)
    monkeypatch.setattr(settings, "hubspot_client_secret", None)
    return settings


# ============================================================================
# Storage Fixtures
# ============================================================================


@pytest.fixture
def accounts(tmp_path) -> AccountStore:
    return AccountStore(tmp_path / "advisor.db")


@pytest.fixture
def user(accounts):
    """An advisor with no connected providers."""
    return accounts.get_or_create_user("advisor@example.com", "Ada Advisor")


@pytest.fixture
def chat_store(tmp_path) -> ChatStore:
    return ChatStore(tmp_path / "advisor.db")


@pytest.fixture
def store(tmp_path) -> VectorStore:
    """A persistent ChromaDB store in a fresh directory."""
    return VectorStore(tmp_path / "chroma", DIMENSIONS)


# ============================================================================
# Retrieval Fixtures
# ============================================================================


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder(BASEBALL_VECTORS)


@pytest.fixture
def indexer(store, embedder) -> RecordIndexer:
    return RecordIndexer(store, embedder)


@pytest.fixture
def retriever(store, embedder) -> ContextRetriever:
    return ContextRetriever(store, embedder)


@pytest.fixture
def indexed(user, indexer):
    """The user's store holding the baseball (0.9) and tax (0.2) emails."""
    indexer.index_email(user.id, BASEBALL_EMAIL)
    indexer.index_email(user.id, TAX_EMAIL)
    return user


# ============================================================================
# Adapter Fixtures
# ============================================================================


@pytest.fixture
def gmail() -> FakeGmail:
    return FakeGmail([BASEBALL_EMAIL, TAX_EMAIL])


@pytest.fixture
def calendar() -> FakeCalendar:
    return FakeCalendar()


@pytest.fixture
def hubspot() -> FakeHubSpot:
    return FakeHubSpot(
        contacts=[
            {
                "id": "501",
                "email": "sara@example.com",
                "name": "Sara Investor",
                "firstname": "Sara",
                "lastname": "Investor",
                "company": "Harbor Capital",
                "jobtitle": "Partner",
                "city": "Boston",
                "state": "MA",
                "notes": "Real estate investor",
            },
        ],
        deals=[{"id": "d1", "name": "Retirement plan", "amount": "25000", "stage": "qualified"}],
    )


@pytest.fixture
def tool_ctx(user, retriever, accounts, gmail, calendar, hubspot) -> ToolContext:
    return ToolContext(
        user=user,
        retriever=retriever,
        accounts=accounts,
        gmail=gmail,
        calendar=calendar,
        hubspot=hubspot,
    )


@pytest.fixture
def make_agent(chat_store, retriever, accounts, gmail, calendar, hubspot):
    """Factory: build an Agent around a FakeLLM scripted with `responses`."""

    def _make(responses, **kwargs):
        llm = FakeLLM(responses)
        agent = Agent(
            llm=llm,
            chat_store=chat_store,
            retriever=kwargs.pop("retriever", retriever),
            accounts=accounts,
            adapters={"gmail": gmail, "calendar": calendar, "hubspot": hubspot},
            **kwargs,
        )
        return agent, llm

    return _make
