"""Tests for the email and contact sync jobs."""

from types import SimpleNamespace
from unittest.mock import MagicMock

import httpx

from advisor_bot.embeddings import GeminiEmbedder
from advisor_bot.rag import RecordIndexer
from advisor_bot.sync import build_contact_notes, get_sync_status, sync_all, sync_contacts, sync_emails

from tests.fakes import BASEBALL_EMAIL, TAX_EMAIL, FakeGmail


def test_email_sync_is_idempotent(user, gmail, indexer, embedder):
    first = sync_emails(user, gmail, indexer)
    second = sync_emails(user, gmail, indexer)

    assert (first.fetched, first.created, first.existing) == (2, 2, 0)
    assert (second.fetched, second.created, second.existing) == (2, 0, 2)
    assert len(embedder.calls) == 2
    assert gmail.sync_requests[0] == {"days": 30, "max_results": 100}


def test_failed_item_is_skipped(user, indexer, store):
    broken = dict(TAX_EMAIL, id="msg-broken", body="BROKEN payload")
    gmail = FakeGmail([BASEBALL_EMAIL, broken, TAX_EMAIL])

    result = sync_emails(user, gmail, indexer, days_back=7)

    assert result.created == 2
    assert result.failed == 1
    assert result.errors[0].startswith("msg-broken:")
    assert store.count(user.id, "email") == 2
    assert gmail.sync_requests[0]["days"] == 7


def test_contact_sync_builds_notes(user, hubspot, indexer, store):
    result = sync_contacts(user, hubspot, indexer)

    assert result.to_dict()["embeddings_created"] == 1
    stored = store.get(user.id, "contact", "501")
    assert stored.name == "Sara Investor"
    assert stored.notes == "Real estate investor. Company: Harbor Capital. Title: Partner. Location: Boston, MA"
    assert stored.properties == {"company": "Harbor Capital", "jobtitle": "Partner", "city": "Boston", "state": "MA"}


def test_build_contact_notes_skips_empty_parts():
    assert build_contact_notes({"city": "Austin"}) == "Location: Austin"
    assert build_contact_notes({}) == ""


def test_sync_all_reports_unconnected_sources(user, indexer, accounts):
    results = sync_all(user, indexer, accounts=accounts)

    assert results["emails"].errors == ["Google account not connected"]
    assert results["contacts"].errors == ["HubSpot account not connected"]


def test_sync_all_with_adapters(user, indexer, gmail, hubspot, store):
    results = sync_all(user, indexer, gmail=gmail, hubspot=hubspot, contacts=True)

    assert results["emails"].created == 2
    assert results["contacts"].created == 1

    status = get_sync_status(user, store)
    assert status["emails"] == 2
    assert status["contacts"] == 1
    assert status["total"] == 3
    assert status["last_email_sync"] is not None
    assert status["google_connected"] is False


def test_dropped_connection_skips_only_that_email(user, gmail, store):
    client = MagicMock()
    client.models.embed_content.side_effect = [
        httpx.ConnectError("connection reset"),
        SimpleNamespace(embeddings=[SimpleNamespace(values=[0.1, 0.2, 0.3, 0.4])]),
    ]
    indexer = RecordIndexer(store, GeminiEmbedder("key", "text-embedding-004", 4, client=client))

    result = sync_emails(user, gmail, indexer)

    assert result.failed == 1
    assert result.created == 1
    assert "connection reset" in result.errors[0]
    assert store.count(user.id, "email") == 1
