"""Tests for the HubSpot client, served by an httpx MockTransport."""

import json

import httpx
import pytest

from advisor_bot.contacts_tools import HUBSPOT_API_BASE, NOTE_TO_CONTACT_ASSOCIATION, HubSpotClient, parse_contact
from advisor_bot.errors import NotFoundError, ProviderError, ValidationError

SARA = {
    "id": "501",
    "properties": {"email": "sara@example.com", "firstname": "Sara", "lastname": "Investor", "city": "Boston"},
    "createdAt": "2024-01-01T00:00:00Z",
}


def _client(handler) -> tuple[HubSpotClient, list[httpx.Request]]:
    seen: list[httpx.Request] = []

    def record(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return handler(request)

    http = httpx.Client(base_url=HUBSPOT_API_BASE, transport=httpx.MockTransport(record))
    return HubSpotClient("token-abc", http=http), seen


def test_parse_contact():
    parsed = parse_contact(SARA)
    assert parsed["id"] == "501"
    assert parsed["name"] == "Sara Investor"
    assert parsed["city"] == "Boston"
    assert parsed["phone"] is None


def test_search_by_email_sends_filter_and_token():
    client, seen = _client(lambda request: httpx.Response(200, json={"results": [SARA]}))

    contact = client.search_contact_by_email("sara@example.com")

    assert contact["firstname"] == "Sara"
    request = seen[0]
    assert request.headers["Authorization"] == "Bearer token-abc"
    assert request.url.path == "/crm/v3/objects/contacts/search"
    body = json.loads(request.content)
    assert body["filterGroups"][0]["filters"][0] == {"propertyName": "email", "operator": "EQ", "value": "sara@example.com"}


def test_search_without_results():
    client, _ = _client(lambda request: httpx.Response(200, json={"results": []}))
    with pytest.raises(NotFoundError):
        client.search_contact_by_email("nobody@example.com")


def test_get_all_contacts_follows_paging():
    pages = {
        None: {"results": [SARA], "paging": {"next": {"after": "cursor-2"}}},
        "cursor-2": {"results": [dict(SARA, id="502")]},
    }

    def handler(request):
        return httpx.Response(200, json=pages[request.url.params.get("after")])

    client, seen = _client(handler)
    contacts = client.get_all_contacts()

    assert [c["id"] for c in contacts] == ["501", "502"]
    assert len(seen) == 2


def test_create_note_associates_contact():
    client, seen = _client(lambda request: httpx.Response(201, json={"id": "n-9"}))

    note = client.create_note("501", "Discussed college fund")

    assert note == {"id": "n-9", "contact_id": "501", "body": "Discussed college fund"}
    payload = json.loads(seen[0].content)
    association = payload["associations"][0]
    assert association["to"] == {"id": "501"}
    assert association["types"][0]["associationTypeId"] == NOTE_TO_CONTACT_ASSOCIATION


def test_create_contact_requires_email():
    client, seen = _client(lambda request: httpx.Response(201, json=SARA))
    with pytest.raises(ValidationError):
        client.create_contact({"firstname": "NoEmail"})
    assert seen == []


def test_list_deals():
    deal = {"id": "d1", "properties": {"dealname": "Retirement plan", "amount": "25000", "dealstage": "qualified"}}
    client, seen = _client(lambda request: httpx.Response(200, json={"results": [deal]}))

    deals = client.list_deals(limit=3)

    assert deals[0]["name"] == "Retirement plan"
    assert deals[0]["stage"] == "qualified"
    assert seen[0].url.params["limit"] == "3"


def test_api_errors():
    client, _ = _client(lambda request: httpx.Response(500, text="oops"))
    with pytest.raises(ProviderError) as excinfo:
        client.list_deals()
    assert excinfo.value.status_code == 500

    client, _ = _client(lambda request: httpx.Response(404, json={}))
    with pytest.raises(NotFoundError):
        client.get_contact("missing")


def test_client_closes_its_connection_pool():
    client, _ = _client(lambda request: httpx.Response(200, json={"results": []}))

    with client as hubspot:
        hubspot.list_deals()

    assert client.http.is_closed
