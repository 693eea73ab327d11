"""
HubSpot CRM client for Advisor_bot.

Contacts, notes and deals through the HubSpot CRM v3 REST API, using httpx.
Requires the user's HubSpot account to be connected:
`python -m advisor_bot connect-hubspot`

Errors from the API surface as ProviderError; a missing contact as NotFoundError.
"""

import logging
from typing import Any

import httpx

from .config import settings
from .errors import NotFoundError, ProviderError, ValidationError

logger = logging.getLogger(__name__)

HUBSPOT_API_BASE = "https://api.hubapi.com"

CONTACT_PROPERTIES = [
    "email", "firstname", "lastname", "phone", "company",
    "jobtitle", "city", "state", "country", "notes",
]
DEAL_PROPERTIES = ["dealname", "amount", "dealstage", "closedate", "pipeline", "dealtype"]

# HubSpot-defined association type: note -> contact
NOTE_TO_CONTACT_ASSOCIATION = 202


def _full_name(first: str | None, last: str | None) -> str:
    return " ".join(part for part in (first, last) if part)


def parse_contact(contact: dict) -> dict[str, Any]:
    """Flatten a raw HubSpot contact object."""
    props = contact.get("properties") or {}
    return {
        "id": str(contact.get("id", "")),
        "email": props.get("email"),
        "name": _full_name(props.get("firstname"), props.get("lastname")),
        "firstname": props.get("firstname"),
        "lastname": props.get("lastname"),
        "phone": props.get("phone"),
        "company": props.get("company"),
        "jobtitle": props.get("jobtitle"),
        "city": props.get("city"),
        "state": props.get("state"),
        "country": props.get("country"),
        "notes": props.get("notes"),
        "created_at": contact.get("createdAt"),
        "updated_at": contact.get("updatedAt"),
    }


def parse_deal(deal: dict) -> dict[str, Any]:
    """Flatten a raw HubSpot deal object."""
    props = deal.get("properties") or {}
    return {
        "id": str(deal.get("id", "")),
        "name": props.get("dealname"),
        "amount": props.get("amount"),
        "stage": props.get("dealstage"),
        "close_date": props.get("closedate"),
        "pipeline": props.get("pipeline"),
        "deal_type": props.get("dealtype"),
    }


class HubSpotClient:
    """HubSpot CRM v3 client bound to one access token."""

    def __init__(self, access_token: str, http: httpx.Client | None = None):
        self.http = http or httpx.Client(
            base_url=HUBSPOT_API_BASE,
            timeout=settings.http_timeout_seconds,
        )
        self.http.headers["Authorization"] = f"Bearer {access_token}"

    @classmethod
    def for_user(cls, user, accounts) -> "HubSpotClient":
        """Build a client with a valid token, refreshing it if needed."""
        from .accounts import hubspot_access_token

        return cls(hubspot_access_token(user, accounts))

    def close(self) -> None:
        self.http.close()

    def __enter__(self) -> "HubSpotClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _request(self, method: str, path: str, action: str, **kwargs) -> dict[str, Any]:
        try:
            response = self.http.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.error("HubSpot %s request failed: %s", action, e)
            raise ProviderError(f"Failed to {action}: {e}") from e

        if response.status_code == 404:
            raise NotFoundError("HubSpot object", path)
        if response.status_code not in (200, 201):
            logger.error("HubSpot %s error: %s - %s", action, response.status_code, response.text)
            raise ProviderError(f"Failed to {action}: {response.status_code}", response.status_code)
        return response.json()

    # ========================================================================
    # Contacts
    # ========================================================================

    def list_contacts(self, limit: int = 100, after: str | None = None) -> dict[str, Any]:
        """One page of contacts.

        Returns:
            Dict with "results" (parsed contacts) and "after" (next cursor or None)
        """
        params: dict[str, Any] = {"limit": limit, "properties": ",".join(CONTACT_PROPERTIES)}
        if after:
            params["after"] = after

        data = self._request("GET", "/crm/v3/objects/contacts", "list contacts", params=params)
        next_page = (data.get("paging") or {}).get("next") or {}
        return {
            "results": [parse_contact(c) for c in data.get("results", [])],
            "after": next_page.get("after"),
        }

    def get_all_contacts(self, page_size: int = 100) -> list[dict[str, Any]]:
        """Every contact, following the paging cursor."""
        contacts: list[dict[str, Any]] = []
        after = None
        while True:
            page = self.list_contacts(limit=page_size, after=after)
            contacts.extend(page["results"])
            after = page["after"]
            if not after:
                return contacts

    def get_contact(self, contact_id: str) -> dict[str, Any]:
        data = self._request(
            "GET",
            f"/crm/v3/objects/contacts/{contact_id}",
            "get contact",
            params={"properties": ",".join(CONTACT_PROPERTIES)},
        )
        return parse_contact(data)

    def search_contact_by_email(self, email: str) -> dict[str, Any]:
        """Exact email lookup.

        Raises:
            NotFoundError: If no contact has this email.
        """
        body = {
            "filterGroups": [
                {"filters": [{"propertyName": "email", "operator": "EQ", "value": email}]}
            ],
            "properties": CONTACT_PROPERTIES,
            "limit": 1,
        }
        data = self._request("POST", "/crm/v3/objects/contacts/search", "search contacts", json=body)
        results = data.get("results", [])
        if not results:
            raise NotFoundError("Contact", email)
        return parse_contact(results[0])

    def create_contact(self, properties: dict[str, Any]) -> dict[str, Any]:
        if not properties.get("email"):
            raise ValidationError("Missing required argument: email")
        clean = {k: v for k, v in properties.items() if v is not None}
        data = self._request(
            "POST", "/crm/v3/objects/contacts", "create contact", json={"properties": clean}
        )
        logger.info("Created HubSpot contact %s", data.get("id"))
        return parse_contact(data)

    # ========================================================================
    # Notes & deals
    # ========================================================================

    def create_note(self, contact_id: str, body: str) -> dict[str, Any]:
        """Create a note associated with a contact."""
        payload = {
            "properties": {"hs_note_body": body},
            "associations": [
                {
                    "to": {"id": contact_id},
                    "types": [
                        {
                            "associationCategory": "HUBSPOT_DEFINED",
                            "associationTypeId": NOTE_TO_CONTACT_ASSOCIATION,
                        }
                    ],
                }
            ],
        }
        data = self._request("POST", "/crm/v3/objects/notes", "create note", json=payload)
        return {"id": str(data.get("id", "")), "contact_id": contact_id, "body": body}

    def list_deals(self, limit: int = 20) -> list[dict[str, Any]]:
        params = {"limit": limit, "properties": ",".join(DEAL_PROPERTIES)}
        data = self._request("GET", "/crm/v3/objects/deals", "list deals", params=params)
        return [parse_deal(d) for d in data.get("results", [])]
