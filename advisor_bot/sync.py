"""
Data sync: pull emails and contacts, embed them, store them for retrieval.

Runs outside the request path (the `sync` CLI command or any scheduler that
invokes it). Each run is idempotent per source id: already stored records are
skipped without calling the embedding provider. A record that fails to embed
or store is logged and skipped; the rest of the batch continues.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

from .config import settings
from .errors import AdvisorBotError
from .memory import VectorStore
from .rag import RecordIndexer

logger = logging.getLogger(__name__)


@dataclass
class SyncResult:
    """Counts for one sync run of one source."""
    source: str
    fetched: int = 0
    created: int = 0
    existing: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "fetched": self.fetched,
            "embeddings_created": self.created,
            "already_stored": self.existing,
            "failed": self.failed,
            "errors": self.errors,
        }


def build_contact_notes(contact: dict[str, Any]) -> str:
    """Fold company, title and location into the contact's searchable notes."""
    parts = []
    if contact.get("notes"):
        parts.append(contact["notes"])
    if contact.get("company"):
        parts.append(f"Company: {contact['company']}")
    if contact.get("jobtitle"):
        parts.append(f"Title: {contact['jobtitle']}")
    location = ", ".join(p for p in (contact.get("city"), contact.get("state")) if p)
    if location:
        parts.append(f"Location: {location}")
    return ". ".join(parts)


def _contact_properties(contact: dict[str, Any]) -> dict[str, Any]:
    keys = ("phone", "company", "jobtitle", "city", "state", "country")
    return {key: contact[key] for key in keys if contact.get(key)}


def sync_emails(
    user,
    gmail,
    indexer: RecordIndexer,
    days_back: int | None = None,
    max_results: int | None = None,
) -> SyncResult:
    """Fetch recent Gmail messages and store any that are new.

    Raises:
        ProviderError: If the message list itself cannot be fetched.
    """
    days_back = days_back or settings.sync_days_back
    result = SyncResult("emails")

    emails = gmail.sync_recent_emails(days=days_back, max_results=max_results or settings.sync_max_emails)
    result.fetched = len(emails)
    logger.info("Fetched %d emails for user %s (last %d days)", len(emails), user.id, days_back)

    for email in emails:
        try:
            _, created = indexer.index_email(user.id, email)
        except AdvisorBotError as e:
            logger.warning("Failed to store email %s: %s", email.get("id"), e)
            result.failed += 1
            result.errors.append(f"{email.get('id')}: {e}")
            continue
        if created:
            result.created += 1
        else:
            result.existing += 1

    logger.info("Email sync for user %s: %s", user.id, result.to_dict())
    return result


def sync_contacts(user, hubspot, indexer: RecordIndexer) -> SyncResult:
    """Fetch all HubSpot contacts and store any that are new.

    Raises:
        ProviderError: If the contact list itself cannot be fetched.
    """
    result = SyncResult("contacts")

    contacts = hubspot.get_all_contacts()
    result.fetched = len(contacts)
    logger.info("Fetched %d contacts for user %s", len(contacts), user.id)

    for contact in contacts:
        try:
            _, created = indexer.index_contact(
                user.id,
                source_id=contact["id"],
                name=contact.get("name") or "",
                email=contact.get("email") or "",
                notes=build_contact_notes(contact),
                properties=_contact_properties(contact),
            )
        except AdvisorBotError as e:
            logger.warning("Failed to store contact %s: %s", contact.get("id"), e)
            result.failed += 1
            result.errors.append(f"{contact.get('id')}: {e}")
            continue
        if created:
            result.created += 1
        else:
            result.existing += 1

    logger.info("Contact sync for user %s: %s", user.id, result.to_dict())
    return result


def sync_all(
    user,
    indexer: RecordIndexer,
    accounts=None,
    gmail=None,
    hubspot=None,
    emails: bool = True,
    contacts: bool = True,
    days_back: int | None = None,
) -> dict[str, SyncResult]:
    """Sync every connected source. A failing source doesn't stop the others."""
    results: dict[str, SyncResult] = {}

    if emails:
        if gmail is None and not user.has_google:
            logger.warning("User %s has no Google token. Cannot sync emails.", user.id)
            results["emails"] = SyncResult("emails", errors=["Google account not connected"])
        else:
            try:
                if gmail is None:
                    from .email_tools import GmailClient
                    gmail = GmailClient.for_user(user, accounts)
                results["emails"] = sync_emails(user, gmail, indexer, days_back=days_back)
            except AdvisorBotError as e:
                logger.error("Email sync failed for user %s: %s", user.id, e)
                results["emails"] = SyncResult("emails", errors=[str(e)])

    if contacts:
        if hubspot is None and not user.has_hubspot:
            logger.warning("User %s has no HubSpot token. Cannot sync contacts.", user.id)
            results["contacts"] = SyncResult("contacts", errors=["HubSpot account not connected"])
        else:
            try:
                if hubspot is None:
                    from .contacts_tools import HubSpotClient
                    with HubSpotClient.for_user(user, accounts) as client:
                        results["contacts"] = sync_contacts(user, client, indexer)
                else:
                    results["contacts"] = sync_contacts(user, hubspot, indexer)
            except AdvisorBotError as e:
                logger.error("Contact sync failed for user %s: %s", user.id, e)
                results["contacts"] = SyncResult("contacts", errors=[str(e)])

    return results


def get_sync_status(user, store: VectorStore) -> dict[str, Any]:
    """How much is stored for a user and when each kind was last added to."""
    emails = store.count(user.id, "email")
    contacts = store.count(user.id, "contact")
    last_email = store.last_inserted_at(user.id, "email")
    last_contact = store.last_inserted_at(user.id, "contact")
    return {
        "emails": emails,
        "contacts": contacts,
        "total": emails + contacts,
        "last_email_sync": last_email.isoformat() if last_email else None,
        "last_contact_sync": last_contact.isoformat() if last_contact else None,
        "google_connected": user.has_google,
        "hubspot_connected": user.has_hubspot,
    }
