"""
Vector store for Advisor_bot.

Persists emails and contacts together with their embedding vectors in
ChromaDB, one collection per record kind, scoped by owning user.

Guarantees:
- At most one record per (user, source id); a repeated put is a no-op.
- Similarity is 1 - cosine distance; results are sorted by descending
  similarity, ties broken by insertion order.
- Every vector read or written must have the configured dimensionality.
"""

import json
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, ClassVar, Literal

from .errors import ConfigurationError, ValidationError

logger = logging.getLogger(__name__)

RecordKind = Literal["email", "contact"]

COLLECTION_NAMES: dict[str, str] = {
    "email": "email_embeddings",
    "contact": "contact_embeddings",
}


# =============================================================================
# Records
# =============================================================================

@dataclass
class EmailRecord:
    """An email as stored for retrieval.

    Attributes:
        source_id: Gmail message id
        subject: Subject header
        from_email: From header
        to_email: To header
        date: When the email was sent (None if unparseable)
        body: Plain text body, used for excerpts
        embedding: Vector computed from the subject, headers and body
    """
    kind: ClassVar[str] = "email"

    source_id: str
    subject: str = ""
    from_email: str = ""
    to_email: str = ""
    date: datetime | None = None
    body: str = ""
    embedding: list[float] = field(default_factory=list, repr=False)
    created_at: datetime | None = None

    @property
    def document(self) -> str:
        return self.body

    def display_metadata(self) -> dict[str, Any]:
        return {
            "subject": self.subject,
            "from_email": self.from_email,
            "to_email": self.to_email,
            "date": self.date.isoformat() if self.date else None,
        }

    @classmethod
    def from_stored(cls, metadata: dict[str, Any], document: str | None) -> "EmailRecord":
        date = metadata.get("date")
        return cls(
            source_id=metadata["source_id"],
            subject=metadata.get("subject", ""),
            from_email=metadata.get("from_email", ""),
            to_email=metadata.get("to_email", ""),
            date=datetime.fromisoformat(date) if date else None,
            body=document or "",
            created_at=_created_at(metadata),
        )


@dataclass
class ContactRecord:
    """A CRM contact as stored for retrieval.

    Attributes:
        source_id: HubSpot contact id
        name: Full name
        email: Primary email address
        notes: Free text notes (company, title, location folded in)
        properties: Remaining CRM properties
        embedding: Vector computed from name, email, notes and properties
    """
    kind: ClassVar[str] = "contact"

    source_id: str
    name: str = ""
    email: str = ""
    notes: str = ""
    properties: dict[str, Any] = field(default_factory=dict)
    embedding: list[float] = field(default_factory=list, repr=False)
    created_at: datetime | None = None

    @property
    def document(self) -> str:
        return self.notes

    def display_metadata(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "email": self.email,
            "properties": self.properties,
        }

    @classmethod
    def from_stored(cls, metadata: dict[str, Any], document: str | None) -> "ContactRecord":
        raw_properties = metadata.get("properties") or "{}"
        return cls(
            source_id=metadata["source_id"],
            name=metadata.get("name", ""),
            email=metadata.get("email", ""),
            notes=document or "",
            properties=json.loads(raw_properties),
            created_at=_created_at(metadata),
        )


EmbeddedRecord = EmailRecord | ContactRecord

RECORD_TYPES: dict[str, type] = {
    "email": EmailRecord,
    "contact": ContactRecord,
}


@dataclass
class SearchHit:
    """A stored record with its similarity to the query."""
    record: EmbeddedRecord
    similarity: float


def _created_at(metadata: dict[str, Any]) -> datetime | None:
    created = metadata.get("created_at")
    return datetime.fromisoformat(created) if created else None


def _sanitize_metadata(metadata: dict[str, Any]) -> dict[str, Any]:
    """ChromaDB only stores str/int/float/bool values."""
    clean = {}
    for key, value in metadata.items():
        if value is None:
            clean[key] = ""
        elif isinstance(value, (dict, list)):
            clean[key] = json.dumps(value)
        else:
            clean[key] = value
    return clean


# =============================================================================
# Store
# =============================================================================

class VectorStore:
    """ChromaDB-backed store for embedded emails and contacts.

    Storage:
    - One persistent Chroma client under `path`
    - Collections `email_embeddings` and `contact_embeddings` in cosine space
    - Document ids are "<user_id>:<source_id>", which makes puts idempotent
    """

    def __init__(self, path: Path, dimensions: int, client=None):
        """Initialize the store.

        Args:
            path: Directory for the persistent ChromaDB files
            dimensions: Expected embedding length for every vector
            client: Optional pre-built Chroma client (tests pass one in)
        """
        self.path = path
        self.dimensions = dimensions
        self._client = client
        self._collections: dict[str, Any] = {}

    def _get_client(self):
        if self._client is None:
            import chromadb
            from chromadb.config import Settings as ChromaSettings

            self.path.mkdir(parents=True, exist_ok=True)
            self._client = chromadb.PersistentClient(
                path=str(self.path),
                settings=ChromaSettings(anonymized_telemetry=False),
            )
        return self._client

    def _collection(self, kind: str):
        """Lazily open (or create) the collection for a record kind.

        Raises:
            ConfigurationError: If the collection was built with another dimensionality.
        """
        if kind not in COLLECTION_NAMES:
            raise ValidationError(f"Unknown record kind: {kind}")

        if kind not in self._collections:
            client = self._get_client()
            name = COLLECTION_NAMES[kind]
            existing = [c if isinstance(c, str) else c.name for c in client.list_collections()]

            if name in existing:
                collection = client.get_collection(name=name)
                stored_dims = (collection.metadata or {}).get("dimensions")
                if stored_dims is not None and int(stored_dims) != self.dimensions:
                    raise ConfigurationError(
                        f"Collection {name} holds {stored_dims}-dimensional vectors but "
                        f"EMBEDDING_DIMENSIONS is {self.dimensions}. Re-sync into a fresh data dir."
                    )
            else:
                collection = client.create_collection(
                    name=name,
                    metadata={"hnsw:space": "cosine", "dimensions": self.dimensions},
                )
            self._collections[kind] = collection

        return self._collections[kind]

    def _check_dimensions(self, vector: list[float]) -> None:
        if len(vector) != self.dimensions:
            raise ConfigurationError(
                f"Embedding has {len(vector)} dimensions, store expects {self.dimensions}"
            )

    @staticmethod
    def _doc_id(user_id: int, source_id: str) -> str:
        return f"{user_id}:{source_id}"

    # ------------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------------

    def put(self, user_id: int, record: EmbeddedRecord) -> EmbeddedRecord:
        """Insert a record unless one already exists for (user_id, source_id).

        Returns:
            The stored record: the new one, or the existing one untouched.
        """
        if not record.source_id:
            raise ValidationError("Record has no source_id")
        if not record.embedding:
            raise ValidationError(f"Record {record.source_id} has no embedding")
        self._check_dimensions(record.embedding)

        existing = self.get(user_id, record.kind, record.source_id)
        if existing is not None:
            logger.debug("%s %s already stored for user %s", record.kind, record.source_id, user_id)
            return existing

        created_at = datetime.now()
        metadata = _sanitize_metadata({
            "user_id": user_id,
            "source_id": record.source_id,
            "seq": time.time_ns(),
            "created_at": created_at.isoformat(),
            **record.display_metadata(),
        })
        self._collection(record.kind).add(
            ids=[self._doc_id(user_id, record.source_id)],
            embeddings=[record.embedding],
            documents=[record.document],
            metadatas=[metadata],
        )
        record.created_at = created_at
        return record

    def update(self, user_id: int, record: EmbeddedRecord) -> EmbeddedRecord | None:
        """Records are append-only: returns the stored version unchanged.

        A changed email or contact keeps its original embedding until the user's
        data is deleted and synced again.
        """
        existing = self.get(user_id, record.kind, record.source_id)
        if existing is None:
            return None
        logger.info("Ignoring update for %s %s (stored records are immutable)", record.kind, record.source_id)
        return existing

    def delete_user(self, user_id: int) -> int:
        """Delete every record owned by a user. Returns how many were removed."""
        removed = 0
        for kind in COLLECTION_NAMES:
            collection = self._collection(kind)
            ids = collection.get(where={"user_id": user_id}, include=[])["ids"]
            if ids:
                collection.delete(ids=ids)
                removed += len(ids)
        return removed

    # ------------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------------

    def get(self, user_id: int, kind: str, source_id: str) -> EmbeddedRecord | None:
        """Fetch one stored record, or None."""
        result = self._collection(kind).get(
            ids=[self._doc_id(user_id, source_id)],
            include=["metadatas", "documents"],
        )
        if not result["ids"]:
            return None
        return RECORD_TYPES[kind].from_stored(result["metadatas"][0], result["documents"][0])

    def exists(self, user_id: int, kind: str, source_id: str) -> bool:
        result = self._collection(kind).get(ids=[self._doc_id(user_id, source_id)], include=[])
        return bool(result["ids"])

    def count(self, user_id: int, kind: str | None = None) -> int:
        """Number of records a user owns, for one kind or for all kinds."""
        kinds = [kind] if kind else list(COLLECTION_NAMES)
        total = 0
        for k in kinds:
            total += len(self._collection(k).get(where={"user_id": user_id}, include=[])["ids"])
        return total

    def last_inserted_at(self, user_id: int, kind: str) -> datetime | None:
        """When the newest record of this kind was stored for the user."""
        result = self._collection(kind).get(where={"user_id": user_id}, include=["metadatas"])
        stamps = [_created_at(m) for m in result["metadatas"] or []]
        stamps = [s for s in stamps if s is not None]
        return max(stamps) if stamps else None

    def top_k(
        self,
        user_id: int,
        kind: str,
        query_vector: list[float],
        k: int,
        min_similarity: float,
    ) -> list[SearchHit]:
        """Return up to k of the user's records most similar to the query.

        Args:
            user_id: Owner whose records are searched
            kind: "email" or "contact"
            query_vector: Embedding of the query text
            k: Maximum number of hits
            min_similarity: Hits below this similarity are dropped

        Returns:
            SearchHits sorted by descending similarity, ties by insertion order
        """
        self._check_dimensions(query_vector)
        if k <= 0:
            return []

        collection = self._collection(kind)
        available = len(collection.get(where={"user_id": user_id}, include=[])["ids"])
        if available == 0:
            return []

        # rank the whole set so ties at the k-th score resolve by insertion order
        results = collection.query(
            query_embeddings=[query_vector],
            n_results=available,
            where={"user_id": user_id},
            include=["metadatas", "documents", "distances"],
        )

        scored = []
        if results["ids"] and results["ids"][0]:
            for i in range(len(results["ids"][0])):
                metadata = results["metadatas"][0][i]
                similarity = 1.0 - float(results["distances"][0][i])
                if similarity < min_similarity:
                    continue
                record = RECORD_TYPES[kind].from_stored(metadata, results["documents"][0][i])
                scored.append((metadata.get("seq", 0), SearchHit(record, similarity)))

        scored.sort(key=lambda item: (-item[1].similarity, item[0]))
        return [hit for _, hit in scored[:k]]
