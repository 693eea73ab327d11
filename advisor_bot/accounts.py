"""
User accounts and OAuth tokens for Advisor_bot.

Each user holds tokens for two independent providers: Google (Gmail and
Calendar share one grant) and HubSpot. A provider is disconnected by nulling
its access token, refresh token and expiry. A token counts as expired when
its expiry is missing or in the past.
"""

import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import httpx

from .config import settings
from .errors import ConfigurationError, NotFoundError, ProviderError, ValidationError

logger = logging.getLogger(__name__)

GOOGLE_SCOPES = [
    "https://www.googleapis.com/auth/gmail.readonly",
    "https://www.googleapis.com/auth/gmail.send",
    "https://www.googleapis.com/auth/calendar",
]
GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"

HUBSPOT_AUTHORIZE_URL = "https://app.hubspot.com/oauth/authorize"
HUBSPOT_TOKEN_URL = "https://api.hubapi.com/oauth/v1/token"
HUBSPOT_SCOPES = [
    "crm.objects.contacts.read",
    "crm.objects.contacts.write",
    "crm.objects.deals.read",
    "oauth",
]

PROVIDERS = ("google", "hubspot")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_ts(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _is_expired(expires_at: datetime | None, now: datetime | None = None) -> bool:
    if expires_at is None:
        return True
    return expires_at <= (now or _utcnow())


@dataclass
class UserAccount:
    """A user with their provider tokens."""
    id: int
    email: str
    name: str | None = None
    google_access_token: str | None = None
    google_refresh_token: str | None = None
    google_token_expires_at: datetime | None = None
    hubspot_access_token: str | None = None
    hubspot_refresh_token: str | None = None
    hubspot_token_expires_at: datetime | None = None
    hubspot_portal_id: str | None = None

    @property
    def has_google(self) -> bool:
        return bool(self.google_access_token)

    @property
    def has_hubspot(self) -> bool:
        return bool(self.hubspot_access_token)

    @property
    def google_token_expired(self) -> bool:
        return _is_expired(self.google_token_expires_at)

    @property
    def hubspot_token_expired(self) -> bool:
        return _is_expired(self.hubspot_token_expires_at)


class AccountStore:
    """SQLite store for user accounts and their OAuth tokens."""

    _TOKEN_FIELDS = {
        "google": ("google_access_token", "google_refresh_token", "google_token_expires_at"),
        "hubspot": ("hubspot_access_token", "hubspot_refresh_token", "hubspot_token_expires_at"),
    }

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_sqlite()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_sqlite(self):
        conn = self._connect()
        conn.execute("""
            CREATE TABLE IF NOT EXISTS users (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                email TEXT NOT NULL UNIQUE,
                name TEXT,
                google_access_token TEXT,
                google_refresh_token TEXT,
                google_token_expires_at TEXT,
                hubspot_access_token TEXT,
                hubspot_refresh_token TEXT,
                hubspot_token_expires_at TEXT,
                hubspot_portal_id TEXT,
                created_at TEXT NOT NULL
            )
        """)
        conn.commit()
        conn.close()

    @staticmethod
    def _row_to_user(row: sqlite3.Row) -> UserAccount:
        return UserAccount(
            id=row["id"],
            email=row["email"],
            name=row["name"],
            google_access_token=row["google_access_token"],
            google_refresh_token=row["google_refresh_token"],
            google_token_expires_at=_parse_ts(row["google_token_expires_at"]),
            hubspot_access_token=row["hubspot_access_token"],
            hubspot_refresh_token=row["hubspot_refresh_token"],
            hubspot_token_expires_at=_parse_ts(row["hubspot_token_expires_at"]),
            hubspot_portal_id=row["hubspot_portal_id"],
        )

    def get_user(self, user_id: int) -> UserAccount:
        conn = self._connect()
        row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        conn.close()
        if row is None:
            raise NotFoundError("User", user_id)
        return self._row_to_user(row)

    def get_user_by_email(self, email: str) -> UserAccount | None:
        conn = self._connect()
        row = conn.execute("SELECT * FROM users WHERE email = ?", (email.lower(),)).fetchone()
        conn.close()
        return self._row_to_user(row) if row else None

    def get_or_create_user(self, email: str, name: str | None = None) -> UserAccount:
        if not email or "@" not in email:
            raise ValidationError(f"Invalid email address: {email!r}")

        existing = self.get_user_by_email(email)
        if existing is not None:
            return existing

        conn = self._connect()
        cursor = conn.execute(
            "INSERT INTO users (email, name, created_at) VALUES (?, ?, ?)",
            (email.lower(), name, _utcnow().isoformat()),
        )
        user_id = cursor.lastrowid
        conn.commit()
        conn.close()
        logger.info("Created user %s (%s)", user_id, email)
        return self.get_user(user_id)

    def list_users(self) -> list[UserAccount]:
        conn = self._connect()
        rows = conn.execute("SELECT * FROM users ORDER BY id").fetchall()
        conn.close()
        return [self._row_to_user(row) for row in rows]

    def _set_fields(self, user_id: int, values: dict[str, Any]) -> UserAccount:
        assignments = ", ".join(f"{column} = ?" for column in values)
        params = [v.isoformat() if isinstance(v, datetime) else v for v in values.values()]

        conn = self._connect()
        cursor = conn.execute(
            f"UPDATE users SET {assignments} WHERE id = ?", (*params, user_id)
        )
        conn.commit()
        conn.close()
        if cursor.rowcount == 0:
            raise NotFoundError("User", user_id)
        return self.get_user(user_id)

    def update_tokens(
        self,
        user_id: int,
        provider: str,
        access_token: str,
        refresh_token: str | None,
        expires_at: datetime | None,
        portal_id: str | None = None,
    ) -> UserAccount:
        """Store fresh tokens. A None refresh token keeps the stored one."""
        if provider not in PROVIDERS:
            raise ValidationError(f"Unknown provider: {provider}")

        access_col, refresh_col, expiry_col = self._TOKEN_FIELDS[provider]
        values: dict[str, Any] = {access_col: access_token, expiry_col: expires_at}
        if refresh_token:
            values[refresh_col] = refresh_token
        if provider == "hubspot" and portal_id:
            values["hubspot_portal_id"] = str(portal_id)
        return self._set_fields(user_id, values)

    def disconnect(self, user_id: int, provider: str) -> UserAccount:
        """Null the provider's access token, refresh token and expiry."""
        if provider not in PROVIDERS:
            raise ValidationError(f"Unknown provider: {provider}")
        return self._set_fields(user_id, {column: None for column in self._TOKEN_FIELDS[provider]})

    def delete_user(self, user_id: int) -> None:
        conn = self._connect()
        conn.execute("DELETE FROM users WHERE id = ?", (user_id,))
        conn.commit()
        conn.close()


# =============================================================================
# Token refresh
# =============================================================================

def google_credentials(user: UserAccount, accounts: AccountStore):
    """Build google-auth Credentials for a user, refreshing them if expired.

    Raises:
        ConfigurationError: If Google isn't connected or can't be refreshed.
        ProviderError: If Google rejects the refresh.
    """
    from google.auth.exceptions import GoogleAuthError
    from google.auth.transport.requests import Request
    from google.oauth2.credentials import Credentials

    if not user.google_access_token:
        raise ConfigurationError("Google account not connected. Run: advisor-bot connect-google")

    expiry = user.google_token_expires_at
    creds = Credentials(
        token=user.google_access_token,
        refresh_token=user.google_refresh_token,
        token_uri=GOOGLE_TOKEN_URI,
        client_id=settings.google_client_id,
        client_secret=settings.google_client_secret,
        scopes=GOOGLE_SCOPES,
        # google-auth compares against naive UTC
        expiry=expiry.astimezone(timezone.utc).replace(tzinfo=None) if expiry else None,
    )

    if user.google_token_expired:
        if not (user.google_refresh_token and settings.google_client_id and settings.google_client_secret):
            raise ConfigurationError(
                "Google token expired and cannot be refreshed. Re-run: advisor-bot connect-google"
            )
        try:
            creds.refresh(Request())
        except GoogleAuthError as e:
            raise ProviderError(f"Failed to refresh Google token: {e}") from e

        new_expiry = creds.expiry.replace(tzinfo=timezone.utc) if creds.expiry else None
        accounts.update_tokens(user.id, "google", creds.token, creds.refresh_token, new_expiry)
        user.google_access_token = creds.token
        user.google_token_expires_at = new_expiry
        logger.info("Refreshed Google token for user %s", user.id)

    return creds


def _hubspot_token_request(form: dict[str, str], http: httpx.Client | None = None) -> dict[str, Any]:
    client = http or httpx.Client(timeout=settings.http_timeout_seconds)
    try:
        response = client.post(HUBSPOT_TOKEN_URL, data=form)
    except httpx.HTTPError as e:
        raise ProviderError(f"Failed to reach HubSpot: {e}") from e
    finally:
        if http is None:
            client.close()

    if response.status_code != 200:
        logger.error("HubSpot token request failed: %s %s", response.status_code, response.text)
        raise ProviderError(f"HubSpot token request failed ({response.status_code})", response.status_code)
    return response.json()


def hubspot_authorize_url(state: str | None = None) -> str:
    if not settings.hubspot_client_id:
        raise ConfigurationError("HUBSPOT_CLIENT_ID not set")
    params = {
        "client_id": settings.hubspot_client_id,
        "redirect_uri": settings.hubspot_redirect_uri,
        "scope": " ".join(HUBSPOT_SCOPES),
    }
    if state:
        params["state"] = state
    return str(httpx.URL(HUBSPOT_AUTHORIZE_URL, params=params))


def _require_hubspot_client() -> tuple[str, str]:
    if not (settings.hubspot_client_id and settings.hubspot_client_secret):
        raise ConfigurationError("HUBSPOT_CLIENT_ID / HUBSPOT_CLIENT_SECRET not set")
    return settings.hubspot_client_id, settings.hubspot_client_secret


def connect_hubspot(
    user: UserAccount,
    code: str,
    accounts: AccountStore,
    http: httpx.Client | None = None,
) -> UserAccount:
    """Exchange an OAuth authorization code and store the HubSpot tokens."""
    client_id, client_secret = _require_hubspot_client()
    data = _hubspot_token_request(
        {
            "grant_type": "authorization_code",
            "client_id": client_id,
            "client_secret": client_secret,
            "redirect_uri": settings.hubspot_redirect_uri,
            "code": code,
        },
        http,
    )
    expires_at = _utcnow() + timedelta(seconds=int(data.get("expires_in", 1800)))
    return accounts.update_tokens(
        user.id, "hubspot", data["access_token"], data.get("refresh_token"), expires_at,
        portal_id=data.get("hub_id"),
    )


def hubspot_access_token(
    user: UserAccount,
    accounts: AccountStore,
    http: httpx.Client | None = None,
) -> str:
    """Return a valid HubSpot access token, refreshing it first if expired."""
    if not user.hubspot_access_token:
        raise ConfigurationError("HubSpot account not connected. Run: advisor-bot connect-hubspot")
    if not user.hubspot_token_expired:
        return user.hubspot_access_token
    if not user.hubspot_refresh_token:
        raise ConfigurationError("HubSpot token expired and no refresh token is stored")

    client_id, client_secret = _require_hubspot_client()
    data = _hubspot_token_request(
        {
            "grant_type": "refresh_token",
            "client_id": client_id,
            "client_secret": client_secret,
            "refresh_token": user.hubspot_refresh_token,
        },
        http,
    )
    expires_at = _utcnow() + timedelta(seconds=int(data.get("expires_in", 1800)))
    refreshed = accounts.update_tokens(
        user.id, "hubspot", data["access_token"], data.get("refresh_token"), expires_at
    )
    user.hubspot_access_token = refreshed.hubspot_access_token
    user.hubspot_refresh_token = refreshed.hubspot_refresh_token
    user.hubspot_token_expires_at = refreshed.hubspot_token_expires_at
    logger.info("Refreshed HubSpot token for user %s", user.id)
    return refreshed.hubspot_access_token
