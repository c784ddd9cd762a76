"""
Google Identity Provider

Signed-in identity backed by an OAuth refresh token. An identity without
credentials is anonymous: it exists locally but cannot sync.
"""

import asyncio
import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path

from google.auth import exceptions as auth_exceptions
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials

from vibesync.core.models import SyncError, SyncErrorKind

logger = logging.getLogger(__name__)

TOKEN_URI = "https://oauth2.googleapis.com/token"
SCOPES = ["https://www.googleapis.com/auth/datastore"]


class IdentityConfigError(Exception):
    """OAuth client configuration is missing or unreadable."""
    pass


def load_client_credentials(secrets_file: Path) -> tuple[str, str]:
    """Load OAuth client credentials from env vars or client_secrets.json."""
    client_id = os.environ.get("GOOGLE_CLIENT_ID")
    client_secret = os.environ.get("GOOGLE_CLIENT_SECRET")

    if client_id and client_secret:
        return client_id, client_secret

    if secrets_file.exists():
        try:
            secrets = json.loads(secrets_file.read_text())
            creds = secrets.get("installed") or secrets.get("web")
            if creds:
                return creds["client_id"], creds["client_secret"]
        except Exception as e:
            logger.warning(f"Failed to parse {secrets_file.name}: {e}")

    raise IdentityConfigError(
        "OAuth credentials not found. Set GOOGLE_CLIENT_ID/GOOGLE_CLIENT_SECRET "
        "or provide client_secrets.json"
    )


@dataclass
class GoogleIdentity:
    uid: str
    email: str = ""
    display_name: str = ""
    credentials: Credentials | None = None

    @property
    def is_anonymous(self) -> bool:
        return self.credentials is None

    async def refresh_token(self, force_refresh: bool = False) -> str:
        """Return a valid access token, refreshing only when forced or expired."""
        if self.credentials is None:
            raise SyncError(SyncErrorKind.AUTH_EXPIRED, "Anonymous identity has no token")

        if force_refresh or not self.credentials.valid:
            try:
                await asyncio.to_thread(self.credentials.refresh, Request())
            except auth_exceptions.RefreshError as e:
                raise SyncError(SyncErrorKind.AUTH_EXPIRED, f"Authentication token invalid: {e}") from e
            except auth_exceptions.TransportError as e:
                raise SyncError(SyncErrorKind.SERVICE_UNAVAILABLE, f"Token refresh unreachable: {e}") from e
            logger.debug(f"Refreshed token for {self.uid}")

        return self.credentials.token


class GoogleIdentityProvider:
    """Holds the current identity. Owned by the composition root."""

    def __init__(self, identity: GoogleIdentity | None = None):
        self._identity = identity

    @classmethod
    def from_refresh_token(cls, uid: str, refresh_token: str | None, secrets_file: Path,
                           email: str = "", display_name: str = "") -> "GoogleIdentityProvider":
        if not refresh_token:
            logger.info(f"No refresh token for {uid}, using anonymous identity")
            return cls(GoogleIdentity(uid=uid, email=email, display_name=display_name))

        client_id, client_secret = load_client_credentials(secrets_file)
        credentials = Credentials(
            token=None,
            refresh_token=refresh_token,
            token_uri=TOKEN_URI,
            client_id=client_id,
            client_secret=client_secret,
            scopes=SCOPES
        )
        logger.info(f"Identity initialized for {uid}")
        return cls(GoogleIdentity(uid=uid, email=email, display_name=display_name, credentials=credentials))

    def current(self) -> GoogleIdentity | None:
        return self._identity

    def sign_in(self, identity: GoogleIdentity) -> None:
        self._identity = identity

    def sign_out(self) -> None:
        if self._identity:
            logger.info(f"Signed out {self._identity.uid}")
        self._identity = None
