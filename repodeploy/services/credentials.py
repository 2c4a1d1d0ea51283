"""Credential storage and resolution."""

from datetime import datetime
from functools import lru_cache

import httpx

from repodeploy.config import settings
from repodeploy.core.exceptions import AuthError
from repodeploy.models.credentials import (
    HOSTING_CREDENTIALS,
    Credential,
    CredentialProvider,
    NotConnected,
)
from repodeploy.utils.logging import get_logger

logger = get_logger(__name__)


class CredentialStore:
    """Stores provider tokens per user in memory.

    Note: For production, this should be backed by the dashboard's user
    profile store with tokens encrypted at rest.
    """

    def __init__(self):
        self._credentials: dict[str, dict[str, Credential]] = {}

    def put(self, user_id: str, credential: Credential) -> Credential:
        """Store or replace a credential."""
        self._credentials.setdefault(user_id, {})[credential.provider] = credential
        return credential

    def get(self, user_id: str, provider: str) -> Credential | None:
        """Get a stored credential."""
        return self._credentials.get(user_id, {}).get(provider)

    def delete(self, user_id: str, provider: str) -> bool:
        """Remove a credential. Returns False if nothing was stored."""
        user_creds = self._credentials.get(user_id, {})
        if provider in user_creds:
            del user_creds[provider]
            return True
        return False

    def connected(self, user_id: str) -> list[str]:
        """List the providers a user has connected."""
        return sorted(self._credentials.get(user_id, {}).keys())

    def clear(self) -> None:
        self._credentials.clear()


class CredentialResolver:
    """Maps a user to the credentials a deployment needs.

    Never raises for a missing credential: callers receive ``NotConnected``
    and decide how to fail.
    """

    def __init__(self, store: CredentialStore | None = None):
        self.store = store or get_credential_store()

    def resolve(self, user_id: str, provider: CredentialProvider) -> Credential | NotConnected:
        credential = self.store.get(user_id, provider)
        if credential is None:
            return NotConnected(provider)
        return credential

    def resolve_hosting(self, user_id: str, hosting_provider: str) -> Credential | NotConnected:
        credential_provider = HOSTING_CREDENTIALS.get(hosting_provider)
        if credential_provider is None:
            return NotConnected(hosting_provider)
        return self.resolve(user_id, credential_provider)


class GoogleTokenRefresher:
    """Refreshes Google OAuth access tokens with a stored refresh token."""

    def __init__(
        self,
        store: CredentialStore | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.store = store or get_credential_store()
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(settings.google_client_id and settings.google_client_secret)

    async def refresh(self, user_id: str, credential: Credential) -> Credential:
        """Exchange the refresh token for a new access token and store it."""
        if not credential.refresh_token:
            raise AuthError(
                "Token expired and no refresh token available. "
                "Please reconnect your Google account.",
                provider="google",
            )
        if not self.configured:
            raise AuthError("Google OAuth not configured", provider="google")

        async with httpx.AsyncClient(
            transport=self._transport, timeout=settings.http_timeout_seconds
        ) as client:
            response = await client.post(
                settings.google_token_url,
                data={
                    "client_id": settings.google_client_id,
                    "client_secret": settings.google_client_secret,
                    "refresh_token": credential.refresh_token,
                    "grant_type": "refresh_token",
                },
            )

        try:
            payload = response.json()
        except ValueError:
            payload = {}

        if response.status_code != 200 or "error" in payload:
            message = (
                payload.get("error_description")
                or payload.get("error")
                or "Failed to refresh access token"
            )
            raise AuthError(message, provider="google")

        access_token = payload.get("access_token")
        if not access_token:
            raise AuthError("No access token received from refresh", provider="google")

        logger.info("credentials.google_token_refreshed", user_id=user_id)

        refreshed = credential.model_copy(
            update={
                "token": access_token,
                "refresh_token": payload.get("refresh_token") or credential.refresh_token,
                "updated_at": datetime.utcnow(),
            }
        )
        self.store.put(user_id, refreshed)
        return refreshed


# Singleton instance
_credential_store: CredentialStore | None = None


@lru_cache
def get_credential_store() -> CredentialStore:
    """Get the credential store singleton."""
    global _credential_store
    if _credential_store is None:
        _credential_store = CredentialStore()
    return _credential_store
