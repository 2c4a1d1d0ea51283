"""Provider credential endpoints.

Tokens arrive here after the dashboard completes a provider's OAuth flow.
They are write-only: no endpoint returns a stored token.
"""

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel

from repodeploy.api.deps import CredentialsDep, UserDep
from repodeploy.models.credentials import Credential, CredentialProvider, CredentialUpdate
from repodeploy.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter()


class ConnectedProvidersResponse(BaseModel):
    """Providers the caller has connected."""

    connected: list[str]


@router.get("", response_model=ConnectedProvidersResponse)
async def list_credentials(
    user_id: UserDep,
    store: CredentialsDep,
) -> ConnectedProvidersResponse:
    """List the providers the caller has connected."""
    return ConnectedProvidersResponse(connected=store.connected(user_id))


@router.put("/{provider}", status_code=status.HTTP_204_NO_CONTENT)
async def put_credential(
    provider: CredentialProvider,
    data: CredentialUpdate,
    user_id: UserDep,
    store: CredentialsDep,
) -> None:
    """Store or replace the token for a provider."""
    store.put(
        user_id,
        Credential(
            provider=provider,
            token=data.token,
            refresh_token=data.refresh_token,
        ),
    )
    logger.info("credentials.stored", user_id=user_id, provider=provider)


@router.delete("/{provider}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_credential(
    provider: CredentialProvider,
    user_id: UserDep,
    store: CredentialsDep,
) -> None:
    """Disconnect a provider."""
    if not store.delete(user_id, provider):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Provider not connected: {provider}",
        )
    logger.info("credentials.deleted", user_id=user_id, provider=provider)
