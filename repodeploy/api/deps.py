"""Dependency injection for API endpoints."""

from typing import Annotated

from fastapi import Depends, Header, HTTPException, status

from repodeploy.core.events import EventBus, get_event_bus
from repodeploy.core.exceptions import DeploymentNotFoundError
from repodeploy.core.orchestrator import DeploymentOrchestrator, get_orchestrator
from repodeploy.core.status import StatusStore, get_status_store
from repodeploy.models.deployment import DeploymentStatus
from repodeploy.services.credentials import CredentialStore, get_credential_store
from repodeploy.services.records import HostingRecordStore, get_record_store


async def get_current_user(
    x_user_id: Annotated[str | None, Header()] = None,
) -> str:
    """Get the caller identity set by the dashboard's auth layer."""
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-ID header",
        )
    return x_user_id


async def get_store() -> StatusStore:
    """Get the deployment status store."""
    return get_status_store()


async def get_events() -> EventBus:
    """Get the event bus."""
    return get_event_bus()


async def get_credentials() -> CredentialStore:
    """Get the credential store."""
    return get_credential_store()


async def get_records() -> HostingRecordStore:
    """Get the hosting record store."""
    return get_record_store()


async def get_deployment_orchestrator() -> DeploymentOrchestrator:
    """Get the deployment orchestrator."""
    return get_orchestrator()


async def get_deployment_by_id(
    deployment_id: str,
    user_id: Annotated[str, Depends(get_current_user)],
    store: Annotated[StatusStore, Depends(get_store)],
) -> DeploymentStatus:
    """Get a deployment owned by the caller or raise 404."""
    deployment = await store.get(deployment_id)
    if deployment is None or store.owner(deployment_id) != user_id:
        raise DeploymentNotFoundError(deployment_id)
    return deployment


# Type aliases for cleaner signatures
UserDep = Annotated[str, Depends(get_current_user)]
StoreDep = Annotated[StatusStore, Depends(get_store)]
EventsDep = Annotated[EventBus, Depends(get_events)]
CredentialsDep = Annotated[CredentialStore, Depends(get_credentials)]
RecordsDep = Annotated[HostingRecordStore, Depends(get_records)]
OrchestratorDep = Annotated[DeploymentOrchestrator, Depends(get_deployment_orchestrator)]
DeploymentDep = Annotated[DeploymentStatus, Depends(get_deployment_by_id)]
