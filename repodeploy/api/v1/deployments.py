"""Deployment endpoints."""

import asyncio
import json
from typing import Annotated

from fastapi import APIRouter, Query, status
from pydantic import BaseModel
from sse_starlette.sse import EventSourceResponse

from repodeploy.api.deps import (
    DeploymentDep,
    EventsDep,
    OrchestratorDep,
    StoreDep,
    UserDep,
)
from repodeploy.core.events import TERMINAL_EVENTS, Event
from repodeploy.core.exceptions import DeploymentFinishedError
from repodeploy.models.deployment import DeploymentCreate, DeploymentStatus
from repodeploy.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter()

# Seconds without events before a keepalive is sent
KEEPALIVE_SECONDS = 30.0


class DeploymentListResponse(BaseModel):
    """Response for listing deployments."""

    deployments: list[DeploymentStatus]
    total: int
    limit: int
    offset: int


@router.post(
    "",
    response_model=DeploymentStatus,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Start a deployment",
)
async def create_deployment(
    data: DeploymentCreate,
    user_id: UserDep,
    orchestrator: OrchestratorDep,
) -> DeploymentStatus:
    """Start deploying a repository branch to one or more hosting targets.

    The run continues in the background; poll the status or stream its
    events to follow it.
    """
    snapshot = await orchestrator.start(user_id, data.to_request())
    logger.info(
        "api.deployment_created",
        deployment_id=snapshot.id,
        repository=data.repository.full_name,
        targets=len(data.targets),
    )
    return snapshot


@router.get(
    "",
    response_model=DeploymentListResponse,
    summary="List deployments",
)
async def list_deployments(
    user_id: UserDep,
    store: StoreDep,
    limit: Annotated[int, Query(ge=1, le=100)] = 10,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> DeploymentListResponse:
    """List the caller's deployments, newest first."""
    deployments, total = await store.list_for_user(user_id, limit=limit, offset=offset)
    return DeploymentListResponse(
        deployments=deployments,
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get(
    "/{deployment_id}",
    response_model=DeploymentStatus,
    summary="Get deployment status",
)
async def get_deployment(deployment: DeploymentDep) -> DeploymentStatus:
    """Get the latest status snapshot of a deployment."""
    return deployment


@router.post(
    "/{deployment_id}/cancel",
    response_model=DeploymentStatus,
    summary="Cancel a deployment",
)
async def cancel_deployment(
    deployment: DeploymentDep,
    orchestrator: OrchestratorDep,
    store: StoreDep,
) -> DeploymentStatus:
    """Cancel a running deployment. Its workspace is removed."""
    cancelled = await orchestrator.cancel(deployment.id)
    if not cancelled:
        raise DeploymentFinishedError(deployment.id, deployment.step.value)
    return await store.get(deployment.id) or deployment


@router.get(
    "/{deployment_id}/events",
    summary="Stream deployment events (SSE)",
)
async def stream_deployment_events(
    deployment: DeploymentDep,
    events: EventsDep,
    store: StoreDep,
) -> EventSourceResponse:
    """Stream status snapshots of a deployment using Server-Sent Events.

    The first event carries the current snapshot. The stream ends after
    ``deployment_complete`` or ``deployment_failed``.
    """

    async def event_generator():
        # Subscribe before reading the snapshot so no transition is missed
        queue = events.subscribe(deployment.id)

        try:
            current = await store.get(deployment.id) or deployment
            if current.step.value == "success":
                event_type = "deployment_complete"
            elif current.step.value == "error":
                event_type = "deployment_failed"
            else:
                event_type = "status"
            yield {
                "event": event_type,
                "data": current.model_dump_json(),
            }
            if event_type in TERMINAL_EVENTS:
                return

            last_version = current.version
            while True:
                try:
                    event: Event = await asyncio.wait_for(
                        queue.get(), timeout=KEEPALIVE_SECONDS
                    )
                except asyncio.TimeoutError:
                    yield {"event": "keepalive", "data": "{}"}
                    continue

                # Skip snapshots already covered by the initial one
                if event.data.get("version", 0) <= last_version:
                    continue
                last_version = event.data["version"]

                yield {
                    "event": event.event_type,
                    "data": json.dumps(event.data),
                }
                if event.event_type in TERMINAL_EVENTS:
                    break

        finally:
            events.unsubscribe(deployment.id, queue)

    return EventSourceResponse(event_generator())
