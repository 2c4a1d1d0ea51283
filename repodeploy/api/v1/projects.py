"""Project hosting endpoints."""

from fastapi import APIRouter
from pydantic import BaseModel

from repodeploy.api.deps import RecordsDep, UserDep
from repodeploy.models.deployment import HostingRecord

router = APIRouter()


class HostingListResponse(BaseModel):
    """Hosting targets linked to a project."""

    project_id: str
    hosting: list[HostingRecord]


@router.get("/{project_id}/hosting", response_model=HostingListResponse)
async def list_project_hosting(
    project_id: str,
    user_id: UserDep,
    records: RecordsDep,
) -> HostingListResponse:
    """List the hosting targets a project has been deployed to."""
    return HostingListResponse(
        project_id=project_id,
        hosting=await records.list_for_project(project_id),
    )
