"""Health check endpoints."""

from datetime import datetime

from fastapi import APIRouter
from pydantic import BaseModel

from repodeploy import __version__
from repodeploy.config import settings
from repodeploy.deployers.registry import get_deployer_registry

router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "healthy"
    version: str
    environment: str
    hosting_providers: list[str]
    timestamp: datetime


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Check API health status."""
    return HealthResponse(
        status="healthy",
        version=__version__,
        environment=settings.app_env,
        hosting_providers=get_deployer_registry().list_providers(),
        timestamp=datetime.utcnow(),
    )
