"""FastAPI application entry point."""

import asyncio
from contextlib import asynccontextmanager, suppress
from typing import AsyncGenerator

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from repodeploy import __version__
from repodeploy.api.middleware import RequestLoggingMiddleware
from repodeploy.api.v1.router import router as v1_router
from repodeploy.config import settings
from repodeploy.core.exceptions import (
    AuthError,
    DeploymentFinishedError,
    DeploymentNotFoundError,
    InternalError,
    PreconditionFailed,
    RateLimited,
    RepoDeployError,
    SourceNotFound,
    UpstreamUnavailable,
)
from repodeploy.core.status import StatusStore, get_status_store
from repodeploy.utils.logging import configure_logging, get_logger

logger = get_logger(__name__)

# HTTP status for errors that reach the API layer; anything else is a 500
ERROR_STATUS: dict[type[RepoDeployError], int] = {
    DeploymentNotFoundError: status.HTTP_404_NOT_FOUND,
    DeploymentFinishedError: status.HTTP_409_CONFLICT,
    SourceNotFound: status.HTTP_404_NOT_FOUND,
    AuthError: status.HTTP_401_UNAUTHORIZED,
    PreconditionFailed: status.HTTP_412_PRECONDITION_FAILED,
    RateLimited: status.HTTP_429_TOO_MANY_REQUESTS,
    UpstreamUnavailable: status.HTTP_502_BAD_GATEWAY,
}


def error_status(exc: RepoDeployError) -> int:
    for error_cls, status_code in ERROR_STATUS.items():
        if isinstance(exc, error_cls):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def error_body(exc: RepoDeployError) -> dict:
    return {"error": {"code": exc.code, "message": exc.message, "details": exc.details}}


async def sweep_expired_statuses(store: StatusStore, interval: float) -> None:
    """Drop finished deployments past their TTL, forever."""
    while True:
        await asyncio.sleep(interval)
        removed = await store.cleanup_expired()
        if removed:
            logger.info("status.expired_removed", count=removed)


async def cancel_running_deployments(store: StatusStore) -> int:
    """Cancel in-flight runs so their workspaces are released."""
    tasks = store.running_tasks()
    for task in tasks:
        task.cancel()
    if tasks:
        await asyncio.wait(tasks)
    return len(tasks)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    configure_logging()
    logger.info("application.starting", version=__version__, environment=settings.app_env)

    store = get_status_store()
    sweeper = asyncio.create_task(
        sweep_expired_statuses(store, settings.status_cleanup_interval_seconds),
        name="status-sweeper",
    )

    yield

    sweeper.cancel()
    with suppress(asyncio.CancelledError):
        await sweeper
    cancelled = await cancel_running_deployments(store)
    logger.info("application.shutdown", cancelled_deployments=cancelled)


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="repodeploy API",
        description="Deploys repository branches to static hosting providers",
        version=__version__,
        docs_url="/docs" if settings.app_debug else None,
        redoc_url="/redoc" if settings.app_debug else None,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.is_development else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    @app.exception_handler(RepoDeployError)
    async def repodeploy_error_handler(
        request: Request, exc: RepoDeployError
    ) -> JSONResponse:
        return JSONResponse(status_code=error_status(exc), content=error_body(exc))

    @app.exception_handler(Exception)
    async def general_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        """Report unexpected errors as InternalError; detail only in development."""
        logger.error(
            "unhandled_exception",
            error=str(exc),
            path=request.url.path,
            exc_info=True,
        )
        if settings.is_development:
            error = InternalError(str(exc), {"type": type(exc).__name__})
        else:
            error = InternalError("An unexpected error occurred")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=error_body(error),
        )

    app.include_router(v1_router)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "repodeploy.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.is_development,
    )
