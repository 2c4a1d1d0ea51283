"""Core functionality for repodeploy."""

from repodeploy.core.exceptions import (
    AuthError,
    BuildError,
    Cancelled,
    CleanupWarning,
    DeployError,
    DeploymentFinishedError,
    DeploymentNotFoundError,
    ExtractionError,
    InternalError,
    PreconditionFailed,
    RateLimited,
    RepoDeployError,
    SourceNotFound,
    UnsupportedProject,
    UpstreamUnavailable,
)

__all__ = [
    "RepoDeployError",
    "AuthError",
    "BuildError",
    "Cancelled",
    "CleanupWarning",
    "DeployError",
    "DeploymentFinishedError",
    "DeploymentNotFoundError",
    "ExtractionError",
    "InternalError",
    "PreconditionFailed",
    "RateLimited",
    "SourceNotFound",
    "UnsupportedProject",
    "UpstreamUnavailable",
]
