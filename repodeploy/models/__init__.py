"""Data models for repodeploy."""

from repodeploy.models.credentials import (
    Credential,
    CredentialUpdate,
    NotConnected,
)
from repodeploy.models.deployment import (
    DeploymentCreate,
    DeploymentRequest,
    DeploymentStatus,
    DeploymentStep,
    HostingRecord,
    HostingTarget,
    OutcomeStatus,
    ProviderOutcome,
    RepositoryRef,
)
from repodeploy.models.profile import ProfileKind, ProjectProfile

__all__ = [
    # Deployment models
    "DeploymentCreate",
    "DeploymentRequest",
    "DeploymentStatus",
    "DeploymentStep",
    "HostingRecord",
    "HostingTarget",
    "OutcomeStatus",
    "ProviderOutcome",
    "RepositoryRef",
    # Profile models
    "ProfileKind",
    "ProjectProfile",
    # Credential models
    "Credential",
    "CredentialUpdate",
    "NotConnected",
]
