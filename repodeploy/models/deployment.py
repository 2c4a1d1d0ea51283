"""Deployment data models."""

from datetime import datetime
from enum import Enum
from typing import Any, Literal
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

SourceProviderKind = Literal["github", "gitlab"]
HostingProviderKind = Literal["firebase-hosting", "cloudflare-pages"]


class DeploymentStep(str, Enum):
    """Overall stage of a deployment run."""

    IDLE = "idle"
    DOWNLOADING = "downloading"
    BUILDING = "building"
    DEPLOYING = "deploying"
    SUCCESS = "success"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (DeploymentStep.SUCCESS, DeploymentStep.ERROR)


# Forward-only ordering of stages; terminal stages share the last rank
STEP_ORDER: dict[DeploymentStep, int] = {
    DeploymentStep.IDLE: 0,
    DeploymentStep.DOWNLOADING: 1,
    DeploymentStep.BUILDING: 2,
    DeploymentStep.DEPLOYING: 3,
    DeploymentStep.SUCCESS: 4,
    DeploymentStep.ERROR: 4,
}


class OutcomeStatus(str, Enum):
    """Per-provider deployment status."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    SUCCESS = "success"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (OutcomeStatus.SUCCESS, OutcomeStatus.ERROR)


class RepositoryRef(BaseModel):
    """Coordinates of a source repository at a branch."""

    model_config = ConfigDict(frozen=True)

    owner: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    branch: str = Field(default="main", min_length=1)
    provider: SourceProviderKind = "github"

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"


class HostingTarget(BaseModel):
    """One hosting provider plus the site/project to deploy into."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    provider: HostingProviderKind
    name: str = ""


class DeploymentRequest(BaseModel):
    """Immutable input for one deployment run."""

    model_config = ConfigDict(frozen=True)

    repository: RepositoryRef
    hosting_project_id: str | None = None
    site_id: str | None = None
    project_id: str | None = None
    targets: tuple[HostingTarget, ...] = Field(..., min_length=1)

    @field_validator("targets")
    @classmethod
    def targets_unique(cls, targets: tuple[HostingTarget, ...]) -> tuple[HostingTarget, ...]:
        ids = [t.id for t in targets]
        if len(ids) != len(set(ids)):
            raise ValueError("hosting target ids must be unique")
        return targets


class DeploymentCreate(BaseModel):
    """Request body for starting a deployment."""

    repository: RepositoryRef
    hosting_project_id: str | None = None
    site_id: str | None = None
    project_id: str | None = None
    targets: list[HostingTarget] = Field(..., min_length=1)

    @model_validator(mode="after")
    def check_targets(self) -> "DeploymentCreate":
        ids = [t.id for t in self.targets]
        if len(ids) != len(set(ids)):
            raise ValueError("hosting target ids must be unique")
        return self

    def to_request(self) -> DeploymentRequest:
        return DeploymentRequest(
            repository=self.repository,
            hosting_project_id=self.hosting_project_id,
            site_id=self.site_id,
            project_id=self.project_id,
            targets=tuple(self.targets),
        )


class ProviderOutcome(BaseModel):
    """Result of deploying to one hosting target."""

    provider_id: str
    provider: HostingProviderKind
    target: str = ""
    status: OutcomeStatus = OutcomeStatus.PENDING
    url: str | None = None
    error: str | None = None
    error_code: str | None = None

    @classmethod
    def pending(cls, target: HostingTarget) -> "ProviderOutcome":
        return cls(provider_id=target.id, provider=target.provider, target=target.name)

    @classmethod
    def succeeded(cls, target: HostingTarget, url: str) -> "ProviderOutcome":
        return cls(
            provider_id=target.id,
            provider=target.provider,
            target=target.name,
            status=OutcomeStatus.SUCCESS,
            url=url,
        )

    @classmethod
    def failed(
        cls, target: HostingTarget, error: str, error_code: str = "DeployError"
    ) -> "ProviderOutcome":
        return cls(
            provider_id=target.id,
            provider=target.provider,
            target=target.name,
            status=OutcomeStatus.ERROR,
            error=error,
            error_code=error_code,
        )


class DeploymentStatus(BaseModel):
    """Read-only aggregate view of a deployment run."""

    id: str = Field(default_factory=lambda: f"deploy_{uuid4().hex[:12]}")
    version: int = 0
    step: DeploymentStep = DeploymentStep.IDLE
    progress: int = Field(default=0, ge=0, le=100)
    message: str | None = None
    error: str | None = None
    error_code: str | None = None
    failed_step: DeploymentStep | None = None
    error_details: dict[str, Any] = Field(default_factory=dict)

    repository: str | None = None
    revision: str | None = None
    profile: str | None = None
    deployments: list[ProviderOutcome] = Field(default_factory=list)

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.step.is_terminal


class HostingRecord(BaseModel):
    """A hosting target linked to a dashboard project after a successful deploy."""

    id: str
    provider: HostingProviderKind
    name: str
    url: str | None = None
    status: str = "deployed"
    deployment_id: str | None = None
    linked_at: datetime = Field(default_factory=datetime.utcnow)
