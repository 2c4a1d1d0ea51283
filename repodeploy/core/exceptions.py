"""Custom exceptions for repodeploy.

Every pipeline failure is classified by one of these types. ``code`` is what
ends up in the status ``error_code`` field, so callers never see tracebacks.
"""

from typing import Any


class RepoDeployError(Exception):
    """Base exception for repodeploy."""

    code = "RepoDeployError"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class AuthError(RepoDeployError):
    """Credential missing or rejected by an upstream provider."""

    code = "AuthError"

    def __init__(self, message: str, provider: str | None = None):
        details = {"provider": provider} if provider else {}
        super().__init__(message, details)
        self.provider = provider


class SourceNotFound(RepoDeployError):
    """Owner, repository or branch does not exist."""

    code = "SourceNotFound"


class RateLimited(RepoDeployError):
    """Upstream provider throttled the request."""

    code = "RateLimited"

    def __init__(self, message: str, retry_after: str | None = None):
        details = {"retry_after": retry_after} if retry_after else {}
        super().__init__(message, details)
        self.retry_after = retry_after


class UpstreamUnavailable(RepoDeployError):
    """Provider unreachable or failing after the bounded retries."""

    code = "UpstreamUnavailable"


class ExtractionError(RepoDeployError):
    """Archive is corrupt or contains unsafe entries."""

    code = "ExtractionError"


class UnsupportedProject(RepoDeployError):
    """No known build profile matches the source tree."""

    code = "UnsupportedProject"


class BuildError(RepoDeployError):
    """Build command exited non-zero or timed out."""

    code = "BuildError"

    def __init__(self, message: str, output: str | None = None):
        details = {"output": output} if output else {}
        super().__init__(message, details)
        self.output = output


class PreconditionFailed(RepoDeployError):
    """A hosting target is not ready to receive an upload."""

    code = "PreconditionFailed"


class DeployError(RepoDeployError):
    """Upload to a hosting provider failed."""

    code = "DeployError"


class CleanupWarning(RepoDeployError):
    """Workspace could not be removed. Logged, never raised to callers."""

    code = "CleanupWarning"


class Cancelled(RepoDeployError):
    """The run was cancelled before reaching a terminal state."""

    code = "Cancelled"

    def __init__(self, message: str = "Deployment cancelled"):
        super().__init__(message)


class DeploymentNotFoundError(RepoDeployError):
    """Deployment status not found."""

    code = "DeploymentNotFound"

    def __init__(self, deployment_id: str):
        super().__init__(
            f"Deployment not found: {deployment_id}",
            {"deployment_id": deployment_id},
        )


class DeploymentFinishedError(RepoDeployError):
    """Deployment already reached success or error."""

    code = "DeploymentFinished"

    def __init__(self, deployment_id: str, step: str):
        super().__init__(
            f"Deployment already finished: {step}",
            {"deployment_id": deployment_id, "step": step},
        )


class InternalError(RepoDeployError):
    """Unexpected failure. The message shown to callers is generic."""

    code = "InternalError"

    def __init__(
        self,
        message: str = "Internal error during deployment",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details)
