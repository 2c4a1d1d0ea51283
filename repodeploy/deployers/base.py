"""Base class for hosting deployers."""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import httpx

from repodeploy.config import settings
from repodeploy.core.exceptions import AuthError, DeployError, RepoDeployError
from repodeploy.models.credentials import Credential
from repodeploy.models.deployment import DeploymentRequest, HostingTarget, ProviderOutcome
from repodeploy.utils.logging import get_logger


@dataclass
class DeployContext:
    """Everything one deploy call knows about its target."""

    target: HostingTarget
    request: DeploymentRequest
    credential: Credential
    user_id: str
    values: dict[str, Any] = field(default_factory=dict)


class HostingDeployer(ABC):
    """Uploads a build output directory to one hosting target.

    Subclasses implement:
    - provider: Hosting provider kind handled
    - check_preconditions(): verify the target can receive an upload
    - upload(): push files and return the live URL

    ``deploy()`` never raises for provider failures; every failure is folded
    into an error ``ProviderOutcome`` so sibling deploys are unaffected.
    """

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None):
        self._transport = transport
        self.logger = get_logger(f"deployer.{self.provider}")

    @property
    @abstractmethod
    def provider(self) -> str:
        """Hosting provider kind."""
        pass

    @property
    @abstractmethod
    def base_url(self) -> str:
        pass

    @abstractmethod
    async def check_preconditions(self, ctx: DeployContext) -> None:
        """Raise PreconditionFailed if the target is not ready.

        May store values needed by upload() in ``ctx.values``.
        """
        pass

    @abstractmethod
    async def upload(self, build_output: Path, ctx: DeployContext) -> str:
        """Upload the directory and return the live URL."""
        pass

    async def refresh_credential(self, ctx: DeployContext) -> Credential | None:
        """Return a refreshed credential, or None when refresh is unsupported."""
        return None

    def client(self, token: str, **kwargs: Any) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers={"Authorization": f"Bearer {token}"},
            transport=self._transport,
            timeout=settings.http_timeout_seconds,
            **kwargs,
        )

    async def deploy(
        self,
        build_output: Path,
        target: HostingTarget,
        request: DeploymentRequest,
        credential: Credential,
        user_id: str,
    ) -> ProviderOutcome:
        """Deploy ``build_output`` to ``target``."""
        ctx = DeployContext(
            target=target,
            request=request,
            credential=credential,
            user_id=user_id,
        )
        self.logger.info("deployer.started", target=target.name, provider_id=target.id)

        try:
            try:
                await self.check_preconditions(ctx)
                url = await self.upload(build_output, ctx)
            except AuthError:
                refreshed = await self.refresh_credential(ctx)
                if refreshed is None:
                    raise
                self.logger.info("deployer.retrying_with_refreshed_token", target=target.name)
                ctx.credential = refreshed
                ctx.values.clear()
                await self.check_preconditions(ctx)
                url = await self.upload(build_output, ctx)
        except RepoDeployError as e:
            self.logger.warning(
                "deployer.failed",
                target=target.name,
                provider_id=target.id,
                code=e.code,
                error=e.message,
            )
            return ProviderOutcome.failed(target, e.message, e.code)
        except httpx.HTTPError as e:
            self.logger.warning(
                "deployer.transport_error",
                target=target.name,
                provider_id=target.id,
                error=str(e),
            )
            return ProviderOutcome.failed(
                target, f"{self.provider} unreachable: {e}", DeployError.code
            )

        self.logger.info("deployer.completed", target=target.name, url=url)
        return ProviderOutcome.succeeded(target, url)


def collect_files(root: Path) -> list[tuple[str, Path]]:
    """List regular files under ``root`` as (posix relative path, absolute path)."""
    files = []
    for path in sorted(root.rglob("*")):
        if path.is_file():
            files.append((path.relative_to(root).as_posix(), path))
    return files


async def collect_files_async(root: Path) -> list[tuple[str, Path]]:
    files = await asyncio.to_thread(collect_files, root)
    if not files:
        raise DeployError(f"Build output is empty: {root.name}")
    return files
