"""Source Fetcher.

Resolves a branch to a concrete revision and streams a snapshot archive of
the repository at that revision to disk.
"""

import asyncio
from abc import ABC, abstractmethod
from pathlib import Path
from urllib.parse import quote

import httpx

from repodeploy.config import settings
from repodeploy.core.exceptions import (
    SourceNotFound,
    UpstreamUnavailable,
)
from repodeploy.models.credentials import Credential
from repodeploy.models.deployment import RepositoryRef
from repodeploy.services.upstream import check_auth_and_throttle, error_message
from repodeploy.utils.logging import get_logger

CHUNK_SIZE = 64 * 1024


class SourceFetcher(ABC):
    """Base class for source providers.

    Subclasses implement:
    - label: Provider name used in messages
    - base_url: API root
    - _headers(): Authentication headers for the credential
    - resolve_revision(): branch -> commit id
    - _archive_url(): URL of the archive for a resolved revision
    """

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None):
        self._transport = transport
        self.logger = get_logger(f"fetcher.{self.label.lower()}")

    @property
    @abstractmethod
    def label(self) -> str:
        pass

    @property
    @abstractmethod
    def base_url(self) -> str:
        pass

    @abstractmethod
    def _headers(self, credential: Credential) -> dict[str, str]:
        pass

    @abstractmethod
    async def resolve_revision(self, credential: Credential, repo: RepositoryRef) -> str:
        """Resolve ``repo.branch`` to a commit id.

        Raises:
            SourceNotFound: repository or branch does not exist
            AuthError: credential rejected
            RateLimited: provider throttled the request
        """
        pass

    @abstractmethod
    async def _archive_url(
        self, client: httpx.AsyncClient, repo: RepositoryRef, revision: str
    ) -> str:
        pass

    def _client(self, credential: Credential) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers=self._headers(credential),
            transport=self._transport,
            timeout=settings.http_timeout_seconds,
            follow_redirects=True,
        )

    async def _backoff(self, attempt: int, reason: str) -> None:
        delay = settings.fetch_retry_backoff_seconds * (2 ** (attempt - 1))
        self.logger.warning(
            "fetcher.retrying",
            attempt=attempt,
            max_attempts=settings.fetch_max_attempts,
            delay_seconds=delay,
            reason=reason,
        )
        await asyncio.sleep(delay)

    async def _get_json(
        self, client: httpx.AsyncClient, url: str, not_found: str
    ) -> dict:
        """GET a JSON document, retrying transport failures and 5xx responses."""
        attempts = max(1, settings.fetch_max_attempts)
        for attempt in range(1, attempts + 1):
            try:
                response = await client.get(url)
            except httpx.TransportError as e:
                if attempt == attempts:
                    raise UpstreamUnavailable(f"{self.label} unreachable: {e}") from e
                await self._backoff(attempt, str(e))
                continue

            if response.status_code >= 500:
                if attempt == attempts:
                    raise UpstreamUnavailable(
                        f"{self.label} error: {error_message(response)}"
                    )
                await self._backoff(attempt, f"HTTP {response.status_code}")
                continue

            self._classify(response, not_found)
            return response.json()

        raise UpstreamUnavailable(f"{self.label} unreachable")  # pragma: no cover

    def _classify(self, response: httpx.Response, not_found: str) -> None:
        if response.is_success:
            return
        check_auth_and_throttle(response, self.label)
        if response.status_code == 404:
            raise SourceNotFound(not_found)
        raise UpstreamUnavailable(
            f"{self.label} request failed: {error_message(response)}"
        )

    async def download(
        self,
        credential: Credential,
        repo: RepositoryRef,
        revision: str,
        destination: Path,
    ) -> Path:
        """Stream the archive of ``revision`` into ``destination``.

        The response body is written in chunks and never held in memory.
        """
        not_found = f"Archive for {repo.full_name}@{revision[:12]} not found"
        attempts = max(1, settings.fetch_max_attempts)

        self.logger.info(
            "fetcher.download.started",
            repository=repo.full_name,
            revision=revision,
        )

        async with self._client(credential) as client:
            url = await self._archive_url(client, repo, revision)
            for attempt in range(1, attempts + 1):
                retry_reason = None
                size = 0
                try:
                    async with client.stream("GET", url) as response:
                        if response.status_code >= 500 and attempt < attempts:
                            retry_reason = f"HTTP {response.status_code}"
                        elif not response.is_success:
                            await response.aread()
                            if response.status_code >= 500:
                                raise UpstreamUnavailable(
                                    f"{self.label} error: {error_message(response)}"
                                )
                            self._classify(response, not_found)
                        else:
                            with open(destination, "wb") as f:
                                async for chunk in response.aiter_bytes(CHUNK_SIZE):
                                    f.write(chunk)
                                    size += len(chunk)
                except httpx.TransportError as e:
                    destination.unlink(missing_ok=True)
                    if attempt == attempts:
                        raise UpstreamUnavailable(
                            f"{self.label} unreachable: {e}"
                        ) from e
                    retry_reason = str(e)

                # The failed response is closed before waiting
                if retry_reason is not None:
                    await self._backoff(attempt, retry_reason)
                    continue

                self.logger.info(
                    "fetcher.download.completed",
                    repository=repo.full_name,
                    revision=revision,
                    bytes=size,
                )
                return destination

        raise UpstreamUnavailable(f"{self.label} unreachable")  # pragma: no cover


class GitHubSourceFetcher(SourceFetcher):
    """Fetches tarballs through the GitHub REST API."""

    @property
    def label(self) -> str:
        return "GitHub"

    @property
    def base_url(self) -> str:
        return settings.github_api_url

    def _headers(self, credential: Credential) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {credential.token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }

    async def resolve_revision(self, credential: Credential, repo: RepositoryRef) -> str:
        url = f"/repos/{quote(repo.owner)}/{quote(repo.name)}/branches/{quote(repo.branch, safe='')}"
        async with self._client(credential) as client:
            data = await self._get_json(
                client,
                url,
                not_found=f"Branch '{repo.branch}' not found in {repo.full_name}",
            )

        sha = (data.get("commit") or {}).get("sha")
        if not sha:
            raise SourceNotFound(
                f"Branch '{repo.branch}' of {repo.full_name} has no commit"
            )
        self.logger.info(
            "fetcher.revision_resolved",
            repository=repo.full_name,
            branch=repo.branch,
            revision=sha,
        )
        return sha

    async def _archive_url(
        self, client: httpx.AsyncClient, repo: RepositoryRef, revision: str
    ) -> str:
        return f"/repos/{quote(repo.owner)}/{quote(repo.name)}/tarball/{revision}"


class GitLabSourceFetcher(SourceFetcher):
    """Fetches archives through the GitLab REST API."""

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None):
        super().__init__(transport)
        self._project_ids: dict[str, int] = {}

    @property
    def label(self) -> str:
        return "GitLab"

    @property
    def base_url(self) -> str:
        return settings.gitlab_api_url

    def _headers(self, credential: Credential) -> dict[str, str]:
        return {"PRIVATE-TOKEN": credential.token}

    async def _project_id(self, client: httpx.AsyncClient, repo: RepositoryRef) -> int:
        if repo.full_name in self._project_ids:
            return self._project_ids[repo.full_name]

        data = await self._get_json(
            client,
            f"/projects/{quote(repo.full_name, safe='')}",
            not_found=f"Repository {repo.full_name} not found",
        )
        project_id = data.get("id")
        if not project_id:
            raise SourceNotFound(f"Project ID not found for {repo.full_name}")
        self._project_ids[repo.full_name] = project_id
        return project_id

    async def resolve_revision(self, credential: Credential, repo: RepositoryRef) -> str:
        async with self._client(credential) as client:
            project_id = await self._project_id(client, repo)
            data = await self._get_json(
                client,
                f"/projects/{project_id}/repository/branches/{quote(repo.branch, safe='')}",
                not_found=f"Branch '{repo.branch}' not found in {repo.full_name}",
            )

        commit_id = (data.get("commit") or {}).get("id")
        if not commit_id:
            raise SourceNotFound(
                f"Branch '{repo.branch}' of {repo.full_name} has no commit"
            )
        self.logger.info(
            "fetcher.revision_resolved",
            repository=repo.full_name,
            branch=repo.branch,
            revision=commit_id,
        )
        return commit_id

    async def _archive_url(
        self, client: httpx.AsyncClient, repo: RepositoryRef, revision: str
    ) -> str:
        project_id = await self._project_id(client, repo)
        return f"/projects/{project_id}/repository/archive.tar.gz?sha={quote(revision)}"


FETCHERS: dict[str, type[SourceFetcher]] = {
    "github": GitHubSourceFetcher,
    "gitlab": GitLabSourceFetcher,
}


def get_source_fetcher(
    provider: str, transport: httpx.AsyncBaseTransport | None = None
) -> SourceFetcher:
    """Create the fetcher for a source provider kind."""
    fetcher_cls = FETCHERS.get(provider)
    if fetcher_cls is None:
        raise ValueError(f"Unsupported source provider: {provider}")
    return fetcher_cls(transport=transport)
