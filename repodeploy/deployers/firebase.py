"""Firebase Hosting deployer.

Uses the Firebase Hosting REST API:
1. Create a version on the site
2. Hash every file (gzipped) and call populateFiles
3. Upload the files the API does not already have
4. Finalize the version
5. Release it
"""

import asyncio
import gzip
import hashlib
from pathlib import Path
from urllib.parse import quote

import httpx

from repodeploy.config import settings
from repodeploy.core.exceptions import DeployError, PreconditionFailed
from repodeploy.deployers.base import DeployContext, HostingDeployer, collect_files_async
from repodeploy.models.credentials import Credential
from repodeploy.services.credentials import GoogleTokenRefresher
from repodeploy.services.upstream import check_auth_and_throttle, raise_for_upstream

VERSION_CONFIG = {
    "headers": [
        {
            "glob": "**",
            "headers": {"Cache-Control": "max-age=3600"},
        }
    ]
}


def gzip_and_hash(files: list[tuple[str, Path]]) -> tuple[dict[str, str], dict[str, bytes]]:
    """Return ({"/path": sha256}, {sha256: gzipped bytes}).

    ``mtime=0`` keeps the gzip output, and therefore the hash, stable.
    """
    hashes: dict[str, str] = {}
    blobs: dict[str, bytes] = {}
    for relative, path in files:
        compressed = gzip.compress(path.read_bytes(), mtime=0)
        digest = hashlib.sha256(compressed).hexdigest()
        hashes[f"/{relative}"] = digest
        blobs[digest] = compressed
    return hashes, blobs


class FirebaseHostingDeployer(HostingDeployer):
    """Deploys static output to a Firebase Hosting site."""

    def __init__(
        self,
        transport: httpx.AsyncBaseTransport | None = None,
        refresher: GoogleTokenRefresher | None = None,
    ):
        super().__init__(transport)
        self.refresher = refresher or GoogleTokenRefresher(transport=transport)

    @property
    def provider(self) -> str:
        return "firebase-hosting"

    @property
    def base_url(self) -> str:
        return settings.firebase_hosting_api_url

    @staticmethod
    def site_id(ctx: DeployContext) -> str:
        return ctx.target.name or ctx.request.site_id or ctx.request.hosting_project_id or ""

    async def check_preconditions(self, ctx: DeployContext) -> None:
        project_id = ctx.request.hosting_project_id
        if not project_id:
            raise PreconditionFailed("Firebase project ID not configured")

        site = self.site_id(ctx)
        async with self.client(ctx.credential.token) as client:
            response = await client.get(
                f"/projects/{quote(project_id)}/sites/{quote(site)}"
            )

        if response.status_code == 404:
            raise PreconditionFailed(
                f"Hosting site '{site}' not found in Firebase project '{project_id}'"
            )
        raise_for_upstream(response, "Firebase", "verify hosting site", PreconditionFailed)
        ctx.values["site"] = site

    async def upload(self, build_output: Path, ctx: DeployContext) -> str:
        site = ctx.values["site"]
        files = await collect_files_async(build_output)
        hashes, blobs = await asyncio.to_thread(gzip_and_hash, files)

        async with self.client(ctx.credential.token) as client:
            version = await self._create_version(client, site)
            required, upload_url = await self._populate_files(client, version, hashes)
            await self._upload_files(client, upload_url, required, blobs)
            await self._finalize(client, version)
            await self._release(client, site, version)

        self.logger.info(
            "deployer.firebase.released",
            site=site,
            version=version,
            files=len(hashes),
            uploaded=len(required),
        )
        return f"https://{site}.web.app"

    async def _create_version(self, client: httpx.AsyncClient, site: str) -> str:
        response = await client.post(
            f"/sites/{quote(site)}/versions",
            json={"config": VERSION_CONFIG},
        )
        raise_for_upstream(response, "Firebase", "create version", DeployError)
        version = response.json().get("name")
        if not version:
            raise DeployError("Version name not returned from version creation")
        return version

    async def _populate_files(
        self, client: httpx.AsyncClient, version: str, hashes: dict[str, str]
    ) -> tuple[list[str], str | None]:
        response = await client.post(f"/{version}:populateFiles", json={"files": hashes})
        raise_for_upstream(response, "Firebase", "populate files", DeployError)
        data = response.json()
        required = data.get("uploadRequiredHashes") or []
        upload_url = data.get("uploadUrl")
        if required and not upload_url:
            raise DeployError("Upload URL not returned from populateFiles")
        return required, upload_url

    async def _upload_files(
        self,
        client: httpx.AsyncClient,
        upload_url: str | None,
        required: list[str],
        blobs: dict[str, bytes],
    ) -> None:
        if not required:
            return

        unknown = [h for h in required if h not in blobs]
        if unknown:
            raise DeployError(f"Firebase requested unknown file hash: {unknown[0]}")

        semaphore = asyncio.Semaphore(max(1, settings.upload_concurrency))

        async def upload_one(digest: str) -> None:
            async with semaphore:
                response = await client.post(
                    f"{upload_url}/{digest}",
                    content=blobs[digest],
                    headers={"Content-Type": "application/octet-stream"},
                )
            if not response.is_success:
                check_auth_and_throttle(response, "Firebase")
                raise DeployError(
                    f"Failed to upload file {digest[:12]}: HTTP {response.status_code}"
                )

        await asyncio.gather(*(upload_one(digest) for digest in required))

    async def _finalize(self, client: httpx.AsyncClient, version: str) -> None:
        response = await client.patch(
            f"/{version}",
            params={"update_mask": "status"},
            json={"status": "FINALIZED"},
        )
        raise_for_upstream(response, "Firebase", "finalize version", DeployError)

    async def _release(self, client: httpx.AsyncClient, site: str, version: str) -> None:
        response = await client.post(
            f"/sites/{quote(site)}/releases",
            params={"versionName": version},
        )
        raise_for_upstream(response, "Firebase", "create release", DeployError)

    async def refresh_credential(self, ctx: DeployContext) -> Credential | None:
        if not ctx.credential.refresh_token or not self.refresher.configured:
            return None
        return await self.refresher.refresh(ctx.user_id, ctx.credential)
