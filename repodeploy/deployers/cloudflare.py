"""Cloudflare Pages deployer (direct upload)."""

import asyncio
import base64
import hashlib
import json
import mimetypes
from pathlib import Path
from typing import Any
from urllib.parse import quote

import httpx

from repodeploy.config import settings
from repodeploy.core.exceptions import DeployError, PreconditionFailed
from repodeploy.deployers.base import DeployContext, HostingDeployer, collect_files_async
from repodeploy.services.upstream import error_message, raise_for_upstream

# Assets per upload request
UPLOAD_BATCH_SIZE = 50


def hash_assets(files: list[tuple[str, Path]]) -> tuple[dict[str, str], dict[str, dict[str, Any]]]:
    """Return the manifest ({"/path": hash}) and the upload payload per hash."""
    manifest: dict[str, str] = {}
    assets: dict[str, dict[str, Any]] = {}
    for relative, path in files:
        encoded = base64.b64encode(path.read_bytes()).decode("ascii")
        extension = path.suffix.lstrip(".")
        digest = hashlib.sha256((encoded + extension).encode()).hexdigest()[:32]
        manifest[f"/{relative}"] = digest
        content_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        assets[digest] = {
            "key": digest,
            "value": encoded,
            "metadata": {"contentType": content_type},
            "base64": True,
        }
    return manifest, assets


def _result(response: httpx.Response, action: str) -> Any:
    """Unwrap the Cloudflare ``{"success", "errors", "result"}`` envelope."""
    payload = response.json()
    if not payload.get("success", False):
        raise DeployError(f"Failed to {action}: {error_message(response)}")
    return payload.get("result")


class CloudflarePagesDeployer(HostingDeployer):
    """Deploys static output to a Cloudflare Pages project."""

    @property
    def provider(self) -> str:
        return "cloudflare-pages"

    @property
    def base_url(self) -> str:
        return settings.cloudflare_api_url

    @staticmethod
    def project_name(ctx: DeployContext) -> str:
        return ctx.target.name or ctx.request.site_id or ""

    async def check_preconditions(self, ctx: DeployContext) -> None:
        name = self.project_name(ctx)
        if not name:
            raise PreconditionFailed("Cloudflare Pages project name not configured")

        async with self.client(ctx.credential.token) as client:
            response = await client.get("/accounts")
            raise_for_upstream(response, "Cloudflare", "list accounts", PreconditionFailed)
            accounts = response.json().get("result") or []
            if not accounts:
                raise PreconditionFailed("No Cloudflare accounts found")
            account_id = accounts[0]["id"]

            response = await client.get(
                f"/accounts/{quote(account_id)}/pages/projects/{quote(name)}"
            )

        if response.status_code == 404:
            raise PreconditionFailed(f"Cloudflare Pages project '{name}' not found")
        raise_for_upstream(response, "Cloudflare", "get Pages project", PreconditionFailed)

        ctx.values["account_id"] = account_id
        ctx.values["project"] = name

    async def upload(self, build_output: Path, ctx: DeployContext) -> str:
        account_id = ctx.values["account_id"]
        name = ctx.values["project"]
        project_path = f"/accounts/{quote(account_id)}/pages/projects/{quote(name)}"

        files = await collect_files_async(build_output)
        manifest, assets = await asyncio.to_thread(hash_assets, files)

        async with self.client(ctx.credential.token) as client:
            response = await client.get(f"{project_path}/upload-token")
            raise_for_upstream(response, "Cloudflare", "get upload token", DeployError)
            jwt = (_result(response, "get upload token") or {}).get("jwt")
            if not jwt:
                raise DeployError("Upload token not returned by Cloudflare")

            async with self.client(jwt) as assets_client:
                missing = await self._check_missing(assets_client, list(assets))
                await self._upload_assets(assets_client, [assets[h] for h in missing])
                response = await assets_client.post(
                    "/pages/assets/upsert-hashes",
                    json={"hashes": list(assets)},
                )
                raise_for_upstream(response, "Cloudflare", "upsert hashes", DeployError)

            response = await client.post(
                f"{project_path}/deployments",
                files={"manifest": (None, json.dumps(manifest))},
            )
            raise_for_upstream(response, "Cloudflare", "create deployment", DeployError)
            deployment = _result(response, "create deployment") or {}

        self.logger.info(
            "deployer.cloudflare.deployed",
            project=name,
            deployment_id=deployment.get("id"),
            files=len(manifest),
            uploaded=len(missing),
        )
        return deployment.get("url") or f"https://{name}.pages.dev"

    async def _check_missing(self, client: httpx.AsyncClient, hashes: list[str]) -> list[str]:
        response = await client.post("/pages/assets/check-missing", json={"hashes": hashes})
        raise_for_upstream(response, "Cloudflare", "check missing assets", DeployError)
        missing = _result(response, "check missing assets") or []
        return [h for h in missing if h in hashes]

    async def _upload_assets(
        self, client: httpx.AsyncClient, payload: list[dict[str, Any]]
    ) -> None:
        for start in range(0, len(payload), UPLOAD_BATCH_SIZE):
            batch = payload[start : start + UPLOAD_BATCH_SIZE]
            response = await client.post("/pages/assets/upload", json=batch)
            raise_for_upstream(response, "Cloudflare", "upload assets", DeployError)
