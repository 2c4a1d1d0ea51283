"""Pytest configuration and fixtures."""

import io
import json
import tarfile
from pathlib import Path
from typing import Any, Callable

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from repodeploy.config import settings
from repodeploy.core.events import EventBus
from repodeploy.core.status import StatusStore, get_status_store
from repodeploy.main import app
from repodeploy.models.credentials import Credential
from repodeploy.models.deployment import DeploymentRequest, HostingTarget, RepositoryRef
from repodeploy.services.credentials import CredentialStore, get_credential_store
from repodeploy.services.records import get_record_store

UPLOAD_HOST = "upload-firebasehosting.googleapis.com"


def build_tarball(
    files: dict[str, bytes | str],
    root: str | None = "octo-site-abc123",
) -> bytes:
    """Build a gzipped tarball, wrapping entries in ``root/`` like providers do."""
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as tar:
        if root:
            info = tarfile.TarInfo(root)
            info.type = tarfile.DIRTYPE
            info.mode = 0o755
            tar.addfile(info)
        for name, content in files.items():
            data = content.encode() if isinstance(content, str) else content
            info = tarfile.TarInfo(f"{root}/{name}" if root else name)
            info.size = len(data)
            info.mode = 0o644
            tar.addfile(info, io.BytesIO(data))
    return buffer.getvalue()


class FakeProviders:
    """In-memory stand-in for the GitHub, GitLab, Firebase and Cloudflare APIs.

    Every handled request is recorded by operation name in ``calls``.
    ``fail(op, status)`` makes an operation return an error response.
    """

    def __init__(self, tarball: bytes):
        self.tarball = tarball
        self.branches = {"main": "abc123def456"}
        self.firebase_sites = {"my-site"}
        self.cloudflare_projects = {"my-pages"}
        self.calls: list[str] = []
        self.firebase_files: dict[str, str] = {}
        self.firebase_uploads: dict[str, bytes] = {}
        self.cloudflare_assets: dict[str, str] = {}
        self.cloudflare_manifest: bytes = b""
        self.authorizations: list[str] = []
        self._failures: dict[str, list[Any]] = {}

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def fail(
        self,
        op: str,
        status_code: int,
        body: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        times: int | None = None,
    ) -> None:
        self._failures[op] = [status_code, body or {"message": "error"}, headers or {}, times]

    def count(self, op: str) -> int:
        return self.calls.count(op)

    def _failure(self, op: str) -> httpx.Response | None:
        failure = self._failures.get(op)
        if failure is None:
            return None
        status_code, body, headers, times = failure
        if times is not None:
            if times <= 0:
                return None
            failure[3] = times - 1
        return httpx.Response(status_code, json=body, headers=headers)

    def handler(self, request: httpx.Request) -> httpx.Response:
        host = request.url.host
        path = request.url.raw_path.decode().split("?")[0]
        self.authorizations.append(request.headers.get("Authorization", ""))

        if host == "api.github.com":
            op, response = self._github(request, path)
        elif host == "gitlab.com":
            op, response = self._gitlab(request, path)
        elif host in ("firebasehosting.googleapis.com", UPLOAD_HOST):
            op, response = self._firebase(request, path)
        elif host == "api.cloudflare.com":
            op, response = self._cloudflare(request, path)
        else:
            op, response = "unknown", httpx.Response(404)

        self.calls.append(op)
        return self._failure(op) or response

    def _github(self, request: httpx.Request, path: str) -> tuple[str, httpx.Response]:
        parts = path.strip("/").split("/")
        if parts[3] == "branches":
            branch = parts[4]
            if branch not in self.branches:
                return "github-branch", httpx.Response(404, json={"message": "Branch not found"})
            return "github-branch", httpx.Response(
                200, json={"name": branch, "commit": {"sha": self.branches[branch]}}
            )
        return "github-tarball", httpx.Response(200, content=self.tarball)

    def _gitlab(self, request: httpx.Request, path: str) -> tuple[str, httpx.Response]:
        if path == "/api/v4/projects/octo%2Fsite":
            return "gitlab-project", httpx.Response(200, json={"id": 42})
        if path.startswith("/api/v4/projects/42/repository/branches/"):
            branch = path.rsplit("/", 1)[1]
            if branch not in self.branches:
                return "gitlab-branch", httpx.Response(404, json={"message": "404 Branch Not Found"})
            return "gitlab-branch", httpx.Response(
                200, json={"commit": {"id": self.branches[branch]}}
            )
        if path == "/api/v4/projects/42/repository/archive.tar.gz":
            return "gitlab-archive", httpx.Response(200, content=self.tarball)
        return "gitlab-unknown", httpx.Response(404, json={"message": "404 Project Not Found"})

    def _firebase(self, request: httpx.Request, path: str) -> tuple[str, httpx.Response]:
        if request.url.host == UPLOAD_HOST:
            digest = path.rsplit("/", 1)[1]
            self.firebase_uploads[digest] = request.content
            return "firebase-upload", httpx.Response(200)

        if request.method == "GET" and "/projects/" in path:
            site = path.rsplit("/", 1)[1]
            if site not in self.firebase_sites:
                return "firebase-site", httpx.Response(
                    404, json={"error": {"code": 404, "message": "Site not found"}}
                )
            return "firebase-site", httpx.Response(200, json={"name": path})

        site = path.split("/")[3]
        version = f"sites/{site}/versions/v1"
        if path.endswith(":populateFiles"):
            self.firebase_files = json.loads(request.content)["files"]
            missing = sorted(set(self.firebase_files.values()) - set(self.firebase_uploads))
            return "firebase-populate", httpx.Response(
                200,
                json={
                    "uploadRequiredHashes": missing,
                    "uploadUrl": f"https://{UPLOAD_HOST}/upload/{version}/files",
                },
            )
        if path.endswith("/versions"):
            return "firebase-version", httpx.Response(200, json={"name": version})
        if request.method == "PATCH":
            return "firebase-finalize", httpx.Response(200, json={"status": "FINALIZED"})
        if path.endswith("/releases"):
            return "firebase-release", httpx.Response(
                200, json={"name": f"sites/{site}/releases/r1"}
            )
        return "firebase-unknown", httpx.Response(404)

    def _cloudflare(self, request: httpx.Request, path: str) -> tuple[str, httpx.Response]:
        path = path.removeprefix("/client/v4")
        if path == "/accounts":
            return "cloudflare-accounts", httpx.Response(
                200, json={"success": True, "result": [{"id": "acc1", "name": "Octo"}]}
            )
        if path.endswith("/upload-token"):
            return "cloudflare-token", httpx.Response(
                200, json={"success": True, "result": {"jwt": "upload-jwt"}}
            )
        if path.endswith("/deployments"):
            self.cloudflare_manifest = request.content
            name = path.split("/")[5]
            return "cloudflare-deploy", httpx.Response(
                200,
                json={
                    "success": True,
                    "result": {"id": "dep1", "url": f"https://dep1.{name}.pages.dev"},
                },
            )
        if path.startswith("/accounts/acc1/pages/projects/"):
            name = path.rsplit("/", 1)[1]
            if name not in self.cloudflare_projects:
                return "cloudflare-project", httpx.Response(
                    404,
                    json={"success": False, "errors": [{"code": 8000007, "message": "Project not found"}]},
                )
            return "cloudflare-project", httpx.Response(
                200, json={"success": True, "result": {"name": name}}
            )
        if path == "/pages/assets/check-missing":
            hashes = json.loads(request.content)["hashes"]
            missing = [h for h in hashes if h not in self.cloudflare_assets]
            return "cloudflare-check", httpx.Response(200, json={"success": True, "result": missing})
        if path == "/pages/assets/upload":
            for asset in json.loads(request.content):
                self.cloudflare_assets[asset["key"]] = asset["value"]
            return "cloudflare-upload", httpx.Response(200, json={"success": True, "result": {}})
        if path == "/pages/assets/upsert-hashes":
            return "cloudflare-upsert", httpx.Response(200, json={"success": True, "result": {}})
        return "cloudflare-unknown", httpx.Response(404, json={"success": False})


@pytest.fixture(autouse=True)
def fast_retries(monkeypatch: pytest.MonkeyPatch) -> None:
    """Retry without sleeping."""
    monkeypatch.setattr(settings, "fetch_retry_backoff_seconds", 0.0)


@pytest.fixture
def tarball_factory() -> Callable[..., bytes]:
    return build_tarball


@pytest.fixture
def site_files() -> dict[str, bytes]:
    """A small static site."""
    return {
        "index.html": b"<html><body>Hello</body></html>",
        "css/app.css": b"body { color: red; }",
        "img/logo.png": bytes(range(256)),
    }


@pytest.fixture
def fake_providers(site_files: dict[str, bytes]) -> FakeProviders:
    return FakeProviders(build_tarball(site_files))


@pytest.fixture
def credential_store() -> CredentialStore:
    """Credential store with every provider connected for ``user-1``."""
    store = CredentialStore()
    store.put("user-1", Credential(provider="github", token="gh-token"))
    store.put("user-1", Credential(provider="gitlab", token="gl-token"))
    store.put(
        "user-1",
        Credential(provider="google", token="google-token", refresh_token="google-refresh"),
    )
    store.put("user-1", Credential(provider="cloudflare", token="cf-token"))
    return store


@pytest.fixture
def status_store() -> StatusStore:
    return StatusStore(events=EventBus())


@pytest.fixture
def github_repo() -> RepositoryRef:
    return RepositoryRef(owner="octo", name="site", branch="main")


@pytest.fixture
def deployment_request(github_repo: RepositoryRef) -> DeploymentRequest:
    """Request deploying to Firebase and Cloudflare Pages."""
    return DeploymentRequest(
        repository=github_repo,
        hosting_project_id="my-project",
        project_id="dash-1",
        targets=(
            HostingTarget(id="fb", provider="firebase-hosting", name="my-site"),
            HostingTarget(id="cf", provider="cloudflare-pages", name="my-pages"),
        ),
    )


@pytest.fixture
def workspace_root(tmp_path: Path) -> Path:
    root = tmp_path / "workspaces"
    root.mkdir()
    return root


@pytest.fixture
async def client() -> AsyncClient:
    """Create an async test client with fresh in-memory stores."""
    # Reset the singletons for each test
    get_status_store().clear()
    get_credential_store().clear()
    get_record_store().clear()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    # Cleanup after test
    get_status_store().clear()
    get_credential_store().clear()
    get_record_store().clear()
