"""Deployment Orchestrator.

Drives one run through the pipeline:
1. downloading - resolve credentials and revision, fetch, extract, detect
2. building - produce static output
3. deploying - fan out to every hosting target concurrently

and always releases the run's workspace, whatever the outcome.
"""

import asyncio
from pathlib import Path
from typing import Callable

import httpx

from repodeploy.core.exceptions import (
    AuthError,
    Cancelled,
    DeployError,
    DeploymentNotFoundError,
    InternalError,
    RepoDeployError,
    UnsupportedProject,
)
from repodeploy.core.status import StatusStore, StatusTracker, get_status_store
from repodeploy.core.workspace import Workspace
from repodeploy.deployers.registry import DeployerRegistry, get_deployer_registry
from repodeploy.models.credentials import Credential, NotConnected
from repodeploy.models.deployment import (
    DeploymentRequest,
    DeploymentStatus,
    DeploymentStep,
    HostingRecord,
    HostingTarget,
    OutcomeStatus,
    ProviderOutcome,
)
from repodeploy.services.builder import BuildExecutor
from repodeploy.services.credentials import CredentialResolver
from repodeploy.services.detector import ProjectTypeDetector
from repodeploy.services.extractor import ArchiveExtractor
from repodeploy.services.records import HostingRecordStore, get_record_store
from repodeploy.services.source_fetcher import SourceFetcher, get_source_fetcher
from repodeploy.utils.logging import bind_context, get_logger

# Progress milestones
PROGRESS_DOWNLOADING = 5
PROGRESS_DOWNLOADED = 20
PROGRESS_EXTRACTED = 25
PROGRESS_DETECTED = 30
PROGRESS_BUILDING = 35
PROGRESS_BUILT = 60


class DeploymentOrchestrator:
    """Runs deployments and owns their lifecycle.

    Collaborators are injectable so tests can substitute fakes; by default
    each one talks to the real provider APIs.
    """

    def __init__(
        self,
        store: StatusStore | None = None,
        credentials: CredentialResolver | None = None,
        fetcher_factory: Callable[[str], SourceFetcher] | None = None,
        extractor: ArchiveExtractor | None = None,
        detector: ProjectTypeDetector | None = None,
        builder: BuildExecutor | None = None,
        registry: DeployerRegistry | None = None,
        records: HostingRecordStore | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        workspace_root: str | Path | None = None,
    ):
        self.store = store or get_status_store()
        self.credentials = credentials or CredentialResolver()
        self.fetcher_factory = fetcher_factory or (
            lambda provider: get_source_fetcher(provider, transport=transport)
        )
        self.extractor = extractor or ArchiveExtractor()
        self.detector = detector or ProjectTypeDetector()
        self.builder = builder or BuildExecutor()
        self.registry = registry or get_deployer_registry()
        self.records = records or get_record_store()
        self.transport = transport
        self.workspace_root = workspace_root
        self.logger = get_logger("orchestrator")

    async def start(self, user_id: str, request: DeploymentRequest) -> DeploymentStatus:
        """Start a run in the background and return its first snapshot."""
        tracker = await self.store.create(user_id, request)
        task = asyncio.create_task(
            self.run(user_id, request, tracker),
            name=f"deployment-{tracker.id}",
        )
        self.store.attach_task(tracker.id, task)
        return tracker.snapshot()

    async def cancel(self, deployment_id: str) -> bool:
        """Cancel a running deployment and wait for it to wind down.

        Returns False if the run had already finished.

        Raises:
            DeploymentNotFoundError: unknown deployment id
        """
        status = await self.store.get(deployment_id)
        if status is None:
            raise DeploymentNotFoundError(deployment_id)

        task = self.store.task(deployment_id)
        if status.is_terminal or task is None or task.done():
            return False

        self.logger.info("orchestrator.cancel_requested", deployment_id=deployment_id)
        task.cancel()
        await asyncio.wait({task})

        # A task cancelled before its first step never reaches run()'s handlers
        tracker = self.store.tracker(deployment_id)
        if tracker is not None and not tracker.is_terminal:
            tracker.fail(Cancelled())
        return True

    async def run(
        self,
        user_id: str,
        request: DeploymentRequest,
        tracker: StatusTracker | None = None,
    ) -> DeploymentStatus:
        """Run the whole pipeline and return the final snapshot.

        Pipeline failures end up in the status, not as exceptions. Only
        cancellation propagates, after the status is marked ``Cancelled``.
        """
        if tracker is None:
            tracker = await self.store.create(user_id, request)

        repo = request.repository
        workspace: Workspace | None = None
        bind_context(deployment_id=tracker.id)

        self.logger.info(
            "orchestrator.deployment.started",
            deployment_id=tracker.id,
            repository=repo.full_name,
            branch=repo.branch,
            targets=[t.id for t in request.targets],
        )

        try:
            source_credential, hosting_credentials = self._preflight(user_id, request)

            # Phase 1: downloading
            tracker.advance(
                DeploymentStep.DOWNLOADING,
                PROGRESS_DOWNLOADING,
                f"Downloading {repo.full_name}@{repo.branch}",
            )
            fetcher = self.fetcher_factory(repo.provider)
            revision = await fetcher.resolve_revision(source_credential, repo)
            tracker.annotate(revision=revision)

            workspace = Workspace.create(repo.owner, repo.name, self.workspace_root)
            await fetcher.download(source_credential, repo, revision, workspace.archive_path)
            tracker.set_progress(PROGRESS_DOWNLOADED, "Archive downloaded")

            root = await self.extractor.extract(workspace.archive_path, workspace.source_dir)
            tracker.set_progress(PROGRESS_EXTRACTED, "Archive extracted")

            profile = self.detector.detect(root)
            tracker.annotate(profile=profile.kind.value)
            tracker.set_progress(PROGRESS_DETECTED, f"Detected {profile.kind.value} project")

            # Phase 2: building
            tracker.advance(DeploymentStep.BUILDING, PROGRESS_BUILDING, "Building project")
            if not profile.is_supported:
                raise UnsupportedProject(f"Unsupported project: {profile.reason}")
            build_output = await self.builder.build(profile)
            tracker.set_progress(PROGRESS_BUILT, "Build completed")

            # Phase 3: deploying
            count = len(request.targets)
            tracker.advance(
                DeploymentStep.DEPLOYING,
                PROGRESS_BUILT,
                f"Deploying to {count} hosting provider{'s' if count != 1 else ''}",
            )
            tracker.start_outcomes(request.targets)
            outcomes = await asyncio.gather(
                *(
                    self._deploy_one(
                        tracker,
                        build_output,
                        target,
                        request,
                        hosting_credentials[target.id],
                        user_id,
                    )
                    for target in request.targets
                )
            )

            await self._finish(tracker, request, outcomes)

        except RepoDeployError as e:
            self.logger.warning(
                "orchestrator.deployment.failed",
                deployment_id=tracker.id,
                step=tracker.step.value,
                code=e.code,
                error=e.message,
            )
            tracker.fail(e)
        except asyncio.CancelledError:
            self.logger.info(
                "orchestrator.deployment.cancelled",
                deployment_id=tracker.id,
                step=tracker.step.value,
            )
            self._cancel_outcomes(tracker, request)
            tracker.fail(Cancelled())
            raise
        except Exception as e:
            self.logger.error(
                "orchestrator.deployment.crashed",
                deployment_id=tracker.id,
                step=tracker.step.value,
                error=str(e),
                exc_info=True,
            )
            tracker.fail(InternalError())
        finally:
            if workspace is not None:
                await workspace.release()

        return tracker.snapshot()

    def _preflight(
        self, user_id: str, request: DeploymentRequest
    ) -> tuple[Credential, dict[str, Credential]]:
        """Resolve every credential the run needs before any work starts."""
        source = self.credentials.resolve(user_id, request.repository.provider)
        if isinstance(source, NotConnected):
            raise AuthError(source.message, provider=source.provider)

        hosting: dict[str, Credential] = {}
        for target in request.targets:
            credential = self.credentials.resolve_hosting(user_id, target.provider)
            if isinstance(credential, NotConnected):
                raise AuthError(credential.message, provider=credential.provider)
            hosting[target.id] = credential
        return source, hosting

    async def _deploy_one(
        self,
        tracker: StatusTracker,
        build_output: Path,
        target: HostingTarget,
        request: DeploymentRequest,
        credential: Credential,
        user_id: str,
    ) -> ProviderOutcome:
        """Deploy to one target. Only cancellation escapes."""
        tracker.update_outcome(
            ProviderOutcome.pending(target).model_copy(
                update={"status": OutcomeStatus.IN_PROGRESS}
            )
        )

        deployer = self.registry.create(target.provider, transport=self.transport)
        if deployer is None:
            outcome = ProviderOutcome.failed(
                target, f"No deployer registered for {target.provider}"
            )
        else:
            try:
                outcome = await deployer.deploy(
                    build_output, target, request, credential, user_id
                )
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.logger.error(
                    "orchestrator.deployer_crashed",
                    deployment_id=tracker.id,
                    target=target.id,
                    error=str(e),
                    exc_info=True,
                )
                outcome = ProviderOutcome.failed(
                    target, "Internal error during upload", InternalError.code
                )

        tracker.update_outcome(outcome)
        total = len(request.targets)
        tracker.set_progress(
            PROGRESS_BUILT + (100 - PROGRESS_BUILT) * tracker.terminal_outcomes() // total
        )
        return outcome

    async def _finish(
        self,
        tracker: StatusTracker,
        request: DeploymentRequest,
        outcomes: list[ProviderOutcome],
    ) -> None:
        succeeded = [o for o in outcomes if o.status == OutcomeStatus.SUCCESS]

        self.logger.info(
            "orchestrator.deployment.aggregated",
            deployment_id=tracker.id,
            succeeded=len(succeeded),
            failed=len(outcomes) - len(succeeded),
        )

        if not succeeded:
            raise DeployError("All hosting providers failed")

        if request.project_id:
            for outcome in succeeded:
                await self.records.record(
                    request.project_id,
                    HostingRecord(
                        id=outcome.provider_id,
                        provider=outcome.provider,
                        name=outcome.target,
                        url=outcome.url,
                        deployment_id=tracker.id,
                    ),
                )

        if len(succeeded) == len(outcomes):
            tracker.succeed("Deployment completed successfully")
        else:
            tracker.succeed("Deployment completed with some errors")
        self.logger.info("orchestrator.deployment.completed", deployment_id=tracker.id)

    @staticmethod
    def _cancel_outcomes(tracker: StatusTracker, request: DeploymentRequest) -> None:
        """Close every outcome still open when the run is cancelled."""
        open_ids = {
            d.provider_id
            for d in tracker.snapshot().deployments
            if not d.status.is_terminal
        }
        for target in request.targets:
            if target.id in open_ids:
                tracker.update_outcome(
                    ProviderOutcome.failed(target, Cancelled().message, Cancelled.code)
                )


def get_orchestrator() -> DeploymentOrchestrator:
    """Get a deployment orchestrator instance."""
    return DeploymentOrchestrator()
