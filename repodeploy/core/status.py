"""Deployment status tracking.

The orchestrator mutates a ``StatusTracker``; everybody else only ever sees
deep-copied, versioned ``DeploymentStatus`` snapshots.
"""

import asyncio
from datetime import datetime, timedelta
from functools import lru_cache
from typing import Callable

from repodeploy.config import settings
from repodeploy.core.events import EventBus, get_event_bus
from repodeploy.core.exceptions import Cancelled, RepoDeployError
from repodeploy.models.deployment import (
    STEP_ORDER,
    DeploymentRequest,
    DeploymentStatus,
    DeploymentStep,
    HostingTarget,
    OutcomeStatus,
    ProviderOutcome,
)

# Outcome status ordering; terminal states share the last rank
_OUTCOME_ORDER = {
    OutcomeStatus.PENDING: 0,
    OutcomeStatus.IN_PROGRESS: 1,
    OutcomeStatus.SUCCESS: 2,
    OutcomeStatus.ERROR: 2,
}


class StatusTracker:
    """Owns the mutable status of one run and enforces forward-only changes."""

    def __init__(
        self,
        status: DeploymentStatus,
        on_change: Callable[[DeploymentStatus], None] | None = None,
    ):
        self._status = status
        self._on_change = on_change

    @property
    def id(self) -> str:
        return self._status.id

    @property
    def step(self) -> DeploymentStep:
        return self._status.step

    @property
    def progress(self) -> int:
        return self._status.progress

    @property
    def is_terminal(self) -> bool:
        return self._status.is_terminal

    def snapshot(self) -> DeploymentStatus:
        """Return a read-only copy of the current status."""
        return self._status.model_copy(deep=True)

    def advance(
        self,
        step: DeploymentStep,
        progress: int | None = None,
        message: str | None = None,
    ) -> None:
        """Move to ``step`` (or stay in it) and raise progress."""
        current = self._status.step
        if current.is_terminal:
            raise ValueError(f"Deployment {self.id} already finished ({current.value})")
        if STEP_ORDER[step] < STEP_ORDER[current]:
            raise ValueError(f"Illegal transition {current.value} -> {step.value}")

        self._status.step = step
        if progress is not None:
            self._status.progress = max(self._status.progress, min(progress, 100))
        if message is not None:
            self._status.message = message
        self._touch()

    def set_progress(self, progress: int, message: str | None = None) -> None:
        """Raise progress within the current step. Lower values are ignored."""
        self.advance(self._status.step, progress, message)

    def annotate(self, **fields: str | None) -> None:
        """Record informational fields such as ``revision`` or ``profile``."""
        for key, value in fields.items():
            if key not in ("repository", "revision", "profile"):
                raise ValueError(f"Cannot annotate status field: {key}")
            setattr(self._status, key, value)
        self._touch()

    def start_outcomes(self, targets: tuple[HostingTarget, ...]) -> None:
        """Create one pending outcome per target."""
        self._status.deployments = [ProviderOutcome.pending(t) for t in targets]
        self._touch()

    def update_outcome(self, outcome: ProviderOutcome) -> None:
        """Replace the outcome for ``outcome.provider_id``, forward only."""
        for index, current in enumerate(self._status.deployments):
            if current.provider_id != outcome.provider_id:
                continue
            if current.status.is_terminal:
                raise ValueError(
                    f"Outcome for {outcome.provider_id} already {current.status.value}"
                )
            if _OUTCOME_ORDER[outcome.status] < _OUTCOME_ORDER[current.status]:
                raise ValueError(
                    f"Illegal outcome transition {current.status.value} -> {outcome.status.value}"
                )
            self._status.deployments[index] = outcome
            self._touch()
            return
        raise KeyError(outcome.provider_id)

    def terminal_outcomes(self) -> int:
        return sum(1 for d in self._status.deployments if d.status.is_terminal)

    def succeed(self, message: str) -> None:
        """Finish the run successfully."""
        self.advance(DeploymentStep.SUCCESS, 100, message)

    def fail(
        self,
        error: RepoDeployError,
        message: str = "Deployment failed",
    ) -> None:
        """Finish the run with a classified error. Progress is kept as is."""
        if self.is_terminal:
            return
        failed_step = self._status.step
        self._status.error = error.message
        self._status.error_code = error.code
        self._status.error_details = dict(error.details)
        self._status.failed_step = failed_step
        self.advance(DeploymentStep.ERROR, message=message)

    def _touch(self) -> None:
        self._status.version += 1
        self._status.updated_at = datetime.utcnow()
        if self._on_change is not None:
            self._on_change(self.snapshot())


class StatusStore:
    """Keeps deployment trackers and their background tasks in memory.

    Note: For production, this should be backed by Redis or a database.
    """

    def __init__(self, events: EventBus | None = None, ttl_hours: int | None = None):
        self.events = events or get_event_bus()
        self._trackers: dict[str, StatusTracker] = {}
        self._owners: dict[str, str] = {}
        self._tasks: dict[str, asyncio.Task] = {}
        self._ttl = timedelta(hours=ttl_hours or settings.status_ttl_hours)

    async def create(self, user_id: str, request: DeploymentRequest) -> StatusTracker:
        """Create the tracker for a new run."""
        status = DeploymentStatus(repository=request.repository.full_name)

        def publish(snapshot: DeploymentStatus) -> None:
            self.events.publish_status(snapshot.id, snapshot.model_dump(mode="json"))

        tracker = StatusTracker(status, on_change=publish)
        self._trackers[tracker.id] = tracker
        self._owners[tracker.id] = user_id
        return tracker

    async def get(self, deployment_id: str) -> DeploymentStatus | None:
        """Get a snapshot by ID."""
        tracker = self._trackers.get(deployment_id)
        if tracker is None:
            return None
        snapshot = tracker.snapshot()
        if datetime.utcnow() - snapshot.created_at > self._ttl and tracker.is_terminal:
            self._forget(deployment_id)
            return None
        return snapshot

    def tracker(self, deployment_id: str) -> StatusTracker | None:
        return self._trackers.get(deployment_id)

    def owner(self, deployment_id: str) -> str | None:
        return self._owners.get(deployment_id)

    async def list_for_user(
        self,
        user_id: str,
        limit: int = 10,
        offset: int = 0,
    ) -> tuple[list[DeploymentStatus], int]:
        """List a user's runs, newest first."""
        snapshots = [
            t.snapshot()
            for dep_id, t in self._trackers.items()
            if self._owners.get(dep_id) == user_id
        ]
        snapshots.sort(key=lambda s: s.created_at, reverse=True)
        total = len(snapshots)
        return snapshots[offset : offset + limit], total

    def attach_task(self, deployment_id: str, task: asyncio.Task) -> None:
        """Remember the background task so it can be cancelled."""
        self._tasks[deployment_id] = task

        def on_done(done: asyncio.Task) -> None:
            self._tasks.pop(deployment_id, None)
            tracker = self._trackers.get(deployment_id)
            if done.cancelled() and tracker is not None:
                tracker.fail(Cancelled())

        task.add_done_callback(on_done)

    def task(self, deployment_id: str) -> asyncio.Task | None:
        return self._tasks.get(deployment_id)

    def running_tasks(self) -> list[asyncio.Task]:
        return [t for t in self._tasks.values() if not t.done()]

    async def cleanup_expired(self) -> int:
        """Remove finished runs past their TTL. Returns count removed."""
        now = datetime.utcnow()
        expired = [
            dep_id
            for dep_id, tracker in self._trackers.items()
            if tracker.is_terminal and now - tracker.snapshot().created_at > self._ttl
        ]
        for dep_id in expired:
            self._forget(dep_id)
        return len(expired)

    def clear(self) -> None:
        self._trackers.clear()
        self._owners.clear()
        self._tasks.clear()

    def _forget(self, deployment_id: str) -> None:
        self._trackers.pop(deployment_id, None)
        self._owners.pop(deployment_id, None)
        self._tasks.pop(deployment_id, None)


# Singleton instance
_status_store: StatusStore | None = None


@lru_cache
def get_status_store() -> StatusStore:
    """Get the status store singleton."""
    global _status_store
    if _status_store is None:
        _status_store = StatusStore()
    return _status_store
