"""Unit tests for status tracking and events."""

import asyncio
from datetime import datetime, timedelta

import pytest

from repodeploy.core.events import Event, EventBus
from repodeploy.core.exceptions import BuildError, SourceNotFound
from repodeploy.core.status import StatusStore, StatusTracker
from repodeploy.models.deployment import (
    DeploymentRequest,
    DeploymentStatus,
    DeploymentStep,
    OutcomeStatus,
    ProviderOutcome,
)


class TestStatusTracker:
    """Tests for StatusTracker."""

    @pytest.fixture
    def snapshots(self) -> list[DeploymentStatus]:
        return []

    @pytest.fixture
    def tracker(self, snapshots) -> StatusTracker:
        return StatusTracker(DeploymentStatus(), on_change=snapshots.append)

    def test_advance_forward(self, tracker, snapshots):
        tracker.advance(DeploymentStep.DOWNLOADING, 5, "Downloading")
        tracker.advance(DeploymentStep.BUILDING, 35)

        assert tracker.step == DeploymentStep.BUILDING
        assert tracker.progress == 35
        assert [s.version for s in snapshots] == [1, 2]

    def test_cannot_move_backwards(self, tracker):
        tracker.advance(DeploymentStep.BUILDING, 35)

        with pytest.raises(ValueError, match="Illegal transition"):
            tracker.advance(DeploymentStep.DOWNLOADING)

    def test_progress_never_decreases(self, tracker):
        tracker.advance(DeploymentStep.DOWNLOADING, 25)
        tracker.set_progress(20)

        assert tracker.progress == 25

    def test_snapshot_is_a_copy(self, tracker, deployment_request: DeploymentRequest):
        tracker.start_outcomes(deployment_request.targets)
        snapshot = tracker.snapshot()
        snapshot.deployments[0].status = OutcomeStatus.SUCCESS
        snapshot.progress = 99

        fresh = tracker.snapshot()
        assert fresh.deployments[0].status == OutcomeStatus.PENDING
        assert fresh.progress == 0

    def test_fail_keeps_progress_and_step(self, tracker):
        tracker.advance(DeploymentStep.DOWNLOADING, 20)

        tracker.fail(SourceNotFound("Branch 'x' not found"))

        status = tracker.snapshot()
        assert status.step == DeploymentStep.ERROR
        assert status.failed_step == DeploymentStep.DOWNLOADING
        assert status.error_code == "SourceNotFound"
        assert status.error == "Branch 'x' not found"
        assert status.progress == 20

    def test_terminal_is_final(self, tracker):
        tracker.advance(DeploymentStep.BUILDING, 35)
        tracker.fail(BuildError("Build failed"))
        tracker.fail(SourceNotFound("ignored"))

        assert tracker.snapshot().error_code == "BuildError"
        with pytest.raises(ValueError):
            tracker.succeed("done")

    def test_failure_keeps_error_details(self, tracker):
        tracker.advance(DeploymentStep.BUILDING, 35)
        tracker.fail(BuildError("Build failed with exit code 2", output="STDERR:\nboom"))

        snapshot = tracker.snapshot()
        assert snapshot.error_details == {"output": "STDERR:\nboom"}
        assert snapshot.model_dump(mode="json")["error_details"]["output"].endswith("boom")

    def test_succeed_sets_full_progress(self, tracker):
        tracker.advance(DeploymentStep.DEPLOYING, 60)
        tracker.succeed("Deployment completed successfully")

        status = tracker.snapshot()
        assert status.step == DeploymentStep.SUCCESS
        assert status.progress == 100

    def test_outcomes_move_forward_only(self, tracker, deployment_request: DeploymentRequest):
        target = deployment_request.targets[0]
        tracker.start_outcomes(deployment_request.targets)

        tracker.update_outcome(
            ProviderOutcome.pending(target).model_copy(update={"status": OutcomeStatus.IN_PROGRESS})
        )
        tracker.update_outcome(ProviderOutcome.succeeded(target, "https://my-site.web.app"))

        assert tracker.terminal_outcomes() == 1
        with pytest.raises(ValueError):
            tracker.update_outcome(ProviderOutcome.failed(target, "late"))

    def test_unknown_outcome(self, tracker, deployment_request: DeploymentRequest):
        tracker.start_outcomes(deployment_request.targets[:1])

        with pytest.raises(KeyError):
            tracker.update_outcome(ProviderOutcome.pending(deployment_request.targets[1]))

    def test_annotate_rejects_unknown_fields(self, tracker):
        tracker.annotate(revision="abc123")
        assert tracker.snapshot().revision == "abc123"

        with pytest.raises(ValueError):
            tracker.annotate(step="success")


class TestStatusStore:
    """Tests for StatusStore."""

    async def test_create_and_get(self, status_store: StatusStore, deployment_request):
        tracker = await status_store.create("user-1", deployment_request)

        status = await status_store.get(tracker.id)

        assert status.id == tracker.id
        assert status.repository == "octo/site"
        assert status_store.owner(tracker.id) == "user-1"

    async def test_get_missing(self, status_store: StatusStore):
        assert await status_store.get("deploy_missing") is None

    async def test_list_is_per_user(self, status_store: StatusStore, deployment_request):
        await status_store.create("user-1", deployment_request)
        await status_store.create("user-1", deployment_request)
        await status_store.create("user-2", deployment_request)

        runs, total = await status_store.list_for_user("user-1", limit=1)

        assert total == 2
        assert len(runs) == 1

    async def test_changes_are_published(self, deployment_request):
        events = EventBus()
        store = StatusStore(events=events)
        tracker = await store.create("user-1", deployment_request)
        queue = events.subscribe(tracker.id)

        tracker.advance(DeploymentStep.DOWNLOADING, 5)
        tracker.fail(SourceNotFound("missing"))

        first = queue.get_nowait()
        last = queue.get_nowait()
        assert first.event_type == "status"
        assert first.data["progress"] == 5
        assert last.event_type == "deployment_failed"
        assert last.data["error_code"] == "SourceNotFound"

    async def test_running_tasks_excludes_finished(
        self, status_store: StatusStore, deployment_request
    ):
        done = await status_store.create("user-1", deployment_request)
        running = await status_store.create("user-1", deployment_request)
        finished_task = asyncio.create_task(asyncio.sleep(0))
        sleeping_task = asyncio.create_task(asyncio.sleep(60))
        status_store.attach_task(done.id, finished_task)
        status_store.attach_task(running.id, sleeping_task)
        await finished_task

        assert status_store.running_tasks() == [sleeping_task]

        sleeping_task.cancel()
        await asyncio.wait({sleeping_task})
        assert status_store.running_tasks() == []
        assert status_store.tracker(running.id).step == DeploymentStep.ERROR

    async def test_cleanup_expired(self, status_store: StatusStore, deployment_request):
        finished = await status_store.create("user-1", deployment_request)
        running = await status_store.create("user-1", deployment_request)
        finished.fail(SourceNotFound("missing"))
        for tracker in (finished, running):
            tracker._status.created_at = datetime.utcnow() - timedelta(days=2)

        removed = await status_store.cleanup_expired()

        assert removed == 1
        assert await status_store.get(finished.id) is None
        assert await status_store.get(running.id) is not None


class TestEventBus:
    """Tests for EventBus."""

    def test_multiple_subscribers(self):
        bus = EventBus()
        first = bus.subscribe("deploy_1")
        second = bus.subscribe("deploy_1")

        bus.publish("deploy_1", Event(event_type="status", data={"progress": 5}))

        assert first.get_nowait().data == {"progress": 5}
        assert second.get_nowait().data == {"progress": 5}

    def test_unsubscribe_one_queue(self):
        bus = EventBus()
        first = bus.subscribe("deploy_1")
        second = bus.subscribe("deploy_1")

        bus.unsubscribe("deploy_1", first)
        bus.publish_status("deploy_1", {"step": "success"})

        assert first.empty()
        assert second.get_nowait().event_type == "deployment_complete"
