"""Hosting records linked to dashboard projects."""

from functools import lru_cache

from repodeploy.models.deployment import HostingRecord
from repodeploy.utils.logging import get_logger

logger = get_logger(__name__)


class HostingRecordStore:
    """Stores the hosting targets each project has been deployed to.

    A later successful deploy to the same target replaces the earlier record.

    Note: For production, this should be backed by the dashboard database.
    """

    def __init__(self):
        self._records: dict[str, dict[str, HostingRecord]] = {}

    async def record(self, project_id: str, record: HostingRecord) -> HostingRecord:
        """Link ``record`` to ``project_id``."""
        self._records.setdefault(project_id, {})[record.id] = record
        logger.info(
            "records.hosting_linked",
            project_id=project_id,
            provider=record.provider,
            hosting_id=record.id,
            url=record.url,
        )
        return record

    async def list_for_project(self, project_id: str) -> list[HostingRecord]:
        """List hosting records for a project, most recently linked first."""
        records = list(self._records.get(project_id, {}).values())
        records.sort(key=lambda r: r.linked_at, reverse=True)
        return records

    def clear(self) -> None:
        self._records.clear()


# Singleton instance
_record_store: HostingRecordStore | None = None


@lru_cache
def get_record_store() -> HostingRecordStore:
    """Get the hosting record store singleton."""
    global _record_store
    if _record_store is None:
        _record_store = HostingRecordStore()
    return _record_store
