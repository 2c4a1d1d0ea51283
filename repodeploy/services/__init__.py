"""Pipeline services for repodeploy."""

from repodeploy.services.builder import BuildExecutor
from repodeploy.services.credentials import (
    CredentialResolver,
    CredentialStore,
    GoogleTokenRefresher,
    get_credential_store,
)
from repodeploy.services.detector import ProjectTypeDetector
from repodeploy.services.extractor import ArchiveExtractor
from repodeploy.services.records import HostingRecordStore, get_record_store
from repodeploy.services.source_fetcher import (
    GitHubSourceFetcher,
    GitLabSourceFetcher,
    SourceFetcher,
    get_source_fetcher,
)

__all__ = [
    "ArchiveExtractor",
    "BuildExecutor",
    "CredentialResolver",
    "CredentialStore",
    "GoogleTokenRefresher",
    "get_credential_store",
    "ProjectTypeDetector",
    "HostingRecordStore",
    "get_record_store",
    "SourceFetcher",
    "GitHubSourceFetcher",
    "GitLabSourceFetcher",
    "get_source_fetcher",
]
