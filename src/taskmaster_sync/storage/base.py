"""Storage backend abstraction for taskmaster-sync."""

from abc import ABC, abstractmethod
from enum import Enum
from typing import List, Optional

from ..models import Project, ProjectMember, SyncCounts, SyncHistory


class StorageBackend(str, Enum):
    """Storage backend types."""
    SQLITE = "sqlite"
    POSTGRES = "postgres"


class SyncStore(ABC):
    """Record-level persistence contract consulted by the webhook pipeline and the worker.

    Backends must enforce uniqueness of ``(git_url, git_provider)`` and of
    ``tag`` at the storage level; the resolver relies on the resulting
    ``ProjectAlreadyExists``/``TagConflict`` errors instead of locks.

    Driver failures surface as ``StorageError``; no backend leaks its
    driver's exception types.
    """

    async def initialize(self) -> None:
        """Create tables if they do not exist."""
        pass

    async def close(self) -> None:
        pass

    async def ping(self) -> bool:
        return True

    # Projects

    @abstractmethod
    async def find_project_by_git_identity(self, git_url: str, git_provider: str) -> Optional[Project]:
        pass

    @abstractmethod
    async def get_project(self, project_id: str) -> Optional[Project]:
        pass

    @abstractmethod
    async def create_project(self, project: Project, owner: Optional[ProjectMember] = None) -> Project:
        """
        Insert a new project, and its owner membership in the same transaction.

        Raises:
            ProjectAlreadyExists: ``(git_url, git_provider)`` is taken
            TagConflict: ``tag`` is taken by another project
        """
        pass

    @abstractmethod
    async def update_project_metadata(
        self,
        project_id: str,
        name: str,
        description: Optional[str],
        git_branch: str,
    ) -> Project:
        """Update volatile metadata; identity fields are never touched."""
        pass

    @abstractmethod
    async def add_project_member(self, member: ProjectMember) -> None:
        """Attach a member; an existing ``(user_id, project_id)`` pair is left as is."""
        pass

    # Sync history

    @abstractmethod
    async def create_sync_history(self, record: SyncHistory) -> SyncHistory:
        pass

    @abstractmethod
    async def get_sync_history(self, sync_history_id: str) -> Optional[SyncHistory]:
        pass

    @abstractmethod
    async def mark_sync_running(self, sync_history_id: str) -> SyncHistory:
        """PENDING or RUNNING -> RUNNING."""
        pass

    @abstractmethod
    async def mark_sync_completed(self, sync_history_id: str, counts: SyncCounts) -> SyncHistory:
        """RUNNING -> COMPLETED; also stamps the project's ``last_sync_at``."""
        pass

    @abstractmethod
    async def mark_sync_failed(self, sync_history_id: str, error_message: str) -> SyncHistory:
        """PENDING or RUNNING -> FAILED."""
        pass

    @abstractmethod
    async def find_active_sync(self, project_id: str) -> Optional[SyncHistory]:
        """Most recent PENDING or RUNNING record for a project."""
        pass

    @abstractmethod
    async def list_sync_history(self, project_id: str, limit: int = 20) -> List[SyncHistory]:
        pass


def backend_for_url(database_url: str) -> StorageBackend:
    """Infer the backend from a database URL scheme."""
    if database_url.startswith(("postgres://", "postgresql://")):
        return StorageBackend.POSTGRES
    if database_url.startswith("sqlite:///"):
        return StorageBackend.SQLITE
    raise ValueError(f"Unsupported database URL: {database_url}")


def get_store(database_url: str) -> SyncStore:
    """Create a store for a ``sqlite:///path`` or ``postgresql://`` URL."""
    backend = backend_for_url(database_url)

    if backend == StorageBackend.POSTGRES:
        from .postgres import PostgresSyncStore
        return PostgresSyncStore(database_url)

    from .sqlite import SQLiteSyncStore
    return SQLiteSyncStore(database_url[len("sqlite:///"):])
