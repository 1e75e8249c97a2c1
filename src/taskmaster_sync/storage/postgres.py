"""PostgreSQL storage backend for taskmaster-sync."""

import json
from contextlib import asynccontextmanager
from typing import List, Optional

import asyncpg

from ..errors import InvalidTransition, ProjectAlreadyExists, StorageError, TagConflict
from ..logging import get_logger
from ..models import ACTIVE_STATUSES, Project, ProjectMember, SyncCounts, SyncHistory, SyncStatus
from .base import SyncStore

logger = get_logger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS projects (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    description TEXT,
    git_url TEXT NOT NULL,
    git_provider TEXT NOT NULL,
    git_branch TEXT NOT NULL DEFAULT 'main',
    tag TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'ACTIVE',
    created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
    last_sync_at TIMESTAMP WITH TIME ZONE,
    CONSTRAINT uq_projects_git_identity UNIQUE (git_url, git_provider),
    CONSTRAINT uq_projects_tag UNIQUE (tag)
);

CREATE TABLE IF NOT EXISTS project_members (
    user_id TEXT NOT NULL,
    project_id TEXT NOT NULL REFERENCES projects(id),
    role TEXT NOT NULL DEFAULT 'MEMBER',
    permissions JSONB NOT NULL DEFAULT '{}',
    created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
    PRIMARY KEY (user_id, project_id)
);

CREATE TABLE IF NOT EXISTS sync_history (
    id TEXT PRIMARY KEY,
    project_id TEXT NOT NULL REFERENCES projects(id),
    user_id TEXT,
    commit_sha TEXT,
    sync_type TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'PENDING',
    sync_data JSONB,
    tasks_added INTEGER NOT NULL DEFAULT 0,
    tasks_updated INTEGER NOT NULL DEFAULT 0,
    tasks_removed INTEGER NOT NULL DEFAULT 0,
    started_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
    completed_at TIMESTAMP WITH TIME ZONE,
    error_message TEXT
);

CREATE INDEX IF NOT EXISTS idx_sync_history_project_status
ON sync_history (project_id, status);
"""


class PostgresSyncStore(SyncStore):
    """PostgreSQL storage backend backed by an asyncpg pool."""

    def __init__(self, connection_string: str):
        self.connection_string = connection_string
        self.pool: Optional[asyncpg.Pool] = None

    async def initialize(self) -> None:
        if self.pool is None:
            self.pool = await asyncpg.create_pool(self.connection_string)
        async with self.connection() as conn:
            await conn.execute(SCHEMA)

    async def close(self) -> None:
        if self.pool is not None:
            await self.pool.close()
            self.pool = None

    @asynccontextmanager
    async def connection(self):
        """Acquire a pooled connection; driver errors leave as ``StorageError``."""
        try:
            if self.pool is None:
                self.pool = await asyncpg.create_pool(self.connection_string)
            async with self.pool.acquire() as conn:
                yield conn
        except (OSError, asyncpg.PostgresError, asyncpg.InterfaceError) as e:
            logger.error("postgres_operation_failed", error=str(e))
            raise StorageError(f"PostgreSQL operation failed: {e}") from e

    async def ping(self) -> bool:
        try:
            async with self.connection() as conn:
                await conn.fetchval("SELECT 1")
            return True
        except StorageError as e:
            logger.warning("store_ping_failed", error=str(e))
            return False

    @staticmethod
    def _row_to_history(row) -> SyncHistory:
        data = dict(row)
        sync_data = data.get("sync_data")
        data["sync_data"] = json.loads(sync_data) if isinstance(sync_data, str) else (sync_data or {})
        return SyncHistory(**data)

    # Projects

    async def find_project_by_git_identity(self, git_url: str, git_provider: str) -> Optional[Project]:
        async with self.connection() as conn:
            row = await conn.fetchrow(
                "SELECT * FROM projects WHERE git_url = $1 AND git_provider = $2",
                git_url, git_provider,
            )
        return Project(**dict(row)) if row else None

    async def get_project(self, project_id: str) -> Optional[Project]:
        async with self.connection() as conn:
            row = await conn.fetchrow("SELECT * FROM projects WHERE id = $1", project_id)
        return Project(**dict(row)) if row else None

    async def create_project(self, project: Project, owner: Optional[ProjectMember] = None) -> Project:
        async with self.connection() as conn:
            try:
                async with conn.transaction():
                    await conn.execute("""
                        INSERT INTO projects
                        (id, name, description, git_url, git_provider, git_branch, tag,
                         status, created_at, updated_at, last_sync_at)
                        VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11)
                    """,
                        project.id, project.name, project.description, project.git_url,
                        project.git_provider, project.git_branch, project.tag,
                        project.status.value, project.created_at, project.updated_at,
                        project.last_sync_at,
                    )
                    if owner is not None:
                        await self._insert_member(conn, owner)
            except asyncpg.UniqueViolationError as e:
                if e.constraint_name == "uq_projects_tag":
                    raise TagConflict(f"Tag {project.tag!r} is already taken") from e
                raise ProjectAlreadyExists(
                    f"Project for {project.git_provider}:{project.git_url} already exists"
                ) from e
        return project

    @staticmethod
    async def _insert_member(conn, member: ProjectMember) -> None:
        await conn.execute("""
            INSERT INTO project_members (user_id, project_id, role, permissions, created_at)
            VALUES ($1, $2, $3, $4::jsonb, $5)
            ON CONFLICT (user_id, project_id) DO NOTHING
        """,
            member.user_id, member.project_id, member.role.value,
            json.dumps(member.permissions), member.created_at,
        )

    async def update_project_metadata(self, project_id: str, name: str, description: Optional[str], git_branch: str) -> Project:
        async with self.connection() as conn:
            row = await conn.fetchrow("""
                UPDATE projects SET name = $2, description = $3, git_branch = $4, updated_at = NOW()
                WHERE id = $1
                RETURNING *
            """, project_id, name, description, git_branch)
        if row is None:
            raise StorageError(f"Project {project_id} not found")
        return Project(**dict(row))

    async def add_project_member(self, member: ProjectMember) -> None:
        async with self.connection() as conn:
            await self._insert_member(conn, member)

    # Sync history

    async def create_sync_history(self, record: SyncHistory) -> SyncHistory:
        async with self.connection() as conn:
            await conn.execute("""
                INSERT INTO sync_history
                (id, project_id, user_id, commit_sha, sync_type, status, sync_data,
                 tasks_added, tasks_updated, tasks_removed, started_at, completed_at, error_message)
                VALUES ($1, $2, $3, $4, $5, $6, $7::jsonb, $8, $9, $10, $11, $12, $13)
            """,
                record.id, record.project_id, record.user_id, record.commit_sha,
                record.sync_type.value, record.status.value, json.dumps(record.sync_data),
                record.tasks_added, record.tasks_updated, record.tasks_removed,
                record.started_at, record.completed_at, record.error_message,
            )
        return record

    async def get_sync_history(self, sync_history_id: str) -> Optional[SyncHistory]:
        async with self.connection() as conn:
            row = await conn.fetchrow("SELECT * FROM sync_history WHERE id = $1", sync_history_id)
        return self._row_to_history(row) if row else None

    async def _check_transition(self, conn, sync_history_id: str, target: SyncStatus) -> None:
        current = await conn.fetchval("SELECT status FROM sync_history WHERE id = $1", sync_history_id)
        if current is None:
            raise StorageError(f"Sync history {sync_history_id} not found")
        raise InvalidTransition(
            f"Sync history {sync_history_id} is {current}, cannot move to {target.value}"
        )

    async def mark_sync_running(self, sync_history_id: str) -> SyncHistory:
        async with self.connection() as conn:
            row = await conn.fetchrow("""
                UPDATE sync_history SET status = 'RUNNING'
                WHERE id = $1 AND status = ANY($2::text[])
                RETURNING *
            """, sync_history_id, [status.value for status in ACTIVE_STATUSES])
            if row is None:
                await self._check_transition(conn, sync_history_id, SyncStatus.RUNNING)
        return self._row_to_history(row)

    async def mark_sync_completed(self, sync_history_id: str, counts: SyncCounts) -> SyncHistory:
        async with self.connection() as conn:
            async with conn.transaction():
                row = await conn.fetchrow("""
                    UPDATE sync_history
                    SET status = 'COMPLETED', completed_at = NOW(),
                        tasks_added = $2, tasks_updated = $3, tasks_removed = $4
                    WHERE id = $1 AND status = 'RUNNING'
                    RETURNING *
                """, sync_history_id, counts.added, counts.updated, counts.removed)
                if row is None:
                    await self._check_transition(conn, sync_history_id, SyncStatus.COMPLETED)
                await conn.execute(
                    "UPDATE projects SET last_sync_at = $2 WHERE id = $1",
                    row["project_id"], row["completed_at"],
                )
        return self._row_to_history(row)

    async def mark_sync_failed(self, sync_history_id: str, error_message: str) -> SyncHistory:
        async with self.connection() as conn:
            row = await conn.fetchrow("""
                UPDATE sync_history
                SET status = 'FAILED', completed_at = NOW(), error_message = $2
                WHERE id = $1 AND status = ANY($3::text[])
                RETURNING *
            """, sync_history_id, error_message, [status.value for status in ACTIVE_STATUSES])
            if row is None:
                await self._check_transition(conn, sync_history_id, SyncStatus.FAILED)
        return self._row_to_history(row)

    async def find_active_sync(self, project_id: str) -> Optional[SyncHistory]:
        async with self.connection() as conn:
            row = await conn.fetchrow("""
                SELECT * FROM sync_history
                WHERE project_id = $1 AND status = ANY($2::text[])
                ORDER BY started_at DESC LIMIT 1
            """, project_id, [status.value for status in ACTIVE_STATUSES])
        return self._row_to_history(row) if row else None

    async def list_sync_history(self, project_id: str, limit: int = 20) -> List[SyncHistory]:
        async with self.connection() as conn:
            rows = await conn.fetch("""
                SELECT * FROM sync_history WHERE project_id = $1
                ORDER BY started_at DESC LIMIT $2
            """, project_id, limit)
        return [self._row_to_history(row) for row in rows]
