"""SQLite storage backend for taskmaster-sync."""

import asyncio
import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from ..errors import InvalidTransition, ProjectAlreadyExists, StorageError, TagConflict
from ..logging import get_logger
from ..models import (
    ACTIVE_STATUSES,
    Project,
    ProjectMember,
    SyncCounts,
    SyncHistory,
    SyncStatus,
)
from ..models.project import utcnow
from .base import SyncStore

logger = get_logger(__name__)


class SQLiteSyncStore(SyncStore):
    """SQLite storage backend.

    Every operation opens its own connection, so blocking calls can run on
    worker threads concurrently; SQLite's own locking serializes writers.
    """

    def __init__(self, db_path: str = "taskmaster_sync.db"):
        """Initialize SQLite storage.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    @contextmanager
    def _connect(self):
        conn = sqlite3.connect(self.db_path, timeout=30)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    def _init_db(self):
        """Initialize database tables."""
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS projects (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    description TEXT,
                    git_url TEXT NOT NULL,
                    git_provider TEXT NOT NULL,
                    git_branch TEXT NOT NULL DEFAULT 'main',
                    tag TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'ACTIVE',
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    last_sync_at TEXT,
                    CONSTRAINT uq_projects_git_identity UNIQUE (git_url, git_provider),
                    CONSTRAINT uq_projects_tag UNIQUE (tag)
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS project_members (
                    user_id TEXT NOT NULL,
                    project_id TEXT NOT NULL REFERENCES projects(id),
                    role TEXT NOT NULL DEFAULT 'MEMBER',
                    permissions TEXT NOT NULL DEFAULT '{}',
                    created_at TEXT NOT NULL,
                    PRIMARY KEY (user_id, project_id)
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS sync_history (
                    id TEXT PRIMARY KEY,
                    project_id TEXT NOT NULL REFERENCES projects(id),
                    user_id TEXT,
                    commit_sha TEXT,
                    sync_type TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'PENDING',
                    sync_data TEXT,
                    tasks_added INTEGER NOT NULL DEFAULT 0,
                    tasks_updated INTEGER NOT NULL DEFAULT 0,
                    tasks_removed INTEGER NOT NULL DEFAULT 0,
                    started_at TEXT NOT NULL,
                    completed_at TEXT,
                    error_message TEXT
                )
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_sync_history_project_status
                ON sync_history(project_id, status)
            """)

    # Row mapping

    @staticmethod
    def _row_to_project(row: sqlite3.Row) -> Project:
        return Project(**dict(row))

    @staticmethod
    def _row_to_history(row: sqlite3.Row) -> SyncHistory:
        data = dict(row)
        data["sync_data"] = json.loads(data["sync_data"]) if data["sync_data"] else {}
        return SyncHistory(**data)

    @staticmethod
    def _iso(value: Optional[datetime]) -> Optional[str]:
        return value.isoformat() if value else None

    # Projects

    def _find_project_by_git_identity(self, git_url: str, git_provider: str) -> Optional[Project]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM projects WHERE git_url = ? AND git_provider = ?",
                (git_url, git_provider),
            ).fetchone()
        return self._row_to_project(row) if row else None

    def _get_project(self, project_id: str) -> Optional[Project]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM projects WHERE id = ?", (project_id,)).fetchone()
        return self._row_to_project(row) if row else None

    def _create_project(self, project: Project, owner: Optional[ProjectMember] = None) -> Project:
        try:
            with self._connect() as conn:
                conn.execute("""
                    INSERT INTO projects
                    (id, name, description, git_url, git_provider, git_branch, tag,
                     status, created_at, updated_at, last_sync_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    project.id,
                    project.name,
                    project.description,
                    project.git_url,
                    project.git_provider,
                    project.git_branch,
                    project.tag,
                    project.status.value,
                    self._iso(project.created_at),
                    self._iso(project.updated_at),
                    self._iso(project.last_sync_at),
                ))
                # Same transaction: a failed member insert rolls the project back.
                if owner is not None:
                    self._insert_member(conn, owner)
        except sqlite3.IntegrityError as e:
            if "projects.tag" in str(e):
                raise TagConflict(f"Tag {project.tag!r} is already taken") from e
            raise ProjectAlreadyExists(
                f"Project for {project.git_provider}:{project.git_url} already exists"
            ) from e
        return project

    def _update_project_metadata(self, project_id: str, name: str, description: Optional[str], git_branch: str) -> Project:
        with self._connect() as conn:
            cursor = conn.execute("""
                UPDATE projects SET name = ?, description = ?, git_branch = ?, updated_at = ?
                WHERE id = ?
            """, (name, description, git_branch, self._iso(utcnow()), project_id))
            if cursor.rowcount == 0:
                raise StorageError(f"Project {project_id} not found")
            row = conn.execute("SELECT * FROM projects WHERE id = ?", (project_id,)).fetchone()
        return self._row_to_project(row)

    def _insert_member(self, conn: sqlite3.Connection, member: ProjectMember) -> None:
        conn.execute("""
            INSERT OR IGNORE INTO project_members
            (user_id, project_id, role, permissions, created_at)
            VALUES (?, ?, ?, ?, ?)
        """, (
            member.user_id,
            member.project_id,
            member.role.value,
            json.dumps(member.permissions),
            self._iso(member.created_at),
        ))

    def _add_project_member(self, member: ProjectMember) -> None:
        with self._connect() as conn:
            self._insert_member(conn, member)

    def list_project_members(self, project_id: str) -> List[ProjectMember]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM project_members WHERE project_id = ? ORDER BY created_at",
                (project_id,),
            ).fetchall()
        members = []
        for row in rows:
            data = dict(row)
            data["permissions"] = json.loads(data["permissions"])
            members.append(ProjectMember(**data))
        return members

    def count_projects(self) -> int:
        with self._connect() as conn:
            return conn.execute("SELECT COUNT(*) FROM projects").fetchone()[0]

    # Sync history

    def _create_sync_history(self, record: SyncHistory) -> SyncHistory:
        with self._connect() as conn:
            conn.execute("""
                INSERT INTO sync_history
                (id, project_id, user_id, commit_sha, sync_type, status, sync_data,
                 tasks_added, tasks_updated, tasks_removed, started_at, completed_at, error_message)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                record.id,
                record.project_id,
                record.user_id,
                record.commit_sha,
                record.sync_type.value,
                record.status.value,
                json.dumps(record.sync_data),
                record.tasks_added,
                record.tasks_updated,
                record.tasks_removed,
                self._iso(record.started_at),
                self._iso(record.completed_at),
                record.error_message,
            ))
        return record

    def _get_sync_history(self, sync_history_id: str) -> Optional[SyncHistory]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM sync_history WHERE id = ?", (sync_history_id,)).fetchone()
        return self._row_to_history(row) if row else None

    def _transition(
        self,
        conn: sqlite3.Connection,
        sync_history_id: str,
        allowed: Iterable[SyncStatus],
        assignments: Dict[str, Any],
    ) -> sqlite3.Row:
        """Conditionally update a record; the WHERE clause makes the status check atomic."""
        allowed = [status.value for status in allowed]
        columns = ", ".join(f"{column} = ?" for column in assignments)
        placeholders = ", ".join("?" for _ in allowed)
        cursor = conn.execute(
            f"UPDATE sync_history SET {columns} WHERE id = ? AND status IN ({placeholders})",
            (*assignments.values(), sync_history_id, *allowed),
        )
        row = conn.execute("SELECT * FROM sync_history WHERE id = ?", (sync_history_id,)).fetchone()
        if row is None:
            raise StorageError(f"Sync history {sync_history_id} not found")
        if cursor.rowcount == 0:
            raise InvalidTransition(
                f"Sync history {sync_history_id} is {row['status']}, "
                f"cannot move to {assignments['status']}"
            )
        return row

    def _mark_sync_running(self, sync_history_id: str) -> SyncHistory:
        with self._connect() as conn:
            row = self._transition(
                conn,
                sync_history_id,
                ACTIVE_STATUSES,
                {"status": SyncStatus.RUNNING.value},
            )
        return self._row_to_history(row)

    def _mark_sync_completed(self, sync_history_id: str, counts: SyncCounts) -> SyncHistory:
        now = self._iso(utcnow())
        with self._connect() as conn:
            row = self._transition(
                conn,
                sync_history_id,
                (SyncStatus.RUNNING,),
                {
                    "status": SyncStatus.COMPLETED.value,
                    "completed_at": now,
                    "tasks_added": counts.added,
                    "tasks_updated": counts.updated,
                    "tasks_removed": counts.removed,
                },
            )
            conn.execute(
                "UPDATE projects SET last_sync_at = ? WHERE id = ?",
                (now, row["project_id"]),
            )
        return self._row_to_history(row)

    def _mark_sync_failed(self, sync_history_id: str, error_message: str) -> SyncHistory:
        with self._connect() as conn:
            row = self._transition(
                conn,
                sync_history_id,
                ACTIVE_STATUSES,
                {
                    "status": SyncStatus.FAILED.value,
                    "completed_at": self._iso(utcnow()),
                    "error_message": error_message,
                },
            )
        return self._row_to_history(row)

    def _find_active_sync(self, project_id: str) -> Optional[SyncHistory]:
        with self._connect() as conn:
            row = conn.execute("""
                SELECT * FROM sync_history
                WHERE project_id = ? AND status IN (?, ?)
                ORDER BY started_at DESC LIMIT 1
            """, (project_id, *[status.value for status in ACTIVE_STATUSES])).fetchone()
        return self._row_to_history(row) if row else None

    def _list_sync_history(self, project_id: str, limit: int = 20) -> List[SyncHistory]:
        with self._connect() as conn:
            rows = conn.execute("""
                SELECT * FROM sync_history WHERE project_id = ?
                ORDER BY started_at DESC LIMIT ?
            """, (project_id, limit)).fetchall()
        return [self._row_to_history(row) for row in rows]

    def count_sync_history(self) -> int:
        with self._connect() as conn:
            return conn.execute("SELECT COUNT(*) FROM sync_history").fetchone()[0]

    # Async contract

    async def _run(self, func, *args):
        """Run a blocking operation on a worker thread, mapping driver errors to ``StorageError``."""
        try:
            return await asyncio.to_thread(func, *args)
        except sqlite3.Error as e:
            logger.error("sqlite_operation_failed", operation=func.__name__.lstrip("_"), error=str(e))
            raise StorageError(f"SQLite operation failed: {e}") from e

    async def ping(self) -> bool:
        def _ping():
            with self._connect() as conn:
                conn.execute("SELECT 1")
            return True

        try:
            return await self._run(_ping)
        except StorageError as e:
            logger.warning("store_ping_failed", error=str(e))
            return False

    async def find_project_by_git_identity(self, git_url: str, git_provider: str) -> Optional[Project]:
        return await self._run(self._find_project_by_git_identity, git_url, git_provider)

    async def get_project(self, project_id: str) -> Optional[Project]:
        return await self._run(self._get_project, project_id)

    async def create_project(self, project: Project, owner: Optional[ProjectMember] = None) -> Project:
        return await self._run(self._create_project, project, owner)

    async def update_project_metadata(self, project_id: str, name: str, description: Optional[str], git_branch: str) -> Project:
        return await self._run(self._update_project_metadata, project_id, name, description, git_branch)

    async def add_project_member(self, member: ProjectMember) -> None:
        await self._run(self._add_project_member, member)

    async def create_sync_history(self, record: SyncHistory) -> SyncHistory:
        return await self._run(self._create_sync_history, record)

    async def get_sync_history(self, sync_history_id: str) -> Optional[SyncHistory]:
        return await self._run(self._get_sync_history, sync_history_id)

    async def mark_sync_running(self, sync_history_id: str) -> SyncHistory:
        return await self._run(self._mark_sync_running, sync_history_id)

    async def mark_sync_completed(self, sync_history_id: str, counts: SyncCounts) -> SyncHistory:
        return await self._run(self._mark_sync_completed, sync_history_id, counts)

    async def mark_sync_failed(self, sync_history_id: str, error_message: str) -> SyncHistory:
        return await self._run(self._mark_sync_failed, sync_history_id, error_message)

    async def find_active_sync(self, project_id: str) -> Optional[SyncHistory]:
        return await self._run(self._find_active_sync, project_id)

    async def list_sync_history(self, project_id: str, limit: int = 20) -> List[SyncHistory]:
        return await self._run(self._list_sync_history, project_id, limit)
