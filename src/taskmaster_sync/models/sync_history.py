"""Data models for sync history records."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from ..webhooks.models import SyncType
from .project import utcnow


class SyncStatus(str, Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


ACTIVE_STATUSES = (SyncStatus.PENDING, SyncStatus.RUNNING)


class SyncCounts(BaseModel):
    """Task counters reported by a finished sync."""

    added: int = 0
    updated: int = 0
    removed: int = 0


class SyncHistory(BaseModel):
    """One synchronization attempt for a project."""

    id: str
    project_id: str
    sync_type: SyncType
    status: SyncStatus = SyncStatus.PENDING
    sync_data: Dict[str, Any] = Field(default_factory=dict)
    user_id: Optional[str] = None
    commit_sha: Optional[str] = None
    tasks_added: int = 0
    tasks_updated: int = 0
    tasks_removed: int = 0
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None
