"""Persistence records used by the sync pipeline."""

from .project import FULL_PERMISSIONS, Project, ProjectMember, ProjectRole, ProjectStatus
from .sync_history import ACTIVE_STATUSES, SyncCounts, SyncHistory, SyncStatus

__all__ = [
    "ACTIVE_STATUSES",
    "FULL_PERMISSIONS",
    "Project",
    "ProjectMember",
    "ProjectRole",
    "ProjectStatus",
    "SyncCounts",
    "SyncHistory",
    "SyncStatus",
]
