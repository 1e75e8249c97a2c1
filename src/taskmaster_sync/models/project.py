"""Data models for projects and their members."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ProjectStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    ARCHIVED = "ARCHIVED"


class ProjectRole(str, Enum):
    OWNER = "OWNER"
    ADMIN = "ADMIN"
    MEMBER = "MEMBER"
    VIEWER = "VIEWER"


FULL_PERMISSIONS: Dict[str, bool] = {"read": True, "write": True, "admin": True, "sync": True}


class Project(BaseModel):
    """Internal project correlated 1:1 with an external repository per provider.

    Attributes:
        id: Internal identifier.
        git_url: Repository web URL; with ``git_provider`` the identity key.
        git_provider: Provider name (``github``, ``gitlab``).
        tag: Unique, URL-safe tag derived from the repository full name.
        git_branch: Default branch reported by the provider.
    """

    id: str
    name: str
    description: Optional[str] = None
    git_url: str
    git_provider: str
    git_branch: str = "main"
    tag: str
    status: ProjectStatus = ProjectStatus.ACTIVE
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    last_sync_at: Optional[datetime] = None


class ProjectMember(BaseModel):
    user_id: str
    project_id: str
    role: ProjectRole = ProjectRole.MEMBER
    permissions: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)
