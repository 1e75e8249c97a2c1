"""Models for canonical webhook events and sync jobs."""

from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class Provider(str, Enum):
    """Source-control providers that can deliver webhooks."""

    GITHUB = "github"
    GITLAB = "gitlab"


class SyncType(str, Enum):
    FULL = "FULL"
    INCREMENTAL = "INCREMENTAL"
    MANUAL = "MANUAL"


class RepositoryOwner(BaseModel):
    model_config = ConfigDict(frozen=True)

    login: str
    external_id: int = 0


class RepositoryInfo(BaseModel):
    """Provider-agnostic repository identity."""

    model_config = ConfigDict(frozen=True)

    external_id: int
    name: str
    full_name: str
    web_url: str
    owner: RepositoryOwner
    default_branch: Optional[str] = None
    description: Optional[str] = None


class CommitAuthor(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: Optional[str] = None
    email: Optional[str] = None


class CommitInfo(BaseModel):
    """A single commit of a push event."""

    model_config = ConfigDict(frozen=True)

    id: str
    message: str = ""
    author: CommitAuthor = Field(default_factory=CommitAuthor)
    timestamp: Optional[str] = None
    paths_modified: FrozenSet[str] = frozenset()
    paths_added: FrozenSet[str] = frozenset()
    paths_removed: FrozenSet[str] = frozenset()

    def touched_paths(self) -> FrozenSet[str]:
        return self.paths_modified | self.paths_added | self.paths_removed


class CanonicalWebhookEvent(BaseModel):
    """Provider-agnostic representation of an inbound change notification."""

    model_config = ConfigDict(frozen=True)

    provider: Provider
    event_kind: str
    repository: RepositoryInfo
    ref: Optional[str] = None
    before_sha: Optional[str] = None
    after_sha: Optional[str] = None
    commits: List[CommitInfo] = Field(default_factory=list)
    delivery_id: Optional[str] = None

    @property
    def is_push(self) -> bool:
        return self.event_kind == "push"

    def touched_paths(self) -> FrozenSet[str]:
        """Union of every path modified, added or removed by the event's commits."""
        paths: FrozenSet[str] = frozenset()
        for commit in self.commits:
            paths = paths | commit.touched_paths()
        return paths

    def summary(self) -> Dict[str, Any]:
        """Compact summary recorded on the sync history record."""
        return {
            "event": self.event_kind,
            "provider": self.provider.value,
            "delivery": self.delivery_id,
            "repository": self.repository.full_name,
            "ref": self.ref,
            "commits": len(self.commits),
        }


class SyncJob(BaseModel):
    """Payload of a queued sync job."""

    sync_history_id: str
    project_id: str
    external_repository_id: int
    provider: Provider
    sync_type: SyncType
    metadata: Dict[str, Any] = Field(default_factory=dict)
