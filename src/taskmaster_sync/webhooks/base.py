"""Base class for provider-specific webhook handling."""

from abc import ABC, abstractmethod
from typing import Any, FrozenSet, Iterable, List, Mapping, Optional

from pydantic import ValidationError

from ..logging import get_logger
from .models import CanonicalWebhookEvent, CommitAuthor, CommitInfo, Provider

logger = get_logger(__name__)


def get_header(headers: Mapping[str, str], name: str) -> Optional[str]:
    """Case-insensitive header lookup that works for plain dicts and Starlette headers."""
    value = headers.get(name)
    if value is not None:
        return value

    lowered = name.lower()
    for key, candidate in headers.items():
        if key.lower() == lowered:
            return candidate
    return None


def _paths(value: Any) -> FrozenSet[str]:
    if not value:
        return frozenset()
    return frozenset(str(path) for path in value)


def map_commits(commits: Iterable[Mapping[str, Any]]) -> List[CommitInfo]:
    """Map provider commit objects onto canonical commits.

    GitHub and GitLab share the same commit shape for push events; missing
    path arrays become empty sets.
    """
    mapped = []
    for commit in commits:
        author = commit.get("author") or {}
        mapped.append(
            CommitInfo(
                id=commit["id"],
                message=commit.get("message") or "",
                author=CommitAuthor(name=author.get("name"), email=author.get("email")),
                timestamp=commit.get("timestamp"),
                paths_modified=_paths(commit.get("modified")),
                paths_added=_paths(commit.get("added")),
                paths_removed=_paths(commit.get("removed")),
            )
        )
    return mapped


class WebhookProvider(ABC):
    """One source-control provider: verification, normalization and classification."""

    provider: Provider
    event_header: str
    signature_header: str
    delivery_header: Optional[str] = None
    repository_event_kinds: FrozenSet[str] = frozenset()

    @property
    def name(self) -> str:
        return self.provider.value

    @abstractmethod
    def verify(self, payload: bytes, headers: Mapping[str, str], secret: Optional[str]) -> bool:
        """Check that the raw payload was sent by this provider."""
        pass

    @abstractmethod
    def build_event(self, event_kind: str, headers: Mapping[str, str], body: Mapping[str, Any]) -> Optional[CanonicalWebhookEvent]:
        """Build the canonical event from a body that passed the basic shape checks."""
        pass

    def normalize_event_kind(self, header_value: str) -> str:
        return header_value

    def parse(self, headers: Mapping[str, str], body: Any) -> Optional[CanonicalWebhookEvent]:
        """
        Normalize a provider payload into a canonical event.

        Returns None when the payload is not a recognized webhook: missing
        event header, missing repository object, or fields of the wrong shape.
        """
        header_value = get_header(headers, self.event_header)
        if not header_value:
            logger.info("webhook_missing_event_header", provider=self.name, header=self.event_header)
            return None

        if not isinstance(body, Mapping):
            logger.info("webhook_body_not_object", provider=self.name)
            return None

        try:
            return self.build_event(self.normalize_event_kind(header_value), headers, body)
        except (KeyError, TypeError, AttributeError, ValidationError) as e:
            logger.info(
                "webhook_payload_unrecognized",
                provider=self.name,
                error_type=type(e).__name__,
                error=str(e),
            )
            return None

    def classify(self, event: CanonicalWebhookEvent) -> bool:
        """Whether the event is a repository or ownership change."""
        return event.event_kind in self.repository_event_kinds

    def delivery_id(self, headers: Mapping[str, str]) -> Optional[str]:
        if self.delivery_header is None:
            return None
        return get_header(headers, self.delivery_header)
