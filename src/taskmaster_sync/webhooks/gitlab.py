"""GitLab webhook handling."""

from typing import Any, Mapping, Optional

from ..logging import get_logger
from .base import WebhookProvider, get_header, map_commits
from .models import CanonicalWebhookEvent, Provider, RepositoryInfo, RepositoryOwner
from .signature import TokenSignatureValidator

logger = get_logger(__name__)


class GitLabProvider(WebhookProvider):
    """GitLab project webhooks.

    GitLab does not sign payloads; ``X-Gitlab-Token`` carries the configured
    secret token verbatim. Event names arrive as ``"Push Hook"`` and are
    normalized to ``"push"``.
    """

    provider = Provider.GITLAB
    event_header = "X-Gitlab-Event"
    signature_header = "X-Gitlab-Token"
    delivery_header = "X-Gitlab-Event-UUID"
    repository_event_kinds = frozenset({"project"})

    def __init__(self):
        self.validator = TokenSignatureValidator()

    def verify(self, payload: bytes, headers: Mapping[str, str], secret: Optional[str]) -> bool:
        token = get_header(headers, self.signature_header)
        return self.validator.validate(payload, token, secret)

    def normalize_event_kind(self, header_value: str) -> str:
        return header_value.replace(" Hook", "").strip().lower()

    def build_event(self, event_kind: str, headers: Mapping[str, str], body: Mapping[str, Any]) -> Optional[CanonicalWebhookEvent]:
        project = body.get("project")
        if not isinstance(project, Mapping):
            logger.info("webhook_missing_repository", provider=self.name, event=event_kind)
            return None

        full_name = project["path_with_namespace"]
        namespace = project.get("namespace")
        if not isinstance(namespace, str) or not namespace:
            namespace = full_name.split("/")[0]

        fields = {
            "provider": self.provider,
            "event_kind": event_kind,
            "delivery_id": self.delivery_id(headers),
            "repository": RepositoryInfo(
                external_id=project["id"],
                name=project["name"],
                full_name=full_name,
                web_url=project["web_url"],
                owner=RepositoryOwner(login=namespace, external_id=project.get("namespace_id") or 0),
                default_branch=project.get("default_branch"),
                description=project.get("description"),
            ),
        }

        if event_kind == "push":
            fields["commits"] = map_commits(body.get("commits") or [])
            fields["ref"] = body.get("ref")
            fields["before_sha"] = body.get("before")
            fields["after_sha"] = body.get("after")

        return CanonicalWebhookEvent(**fields)
