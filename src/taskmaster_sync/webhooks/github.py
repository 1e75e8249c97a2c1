"""GitHub webhook handling."""

from typing import Any, Mapping, Optional

from ..logging import get_logger
from .base import WebhookProvider, get_header, map_commits
from .models import CanonicalWebhookEvent, Provider, RepositoryInfo, RepositoryOwner
from .signature import GITHUB_SIGNATURE_PREFIX, HmacSignatureValidator

logger = get_logger(__name__)


class GitHubProvider(WebhookProvider):
    """GitHub repository webhooks (``X-GitHub-Event`` / ``X-Hub-Signature-256``)."""

    provider = Provider.GITHUB
    event_header = "X-GitHub-Event"
    signature_header = "X-Hub-Signature-256"
    delivery_header = "X-GitHub-Delivery"
    repository_event_kinds = frozenset({"repository"})

    def __init__(self):
        self.validator = HmacSignatureValidator(prefix=GITHUB_SIGNATURE_PREFIX)

    def verify(self, payload: bytes, headers: Mapping[str, str], secret: Optional[str]) -> bool:
        signature = get_header(headers, self.signature_header)
        return self.validator.validate(payload, signature, secret)

    def build_event(self, event_kind: str, headers: Mapping[str, str], body: Mapping[str, Any]) -> Optional[CanonicalWebhookEvent]:
        repository = body.get("repository")
        if not isinstance(repository, Mapping):
            logger.info("webhook_missing_repository", provider=self.name, event=event_kind)
            return None

        owner = repository.get("owner") or {}
        fields = {
            "provider": self.provider,
            "event_kind": event_kind,
            "delivery_id": self.delivery_id(headers),
            "repository": RepositoryInfo(
                external_id=repository["id"],
                name=repository["name"],
                full_name=repository["full_name"],
                web_url=repository["html_url"],
                owner=RepositoryOwner(login=owner["login"], external_id=owner.get("id") or 0),
                default_branch=repository.get("default_branch") or repository.get("master_branch"),
                description=repository.get("description"),
            ),
        }

        if event_kind == "push":
            fields["commits"] = map_commits(body.get("commits") or [])
            fields["ref"] = body.get("ref")
            fields["before_sha"] = body.get("before")
            fields["after_sha"] = body.get("after")

        return CanonicalWebhookEvent(**fields)
