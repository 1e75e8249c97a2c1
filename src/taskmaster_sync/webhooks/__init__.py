"""Webhook handling for taskmaster-sync."""

from typing import Dict

from .base import WebhookProvider
from .github import GitHubProvider
from .gitlab import GitLabProvider
from .models import CanonicalWebhookEvent, Provider, SyncJob, SyncType
from .queue import SyncQueue

PROVIDERS: Dict[str, WebhookProvider] = {
    Provider.GITHUB.value: GitHubProvider(),
    Provider.GITLAB.value: GitLabProvider(),
}


def get_provider(name: str) -> WebhookProvider | None:
    """Look up a provider variant by name (``github``, ``gitlab``)."""
    return PROVIDERS.get(name.lower())


__all__ = [
    "CanonicalWebhookEvent",
    "GitHubProvider",
    "GitLabProvider",
    "PROVIDERS",
    "Provider",
    "SyncJob",
    "SyncQueue",
    "SyncType",
    "WebhookProvider",
    "get_provider",
]
