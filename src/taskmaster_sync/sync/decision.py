"""Decide whether a canonical webhook event warrants a sync.

The decision is a pure function of the event: no I/O, no clock, no side
effects. Push events are filtered at file level against the reserved
configuration prefix; content is never inspected.
"""

from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, Field

from ..webhooks import PROVIDERS, WebhookProvider
from ..webhooks.models import CanonicalWebhookEvent, SyncType

DEFAULT_RESERVED_PREFIX = ".taskmaster/"


class SyncDecision(BaseModel):
    should_sync: bool
    sync_type: SyncType = SyncType.INCREMENTAL
    metadata: Dict[str, Any] = Field(default_factory=dict)


class SyncDecisionEngine:
    """Classifies events into no-op, incremental or full syncs."""

    def __init__(
        self,
        reserved_prefix: str = DEFAULT_RESERVED_PREFIX,
        providers: Optional[Mapping[str, WebhookProvider]] = None,
    ):
        self.reserved_prefix = reserved_prefix
        self.providers = providers if providers is not None else PROVIDERS

    def tracked_paths(self, event: CanonicalWebhookEvent) -> list[str]:
        """Sorted paths under the reserved prefix touched by any commit."""
        return sorted(path for path in event.touched_paths() if path.startswith(self.reserved_prefix))

    def is_repository_event(self, event: CanonicalWebhookEvent) -> bool:
        provider = self.providers.get(event.provider.value)
        return provider is not None and provider.classify(event)

    def decide(self, event: CanonicalWebhookEvent) -> SyncDecision:
        if event.is_push:
            tracked = self.tracked_paths(event)
            if not tracked:
                return SyncDecision(
                    should_sync=False,
                    metadata={"reason": "no tracked paths modified"},
                )
            return SyncDecision(
                should_sync=True,
                sync_type=SyncType.INCREMENTAL,
                metadata=self._metadata(event, tracked_files=tracked),
            )

        # Repository and ownership changes can invalidate more than a diff shows.
        if self.is_repository_event(event):
            return SyncDecision(
                should_sync=True,
                sync_type=SyncType.FULL,
                metadata=self._metadata(event, tracked_files=[]),
            )

        return SyncDecision(
            should_sync=False,
            metadata={"reason": f"event kind {event.event_kind!r} does not affect tracked state"},
        )

    @staticmethod
    def _metadata(event: CanonicalWebhookEvent, tracked_files: list[str]) -> Dict[str, Any]:
        return {
            "event": event.event_kind,
            "repository": event.repository.full_name,
            "ref": event.ref,
            "commits": len(event.commits),
            "tracked_files": tracked_files,
        }


_default_engine = SyncDecisionEngine()


def decide(event: CanonicalWebhookEvent) -> SyncDecision:
    """Decide with the default reserved prefix (``.taskmaster/``)."""
    return _default_engine.decide(event)
