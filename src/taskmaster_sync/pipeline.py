"""Webhook pipeline: verify, normalize, decide, resolve, dispatch."""

import json
import time
from typing import Any, Mapping, Optional

from pydantic import BaseModel

from . import metrics
from .errors import MalformedPayload, SignatureInvalid, WebhookError
from .logging import get_logger
from .sync.decision import SyncDecisionEngine
from .sync.dispatcher import SyncDispatcher
from .sync.resolver import ProjectResolver
from .webhooks import PROVIDERS, WebhookProvider
from .webhooks.base import get_header
from .webhooks.models import SyncType

logger = get_logger(__name__)

TRIGGERING_USER_HEADER = "X-Taskmaster-User"


class PipelineResult(BaseModel):
    """Outcome of a processed webhook."""

    queued: bool
    sync_history_id: Optional[str] = None
    sync_type: Optional[SyncType] = None
    project_id: Optional[str] = None
    reason: Optional[str] = None

    def to_response(self) -> dict:
        sync = self.model_dump(mode="json", exclude_none=True, exclude={"project_id"})
        message = "Sync queued" if self.queued else "Sync not needed"
        return {"message": message, "sync": sync}


class WebhookPipeline:
    """Runs one inbound webhook through the ordered pipeline steps.

    Each call is independent; the pipeline holds configuration and
    collaborators only, never per-request state.
    """

    def __init__(
        self,
        secrets: Mapping[str, Optional[str]],
        decision_engine: SyncDecisionEngine,
        resolver: ProjectResolver,
        dispatcher: SyncDispatcher,
        providers: Optional[Mapping[str, WebhookProvider]] = None,
    ):
        self.secrets = secrets
        self.decision_engine = decision_engine
        self.resolver = resolver
        self.dispatcher = dispatcher
        self.providers = providers if providers is not None else PROVIDERS

    async def handle(self, provider_name: str, headers: Mapping[str, str], raw_body: bytes) -> PipelineResult:
        """
        Process one webhook delivery.

        Raises:
            SignatureInvalid: Missing secret or failed verification
            MalformedPayload: Unknown provider, invalid JSON or unrecognized payload
            UnknownRepository: Untracked repository with project creation disabled
            ResolutionFailure: The project store did not answer in time
            DispatchFailure: The sync could not be recorded or enqueued
        """
        start = time.time()
        outcome = "error"
        try:
            result = await self._handle(provider_name, headers, raw_body)
            outcome = "queued" if result.queued else "ignored"
            return result
        except WebhookError as e:
            outcome = type(e).__name__
            raise
        finally:
            label = provider_name.lower() if provider_name.lower() in self.providers else "unknown"
            metrics.WEBHOOKS_RECEIVED_TOTAL.labels(provider=label, outcome=outcome).inc()
            metrics.WEBHOOK_PROCESSING_DURATION.labels(provider=label).observe(time.time() - start)

    async def _handle(self, provider_name: str, headers: Mapping[str, str], raw_body: bytes) -> PipelineResult:
        provider = self.providers.get(provider_name.lower())
        if provider is None:
            logger.warning("webhook_unknown_provider", provider=provider_name)
            raise MalformedPayload(f"Unknown provider: {provider_name}")

        log = logger.bind(provider=provider.name, delivery=provider.delivery_id(headers))
        log.info("webhook_received", size=len(raw_body))

        secret = self.secrets.get(provider.name)
        if not secret:
            log.warning("webhook_secret_missing")
            raise SignatureInvalid("Webhook secret is not configured")

        if not provider.verify(raw_body, headers, secret):
            log.warning("signature_invalid")
            raise SignatureInvalid("Invalid signature")

        try:
            body: Any = json.loads(raw_body)
        except (ValueError, UnicodeDecodeError) as e:
            log.info("webhook_invalid_json", error=str(e))
            raise MalformedPayload("Request body is not valid JSON") from e

        event = provider.parse(headers, body)
        if event is None:
            raise MalformedPayload("Unrecognized webhook payload")

        log = log.bind(event=event.event_kind, repository=event.repository.full_name)

        decision = self.decision_engine.decide(event)
        if not decision.should_sync:
            reason = decision.metadata.get("reason")
            log.info("sync_not_needed", reason=reason)
            return PipelineResult(queued=False, reason=reason)

        triggering_user = get_header(headers, TRIGGERING_USER_HEADER)
        project = await self.resolver.resolve(event.repository, event.provider, owner_context=triggering_user)
        project = await self.resolver.refresh_metadata(project, event.repository)

        sync_history_id = await self.dispatcher.dispatch(
            project,
            event,
            decision,
            triggering_user=triggering_user,
        )
        log.info(
            "webhook_processed",
            project_id=project.id,
            sync_history_id=sync_history_id,
            sync_type=decision.sync_type.value,
        )
        return PipelineResult(
            queued=True,
            sync_history_id=sync_history_id,
            sync_type=decision.sync_type,
            project_id=project.id,
        )
