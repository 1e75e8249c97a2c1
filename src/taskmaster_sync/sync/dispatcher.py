"""Create sync history records and hand the work to the job queue."""

import asyncio
import uuid
from typing import Optional, Set

from .. import metrics
from ..errors import DispatchFailure, StorageError
from ..logging import get_logger
from ..models import Project, SyncHistory, SyncStatus
from ..storage import SyncStore
from ..webhooks.models import CanonicalWebhookEvent, SyncJob
from ..webhooks.queue import SyncQueue
from .decision import SyncDecision

logger = get_logger(__name__)


class SyncDispatcher:
    """Record first, enqueue second.

    A history record is never left PENDING without a job behind it. When the
    enqueue fails or times out the record is moved to FAILED before the
    error propagates. When the record write itself times out, the write is
    left to settle in the background and the record is failed once it lands.
    """

    def __init__(
        self,
        store: SyncStore,
        queue: SyncQueue,
        request_timeout: float = 10.0,
        coalesce_in_flight: bool = False,
    ):
        self.store = store
        self.queue = queue
        self.request_timeout = request_timeout
        self.coalesce_in_flight = coalesce_in_flight
        self._cleanups: Set[asyncio.Task] = set()

    async def _bounded(self, awaitable):
        return await asyncio.wait_for(awaitable, timeout=self.request_timeout)

    async def dispatch(
        self,
        project: Project,
        event: CanonicalWebhookEvent,
        decision: SyncDecision,
        triggering_user: Optional[str] = None,
    ) -> str:
        """
        Persist a PENDING sync record and enqueue exactly one job for it.

        Args:
            project: Resolved project
            event: Triggering canonical event
            decision: Positive sync decision
            triggering_user: Optional id of the user behind the event

        Returns:
            The sync history id

        Raises:
            DispatchFailure: If the record could not be created or the job not enqueued
        """
        if self.coalesce_in_flight:
            active = await self._active_sync(project)
            if active is not None:
                logger.info(
                    "sync_coalesced",
                    project_id=project.id,
                    sync_history_id=active.id,
                    status=active.status.value,
                )
                return active.id

        record = SyncHistory(
            id=uuid.uuid4().hex,
            project_id=project.id,
            sync_type=decision.sync_type,
            status=SyncStatus.PENDING,
            sync_data={"webhook": event.summary(), **decision.metadata},
            user_id=triggering_user,
            commit_sha=event.after_sha,
        )

        # Shielded so a timeout does not abandon a write that may still commit.
        create = asyncio.ensure_future(self.store.create_sync_history(record))
        try:
            await self._bounded(asyncio.shield(create))
        except asyncio.TimeoutError as e:
            logger.error("sync_history_create_timed_out", project_id=project.id, sync_history_id=record.id)
            self._fail_when_written(create, record.id)
            raise DispatchFailure(f"Could not record sync for project {project.id}") from e
        except StorageError as e:
            logger.error("sync_history_create_failed", project_id=project.id, error=str(e))
            raise DispatchFailure(f"Could not record sync for project {project.id}") from e

        job = SyncJob(
            sync_history_id=record.id,
            project_id=project.id,
            external_repository_id=event.repository.external_id,
            provider=event.provider,
            sync_type=decision.sync_type,
            metadata=decision.metadata,
        )

        try:
            job_id = await self._bounded(self.queue.enqueue(job))
        except (Exception, asyncio.CancelledError) as e:
            reason = str(e) or type(e).__name__
            logger.error(
                "enqueue_failed",
                project_id=project.id,
                sync_history_id=record.id,
                error=reason,
            )
            await asyncio.shield(self._fail_record(record.id, f"Failed to enqueue sync job: {reason}"))
            if isinstance(e, asyncio.CancelledError):
                raise
            raise DispatchFailure(f"Could not enqueue sync for project {project.id}") from e

        metrics.SYNC_JOBS_ENQUEUED_TOTAL.labels(
            provider=event.provider.value,
            sync_type=decision.sync_type.value,
        ).inc()
        logger.info(
            "sync_dispatched",
            project_id=project.id,
            sync_history_id=record.id,
            sync_type=decision.sync_type.value,
            job_id=job_id,
        )
        return record.id

    async def _active_sync(self, project: Project) -> Optional[SyncHistory]:
        try:
            return await self._bounded(self.store.find_active_sync(project.id))
        except (StorageError, asyncio.TimeoutError) as e:
            raise DispatchFailure(f"Could not check in-flight syncs for project {project.id}") from e

    async def _fail_record(self, sync_history_id: str, message: str) -> None:
        try:
            await self.store.mark_sync_failed(sync_history_id, message)
        except StorageError as e:
            logger.error("sync_history_fail_mark_failed", sync_history_id=sync_history_id, error=str(e))

    def _fail_when_written(self, create: asyncio.Future, sync_history_id: str) -> None:
        task = asyncio.create_task(self._settle_late_record(create, sync_history_id))
        self._cleanups.add(task)
        task.add_done_callback(self._cleanups.discard)

    async def _settle_late_record(self, create: asyncio.Future, sync_history_id: str) -> None:
        try:
            await create
        except StorageError as e:
            # Nothing was written.
            logger.info("late_sync_history_write_failed", sync_history_id=sync_history_id, error=str(e))
            return
        await self._fail_record(sync_history_id, "Sync history write timed out before the job was enqueued")
        logger.info("late_sync_history_failed", sync_history_id=sync_history_id)

    async def drain(self) -> None:
        """Wait for records whose write outlived its request to be settled."""
        if self._cleanups:
            await asyncio.gather(*self._cleanups)
