"""arq worker executing queued sync jobs.

Run with ``taskmaster-sync worker`` or ``arq taskmaster_sync.sync.worker.WorkerSettings``.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Dict

from arq import Retry
from arq.connections import RedisSettings

from ..config import get_settings, load_config_simple
from ..errors import InvalidTransition
from ..logging import configure_logging, get_logger
from ..models import Project, SyncCounts
from ..storage import get_store
from ..webhooks.models import SyncJob

logger = get_logger(__name__)


class ProjectSynchronizer(ABC):
    """Performs the content synchronization for one project."""

    @abstractmethod
    async def synchronize(self, project: Project, job: SyncJob) -> SyncCounts:
        pass


class NullSynchronizer(ProjectSynchronizer):
    """Reports no task changes."""

    async def synchronize(self, project: Project, job: SyncJob) -> SyncCounts:
        logger.info("sync_noop", project_id=project.id, sync_type=job.sync_type.value)
        return SyncCounts()


async def run_sync_job(ctx: Dict[str, Any], job_data: dict) -> Dict[str, int]:
    """
    Execute one sync job.

    The record moves PENDING -> RUNNING -> COMPLETED. A failing try before
    the last raises ``arq.Retry`` and leaves the record RUNNING for the next
    try; the last failing try, a job timeout or a cancellation marks it FAILED.
    """
    job = SyncJob.model_validate(job_data)
    store = ctx["store"]
    synchronizer: ProjectSynchronizer = ctx["synchronizer"]
    job_try = ctx.get("job_try", 1)
    max_tries = ctx.get("max_tries", 1)
    retry_delay = ctx.get("retry_delay", 0)

    log = logger.bind(sync_history_id=job.sync_history_id, project_id=job.project_id, job_try=job_try)
    log.info("sync_job_started", sync_type=job.sync_type.value)

    try:
        await store.mark_sync_running(job.sync_history_id)
    except InvalidTransition as e:
        # Already finished by an earlier try; nothing left to do.
        log.warning("sync_job_skipped", error=str(e))
        return {}

    project = await store.get_project(job.project_id)
    if project is None:
        await store.mark_sync_failed(job.sync_history_id, f"Project {job.project_id} not found")
        log.error("sync_job_failed", error="project not found", final=True)
        return {}

    try:
        counts = await synchronizer.synchronize(project, job)
    except asyncio.CancelledError:
        # arq cancels the job on job_timeout and on worker shutdown.
        await asyncio.shield(store.mark_sync_failed(job.sync_history_id, "Sync job cancelled or timed out"))
        log.error("sync_job_failed", error="cancelled", final=True)
        raise
    except Exception as e:
        error = str(e) or type(e).__name__
        if job_try < max_tries:
            log.warning("sync_job_retrying", error=error, defer=retry_delay * job_try)
            raise Retry(defer=retry_delay * job_try) from e
        await store.mark_sync_failed(job.sync_history_id, error)
        log.error("sync_job_failed", error=error, final=True)
        raise

    await store.mark_sync_completed(job.sync_history_id, counts)
    log.info(
        "sync_job_completed",
        tasks_added=counts.added,
        tasks_updated=counts.updated,
        tasks_removed=counts.removed,
    )
    return counts.model_dump()


_settings = get_settings()
_config = load_config_simple(_settings.config_path)


async def startup(ctx: Dict[str, Any]) -> None:
    configure_logging(_settings.log_level)
    store = get_store(_settings.database_url)
    await store.initialize()
    ctx["store"] = store
    ctx["synchronizer"] = NullSynchronizer()
    ctx["max_tries"] = _config.queue.max_tries
    ctx["retry_delay"] = _config.queue.retry_delay
    logger.info("sync_worker_started", queue=_config.queue.queue_name)


async def shutdown(ctx: Dict[str, Any]) -> None:
    store = ctx.get("store")
    if store is not None:
        await store.close()
    logger.info("sync_worker_stopped")


class WorkerSettings:
    """Arq worker configuration."""

    functions = [run_sync_job]
    on_startup = startup
    on_shutdown = shutdown
    redis_settings = RedisSettings.from_dsn(_settings.redis_url)
    queue_name = _config.queue.queue_name

    max_jobs = _config.queue.max_jobs
    job_timeout = _config.queue.job_timeout
    max_tries = _config.queue.max_tries
