"""Sync job queue using Redis with arq."""

from typing import Optional

from arq import create_pool
from arq.connections import ArqRedis, RedisSettings
from arq.constants import default_queue_name

from ..errors import EnqueueError
from ..logging import get_logger
from .models import SyncJob

logger = get_logger(__name__)

SYNC_JOB_FUNCTION = "run_sync_job"


def sync_job_id(sync_history_id: str) -> str:
    """arq job id for a sync history record; one record never maps to two jobs."""
    return f"sync:{sync_history_id}"


class SyncQueue:
    """Redis-backed queue for sync jobs.

    The process that starts the server owns the lifecycle: call
    ``initialize`` on startup and ``close`` on shutdown.
    """

    def __init__(self, redis_settings: Optional[RedisSettings] = None, queue_name: Optional[str] = None):
        self.redis_settings = redis_settings or RedisSettings()
        self.queue_name = queue_name
        self.redis_pool: Optional[ArqRedis] = None

    @classmethod
    def from_url(cls, redis_url: str, queue_name: Optional[str] = None) -> "SyncQueue":
        return cls(RedisSettings.from_dsn(redis_url), queue_name=queue_name)

    async def initialize(self) -> None:
        """Initialize Redis connection pool."""
        if self.redis_pool is None:
            self.redis_pool = await create_pool(self.redis_settings, default_queue_name=self.queue_name or default_queue_name)
            logger.info("sync_queue_initialized", queue=self.queue_name)

    async def enqueue(self, job: SyncJob) -> str:
        """
        Add a sync job to the queue.

        Returns:
            The arq job id

        Raises:
            EnqueueError: If Redis is unreachable or refuses the job
        """
        job_id = sync_job_id(job.sync_history_id)
        try:
            if self.redis_pool is None:
                await self.initialize()
            queued = await self.redis_pool.enqueue_job(
                SYNC_JOB_FUNCTION,
                job.model_dump(mode="json"),
                _job_id=job_id,
            )
        except Exception as e:
            logger.error("sync_job_enqueue_failed", job_id=job_id, error=str(e))
            raise EnqueueError(f"Failed to enqueue sync job {job_id}: {e}") from e

        if queued is None:
            raise EnqueueError(f"Sync job {job_id} already exists")

        logger.info(
            "sync_job_enqueued",
            job_id=job_id,
            project_id=job.project_id,
            sync_type=job.sync_type.value,
        )
        return queued.job_id

    async def ping(self) -> bool:
        if self.redis_pool is None:
            return False
        try:
            return bool(await self.redis_pool.ping())
        except Exception as e:
            logger.warning("sync_queue_ping_failed", error=str(e))
            return False

    async def close(self) -> None:
        """Close Redis connection pool."""
        if self.redis_pool is not None:
            await self.redis_pool.close()
            self.redis_pool = None
            logger.info("sync_queue_closed")
