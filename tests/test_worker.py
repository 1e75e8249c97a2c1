"""Tests for the sync job worker and its status transitions."""

import asyncio
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from arq import Retry, Worker
from arq.connections import ArqRedis
from fakeredis import FakeAsyncRedis

from taskmaster_sync.models import SyncCounts, SyncHistory, SyncStatus
from taskmaster_sync.sync.resolver import ProjectResolver
from taskmaster_sync.sync.worker import NullSynchronizer, WorkerSettings, run_sync_job
from taskmaster_sync.webhooks.models import Provider, RepositoryInfo, RepositoryOwner, SyncJob, SyncType
from taskmaster_sync.webhooks.queue import SyncQueue


@pytest_asyncio.fixture
async def project(store):
    repository = RepositoryInfo(
        external_id=7,
        name="widgets",
        full_name="acme/widgets",
        web_url="https://github.com/acme/widgets",
        owner=RepositoryOwner(login="acme"),
    )
    return await ProjectResolver(store).resolve(repository, Provider.GITHUB)


@pytest_asyncio.fixture
async def pending(store, project):
    record = SyncHistory(id="history-1", project_id=project.id, sync_type=SyncType.INCREMENTAL)
    return await store.create_sync_history(record)


def make_job_data(record, project_id=None):
    return SyncJob(
        sync_history_id=record.id,
        project_id=project_id or record.project_id,
        external_repository_id=7,
        provider=Provider.GITHUB,
        sync_type=SyncType.INCREMENTAL,
        metadata={"tracked_files": [".taskmaster/tasks/tasks.json"]},
    ).model_dump(mode="json")


def make_ctx(store, synchronizer=None, job_try=1, max_tries=3):
    return {
        "store": store,
        "synchronizer": synchronizer or NullSynchronizer(),
        "job_try": job_try,
        "max_tries": max_tries,
    }


@pytest.mark.asyncio
async def test_job_completes(store, project, pending):
    synchronizer = AsyncMock()
    synchronizer.synchronize = AsyncMock(return_value=SyncCounts(added=3, updated=2, removed=1))

    result = await run_sync_job(make_ctx(store, synchronizer), make_job_data(pending))

    assert result == {"added": 3, "updated": 2, "removed": 1}
    record = await store.get_sync_history(pending.id)
    assert record.status == SyncStatus.COMPLETED
    assert (record.tasks_added, record.tasks_updated, record.tasks_removed) == (3, 2, 1)
    assert record.completed_at is not None

    refreshed = await store.get_project(project.id)
    assert refreshed.last_sync_at is not None

    synced_project, job = synchronizer.synchronize.await_args.args
    assert synced_project.id == project.id
    assert job.sync_history_id == pending.id


@pytest.mark.asyncio
async def test_null_synchronizer_reports_zero_counts(store, pending):
    await run_sync_job(make_ctx(store), make_job_data(pending))

    record = await store.get_sync_history(pending.id)
    assert record.status == SyncStatus.COMPLETED
    assert (record.tasks_added, record.tasks_updated, record.tasks_removed) == (0, 0, 0)


@pytest.mark.asyncio
async def test_failure_on_last_try_marks_failed(store, pending):
    synchronizer = AsyncMock()
    synchronizer.synchronize = AsyncMock(side_effect=RuntimeError("tasks.json unreadable"))

    with pytest.raises(RuntimeError):
        await run_sync_job(make_ctx(store, synchronizer, job_try=3, max_tries=3), make_job_data(pending))

    record = await store.get_sync_history(pending.id)
    assert record.status == SyncStatus.FAILED
    assert record.error_message == "tasks.json unreadable"
    assert record.completed_at is not None


@pytest.mark.asyncio
async def test_missing_project_marks_failed(store, pending):
    result = await run_sync_job(make_ctx(store), make_job_data(pending, project_id="gone"))

    assert result == {}
    record = await store.get_sync_history(pending.id)
    assert record.status == SyncStatus.FAILED
    assert "gone" in record.error_message


@pytest.mark.asyncio
async def test_finished_record_is_not_rerun(store, pending):
    synchronizer = AsyncMock()
    await run_sync_job(make_ctx(store), make_job_data(pending))

    result = await run_sync_job(make_ctx(store, synchronizer), make_job_data(pending))

    assert result == {}
    synchronizer.synchronize.assert_not_awaited()
    record = await store.get_sync_history(pending.id)
    assert record.status == SyncStatus.COMPLETED


def test_worker_settings():
    assert run_sync_job in WorkerSettings.functions
    assert WorkerSettings.max_tries == 3
    assert WorkerSettings.job_timeout == 300
    assert WorkerSettings.queue_name == "taskmaster-sync:queue"


@pytest.mark.asyncio
async def test_failure_before_last_try_requests_retry(store, pending):
    synchronizer = AsyncMock()
    synchronizer.synchronize = AsyncMock(side_effect=RuntimeError("tasks.json unreadable"))
    ctx = make_ctx(store, synchronizer, job_try=1, max_tries=3)
    ctx["retry_delay"] = 2

    with pytest.raises(Retry) as exc_info:
        await run_sync_job(ctx, make_job_data(pending))

    assert exc_info.value.defer_score == 2000
    record = await store.get_sync_history(pending.id)
    assert record.status == SyncStatus.RUNNING


@pytest.mark.asyncio
async def test_cancelled_job_marks_failed(store, pending):
    async def hang(project, job):
        await asyncio.sleep(5)

    synchronizer = AsyncMock()
    synchronizer.synchronize = AsyncMock(side_effect=hang)

    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(run_sync_job(make_ctx(store, synchronizer), make_job_data(pending)), timeout=0.05)

    record = await store.get_sync_history(pending.id)
    assert record.status == SyncStatus.FAILED
    assert "cancelled" in record.error_message


class TestArqWorker:
    """Jobs run through a real arq worker backed by an in-memory Redis."""

    @pytest_asyncio.fixture
    async def arq_redis(self):
        redis = ArqRedis(connection_pool=FakeAsyncRedis().connection_pool)
        yield redis
        await redis.close()

    async def enqueue(self, arq_redis, record):
        queue = SyncQueue()
        queue.redis_pool = arq_redis
        await queue.enqueue(SyncJob.model_validate(make_job_data(record)))

    async def run_worker(self, arq_redis, store, synchronizer, max_tries=3, job_timeout=10):
        worker = Worker(
            functions=[run_sync_job],
            redis_pool=arq_redis,
            burst=True,
            poll_delay=0.01,
            max_tries=max_tries,
            job_timeout=job_timeout,
            handle_signals=False,
            ctx={
                "store": store,
                "synchronizer": synchronizer,
                "max_tries": max_tries,
                "retry_delay": 0,
            },
        )
        await asyncio.wait_for(worker.main(), timeout=15)
        return worker

    @pytest.mark.asyncio
    async def test_flaky_sync_is_retried_and_completes(self, arq_redis, store, pending):
        synchronizer = AsyncMock()
        synchronizer.synchronize = AsyncMock(side_effect=[RuntimeError("flaky"), SyncCounts(updated=1)])
        await self.enqueue(arq_redis, pending)

        worker = await self.run_worker(arq_redis, store, synchronizer)

        assert synchronizer.synchronize.await_count == 2
        assert worker.jobs_retried == 1
        assert worker.jobs_complete == 1
        record = await store.get_sync_history(pending.id)
        assert record.status == SyncStatus.COMPLETED
        assert record.tasks_updated == 1

    @pytest.mark.asyncio
    async def test_persistent_failure_ends_failed(self, arq_redis, store, pending):
        synchronizer = AsyncMock()
        synchronizer.synchronize = AsyncMock(side_effect=RuntimeError("flaky"))
        await self.enqueue(arq_redis, pending)

        worker = await self.run_worker(arq_redis, store, synchronizer, max_tries=3)

        assert synchronizer.synchronize.await_count == 3
        assert worker.jobs_retried == 2
        assert worker.jobs_failed == 1
        record = await store.get_sync_history(pending.id)
        assert record.status == SyncStatus.FAILED
        assert record.error_message == "flaky"

    @pytest.mark.asyncio
    async def test_job_timeout_ends_failed(self, arq_redis, store, pending):
        async def hang(project, job):
            await asyncio.sleep(5)

        synchronizer = AsyncMock()
        synchronizer.synchronize = AsyncMock(side_effect=hang)
        await self.enqueue(arq_redis, pending)

        worker = await self.run_worker(arq_redis, store, synchronizer, job_timeout=0.1)

        assert worker.jobs_failed == 1
        record = await store.get_sync_history(pending.id)
        assert record.status == SyncStatus.FAILED
