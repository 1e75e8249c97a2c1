"""FastAPI application for taskmaster-sync."""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from ..config import PipelineConfig, Settings, get_settings, load_config_simple
from ..errors import WebhookError
from ..logging import get_logger
from ..metrics import MetricsMiddleware, get_metrics_response
from ..middleware import RequestIDMiddleware, RequestLoggingMiddleware
from ..pipeline import WebhookPipeline
from ..storage import SyncStore, get_store
from ..sync import ProjectResolver, SyncDecisionEngine, SyncDispatcher
from ..webhooks import SyncQueue

logger = get_logger(__name__)


def build_pipeline(
    store: SyncStore,
    queue: SyncQueue,
    settings: Settings,
    config: PipelineConfig,
) -> WebhookPipeline:
    """Wire the pipeline collaborators from configuration."""
    return WebhookPipeline(
        secrets=settings.webhook_secrets(),
        decision_engine=SyncDecisionEngine(reserved_prefix=config.sync.reserved_prefix),
        resolver=ProjectResolver(
            store,
            auto_create=config.sync.auto_create_projects,
            request_timeout=config.sync.request_timeout,
        ),
        dispatcher=SyncDispatcher(
            store,
            queue,
            request_timeout=config.sync.request_timeout,
            coalesce_in_flight=config.sync.coalesce_in_flight,
        ),
    )


def create_app(
    store: Optional[SyncStore] = None,
    queue: Optional[SyncQueue] = None,
    settings: Optional[Settings] = None,
    config: Optional[PipelineConfig] = None,
    pipeline: Optional[WebhookPipeline] = None,
) -> FastAPI:
    """
    Create the application.

    Collaborators that are not passed in are built from settings; the
    lifespan initializes and closes only the ones it built.
    """
    settings = settings or get_settings()
    config = config or load_config_simple(settings.config_path)

    owns_store = store is None
    owns_queue = queue is None
    store = store or get_store(settings.database_url)
    queue = queue or SyncQueue.from_url(settings.redis_url, queue_name=config.queue.queue_name)
    pipeline = pipeline or build_pipeline(store, queue, settings, config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager."""
        if owns_store:
            await store.initialize()
        if owns_queue:
            await queue.initialize()
        logger.info("app_started", database=settings.database_url.split("://", 1)[0])

        yield

        await pipeline.dispatcher.drain()
        if owns_queue:
            await queue.close()
        if owns_store:
            await store.close()
        logger.info("app_stopped")

    app = FastAPI(
        title="Taskmaster Sync API",
        description="Webhook-driven synchronization of Taskmaster projects",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.store = store
    app.state.queue = queue
    app.state.pipeline = pipeline

    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIDMiddleware)

    @app.exception_handler(WebhookError)
    async def webhook_error_handler(request: Request, exc: WebhookError):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

    @app.post("/webhooks/{provider}")
    async def receive_webhook(provider: str, request: Request):
        """Handle a GitHub or GitLab webhook delivery."""
        payload = await request.body()
        result = await pipeline.handle(provider, request.headers, payload)
        return result.to_response()

    @app.get("/api/v1/sync/{sync_history_id}")
    async def get_sync(sync_history_id: str):
        """Get one sync history record."""
        record = await store.get_sync_history(sync_history_id)
        if record is None:
            raise HTTPException(404, "Sync history not found")
        return record.model_dump(mode="json")

    @app.get("/api/v1/projects/{project_id}/sync/history")
    async def get_sync_history(project_id: str, limit: int = Query(20, ge=1, le=100)):
        """List the most recent sync records of a project."""
        project = await store.get_project(project_id)
        if project is None:
            raise HTTPException(404, "Project not found")
        records = await store.list_sync_history(project_id, limit=limit)
        return {
            "project_id": project_id,
            "syncs": [record.model_dump(mode="json") for record in records],
        }

    @app.get("/health")
    async def health():
        """Store and queue connectivity."""
        checks = {
            "store": "ok" if await store.ping() else "error",
            "queue": "ok" if await queue.ping() else "error",
        }
        status = "ok" if all(value == "ok" for value in checks.values()) else "degraded"
        return {"status": status, "checks": checks}

    @app.get("/metrics")
    async def metrics():
        """Prometheus metrics endpoint."""
        return get_metrics_response()

    return app
