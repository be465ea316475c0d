"""
API Gateway (FastAPI).

Функции:
- /health
- /metrics
- /v1/admin/queue/stats, /v1/admin/jobs/{job_id}

В QUEUE_MODE=inline очередь живёт в памяти процесса, поэтому пул воркеров
запускается здесь же (локальная разработка без Redis).
"""

from __future__ import annotations

from typing import Any

from fastapi import FastAPI

from apps.api_gateway.routers.admin import router as admin_router
from attachment_pipeline.common.config import get_settings
from attachment_pipeline.common.logging import get_project_logger, setup_logging
from attachment_pipeline.common.metrics import setup_metrics_endpoint
from attachment_pipeline.delivery.memory import InMemoryResultSink
from attachment_pipeline.processors.registry import build_default_registry
from attachment_pipeline.queue.base import JobQueue
from attachment_pipeline.queue.dispatcher import build_job_queue
from attachment_pipeline.storage.blob import build_storage
from attachment_pipeline.workers.pool import WorkerPool

log = get_project_logger()


def create_app(queue: JobQueue | None = None) -> FastAPI:
    app = FastAPI(title="Attachment Pipeline", version="0.1.0")
    settings = get_settings()
    app.state.queue = queue if queue is not None else build_job_queue(settings)
    app.state.pool = None

    setup_metrics_endpoint(app, queue_getter=lambda: app.state.queue)

    @app.get("/health")
    def health() -> dict[str, Any]:
        return {"ok": True}

    @app.on_event("startup")
    async def start_inline_workers() -> None:
        if queue is not None:
            return
        if (settings.queue_mode or "").strip().lower() != "inline":
            return
        pool = WorkerPool.from_settings(
            queue=app.state.queue,
            storage=build_storage(),
            sink=InMemoryResultSink(),
            registry=build_default_registry(settings),
            settings=settings,
        )
        pool.start()
        app.state.pool = pool
        log.info("inline_workers_started", extra={"payload": {"workers": len(pool.workers)}})

    @app.on_event("shutdown")
    async def stop_inline_workers() -> None:
        if app.state.pool is not None:
            app.state.pool.stop(timeout=5)
            app.state.pool = None

    app.include_router(admin_router, prefix="/v1")
    return app


setup_logging()
app = create_app()
