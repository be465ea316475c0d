"""
Worker Files.

Алгоритм:
- собираем очередь (QUEUE_MODE), хранилище, ResultSink и таблицу процессоров
- запускаем WORKER_CONCURRENCY воркеров-потоков
- SIGINT/SIGTERM → мягкая остановка (текущие задачи дорабатываются)
"""

from __future__ import annotations

import signal
import threading

from prometheus_client import start_http_server

from attachment_pipeline.common.config import get_settings
from attachment_pipeline.common.logging import get_project_logger, setup_logging
from attachment_pipeline.delivery.base import ResultSink
from attachment_pipeline.delivery.memory import InMemoryResultSink
from attachment_pipeline.delivery.redis_sink import RedisResultSink
from attachment_pipeline.processors.registry import build_default_registry
from attachment_pipeline.queue.dispatcher import build_job_queue
from attachment_pipeline.queue.redis import redis_client
from attachment_pipeline.storage.blob import build_storage
from attachment_pipeline.workers.pool import WorkerPool

log = get_project_logger()


def _build_sink() -> ResultSink:
    s = get_settings()
    if (s.queue_mode or "").strip().lower() == "inline":
        return InMemoryResultSink()
    return RedisResultSink(redis_client())


def main() -> None:
    setup_logging()
    settings = get_settings()

    pool = WorkerPool.from_settings(
        queue=build_job_queue(settings),
        storage=build_storage(),
        sink=_build_sink(),
        registry=build_default_registry(settings),
        settings=settings,
    )

    stop = threading.Event()

    def _on_signal(signum, _frame) -> None:
        log.info("worker_files_stopping", extra={"payload": {"signal": signum}})
        stop.set()

    signal.signal(signal.SIGINT, _on_signal)
    signal.signal(signal.SIGTERM, _on_signal)

    log.info(
        "worker_files_started",
        extra={
            "payload": {
                "concurrency": settings.worker_concurrency,
                "queue_mode": settings.queue_mode,
            }
        },
    )
    if settings.worker_metrics_port:
        start_http_server(settings.worker_metrics_port)
    pool.start()
    stop.wait()
    pool.stop()
    log.info("worker_files_stopped")


if __name__ == "__main__":
    main()
