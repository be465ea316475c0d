"""
Метрики Prometheus для сервиса.

Назначение:
- Экспорт /metrics
- Счётчики задач по категориям и результатам, латентность процессоров
- Глубина очереди по состояниям (обновляется при каждом scrape)
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager

from fastapi import FastAPI, Request
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest

from attachment_pipeline.common.config import get_settings

# =============================================================================
# СЧЁТЧИКИ И МЕТРИКИ
# =============================================================================

REQUESTS_TOTAL = Counter(
    "attachments_requests_total",
    "Общее количество HTTP запросов",
    ["service", "route", "method", "status"],
)

HTTP_REQUEST_LATENCY_MS = Histogram(
    "attachments_http_request_latency_ms",
    "Задержка HTTP запроса (мс)",
    ["service", "route", "method"],
    buckets=(5, 10, 25, 50, 100, 250, 500, 1000, 2500, 5000, 10000),
)

# Обработка задач: result = completed|skipped|retry|failed
JOBS_TOTAL = Counter(
    "attachments_jobs_total",
    "Количество обработанных задач",
    ["category", "result"],
)

PROCESSING_LATENCY_MS = Histogram(
    "attachments_processing_latency_ms",
    "Время работы процессора (мс)",
    ["category"],
    buckets=(10, 50, 100, 250, 500, 1000, 2500, 5000, 10000, 30000, 60000, 300000),
)

QUEUE_DEPTH = Gauge(
    "attachments_queue_depth",
    "Количество задач в очереди по состояниям",
    ["state"],
)

METRICS_COLLECTION_ERRORS_TOTAL = Counter(
    "attachments_metrics_collection_errors_total",
    "Ошибки сборки служебных метрик",
    ["source"],
)


@contextmanager
def track_processing_latency(category: str) -> Iterator[None]:
    started = time.perf_counter()
    try:
        yield
    finally:
        elapsed_ms = (time.perf_counter() - started) * 1000
        PROCESSING_LATENCY_MS.labels(category=category).observe(elapsed_ms)


def record_job_result(category: str, result: str) -> None:
    JOBS_TOTAL.labels(category=category, result=result).inc()


def refresh_queue_metrics(queue) -> None:
    try:
        for state, count in queue.stats().to_dict().items():
            QUEUE_DEPTH.labels(state=state).set(count)
    except Exception:
        METRICS_COLLECTION_ERRORS_TOTAL.labels(source="queue_metrics").inc()


# =============================================================================
# ENDPOINT /metrics
# =============================================================================
def setup_metrics_endpoint(app: FastAPI, queue_getter: Callable[[], object] | None = None) -> None:
    """
    Регистрирует endpoint /metrics для Prometheus.
    queue_getter — откуда брать очередь для gauge глубины (None = не обновлять).
    """
    service = get_settings().service_name

    @app.middleware("http")
    async def http_metrics(request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000

        # шаблон маршрута, а не путь: /v1/admin/jobs/{job_id} это одна серия
        route = getattr(request.scope.get("route"), "path", None) or "unmatched"
        REQUESTS_TOTAL.labels(
            service=service, route=route, method=request.method, status=str(response.status_code)
        ).inc()
        HTTP_REQUEST_LATENCY_MS.labels(
            service=service, route=route, method=request.method
        ).observe(elapsed_ms)
        return response

    @app.get("/metrics")
    def metrics() -> Response:
        if queue_getter is not None:
            refresh_queue_metrics(queue_getter())
        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
