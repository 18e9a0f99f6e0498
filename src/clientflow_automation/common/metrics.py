"""
Метрики Prometheus для сервиса.

Назначение:
- Экспорт /metrics
- Счётчики задач очередей, доставок и гистограмма длительности обработки
- Используется API Gateway и воркерами
"""

from __future__ import annotations

import time
from collections.abc import Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

from fastapi import FastAPI, Request
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest

if TYPE_CHECKING:
    from clientflow_automation.delivery.base import DeliveryResult

# =============================================================================
# СЧЁТЧИКИ И МЕТРИКИ
# =============================================================================

REQUESTS_TOTAL = Counter(
    "clientflow_requests_total",
    "Общее количество HTTP запросов",
    ["service", "route", "method", "status"],
)

HTTP_REQUEST_LATENCY_MS = Histogram(
    "clientflow_http_request_latency_ms",
    "Задержка HTTP запроса (мс)",
    ["service", "route", "method"],
    buckets=(5, 10, 25, 50, 100, 250, 500, 1000, 2500, 5000, 10000),
)

# Обработка задач очередей
QUEUE_JOBS_TOTAL = Counter(
    "clientflow_queue_jobs_total",
    "Количество попыток обработки задач очереди",
    ["queue", "result"],  # completed|retry|failed|exhausted|stalled|discarded
)

JOB_LATENCY_MS = Histogram(
    "clientflow_job_latency_ms",
    "Длительность одной попытки обработки задачи (мс)",
    ["queue"],
    buckets=(5, 10, 25, 50, 100, 250, 500, 1000, 2500, 5000, 10000, 30000),
)

DELIVERIES_TOTAL = Counter(
    "clientflow_deliveries_total",
    "Количество отправок по каналам",
    ["channel", "result"],  # ok|invalid_address|provider_rejected|provider_unavailable
)

QUEUE_STATE_JOBS = Gauge(
    "clientflow_queue_state_jobs",
    "Количество задач в очереди по состояниям",
    ["queue", "state"],
)

QUEUE_PAUSED = Gauge(
    "clientflow_queue_paused",
    "Очередь на паузе (1=paused, 0=running)",
    ["queue"],
)

QUEUE_HEALTH = Gauge(
    "clientflow_queue_health",
    "Доступность хранилища очередей (1=healthy, 0=unhealthy)",
)

METRICS_COLLECTION_ERRORS_TOTAL = Counter(
    "clientflow_metrics_collection_errors_total",
    "Ошибки сборки служебных метрик",
    ["source"],
)


@contextmanager
def track_job_latency(queue: str) -> Iterator[None]:
    started = time.perf_counter()
    try:
        yield
    finally:
        elapsed_ms = (time.perf_counter() - started) * 1000
        JOB_LATENCY_MS.labels(queue=queue).observe(elapsed_ms)


def record_job_result(queue: str, result: str) -> None:
    QUEUE_JOBS_TOTAL.labels(queue=queue, result=result).inc()


def record_delivery(channel: str, result: DeliveryResult) -> None:
    label = "ok" if result.succeeded else (result.error_kind.value if result.error_kind else "error")
    DELIVERIES_TOTAL.labels(channel=channel, result=label).inc()


def set_queue_gauges(queues: dict[str, dict[str, Any]], *, healthy: bool) -> None:
    QUEUE_HEALTH.set(1 if healthy else 0)
    for queue, counts in queues.items():
        for state in ("waiting", "active", "completed", "failed", "delayed"):
            QUEUE_STATE_JOBS.labels(queue=queue, state=state).set(int(counts.get(state, 0)))
        QUEUE_PAUSED.labels(queue=queue).set(1 if counts.get("paused") else 0)


# =============================================================================
# ENDPOINT /metrics
# =============================================================================
def setup_metrics_endpoint(app: FastAPI, *, refresh=None) -> None:
    """
    Регистрирует endpoint /metrics для Prometheus.
    refresh: необязательный callable, обновляющий gauge'и очередей перед выгрузкой.
    """

    @app.middleware("http")
    async def http_metrics(request: Request, call_next):
        route = request.url.path
        method = request.method
        started = time.perf_counter()

        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000
        status_code = str(response.status_code)

        REQUESTS_TOTAL.labels(
            service="api-gateway",
            route=route,
            method=method,
            status=status_code,
        ).inc()
        HTTP_REQUEST_LATENCY_MS.labels(
            service="api-gateway",
            route=route,
            method=method,
        ).observe(elapsed_ms)
        return response

    @app.get("/metrics")
    def metrics() -> Response:
        if refresh is not None:
            try:
                refresh()
            except Exception:
                METRICS_COLLECTION_ERRORS_TOTAL.labels(source="queue_metrics").inc()
        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
