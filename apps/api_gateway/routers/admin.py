"""
Admin endpoints для эксплуатации очередей.

Назначение:
- состояние очередей (счётчики по состояниям)
- пауза / возобновление / очистка
- просмотр провалившихся задач
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from apps.api_gateway.deps import get_runtime
from clientflow_automation.common.errors import ErrCode
from clientflow_automation.common.logging import get_project_logger
from clientflow_automation.runtime import Runtime

log = get_project_logger()

router = APIRouter()


class QueueCountsResponse(BaseModel):
    waiting: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0
    delayed: int = 0
    paused: bool = False


class QueueHealthResponse(BaseModel):
    healthy: bool
    queues: dict[str, QueueCountsResponse] = Field(default_factory=dict)
    error: str | None = None
    checked_at: str


class QueueActionResponse(BaseModel):
    ok: bool = True
    queues: list[str]
    action: str


class FailedJobResponse(BaseModel):
    job_id: str
    tenant_id: str
    job_kind: str
    attempt_count: int
    last_error: str | None
    enqueued_at: str
    finished_at: float | None = None
    payload: dict[str, Any] = Field(default_factory=dict)


class FailedJobsResponse(BaseModel):
    queue: str
    jobs: list[FailedJobResponse]


def _resolve_queues(rt: Runtime, queue: str | None) -> list[str]:
    if queue is None:
        return rt.registry.names()
    if queue not in rt.registry.names():
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"code": ErrCode.NOT_FOUND, "message": "Очередь не найдена", "details": {"queue": queue}},
        )
    return [queue]


def _backend_error(e: Exception) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail={
            "code": ErrCode.REDIS_ERROR,
            "message": "Хранилище очередей недоступно",
            "details": {"err": str(e)[:200]},
        },
    )


@router.get("/admin/queues/health", response_model=QueueHealthResponse)
def admin_queues_health(rt: Runtime = Depends(get_runtime)) -> QueueHealthResponse:
    report = rt.health.report()
    return QueueHealthResponse(
        healthy=report.healthy,
        queues={name: QueueCountsResponse(**counts) for name, counts in report.queues.items()},
        error=report.error,
        checked_at=report.checked_at,
    )


@router.post("/admin/queues/pause", response_model=QueueActionResponse)
def admin_queues_pause(
    queue: str | None = Query(default=None), rt: Runtime = Depends(get_runtime)
) -> QueueActionResponse:
    names = _resolve_queues(rt, queue)
    try:
        for name in names:
            rt.backend.pause(name)
    except Exception as e:
        raise _backend_error(e) from e
    log.warning("admin_queues_paused", extra={"payload": {"queues": names}})
    return QueueActionResponse(queues=names, action="pause")


@router.post("/admin/queues/resume", response_model=QueueActionResponse)
def admin_queues_resume(
    queue: str | None = Query(default=None), rt: Runtime = Depends(get_runtime)
) -> QueueActionResponse:
    names = _resolve_queues(rt, queue)
    try:
        for name in names:
            rt.backend.resume(name)
    except Exception as e:
        raise _backend_error(e) from e
    log.warning("admin_queues_resumed", extra={"payload": {"queues": names}})
    return QueueActionResponse(queues=names, action="resume")


@router.post("/admin/queues/{queue}/clear", response_model=QueueActionResponse)
def admin_queue_clear(queue: str, rt: Runtime = Depends(get_runtime)) -> QueueActionResponse:
    names = _resolve_queues(rt, queue)
    try:
        rt.backend.clear(queue)
    except Exception as e:
        raise _backend_error(e) from e
    log.warning("admin_queue_cleared", extra={"payload": {"queue": queue}})
    return QueueActionResponse(queues=names, action="clear")


@router.get("/admin/queues/{queue}/failed", response_model=FailedJobsResponse)
def admin_queue_failed(
    queue: str,
    limit: int = Query(default=50, ge=1, le=500),
    rt: Runtime = Depends(get_runtime),
) -> FailedJobsResponse:
    _resolve_queues(rt, queue)
    try:
        records = rt.backend.list_failed(queue, limit=limit)
    except Exception as e:
        raise _backend_error(e) from e
    return FailedJobsResponse(
        queue=queue,
        jobs=[
            FailedJobResponse(
                job_id=r.envelope.job_id,
                tenant_id=r.envelope.tenant_id,
                job_kind=r.envelope.job_kind.value,
                attempt_count=r.envelope.attempt_count,
                last_error=r.last_error,
                enqueued_at=r.envelope.enqueued_at.isoformat(),
                finished_at=r.finished_at,
                payload=r.envelope.payload,
            )
            for r in records
        ],
    )
