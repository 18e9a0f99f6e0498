"""
Постановка задач по HTTP.

Тонкая обёртка над JobProducer: форма payload здесь не проверяется.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from apps.api_gateway.deps import get_runtime
from clientflow_automation.common.errors import InvalidJobRequest
from clientflow_automation.domain.enums import JobKind
from clientflow_automation.runtime import Runtime

router = APIRouter()


class EnqueueJobRequest(BaseModel):
    job_kind: str
    tenant_id: str
    payload: Any = Field(default_factory=dict)
    delay_sec: float = Field(default=0.0, ge=0)


class EnqueueJobResponse(BaseModel):
    job_id: str
    queue: str


@router.post(
    "/jobs",
    response_model=EnqueueJobResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
def enqueue_job(req: EnqueueJobRequest, rt: Runtime = Depends(get_runtime)) -> EnqueueJobResponse:
    try:
        job_id = rt.producer.enqueue(
            req.job_kind, req.tenant_id, req.payload, delay_sec=req.delay_sec
        )
    except InvalidJobRequest as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"code": e.code, "message": e.message, "details": e.details or {}},
        ) from e
    queue = rt.registry.for_kind(JobKind(req.job_kind)).name.value
    return EnqueueJobResponse(job_id=job_id, queue=queue)
