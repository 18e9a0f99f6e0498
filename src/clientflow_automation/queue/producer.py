"""
Постановка задач в очереди.

Назначение:
- единая точка enqueue для API, планировщика и внутренних сервисов
- синхронная проверка tenant_id / вида задачи / типа payload
- форма payload НЕ проверяется (это делает воркер на входе)
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import date
from typing import Any

from clientflow_automation.common.errors import InvalidJobRequest
from clientflow_automation.common.ids import new_job_id
from clientflow_automation.common.logging import get_project_logger
from clientflow_automation.common.time import utc_now
from clientflow_automation.contracts.jobs import JobEnvelope
from clientflow_automation.domain.enums import JobKind

from .backend import QueueBackend
from .registry import JOB_ID_PREFIX, QueueRegistry

log = get_project_logger()


def _coerce_kind(job_kind: Any) -> JobKind:
    if isinstance(job_kind, JobKind):
        return job_kind
    try:
        return JobKind(job_kind)
    except ValueError:
        raise InvalidJobRequest(
            "Неизвестный вид задачи",
            details={"job_kind": str(job_kind)[:64], "allowed": [k.value for k in JobKind]},
        ) from None


class JobProducer:
    def __init__(self, backend: QueueBackend, registry: QueueRegistry) -> None:
        self._backend = backend
        self._registry = registry

    def enqueue(
        self,
        job_kind: JobKind | str,
        tenant_id: str,
        payload: Mapping[str, Any],
        *,
        delay_sec: float = 0.0,
        job_id: str | None = None,
    ) -> str:
        """
        Ставит задачу и возвращает job_id.

        job_id можно передать явно (детерминированный ключ): повторная постановка
        существующей задачи ничего не создаёт и возвращает тот же id.
        """
        if not isinstance(tenant_id, str) or not tenant_id.strip():
            raise InvalidJobRequest("tenant_id обязателен", details={"field": "tenant_id"})
        kind = _coerce_kind(job_kind)
        if not isinstance(payload, Mapping):
            raise InvalidJobRequest(
                "payload должен быть объектом",
                details={"field": "payload", "type": type(payload).__name__},
            )

        spec = self._registry.for_kind(kind)
        envelope = JobEnvelope(
            job_id=job_id or new_job_id(JOB_ID_PREFIX[kind]),
            queue=spec.name.value,
            tenant_id=tenant_id,
            job_kind=kind,
            payload=dict(payload),
            enqueued_at=utc_now(),
        )
        created = self._backend.add(envelope, delay_sec=max(0.0, float(delay_sec)))
        log.info(
            "job_enqueued" if created else "job_enqueue_duplicate",
            extra={
                "payload": {
                    "job_id": envelope.job_id,
                    "queue": envelope.queue,
                    "job_kind": kind.value,
                    "tenant_id": tenant_id,
                    "delay_sec": delay_sec,
                }
            },
        )
        return envelope.job_id

    # ------------------------------------------------------------------
    # удобные обёртки
    # ------------------------------------------------------------------
    def enqueue_reminder(
        self, tenant_id: str, payload: Mapping[str, Any], *, delay_sec: float = 0.0, job_id: str | None = None
    ) -> str:
        return self.enqueue(JobKind.reminder, tenant_id, payload, delay_sec=delay_sec, job_id=job_id)

    def enqueue_nurture(
        self, tenant_id: str, payload: Mapping[str, Any], *, delay_sec: float = 0.0
    ) -> str:
        return self.enqueue(JobKind.nurture, tenant_id, payload, delay_sec=delay_sec)

    def enqueue_dunning(self, tenant_id: str, payload: Mapping[str, Any]) -> str:
        return self.enqueue(JobKind.dunning, tenant_id, payload)

    def enqueue_snapshot(self, tenant_id: str, target_date: date | None = None) -> str:
        payload: dict[str, Any] = {}
        if target_date is not None:
            payload["date"] = target_date.isoformat()
        return self.enqueue(JobKind.snapshot, tenant_id, payload)
