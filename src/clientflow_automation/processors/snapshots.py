"""
Агрегатор дневных метрик (очередь snapshots).

Для (tenant, date) в часовом поясе SNAPSHOT_TIMEZONE:
- leads: контакты, созданные в окне суток
- deals_won / revenue: сделки в стадии won с won_at в окне
- show_rate: completed / все встречи, начинающиеся в окне (0.0, если встреч нет)

Результат upsert'ится по (tenant_id, date): повторный запуск перезаписывает строку.
Вычисление одного ключа защищено распределённой блокировкой.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import asdict, dataclass
from datetime import date, datetime

from sqlalchemy.orm import Session, sessionmaker

from clientflow_automation.common.errors import ErrCode, JobError, TenantNotFound
from clientflow_automation.common.logging import get_project_logger
from clientflow_automation.common.time import day_window, today_in, utc_now
from clientflow_automation.contracts.jobs import JobEnvelope, SnapshotPayload, parse_payload
from clientflow_automation.domain.enums import JobKind
from clientflow_automation.queue.backend import QueueBackend
from clientflow_automation.storage.db import db_session
from clientflow_automation.storage.repositories import MetricsRepository, TenantRepository
from clientflow_automation.worker.results import ProcessResult

log = get_project_logger()


@dataclass(frozen=True)
class DailySnapshot:
    tenant_id: str
    date: date
    leads: int
    deals_won: int
    revenue: int
    show_rate: float


def compute_daily_snapshot(session: Session, tenant_id: str, day: date, tz_name: str) -> DailySnapshot:
    """
    Считает метрики и сохраняет их (upsert). Ошибки чтения пробрасываются.
    """
    start, end = day_window(day, tz_name)
    repo = MetricsRepository(session)
    snap = DailySnapshot(
        tenant_id=tenant_id,
        date=day,
        leads=repo.count_new_contacts(tenant_id, start, end),
        deals_won=repo.count_won_deals(tenant_id, start, end),
        revenue=repo.sum_won_deals(tenant_id, start, end),
        show_rate=repo.appointment_show_rate(tenant_id, start, end),
    )
    repo.upsert_daily_metric(
        tenant_id=tenant_id,
        day=day,
        leads=snap.leads,
        deals_won=snap.deals_won,
        revenue=snap.revenue,
        show_rate=snap.show_rate,
    )
    return snap


class SnapshotProcessor:
    kind = JobKind.snapshot

    def __init__(
        self,
        *,
        backend: QueueBackend,
        session_factory: sessionmaker | None = None,
        timezone: str = "UTC",
        lock_ttl_sec: int = 300,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.backend = backend
        self.session_factory = session_factory
        self.timezone = timezone
        self.lock_ttl_sec = lock_ttl_sec
        self.clock = clock

    def process(self, envelope: JobEnvelope) -> ProcessResult:
        try:
            payload: SnapshotPayload = parse_payload(self.kind, envelope.payload)
        except JobError as e:
            return ProcessResult.from_error(e)

        tenant_id = envelope.tenant_id
        day = payload.target_date or today_in(self.timezone, now=self.clock())
        lock_key = f"snapshot:{tenant_id}:{day.isoformat()}"

        token = self.backend.acquire_lock(lock_key, ttl_sec=self.lock_ttl_sec)
        if token is None:
            # ключ уже считает другой воркер: повтор после него
            log.info(
                "snapshot_locked_retry",
                extra={"payload": {"tenant_id": tenant_id, "date": day.isoformat()}},
            )
            return ProcessResult.retryable(
                ErrCode.SNAPSHOT_LOCKED,
                "Снимок уже вычисляется другим воркером",
                {"date": day.isoformat()},
            )

        try:
            with db_session(self.session_factory) as session:
                if TenantRepository(session).get(tenant_id) is None:
                    return ProcessResult.from_error(TenantNotFound(details={"tenant_id": tenant_id}))
                snap = compute_daily_snapshot(session, tenant_id, day, self.timezone)
        finally:
            self.backend.release_lock(lock_key, token)

        log.info(
            "snapshot_computed",
            extra={
                "payload": {
                    "tenant_id": tenant_id,
                    "date": day.isoformat(),
                    "leads": snap.leads,
                    "deals_won": snap.deals_won,
                    "revenue": snap.revenue,
                    "show_rate": snap.show_rate,
                }
            },
        )
        data = asdict(snap)
        data["date"] = day.isoformat()
        return ProcessResult.completed(data)

    def on_exhausted(self, envelope: JobEnvelope, result: ProcessResult) -> None:
        log.error(
            "snapshot_failed_permanently",
            extra={
                "payload": {
                    "job_id": envelope.job_id,
                    "tenant_id": envelope.tenant_id,
                    "error_code": result.error_code,
                    "message": (result.message or "")[:300],
                }
            },
        )
