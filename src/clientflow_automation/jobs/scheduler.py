"""
Планировщик периодических задач.

Назначение:
- ежечасно: напоминания о подтверждённых встречах (за 24 ч и за 3 ч)
- ежедневно в SCHEDULER_SNAPSHOT_HOUR (пояс SNAPSHOT_TIMEZONE): снимки метрик всех организаций

Повторный скан не создаёт дублей: job_id напоминания детерминирован
по (встреча, тип), снимка по (организация, дата).
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, date, datetime, timedelta
from zoneinfo import ZoneInfo

from sqlalchemy.orm import sessionmaker

from clientflow_automation.common.logging import get_project_logger
from clientflow_automation.common.time import to_naive_utc, utc_now
from clientflow_automation.domain.enums import JobKind
from clientflow_automation.queue.producer import JobProducer
from clientflow_automation.storage.db import db_session
from clientflow_automation.storage.repositories import AppointmentRepository, TenantRepository

log = get_project_logger()

# тип напоминания -> за сколько до начала встречи
REMINDER_LEADS: dict[str, timedelta] = {
    "24h": timedelta(hours=24),
    "3h": timedelta(hours=3),
}
REMINDER_MESSAGES: dict[str, str] = {
    "24h": "Reminder: You have an appointment tomorrow at {{ scheduled_for }}",
    "3h": "Reminder: You have an appointment in 3 hours at {{ scheduled_for }}",
}
# горизонт ежечасного скана
SCAN_HORIZON = timedelta(hours=1)


@dataclass
class ScanResult:
    enqueued: int = 0
    skipped: int = 0


@dataclass(frozen=True)
class _PlannedReminder:
    reminder_type: str
    appointment_id: str
    tenant_id: str
    contact_id: str
    starts_at: datetime
    delay_sec: float


def scan_appointment_reminders(
    producer: JobProducer,
    *,
    session_factory: sessionmaker | None = None,
    now: datetime | None = None,
) -> ScanResult:
    """
    Для каждого типа берутся встречи, у которых момент напоминания
    (starts_at - lead) попадает в (now, now + SCAN_HORIZON].
    """
    current = now or utc_now()
    out = ScanResult()
    planned: list[_PlannedReminder] = []
    with db_session(session_factory) as session:
        repo = AppointmentRepository(session)
        for reminder_type, lead in REMINDER_LEADS.items():
            start = to_naive_utc(current + lead)
            end = to_naive_utc(current + lead + SCAN_HORIZON)
            for appt in repo.list_confirmed_between(start, end):
                starts_at = appt.starts_at.replace(tzinfo=UTC)
                delay = (starts_at - lead - current).total_seconds()
                if delay <= 0 or appt.contact_id is None:
                    out.skipped += 1
                    continue
                planned.append(
                    _PlannedReminder(
                        reminder_type=reminder_type,
                        appointment_id=appt.id,
                        tenant_id=appt.tenant_id,
                        contact_id=appt.contact_id,
                        starts_at=starts_at,
                        delay_sec=delay,
                    )
                )

    for item in planned:
        _enqueue_reminder(producer, item)
        out.enqueued += 1

    log.info(
        "scheduler_reminders_scanned",
        extra={"payload": {"enqueued": out.enqueued, "skipped": out.skipped}},
    )
    return out


def _enqueue_reminder(producer: JobProducer, item: _PlannedReminder) -> None:
    producer.enqueue(
        JobKind.reminder,
        item.tenant_id,
        {
            "contact_id": item.contact_id,
            "appointment_id": item.appointment_id,
            "template": REMINDER_MESSAGES[item.reminder_type],
            "scheduled_for": item.starts_at.isoformat(),
            "reminder_type": item.reminder_type,
        },
        delay_sec=item.delay_sec,
        job_id=f"rem_{item.appointment_id}_{item.reminder_type}",
    )


def enqueue_daily_snapshots(
    producer: JobProducer,
    *,
    day: date,
    session_factory: sessionmaker | None = None,
) -> int:
    with db_session(session_factory) as session:
        tenant_ids = TenantRepository(session).list_ids()
    for tenant_id in tenant_ids:
        producer.enqueue(
            JobKind.snapshot,
            tenant_id,
            {"date": day.isoformat()},
            job_id=f"snp_{tenant_id}_{day.isoformat()}",
        )
    log.info(
        "scheduler_snapshots_enqueued",
        extra={"payload": {"date": day.isoformat(), "org_count": len(tenant_ids)}},
    )
    return len(tenant_ids)


class Scheduler:
    """
    Петля планировщика: раз в interval_sec проверяет, не наступило ли время задач.
    """

    def __init__(
        self,
        producer: JobProducer,
        *,
        session_factory: sessionmaker | None = None,
        timezone: str = "UTC",
        snapshot_hour: int = 1,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.producer = producer
        self.session_factory = session_factory
        self.tz = ZoneInfo(timezone)
        self.snapshot_hour = snapshot_hour
        self.clock = clock
        self._last_reminder_hour: datetime | None = None
        self._last_snapshot_day: date | None = None

    def tick(self) -> dict[str, int]:
        now = self.clock()
        done: dict[str, int] = {}

        hour_mark = now.replace(minute=0, second=0, microsecond=0)
        if self._last_reminder_hour != hour_mark:
            done["reminders"] = scan_appointment_reminders(
                self.producer, session_factory=self.session_factory, now=now
            ).enqueued
            self._last_reminder_hour = hour_mark

        local = now.astimezone(self.tz)
        if local.hour >= self.snapshot_hour and self._last_snapshot_day != local.date():
            done["snapshots"] = enqueue_daily_snapshots(
                self.producer, day=local.date(), session_factory=self.session_factory
            )
            self._last_snapshot_day = local.date()
        return done

    def run_forever(self, stop_event: threading.Event, *, interval_sec: float = 30.0) -> None:
        log.info("scheduler_started", extra={"payload": {"interval_sec": interval_sec}})
        while not stop_event.is_set():
            try:
                self.tick()
            except Exception as e:
                log.error("scheduler_tick_failed", extra={"payload": {"err": str(e)[:200]}})
            stop_event.wait(interval_sec)
        log.info("scheduler_stopped")
