"""
Репозитории (DAO слой).

Правила:
- Никакой бизнес-логики
- Только CRUD и запросы
- Все запросы к CRM-сущностям ограничены tenant_id
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from clientflow_automation.common.time import naive_utc_now
from clientflow_automation.domain.enums import AppointmentStatus, DealStage

from .models import Activity, Appointment, Contact, DailyMetric, Deal, Organization


# =============================================================================
# TENANT REPOSITORY
# =============================================================================
class TenantRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, tenant_id: str) -> Organization | None:
        return self.session.get(Organization, tenant_id)

    def list_ids(self) -> list[str]:
        return list(self.session.scalars(select(Organization.id).order_by(Organization.id)))


# =============================================================================
# CONTACT REPOSITORY
# =============================================================================
class ContactRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def resolve(self, tenant_id: str, contact_id: str) -> Contact | None:
        """Контакт другого тенанта не виден."""
        return self.session.scalar(
            select(Contact).where(Contact.id == contact_id, Contact.tenant_id == tenant_id)
        )


# =============================================================================
# APPOINTMENT REPOSITORY
# =============================================================================
class AppointmentRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_confirmed_between(self, start: datetime, end: datetime) -> list[Appointment]:
        stmt = (
            select(Appointment)
            .where(
                Appointment.status == AppointmentStatus.confirmed,
                Appointment.starts_at >= start,
                Appointment.starts_at <= end,
            )
            .order_by(Appointment.starts_at)
        )
        return list(self.session.scalars(stmt))


# =============================================================================
# ACTIVITY REPOSITORY
# =============================================================================
class ActivityRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get_by_job_id(self, job_id: str) -> Activity | None:
        return self.session.scalar(select(Activity).where(Activity.job_id == job_id))

    def record_activity(
        self,
        *,
        tenant_id: str,
        contact_id: str | None,
        job_id: str,
        job_kind: str,
        channel_used: str,
        content: str,
        succeeded: bool,
        provider_message_id: str | None = None,
        error_code: str | None = None,
        meta: dict[str, Any] | None = None,
    ) -> bool:
        """
        Идемпотентно по job_id: False, если запись для задачи уже есть.
        """
        if self.get_by_job_id(job_id) is not None:
            return False
        self.session.add(
            Activity(
                tenant_id=tenant_id,
                contact_id=contact_id,
                job_id=job_id,
                job_kind=job_kind,
                channel_used=channel_used,
                content=content,
                succeeded=succeeded,
                provider_message_id=provider_message_id,
                error_code=error_code,
                meta=meta or {},
            )
        )
        self.session.flush()
        return True


# =============================================================================
# METRICS REPOSITORY
# =============================================================================
class MetricsRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def count_new_contacts(self, tenant_id: str, start: datetime, end: datetime) -> int:
        stmt = select(func.count(Contact.id)).where(
            Contact.tenant_id == tenant_id,
            Contact.created_at >= start,
            Contact.created_at <= end,
        )
        return int(self.session.scalar(stmt) or 0)

    def _won_deals(self, tenant_id: str, start: datetime, end: datetime):
        return (
            Deal.tenant_id == tenant_id,
            Deal.stage == DealStage.won,
            Deal.won_at >= start,
            Deal.won_at <= end,
        )

    def count_won_deals(self, tenant_id: str, start: datetime, end: datetime) -> int:
        stmt = select(func.count(Deal.id)).where(*self._won_deals(tenant_id, start, end))
        return int(self.session.scalar(stmt) or 0)

    def sum_won_deals(self, tenant_id: str, start: datetime, end: datetime) -> int:
        stmt = select(func.coalesce(func.sum(Deal.value_cents), 0)).where(
            *self._won_deals(tenant_id, start, end)
        )
        return int(self.session.scalar(stmt) or 0)

    def appointment_show_rate(self, tenant_id: str, start: datetime, end: datetime) -> float:
        """
        completed / все встречи, начинающиеся в окне. 0.0, если встреч нет.
        """
        in_window = (
            Appointment.tenant_id == tenant_id,
            Appointment.starts_at >= start,
            Appointment.starts_at <= end,
        )
        total = int(self.session.scalar(select(func.count(Appointment.id)).where(*in_window)) or 0)
        if total == 0:
            return 0.0
        completed = int(
            self.session.scalar(
                select(func.count(Appointment.id)).where(
                    *in_window, Appointment.status == AppointmentStatus.completed
                )
            )
            or 0
        )
        return completed / total

    def get_daily_metric(self, tenant_id: str, day: date) -> DailyMetric | None:
        return self.session.scalar(
            select(DailyMetric).where(DailyMetric.tenant_id == tenant_id, DailyMetric.metric_date == day)
        )

    def upsert_daily_metric(
        self,
        *,
        tenant_id: str,
        day: date,
        leads: int,
        deals_won: int,
        revenue: int,
        show_rate: float,
    ) -> DailyMetric:
        row = self.get_daily_metric(tenant_id, day)
        if row is None:
            row = DailyMetric(tenant_id=tenant_id, metric_date=day)
            self.session.add(row)
        row.leads_count = leads
        row.deals_won_count = deals_won
        row.revenue_total = revenue
        row.appointment_show_rate = show_rate
        row.computed_at = naive_utc_now()
        self.session.flush()
        return row
