"""
ORM-модели базы данных.

Назначение:
- CRM-сущности, которые читают воркеры (организации, контакты, сделки, встречи)
- Журнал активностей (аудит каждой попытки доставки)
- Дневные снимки метрик

Все даты храним как naive UTC.
"""

from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from clientflow_automation.common.time import naive_utc_now
from clientflow_automation.domain.enums import AppointmentStatus, DealStage


# =============================================================================
# BASE
# =============================================================================
class Base(DeclarativeBase):
    pass


# =============================================================================
# TENANT
# =============================================================================
class Organization(Base):
    """
    Тенант (организация). Все остальные сущности привязаны к нему.
    """

    __tablename__ = "organizations"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    slug: Mapped[str | None] = mapped_column(String(100), unique=True, nullable=True)
    timezone: Mapped[str] = mapped_column(String(64), default="UTC", nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=naive_utc_now, nullable=False)


# =============================================================================
# CRM
# =============================================================================
class Contact(Base):
    __tablename__ = "contacts"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(ForeignKey("organizations.id"), index=True, nullable=False)

    first_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=naive_utc_now, index=True, nullable=False
    )


class Deal(Base):
    __tablename__ = "deals"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(ForeignKey("organizations.id"), index=True, nullable=False)
    contact_id: Mapped[str | None] = mapped_column(ForeignKey("contacts.id"), nullable=True)

    title: Mapped[str] = mapped_column(String(200), default="", nullable=False)
    value_cents: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    stage: Mapped[DealStage] = mapped_column(Enum(DealStage), default=DealStage.lead, nullable=False)
    won_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=naive_utc_now, nullable=False)


class Appointment(Base):
    __tablename__ = "appointments"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(ForeignKey("organizations.id"), index=True, nullable=False)
    contact_id: Mapped[str | None] = mapped_column(ForeignKey("contacts.id"), nullable=True)

    title: Mapped[str] = mapped_column(String(200), default="", nullable=False)
    starts_at: Mapped[datetime] = mapped_column(DateTime, index=True, nullable=False)
    status: Mapped[AppointmentStatus] = mapped_column(
        Enum(AppointmentStatus), default=AppointmentStatus.scheduled, nullable=False
    )

    created_at: Mapped[datetime] = mapped_column(DateTime, default=naive_utc_now, nullable=False)


# =============================================================================
# ACTIVITY LOG
# =============================================================================
class Activity(Base):
    """
    Запись об исходе задачи доставки. Одна на job_id.
    """

    __tablename__ = "activities"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    contact_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    job_id: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    job_kind: Mapped[str] = mapped_column(String(32), nullable=False)
    channel_used: Mapped[str] = mapped_column(String(16), nullable=False)  # sms|email|none
    content: Mapped[str] = mapped_column(Text, default="", nullable=False)
    succeeded: Mapped[bool] = mapped_column(Boolean, nullable=False)
    provider_message_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    error_code: Mapped[str | None] = mapped_column(String(64), nullable=True)
    meta: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=naive_utc_now, nullable=False)


# =============================================================================
# DAILY METRICS
# =============================================================================
class DailyMetric(Base):
    __tablename__ = "daily_metrics"
    __table_args__ = (UniqueConstraint("tenant_id", "date", name="uq_daily_metrics_tenant_date"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    # колонка в БД: "date"
    metric_date: Mapped[date] = mapped_column("date", Date, nullable=False)

    leads_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    deals_won_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    revenue_total: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    appointment_show_rate: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)

    computed_at: Mapped[datetime] = mapped_column(DateTime, default=naive_utc_now, nullable=False)
