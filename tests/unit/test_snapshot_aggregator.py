from __future__ import annotations

from datetime import UTC, date, datetime, timedelta

import pytest
from sqlalchemy import func, select

from clientflow_automation.common.errors import ErrCode
from clientflow_automation.contracts.jobs import JobEnvelope
from clientflow_automation.domain.enums import AppointmentStatus, DealStage, JobKind
from clientflow_automation.processors.snapshots import SnapshotProcessor, compute_daily_snapshot
from clientflow_automation.storage.models import Appointment, Contact, DailyMetric, Deal, Organization
from clientflow_automation.storage.repositories import MetricsRepository

DAY = date(2024, 3, 1)


def _envelope(tenant_id: str, payload: dict) -> JobEnvelope:
    return JobEnvelope(
        job_id=f"snp_{tenant_id}",
        queue="snapshots",
        tenant_id=tenant_id,
        job_kind=JobKind.snapshot,
        payload=payload,
        enqueued_at=datetime(2024, 3, 2, tzinfo=UTC),
        attempt_count=1,
    )


@pytest.fixture()
def seeded(session_factory):
    with session_factory() as s:
        s.add(Organization(id="t2", name="Beta Clinic", timezone="UTC"))
        s.add(Organization(id="t3", name="Other", timezone="UTC"))
        for i in range(3):
            s.add(Contact(id=f"c{i}", tenant_id="t2", created_at=datetime(2024, 3, 1, 9 + i)))
        # вне окна и чужой тенант
        s.add(Contact(id="c_prev", tenant_id="t2", created_at=datetime(2024, 2, 29, 23, 59)))
        s.add(Contact(id="c_t3", tenant_id="t3", created_at=datetime(2024, 3, 1, 12)))

        s.add(Deal(id="d1", tenant_id="t2", value_cents=10000, stage=DealStage.won, won_at=datetime(2024, 3, 1, 10)))
        s.add(Deal(id="d2", tenant_id="t2", value_cents=15000, stage=DealStage.won, won_at=datetime(2024, 3, 1, 15)))
        s.add(Deal(id="d3", tenant_id="t2", value_cents=99999, stage=DealStage.lost, won_at=None))
        s.add(Deal(id="d4", tenant_id="t2", value_cents=5000, stage=DealStage.won, won_at=datetime(2024, 3, 2, 0, 0, 1)))

        statuses = [AppointmentStatus.completed] * 4 + [AppointmentStatus.no_show]
        for i, status in enumerate(statuses):
            s.add(
                Appointment(
                    id=f"a{i}",
                    tenant_id="t2",
                    starts_at=datetime(2024, 3, 1, 8 + i),
                    status=status,
                )
            )
        s.commit()


def test_compute_daily_snapshot(seeded, session_factory):
    with session_factory() as s:
        snap = compute_daily_snapshot(s, "t2", DAY, "UTC")
        s.commit()

    assert (snap.leads, snap.deals_won, snap.revenue) == (3, 2, 25000)
    assert snap.show_rate == pytest.approx(0.8)

    with session_factory() as s:
        row = MetricsRepository(s).get_daily_metric("t2", DAY)
        assert row.leads_count == 3
        assert row.deals_won_count == 2
        assert row.revenue_total == 25000
        assert row.appointment_show_rate == pytest.approx(0.8)
        assert row.computed_at.tzinfo is None
        assert abs(row.computed_at - datetime.now(UTC).replace(tzinfo=None)) < timedelta(minutes=5)


def test_recompute_overwrites_single_row(seeded, session_factory):
    for _ in range(2):
        with session_factory() as s:
            compute_daily_snapshot(s, "t2", DAY, "UTC")
            s.commit()

    with session_factory() as s:
        s.add(Contact(id="c_late", tenant_id="t2", created_at=datetime(2024, 3, 1, 20)))
        s.commit()
    with session_factory() as s:
        compute_daily_snapshot(s, "t2", DAY, "UTC")
        s.commit()

    with session_factory() as s:
        assert s.scalar(select(func.count(DailyMetric.id))) == 1
        assert MetricsRepository(s).get_daily_metric("t2", DAY).leads_count == 4


def test_zero_appointments_gives_zero_show_rate(seeded, session_factory):
    with session_factory() as s:
        snap = compute_daily_snapshot(s, "t3", DAY, "UTC")
    assert snap.leads == 1
    assert snap.show_rate == 0.0


def test_window_follows_timezone(seeded, session_factory):
    # 2024-03-01 в Нью-Йорке: 05:00 UTC 1 марта .. 04:59 UTC 2 марта
    with session_factory() as s:
        snap = compute_daily_snapshot(s, "t2", DAY, "America/New_York")
    assert snap.leads == 3
    assert snap.deals_won == 3
    assert snap.revenue == 30000


def test_processor_computes_requested_date(seeded, session_factory, backend):
    proc = SnapshotProcessor(backend=backend, session_factory=session_factory)
    result = proc.process(_envelope("t2", {"date": "2024-03-01T00:00:00.000Z"}))

    assert result.outcome.value == "completed"
    assert result.data["date"] == "2024-03-01"
    assert result.data["revenue"] == 25000


def test_processor_defaults_to_today(seeded, session_factory, backend):
    proc = SnapshotProcessor(
        backend=backend,
        session_factory=session_factory,
        clock=lambda: datetime(2024, 3, 1, 18, tzinfo=UTC),
    )
    result = proc.process(_envelope("t2", {}))
    assert result.data["date"] == "2024-03-01"
    assert result.data["leads"] == 3


def test_processor_retries_when_locked(seeded, session_factory, backend):
    token = backend.acquire_lock("snapshot:t2:2024-03-01", ttl_sec=60)
    assert token is not None

    proc = SnapshotProcessor(backend=backend, session_factory=session_factory)
    result = proc.process(_envelope("t2", {"date": "2024-03-01"}))

    assert result.outcome.value == "retryable"
    assert result.error_code == ErrCode.SNAPSHOT_LOCKED
    with session_factory() as s:
        assert MetricsRepository(s).get_daily_metric("t2", DAY) is None

    backend.release_lock("snapshot:t2:2024-03-01", token)
    retried = proc.process(_envelope("t2", {"date": "2024-03-01"}))
    assert retried.outcome.value == "completed"
    with session_factory() as s:
        assert MetricsRepository(s).get_daily_metric("t2", DAY) is not None


def test_processor_releases_lock(seeded, session_factory, backend):
    proc = SnapshotProcessor(backend=backend, session_factory=session_factory)
    proc.process(_envelope("t2", {"date": "2024-03-01"}))
    assert backend.acquire_lock("snapshot:t2:2024-03-01", ttl_sec=60) is not None


def test_processor_unknown_tenant_is_terminal(session_factory, backend):
    proc = SnapshotProcessor(backend=backend, session_factory=session_factory)
    result = proc.process(_envelope("nope", {"date": "2024-03-01"}))
    assert result.outcome.value == "terminal"
    assert result.error_code == ErrCode.TENANT_NOT_FOUND


def test_processor_bad_date_is_terminal(session_factory, backend):
    proc = SnapshotProcessor(backend=backend, session_factory=session_factory)
    result = proc.process(_envelope("t2", {"date": "not-a-date"}))
    assert result.outcome.value == "terminal"
    assert result.error_code == ErrCode.INVALID_PAYLOAD
