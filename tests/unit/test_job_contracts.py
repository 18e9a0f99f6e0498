from __future__ import annotations

from datetime import UTC, date, datetime

import pytest

from clientflow_automation.common.errors import ErrCode, InvalidPayload
from clientflow_automation.contracts.jobs import (
    DunningPayload,
    JobEnvelope,
    ReminderPayload,
    SnapshotPayload,
    parse_payload,
)
from clientflow_automation.domain.enums import JobKind


def test_envelope_json_keeps_fields():
    env = JobEnvelope(
        job_id="rem_1",
        queue="reminders",
        tenant_id="org_1",
        job_kind=JobKind.reminder,
        payload={"contact_id": "c1"},
        enqueued_at=datetime(2024, 3, 1, tzinfo=UTC),
    )
    back = JobEnvelope.from_json(env.to_json())
    assert back == env
    assert back.attempt_count == 0


def test_reminder_accepts_camel_case_aliases():
    p = parse_payload(
        JobKind.reminder,
        {"contactId": "c1", "message": "Hi", "scheduledFor": "2024-03-02T10:00:00Z", "reminderType": "3h"},
    )
    assert isinstance(p, ReminderPayload)
    assert p.contact_id == "c1"
    assert p.template == "Hi"
    assert p.reminder_type == "3h"


def test_blank_contact_id_with_inline_contact():
    p = parse_payload(JobKind.nurture, {"contact_id": "  ", "contact": {"phone": " "}})
    assert p.contact_id is None
    assert p.contact.phone is None


def test_missing_target_is_invalid():
    with pytest.raises(InvalidPayload) as e:
        parse_payload(JobKind.nurture, {"template": "x"})
    assert e.value.code == ErrCode.INVALID_PAYLOAD
    assert e.value.retryable is False


def test_dunning_requires_amount_and_days():
    p = parse_payload(JobKind.dunning, {"contact_id": "c1", "amount": 5000, "daysOverdue": 10})
    assert isinstance(p, DunningPayload)
    assert (p.amount_cents, p.days_overdue) == (5000, 10)
    with pytest.raises(InvalidPayload):
        parse_payload(JobKind.dunning, {"contact_id": "c1", "amount_cents": 1})


def test_snapshot_date_variants():
    assert parse_payload(JobKind.snapshot, {}).target_date is None
    assert parse_payload(JobKind.snapshot, {"date": "2024-03-01"}).target_date == date(2024, 3, 1)
    p = parse_payload(JobKind.snapshot, {"date": "2024-03-01T00:00:00.000Z"})
    assert isinstance(p, SnapshotPayload)
    assert p.target_date == date(2024, 3, 1)


def test_non_object_payload_is_invalid():
    with pytest.raises(InvalidPayload):
        parse_payload(JobKind.reminder, "hello")
