from __future__ import annotations

from datetime import datetime

import pytest
from sqlalchemy import func, select

from clientflow_automation.common.errors import ErrCode
from clientflow_automation.delivery.base import DeliveryErrorKind
from clientflow_automation.domain.enums import Channel, JobKind
from clientflow_automation.processors.messages import (
    DunningProcessor,
    NurtureProcessor,
    ReminderProcessor,
)
from clientflow_automation.storage.models import Activity, Contact
from clientflow_automation.storage.repositories import ActivityRepository
from clientflow_automation.worker.runtime import QueueWorker


def _add_contact(session_factory, contact_id: str, *, tenant_id: str = "org_1", **fields) -> None:
    with session_factory() as s:
        s.add(Contact(id=contact_id, tenant_id=tenant_id, created_at=datetime(2024, 1, 1), **fields))
        s.commit()


def _activity(session_factory, job_id: str) -> Activity | None:
    with session_factory() as s:
        return ActivityRepository(s).get_by_job_id(job_id)


def _activity_count(session_factory) -> int:
    with session_factory() as s:
        return int(s.scalar(select(func.count(Activity.id))) or 0)


def _run(backend, registry, processor, queue: str, *, clock=None, rounds: int = 1) -> None:
    worker = QueueWorker(backend=backend, spec=registry.get(queue), processor=processor)
    for _ in range(rounds):
        worker.run_until_idle()
        if clock is not None:
            clock.advance(3600)


@pytest.fixture()
def contacts(session_factory, org):
    _add_contact(session_factory, "c_sms", first_name="Ann", phone="+15551234567")
    _add_contact(session_factory, "c_email", first_name="Bob", email="bob@example.com")
    _add_contact(session_factory, "c_none", first_name="Eve", phone="  ", email="")
    _add_contact(session_factory, "c_both", phone="+1 (555) 765-4321", email="both@example.com")
    _add_contact(session_factory, "c_other", tenant_id="org_2", phone="+15550000000")


def test_reminder_sms_delivery(contacts, session_factory, producer, backend, registry, adapter):
    job_id = producer.enqueue(
        JobKind.reminder, "org_1", {"contact_id": "c_sms", "template": "Upcoming appointment"}
    )
    proc = ReminderProcessor(adapter=adapter, session_factory=session_factory)
    _run(backend, registry, proc, "reminders")

    assert backend.get_job("reminders", job_id).state == "completed"
    assert len(adapter.calls) == 1
    call = adapter.calls[0]
    assert call.channel == Channel.sms
    assert call.address == "+15551234567"
    assert call.content == "Upcoming appointment"
    assert call.subject is None

    act = _activity(session_factory, job_id)
    assert act.channel_used == "sms"
    assert act.succeeded is True
    assert act.contact_id == "c_sms"
    assert act.provider_message_id.startswith("mock_")


def test_dunning_email_delivery(contacts, session_factory, producer, backend, registry, adapter):
    job_id = producer.enqueue(
        JobKind.dunning,
        "org_1",
        {"contact_id": "c_email", "amount_cents": 5000, "days_overdue": 10},
    )
    proc = DunningProcessor(adapter=adapter, session_factory=session_factory)
    _run(backend, registry, proc, "dunning")

    call = adapter.calls[0]
    assert call.channel == Channel.email
    assert call.subject == "Payment Overdue - Acme Dental"
    assert "$50.00" in call.content
    assert "10 days" in call.content
    assert call.content.startswith("Hi Bob")

    act = _activity(session_factory, job_id)
    assert act.channel_used == "email"
    assert act.succeeded is True
    assert act.meta["amount_cents"] == 5000


def test_sms_preferred_when_both_present(contacts, session_factory, producer, backend, registry, adapter):
    producer.enqueue(JobKind.nurture, "org_1", {"contact_id": "c_both"})
    _run(backend, registry, NurtureProcessor(adapter=adapter, session_factory=session_factory), "nurture")

    assert adapter.calls[0].channel == Channel.sms
    assert adapter.calls[0].content == "Thank you for your interest! We'll be in touch soon."


def test_inline_contact_with_legacy_placeholder(org, session_factory, producer, backend, registry, adapter):
    job_id = producer.enqueue(
        JobKind.nurture,
        "org_1",
        {
            "contact": {"email": "lead@example.com", "firstName": "Lia"},
            "message": "Hi {first_name}, welcome to {business_name}",
        },
    )
    _run(backend, registry, NurtureProcessor(adapter=adapter, session_factory=session_factory), "nurture")

    assert adapter.calls[0].content == "Hi Lia, welcome to Acme Dental"
    act = _activity(session_factory, job_id)
    assert act.contact_id is None
    assert act.channel_used == "email"


def test_blank_address_is_no_deliverable_address(
    contacts, session_factory, producer, backend, registry, adapter
):
    job_id = producer.enqueue(JobKind.nurture, "org_1", {"contact_id": "c_none"})
    _run(backend, registry, NurtureProcessor(adapter=adapter, session_factory=session_factory), "nurture")

    assert adapter.calls == []
    rec = backend.get_job("nurture", job_id)
    assert rec.state == "failed"
    assert rec.envelope.attempt_count == 1
    act = _activity(session_factory, job_id)
    assert act.channel_used == "none"
    assert act.succeeded is False
    assert act.error_code == ErrCode.NO_DELIVERABLE_ADDRESS


def test_contact_of_other_tenant_is_not_found(
    contacts, session_factory, producer, backend, registry, adapter
):
    job_id = producer.enqueue(JobKind.reminder, "org_1", {"contact_id": "c_other"})
    _run(backend, registry, ReminderProcessor(adapter=adapter, session_factory=session_factory), "reminders")

    assert adapter.calls == []
    assert backend.get_job("reminders", job_id).state == "failed"
    assert _activity(session_factory, job_id).error_code == ErrCode.CONTACT_NOT_FOUND


def test_unknown_tenant_is_terminal(session_factory, producer, backend, registry, adapter):
    job_id = producer.enqueue(JobKind.reminder, "org_missing", {"contact_id": "c_sms"})
    _run(backend, registry, ReminderProcessor(adapter=adapter, session_factory=session_factory), "reminders")

    assert backend.get_job("reminders", job_id).state == "failed"
    assert _activity(session_factory, job_id).error_code == ErrCode.TENANT_NOT_FOUND


@pytest.mark.parametrize(
    "payload",
    [
        {},
        {"contact_id": "c_email", "amount_cents": -1, "days_overdue": 3},
        {"contact_id": "c_email", "days_overdue": 3},
    ],
)
def test_invalid_dunning_payload_is_terminal(
    payload, contacts, session_factory, producer, backend, registry, adapter
):
    job_id = producer.enqueue(JobKind.dunning, "org_1", payload)
    _run(backend, registry, DunningProcessor(adapter=adapter, session_factory=session_factory), "dunning")

    assert adapter.calls == []
    rec = backend.get_job("dunning", job_id)
    assert rec.state == "failed"
    assert rec.envelope.attempt_count == 1
    assert _activity(session_factory, job_id).error_code == ErrCode.INVALID_PAYLOAD


def test_invalid_phone_is_terminal_without_fallback(
    org, session_factory, producer, backend, registry, adapter
):
    job_id = producer.enqueue(
        JobKind.nurture, "org_1", {"contact": {"phone": "12ab", "email": "ok@example.com"}}
    )
    _run(backend, registry, NurtureProcessor(adapter=adapter, session_factory=session_factory), "nurture")

    assert adapter.calls == []
    act = _activity(session_factory, job_id)
    assert act.channel_used == "sms"
    assert act.error_code == ErrCode.INVALID_ADDRESS


def test_provider_rejected_is_terminal(contacts, session_factory, producer, backend, registry, adapter):
    adapter.fail_next(DeliveryErrorKind.provider_rejected)
    job_id = producer.enqueue(JobKind.reminder, "org_1", {"contact_id": "c_sms"})
    _run(backend, registry, ReminderProcessor(adapter=adapter, session_factory=session_factory), "reminders")

    assert len(adapter.calls) == 1
    assert backend.get_job("reminders", job_id).state == "failed"
    act = _activity(session_factory, job_id)
    assert act.succeeded is False
    assert act.error_code == ErrCode.PROVIDER_REJECTED


def test_transient_failure_then_success_writes_one_activity(
    contacts, session_factory, producer, backend, registry, adapter, clock
):
    adapter.fail_next(DeliveryErrorKind.provider_unavailable)
    job_id = producer.enqueue(JobKind.reminder, "org_1", {"contact_id": "c_sms"})
    proc = ReminderProcessor(adapter=adapter, session_factory=session_factory)
    _run(backend, registry, proc, "reminders", clock=clock, rounds=2)

    assert len(adapter.calls) == 2
    assert backend.get_job("reminders", job_id).state == "completed"
    assert _activity_count(session_factory) == 1
    assert _activity(session_factory, job_id).succeeded is True


def test_transient_failures_exhaust_attempts(
    contacts, session_factory, producer, backend, registry, adapter, clock
):
    spec = registry.get("reminders")
    adapter.fail_next(*[DeliveryErrorKind.provider_unavailable] * spec.max_attempts)
    job_id = producer.enqueue(JobKind.reminder, "org_1", {"contact_id": "c_sms"})
    proc = ReminderProcessor(adapter=adapter, session_factory=session_factory)
    _run(backend, registry, proc, "reminders", clock=clock, rounds=spec.max_attempts + 1)

    assert len(adapter.calls) == spec.max_attempts
    rec = backend.get_job("reminders", job_id)
    assert rec.state == "failed"
    assert _activity_count(session_factory) == 1
    act = _activity(session_factory, job_id)
    assert act.succeeded is False
    assert act.channel_used == "sms"
    assert act.error_code == ErrCode.PROVIDER_UNAVAILABLE
    assert act.meta["exhausted"] is True


def test_repeated_success_does_not_duplicate_activity(contacts, session_factory, backend, producer, adapter):
    job_id = producer.enqueue(JobKind.reminder, "org_1", {"contact_id": "c_sms"})
    proc = ReminderProcessor(adapter=adapter, session_factory=session_factory)
    job = backend.claim("reminders", lease_sec=30)

    proc.process(job.envelope)
    proc.process(job.envelope)

    assert _activity_count(session_factory) == 1
    assert _activity(session_factory, job_id).succeeded is True
