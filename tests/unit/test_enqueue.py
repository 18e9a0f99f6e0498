from __future__ import annotations

from datetime import date

import pytest

from clientflow_automation.common.errors import ErrCode, InvalidJobRequest
from clientflow_automation.domain.enums import JobKind


def test_enqueue_routes_by_kind(producer, backend):
    job_id = producer.enqueue(JobKind.dunning, "org_1", {"contact_id": "c1", "amount_cents": 100})
    assert job_id.startswith("dun_")

    rec = backend.get_job("dunning", job_id)
    assert rec is not None
    assert rec.state == "waiting"
    assert rec.envelope.tenant_id == "org_1"
    assert rec.envelope.job_kind == JobKind.dunning
    assert rec.envelope.attempt_count == 0
    assert backend.counts("dunning").waiting == 1
    assert backend.counts("reminders").waiting == 0


def test_enqueue_accepts_kind_as_string(producer, backend):
    job_id = producer.enqueue("nurture", "org_1", {"contact_id": "c1"})
    assert backend.get_job("nurture", job_id) is not None


def test_enqueue_with_delay_is_delayed(producer, backend):
    job_id = producer.enqueue_reminder("org_1", {"contact_id": "c1"}, delay_sec=120)
    assert backend.get_job("reminders", job_id).state == "delayed"
    assert backend.counts("reminders").delayed == 1


def test_enqueue_payload_shape_not_checked(producer, backend):
    # форма payload проверяется только воркером
    job_id = producer.enqueue(JobKind.reminder, "org_1", {"anything": 1})
    assert backend.get_job("reminders", job_id) is not None


@pytest.mark.parametrize("tenant_id", ["", "   ", None, 42])
def test_enqueue_rejects_bad_tenant(producer, backend, tenant_id):
    with pytest.raises(InvalidJobRequest) as e:
        producer.enqueue(JobKind.nurture, tenant_id, {"contact_id": "c1"})
    assert e.value.code == ErrCode.INVALID_JOB_REQUEST
    assert backend.counts("nurture").waiting == 0


def test_enqueue_rejects_unknown_kind(producer):
    with pytest.raises(InvalidJobRequest) as e:
        producer.enqueue("invoice", "org_1", {})
    assert "allowed" in (e.value.details or {})


def test_enqueue_rejects_non_object_payload(producer, backend):
    with pytest.raises(InvalidJobRequest):
        producer.enqueue(JobKind.reminder, "org_1", ["not", "a", "dict"])
    assert backend.counts("reminders").waiting == 0


def test_enqueue_duplicate_job_id_is_noop(producer, backend):
    first = producer.enqueue(JobKind.snapshot, "org_1", {}, job_id="snp_org_1_2024-03-01")
    second = producer.enqueue(JobKind.snapshot, "org_1", {}, job_id="snp_org_1_2024-03-01")
    assert first == second == "snp_org_1_2024-03-01"
    assert backend.counts("snapshots").waiting == 1


def test_enqueue_snapshot_sets_date(producer, backend):
    job_id = producer.enqueue_snapshot("org_1", date(2024, 3, 1))
    assert backend.get_job("snapshots", job_id).envelope.payload == {"date": "2024-03-01"}
