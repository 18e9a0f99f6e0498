from __future__ import annotations

import pytest

from clientflow_automation.common.config import get_settings
from clientflow_automation.domain.enums import JobKind, QueueName
from clientflow_automation.processors.messages import DunningProcessor
from clientflow_automation.processors.snapshots import SnapshotProcessor
from clientflow_automation.queue.registry import QueueRegistry, QueueSpec
from clientflow_automation.runtime import build_runtime


def test_build_runtime_wires_every_queue(backend, adapter, session_factory):
    rt = build_runtime(get_settings(), backend=backend, adapter=adapter, session_factory=session_factory)

    assert set(rt.processors) == set(QueueName)
    assert isinstance(rt.processors[QueueName.dunning], DunningProcessor)
    assert isinstance(rt.processors[QueueName.snapshots], SnapshotProcessor)
    assert rt.processors[QueueName.snapshots].backend is backend

    worker = rt.worker_for("reminders")
    assert worker.queue == "reminders"
    assert worker.processor.kind == JobKind.reminder


def test_registry_requires_all_queues():
    with pytest.raises(ValueError):
        QueueRegistry([QueueSpec(name=QueueName.reminders, concurrency=1)])


def test_registry_unknown_queue(registry):
    with pytest.raises(KeyError):
        registry.get("fax")
    assert registry.for_kind(JobKind.snapshot).name == QueueName.snapshots


def test_registry_concurrency_from_settings(registry):
    s = get_settings()
    assert registry.get(QueueName.reminders).concurrency == s.reminders_concurrency
    assert registry.get(QueueName.snapshots).keep_completed == s.snapshots_keep_completed
