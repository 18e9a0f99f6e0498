"""
Сборка зависимостей процесса.

Реестр очередей, бэкенд, продьюсер, адаптер доставки и процессоры создаются
один раз на старте и передаются дальше явно (API, воркеры, планировщик).
"""

from __future__ import annotations

from dataclasses import dataclass, field

from sqlalchemy.orm import sessionmaker

from clientflow_automation.common.config import Settings, get_settings
from clientflow_automation.common.logging import get_project_logger
from clientflow_automation.delivery.base import ChannelAdapter
from clientflow_automation.delivery.router import build_channel_adapter
from clientflow_automation.domain.enums import QUEUE_FOR_KIND, JobKind, QueueName
from clientflow_automation.jobs.scheduler import Scheduler
from clientflow_automation.processors.messages import MESSAGE_PROCESSORS
from clientflow_automation.processors.snapshots import SnapshotProcessor
from clientflow_automation.queue.backend import QueueBackend
from clientflow_automation.queue.memory import MemoryQueueBackend
from clientflow_automation.queue.producer import JobProducer
from clientflow_automation.queue.redis import redis_client
from clientflow_automation.queue.redis_backend import RedisQueueBackend
from clientflow_automation.queue.registry import QueueRegistry, build_registry
from clientflow_automation.services.queue_health import QueueHealthReporter
from clientflow_automation.worker.results import JobProcessor
from clientflow_automation.worker.runtime import QueueWorker

log = get_project_logger()


def build_backend(settings: Settings) -> QueueBackend:
    mode = (settings.queue_backend or "").strip().lower()
    if mode == "memory":
        return MemoryQueueBackend()
    return RedisQueueBackend(redis_client(), prefix=settings.queue_prefix)


@dataclass
class Runtime:
    settings: Settings
    registry: QueueRegistry
    backend: QueueBackend
    producer: JobProducer
    adapter: ChannelAdapter
    session_factory: sessionmaker | None
    health: QueueHealthReporter
    processors: dict[QueueName, JobProcessor] = field(default_factory=dict)

    def worker_for(self, queue: QueueName | str) -> QueueWorker:
        spec = self.registry.get(queue)
        return QueueWorker(
            backend=self.backend,
            spec=spec,
            processor=self.processors[spec.name],
            lease_sec=self.settings.queue_stall_timeout_sec,
            poll_interval_sec=self.settings.queue_poll_interval_sec,
        )

    def scheduler(self) -> Scheduler:
        return Scheduler(
            self.producer,
            session_factory=self.session_factory,
            timezone=self.settings.snapshot_timezone,
            snapshot_hour=self.settings.scheduler_snapshot_hour,
        )


def build_runtime(
    settings: Settings | None = None,
    *,
    backend: QueueBackend | None = None,
    adapter: ChannelAdapter | None = None,
    session_factory: sessionmaker | None = None,
) -> Runtime:
    s = settings or get_settings()
    registry = build_registry(s)
    backend = backend or build_backend(s)
    adapter = adapter or build_channel_adapter(s)

    processors: dict[QueueName, JobProcessor] = {
        QUEUE_FOR_KIND[kind]: factory(adapter=adapter, session_factory=session_factory)
        for kind, factory in MESSAGE_PROCESSORS.items()
    }
    processors[QUEUE_FOR_KIND[JobKind.snapshot]] = SnapshotProcessor(
        backend=backend,
        session_factory=session_factory,
        timezone=s.snapshot_timezone,
        lock_ttl_sec=s.snapshot_lock_ttl_sec,
    )

    log.info(
        "runtime_built",
        extra={
            "payload": {
                "queue_backend": type(backend).__name__,
                "adapter": type(adapter).__name__,
                "queues": registry.names(),
            }
        },
    )
    return Runtime(
        settings=s,
        registry=registry,
        backend=backend,
        producer=JobProducer(backend, registry),
        adapter=adapter,
        session_factory=session_factory,
        health=QueueHealthReporter(backend, registry),
        processors=processors,
    )
