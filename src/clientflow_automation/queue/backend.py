"""
Контракт хранилища очередей.

Назначение:
- единый интерфейс для Redis (прод) и in-memory (тесты/локальный режим)
- атомарные переходы задачи: waiting -> active -> completed|failed|delayed
- владение активной задачей через lease-токен (защита от двойного завершения
  после возврата «зависшей» задачи в очередь)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

from clientflow_automation.contracts.jobs import JobEnvelope


@dataclass
class ClaimedJob:
    """
    Задача, взятая воркером в работу.
    envelope.attempt_count уже учитывает текущую попытку.
    """

    envelope: JobEnvelope
    lease_token: str
    lease_expires_at: float

    @property
    def job_id(self) -> str:
        return self.envelope.job_id

    @property
    def attempt(self) -> int:
        return self.envelope.attempt_count


@dataclass
class QueueCounts:
    waiting: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0
    delayed: int = 0
    paused: bool = False

    def as_dict(self) -> dict[str, Any]:
        return {
            "waiting": self.waiting,
            "active": self.active,
            "completed": self.completed,
            "failed": self.failed,
            "delayed": self.delayed,
            "paused": self.paused,
        }


@dataclass
class JobRecord:
    """
    Снимок задачи для инспекции оператором (completed/failed хранятся ограниченно).
    """

    envelope: JobEnvelope
    state: str
    last_error: str | None = None
    result: dict[str, Any] = field(default_factory=dict)
    finished_at: float | None = None


class QueueBackend(Protocol):
    def add(self, envelope: JobEnvelope, *, delay_sec: float = 0.0) -> bool:
        """False, если задача с таким job_id уже существует."""
        ...

    def claim(self, queue: str, *, lease_sec: float) -> ClaimedJob | None: ...

    def complete(
        self, job: ClaimedJob, *, result: dict[str, Any] | None, keep: int
    ) -> bool: ...

    def fail(self, job: ClaimedJob, *, error: str, keep: int) -> bool: ...

    def retry_later(self, job: ClaimedJob, *, delay_sec: float, error: str) -> bool: ...

    def extend(self, job: ClaimedJob, *, lease_sec: float) -> bool:
        """Продлевает аренду активной задачи. False, если токен устарел."""
        ...

    def promote_delayed(self, queue: str, *, limit: int = 100) -> int: ...

    def reclaim_stalled(self, queue: str, *, lease_sec: float, limit: int = 100) -> list[ClaimedJob]: ...

    def counts(self, queue: str) -> QueueCounts: ...

    def get_job(self, queue: str, job_id: str) -> JobRecord | None: ...

    def list_failed(self, queue: str, *, limit: int = 50) -> list[JobRecord]: ...

    def pause(self, queue: str) -> None: ...

    def resume(self, queue: str) -> None: ...

    def is_paused(self, queue: str) -> bool: ...

    def clear(self, queue: str) -> None: ...

    def acquire_lock(self, key: str, *, ttl_sec: int) -> str | None: ...

    def release_lock(self, key: str, token: str) -> None: ...
