"""
In-memory бэкенд очередей.

Используется:
- в тестах (детерминированные часы через clock)
- локально при QUEUE_BACKEND=memory (один процесс, без Redis)

Семантика совпадает с Redis-бэкендом: FIFO waiting, delayed по времени готовности,
lease-токен у активной задачи, ограниченное хранение completed/failed.
"""

from __future__ import annotations

import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from clientflow_automation.common.ids import new_lease_token
from clientflow_automation.contracts.jobs import JobEnvelope
from clientflow_automation.domain.enums import JobState

from .backend import ClaimedJob, JobRecord, QueueCounts


@dataclass
class _Entry:
    envelope: JobEnvelope
    state: JobState
    lease_token: str | None = None
    lease_expires_at: float = 0.0
    ready_at: float = 0.0
    last_error: str | None = None
    result: dict[str, Any] = field(default_factory=dict)
    finished_at: float | None = None


@dataclass
class _QueueState:
    jobs: dict[str, _Entry] = field(default_factory=dict)
    waiting: deque[str] = field(default_factory=deque)
    active: set[str] = field(default_factory=set)
    delayed: set[str] = field(default_factory=set)
    completed: deque[str] = field(default_factory=deque)
    failed: deque[str] = field(default_factory=deque)
    paused: bool = False


class MemoryQueueBackend:
    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._lock = threading.RLock()
        self._queues: dict[str, _QueueState] = {}
        self._locks: dict[str, tuple[str, float]] = {}

    def _q(self, name: str) -> _QueueState:
        q = self._queues.get(name)
        if q is None:
            q = _QueueState()
            self._queues[name] = q
        return q

    def _owned(self, job: ClaimedJob) -> _Entry | None:
        q = self._q(job.envelope.queue)
        entry = q.jobs.get(job.job_id)
        if entry is None or entry.state != JobState.active:
            return None
        if entry.lease_token != job.lease_token:
            return None
        return entry

    @staticmethod
    def _trim(q: _QueueState, ids: deque[str], keep: int) -> None:
        while len(ids) > max(0, keep):
            old = ids.pop()
            q.jobs.pop(old, None)

    # ------------------------------------------------------------------
    # producer
    # ------------------------------------------------------------------
    def add(self, envelope: JobEnvelope, *, delay_sec: float = 0.0) -> bool:
        with self._lock:
            q = self._q(envelope.queue)
            if envelope.job_id in q.jobs:
                return False
            if delay_sec > 0:
                q.jobs[envelope.job_id] = _Entry(
                    envelope=envelope,
                    state=JobState.delayed,
                    ready_at=self._clock() + delay_sec,
                )
                q.delayed.add(envelope.job_id)
            else:
                q.jobs[envelope.job_id] = _Entry(envelope=envelope, state=JobState.waiting)
                q.waiting.append(envelope.job_id)
            return True

    # ------------------------------------------------------------------
    # worker
    # ------------------------------------------------------------------
    def claim(self, queue: str, *, lease_sec: float) -> ClaimedJob | None:
        with self._lock:
            q = self._q(queue)
            if q.paused:
                return None
            while q.waiting:
                job_id = q.waiting.popleft()
                entry = q.jobs.get(job_id)
                if entry is None:
                    continue
                entry.envelope = entry.envelope.model_copy(
                    update={"attempt_count": entry.envelope.attempt_count + 1}
                )
                entry.state = JobState.active
                entry.lease_token = new_lease_token()
                entry.lease_expires_at = self._clock() + lease_sec
                q.active.add(job_id)
                return ClaimedJob(
                    envelope=entry.envelope,
                    lease_token=entry.lease_token,
                    lease_expires_at=entry.lease_expires_at,
                )
            return None

    def complete(self, job: ClaimedJob, *, result: dict[str, Any] | None, keep: int) -> bool:
        with self._lock:
            entry = self._owned(job)
            if entry is None:
                return False
            q = self._q(job.envelope.queue)
            q.active.discard(job.job_id)
            entry.state = JobState.completed
            entry.lease_token = None
            entry.result = dict(result or {})
            entry.finished_at = self._clock()
            q.completed.appendleft(job.job_id)
            self._trim(q, q.completed, keep)
            return True

    def fail(self, job: ClaimedJob, *, error: str, keep: int) -> bool:
        with self._lock:
            entry = self._owned(job)
            if entry is None:
                return False
            q = self._q(job.envelope.queue)
            q.active.discard(job.job_id)
            entry.state = JobState.failed
            entry.lease_token = None
            entry.last_error = error
            entry.finished_at = self._clock()
            q.failed.appendleft(job.job_id)
            self._trim(q, q.failed, keep)
            return True

    def retry_later(self, job: ClaimedJob, *, delay_sec: float, error: str) -> bool:
        with self._lock:
            entry = self._owned(job)
            if entry is None:
                return False
            q = self._q(job.envelope.queue)
            q.active.discard(job.job_id)
            entry.state = JobState.delayed
            entry.lease_token = None
            entry.last_error = error
            entry.ready_at = self._clock() + max(0.0, delay_sec)
            q.delayed.add(job.job_id)
            return True

    def extend(self, job: ClaimedJob, *, lease_sec: float) -> bool:
        with self._lock:
            entry = self._owned(job)
            if entry is None:
                return False
            entry.lease_expires_at = self._clock() + lease_sec
            job.lease_expires_at = entry.lease_expires_at
            return True

    def promote_delayed(self, queue: str, *, limit: int = 100) -> int:
        with self._lock:
            q = self._q(queue)
            now = self._clock()
            ready = sorted(
                (q.jobs[jid].ready_at, jid) for jid in q.delayed if q.jobs[jid].ready_at <= now
            )[:limit]
            for _, job_id in ready:
                q.delayed.discard(job_id)
                q.jobs[job_id].state = JobState.waiting
                q.waiting.append(job_id)
            return len(ready)

    def reclaim_stalled(self, queue: str, *, lease_sec: float, limit: int = 100) -> list[ClaimedJob]:
        """
        Активные задачи с истёкшей арендой.
        Токен перевыпускается: исходный исполнитель больше не сможет завершить задачу.
        """
        with self._lock:
            q = self._q(queue)
            now = self._clock()
            out: list[ClaimedJob] = []
            for job_id in list(q.active):
                entry = q.jobs[job_id]
                if entry.lease_expires_at > now:
                    continue
                entry.lease_token = new_lease_token()
                entry.lease_expires_at = now + lease_sec
                out.append(
                    ClaimedJob(
                        envelope=entry.envelope,
                        lease_token=entry.lease_token,
                        lease_expires_at=entry.lease_expires_at,
                    )
                )
                if len(out) >= limit:
                    break
            return out

    # ------------------------------------------------------------------
    # inspection / admin
    # ------------------------------------------------------------------
    def counts(self, queue: str) -> QueueCounts:
        with self._lock:
            q = self._q(queue)
            return QueueCounts(
                waiting=len(q.waiting),
                active=len(q.active),
                completed=len(q.completed),
                failed=len(q.failed),
                delayed=len(q.delayed),
                paused=q.paused,
            )

    def get_job(self, queue: str, job_id: str) -> JobRecord | None:
        with self._lock:
            entry = self._q(queue).jobs.get(job_id)
            if entry is None:
                return None
            return JobRecord(
                envelope=entry.envelope,
                state=entry.state.value,
                last_error=entry.last_error,
                result=dict(entry.result),
                finished_at=entry.finished_at,
            )

    def list_failed(self, queue: str, *, limit: int = 50) -> list[JobRecord]:
        with self._lock:
            ids = list(self._q(queue).failed)[: max(0, limit)]
        return [rec for rec in (self.get_job(queue, jid) for jid in ids) if rec is not None]

    def pause(self, queue: str) -> None:
        with self._lock:
            self._q(queue).paused = True

    def resume(self, queue: str) -> None:
        with self._lock:
            self._q(queue).paused = False

    def is_paused(self, queue: str) -> bool:
        with self._lock:
            return self._q(queue).paused

    def clear(self, queue: str) -> None:
        """Удаляет всё, кроме активных задач (их дозавершат воркеры)."""
        with self._lock:
            q = self._q(queue)
            for job_id in [*q.waiting, *q.delayed, *q.completed, *q.failed]:
                q.jobs.pop(job_id, None)
            q.waiting.clear()
            q.delayed.clear()
            q.completed.clear()
            q.failed.clear()

    # ------------------------------------------------------------------
    # locks
    # ------------------------------------------------------------------
    def acquire_lock(self, key: str, *, ttl_sec: int) -> str | None:
        with self._lock:
            now = self._clock()
            current = self._locks.get(key)
            if current is not None and current[1] > now:
                return None
            token = new_lease_token()
            self._locks[key] = (token, now + ttl_sec)
            return token

    def release_lock(self, key: str, token: str) -> None:
        with self._lock:
            current = self._locks.get(key)
            if current is not None and current[0] == token:
                self._locks.pop(key, None)
