"""
Рантайм очереди (воркер).

Цикл:
- перед каждым взятием переносим готовые delayed-задачи в waiting
- возвращаем зависшие задачи (истёкшая аренда) как временную ошибку "stalled"
- берём задачи, пока есть свободные слоты (ограничение concurrency очереди)
- пока процессор работает, heartbeat продлевает аренду задачи
- результат процессора -> state_machine.transition -> атомарный переход в бэкенде

Гарантии:
- at-least-once: задача может быть выполнена повторно, если воркер перестал продлевать аренду
- завершение с устаревшим lease-токеном игнорируется бэкендом
"""

from __future__ import annotations

import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor

from clientflow_automation.common.errors import ErrCode, JobError
from clientflow_automation.common.logging import get_project_logger
from clientflow_automation.common.metrics import record_job_result, track_job_latency
from clientflow_automation.domain.enums import JobState
from clientflow_automation.domain.state_machine import TransitionResult, transition
from clientflow_automation.queue.backend import ClaimedJob, QueueBackend
from clientflow_automation.queue.registry import QueueSpec

from .results import JobProcessor, ProcessResult

log = get_project_logger()


class _LeaseHeartbeat:
    """
    Фоновое продление аренды задачи на время работы процессора.
    Останавливается при выходе из контекста или при потере аренды.
    """

    def __init__(
        self, backend: QueueBackend, job: ClaimedJob, *, lease_sec: float, interval_sec: float
    ) -> None:
        self.backend = backend
        self.job = job
        self.lease_sec = lease_sec
        self.interval_sec = interval_sec
        self._stop = threading.Event()
        self._thread = threading.Thread(
            target=self._run, name=f"lease-{job.job_id}", daemon=True
        )

    def __enter__(self) -> _LeaseHeartbeat:
        self._thread.start()
        return self

    def __exit__(self, *exc_info) -> None:
        self._stop.set()
        self._thread.join()

    def _run(self) -> None:
        payload = {"queue": self.job.envelope.queue, "job_id": self.job.job_id}
        while not self._stop.wait(self.interval_sec):
            try:
                if not self.backend.extend(self.job, lease_sec=self.lease_sec):
                    log.warning("job_lease_lost", extra={"payload": payload})
                    return
            except Exception as e:
                log.warning(
                    "job_lease_extend_error", extra={"payload": {**payload, "err": str(e)[:200]}}
                )


class QueueWorker:
    def __init__(
        self,
        *,
        backend: QueueBackend,
        spec: QueueSpec,
        processor: JobProcessor,
        lease_sec: float = 60.0,
        poll_interval_sec: float = 1.0,
        maintenance_interval_sec: float = 1.0,
        heartbeat_interval_sec: float | None = None,
    ) -> None:
        self.backend = backend
        self.spec = spec
        self.processor = processor
        self.lease_sec = lease_sec
        self.poll_interval_sec = poll_interval_sec
        self.maintenance_interval_sec = maintenance_interval_sec
        self.heartbeat_interval_sec = heartbeat_interval_sec or lease_sec / 3

    @property
    def queue(self) -> str:
        return self.spec.name.value

    # ------------------------------------------------------------------
    # одна попытка
    # ------------------------------------------------------------------
    def process_one(self, job: ClaimedJob) -> TransitionResult | None:
        log.info(
            "job_started",
            extra={
                "payload": {
                    "queue": self.queue,
                    "job_id": job.job_id,
                    "tenant_id": job.envelope.tenant_id,
                    "attempt": job.attempt,
                }
            },
        )
        heartbeat = _LeaseHeartbeat(
            self.backend, job, lease_sec=self.lease_sec, interval_sec=self.heartbeat_interval_sec
        )
        with track_job_latency(self.queue), heartbeat:
            try:
                result = self.processor.process(job.envelope)
            except JobError as e:
                result = ProcessResult.from_error(e)
            except Exception as e:
                log.exception(
                    "job_processor_error",
                    extra={"payload": {"queue": self.queue, "job_id": job.job_id}},
                )
                result = ProcessResult.retryable(ErrCode.PROCESSOR_ERROR, str(e)[:300])
        return self.settle(job, result)

    def settle(self, job: ClaimedJob, result: ProcessResult) -> TransitionResult | None:
        """
        Применяет результат попытки. None, если задачу оставили активной
        (не удалось выполнить on_exhausted: её вернёт reclaim).
        """
        tr = transition(
            result.outcome,
            attempt=job.attempt,
            max_attempts=self.spec.max_attempts,
            backoff_base_sec=self.spec.backoff_base_sec,
            backoff_type=self.spec.backoff_type,
        )
        base = {
            "queue": self.queue,
            "job_id": job.job_id,
            "tenant_id": job.envelope.tenant_id,
            "attempt": job.attempt,
        }

        if tr.state == JobState.completed:
            owned = self.backend.complete(job, result=result.data, keep=self.spec.keep_completed)
            label = "completed"
            log.info("job_completed", extra={"payload": base})
        elif tr.state == JobState.delayed:
            owned = self.backend.retry_later(job, delay_sec=tr.delay_sec, error=result.error_text)
            label = "stalled" if result.error_code == ErrCode.JOB_STALLED else "retry"
            log.warning(
                "job_retry_scheduled",
                extra={
                    "payload": {
                        **base,
                        "error_code": result.error_code,
                        "delay_sec": tr.delay_sec,
                    }
                },
            )
        else:
            if tr.exhausted:
                try:
                    self.processor.on_exhausted(job.envelope, result)
                except Exception:
                    log.exception("job_on_exhausted_failed", extra={"payload": base})
                    return None
            owned = self.backend.fail(job, error=result.error_text, keep=self.spec.keep_failed)
            label = "exhausted" if tr.exhausted else "failed"
            log.error(
                "job_failed",
                extra={"payload": {**base, "error_code": result.error_code, "reason": tr.reason}},
            )

        if not owned:
            label = "lease_lost"
            log.warning("job_settle_lease_lost", extra={"payload": base})
        record_job_result(self.queue, label)
        return tr

    # ------------------------------------------------------------------
    # обслуживание очереди
    # ------------------------------------------------------------------
    def promote_due(self) -> int:
        promoted = self.backend.promote_delayed(self.queue)
        if promoted:
            log.info("jobs_promoted", extra={"payload": {"queue": self.queue, "count": promoted}})
        return promoted

    def maintenance(self) -> None:
        self.promote_due()
        for job in self.backend.reclaim_stalled(self.queue, lease_sec=self.lease_sec):
            log.warning(
                "job_stalled",
                extra={"payload": {"queue": self.queue, "job_id": job.job_id, "attempt": job.attempt}},
            )
            self.settle(
                job, ProcessResult.retryable(ErrCode.JOB_STALLED, "аренда задачи истекла")
            )

    def run_until_idle(self, *, max_jobs: int = 10_000) -> int:
        """
        Синхронная обработка без пула: до пустой очереди (delayed не ждём).
        Для тестов и разовых прогонов.
        """
        processed = 0
        while processed < max_jobs:
            self.maintenance()
            job = self.backend.claim(self.queue, lease_sec=self.lease_sec)
            if job is None:
                break
            self.process_one(job)
            processed += 1
        return processed

    def run_forever(self, stop_event: threading.Event) -> None:
        """
        Основной цикл процесса воркера. Останавливается по stop_event
        и дожидается завершения уже взятых задач.
        """
        slots = threading.BoundedSemaphore(self.spec.concurrency)
        last_maintenance = 0.0
        log.info(
            "worker_started",
            extra={"payload": {"queue": self.queue, "concurrency": self.spec.concurrency}},
        )

        def _release(_: Future) -> None:
            slots.release()

        with ThreadPoolExecutor(
            max_workers=self.spec.concurrency, thread_name_prefix=f"worker-{self.queue}"
        ) as pool:
            while not stop_event.is_set():
                now = time.monotonic()
                if now - last_maintenance >= self.maintenance_interval_sec:
                    try:
                        self.maintenance()
                    except Exception as e:
                        log.error(
                            "worker_maintenance_error",
                            extra={"payload": {"queue": self.queue, "err": str(e)[:200]}},
                        )
                    last_maintenance = now

                if not slots.acquire(timeout=self.poll_interval_sec):
                    continue
                try:
                    self.promote_due()
                    job = self.backend.claim(self.queue, lease_sec=self.lease_sec)
                except Exception as e:
                    slots.release()
                    log.error(
                        "worker_claim_error",
                        extra={"payload": {"queue": self.queue, "err": str(e)[:200]}},
                    )
                    stop_event.wait(self.poll_interval_sec)
                    continue
                if job is None:
                    slots.release()
                    stop_event.wait(self.poll_interval_sec)
                    continue
                pool.submit(self._run_guarded, job).add_done_callback(_release)

        log.info("worker_stopped", extra={"payload": {"queue": self.queue}})

    def _run_guarded(self, job: ClaimedJob) -> None:
        try:
            self.process_one(job)
        except Exception:
            # ошибка бэкенда при завершении: задачу вернёт reclaim после истечения аренды
            log.exception(
                "job_settle_error", extra={"payload": {"queue": self.queue, "job_id": job.job_id}}
            )
