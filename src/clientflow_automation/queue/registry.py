"""
Реестр очередей.

Набор очередей и их политик фиксируется один раз на старте процесса
и передаётся продьюсеру/воркерам явно.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass

from clientflow_automation.common.config import Settings
from clientflow_automation.domain.enums import QUEUE_FOR_KIND, JobKind, QueueName

# Префиксы job_id по видам задач
JOB_ID_PREFIX: dict[JobKind, str] = {
    JobKind.reminder: "rem",
    JobKind.nurture: "nur",
    JobKind.dunning: "dun",
    JobKind.snapshot: "snp",
}


@dataclass(frozen=True)
class QueueSpec:
    name: QueueName
    concurrency: int
    max_attempts: int = 3
    backoff_type: str = "exponential"
    backoff_base_sec: float = 2.0
    keep_completed: int = 100
    keep_failed: int = 50


class QueueRegistry:
    def __init__(self, specs: list[QueueSpec]) -> None:
        self._specs: dict[QueueName, QueueSpec] = {s.name: s for s in specs}
        missing = {QUEUE_FOR_KIND[k] for k in JobKind} - set(self._specs)
        if missing:
            raise ValueError(f"queue specs missing for: {sorted(m.value for m in missing)}")

    def __iter__(self) -> Iterator[QueueSpec]:
        return iter(self._specs.values())

    def names(self) -> list[str]:
        return [name.value for name in self._specs]

    def get(self, name: QueueName | str) -> QueueSpec:
        try:
            return self._specs[QueueName(name)]
        except ValueError:
            raise KeyError(name) from None

    def for_kind(self, kind: JobKind) -> QueueSpec:
        return self._specs[QUEUE_FOR_KIND[kind]]


def build_registry(settings: Settings) -> QueueRegistry:
    def _spec(name: QueueName, concurrency: int, keep_completed: int, keep_failed: int) -> QueueSpec:
        return QueueSpec(
            name=name,
            concurrency=max(1, concurrency),
            max_attempts=max(1, settings.queue_max_attempts),
            backoff_base_sec=settings.queue_backoff_base_sec,
            keep_completed=keep_completed,
            keep_failed=keep_failed,
        )

    s = settings
    return QueueRegistry(
        [
            _spec(QueueName.reminders, s.reminders_concurrency, s.queue_keep_completed, s.queue_keep_failed),
            _spec(QueueName.nurture, s.nurture_concurrency, s.queue_keep_completed, s.queue_keep_failed),
            _spec(QueueName.dunning, s.dunning_concurrency, s.queue_keep_completed, s.queue_keep_failed),
            _spec(
                QueueName.snapshots,
                s.snapshots_concurrency,
                s.snapshots_keep_completed,
                s.snapshots_keep_failed,
            ),
        ]
    )
