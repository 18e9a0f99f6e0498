"""
Состояние очередей для мониторинга.

- только чтение, без побочных эффектов (кроме gauge'ей Prometheus)
- никогда не бросает исключение: ошибка чтения -> healthy=False + текст ошибки
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from clientflow_automation.common.logging import get_project_logger
from clientflow_automation.common.metrics import METRICS_COLLECTION_ERRORS_TOTAL, set_queue_gauges
from clientflow_automation.common.time import utc_now_iso
from clientflow_automation.queue.backend import QueueBackend
from clientflow_automation.queue.registry import QueueRegistry

log = get_project_logger()


@dataclass
class QueueHealthReport:
    healthy: bool
    queues: dict[str, dict[str, Any]] = field(default_factory=dict)
    error: str | None = None
    checked_at: str = ""


class QueueHealthReporter:
    def __init__(self, backend: QueueBackend, registry: QueueRegistry) -> None:
        self.backend = backend
        self.registry = registry

    def get_queue_counts(self) -> dict[str, dict[str, Any]]:
        """Может бросить исключение бэкенда; безопасная обёртка: report()."""
        return {name: self.backend.counts(name).as_dict() for name in self.registry.names()}

    def report(self) -> QueueHealthReport:
        checked_at = utc_now_iso()
        try:
            queues = self.get_queue_counts()
        except Exception as e:
            log.warning("queue_health_check_failed", extra={"payload": {"err": str(e)[:200]}})
            METRICS_COLLECTION_ERRORS_TOTAL.labels(source="queue_health").inc()
            try:
                set_queue_gauges({}, healthy=False)
            except Exception:
                log.debug("queue_health_gauges_failed")
            return QueueHealthReport(
                healthy=False, error=str(e)[:500] or type(e).__name__, checked_at=checked_at
            )

        try:
            set_queue_gauges(queues, healthy=True)
        except Exception:
            METRICS_COLLECTION_ERRORS_TOTAL.labels(source="queue_gauges").inc()
        return QueueHealthReport(healthy=True, queues=queues, checked_at=checked_at)
