"""
Общий запуск процесса воркера / планировщика.
"""

from __future__ import annotations

import signal
import threading

from clientflow_automation.common.logging import get_project_logger, setup_logging
from clientflow_automation.domain.enums import QueueName
from clientflow_automation.runtime import build_runtime

log = get_project_logger()


def install_stop_event() -> threading.Event:
    """SIGTERM/SIGINT -> мягкая остановка: новые задачи не берутся, текущие дорабатывают."""
    stop = threading.Event()

    def _handle(signum, _frame) -> None:
        log.info("shutdown_requested", extra={"payload": {"signal": signum}})
        stop.set()

    signal.signal(signal.SIGTERM, _handle)
    signal.signal(signal.SIGINT, _handle)
    return stop


def run_queue_worker(queue: QueueName) -> None:
    setup_logging()
    rt = build_runtime()
    stop = install_stop_event()
    rt.worker_for(queue).run_forever(stop)


def run_scheduler() -> None:
    setup_logging()
    rt = build_runtime()
    if not rt.settings.scheduler_enabled:
        log.info("scheduler_disabled")
        return
    stop = install_stop_event()
    rt.scheduler().run_forever(stop, interval_sec=rt.settings.scheduler_interval_sec)
