"""
Worker Snapshots.

Дневные снимки метрик организаций (очередь snapshots).
"""

from __future__ import annotations

from clientflow_automation.domain.enums import QueueName
from clientflow_automation.worker.entrypoint import run_queue_worker


def main() -> None:
    run_queue_worker(QueueName.snapshots)


if __name__ == "__main__":
    main()
