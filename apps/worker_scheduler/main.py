"""
Scheduler.

- ежечасно ставит напоминания о подтверждённых встречах
- раз в сутки ставит снимки метрик по всем организациям
Отключается через SCHEDULER_ENABLED=false.
"""

from __future__ import annotations

from clientflow_automation.worker.entrypoint import run_scheduler


def main() -> None:
    run_scheduler()


if __name__ == "__main__":
    main()
