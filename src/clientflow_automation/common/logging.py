"""
Логирование проекта.

- логирование в stdout (Docker-friendly)
- JSON по умолчанию, text для локальной разработки
- структурные поля передаются через extra={"payload": {...}}
- поля задачи (queue, job_id, tenant_id, attempt) поднимаются на верхний уровень записи
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from typing import Any

from clientflow_automation.common.config import get_settings

JOB_FIELDS = ("queue", "job_id", "tenant_id", "attempt")


def job_context(record: logging.LogRecord) -> dict[str, Any]:
    """
    Поля задачи из записи: атрибут record (extra={"job_id": ...})
    имеет приоритет над одноимённым ключом payload.
    """
    payload = getattr(record, "payload", None)
    out: dict[str, Any] = {}
    for key in JOB_FIELDS:
        value = getattr(record, key, None)
        if value is None and isinstance(payload, dict):
            value = payload.get(key)
        if value is not None:
            out[key] = value
    return out


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z",
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            **job_context(record),
        }
        extra_payload = getattr(record, "payload", None)
        if isinstance(extra_payload, dict):
            payload["payload"] = extra_payload
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


class TextFormatter(logging.Formatter):
    def __init__(self) -> None:
        super().__init__(
            fmt="%(asctime)s %(levelname)s %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        ctx = job_context(record)
        if not ctx:
            return line
        suffix = " ".join(f"{k}={v}" for k, v in ctx.items())
        head, sep, tail = line.partition("\n")
        return f"{head} [{suffix}]{sep}{tail}"


def _build_formatter() -> logging.Formatter:
    s = get_settings()
    if (s.log_format or "").lower() == "text":
        return TextFormatter()
    return JsonFormatter()


def setup_logging() -> None:
    s = get_settings()
    root = logging.getLogger()
    level = getattr(logging, (s.log_level or "INFO").upper(), logging.INFO)
    root.setLevel(level)

    # Не плодим хэндлеры при повторном вызове
    if root.handlers:
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(_build_formatter())
    root.addHandler(handler)

    logging.getLogger("uvicorn.error").setLevel(level)
    logging.getLogger("uvicorn.access").setLevel(level)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def get_project_logger(name: str = "clientflow-automation") -> logging.Logger:
    return logging.getLogger(name)


def get_delivery_logger() -> logging.Logger:
    """
    Отдельный логгер для провайдеров доставки (удобно фильтровать/маршрутизировать).
    """
    return logging.getLogger("clientflow-automation.delivery")
