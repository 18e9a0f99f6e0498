"""
Генерация идентификаторов.

Назначение:
- job_id для задач очередей
- lease-токены для владения активной задачей
"""

from __future__ import annotations

import secrets
import uuid
from datetime import UTC, datetime


def new_uuid() -> str:
    """UUIDv4 строкой."""
    return str(uuid.uuid4())


def new_job_id(prefix: str = "job") -> str:
    """
    Идентификатор задачи очереди.
    Формат: <prefix>_<UTCYYYYMMDDHHMMSS>_<rand>
    """
    ts = datetime.now(UTC).strftime("%Y%m%d%H%M%S")
    rnd = secrets.token_hex(6)
    return f"{prefix}_{ts}_{rnd}"


def new_lease_token() -> str:
    return secrets.token_hex(8)
