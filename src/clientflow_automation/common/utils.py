"""
Общие утилиты проекта.

Правила:
- сюда кладём только реально общие функции
- без бизнес-логики
"""

from __future__ import annotations

import re

_RE_PHONE_LIKE = re.compile(r"^\+?[\d\s\-()]+$")


def mask_address(value: str | None) -> str | None:
    """
    Маскирование адреса получателя для логов:
    - телефон: все цифры -> '*'
    - email: первые 2 символа локальной части + домен
    """
    if not value:
        return value
    if _RE_PHONE_LIKE.match(value):
        return re.sub(r"\d", "*", value)
    if "@" in value:
        local, _, domain = value.partition("@")
        return f"{local[:2]}***@{domain}"
    if len(value) > 10:
        return value[:3] + "***" + value[-3:]
    return value

