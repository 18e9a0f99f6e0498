"""
Проверка адресов получателей до обращения к провайдеру.
"""

from __future__ import annotations

import re

from clientflow_automation.domain.enums import Channel

_RE_PHONE_FORMATTING = re.compile(r"[\s\-().]")
_RE_PHONE = re.compile(r"^\+?\d{10,15}$")
_RE_EMAIL = re.compile(r"^[A-Za-z0-9._%+\-]+@[A-Za-z0-9\-]+(\.[A-Za-z0-9\-]+)*\.[A-Za-z]{2,}$")


def normalize_phone(value: str) -> str | None:
    """
    Телефон без форматирования (пробелы, скобки, дефисы, точки).
    None, если после очистки это не 10-15 цифр с необязательным '+'.
    """
    candidate = _RE_PHONE_FORMATTING.sub("", value or "")
    return candidate if _RE_PHONE.match(candidate) else None


def is_valid_email(value: str) -> bool:
    return bool(_RE_EMAIL.match((value or "").strip()))


def normalize_address(channel: Channel, address: str) -> str | None:
    if channel == Channel.sms:
        return normalize_phone(address)
    value = (address or "").strip()
    return value if is_valid_email(value) else None
