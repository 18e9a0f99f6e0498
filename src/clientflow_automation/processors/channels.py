"""
Выбор канала доставки.

Строгий порядок для всех очередей сообщений: SMS, если есть телефон;
иначе email; иначе NoDeliverableAddress. Пустые строки = значения нет.
"""

from __future__ import annotations

from dataclasses import dataclass

from clientflow_automation.common.errors import NoDeliverableAddress
from clientflow_automation.domain.enums import Channel


@dataclass(frozen=True)
class ChannelChoice:
    channel: Channel
    address: str


def _present(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


def select_channel(phone: str | None, email: str | None) -> ChannelChoice:
    if (p := _present(phone)) is not None:
        return ChannelChoice(Channel.sms, p)
    if (e := _present(email)) is not None:
        return ChannelChoice(Channel.email, e)
    raise NoDeliverableAddress()
