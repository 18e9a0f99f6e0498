"""
Базовые интерфейсы доставки.

Назначение:
- Единый контракт для каналов (sms/email) и mock-реализации
- Нормализованные виды ошибок: постоянные и временные
- Переключение провайдера через ENV (DELIVERY_PROVIDER=live|mock)
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Protocol

from clientflow_automation.common.errors import ErrCode
from clientflow_automation.domain.enums import Channel


class DeliveryErrorKind(str, enum.Enum):
    invalid_address = ErrCode.INVALID_ADDRESS
    provider_rejected = ErrCode.PROVIDER_REJECTED
    provider_unavailable = ErrCode.PROVIDER_UNAVAILABLE

    @property
    def transient(self) -> bool:
        return self == DeliveryErrorKind.provider_unavailable


@dataclass
class DeliveryResult:
    """
    Результат доставки.
    """

    succeeded: bool
    provider: str
    provider_message_id: str | None = None
    error_kind: DeliveryErrorKind | None = None
    error: str | None = None
    meta: dict[str, Any] = field(default_factory=dict)

    @property
    def transient(self) -> bool:
        return self.error_kind is not None and self.error_kind.transient


class ChannelSender(Protocol):
    """
    Контракт провайдера одного канала (Twilio для sms, SendGrid для email).
    Адрес уже провалидирован; один HTTP-вызов, без внутренних ретраев.
    """

    provider: str

    def send(
        self,
        *,
        address: str,
        content: str,
        subject: str | None = None,
        tenant_id: str | None = None,
    ) -> DeliveryResult: ...


class ChannelAdapter(Protocol):
    """
    Контракт адаптера доставки, которым пользуются процессоры.
    """

    def deliver(
        self,
        channel: Channel,
        address: str,
        content: str,
        *,
        subject: str | None = None,
        tenant_id: str | None = None,
    ) -> DeliveryResult: ...
