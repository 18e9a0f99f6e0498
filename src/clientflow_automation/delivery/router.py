"""
Адаптер доставки по каналам.

- проверяет адрес ДО обращения к провайдеру (InvalidAddress без HTTP)
- выбирает провайдера канала и делает ровно один вызов
- считает метрики доставок
"""

from __future__ import annotations

from clientflow_automation.common.config import Settings, get_settings
from clientflow_automation.common.logging import get_delivery_logger
from clientflow_automation.common.metrics import record_delivery
from clientflow_automation.common.utils import mask_address
from clientflow_automation.domain.enums import Channel

from .addresses import normalize_address
from .base import ChannelAdapter, ChannelSender, DeliveryErrorKind, DeliveryResult
from .email.sendgrid import SendGridEmailSender
from .mock import MockChannelAdapter
from .results import fail_result
from .sms.twilio import TwilioSmsSender

log = get_delivery_logger()


class ChannelRouter:
    def __init__(self, senders: dict[Channel, ChannelSender]) -> None:
        self._senders = senders

    def deliver(
        self,
        channel: Channel,
        address: str,
        content: str,
        *,
        subject: str | None = None,
        tenant_id: str | None = None,
    ) -> DeliveryResult:
        sender = self._senders[channel]
        normalized = normalize_address(channel, address)
        if normalized is None:
            log.warning(
                "delivery_invalid_address",
                extra={"payload": {"channel": channel.value, "to": mask_address(address)}},
            )
            result = fail_result(sender.provider, DeliveryErrorKind.invalid_address, "invalid_address")
        else:
            result = sender.send(
                address=normalized, content=content, subject=subject, tenant_id=tenant_id
            )
        record_delivery(channel.value, result)
        return result


def build_channel_adapter(settings: Settings | None = None) -> ChannelAdapter:
    s = settings or get_settings()
    if (s.delivery_provider or "").strip().lower() == "mock":
        return MockChannelAdapter()
    return ChannelRouter(
        {
            Channel.sms: TwilioSmsSender(s),
            Channel.email: SendGridEmailSender(s),
        }
    )
