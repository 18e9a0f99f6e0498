"""
Mock-адаптер доставки.

Используется:
- в тестах (запись вызовов + сценарий ответов)
- локально при DELIVERY_PROVIDER=mock
"""

from __future__ import annotations

import threading
from dataclasses import dataclass

from clientflow_automation.common.ids import new_uuid
from clientflow_automation.common.logging import get_delivery_logger
from clientflow_automation.common.utils import mask_address
from clientflow_automation.domain.enums import Channel

from .addresses import normalize_address
from .base import DeliveryErrorKind, DeliveryResult
from .results import fail_result, ok_result

log = get_delivery_logger()


@dataclass
class DeliveryCall:
    channel: Channel
    address: str
    content: str
    subject: str | None
    tenant_id: str | None


class MockChannelAdapter:
    """
    Ответы берутся из очереди сценария (script); когда она пуста, успех.
    Элемент сценария: None (успех) или DeliveryErrorKind (ошибка этого вида).
    """

    provider = "mock"

    def __init__(self, script: list[DeliveryErrorKind | None] | None = None) -> None:
        self.calls: list[DeliveryCall] = []
        self._script = list(script or [])
        self._lock = threading.Lock()

    def fail_next(self, *kinds: DeliveryErrorKind) -> None:
        with self._lock:
            self._script.extend(kinds)

    def deliver(
        self,
        channel: Channel,
        address: str,
        content: str,
        *,
        subject: str | None = None,
        tenant_id: str | None = None,
    ) -> DeliveryResult:
        with self._lock:
            if normalize_address(channel, address) is None:
                return fail_result(self.provider, DeliveryErrorKind.invalid_address, "invalid_address")
            self.calls.append(
                DeliveryCall(
                    channel=channel,
                    address=address,
                    content=content,
                    subject=subject,
                    tenant_id=tenant_id,
                )
            )
            planned = self._script.pop(0) if self._script else None

        log.info(
            "mock_delivery",
            extra={
                "payload": {
                    "channel": channel.value,
                    "to": mask_address(address),
                    "planned_error": planned.value if planned else None,
                }
            },
        )
        if planned is not None:
            return fail_result(self.provider, planned, f"mock_{planned.value}")
        return ok_result(self.provider, message_id=f"mock_{new_uuid()}")
