"""
Утилиты для работы с результатами доставки.

Назначение:
- Нормализация ошибок провайдеров (HTTP статус -> вид ошибки)
- Единое представление статусов для журнала активностей/логов
"""

from __future__ import annotations

from .base import DeliveryErrorKind, DeliveryResult

# 408/429: провайдер просит повторить позже
_TRANSIENT_4XX = frozenset({408, 429})


def ok_result(
    provider: str, message_id: str | None = None, meta: dict | None = None
) -> DeliveryResult:
    return DeliveryResult(
        succeeded=True, provider=provider, provider_message_id=message_id, meta=meta or {}
    )


def fail_result(
    provider: str, kind: DeliveryErrorKind, error: str, meta: dict | None = None
) -> DeliveryResult:
    return DeliveryResult(
        succeeded=False, provider=provider, error_kind=kind, error=error[:500], meta=meta or {}
    )


def kind_for_status(status_code: int) -> DeliveryErrorKind:
    if status_code >= 500 or status_code in _TRANSIENT_4XX:
        return DeliveryErrorKind.provider_unavailable
    return DeliveryErrorKind.provider_rejected
