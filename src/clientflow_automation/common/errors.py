"""
Единые ошибки и коды ошибок.

Назначение:
- предсказуемые коды для HTTP/очередей/журнала активностей
- разделение ошибок на постоянные (без ретрая) и временные (ретрай)
- единый стиль исключений по проекту
"""

from __future__ import annotations

from dataclasses import dataclass


class ErrCode:
    # Общие
    NOT_FOUND = "not_found"

    # Постановка задач
    INVALID_JOB_REQUEST = "invalid_job_request"

    # Обработка задач
    INVALID_PAYLOAD = "invalid_payload"
    CONTACT_NOT_FOUND = "contact_not_found"
    TENANT_NOT_FOUND = "tenant_not_found"
    NO_DELIVERABLE_ADDRESS = "no_deliverable_address"
    JOB_STALLED = "stalled"
    SNAPSHOT_LOCKED = "snapshot_locked"
    PROCESSOR_ERROR = "processor_error"

    # Провайдеры доставки
    INVALID_ADDRESS = "invalid_address"
    PROVIDER_REJECTED = "provider_rejected"
    PROVIDER_UNAVAILABLE = "provider_unavailable"

    # Инфра/хранилища
    REDIS_ERROR = "redis_error"


# Коды, при которых повтор задачи бессмысленен
PERMANENT_CODES = frozenset(
    {
        ErrCode.INVALID_JOB_REQUEST,
        ErrCode.INVALID_PAYLOAD,
        ErrCode.CONTACT_NOT_FOUND,
        ErrCode.TENANT_NOT_FOUND,
        ErrCode.NO_DELIVERABLE_ADDRESS,
        ErrCode.INVALID_ADDRESS,
        ErrCode.PROVIDER_REJECTED,
    }
)


def is_retryable(code: str | None) -> bool:
    """Всё, что не является постоянной ошибкой, считаем временным."""
    return code not in PERMANENT_CODES


@dataclass
class AppError(Exception):
    """
    Базовая ошибка приложения.
    - code: стабильный код ошибки
    - message: безопасное сообщение
    - details: доп. данные (без секретов/PII)
    """

    code: str
    message: str
    details: dict | None = None

    def __str__(self) -> str:  # pragma: no cover
        return f"{self.code}: {self.message}"


class InvalidJobRequest(AppError):
    """Задача отклонена при постановке в очередь (ничего не поставлено)."""

    def __init__(self, message: str, details: dict | None = None) -> None:
        super().__init__(ErrCode.INVALID_JOB_REQUEST, message, details)


class JobError(AppError):
    """
    Ошибка обработки задачи воркером.

    retryable вычисляется по коду, если явно не передан.
    """

    def __init__(
        self,
        code: str,
        message: str,
        details: dict | None = None,
        *,
        retryable: bool | None = None,
    ) -> None:
        super().__init__(code, message, details)
        self.retryable = is_retryable(code) if retryable is None else retryable


class ContactNotFound(JobError):
    def __init__(self, message: str = "Контакт не найден", details: dict | None = None) -> None:
        super().__init__(ErrCode.CONTACT_NOT_FOUND, message, details)


class TenantNotFound(JobError):
    def __init__(self, message: str = "Организация не найдена", details: dict | None = None) -> None:
        super().__init__(ErrCode.TENANT_NOT_FOUND, message, details)


class NoDeliverableAddress(JobError):
    def __init__(
        self, message: str = "У контакта нет ни телефона, ни email", details: dict | None = None
    ) -> None:
        super().__init__(ErrCode.NO_DELIVERABLE_ADDRESS, message, details)


class InvalidPayload(JobError):
    def __init__(self, message: str = "Некорректный payload задачи", details: dict | None = None) -> None:
        super().__init__(ErrCode.INVALID_PAYLOAD, message, details)
