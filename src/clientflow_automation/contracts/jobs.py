"""
Контракты задач очереди.

Правила:
- конверт (JobEnvelope) одинаков для всех очередей
- payload в конверте хранится как JSON-совместимый dict и НЕ проверяется очередью
- форма payload фиксирована для каждого вида задачи и проверяется воркером на входе
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Annotated, Any, Literal

from pydantic import (
    AliasChoices,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)
from pydantic import ValidationError as PydanticValidationError

from clientflow_automation.common.errors import InvalidPayload
from clientflow_automation.domain.enums import JobKind


# =============================================================================
# КОНВЕРТ
# =============================================================================
class JobEnvelope(BaseModel):
    """
    Конверт задачи: tenant + вид + произвольный payload.

    attempt_count меняет только рантайм очереди (через model_copy).
    """

    model_config = ConfigDict(frozen=True)

    job_id: str
    queue: str
    tenant_id: str
    job_kind: JobKind
    payload: dict[str, Any] = Field(default_factory=dict)
    enqueued_at: datetime
    attempt_count: int = 0

    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_json(cls, raw: str | bytes) -> JobEnvelope:
        return cls.model_validate_json(raw)


# =============================================================================
# PAYLOAD: общий контакт
# =============================================================================
def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


# Пустая строка или пробелы == значение отсутствует
OptionalText = Annotated[str | None, BeforeValidator(_blank_to_none)]


class InlineContact(BaseModel):
    """
    Контакт, переданный прямо в payload (без записи в БД).
    Пустые строки считаются отсутствующими значениями.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    phone: OptionalText = None
    email: OptionalText = None
    first_name: OptionalText = Field(
        default=None, validation_alias=AliasChoices("first_name", "firstName")
    )
    last_name: OptionalText = Field(
        default=None, validation_alias=AliasChoices("last_name", "lastName")
    )


class _ContactTarget(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    contact_id: OptionalText = Field(
        default=None, validation_alias=AliasChoices("contact_id", "contactId")
    )
    contact: InlineContact | None = None
    subject: str | None = None
    personalization: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _require_target(self) -> _ContactTarget:
        if self.contact_id is None and self.contact is None:
            raise ValueError("contact_id or contact is required")
        return self


# =============================================================================
# PAYLOAD: варианты по видам задач
# =============================================================================
class ReminderPayload(_ContactTarget):
    template: str | None = Field(
        default=None, validation_alias=AliasChoices("template", "message")
    )
    appointment_id: str | None = Field(
        default=None, validation_alias=AliasChoices("appointment_id", "appointmentId")
    )
    scheduled_for: datetime | None = Field(
        default=None, validation_alias=AliasChoices("scheduled_for", "scheduledFor")
    )
    reminder_type: Literal["24h", "3h"] | None = Field(
        default=None, validation_alias=AliasChoices("reminder_type", "reminderType")
    )


class NurturePayload(_ContactTarget):
    template: str | None = Field(
        default=None, validation_alias=AliasChoices("template", "message")
    )
    sequence_step: int | None = Field(
        default=None, ge=0, validation_alias=AliasChoices("sequence_step", "sequenceStep")
    )


class DunningPayload(_ContactTarget):
    amount_cents: int = Field(ge=0, validation_alias=AliasChoices("amount_cents", "amount"))
    days_overdue: int = Field(
        ge=0, validation_alias=AliasChoices("days_overdue", "daysOverdue")
    )
    payment_link: str | None = Field(
        default=None, validation_alias=AliasChoices("payment_link", "paymentLink")
    )
    invoice_id: str | None = Field(
        default=None, validation_alias=AliasChoices("invoice_id", "invoiceId")
    )
    template: str | None = Field(
        default=None, validation_alias=AliasChoices("template", "message")
    )


class SnapshotPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    target_date: date | None = Field(
        default=None, validation_alias=AliasChoices("date", "target_date")
    )

    @field_validator("target_date", mode="before")
    @classmethod
    def _parse_date(cls, value: Any) -> Any:
        # Исторически сюда приходил полный ISO datetime ("2024-03-01T00:00:00.000Z")
        if isinstance(value, str) and "T" in value:
            return value.split("T", 1)[0]
        if isinstance(value, datetime):
            return value.date()
        return _blank_to_none(value)


MessagePayload = ReminderPayload | NurturePayload | DunningPayload
JobPayload = MessagePayload | SnapshotPayload

PAYLOAD_MODELS: dict[JobKind, type[BaseModel]] = {
    JobKind.reminder: ReminderPayload,
    JobKind.nurture: NurturePayload,
    JobKind.dunning: DunningPayload,
    JobKind.snapshot: SnapshotPayload,
}


def parse_payload(kind: JobKind, raw: Any) -> JobPayload:
    """
    Проверка payload на входе воркера.
    Любая ошибка формы -> InvalidPayload (терминальная, без ретрая).
    """
    model = PAYLOAD_MODELS[kind]
    if not isinstance(raw, dict):
        raise InvalidPayload(details={"kind": kind.value, "errors": ["payload must be an object"]})
    try:
        return model.model_validate(raw)
    except PydanticValidationError as e:
        errors = [
            f"{'.'.join(str(p) for p in err.get('loc', ())) or '<root>'}: {err.get('msg')}"
            for err in e.errors()
        ]
        raise InvalidPayload(details={"kind": kind.value, "errors": errors[:10]}) from e
