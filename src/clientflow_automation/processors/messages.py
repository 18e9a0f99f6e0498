"""
Процессоры очередей сообщений: reminders / nurture / dunning.

Шаги одной попытки:
1) проверка payload по виду задачи (invalid_payload -> терминально)
2) тенант + контакт (не найдены -> терминально)
3) рендер текста
4) выбор канала: sms > email > no_deliverable_address (без вызова адаптера)
5) один вызов адаптера; временная ошибка -> ретрай, постоянная -> терминально
6) одна запись Activity на задачу, дошедшую до финала

Переключения на другой канал после ошибки адаптера нет.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from sqlalchemy.orm import sessionmaker

from clientflow_automation.common.errors import ErrCode, JobError
from clientflow_automation.common.logging import get_project_logger
from clientflow_automation.contracts.jobs import (
    DunningPayload,
    JobEnvelope,
    MessagePayload,
    NurturePayload,
    ReminderPayload,
    parse_payload,
)
from clientflow_automation.delivery.base import ChannelAdapter
from clientflow_automation.domain.enums import ActivityChannel, Channel, JobKind
from clientflow_automation.storage.db import db_session
from clientflow_automation.storage.repositories import ActivityRepository
from clientflow_automation.worker.results import ProcessResult

from .channels import select_channel
from .contacts import ResolvedTarget, resolve_target
from .templates import render_text

log = get_project_logger()

DEFAULT_REMINDER_TEMPLATE = (
    "Reminder: You have an upcoming appointment"
    "{% if scheduled_for %} at {{ scheduled_for }}{% endif %}"
)
DEFAULT_NURTURE_TEMPLATE = "Thank you for your interest! We'll be in touch soon."
DEFAULT_DUNNING_TEMPLATE = (
    "Hi {{ first_name or 'there' }}, your payment of ${{ amount_cents | money }} "
    "is {{ days_overdue }} days overdue."
    "{% if payment_link %} Please pay now: {{ payment_link }}{% endif %}"
)


class MessageProcessor:
    """
    Общая схема процессора сообщений. Наследники задают шаблон по умолчанию,
    тему письма и дополнительные переменные шаблона.
    """

    kind: JobKind
    default_template: str
    subject_template: str

    def __init__(
        self,
        *,
        adapter: ChannelAdapter,
        session_factory: sessionmaker | None = None,
    ) -> None:
        self.adapter = adapter
        self.session_factory = session_factory

    # ------------------------------------------------------------------
    # точки расширения
    # ------------------------------------------------------------------
    def template_vars(self, payload: Any) -> dict[str, Any]:
        return {}

    def activity_meta(self, payload: Any) -> dict[str, Any]:
        return {}

    # ------------------------------------------------------------------
    # общая схема
    # ------------------------------------------------------------------
    def _render(self, target: ResolvedTarget, payload: MessagePayload) -> tuple[str, str]:
        c = target.contact
        context: dict[str, Any] = {
            **(payload.personalization or {}),
            "first_name": c.first_name or "",
            "last_name": c.last_name or "",
            "contact_name": c.full_name,
            "contact_email": c.email or "",
            "contact_phone": c.phone or "",
            "business_name": target.org_name,
            "org_name": target.org_name,
            **self.template_vars(payload),
        }
        template = getattr(payload, "template", None) or self.default_template
        content = render_text(template, context)
        subject = payload.subject or self.subject_template.format(org=target.org_name)
        return content, subject

    def _record(
        self,
        envelope: JobEnvelope,
        *,
        contact_id: str | None,
        channel: str,
        content: str,
        succeeded: bool,
        provider_message_id: str | None = None,
        error_code: str | None = None,
        meta: dict[str, Any] | None = None,
    ) -> None:
        with db_session(self.session_factory) as session:
            created = ActivityRepository(session).record_activity(
                tenant_id=envelope.tenant_id,
                contact_id=contact_id,
                job_id=envelope.job_id,
                job_kind=self.kind.value,
                channel_used=channel,
                content=content,
                succeeded=succeeded,
                provider_message_id=provider_message_id,
                error_code=error_code,
                meta={"attempt": envelope.attempt_count, **(meta or {})},
            )
        if not created:
            log.info(
                "activity_already_recorded",
                extra={"payload": {"job_id": envelope.job_id, "queue": envelope.queue}},
            )

    def process(self, envelope: JobEnvelope) -> ProcessResult:
        ctx: dict[str, Any] = {"channel": ActivityChannel.none.value, "content": "", "contact_id": None}
        try:
            payload = parse_payload(self.kind, envelope.payload)
            ctx["meta"] = self.activity_meta(payload)
            with db_session(self.session_factory) as session:
                target = resolve_target(session, envelope.tenant_id, payload)
            ctx["contact_id"] = target.contact.contact_id

            content, subject = self._render(target, payload)
            ctx["content"] = content
            choice = select_channel(target.contact.phone, target.contact.email)
        except JobError as e:
            if e.retryable:
                raise
            return self._terminal(envelope, e.code, e.message, ctx)

        ctx["channel"] = choice.channel.value
        result = self.adapter.deliver(
            choice.channel,
            choice.address,
            content,
            subject=subject if choice.channel == Channel.email else None,
            tenant_id=envelope.tenant_id,
        )

        if result.succeeded:
            self._record(
                envelope,
                contact_id=ctx["contact_id"],
                channel=choice.channel.value,
                content=content,
                succeeded=True,
                provider_message_id=result.provider_message_id,
                meta={**ctx.get("meta", {}), "provider": result.provider},
            )
            log.info(
                "message_delivered",
                extra={
                    "payload": {
                        "job_id": envelope.job_id,
                        "tenant_id": envelope.tenant_id,
                        "channel": choice.channel.value,
                        "provider_message_id": result.provider_message_id,
                    }
                },
            )
            return ProcessResult.completed(
                {"channel": choice.channel.value, "provider_message_id": result.provider_message_id}
            )

        code = result.error_kind.value if result.error_kind else ErrCode.PROVIDER_UNAVAILABLE
        if result.error_kind is None or result.transient:
            # Activity пишется только на финале (успех, терминальная ошибка или исчерпание попыток)
            return ProcessResult.retryable(
                code,
                result.error or "provider unavailable",
                {
                    "channel": choice.channel.value,
                    "contact_id": ctx["contact_id"],
                    "content": content,
                },
            )
        return self._terminal(envelope, code, result.error or code, ctx)

    def _terminal(
        self, envelope: JobEnvelope, code: str, message: str, ctx: dict[str, Any]
    ) -> ProcessResult:
        self._record(
            envelope,
            contact_id=ctx.get("contact_id"),
            channel=ctx.get("channel") or ActivityChannel.none.value,
            content=ctx.get("content") or "",
            succeeded=False,
            error_code=code,
            meta={**ctx.get("meta", {}), "error": message[:300]},
        )
        log.warning(
            "message_failed_terminal",
            extra={
                "payload": {
                    "job_id": envelope.job_id,
                    "tenant_id": envelope.tenant_id,
                    "error_code": code,
                    "channel": ctx.get("channel"),
                }
            },
        )
        return ProcessResult.terminal(code, message, {"channel": ctx.get("channel")})

    def on_exhausted(self, envelope: JobEnvelope, result: ProcessResult) -> None:
        """
        Попытки исчерпаны: аудит-запись с succeeded=false обязательна.
        """
        data = result.data or {}
        self._record(
            envelope,
            contact_id=data.get("contact_id"),
            channel=data.get("channel") or ActivityChannel.none.value,
            content=data.get("content") or "",
            succeeded=False,
            error_code=result.error_code,
            meta={"error": (result.message or "")[:300], "exhausted": True},
        )


# =============================================================================
# ВИДЫ ЗАДАЧ
# =============================================================================
class ReminderProcessor(MessageProcessor):
    kind = JobKind.reminder
    default_template = DEFAULT_REMINDER_TEMPLATE
    subject_template = "Reminder from {org}"

    def template_vars(self, payload: ReminderPayload) -> dict[str, Any]:
        return {
            "scheduled_for": payload.scheduled_for,
            "reminder_type": payload.reminder_type,
            "appointment_id": payload.appointment_id,
        }

    def activity_meta(self, payload: ReminderPayload) -> dict[str, Any]:
        return {
            "reminder_type": payload.reminder_type,
            "appointment_id": payload.appointment_id,
            "scheduled_for": payload.scheduled_for.isoformat() if payload.scheduled_for else None,
        }


class NurtureProcessor(MessageProcessor):
    kind = JobKind.nurture
    default_template = DEFAULT_NURTURE_TEMPLATE
    subject_template = "Message from {org}"

    def template_vars(self, payload: NurturePayload) -> dict[str, Any]:
        return {"sequence_step": payload.sequence_step}

    def activity_meta(self, payload: NurturePayload) -> dict[str, Any]:
        return {"sequence_step": payload.sequence_step}


class DunningProcessor(MessageProcessor):
    kind = JobKind.dunning
    default_template = DEFAULT_DUNNING_TEMPLATE
    subject_template = "Payment Overdue - {org}"

    def template_vars(self, payload: DunningPayload) -> dict[str, Any]:
        return {
            "amount_cents": payload.amount_cents,
            "days_overdue": payload.days_overdue,
            "payment_link": payload.payment_link,
            "invoice_id": payload.invoice_id,
        }

    def activity_meta(self, payload: DunningPayload) -> dict[str, Any]:
        return {
            "amount_cents": payload.amount_cents,
            "days_overdue": payload.days_overdue,
            "invoice_id": payload.invoice_id,
        }


MESSAGE_PROCESSORS: dict[JobKind, Callable[..., MessageProcessor]] = {
    JobKind.reminder: ReminderProcessor,
    JobKind.nurture: NurtureProcessor,
    JobKind.dunning: DunningProcessor,
}
