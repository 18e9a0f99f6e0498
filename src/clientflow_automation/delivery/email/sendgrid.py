"""
Отправка email через SendGrid v3 API.

Назначение:
- один POST на /v3/mail/send (bearer auth)
- text + HTML части из одного отрендеренного текста
- message id берётся из заголовка X-Message-Id

Важно:
- не логировать содержимое писем
- логировать только метаданные (кому (маска), статус, message-id)
"""

from __future__ import annotations

import html
from datetime import UTC, datetime
from typing import Any

import requests

from clientflow_automation.common.config import Settings, get_settings
from clientflow_automation.common.logging import get_delivery_logger
from clientflow_automation.common.utils import mask_address
from clientflow_automation.delivery.base import DeliveryErrorKind, DeliveryResult
from clientflow_automation.delivery.results import fail_result, kind_for_status, ok_result

log = get_delivery_logger()

PROVIDER = "sendgrid"


def _as_html(text: str) -> str:
    return html.escape(text).replace("\n", "<br>")


class SendGridEmailSender:
    provider = PROVIDER

    def __init__(self, settings: Settings | None = None, *, session: requests.Session | None = None) -> None:
        self.s = settings or get_settings()
        self._http = session or requests.Session()

    @property
    def configured(self) -> bool:
        return bool(self.s.sendgrid_api_key)

    def _body(self, *, address: str, content: str, subject: str | None, tenant_id: str | None) -> dict[str, Any]:
        body: dict[str, Any] = {
            "personalizations": [{"to": [{"email": address}]}],
            "from": {"email": self.s.sendgrid_from},
            "subject": subject or "Message",
            "content": [
                {"type": "text/plain", "value": content},
                {"type": "text/html", "value": _as_html(content)},
            ],
        }
        if tenant_id:
            body["custom_args"] = {"org_id": tenant_id}
        return body

    def send(
        self,
        *,
        address: str,
        content: str,
        subject: str | None = None,
        tenant_id: str | None = None,
    ) -> DeliveryResult:
        if not self.configured:
            if self.s.delivery_sandbox_enabled:
                sandbox_id = f"sandbox_{int(datetime.now(UTC).timestamp() * 1000)}"
                log.info(
                    "email_sandbox_send",
                    extra={"payload": {"to": mask_address(address), "tenant_id": tenant_id}},
                )
                return ok_result(PROVIDER, message_id=sandbox_id, meta={"sandbox": True})
            return fail_result(PROVIDER, DeliveryErrorKind.provider_rejected, "sendgrid_not_configured")

        url = f"{self.s.sendgrid_api_base.rstrip('/')}/v3/mail/send"
        headers = {
            "Authorization": f"Bearer {self.s.sendgrid_api_key}",
            "Content-Type": "application/json",
        }
        try:
            resp = self._http.post(
                url,
                headers=headers,
                json=self._body(address=address, content=content, subject=subject, tenant_id=tenant_id),
                timeout=self.s.delivery_timeout_sec,
            )
        except requests.RequestException as e:
            log.warning(
                "email_http_error",
                extra={"payload": {"to": mask_address(address), "err": str(e)[:200]}},
            )
            return fail_result(PROVIDER, DeliveryErrorKind.provider_unavailable, str(e))

        if resp.status_code >= 400:
            kind = kind_for_status(resp.status_code)
            log.warning(
                "email_send_failed",
                extra={
                    "payload": {
                        "to": mask_address(address),
                        "status": resp.status_code,
                        "error_kind": kind.value,
                    }
                },
            )
            return fail_result(
                PROVIDER, kind, f"sendgrid_http_{resp.status_code}: {resp.text[:200]}"
            )

        message_id = resp.headers.get("X-Message-Id")
        log.info(
            "email_sent",
            extra={"payload": {"to": mask_address(address), "provider_message_id": message_id}},
        )
        return ok_result(PROVIDER, message_id=message_id)
