"""
Отправка SMS через Twilio REST API.

Назначение:
- один POST на Messages.json (form-encoded, basic auth)
- необязательный StatusCallback с идентификатором организации

Важно:
- не логировать текст сообщения и номер целиком (только маска)
- без ретраев внутри: повтор решает рантайм очереди
"""

from __future__ import annotations

from datetime import UTC, datetime

import requests

from clientflow_automation.common.config import Settings, get_settings
from clientflow_automation.common.logging import get_delivery_logger
from clientflow_automation.common.utils import mask_address
from clientflow_automation.delivery.base import DeliveryErrorKind, DeliveryResult
from clientflow_automation.delivery.results import fail_result, kind_for_status, ok_result

log = get_delivery_logger()

PROVIDER = "twilio"


class TwilioSmsSender:
    provider = PROVIDER

    def __init__(self, settings: Settings | None = None, *, session: requests.Session | None = None) -> None:
        self.s = settings or get_settings()
        self._http = session or requests.Session()

    @property
    def configured(self) -> bool:
        return bool(self.s.twilio_account_sid and self.s.twilio_auth_token and self.s.twilio_phone_number)

    def _status_callback(self, tenant_id: str | None) -> str | None:
        base = (self.s.twilio_status_callback_url or "").strip()
        if not base:
            return None
        if tenant_id:
            sep = "&" if "?" in base else "?"
            return f"{base}{sep}orgId={tenant_id}"
        return base

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
                    "sms_sandbox_send",
                    extra={"payload": {"to": mask_address(address), "tenant_id": tenant_id}},
                )
                return ok_result(PROVIDER, message_id=sandbox_id, meta={"sandbox": True})
            return fail_result(PROVIDER, DeliveryErrorKind.provider_rejected, "twilio_not_configured")

        url = (
            f"{self.s.twilio_api_base.rstrip('/')}/2010-04-01/Accounts/"
            f"{self.s.twilio_account_sid}/Messages.json"
        )
        form = {"To": address, "From": self.s.twilio_phone_number, "Body": content}
        callback = self._status_callback(tenant_id)
        if callback:
            form["StatusCallback"] = callback

        try:
            resp = self._http.post(
                url,
                data=form,
                auth=(self.s.twilio_account_sid, self.s.twilio_auth_token),
                timeout=self.s.delivery_timeout_sec,
            )
        except requests.RequestException as e:
            log.warning(
                "sms_http_error",
                extra={"payload": {"to": mask_address(address), "err": str(e)[:200]}},
            )
            return fail_result(PROVIDER, DeliveryErrorKind.provider_unavailable, str(e))

        if resp.status_code >= 400:
            kind = kind_for_status(resp.status_code)
            log.warning(
                "sms_send_failed",
                extra={
                    "payload": {
                        "to": mask_address(address),
                        "status": resp.status_code,
                        "error_kind": kind.value,
                    }
                },
            )
            return fail_result(
                PROVIDER, kind, f"twilio_http_{resp.status_code}: {resp.text[:200]}"
            )

        try:
            body = resp.json()
        except ValueError:
            body = None
        message_id = body.get("sid") if isinstance(body, dict) else None

        log.info(
            "sms_sent",
            extra={"payload": {"to": mask_address(address), "provider_message_id": message_id}},
        )
        return ok_result(PROVIDER, message_id=message_id)
