from __future__ import annotations

from typing import Any

import requests

from clientflow_automation.common.config import Settings
from clientflow_automation.delivery.base import DeliveryErrorKind
from clientflow_automation.delivery.email.sendgrid import SendGridEmailSender
from clientflow_automation.delivery.mock import MockChannelAdapter
from clientflow_automation.delivery.results import kind_for_status
from clientflow_automation.delivery.router import ChannelRouter, build_channel_adapter
from clientflow_automation.delivery.sms.twilio import TwilioSmsSender
from clientflow_automation.domain.enums import Channel


class _FakeResponse:
    def __init__(self, status_code: int = 201, body: Any = None, headers: dict | None = None) -> None:
        self.status_code = status_code
        self._body = body if body is not None else {}
        self.headers = headers or {}
        self.text = str(self._body)

    def json(self) -> Any:
        return self._body


class _FakeSession:
    def __init__(self, response: _FakeResponse | None = None, error: Exception | None = None) -> None:
        self.response = response or _FakeResponse()
        self.error = error
        self.calls: list[dict[str, Any]] = []

    def post(self, url: str, **kwargs) -> _FakeResponse:
        self.calls.append({"url": url, **kwargs})
        if self.error is not None:
            raise self.error
        return self.response


def _settings(**overrides) -> Settings:
    base = {
        "TWILIO_ACCOUNT_SID": "AC123",
        "TWILIO_AUTH_TOKEN": "secret",
        "TWILIO_PHONE_NUMBER": "+15550001111",
        "TWILIO_STATUS_CALLBACK_URL": "https://hooks.example.com/twilio/status",
        "SENDGRID_API_KEY": "SG.key",
        "SENDGRID_FROM": "noreply@clientflow.ai",
    }
    base.update(overrides)
    return Settings(**base)


def test_twilio_posts_form_and_returns_sid():
    http = _FakeSession(_FakeResponse(201, {"sid": "SM42"}))
    sender = TwilioSmsSender(_settings(), session=http)

    result = sender.send(address="+15551234567", content="hello", tenant_id="org_1")

    assert result.succeeded is True
    assert result.provider == "twilio"
    assert result.provider_message_id == "SM42"
    call = http.calls[0]
    assert call["url"].endswith("/2010-04-01/Accounts/AC123/Messages.json")
    assert call["data"]["To"] == "+15551234567"
    assert call["data"]["From"] == "+15550001111"
    assert call["data"]["Body"] == "hello"
    assert call["data"]["StatusCallback"].endswith("/twilio/status?orgId=org_1")
    assert call["auth"] == ("AC123", "secret")


def test_twilio_accepted_with_unexpected_body_is_still_sent():
    http = _FakeSession(_FakeResponse(201, ["SM42"]))
    result = TwilioSmsSender(_settings(), session=http).send(address="+15551234567", content="x")
    assert result.succeeded is True
    assert result.provider_message_id is None


def test_twilio_5xx_is_transient():
    http = _FakeSession(_FakeResponse(503, {"message": "busy"}))
    result = TwilioSmsSender(_settings(), session=http).send(address="+15551234567", content="x")
    assert result.succeeded is False
    assert result.error_kind == DeliveryErrorKind.provider_unavailable
    assert result.transient is True


def test_twilio_4xx_is_permanent():
    http = _FakeSession(_FakeResponse(400, {"code": 21211}))
    result = TwilioSmsSender(_settings(), session=http).send(address="+15551234567", content="x")
    assert result.error_kind == DeliveryErrorKind.provider_rejected
    assert result.transient is False


def test_twilio_network_error_is_transient():
    http = _FakeSession(error=requests.ConnectionError("reset"))
    result = TwilioSmsSender(_settings(), session=http).send(address="+15551234567", content="x")
    assert result.error_kind == DeliveryErrorKind.provider_unavailable


def test_twilio_unconfigured_sandbox():
    http = _FakeSession()
    s = _settings(TWILIO_ACCOUNT_SID="", DELIVERY_SANDBOX_WHEN_UNCONFIGURED=True)
    result = TwilioSmsSender(s, session=http).send(address="+15551234567", content="x")
    assert result.succeeded is True
    assert result.provider_message_id.startswith("sandbox_")
    assert http.calls == []


def test_twilio_unconfigured_without_sandbox_is_rejected():
    s = _settings(TWILIO_ACCOUNT_SID="", DELIVERY_SANDBOX_WHEN_UNCONFIGURED=False)
    result = TwilioSmsSender(s, session=_FakeSession()).send(address="+15551234567", content="x")
    assert result.succeeded is False
    assert result.error_kind == DeliveryErrorKind.provider_rejected


def test_twilio_unconfigured_outside_dev_is_rejected_by_default():
    http = _FakeSession()
    s = _settings(TWILIO_ACCOUNT_SID="", APP_ENV="prod")
    assert s.delivery_sandbox_enabled is False

    result = TwilioSmsSender(s, session=http).send(address="+15551234567", content="x")
    assert result.succeeded is False
    assert result.error_kind == DeliveryErrorKind.provider_rejected
    assert http.calls == []


def test_sandbox_default_follows_app_env():
    assert _settings(APP_ENV="dev").delivery_sandbox_enabled is True
    assert _settings(APP_ENV="prod", DELIVERY_SANDBOX_WHEN_UNCONFIGURED=True).delivery_sandbox_enabled is True
    assert _settings(APP_ENV="dev", DELIVERY_SANDBOX_WHEN_UNCONFIGURED=False).delivery_sandbox_enabled is False


def test_sendgrid_posts_json_and_reads_message_id():
    http = _FakeSession(_FakeResponse(202, headers={"X-Message-Id": "msg-1"}))
    sender = SendGridEmailSender(_settings(), session=http)

    result = sender.send(address="bob@example.com", content="a <b>\nc", subject="Hi", tenant_id="org_1")

    assert result.succeeded is True
    assert result.provider_message_id == "msg-1"
    call = http.calls[0]
    assert call["url"].endswith("/v3/mail/send")
    assert call["headers"]["Authorization"] == "Bearer SG.key"
    body = call["json"]
    assert body["personalizations"][0]["to"][0]["email"] == "bob@example.com"
    assert body["subject"] == "Hi"
    assert body["content"][0] == {"type": "text/plain", "value": "a <b>\nc"}
    assert body["content"][1]["value"] == "a &lt;b&gt;<br>c"
    assert body["custom_args"] == {"org_id": "org_1"}


def test_sendgrid_429_is_transient():
    http = _FakeSession(_FakeResponse(429))
    result = SendGridEmailSender(_settings(), session=http).send(address="bob@example.com", content="x")
    assert result.transient is True


def test_kind_for_status():
    assert kind_for_status(500) == DeliveryErrorKind.provider_unavailable
    assert kind_for_status(408) == DeliveryErrorKind.provider_unavailable
    assert kind_for_status(401) == DeliveryErrorKind.provider_rejected


def test_router_rejects_invalid_address_without_http():
    sms_http = _FakeSession()
    email_http = _FakeSession()
    router = ChannelRouter(
        {
            Channel.sms: TwilioSmsSender(_settings(), session=sms_http),
            Channel.email: SendGridEmailSender(_settings(), session=email_http),
        }
    )

    bad_sms = router.deliver(Channel.sms, "555-12", "x")
    bad_email = router.deliver(Channel.email, "not-an-email", "x")

    assert bad_sms.error_kind == DeliveryErrorKind.invalid_address
    assert bad_email.error_kind == DeliveryErrorKind.invalid_address
    assert bad_sms.transient is False
    assert sms_http.calls == []
    assert email_http.calls == []


def test_router_normalizes_phone_before_send():
    http = _FakeSession(_FakeResponse(201, {"sid": "SM1"}))
    router = ChannelRouter({Channel.sms: TwilioSmsSender(_settings(), session=http)})

    result = router.deliver(Channel.sms, "+1 (555) 123-4567", "x")

    assert result.succeeded is True
    assert http.calls[0]["data"]["To"] == "+15551234567"


def test_build_channel_adapter_mock_mode():
    assert isinstance(build_channel_adapter(_settings(DELIVERY_PROVIDER="mock")), MockChannelAdapter)
    assert isinstance(build_channel_adapter(_settings(DELIVERY_PROVIDER="live")), ChannelRouter)


def test_mock_adapter_script():
    adapter = MockChannelAdapter([DeliveryErrorKind.provider_unavailable])
    first = adapter.deliver(Channel.email, "a@example.com", "x", subject="s", tenant_id="t")
    second = adapter.deliver(Channel.email, "a@example.com", "x")

    assert first.transient is True
    assert second.succeeded is True
    assert [c.subject for c in adapter.calls] == ["s", None]
