import pytest

from clientflow_automation.common.errors import ErrCode, NoDeliverableAddress
from clientflow_automation.delivery.addresses import is_valid_email, normalize_phone
from clientflow_automation.domain.enums import Channel
from clientflow_automation.processors.channels import select_channel


def test_phone_wins_over_email():
    choice = select_channel("+15551234567", "a@example.com")
    assert choice.channel == Channel.sms
    assert choice.address == "+15551234567"


def test_email_when_no_phone():
    choice = select_channel(None, " a@example.com ")
    assert choice.channel == Channel.email
    assert choice.address == "a@example.com"


@pytest.mark.parametrize("phone,email", [(None, None), ("", ""), ("   ", None), (None, "  ")])
def test_blank_values_count_as_absent(phone, email):
    with pytest.raises(NoDeliverableAddress) as e:
        select_channel(phone, email)
    assert e.value.code == ErrCode.NO_DELIVERABLE_ADDRESS
    assert e.value.retryable is False


def test_blank_phone_falls_back_to_email():
    assert select_channel("  ", "a@example.com").channel == Channel.email


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("+15551234567", "+15551234567"),
        ("(555) 123-4567", "5551234567"),
        ("555.123.4567", "5551234567"),
        ("12345", None),
        ("+1555abc4567", None),
        ("", None),
    ],
)
def test_normalize_phone(raw, expected):
    assert normalize_phone(raw) == expected


def test_email_validation():
    assert is_valid_email("first.last+tag@mail.example.org")
    assert not is_valid_email("no-at-sign.example.com")
    assert not is_valid_email("a@b")
