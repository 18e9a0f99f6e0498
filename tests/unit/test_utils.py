from __future__ import annotations

from clientflow_automation.common.utils import mask_address


def test_mask_address_hides_phone_digits():
    assert mask_address("+1 (555) 123-4567") == "+* (***) ***-****"


def test_mask_address_keeps_email_domain():
    assert mask_address("jane.doe@example.com") == "ja***@example.com"


def test_mask_address_passthrough():
    assert mask_address(None) is None
    assert mask_address("") == ""
    assert mask_address("abcdefghijklmn") == "abc***lmn"
