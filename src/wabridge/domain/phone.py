"""Phone number and JID helpers.

JID formats:
- individual: "<number>@s.whatsapp.net"
- group:      "<id>@g.us"
"""

from __future__ import annotations

import os
import re

GROUP_JID_MARKER = "@g.us"

MIN_PHONE_DIGITS = 8

_NON_DIGITS = re.compile(r"[^0-9]")


def _default_country_code() -> str:
    return os.environ.get("DEFAULT_COUNTRY_CODE", "62")


def extract_number(jid: str) -> str:
    """Strip the resource suffix after "@" from a JID.

    Example:
        "6281234@s.whatsapp.net" -> "6281234"
        "120363041234@g.us" -> "120363041234"
    """
    return jid.split("@", 1)[0]


def is_group_jid(jid: str) -> bool:
    return GROUP_JID_MARKER in jid


def normalize_phone_number(phone: str) -> str | None:
    """Normalize a user-supplied phone number to international digits.

    - non-digits are removed
    - fewer than MIN_PHONE_DIGITS digits -> None (invalid)
    - a leading "0" (trunk prefix) is replaced by DEFAULT_COUNTRY_CODE

    Example:
        "0812-3456-789" -> "628123456789" (default country code 62)
    """
    digits = _NON_DIGITS.sub("", phone)
    if len(digits) < MIN_PHONE_DIGITS:
        return None
    if digits.startswith("0"):
        digits = _default_country_code() + digits[1:]
    return digits

