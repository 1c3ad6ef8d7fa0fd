"""
Phone number helpers for WhatsApp (Brazilian numbers)
"""
import re
from typing import Optional

WHATSAPP_SUFFIXES = ("@s.whatsapp.net", "@c.us")


def jid_to_phone(remote_jid: str) -> str:
    """Strip the WhatsApp JID suffix: '5511999999999@s.whatsapp.net' -> '5511999999999'"""
    if not remote_jid:
        return ""
    for suffix in WHATSAPP_SUFFIXES:
        if remote_jid.endswith(suffix):
            return remote_jid[: -len(suffix)]
    return remote_jid.split("@")[0]


def normalize_phone(phone: Optional[str]) -> str:
    """Canonical digits-only form used for client matching."""
    return re.sub(r"\D", "", phone or "")


def format_brazilian_phone(phone: Optional[str]) -> Optional[str]:
    """
    Format a phone number as +55 (11) 99999-9999

    Numbers without the country code get 55 prepended. Returns None when the
    digits cannot be a Brazilian landline or mobile number.
    """
    digits = normalize_phone(phone)
    if len(digits) in (10, 11):
        digits = "55" + digits
    if not digits.startswith("55") or len(digits) not in (12, 13):
        return None

    area = digits[2:4]
    local = digits[4:]
    return f"+55 ({area}) {local[:-4]}-{local[-4:]}"


def mask_phone(phone: Optional[str]) -> str:
    """Mask a phone number for logs: 5511***"""
    digits = normalize_phone(phone)
    if not digits:
        return "***"
    return f"{digits[:4]}***"
