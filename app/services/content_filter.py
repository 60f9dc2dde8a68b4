from __future__ import annotations

import re

from app.core.config import banned_words, settings

_LINK_RE = re.compile(r"http|www", re.IGNORECASE)
_TAG_RE = re.compile(r"<[^>]*>")
_NON_DIGIT_RE = re.compile(r"\D")


def is_content_clean(*parts: str | None) -> bool:
    """False when the text carries a banned term or too many links."""
    text = " ".join(p for p in parts if p).lower()
    if not text:
        return True
    for word in banned_words():
        if word in text:
            return False
    return len(_LINK_RE.findall(text)) <= settings.MAX_LINKS_IN_CONTENT


def strip_tags(value: str | None) -> str:
    return _TAG_RE.sub("", value or "").strip()


def digits_only(value: str | None) -> str:
    return _NON_DIGIT_RE.sub("", value or "")


def format_phone(value: str | None) -> str:
    phone = digits_only(value)
    if len(phone) == 11:
        return f"({phone[:2]}) {phone[2:7]}-{phone[7:]}"
    if len(phone) == 10:
        return f"({phone[:2]}) {phone[2:6]}-{phone[6:]}"
    return phone
