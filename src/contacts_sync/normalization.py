from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Any, Optional

import pandas as pd
import phonenumbers
from email_validator import EmailNotValidError, validate_email

logger = logging.getLogger(__name__)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

# Characters that cannot appear in a derived document filename.
UNSAFE_FILENAME_RE = re.compile(r'[\\/:"*?<>|]+')
LEGACY_FILENAME_RE = re.compile(r"[^a-zA-Z0-9]")
CJK_RE = re.compile(r"[㐀-䶿一-鿿]")
LATIN_RE = re.compile(r"[a-zA-Z]")
NON_DIGIT_RE = re.compile(r"\D")


def _coerce_to_string(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and pd.isna(value):
        return ""
    return str(value).strip()


def clean_text(value: Any) -> str:
    return _coerce_to_string(value)


def digits_only(value: Optional[str]) -> str:
    return NON_DIGIT_RE.sub("", value or "")


def has_cjk(value: Optional[str]) -> bool:
    return bool(CJK_RE.search(value or ""))


def has_latin(value: Optional[str]) -> bool:
    return bool(LATIN_RE.search(value or ""))


def sanitize_filename(name: Optional[str]) -> str:
    """Filename stem for a contact's derived document.

    Runs of ``\\ / : " * ? < > |`` collapse to a single underscore, so applying
    the function twice gives the same result as applying it once.
    """
    return UNSAFE_FILENAME_RE.sub("_", (name or "").strip())


def legacy_filename(name: Optional[str]) -> str:
    """Filename stem used by the older naming rule (kept for cleanup only)."""
    return LEGACY_FILENAME_RE.sub("_", name or "").lower()


def parse_int(value: Any, default: int = 0) -> int:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return default


def parse_timestamp(value: Optional[str]) -> datetime:
    text = (value or "").strip()
    if not text:
        return EPOCH
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        logger.debug("Unparseable timestamp %r treated as epoch", value)
        return EPOCH
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_timestamp(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace(
        "+00:00", "Z"
    )


def utc_now_iso() -> str:
    return format_timestamp(datetime.now(timezone.utc))


def validate_email_safe(raw: str, check_deliverability: bool = False) -> str:
    candidate = (raw or "").strip()
    if not candidate:
        return ""
    try:
        result = validate_email(candidate, check_deliverability=check_deliverability)
    except EmailNotValidError:
        return ""
    return result.normalized


def format_phone_e164_safe(value: str, default_country: str = "US") -> str:
    s = (value or "").strip()
    if not s:
        return ""
    try:
        region = None if s.startswith("+") else default_country
        parsed = phonenumbers.parse(s, region)
    except phonenumbers.NumberParseException:
        logger.debug("phonenumbers.parse failed for %s", s)
        return s
    if not phonenumbers.is_possible_number(parsed):
        return s
    return phonenumbers.format_number(parsed, phonenumbers.PhoneNumberFormat.E164)


__all__ = [
    "EPOCH",
    "clean_text",
    "digits_only",
    "format_phone_e164_safe",
    "format_timestamp",
    "has_cjk",
    "has_latin",
    "legacy_filename",
    "parse_int",
    "parse_timestamp",
    "sanitize_filename",
    "utc_now_iso",
    "validate_email_safe",
]
