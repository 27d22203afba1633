"""Parsing and display formatting helpers for quote values."""

from __future__ import annotations

import math
import re
import unicodedata
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Mapping, Optional

from dateutil import parser as dateutil_parser

_LEADING_NUMBER = re.compile(r"^\s*[-+]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][-+]?\d+)?")
_NON_ALNUM_RUN = re.compile(r"[^a-z0-9]+")

FILENAME_MAX_LENGTH = 50


def is_absent(value: Any) -> bool:
    if value is None or value is False:
        return True
    if isinstance(value, str) and not value.strip():
        return True
    return False


def first_present(record: Mapping[str, Any], *keys: str) -> Any:
    """Return the first non-absent value among ``keys``, or None."""
    for key in keys:
        value = record.get(key)
        if not is_absent(value):
            return value
    return None


def safe_float(value: Any, default: float = 0.0) -> float:
    """Parse ``value`` leniently; accepts a decimal comma and trailing units ("12,5 m")."""
    if is_absent(value):
        return default
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        match = _LEADING_NUMBER.match(value.replace(",", "."))
        if match is None:
            return default
        number = float(match.group(0))
    else:
        return default
    return number if math.isfinite(number) else default


def safe_int(value: Any, default: int = 0) -> int:
    number = safe_float(value, math.nan)
    if math.isnan(number):
        return default
    return int(number)


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def fixed(value: float, precision: int = 0) -> str:
    """Fixed-point text with ties rounded away from zero ("2.5" -> "3")."""
    if not math.isfinite(value):
        return "0"
    exponent = Decimal(1).scaleb(-precision)
    try:
        rounded = Decimal(value).quantize(exponent, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        return f"{value:.{precision}f}"
    if rounded.is_zero():
        rounded = abs(rounded)
    return f"{rounded:f}"


def fmt_number(value: float, precision: int = 2) -> str:
    """Format ``value`` the French way: '1 234,50'."""
    if not math.isfinite(value):
        value = 0.0
    text = fixed(value, precision)
    sign = ""
    if text.startswith("-"):
        sign, text = "-", text[1:]
    integer, _, decimals = text.partition(".")
    grouped = f"{int(integer):,}".replace(",", " ")
    return sign + (f"{grouped},{decimals}" if decimals else grouped)


def parse_date(raw: Any) -> Optional[date]:
    """Parse ISO dates as-is and anything else day-first ('14/03/2025')."""
    if not isinstance(raw, str) or not raw.strip():
        return None
    raw = raw.strip()
    try:
        return datetime.fromisoformat(raw).date()
    except ValueError:
        pass
    try:
        return dateutil_parser.parse(raw, dayfirst=True).date()
    except (ValueError, OverflowError):
        return None


def fmt_date(value: date) -> str:
    """Return ``value`` formatted as '14/03/2025'."""
    return value.strftime("%d/%m/%Y")


def today() -> date:
    return datetime.now().date()


def ascii_fold(text: str) -> str:
    normalized = unicodedata.normalize("NFKD", text)
    return normalized.encode("ascii", "ignore").decode("ascii")


def sanitize_filename(text: str, fallback: str = "client") -> str:
    slug = _NON_ALNUM_RUN.sub("-", ascii_fold(text).lower()).strip("-")
    slug = slug[:FILENAME_MAX_LENGTH].rstrip("-")
    return slug or fallback
