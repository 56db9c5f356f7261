"""Normalization helpers for payroll names, period keys and cell values."""

from __future__ import annotations

import re
import unicodedata
from calendar import monthrange
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

MIN_PERIOD_YEAR = 2015
MAX_PERIOD_YEAR = 2100

_NON_WORD = re.compile(r"[^\w\s]", re.UNICODE)
_WHITESPACE = re.compile(r"\s+")
_PERIOD_KEY = re.compile(r"^(\d{2})/(\d{4})$")
_LOOSE_PERIOD_KEY = re.compile(r"^(\d{1,2})\s*[/\-]\s*(\d{4})$")
_NUMERIC_NOISE = re.compile(r"[^\d.\-]")


def _is_valid_period_year(year: int) -> bool:
    return MIN_PERIOD_YEAR <= year <= MAX_PERIOD_YEAR


def normalize_payroll_name(name: str) -> str:
    """Fold a free-text payroll name to its matching key.

    Accents are stripped (NFKD), punctuation becomes whitespace, runs of
    whitespace collapse to one space, and the result is trimmed and lowercased.
    "  Ali-Raza, " and "ALI RAZA" both normalize to "ali raza".
    """
    decomposed = unicodedata.normalize("NFKD", name)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    spaced = _NON_WORD.sub(" ", stripped)
    return _WHITESPACE.sub(" ", spaced).strip().lower()


def to_period_key(value: date) -> str:
    """Format a date as an MM/YYYY period key."""
    return f"{value.month:02d}/{value.year:04d}"


def parse_period_key(value: Any) -> str | None:
    """Parse a date or a loose "M/YYYY" / "M-YYYY" string into a period key."""
    if isinstance(value, (date, datetime)):
        if not _is_valid_period_year(value.year):
            return None
        return to_period_key(value)

    if isinstance(value, str):
        match = _LOOSE_PERIOD_KEY.match(value.strip())
        if not match:
            return None
        month = int(match.group(1))
        year = int(match.group(2))
        if month < 1 or month > 12 or not _is_valid_period_year(year):
            return None
        return f"{month:02d}/{year}"

    return None


def period_key_to_date(period_key: str) -> date | None:
    """Return the first day of the month named by an MM/YYYY key."""
    match = _PERIOD_KEY.match(period_key)
    if not match:
        return None
    month = int(match.group(1))
    year = int(match.group(2))
    if month < 1 or month > 12 or not _is_valid_period_year(year):
        return None
    return date(year, month, 1)


def month_bounds(year: int, month: int) -> tuple[date, date]:
    """Return the first and last calendar day of a month."""
    return date(year, month, 1), date(year, month, monthrange(year, month)[1])


def period_label_from_key(period_key: str) -> str:
    return f"Payroll {period_key}"


def parse_cell_number(value: Any) -> Decimal | None:
    """Parse a spreadsheet cell into a Decimal.

    Accepts numbers, formatted strings such as "PKR 15,000", and formula cells
    exposed as a mapping with a "result" entry.
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, (int, Decimal)):
        return Decimal(value)

    if isinstance(value, float):
        if value != value or value in (float("inf"), float("-inf")):
            return None
        return Decimal(str(value))

    if isinstance(value, dict) and "result" in value:
        return parse_cell_number(value["result"])

    if isinstance(value, str):
        sanitized = _NUMERIC_NOISE.sub("", value)
        if not sanitized:
            return None
        try:
            return Decimal(sanitized)
        except InvalidOperation:
            return None

    return None
