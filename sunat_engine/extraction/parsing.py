"""Numeric and date parsing helpers for OCR text.

Amounts follow local print conventions (``1,234.56``) but tolerate a lone
decimal comma (``211,77``). Percentages are never treated as amounts.
"""

import re
from datetime import date
from decimal import Decimal, InvalidOperation

# Any run of digits with optional thousands separators and decimals
NUMBER_TOKEN = re.compile(r"\d[\d,]*(?:\.\d+)?")

# Amount following a textual anchor; decimals are mandatory so that a
# bare rate such as "(18%)" is never mistaken for money
ANCHORED_AMOUNT = r"(\d{1,3}(?:,\d{3})+\.\d{1,2}(?!\d)|\d+[.,]\d{1,2}(?!\d))"

NUMERIC_DATE = re.compile(r"(?<!\d)(\d{1,2})[/\-](\d{1,2})[/\-](\d{2,4})(?!\d)")
ISO_DATE = re.compile(r"(?<!\d)(\d{4})-(\d{1,2})-(\d{1,2})(?!\d)")
WRITTEN_DATE = re.compile(
    r"(\d{1,2})\s+(?:de\s+)?([a-záéíóúñ]+)\s+(?:de(?:l)?\s+)?(\d{4})",
    re.IGNORECASE,
)

SPANISH_MONTHS = {
    "enero": 1,
    "febrero": 2,
    "marzo": 3,
    "abril": 4,
    "mayo": 5,
    "junio": 6,
    "julio": 7,
    "agosto": 8,
    "septiembre": 9,
    "setiembre": 9,
    "octubre": 10,
    "noviembre": 11,
    "diciembre": 12,
}

MIN_YEAR = 1950
MAX_YEAR = 2099
PERCENT_LOOKAHEAD = 3


def parse_amount(raw: str) -> Decimal | None:
    """Parse a monetary string into a Decimal.

    Strips currency symbols and thousands separators. A single comma
    followed by exactly two digits (and no period) is read as a decimal comma.

    Args:
        raw: Amount text, e.g. "S/ 1,234.56" or "211,77"

    Returns:
        Decimal value or None if the text holds no number
    """
    cleaned = re.sub(r"[^\d,.]", "", raw)
    if not cleaned:
        return None

    if "," in cleaned and "." not in cleaned and re.fullmatch(r"\d+,\d{2}", cleaned):
        cleaned = cleaned.replace(",", ".")
    else:
        cleaned = cleaned.replace(",", "")

    try:
        return Decimal(cleaned)
    except InvalidOperation:
        return None


def is_followed_by_percent(text: str, end: int) -> bool:
    """Check whether a percent sign appears within 3 characters after ``end``."""
    return "%" in text[end : end + PERCENT_LOOKAHEAD]


def find_amount(text: str) -> Decimal | None:
    """Find the first positive monetary amount in text.

    Tokens followed by a percent sign (within 1-3 characters) are rates, not
    amounts, and are skipped.

    Args:
        text: Text to scan

    Returns:
        First positive amount or None
    """
    for match in NUMBER_TOKEN.finditer(text):
        if is_followed_by_percent(text, match.end()):
            continue
        amount = parse_amount(match.group(0))
        if amount is not None and amount > 0:
            return amount
    return None


def _expand_year(year: int) -> int:
    """Window two-digit years into 1950-2049."""
    if year < 100:
        return 2000 + year if year < 50 else 1900 + year
    return year


def _build_date(year: int, month: int, day: int) -> date | None:
    if not MIN_YEAR <= year <= MAX_YEAR:
        return None
    try:
        return date(year, month, day)
    except ValueError:
        return None


def parse_numeric_date(text: str) -> date | None:
    """Parse the first valid ``D/M/Y`` or ``D-M-Y`` date in text.

    ISO ``YYYY-MM-DD`` dates are accepted as well.

    Args:
        text: Text to scan

    Returns:
        Parsed date or None if no valid date is present
    """
    for match in ISO_DATE.finditer(text):
        year, month, day = (int(g) for g in match.groups())
        parsed = _build_date(year, month, day)
        if parsed is not None:
            return parsed

    for match in NUMERIC_DATE.finditer(text):
        day, month, raw_year = (int(g) for g in match.groups())
        if len(match.group(3)) == 3:
            continue
        parsed = _build_date(_expand_year(raw_year), month, day)
        if parsed is not None:
            return parsed
    return None


def parse_written_date(text: str) -> date | None:
    """Parse a written Spanish date such as "15 de marzo de 2025"."""
    for match in WRITTEN_DATE.finditer(text):
        month = SPANISH_MONTHS.get(match.group(2).lower())
        if month is None:
            continue
        parsed = _build_date(int(match.group(3)), month, int(match.group(1)))
        if parsed is not None:
            return parsed
    return None


def parse_date(text: str) -> date | None:
    """Parse a numeric date, falling back to the written-month form."""
    return parse_numeric_date(text) or parse_written_date(text)
