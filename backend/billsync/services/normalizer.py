"""Locale-aware parsing of scraped amounts and dates, and fragment normalization.

Greek portals print amounts as ``1.234,56 €`` and dates as ``15/02/2025`` or
``15 Φεβ 2025``; a few script-rendered apps expose ``1,234.56`` and ISO dates.
Both conventions are accepted and folded into ``Decimal`` / ``date``.
"""

from __future__ import annotations

import logging
import re
import unicodedata
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Optional, Union

from dateutil import parser as date_parser

from billsync.utils.timeutil import now_utc

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

_NUMBER_TOKEN_RE = re.compile(r"((?<![\w.,])[-\u2212])?(\d[\d.,]*)")
_GREEK_GROUPED_RE = re.compile(r"^\d{1,3}(?:\.\d{3})+(?:,\d+)?$|^\d+,\d+$")
_PLAIN_GROUPED_RE = re.compile(r"^\d{1,3}(?:,\d{3})+(?:\.\d+)?$|^\d+(?:\.\d+)?$")

# First three (or four, for June/July) letters, lowercase, accents stripped.
MONTH_NAMES = {
    "ιαν": 1, "φεβ": 2, "μαρ": 3, "απρ": 4, "μαι": 5,
    "ιουν": 6, "ιουλ": 7, "αυγ": 8, "σεπ": 9, "οκτ": 10, "νοε": 11, "δεκ": 12,
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "may": 5, "jun": 6,
    "jul": 7, "aug": 8, "sep": 9, "oct": 10, "nov": 11, "dec": 12,
}

_MONTH_NAME_DATE_RE = re.compile(r"(\d{1,2})\s+([^\W\d_]+)\.?,?\s+(\d{4})")
_DMY_RE = re.compile(r"(?<!\d)(\d{1,2})[/\-.](\d{1,2})[/\-.](\d{4}|\d{2})(?!\d)")
_YMD_RE = re.compile(r"(?<!\d)(\d{4})[/\-.](\d{1,2})[/\-.](\d{1,2})(?!\d)")


def _strip_accents(value: str) -> str:
    decomposed = unicodedata.normalize("NFD", value)
    return "".join(ch for ch in decomposed if unicodedata.category(ch) != "Mn")


def parse_amount(value: Union[str, int, float, Decimal, None]) -> Decimal:
    """Return the amount as a 2-digit ``Decimal``; ``0.00`` when nothing parses.

    A leading minus (a credit balance) yields a negative amount. Callers treat
    anything not above ``0`` as "no payable amount" and drop the fragment.
    """
    if value is None or isinstance(value, bool):
        return ZERO
    if isinstance(value, (int, float, Decimal)):
        try:
            return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)
        except InvalidOperation:
            return ZERO

    match = _NUMBER_TOKEN_RE.search(str(value))
    if not match:
        return ZERO
    token = match.group(2).rstrip(".,")
    sign = -1 if match.group(1) else 1

    if _GREEK_GROUPED_RE.match(token):
        normalized = token.replace(".", "").replace(",", ".")
    elif _PLAIN_GROUPED_RE.match(token):
        normalized = token.replace(",", "")
    else:
        return ZERO

    try:
        return (sign * Decimal(normalized)).quantize(CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        return ZERO


def _month_from_name(name: str) -> Optional[int]:
    key = _strip_accents(name).lower()
    return MONTH_NAMES.get(key[:4]) or MONTH_NAMES.get(key[:3])


def _safe_date(year: int, month: int, day: int) -> Optional[date]:
    if year < 100:
        year += 2000
    try:
        return date(year, month, day)
    except ValueError:
        return None


def parse_date_strict(value: Optional[str]) -> Optional[date]:
    """Parse *value* or return ``None``; never substitutes today."""
    if not value:
        return None
    text = str(value).strip()
    if not text:
        return None

    match = _MONTH_NAME_DATE_RE.search(text)
    if match:
        month = _month_from_name(match.group(2))
        if month:
            parsed = _safe_date(int(match.group(3)), month, int(match.group(1)))
            if parsed:
                return parsed

    match = _DMY_RE.search(text)
    if match:
        parsed = _safe_date(int(match.group(3)), int(match.group(2)), int(match.group(1)))
        if parsed:
            return parsed

    match = _YMD_RE.search(text)
    if match:
        parsed = _safe_date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
        if parsed:
            return parsed

    try:
        return date_parser.parse(text, dayfirst=True, fuzzy=False).date()
    except (ValueError, OverflowError):
        return None


def parse_date(value: Optional[str], *, today: Optional[date] = None) -> date:
    """Parse a portal date; unparsable input falls back to *today*.

    The fallback keeps one bad field from failing a whole sync, at the cost of a
    silently wrong due date. It is logged so it can be spotted.
    """
    parsed = parse_date_strict(value)
    if parsed is not None:
        return parsed
    fallback = today or now_utc().date()
    logger.warning("Unparsable date %r; defaulting to %s", value, fallback.isoformat())
    return fallback


@dataclass(frozen=True)
class NormalizedBill:
    title: str
    amount: Decimal
    due_date: date
    reference_number: str
    bill_type: Optional[str] = None
    issue_date: Optional[date] = None
    period_start: Optional[date] = None
    period_end: Optional[date] = None
    payment_code: Optional[str] = None


def normalize_fragment(fragment, *, default_title: str = "", today: Optional[date] = None) -> Optional[NormalizedBill]:
    """Canonicalize one ``BillFragment``; ``None`` when it cannot become a Bill."""
    amount = parse_amount(fragment.amount)
    if amount <= 0:
        return None
    reference = (fragment.reference_number or "").strip()
    if not reference:
        return None

    return NormalizedBill(
        title=(fragment.title or default_title or "").strip()[:255],
        amount=amount,
        due_date=parse_date(fragment.due_date, today=today),
        reference_number=reference[:128],
        bill_type=fragment.bill_type,
        issue_date=parse_date_strict(fragment.issue_date),
        period_start=parse_date_strict(fragment.period_start),
        period_end=parse_date_strict(fragment.period_end),
        payment_code=(fragment.payment_code or None),
    )
