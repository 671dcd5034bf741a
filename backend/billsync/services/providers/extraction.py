"""Layered bill extraction over a ``PageSnapshot``.

Strategies run in order and the first one that yields at least one fragment wins:

A. containers: table rows, list items and class-name matches collected by the
   runtime; each container is scanned for an amount, dates and a reference.
B. page state: embedded JSON (``__NEXT_DATA__``, ``__INITIAL_STATE__``...) and
   known field identifiers, searched recursively for ``{amount, due date}`` objects.
C. visible text: line scan of the rendered page with a sanity bound on amounts.
"""

from __future__ import annotations

import hashlib
import json
import logging
import re
from decimal import Decimal
from typing import Any, Callable, Iterable, Optional

from billsync.services.automation.contracts import BillFragment, ContainerSnapshot, PageSnapshot
from billsync.services.normalizer import parse_amount, parse_date_strict

logger = logging.getLogger(__name__)

Classifier = Callable[[BillFragment, str], BillFragment]

_AMOUNT = r"\d{1,3}(?:\.\d{3})+(?:,\d{1,2})?|\d{1,3}(?:,\d{3})+(?:\.\d{1,2})?|\d+(?:[.,]\d{1,2})?"
_CURRENCY = r"(?:€|EUR\b|ευρώ|ευρω)"
# A minus glued to the figure marks a credit balance.
_SIGN = r"(?:(?<![\w.,])[-\u2212](?=\d))?"

MONEY_RE = re.compile(
    rf"{_CURRENCY}\s*(?P<pre>{_SIGN}(?:{_AMOUNT}))|(?P<post>{_SIGN}(?:{_AMOUNT}))\s*{_CURRENCY}",
    re.IGNORECASE,
)
AMOUNT_LABEL_RE = re.compile(
    rf"(?:ποσ[οό](?:\s+πληρωμ[ηή]ς)?|πληρωτ[εέ]ο|σ[υύ]νολο|οφειλ[ηή]|amount(?:\s+due)?|total)\s*[:\-]?\s*(?:€\s*)?(?P<amount>{_AMOUNT})",
    re.IGNORECASE,
)
BARE_AMOUNT_RE = re.compile(rf"^\s*(?:€\s*)?(?P<amount>{_SIGN}(?:{_AMOUNT}))\s*(?:€|EUR)?\s*$", re.IGNORECASE)

_DATE = r"\d{1,2}[/.\-]\d{1,2}[/.\-]\d{2,4}|\d{4}-\d{1,2}-\d{1,2}|\d{1,2}\s+[^\W\d_]{3,}\.?\s+\d{4}"
DATE_RE = re.compile(rf"(?<!\d)(?:{_DATE})(?!\d)")
PERIOD_RE = re.compile(
    rf"(?P<start>{_DATE})\s*(?:-|–|έως|εως|to|μέχρι)\s*(?P<end>{_DATE})",
    re.IGNORECASE,
)
DUE_LABEL_RE = re.compile(
    r"(?:λ[ηή]ξη[ςσ]?|προθεσμ[ιί]α|πληρωμ[ηή]\s+[εέ]ως|εξ[οό]φληση\s+[εέ]ως|due(?:\s+date)?|pay\s+by)\s*[:\-]?\s*",
    re.IGNORECASE,
)
ISSUE_LABEL_RE = re.compile(r"(?:[εέ]κδοση[ςσ]?|issued?(?:\s+on)?)\s*[:\-]?\s*", re.IGNORECASE)

PAYMENT_CODE_RE = re.compile(r"\b(RF\d{2}[0-9A-Z]{4,21})\b")
REFERENCE_LABEL_RE = re.compile(
    r"(?:αρ(?:ιθμ[οό]ς|\.)?\s*(?:λογαριασμο[υύ]|παραστατικο[υύ]|τιμολογ[ιί]ου|ειδοπο[ιί]ησης|παροχ[ηή]ς)"
    r"|κωδικ[οό]ς\s+πληρωμ[ηή]ς|ταυτ[οό]τητα\s+οφειλ[ηή]ς"
    r"|reference(?:\s+number)?|ref\.?|invoice\s*(?:no\.?|number)|bill\s*(?:no\.?|number))"
    r"\s*[:#.]?\s*(?P<ref>[A-Z0-9][A-Z0-9\-/]{3,})",
    re.IGNORECASE,
)

AMOUNT_KEYS = {"amount", "totalamount", "amountdue", "payableamount", "billamount", "balance", "poso", "ποσο"}
DUE_KEYS = {"duedate", "paymentduedate", "expirationdate", "expirydate", "lastpaymentdate", "due"}
REFERENCE_KEYS = {"billnumber", "invoicenumber", "referencenumber", "reference", "invoiceid", "billid", "documentnumber"}
PAYMENT_CODE_KEYS = {"paymentcode", "rfcode", "paymentreference", "rf"}
ISSUE_KEYS = {"issuedate", "invoicedate", "billdate"}
PERIOD_START_KEYS = {"periodstart", "periodfrom", "fromdate", "consumptionfrom"}
PERIOD_END_KEYS = {"periodend", "periodto", "todate", "consumptionto"}
TITLE_KEYS = {"title", "description", "billtype", "type"}

MAX_STATE_DEPTH = 12
MAX_STATE_FRAGMENTS = 200
TEXT_LOOKAROUND_LINES = 2


def _first_amount(text: str) -> Optional[str]:
    match = MONEY_RE.search(text)
    if match:
        return match.group("pre") or match.group("post")
    # Without a currency marker only a two-decimal figure counts as money.
    for match in AMOUNT_LABEL_RE.finditer(text):
        if re.search(r"[.,]\d{2}$", match.group("amount")):
            return match.group("amount")
    return None


def _valid_dates(text: str) -> list[tuple[int, str]]:
    found = []
    for match in DATE_RE.finditer(text):
        if parse_date_strict(match.group(0)) is not None:
            found.append((match.start(), match.group(0)))
    return found


def _labelled_date(text: str, label_re: re.Pattern) -> Optional[str]:
    for label in label_re.finditer(text):
        match = DATE_RE.match(text, label.end())
        if match and parse_date_strict(match.group(0)) is not None:
            return match.group(0)
    return None


def _dates_from_text(text: str) -> dict[str, Optional[str]]:
    """Pick due/issue/period dates out of one block of text."""
    period = PERIOD_RE.search(text)
    period_start = period.group("start") if period else None
    period_end = period.group("end") if period else None
    period_span = period.span() if period else (-1, -1)

    due = _labelled_date(text, DUE_LABEL_RE)
    issue = _labelled_date(text, ISSUE_LABEL_RE)
    if due is None:
        remaining = [
            value
            for pos, value in _valid_dates(text)
            if not (period_span[0] <= pos < period_span[1]) and value != issue
        ]
        # The due date is printed after issue/period dates on every portal we scrape.
        due = remaining[-1] if remaining else None
    return {"due_date": due, "issue_date": issue, "period_start": period_start, "period_end": period_end}


def _references_from_text(text: str) -> tuple[Optional[str], Optional[str]]:
    payment_code = None
    match = PAYMENT_CODE_RE.search(text)
    if match:
        payment_code = match.group(1)
    reference = None
    match = REFERENCE_LABEL_RE.search(text)
    if match:
        reference = match.group("ref")
    return reference or payment_code, payment_code


def _fragment_from_text(text: str, amount: str) -> BillFragment:
    reference, payment_code = _references_from_text(text)
    return BillFragment(amount=amount, reference_number=reference, payment_code=payment_code, **_dates_from_text(text))


def _container_amount(container: ContainerSnapshot) -> Optional[str]:
    amount = _first_amount(container.text)
    if amount:
        return amount
    for cell in container.cells:
        match = BARE_AMOUNT_RE.match(cell)
        if match and re.search(r"[.,]\d{2}\s*(?:€|EUR)?\s*$", cell) and not DATE_RE.search(cell):
            return match.group("amount")
    return None


def from_containers(containers: Iterable[ContainerSnapshot], classify: Classifier) -> list[BillFragment]:
    fragments: list[BillFragment] = []
    seen_texts: set[str] = set()
    for container in containers:
        text = container.text.strip()
        if not text or text in seen_texts:
            continue
        seen_texts.add(text)
        amount = _container_amount(container)
        if amount is None or parse_amount(amount) <= 0:
            continue
        fragments.append(classify(_fragment_from_text(text, amount), text))
    return fragments


def _norm_key(key: Any) -> str:
    return re.sub(r"[\s_\-]", "", str(key)).lower()


def _pick(mapping: dict[str, Any], keys: set[str]) -> Any:
    for key, value in mapping.items():
        if _norm_key(key) in keys and value not in (None, "", [], {}):
            return value
    return None


def _as_text(value: Any) -> Optional[str]:
    if value is None or isinstance(value, (dict, list)):
        return None
    return str(value)


def _walk_state(node: Any, classify: Classifier, out: list[BillFragment], depth: int = 0) -> None:
    if depth > MAX_STATE_DEPTH or len(out) >= MAX_STATE_FRAGMENTS:
        return
    if isinstance(node, list):
        for item in node:
            _walk_state(item, classify, out, depth + 1)
        return
    if not isinstance(node, dict):
        return

    amount = _pick(node, AMOUNT_KEYS)
    due = _pick(node, DUE_KEYS)
    if amount is not None and due is not None and not isinstance(amount, (dict, list)):
        if parse_amount(amount if isinstance(amount, (int, float)) else str(amount)) > 0:
            fragment = BillFragment(
                title=_as_text(_pick(node, TITLE_KEYS)) or "",
                amount=amount if isinstance(amount, (int, float)) and not isinstance(amount, bool) else str(amount),
                due_date=_as_text(due),
                reference_number=_as_text(_pick(node, REFERENCE_KEYS)),
                payment_code=_as_text(_pick(node, PAYMENT_CODE_KEYS)),
                issue_date=_as_text(_pick(node, ISSUE_KEYS)),
                period_start=_as_text(_pick(node, PERIOD_START_KEYS)),
                period_end=_as_text(_pick(node, PERIOD_END_KEYS)),
            )
            if fragment.reference_number is None and fragment.payment_code:
                fragment = fragment.model_copy(update={"reference_number": fragment.payment_code})
            out.append(classify(fragment, json.dumps(node, ensure_ascii=False, default=str)[:2000]))
            return

    for value in node.values():
        _walk_state(value, classify, out, depth + 1)


def from_page_state(states: Iterable[str], fields: dict[str, str], classify: Classifier) -> list[BillFragment]:
    fragments: list[BillFragment] = []

    amount = fields.get("amount")
    if amount and parse_amount(amount) > 0:
        context = " ".join(fields.values())
        reference, payment_code = _references_from_text(context)
        fragment = BillFragment(
            amount=amount,
            due_date=fields.get("due_date") or _dates_from_text(context)["due_date"],
            reference_number=fields.get("reference_number") or reference,
            payment_code=fields.get("payment_code") or payment_code,
            issue_date=fields.get("issue_date"),
            period_start=fields.get("period_start"),
            period_end=fields.get("period_end"),
        )
        fragments.append(classify(fragment, context))

    for raw in states:
        try:
            parsed = json.loads(raw)
        except (TypeError, ValueError):
            continue
        _walk_state(parsed, classify, fragments)
    return fragments


def from_text(text: str, classify: Classifier, *, max_amount: Decimal) -> list[BillFragment]:
    lines = [line.strip() for line in (text or "").splitlines() if line.strip()]
    fragments: list[BillFragment] = []
    for idx, line in enumerate(lines):
        match = MONEY_RE.search(line)
        if not match:
            continue
        amount = match.group("pre") or match.group("post")
        value = parse_amount(amount)
        if value <= 0 or value > max_amount:
            continue
        window = lines[max(0, idx - 1) : idx + 1 + TEXT_LOOKAROUND_LINES]
        block = "\n".join(window)
        if not _valid_dates(block):
            continue
        fragments.append(classify(_fragment_from_text(block, amount), block))
    return fragments


def _dedupe(fragments: list[BillFragment]) -> list[BillFragment]:
    seen: set[tuple] = set()
    unique: list[BillFragment] = []
    for fragment in fragments:
        key = (fragment.reference_number, str(parse_amount(fragment.amount)), fragment.due_date)
        if fragment.reference_number and key in seen:
            continue
        seen.add(key)
        unique.append(fragment)
    return unique


def extract_fragments(
    snapshot: PageSnapshot,
    *,
    classify: Classifier,
    max_amount: Decimal,
) -> tuple[list[BillFragment], list[dict[str, Any]]]:
    """Run strategies A → B → C; return fragments plus debug events."""
    events: list[dict[str, Any]] = []
    strategies = (
        ("containers", lambda: from_containers(snapshot.containers, classify)),
        ("page_state", lambda: from_page_state(snapshot.states, snapshot.fields, classify)),
        ("visible_text", lambda: from_text(snapshot.text, classify, max_amount=max_amount)),
    )
    for name, run in strategies:
        fragments = _dedupe(run())
        events.append({"step": "extract", "strategy": name, "fragments": len(fragments)})
        if fragments:
            return fragments, events
    events.append({"step": "extract", "strategy": "none", "fragments": 0, "url": snapshot.url})
    return [], events


def assign_fallback_references(fragments: list[BillFragment], provider_id: str) -> list[BillFragment]:
    """Give every fragment without a portal reference a stable synthetic one.

    The reference hashes provider, title, amount, due date and period; identical
    fragments on the same page get an ordinal suffix so they stay distinct bills.
    """
    occurrences: dict[str, int] = {}
    result: list[BillFragment] = []
    for fragment in fragments:
        if fragment.reference_number:
            result.append(fragment)
            continue
        due = parse_date_strict(fragment.due_date)
        basis = "|".join(
            [
                provider_id,
                fragment.title,
                str(parse_amount(fragment.amount)),
                due.isoformat() if due else (fragment.due_date or ""),
                fragment.period_start or "",
                fragment.period_end or "",
            ]
        )
        digest = hashlib.sha1(basis.encode("utf-8")).hexdigest()[:12].upper()
        occurrences[digest] = occurrences.get(digest, 0) + 1
        count = occurrences[digest]
        reference = f"{provider_id}-{digest}" if count == 1 else f"{provider_id}-{digest}-{count}"
        result.append(fragment.model_copy(update={"reference_number": reference}))
    return result
