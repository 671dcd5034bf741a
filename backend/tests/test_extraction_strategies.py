"""
Unit tests for layered extraction over page snapshots.

Covers:
  - containers: currency-marked amounts, labelled due dates, periods, references, bare cell amounts
  - page state: embedded JSON and known field values
  - visible text: line scan with the amount sanity bound
  - fallback references: stable and distinct for identical fragments
"""

from __future__ import annotations

import json
from decimal import Decimal

from billsync.services.automation.contracts import BillFragment, ContainerSnapshot, PageSnapshot
from billsync.services.providers.extraction import assign_fallback_references, extract_fragments

MAX_AMOUNT = Decimal("10000.00")


def _identity(fragment, _text):
    return fragment


def _extract(snapshot):
    return extract_fragments(snapshot, classify=_identity, max_amount=MAX_AMOUNT)


def test_containers_strategy_reads_amount_dates_and_reference():
    text = (
        "Αρ. Λογαριασμού: 123456789\n"
        "Περίοδος 01/01/2025 - 28/02/2025\n"
        "Ποσό 45,30 €\n"
        "Λήξη: 20/03/2025"
    )
    snapshot = PageSnapshot(
        containers=[
            ContainerSnapshot(selector="thead tr", text="Λογαριασμός Ποσό Λήξη"),
            ContainerSnapshot(selector=".bill-item", text=text),
            ContainerSnapshot(selector="table tbody tr", text=text),
        ]
    )

    fragments, events = _extract(snapshot)

    assert len(fragments) == 1
    fragment = fragments[0]
    assert fragment.amount == "45,30"
    assert fragment.due_date == "20/03/2025"
    assert fragment.period_start == "01/01/2025"
    assert fragment.period_end == "28/02/2025"
    assert fragment.reference_number == "123456789"
    assert events == [{"step": "extract", "strategy": "containers", "fragments": 1}]


def test_containers_strategy_accepts_bare_decimal_cell():
    snapshot = PageSnapshot(
        containers=[
            ContainerSnapshot(
                selector="table tr",
                text="987654 12/03/2025 31,20",
                cells=["987654", "12/03/2025", "31,20"],
            )
        ]
    )

    fragments, _ = _extract(snapshot)

    assert len(fragments) == 1
    assert fragments[0].amount == "31,20"
    assert fragments[0].due_date == "12/03/2025"


def test_page_state_strategy_walks_embedded_json():
    state = {
        "props": {
            "pageProps": {
                "bills": [
                    {
                        "billNumber": "DEH-1",
                        "totalAmount": "58,12",
                        "dueDate": "2025-04-10",
                        "periodFrom": "2025-02-01",
                        "periodTo": "2025-03-31",
                    },
                    {"billNumber": "DEH-2", "totalAmount": 0, "dueDate": "2025-05-10"},
                ]
            }
        }
    }
    snapshot = PageSnapshot(states=["not json", json.dumps(state)])

    fragments, events = _extract(snapshot)

    assert [f.reference_number for f in fragments] == ["DEH-1"]
    assert fragments[0].amount == "58,12"
    assert fragments[0].due_date == "2025-04-10"
    assert fragments[0].period_start == "2025-02-01"
    assert [e["strategy"] for e in events] == ["containers", "page_state"]


def test_page_state_strategy_uses_known_fields_and_payment_code():
    snapshot = PageSnapshot(
        fields={"amount": "1.234,56 €", "due_date": "15/04/2025", "payment_code": "RF12345678901234"}
    )

    fragments, _ = _extract(snapshot)

    assert len(fragments) == 1
    assert fragments[0].amount == "1.234,56 €"
    assert fragments[0].payment_code == "RF12345678901234"
    assert fragments[0].reference_number == "RF12345678901234"


def test_visible_text_strategy_rejects_absurd_amounts():
    text = "\n".join(
        [
            "Καλώς ήρθατε",
            "Υπόλοιπο προς πληρωμή 32,10 €",
            "Ημερομηνία λήξης 05/06/2025",
            "Σύνολο κατανάλωσης 99999,00 €",
            "01/01/2025",
        ]
    )

    fragments, events = _extract(PageSnapshot(text=text))

    assert len(fragments) == 1
    assert fragments[0].amount == "32,10"
    assert fragments[0].due_date == "05/06/2025"
    assert events[-1] == {"step": "extract", "strategy": "visible_text", "fragments": 1}


def test_no_strategy_matches_reports_empty():
    fragments, events = _extract(PageSnapshot(url="https://example.test/bills", text="Δεν υπάρχουν λογαριασμοί"))

    assert fragments == []
    assert events[-1]["strategy"] == "none"
    assert events[-1]["url"] == "https://example.test/bills"


def test_fallback_references_are_stable_and_distinct():
    fragments = [
        BillFragment(title="Λογαριασμός", amount="20,00", due_date="01/05/2025"),
        BillFragment(title="Λογαριασμός", amount="20,00", due_date="01/05/2025"),
        BillFragment(title="Λογαριασμός", amount="20,00", due_date="01/05/2025", reference_number="KEEP"),
    ]

    first = assign_fallback_references(fragments, "EYDAP")
    second = assign_fallback_references(fragments, "EYDAP")

    refs = [f.reference_number for f in first]
    assert refs == [f.reference_number for f in second]
    assert refs[2] == "KEEP"
    assert refs[0].startswith("EYDAP-")
    assert refs[1] == refs[0] + "-2"


def test_fallback_reference_ignores_date_formatting():
    a = assign_fallback_references([BillFragment(amount="20,00", due_date="01/05/2025")], "DEH")
    b = assign_fallback_references([BillFragment(amount=20, due_date="2025-05-01")], "DEH")
    assert a[0].reference_number == b[0].reference_number
