"""
Tests for provider adapters and the registry, driven through MockAutomationClient.
"""

from __future__ import annotations

import pytest

from billsync.core.config import Settings
from billsync.services.automation import AutomationTransportError, MockAutomationClient
from billsync.services.automation.contracts import BillFragment
from billsync.services.providers import SUPPORTED_PROVIDERS, UnknownProviderAdapter, get_adapter
from billsync.services.providers.aade import AadeAdapter
from billsync.services.providers.cosmote import CosmoteAdapter
from billsync.services.providers.deh import DehAdapter

SETTINGS = Settings(automation_navigation_timeout_ms=12_345)

DEH_PAGE = {
    "url": "https://mydei.dei.gr/el/my-bills/",
    "containers": [
        {
            "selector": ".bill-item",
            "text": "Αρ. Λογαριασμού: 555000111\nΠοσό 45,30 €\nΛήξη: 20/03/2025",
            "cells": [],
        },
        {"selector": ".bill-item", "text": "Ποσό 12,00 €\nΛήξη: 20/04/2025", "cells": []},
    ],
}


def _envelope(**overrides):
    body = {"success": True, "bills": [], "debug": [{"step": "snapshot"}], "page": DEH_PAGE}
    body.update(overrides)
    return body


def test_registry_covers_closed_provider_set():
    assert set(SUPPORTED_PROVIDERS) == {"DEH", "EYDAP", "COSMOTE", "AADE", "EFKA"}
    client = MockAutomationClient()
    assert isinstance(get_adapter(" deh ", client, settings=SETTINGS), DehAdapter)
    assert isinstance(get_adapter("NOPE", client, settings=SETTINGS), UnknownProviderAdapter)


@pytest.mark.parametrize("provider_id", ["DEH", "EYDAP", "COSMOTE", "AADE", "EFKA"])
def test_scripts_embed_plan_without_credentials(provider_id):
    adapter = get_adapter(provider_id, MockAutomationClient(), settings=SETTINGS)
    script = adapter.build_script()
    code = script.render()

    assert script.provider_id == provider_id
    assert script.navigation_timeout_ms == 12_345
    assert script.selectors.username and script.selectors.password
    assert "__PLAN__" not in code
    assert "module.exports" in code
    assert script.login_url in code


@pytest.mark.asyncio
async def test_deh_extracts_bills_from_snapshot():
    client = MockAutomationClient({"DEH": _envelope(screenshot="aW1n")})
    adapter = get_adapter("DEH", client, settings=SETTINGS)

    outcome = await adapter.execute("user@example.com", "s3cret")

    assert outcome.success is True
    assert outcome.page is None
    assert outcome.screenshot == "aW1n"
    assert [b.amount for b in outcome.bills] == ["45,30", "12,00"]
    assert all(b.title == "Λογαριασμός Ρεύματος" for b in outcome.bills)
    assert all(b.bill_type == "electricity" for b in outcome.bills)
    assert outcome.bills[0].reference_number == "555000111"
    assert outcome.bills[1].reference_number.startswith("DEH-")
    steps = [event["step"] for event in outcome.debug]
    assert steps[0] == "adapter_start"
    assert "snapshot" in steps and "extract" in steps


@pytest.mark.asyncio
async def test_credentials_travel_only_in_context():
    client = MockAutomationClient({"DEH": _envelope()})
    adapter = get_adapter("DEH", client, settings=SETTINGS)

    await adapter.execute("user'); alert(1);//", "p@ss'\\word")

    script, context = client.calls[0]
    assert context == {"credentials": {"username": "user'); alert(1);//", "password": "p@ss'\\word"}}
    assert "p@ss" not in script.render()


@pytest.mark.asyncio
async def test_transport_error_becomes_categorized_failure():
    client = MockAutomationClient({"EYDAP": AutomationTransportError("Automation call for EYDAP timed out after 150s")})
    adapter = get_adapter("EYDAP", client, settings=SETTINGS)

    outcome = await adapter.execute("123", "pass")

    assert outcome.success is False
    assert outcome.error_code == "TRANSPORT_ERROR"
    assert "timed out" in outcome.error
    assert outcome.debug[-1]["step"] == "transport_error"


@pytest.mark.asyncio
async def test_portal_failure_keeps_code_and_evidence():
    client = MockAutomationClient(
        {"DEH": {"success": False, "error_code": "LOGIN_FORM_NOT_FOUND", "error": "Username field not found", "screenshot": "c2hvdA=="}}
    )
    outcome = await get_adapter("DEH", client, settings=SETTINGS).execute("u", "p")

    assert outcome.success is False
    assert outcome.error_code == "LOGIN_FORM_NOT_FOUND"
    assert outcome.screenshot == "c2hvdA=="
    assert outcome.bills == []


@pytest.mark.asyncio
async def test_portal_failure_without_code_defaults_to_scraper_error():
    client = MockAutomationClient({"EYDAP": {"success": False}})
    outcome = await get_adapter("EYDAP", client, settings=SETTINGS).execute("u", "p")

    assert outcome.error_code == "SCRAPER_ERROR"
    assert outcome.error


@pytest.mark.asyncio
async def test_successful_login_with_empty_bills_page_is_zero_count_success():
    client = MockAutomationClient({"EYDAP": _envelope(page={"url": "https://www.eydap.gr/myaccount/bills/", "text": "Δεν υπάρχουν οφειλές"})})
    outcome = await get_adapter("EYDAP", client, settings=SETTINGS).execute("u", "p")

    assert outcome.success is True
    assert outcome.bills == []


@pytest.mark.asyncio
async def test_credit_balance_is_not_extracted_as_a_bill():
    page = {
        "url": "https://mydei.dei.gr/el/my-bills/",
        "containers": [
            {"text": "Αρ. Λογαριασμού: 555000222\nΠιστωτικό υπόλοιπο -12,50 €\nΛήξη: 20/03/2025", "cells": []},
            {"text": "Αρ. Λογαριασμού: 555000111\nΠοσό 45,30 €\nΛήξη: 20/03/2025", "cells": []},
        ],
    }
    client = MockAutomationClient({"DEH": _envelope(page=page)})
    outcome = await get_adapter("DEH", client, settings=SETTINGS).execute("u", "p")

    assert outcome.success is True
    assert [(b.reference_number, b.amount) for b in outcome.bills] == [("555000111", "45,30")]


@pytest.mark.asyncio
async def test_backend_supplied_fragments_are_classified_and_referenced():
    client = MockAutomationClient({"EYDAP": {"success": True, "bills": [{"amount": "18,40", "due_date": "01/07/2025"}]}})
    outcome = await get_adapter("EYDAP", client, settings=SETTINGS).execute("u", "p")

    assert outcome.bills[0].title == "Λογαριασμός Ύδρευσης"
    assert outcome.bills[0].bill_type == "water"
    assert outcome.bills[0].reference_number.startswith("EYDAP-")


@pytest.mark.asyncio
@pytest.mark.parametrize("provider_id", ["AADE", "EFKA"])
async def test_government_sso_second_factor_from_runtime(provider_id):
    client = MockAutomationClient({provider_id: {"success": False, "error_code": "2FA_REQUIRED", "error": "OTP"}})
    outcome = await get_adapter(provider_id, client, settings=SETTINGS).execute("u", "p")

    assert outcome.success is False
    assert outcome.error_code == "2FA_REQUIRED"


@pytest.mark.asyncio
async def test_government_sso_second_factor_detected_on_page():
    page = {"url": "https://login.gsis.gr/oauth2server/login", "text": "Εισάγετε τον κωδικό μίας χρήσης (OTP)"}
    client = MockAutomationClient({"AADE": _envelope(page=page)})
    outcome = await get_adapter("AADE", client, settings=SETTINGS).execute("u", "p")

    assert outcome.success is False
    assert outcome.error_code == "2FA_REQUIRED"
    assert outcome.bills == []
    assert any(event.get("step") == "second_factor_detected" for event in outcome.debug)


def test_government_sso_script_declares_otp_detection():
    script = AadeAdapter(MockAutomationClient()).build_script()
    assert script.selectors.otp
    assert script.otp_markers
    assert "input[name='j_username']" in script.selectors.username


def test_cosmote_classifies_internet_and_mobile():
    adapter = CosmoteAdapter(MockAutomationClient())
    internet = adapter.classify(BillFragment(amount="30,00"), "Λογαριασμός Internet 30,00 €")
    mobile = adapter.classify(BillFragment(amount="15,00"), "Κινητή 6900000000 15,00 €")

    assert (internet.bill_type, internet.title) == ("internet", "Λογαριασμός Internet")
    assert (mobile.bill_type, mobile.title) == ("mobile", "Λογαριασμός Κινητής")
    assert adapter.build_script().two_step_login is True


@pytest.mark.asyncio
async def test_unknown_provider_never_contacts_backend():
    client = MockAutomationClient()
    outcome = await get_adapter("ACME", client, settings=SETTINGS).execute("u", "p")

    assert outcome.success is False
    assert outcome.error_code == "PROVIDER_NOT_FOUND"
    assert client.calls == []


@pytest.mark.asyncio
async def test_interpretation_fault_is_reported_not_raised():
    class BrokenDeh(DehAdapter):
        def classify(self, fragment, source_text):
            raise KeyError("boom")

    client = MockAutomationClient({"DEH": _envelope(screenshot="aW1n")})
    outcome = await BrokenDeh(client).execute("u", "p")

    assert outcome.success is False
    assert outcome.error_code == "SCRAPER_ERROR"
    assert outcome.screenshot == "aW1n"
