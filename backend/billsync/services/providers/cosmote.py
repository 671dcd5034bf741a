"""COSMOTE: fixed and mobile telephony self-care."""

from __future__ import annotations

import re

from billsync.services.automation.contracts import AutomationScript, BillFragment, ExtractionPlan, SelectorPlan

from .base import COMMON_DISMISS_SELECTORS, COMMON_ERROR_SELECTORS, ProviderAdapter

LOGIN_URL = "https://account.cosmote.gr/"
BILLS_URL = "https://my.cosmote.gr/selfcare/jsp/billing.jsp"

INTERNET_TITLE = "Λογαριασμός Internet"
MOBILE_TITLE = "Λογαριασμός Κινητής"

_INTERNET_RE = re.compile(r"internet|adsl|vdsl|fiber|σταθερ", re.IGNORECASE)


class CosmoteAdapter(ProviderAdapter):
    provider_id = "COSMOTE"
    display_name = "COSMOTE"
    default_title = MOBILE_TITLE
    default_bill_type = "mobile"

    def build_script(self) -> AutomationScript:
        return AutomationScript(
            provider_id=self.provider_id,
            login_url=LOGIN_URL,
            bills_urls=[BILLS_URL],
            # Username and password are on separate screens.
            two_step_login=True,
            selectors=SelectorPlan(
                username=["input[name='username']", "#username", "input[type='email']"],
                next=["button.next", "button[type='submit']"],
                password=["input[name='password']", "#password", "input[type='password']"],
                submit=["button[type='submit']", ".login-submit"],
                dismiss=COMMON_DISMISS_SELECTORS,
                login_error=COMMON_ERROR_SELECTORS,
            ),
            navigation_timeout_ms=self._navigation_timeout_ms,
            settle_ms=2_000,
            extraction=ExtractionPlan(
                container_selectors=[".bill-entry", ".invoice-row", "table.bills tbody tr"],
            ),
        )

    def classify(self, fragment: BillFragment, source_text: str) -> BillFragment:
        is_internet = fragment.bill_type == "internet" or (
            not fragment.bill_type and (_INTERNET_RE.search(source_text) or _INTERNET_RE.search(fragment.title))
        )
        if is_internet:
            update = {"bill_type": "internet"}
            if not fragment.title:
                update["title"] = INTERNET_TITLE
            return fragment.model_copy(update=update)
        return super().classify(fragment, source_text)
