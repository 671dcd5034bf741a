"""EYDAP (Athens Water Supply and Sewerage): e-services account area."""

from __future__ import annotations

from billsync.services.automation.contracts import AutomationScript, ExtractionPlan, SelectorPlan

from .base import COMMON_DISMISS_SELECTORS, COMMON_ERROR_SELECTORS, ProviderAdapter

LOGIN_URL = "https://www.eydap.gr/myaccount/"
BILLS_URL = "https://www.eydap.gr/myaccount/bills/"


class EydapAdapter(ProviderAdapter):
    provider_id = "EYDAP"
    display_name = "ΕΥΔΑΠ"
    default_title = "Λογαριασμός Ύδρευσης"
    default_bill_type = "water"

    def build_script(self) -> AutomationScript:
        return AutomationScript(
            provider_id=self.provider_id,
            login_url=LOGIN_URL,
            bills_urls=[BILLS_URL],
            selectors=SelectorPlan(
                username=["input[name='customerCode']", "#customerCode", "input[name='username']"],
                password=["input[name='password']", "#password", "input[type='password']"],
                submit=["button[type='submit']", "input[type='submit']", "#loginBtn"],
                dismiss=COMMON_DISMISS_SELECTORS,
                login_error=COMMON_ERROR_SELECTORS,
            ),
            navigation_timeout_ms=self._navigation_timeout_ms,
            extraction=ExtractionPlan(
                container_selectors=[".bill-row", ".invoice-item", "table tbody tr", "table tr"],
                field_selectors={
                    "amount": ".balance-amount, .amount-due",
                    "due_date": ".due-date",
                },
            ),
        )
