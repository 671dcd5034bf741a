"""DEH (Public Power Corporation): myDEI customer portal."""

from __future__ import annotations

from billsync.services.automation.contracts import AutomationScript, ExtractionPlan, SelectorPlan

from .base import COMMON_DISMISS_SELECTORS, COMMON_ERROR_SELECTORS, ProviderAdapter

LOGIN_URL = "https://mydei.dei.gr/el/login/"
BILLS_URL = "https://mydei.dei.gr/el/my-bills/"


class DehAdapter(ProviderAdapter):
    provider_id = "DEH"
    display_name = "ΔΕΗ"
    default_title = "Λογαριασμός Ρεύματος"
    default_bill_type = "electricity"

    def build_script(self) -> AutomationScript:
        return AutomationScript(
            provider_id=self.provider_id,
            login_url=LOGIN_URL,
            bills_urls=[BILLS_URL],
            selectors=SelectorPlan(
                username=["input[name='email']", "input[type='email']", "#email", "input[name='username']"],
                password=["input[name='password']", "input[type='password']"],
                submit=["button[type='submit']", "input[type='submit']"],
                dismiss=COMMON_DISMISS_SELECTORS,
                login_error=[".error", *COMMON_ERROR_SELECTORS],
            ),
            navigation_timeout_ms=self._navigation_timeout_ms,
            extraction=ExtractionPlan(
                container_selectors=[".bill-item", ".invoice-row", "tr.bill", "table tbody tr"],
                field_selectors={
                    "amount": ".total-amount, .bill-amount",
                    "due_date": ".due-date, .bill-due",
                    "reference_number": ".bill-id, .reference",
                },
                # myDEI is a Next.js app; bills are in the hydration payload.
                state_selectors=["script#__NEXT_DATA__"],
                state_globals=["__NEXT_DATA__"],
            ),
        )
