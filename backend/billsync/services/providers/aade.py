"""AADE (Independent Authority for Public Revenue): myAADE obligations."""

from __future__ import annotations

from billsync.services.automation.contracts import AutomationScript, ExtractionPlan

from .taxisnet import OTP_MARKERS, TaxisnetAdapter

LOGIN_URL = "https://www1.aade.gr/saadeapps2/bookkeeper-web"
OBLIGATIONS_URL = "https://www1.aade.gr/gsisapps5/myaade/obligations"


class AadeAdapter(TaxisnetAdapter):
    provider_id = "AADE"
    display_name = "ΑΑΔΕ"
    default_title = "Οφειλή ΑΑΔΕ"
    default_bill_type = "tax"

    def build_script(self) -> AutomationScript:
        return AutomationScript(
            provider_id=self.provider_id,
            login_url=LOGIN_URL,
            bills_urls=[OBLIGATIONS_URL],
            selectors=self.sso_selectors(),
            otp_markers=OTP_MARKERS,
            navigation_timeout_ms=self._navigation_timeout_ms,
            extraction=ExtractionPlan(
                container_selectors=[".obligation-row", "table.debts tbody tr", "table tbody tr"],
                state_globals=["__INITIAL_STATE__"],
            ),
        )
