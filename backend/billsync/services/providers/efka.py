"""e-EFKA (Unified Social Security Fund): contribution notices."""

from __future__ import annotations

from billsync.services.automation.contracts import AutomationScript, ExtractionPlan

from .taxisnet import OTP_MARKERS, TaxisnetAdapter

LOGIN_URL = "https://www.efka.gov.gr/el/elektronikes-yperesies"
CONTRIBUTIONS_URL = "https://apps.efka.gov.gr/eAPDss/contributions"


class EfkaAdapter(TaxisnetAdapter):
    provider_id = "EFKA"
    display_name = "e-ΕΦΚΑ"
    default_title = "Εισφορές ΕΦΚΑ"
    default_bill_type = "social_security"

    def build_script(self) -> AutomationScript:
        return AutomationScript(
            provider_id=self.provider_id,
            login_url=LOGIN_URL,
            bills_urls=[CONTRIBUTIONS_URL],
            selectors=self.sso_selectors(),
            otp_markers=OTP_MARKERS,
            navigation_timeout_ms=self._navigation_timeout_ms,
            extraction=ExtractionPlan(
                container_selectors=[".contribution-row", ".payment-notice", "table tbody tr"],
                field_selectors={
                    "amount": "#totalAmount, .total-amount",
                    "due_date": "#dueDate, .due-date",
                    "payment_code": "#rfCode, .rf-code",
                },
            ),
        )
