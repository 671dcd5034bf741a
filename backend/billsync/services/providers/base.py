"""Abstract base for provider adapters."""

from __future__ import annotations

import abc
import logging
from decimal import Decimal
from typing import Any, Optional

from billsync.schemas.billing import ErrorCode
from billsync.services.automation.base import BaseAutomationClient
from billsync.services.automation.contracts import (
    AutomationScript,
    AutomationTransportError,
    BillFragment,
    ScrapeOutcome,
)

from .extraction import assign_fallback_references, extract_fragments

logger = logging.getLogger(__name__)

DEFAULT_MAX_AMOUNT = Decimal("10000.00")

# Shared by every portal: cookie banners and generic error boxes.
COMMON_DISMISS_SELECTORS = [
    "#onetrust-accept-btn-handler",
    "button#acceptCookies",
    ".cookie-consent button",
    "button[aria-label*='Accept']",
]
COMMON_ERROR_SELECTORS = [
    ".alert-danger",
    ".error-message",
    ".login-error",
    "[role='alert']",
]


class ProviderAdapter(abc.ABC):
    """Contract that every provider adapter must implement.

    Subclasses describe their portal through ``build_script()`` and may refine
    fragments with ``classify()``. ``execute()`` never raises: transport faults,
    portal failures and extraction bugs all come back as ``ScrapeOutcome``.
    """

    provider_id: str = ""
    display_name: str = ""
    default_title: str = ""
    default_bill_type: Optional[str] = None
    max_amount: Decimal = DEFAULT_MAX_AMOUNT

    def __init__(self, client: BaseAutomationClient, *, navigation_timeout_ms: int = 30_000) -> None:
        self._client = client
        self._navigation_timeout_ms = int(navigation_timeout_ms)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(client={self._client.name!r})"

    @abc.abstractmethod
    def build_script(self) -> AutomationScript:
        """Return the declarative login + navigation + extraction plan."""

    def classify(self, fragment: BillFragment, source_text: str) -> BillFragment:
        """Fill title and bill type from adapter defaults when the page gave none."""
        update: dict[str, Any] = {}
        if not fragment.title:
            update["title"] = self.default_title
        if not fragment.bill_type and self.default_bill_type:
            update["bill_type"] = self.default_bill_type
        return fragment.model_copy(update=update) if update else fragment

    def detect_second_factor(self, outcome: ScrapeOutcome) -> bool:
        return False

    async def execute(self, username: str, password: str) -> ScrapeOutcome:
        debug: list[Any] = [{"step": "adapter_start", "provider": self.provider_id}]
        try:
            script = self.build_script()
            outcome = await self._client.run(script, {"credentials": {"username": username, "password": password}})
        except AutomationTransportError as exc:
            logger.warning("Automation transport failed for provider=%s: %s", self.provider_id, exc)
            debug.append({"step": "transport_error", "message": str(exc)})
            return ScrapeOutcome.failure(ErrorCode.TRANSPORT_ERROR.value, str(exc), debug=debug)

        try:
            return self.interpret(outcome, debug)
        except Exception as exc:  # noqa: BLE001 - adapters report, never raise
            logger.exception("Result interpretation failed for provider=%s", self.provider_id)
            debug.append({"step": "interpret_failed", "message": str(exc)})
            failed = ScrapeOutcome.failure(ErrorCode.SCRAPER_ERROR.value, f"Extraction failed: {exc}", debug=debug)
            return failed.model_copy(update={"screenshot": outcome.screenshot})

    def interpret(self, outcome: ScrapeOutcome, debug: list[Any]) -> ScrapeOutcome:
        trail = list(debug) + list(outcome.debug)

        if outcome.error_code != ErrorCode.TWO_FACTOR_REQUIRED.value and self.detect_second_factor(outcome):
            trail.append({"step": "second_factor_detected", "source": "page"})
            outcome = outcome.model_copy(
                update={
                    "success": False,
                    "error_code": ErrorCode.TWO_FACTOR_REQUIRED.value,
                    "error": "Portal requires a second authentication factor",
                }
            )

        if not outcome.success:
            return outcome.model_copy(
                update={
                    "bills": [],
                    "error_code": outcome.error_code or ErrorCode.SCRAPER_ERROR.value,
                    "error": outcome.error or f"{self.display_name or self.provider_id} automation failed",
                    "debug": trail,
                    "page": None,
                }
            )

        if outcome.bills:
            fragments = [self.classify(fragment, "") for fragment in outcome.bills]
            trail.append({"step": "extract", "strategy": "backend", "fragments": len(fragments)})
        elif outcome.page is not None:
            fragments, events = extract_fragments(outcome.page, classify=self.classify, max_amount=self.max_amount)
            trail.extend(events)
        else:
            fragments = []
            trail.append({"step": "extract", "strategy": "none", "fragments": 0, "reason": "no page snapshot"})

        fragments = assign_fallback_references(fragments, self.provider_id)
        return outcome.model_copy(update={"bills": fragments, "debug": trail, "page": None})


class UnknownProviderAdapter(ProviderAdapter):
    """Stand-in for provider ids outside the registry; never contacts a portal."""

    def __init__(self, provider_id: str) -> None:
        self.provider_id = provider_id
        self._client = None

    def __repr__(self) -> str:
        return f"UnknownProviderAdapter({self.provider_id!r})"

    def build_script(self) -> AutomationScript:
        raise NotImplementedError("No automation script for unknown providers")

    async def execute(self, username: str, password: str) -> ScrapeOutcome:
        return ScrapeOutcome.failure(
            ErrorCode.PROVIDER_NOT_FOUND.value,
            f"Provider {self.provider_id} not supported",
            debug=[{"step": "adapter_lookup", "provider": self.provider_id, "found": False}],
        )
