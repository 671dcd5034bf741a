"""Automation backend factory."""

from __future__ import annotations

import logging

from billsync.core.config import Settings, get_settings

from .base import BaseAutomationClient
from .browserless import BrowserlessClient
from .contracts import AutomationScript, AutomationTransportError, BillFragment, ScrapeOutcome
from .mock import MockAutomationClient

logger = logging.getLogger(__name__)

__all__ = [
    "build_automation_client",
    "get_automation_client",
    "AutomationScript",
    "AutomationTransportError",
    "BaseAutomationClient",
    "BillFragment",
    "BrowserlessClient",
    "MockAutomationClient",
    "ScrapeOutcome",
]


def build_automation_client(settings: Settings) -> BaseAutomationClient:
    backend = settings.automation_backend.lower().strip()

    if backend == "mock":
        logger.warning("AUTOMATION_BACKEND=mock; provider portals will not be contacted")
        return MockAutomationClient()

    if backend != "browserless":
        logger.warning("Unknown automation backend %r; using browserless", backend)

    # An unconfigured Browserless client fails each run with a transport error,
    # which surfaces as a failed job instead of a silent empty sync.
    return BrowserlessClient(
        base_url=settings.browserless_url,
        token=settings.browserless_token,
        execution_timeout_ms=settings.automation_timeout_ms,
        abort_timeout_seconds=settings.automation_abort_timeout_seconds,
        launch_options=settings.automation_launch_options,
    )


def get_automation_client() -> BaseAutomationClient:
    """FastAPI dependency; overridden in tests."""
    return build_automation_client(get_settings())
