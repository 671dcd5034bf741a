"""Abstract base for automation backends."""

from __future__ import annotations

import abc
from typing import Any

from .contracts import AutomationScript, ScrapeOutcome


class BaseAutomationClient(abc.ABC):
    """Runs one ``AutomationScript`` and returns the validated outcome.

    Implementations raise ``AutomationTransportError`` when the backend cannot
    be reached or answers outside the envelope contract; portal-level failures
    come back as ``ScrapeOutcome(success=False)``.
    """

    name: str = "base"

    @abc.abstractmethod
    async def run(self, script: AutomationScript, context: dict[str, Any]) -> ScrapeOutcome:
        """Execute *script* with *context* (credentials) and return the outcome."""
