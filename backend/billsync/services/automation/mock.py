"""Mock backend: canned envelopes for local development and tests."""

from __future__ import annotations

from typing import Any, Optional

from .base import BaseAutomationClient
from .contracts import AutomationScript, AutomationTransportError, ScrapeOutcome, unwrap_envelope


class MockAutomationClient(BaseAutomationClient):
    """Returns ``responses[provider_id]`` (or *default*) through the real envelope check.

    A response that is an exception instance is raised instead, which lets tests
    simulate transport failures.
    """

    name = "mock"

    def __init__(
        self,
        responses: Optional[dict[str, Any]] = None,
        *,
        default: Any = None,
    ) -> None:
        self._responses = dict(responses or {})
        self._default = default if default is not None else {"success": True, "bills": [], "debug": []}
        self.calls: list[tuple[AutomationScript, dict[str, Any]]] = []

    async def run(self, script: AutomationScript, context: dict[str, Any]) -> ScrapeOutcome:
        self.calls.append((script, context))
        payload = self._responses.get(script.provider_id, self._default)
        if isinstance(payload, BaseException):
            raise payload
        if callable(payload):
            payload = payload(script, context)
        if payload is None:
            raise AutomationTransportError("Mock backend has no response configured")
        return unwrap_envelope(payload)
