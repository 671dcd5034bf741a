"""Browserless ``/function`` backend."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any, Optional

import httpx

from .base import BaseAutomationClient
from .contracts import AutomationScript, AutomationTransportError, ScrapeOutcome, unwrap_envelope

logger = logging.getLogger(__name__)


class BrowserlessClient(BaseAutomationClient):
    """POSTs ``{code, context}`` to ``/function`` with two timeouts.

    ``execution_timeout_ms`` is passed to Browserless as its own limit;
    ``abort_timeout_seconds`` bounds the whole HTTP exchange on our side in case
    the remote does not honor it.
    """

    name = "browserless"

    def __init__(
        self,
        *,
        base_url: str,
        token: str,
        execution_timeout_ms: int = 120_000,
        abort_timeout_seconds: float = 150.0,
        launch_options: Optional[dict[str, Any]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._base_url = (base_url or "").rstrip("/")
        self._token = token or ""
        self._execution_timeout_ms = int(execution_timeout_ms)
        self._abort_timeout_seconds = float(abort_timeout_seconds)
        self._launch_options = dict(launch_options or {})
        self._transport = transport

    def __repr__(self) -> str:
        return f"BrowserlessClient(base_url={self._base_url!r})"

    async def _post(self, body: dict[str, Any]) -> Any:
        params = {
            "token": self._token,
            "launch": json.dumps(self._launch_options, separators=(",", ":")),
            "timeout": str(self._execution_timeout_ms),
        }
        async with httpx.AsyncClient(timeout=self._abort_timeout_seconds, transport=self._transport) as client:
            resp = await client.post(f"{self._base_url}/function", params=params, json=body)
            resp.raise_for_status()
            return resp.json()

    async def run(self, script: AutomationScript, context: dict[str, Any]) -> ScrapeOutcome:
        if not self._base_url or not self._token:
            raise AutomationTransportError("Browserless endpoint is not configured")

        body = {"code": script.render(), "context": context}
        t0 = time.monotonic()
        try:
            payload = await asyncio.wait_for(self._post(body), timeout=self._abort_timeout_seconds)
        except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
            raise AutomationTransportError(
                f"Automation call for {script.provider_id} timed out after {self._abort_timeout_seconds:.0f}s"
            ) from exc
        except httpx.HTTPStatusError as exc:
            raise AutomationTransportError(
                f"Automation backend returned HTTP {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            # The request URL carries the token; report only the exception type.
            raise AutomationTransportError(f"Automation backend unreachable ({type(exc).__name__})") from exc
        except ValueError as exc:
            raise AutomationTransportError("Automation backend returned non-JSON body") from exc

        elapsed_ms = (time.monotonic() - t0) * 1000
        outcome = unwrap_envelope(payload)
        logger.info(
            "Automation run provider=%s success=%s error_code=%s latency_ms=%.0f",
            script.provider_id,
            outcome.success,
            outcome.error_code,
            elapsed_ms,
        )
        return outcome
