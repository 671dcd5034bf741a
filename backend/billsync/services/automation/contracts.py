"""Automation contracts: declarative scripts in, ``ScrapeOutcome`` out.

``ScrapeOutcome`` is the provider-agnostic result of one adapter execution and
doubles as the response envelope of the remote automation capability.
"""

from __future__ import annotations

import json
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator


class AutomationTransportError(Exception):
    """Remote capability unreachable, timed out, or answered with a malformed envelope."""


class BillFragment(BaseModel):
    """One raw extracted bill candidate before normalization."""

    model_config = ConfigDict(extra="ignore")

    title: str = ""
    amount: Union[str, float, int, None] = None
    due_date: Optional[str] = None
    reference_number: Optional[str] = None
    bill_type: Optional[str] = None
    issue_date: Optional[str] = None
    period_start: Optional[str] = None
    period_end: Optional[str] = None
    payment_code: Optional[str] = None

    @field_validator("due_date", "reference_number", "issue_date", "period_start", "period_end", "payment_code", mode="before")
    @classmethod
    def _stringify(cls, value):
        if value is None:
            return None
        text = str(value).strip()
        return text or None

    @field_validator("title", mode="before")
    @classmethod
    def _title(cls, value):
        return "" if value is None else str(value).strip()


class ContainerSnapshot(BaseModel):
    model_config = ConfigDict(extra="ignore")

    selector: str = ""
    text: str = ""
    cells: list[str] = Field(default_factory=list)


class PageSnapshot(BaseModel):
    """What the runtime saw on the bills view, for the Python-side strategies."""

    model_config = ConfigDict(extra="ignore")

    url: str = ""
    title: str = ""
    containers: list[ContainerSnapshot] = Field(default_factory=list)
    fields: dict[str, str] = Field(default_factory=dict)
    states: list[str] = Field(default_factory=list)
    text: str = ""


class ScrapeOutcome(BaseModel):
    model_config = ConfigDict(extra="ignore")

    success: bool
    bills: list[BillFragment] = Field(default_factory=list)
    error: Optional[str] = None
    error_code: Optional[str] = None
    debug: list[Any] = Field(default_factory=list)
    screenshot: Optional[str] = None
    page: Optional[PageSnapshot] = None

    @field_validator("bills", "debug", mode="before")
    @classmethod
    def _none_as_empty(cls, value):
        return [] if value is None else value

    @field_validator("screenshot", mode="before")
    @classmethod
    def _drop_non_string_screenshot(cls, value):
        # Evidence is best-effort; a garbled screenshot must not reject the envelope.
        return value if isinstance(value, str) and value else None

    @classmethod
    def failure(cls, error_code: str, error: str, *, debug: Optional[list[Any]] = None) -> "ScrapeOutcome":
        return cls(success=False, bills=[], error=error, error_code=error_code, debug=list(debug or []))


class SelectorPlan(BaseModel):
    """Login procedure: each list is tried in order until one selector matches."""

    username: list[str]
    password: list[str]
    submit: list[str] = Field(default_factory=list)
    next: list[str] = Field(default_factory=list)
    dismiss: list[str] = Field(default_factory=list)
    login_error: list[str] = Field(default_factory=list)
    otp: list[str] = Field(default_factory=list)


class ExtractionPlan(BaseModel):
    container_selectors: list[str] = Field(default_factory=list)
    field_selectors: dict[str, str] = Field(default_factory=dict)
    state_selectors: list[str] = Field(default_factory=list)
    state_globals: list[str] = Field(default_factory=list)
    max_containers: int = 60
    max_text_chars: int = 20_000


class AutomationScript(BaseModel):
    provider_id: str
    login_url: str
    bills_urls: list[str] = Field(default_factory=list)
    selectors: SelectorPlan
    otp_markers: list[str] = Field(default_factory=list)
    two_step_login: bool = False
    navigation_timeout_ms: int = 30_000
    settle_ms: int = 1_500
    extraction: ExtractionPlan = Field(default_factory=ExtractionPlan)

    def render(self) -> str:
        """Return the runtime source with this plan embedded as a JSON literal.

        Only adapter-authored data is embedded; credentials travel in the
        request context and never reach the source text.
        """
        from .runtime import RUNTIME_TEMPLATE

        plan = json.dumps(self.model_dump(mode="json"), ensure_ascii=True)
        return RUNTIME_TEMPLATE.replace("__PLAN__", plan)


def unwrap_envelope(payload: Any) -> ScrapeOutcome:
    """Accept ``{success, ...}`` or ``{data: {success, ...}, type}``; anything else is a transport error."""
    body = payload
    if isinstance(body, dict) and "data" in body and not isinstance(body.get("success"), bool):
        body = body["data"]
        if isinstance(body, str):
            try:
                body = json.loads(body)
            except ValueError as exc:
                raise AutomationTransportError("Automation response data is not JSON") from exc

    if not isinstance(body, dict) or not isinstance(body.get("success"), bool):
        raise AutomationTransportError("Automation response lacks a boolean 'success' field")

    try:
        return ScrapeOutcome.model_validate(body)
    except ValidationError as exc:
        raise AutomationTransportError(f"Automation response failed validation: {exc.error_count()} error(s)") from exc
