import base64
import binascii
import json
from functools import lru_cache
from typing import Any

from pydantic import AliasChoices, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _csv_or_json_list(value: Any) -> list[str]:
    """``'a,b'``, ``'["a","b"]'`` and ``["a", "b"]`` all become ``["a", "b"]``."""
    items: Any = value
    if isinstance(value, str):
        text = value.strip()
        items = text.split(",")
        if text.startswith("["):
            try:
                items = json.loads(text)
            except ValueError:
                pass
    if not isinstance(items, (list, tuple)):
        return []
    return [str(item).strip() for item in items if str(item).strip()]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        extra="forbid",
        validate_by_name=True,
        populate_by_name=True,
    )
    environment: str = Field(default="development", validation_alias=AliasChoices("ENVIRONMENT", "ENV"))

    supabase_url: str = ""
    supabase_service_role_key: str = ""
    supabase_jwt_secret: str = ""
    supabase_jwt_audience: str = "authenticated"
    database_url: str = ""

    # base64-encoded 256-bit AES-GCM key for stored provider passwords
    encryption_key: SecretStr = Field(default=SecretStr(""), validation_alias=AliasChoices("ENCRYPTION_KEY"))

    automation_backend: str = "browserless"
    browserless_url: str = ""
    browserless_token: str = ""
    automation_timeout_ms: int = 120_000
    automation_abort_timeout_seconds: float = 150.0
    automation_navigation_timeout_ms: int = 30_000
    automation_launch_options: dict[str, Any] = Field(
        default_factory=lambda: {"headless": True, "stealth": True}
    )

    sync_interval_hours: int = 24
    sync_job_stale_after_seconds: int = 900
    evidence_bucket: str = "sync-evidence"
    enable_evidence_upload: bool = True

    enable_recurring_jobs: bool = False
    daily_sync_interval_seconds: int = 3600
    daily_sync_delay_ms: int = 500
    daily_sync_batch_size: int = 100

    docs_enabled: bool = Field(default=True)
    openapi_enabled: bool = Field(default=True)
    expose_error_details: bool = False

    pii_redaction_enabled: bool = Field(
        default=True,
        validation_alias=AliasChoices("PII_REDACTION_ENABLED"),
    )
    pii_redaction_fields: list[str] = Field(
        default_factory=lambda: [
            "username",
            "password",
            "email",
            "phone",
            "tax_id",
            "afm",
            "amka",
        ],
        validation_alias=AliasChoices("PII_REDACTION_FIELDS"),
    )

    cors_allow_origins: list[str] = Field(default_factory=list)
    cors_allow_methods: list[str] = Field(default_factory=lambda: ["GET", "POST", "OPTIONS"])
    cors_allow_headers: list[str] = Field(default_factory=lambda: [
        "Authorization",
        "Content-Type",
        "Accept",
        "apikey",
        "x-client-info",
    ])

    @field_validator(
        "cors_allow_origins",
        "cors_allow_methods",
        "cors_allow_headers",
        "pii_redaction_fields",
        mode="before",
    )
    @classmethod
    def _split_csv(cls, value):
        if value is None:
            return []
        if isinstance(value, str):
            return _csv_or_json_list(value)
        return value

    @field_validator("automation_launch_options", mode="before")
    @classmethod
    def _parse_launch_options(cls, value):
        if value is None or value == "":
            return {}
        if isinstance(value, str):
            parsed = json.loads(value)
            if not isinstance(parsed, dict):
                raise ValueError("AUTOMATION_LAUNCH_OPTIONS must be a JSON object")
            return parsed
        return value

    @property
    def is_production(self) -> bool:
        return self.environment.strip().lower() in {"production", "prod"}

    def encryption_key_bytes(self) -> bytes:
        raw = self.encryption_key.get_secret_value().strip()
        if not raw:
            return b""
        try:
            return base64.b64decode(raw, validate=True)
        except (binascii.Error, ValueError):
            return b""

    def validate_required_config(self) -> list[str]:
        errors: list[str] = []
        if not self.database_url:
            errors.append("DATABASE_URL is not set")
        if len(self.encryption_key_bytes()) != 32:
            errors.append("ENCRYPTION_KEY must be a base64-encoded 32-byte key")
        backend = self.automation_backend.strip().lower()
        if backend not in {"browserless", "mock"}:
            errors.append(f"AUTOMATION_BACKEND {self.automation_backend!r} is not supported")
        if backend == "browserless":
            if not self.browserless_url:
                errors.append("BROWSERLESS_URL is not set")
            if not self.browserless_token:
                errors.append("BROWSERLESS_TOKEN is not set")
        if self.automation_abort_timeout_seconds * 1000 <= self.automation_timeout_ms:
            errors.append("AUTOMATION_ABORT_TIMEOUT_SECONDS must exceed AUTOMATION_TIMEOUT_MS")
        if self.sync_job_stale_after_seconds <= self.automation_abort_timeout_seconds:
            errors.append("SYNC_JOB_STALE_AFTER_SECONDS must exceed AUTOMATION_ABORT_TIMEOUT_SECONDS")
        if self.enable_evidence_upload and not (self.supabase_url and self.supabase_service_role_key):
            errors.append("SUPABASE_URL/SUPABASE_SERVICE_ROLE_KEY are required for evidence upload")
        return errors


@lru_cache
def get_settings() -> Settings:
    return Settings()
