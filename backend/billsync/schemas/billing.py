from datetime import datetime
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, Field, field_validator


class AccountStatus(str, Enum):
    PENDING = "pending"
    SYNCING = "syncing"
    CONNECTED = "connected"
    ERROR = "error"
    NEEDS_OTP = "needs_otp"


class SyncJobStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class ErrorCode(str, Enum):
    LOGIN_FAILED = "LOGIN_FAILED"
    LOGIN_FORM_NOT_FOUND = "LOGIN_FORM_NOT_FOUND"
    TWO_FACTOR_REQUIRED = "2FA_REQUIRED"
    PROVIDER_NOT_FOUND = "PROVIDER_NOT_FOUND"
    BAD_REQUEST = "BAD_REQUEST"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    SCRAPER_ERROR = "SCRAPER_ERROR"
    TRANSPORT_ERROR = "TRANSPORT_ERROR"
    SYNC_IN_PROGRESS = "SYNC_IN_PROGRESS"


# Codes whose meaning differs for API callers: a missing login form means the
# adapter itself needs maintenance, not that the user did something wrong.
EXTERNAL_ERROR_CODES = {
    ErrorCode.LOGIN_FORM_NOT_FOUND.value: "SCRAPER_BROKEN",
}


def external_error_code(code: Optional[str]) -> Optional[str]:
    if code is None:
        return None
    return EXTERNAL_ERROR_CODES.get(code, code)


class BillSource(str, Enum):
    SCRAPED = "scraped"
    MANUAL = "manual"


class SyncRequest(BaseModel):
    provider_account_id: str

    @field_validator("provider_account_id")
    @classmethod
    def _strip(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("provider_account_id is required")
        return value


class SyncResultOut(BaseModel):
    success: bool
    provider_account_id: str
    sync_job_id: Optional[str] = None
    bills_found: int = 0
    bills_new: int = 0
    bills_updated: int = 0
    error: Optional[str] = None
    error_code: Optional[str] = None
    account_status: Optional[AccountStatus] = None


class DueSyncResultOut(BaseModel):
    accounts_processed: int
    success_count: int
    fail_count: int
    timestamp: datetime


class ProviderAccountCreate(BaseModel):
    provider_id: str = Field(min_length=1, max_length=32)
    username: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=512)

    @field_validator("provider_id")
    @classmethod
    def _normalize_provider(cls, value: str) -> str:
        return value.strip().upper()

    @field_validator("username")
    @classmethod
    def _strip_username(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("username is required")
        return value


class ProviderAccountOut(BaseModel):
    id: str
    provider_id: str
    username_masked: str
    status: AccountStatus
    status_message: Optional[str] = None
    last_sync_at: Optional[datetime] = None
    last_sync_success: Optional[bool] = None
    next_sync_at: Optional[datetime] = None
    sync_count: int = 0
    error_count: int = 0


class ProviderAccountCreateOut(BaseModel):
    success: bool
    account: ProviderAccountOut
    sync_result: SyncResultOut


class ProviderAccountListResponse(BaseModel):
    items: List[ProviderAccountOut]


class SyncJobOut(BaseModel):
    id: str
    provider_account_id: str
    status: SyncJobStatus
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration_ms: Optional[int] = None
    bills_found: int = 0
    bills_new: int = 0
    bills_updated: int = 0
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    debug_log: Optional[List[Any]] = None
    evidence_path: Optional[str] = None


class SyncJobListResponse(BaseModel):
    items: List[SyncJobOut]

