import logging
from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy.orm import Session

from billsync.core.config import Settings, get_settings
from billsync.models.billing import AuditLog, ProviderAccount
from billsync.schemas.billing import AccountStatus, ErrorCode
from billsync.utils.alerting import alert_tracker
from billsync.utils.timeutil import now_utc

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "SYSTEM_SYNC"

ALLOWED_TRANSITIONS = {
    AccountStatus.PENDING: [AccountStatus.SYNCING],
    AccountStatus.SYNCING: [AccountStatus.CONNECTED, AccountStatus.ERROR, AccountStatus.NEEDS_OTP],
    AccountStatus.CONNECTED: [AccountStatus.SYNCING],
    AccountStatus.ERROR: [AccountStatus.SYNCING],
    AccountStatus.NEEDS_OTP: [AccountStatus.SYNCING],
}

# Used when redaction is on but PII_REDACTION_FIELDS is empty.
DEFAULT_REDACTED_KEYS = frozenset({"username", "password", "email", "phone", "tax_id", "afm", "amka"})
REDACTED = "[REDACTED]"


class InvalidStatusTransitionError(Exception):
    def __init__(self, current: AccountStatus, new: AccountStatus) -> None:
        super().__init__(f"Invalid account status transition: {current.value} -> {new.value}")
        self.current = current
        self.new = new


def _redacted_keys(settings: Settings) -> frozenset[str]:
    if not settings.pii_redaction_enabled:
        return frozenset()
    configured = frozenset(field.lower() for field in settings.pii_redaction_fields)
    return configured or DEFAULT_REDACTED_KEYS


def _scrub(value: Any, keys: frozenset[str]) -> Any:
    if not keys:
        return value
    if isinstance(value, dict):
        return {
            key: REDACTED if isinstance(key, str) and key.lower() in keys else _scrub(item, keys)
            for key, item in value.items()
        }
    if isinstance(value, list):
        return [_scrub(item, keys) for item in value]
    return value


def create_audit_log(
    db: Session,
    *,
    entity_type: str,
    entity_id: str,
    action: str,
    old_value: Optional[dict[str, Any]],
    new_value: Optional[dict[str, Any]],
    actor_type: str,
    actor_id: Optional[str],
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
    metadata: Optional[dict[str, Any]] = None,
) -> AuditLog:
    """Stage an audit row; PII keys in the JSON payloads are masked first."""
    keys = _redacted_keys(get_settings())
    entry = AuditLog(
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        old_value=_scrub(old_value, keys),
        new_value=_scrub(new_value, keys),
        actor_type=actor_type,
        actor_id=actor_id,
        ip_address=ip_address,
        user_agent=user_agent,
        audit_meta=_scrub(metadata, keys),
    )
    db.add(entry)
    try:
        alert_tracker.record(action, metadata)
    except Exception:
        logger.exception("Alert tracker failed for action=%s", action)
    return entry


def apply_status_transition(
    db: Session,
    *,
    account: ProviderAccount,
    new_status: AccountStatus,
    actor_type: str = SYSTEM_ACTOR,
    actor_id: Optional[str] = None,
    metadata: Optional[dict[str, Any]] = None,
) -> bool:
    """Move *account* to *new_status*; ``False`` when it is already there."""
    current = AccountStatus(account.status)

    if new_status == current:
        return False

    if new_status not in ALLOWED_TRANSITIONS.get(current, []):
        raise InvalidStatusTransitionError(current, new_status)

    old_status = account.status
    account.status = new_status.value

    create_audit_log(
        db,
        entity_type="provider_account",
        entity_id=str(account.id),
        action="STATUS_CHANGE",
        old_value={"status": old_status},
        new_value={"status": account.status},
        actor_type=actor_type,
        actor_id=actor_id,
        metadata=metadata,
    )
    return True


def status_for_outcome(success: bool, error_code: Optional[str]) -> AccountStatus:
    if success:
        return AccountStatus.CONNECTED
    if error_code == ErrorCode.TWO_FACTOR_REQUIRED.value:
        return AccountStatus.NEEDS_OTP
    return AccountStatus.ERROR


def begin_sync(db: Session, account: ProviderAccount, *, actor_type: str = SYSTEM_ACTOR, actor_id: Optional[str] = None) -> None:
    # syncing -> syncing is a no-op, so an account left behind by a crashed run can sync again.
    apply_status_transition(db, account=account, new_status=AccountStatus.SYNCING, actor_type=actor_type, actor_id=actor_id)
    account.status_message = None


def audit_action_for(success: bool, error_code: Optional[str]) -> str:
    if success:
        return "SYNC_COMPLETED"
    if error_code == ErrorCode.LOGIN_FORM_NOT_FOUND.value:
        return "SCRAPER_BROKEN"
    if error_code == ErrorCode.TRANSPORT_ERROR.value:
        return "AUTOMATION_TRANSPORT_FAILED"
    return "SYNC_FAILED"


def record_sync_outcome(
    db: Session,
    account: ProviderAccount,
    *,
    success: bool,
    error_code: Optional[str] = None,
    error_message: Optional[str] = None,
    bills_found: int = 0,
    sync_job_id: Optional[str] = None,
    audit_action: Optional[str] = None,
    now: Optional[datetime] = None,
    settings: Optional[Settings] = None,
) -> AccountStatus:
    """Apply the post-sync transition and counters.

    Every outcome bumps ``sync_count`` and schedules the next run a fixed
    interval ahead; failures bump ``error_count`` and successes reset it.
    """
    settings = settings or get_settings()
    now = now or now_utc()

    if AccountStatus(account.status) != AccountStatus.SYNCING:
        begin_sync(db, account)

    new_status = status_for_outcome(success, error_code)
    apply_status_transition(
        db,
        account=account,
        new_status=new_status,
        metadata={"error_code": error_code, "sync_job_id": sync_job_id},
    )

    account.sync_count = (account.sync_count or 0) + 1
    account.error_count = 0 if success else (account.error_count or 0) + 1
    account.last_sync_at = now
    account.last_sync_success = success
    account.last_sync_bills_found = bills_found
    account.next_sync_at = now + timedelta(hours=settings.sync_interval_hours)
    account.status_message = None if success else (error_message or error_code)

    create_audit_log(
        db,
        entity_type="provider_account",
        entity_id=str(account.id),
        action=audit_action or audit_action_for(success, error_code),
        old_value=None,
        new_value={"status": new_status.value, "bills_found": bills_found},
        actor_type=SYSTEM_ACTOR,
        actor_id=None,
        metadata={
            "provider_id": account.provider_id,
            "error_code": error_code,
            "sync_job_id": sync_job_id,
            "error_count": account.error_count,
        },
    )

    if not success:
        logger.info(
            "Account %s (%s) -> %s error_code=%s error_count=%s",
            account.id,
            account.provider_id,
            new_status.value,
            error_code,
            account.error_count,
        )
    return new_status
