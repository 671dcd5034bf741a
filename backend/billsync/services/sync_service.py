"""``sync_provider_account``: one end-to-end synchronization of a provider account.

Order of work: load account, mark it ``syncing`` and open a ``running`` job
(committed before anything can fail), decrypt the password, run the provider
adapter, normalize and reconcile fragments, store evidence, then finalize the
job and the account in one commit. Any fault after the job is opened, task
cancellation included, still ends in a finished job and a non-``syncing``
account. Running jobs abandoned by a dead process are failed once they are
older than ``sync_job_stale_after_seconds``.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from billsync.core.config import Settings, get_settings
from billsync.core.storage import EvidenceUploadError, upload_evidence_screenshot
from billsync.core.vault import CredentialVault, CryptoError
from billsync.models.billing import ProviderAccount
from billsync.schemas.billing import AccountStatus, ErrorCode, SyncResultOut, external_error_code
from billsync.services.account_transitions import SYSTEM_ACTOR, begin_sync, record_sync_outcome
from billsync.services.automation import build_automation_client
from billsync.services.automation.base import BaseAutomationClient
from billsync.services.automation.contracts import ScrapeOutcome
from billsync.services.bill_reconciler import ReconcileAction, upsert_bill
from billsync.services.normalizer import normalize_fragment
from billsync.services.providers import ProviderAdapter, get_adapter
from billsync.services.sync_jobs import SyncCounts, begin_sync_job, fail_stale_sync_jobs, finish_sync_job
from billsync.utils.timeutil import now_utc

logger = logging.getLogger(__name__)

EvidenceUploader = Callable[..., str]


class ProviderAccountNotFoundError(Exception):
    def __init__(self, provider_account_id: str) -> None:
        super().__init__(f"Provider account {provider_account_id} not found")
        self.provider_account_id = provider_account_id


@dataclass(frozen=True)
class SyncSummary:
    success: bool
    provider_account_id: str
    sync_job_id: Optional[str] = None
    bills_found: int = 0
    bills_new: int = 0
    bills_updated: int = 0
    error: Optional[str] = None
    error_code: Optional[str] = None
    account_status: Optional[AccountStatus] = None

    def to_response(self) -> SyncResultOut:
        return SyncResultOut(
            success=self.success,
            provider_account_id=self.provider_account_id,
            sync_job_id=self.sync_job_id,
            bills_found=self.bills_found,
            bills_new=self.bills_new,
            bills_updated=self.bills_updated,
            error=self.error,
            error_code=external_error_code(self.error_code),
            account_status=self.account_status,
        )


def load_provider_account(db: Session, provider_account_id: str) -> ProviderAccount:
    try:
        account_id = uuid.UUID(str(provider_account_id))
    except ValueError as exc:
        raise ProviderAccountNotFoundError(str(provider_account_id)) from exc
    account = db.query(ProviderAccount).filter(ProviderAccount.id == account_id).one_or_none()
    if account is None:
        raise ProviderAccountNotFoundError(str(provider_account_id))
    return account


def _reconcile(
    db: Session,
    account: ProviderAccount,
    adapter: ProviderAdapter,
    outcome: ScrapeOutcome,
    *,
    scraped_at: datetime,
) -> tuple[SyncCounts, list[dict[str, Any]]]:
    found = new = updated = 0
    events: list[dict[str, Any]] = []
    today = scraped_at.date()
    for index, fragment in enumerate(outcome.bills):
        bill = normalize_fragment(fragment, default_title=adapter.default_title, today=today)
        if bill is None:
            events.append({"step": "fragment_dropped", "index": index, "reason": "no positive amount or reference"})
            continue
        found += 1
        action = upsert_bill(db, account=account, bill=bill, scraped_at=scraped_at)
        if action == ReconcileAction.CREATED:
            new += 1
        else:
            updated += 1
    events.append({"step": "reconcile", "found": found, "new": new, "updated": updated})
    return SyncCounts(found=found, new=new, updated=updated), events


def _store_evidence(
    account: ProviderAccount,
    outcome: ScrapeOutcome,
    uploader: Optional[EvidenceUploader],
    captured_at: datetime,
) -> tuple[Optional[str], Optional[dict[str, Any]]]:
    """Best-effort; never raises. Returns ``(path, debug_event)``."""
    if not outcome.screenshot or uploader is None:
        return None, None
    try:
        path = uploader(
            user_id=str(account.user_id),
            provider_id=account.provider_id,
            screenshot_b64=outcome.screenshot,
            captured_at=captured_at,
        )
    except EvidenceUploadError as exc:
        logger.warning("Evidence upload failed for account %s: %s", account.id, exc)
        return None, {"step": "evidence_failed", "message": str(exc)}
    except Exception as exc:  # noqa: BLE001 - evidence must not abort the sync
        logger.exception("Unexpected evidence upload failure for account %s", account.id)
        return None, {"step": "evidence_failed", "message": type(exc).__name__}
    return path, {"step": "evidence_stored", "path": path}


def _default_uploader(settings: Settings) -> Optional[EvidenceUploader]:
    if not settings.enable_evidence_upload:
        return None

    def upload(**kwargs) -> str:
        return upload_evidence_screenshot(settings=settings, **kwargs)

    return upload


async def sync_provider_account(
    db: Session,
    provider_account_id: str,
    *,
    automation_client: Optional[BaseAutomationClient] = None,
    vault: Optional[CredentialVault] = None,
    settings: Optional[Settings] = None,
    evidence_uploader: Optional[EvidenceUploader] = None,
    actor_type: str = SYSTEM_ACTOR,
    actor_id: Optional[str] = None,
) -> SyncSummary:
    """Synchronize one provider account.

    Raises ``ProviderAccountNotFoundError`` for an unknown id and re-raises
    ``CancelledError`` once the job is finalized; every other failure is
    reported through the returned summary and the finished job.
    """
    settings = settings or get_settings()
    account = load_provider_account(db, provider_account_id)
    account_id = str(account.id)

    stale_after = timedelta(seconds=settings.sync_job_stale_after_seconds)
    if fail_stale_sync_jobs(db, account, stale_after=stale_after):
        db.commit()

    try:
        begin_sync(db, account, actor_type=actor_type, actor_id=actor_id)
        job = begin_sync_job(db, account)
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.warning("Sync skipped for account %s: another run holds its running job", account_id)
        return SyncSummary(
            success=False,
            provider_account_id=account_id,
            error="A sync is already running for this account",
            error_code=ErrorCode.SYNC_IN_PROGRESS.value,
            account_status=AccountStatus(account.status),
        )
    job_id = str(job.id)
    logger.info("Sync started account=%s provider=%s job=%s", account_id, account.provider_id, job_id)

    counts = SyncCounts()
    audit_action: Optional[str] = None
    outcome: Optional[ScrapeOutcome] = None
    trail: list[Any] = []
    cancellation: Optional[asyncio.CancelledError] = None

    try:
        vault = vault or CredentialVault.from_settings(settings)
        password = vault.decrypt(account.encrypted_password, account.encryption_iv)
        trail.append({"step": "credentials_decrypted"})

        client = automation_client or build_automation_client(settings)
        adapter = get_adapter(account.provider_id, client, settings=settings)
        outcome = await adapter.execute(account.username, password)
        trail.extend(outcome.debug)

        if outcome.success:
            counts, events = _reconcile(db, account, adapter, outcome, scraped_at=now_utc())
            trail.extend(events)
    except CryptoError as exc:
        db.rollback()
        logger.error("Credential decryption failed for account %s: %s", account_id, exc)
        audit_action = "CREDENTIAL_DECRYPT_FAILED"
        trail.append({"step": "decrypt_failed", "message": str(exc)})
        outcome = ScrapeOutcome.failure(ErrorCode.INTERNAL_ERROR.value, "Stored credentials could not be decrypted")
        counts = SyncCounts()
    except asyncio.CancelledError as exc:
        # Finalize synchronously, then let the cancellation propagate.
        db.rollback()
        logger.warning("Sync cancelled for account %s job %s", account_id, job_id)
        cancellation = exc
        trail.append({"step": "cancelled"})
        outcome = ScrapeOutcome.failure(ErrorCode.INTERNAL_ERROR.value, "Sync cancelled before completion")
        counts = SyncCounts()
    except Exception as exc:  # noqa: BLE001 - a crash must still finish the job
        db.rollback()
        logger.exception("Sync crashed for account %s", account_id)
        trail.append({"step": "crashed", "message": f"{type(exc).__name__}: {exc}"})
        screenshot = outcome.screenshot if outcome is not None else None
        outcome = ScrapeOutcome.failure(ErrorCode.INTERNAL_ERROR.value, f"Sync failed: {type(exc).__name__}")
        outcome = outcome.model_copy(update={"screenshot": screenshot})
        counts = SyncCounts()

    evidence_path, event = _store_evidence(
        account,
        outcome,
        evidence_uploader if evidence_uploader is not None else _default_uploader(settings),
        now_utc(),
    )
    if event is not None:
        trail.append(event)
    outcome = outcome.model_copy(update={"debug": trail})

    try:
        finish_sync_job(db, job, outcome=outcome, counts=counts, evidence_path=evidence_path)
        new_status = record_sync_outcome(
            db,
            account,
            success=outcome.success,
            error_code=outcome.error_code,
            error_message=outcome.error,
            bills_found=counts.found,
            sync_job_id=job_id,
            audit_action=audit_action,
            settings=settings,
        )
        db.commit()
    except Exception:
        db.rollback()
        logger.exception("Failed to finalize sync job %s for account %s", job_id, account_id)
        raise

    if cancellation is not None:
        raise cancellation

    logger.info(
        "Sync finished account=%s provider=%s job=%s status=%s error_code=%s found=%s new=%s updated=%s",
        account_id,
        account.provider_id,
        job_id,
        new_status.value,
        outcome.error_code,
        counts.found,
        counts.new,
        counts.updated,
    )
    return SyncSummary(
        success=outcome.success,
        provider_account_id=account_id,
        sync_job_id=job_id,
        bills_found=counts.found,
        bills_new=counts.new,
        bills_updated=counts.updated,
        error=outcome.error,
        error_code=outcome.error_code,
        account_status=new_status,
    )


def get_evidence_uploader() -> Optional[EvidenceUploader]:
    """FastAPI dependency; overridden in tests."""
    return _default_uploader(get_settings())
