from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session

from billsync.core.config import Settings, get_settings
from billsync.core.dependencies import SessionLocal
from billsync.core.vault import CredentialVault
from billsync.models.billing import ProviderAccount
from billsync.schemas.billing import AccountStatus
from billsync.services.automation.base import BaseAutomationClient
from billsync.services.sync_service import EvidenceUploader, sync_provider_account

logger = logging.getLogger(__name__)

# needs_otp waits for the user; syncing belongs to a run in progress unless it
# has sat untouched past the stale horizon.
DUE_STATUSES = (AccountStatus.CONNECTED.value, AccountStatus.ERROR.value, AccountStatus.PENDING.value)


@dataclass
class DueSyncReport:
    accounts_processed: int = 0
    success_count: int = 0
    fail_count: int = 0


def db_now(settings: Settings) -> datetime:
    # SQLite (used in tests) stores timezone-aware datetimes as naive values.
    if (settings.database_url or "").startswith("sqlite"):
        return datetime.now(timezone.utc).replace(tzinfo=None)
    return datetime.now(timezone.utc)


def find_due_account_ids(
    db: Session, *, now: datetime, limit: int, stuck_before: Optional[datetime] = None
) -> list[str]:
    due = and_(
        ProviderAccount.status.in_(DUE_STATUSES),
        or_(ProviderAccount.next_sync_at.is_(None), ProviderAccount.next_sync_at <= now),
    )
    if stuck_before is not None:
        stuck = and_(
            ProviderAccount.status == AccountStatus.SYNCING.value,
            ProviderAccount.updated_at <= stuck_before,
        )
        due = or_(due, stuck)
    rows = db.execute(
        select(ProviderAccount.id)
        .where(due)
        .order_by(ProviderAccount.next_sync_at.asc().nulls_first(), ProviderAccount.created_at.asc())
        .limit(limit)
    ).scalars()
    return [str(account_id) for account_id in rows]


async def sync_due_accounts_once(
    db: Session,
    *,
    automation_client: Optional[BaseAutomationClient] = None,
    vault: Optional[CredentialVault] = None,
    settings: Optional[Settings] = None,
    evidence_uploader: Optional[EvidenceUploader] = None,
    now: Optional[datetime] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> DueSyncReport:
    """Sync every due account one after another, pausing between calls.

    A failing account is counted and skipped; it never stops the sweep.
    """
    settings = settings or get_settings()
    now = now or db_now(settings)
    account_ids = find_due_account_ids(
        db,
        now=now,
        limit=max(1, int(settings.daily_sync_batch_size)),
        stuck_before=now - timedelta(seconds=settings.sync_job_stale_after_seconds),
    )
    report = DueSyncReport()
    delay_seconds = max(0, settings.daily_sync_delay_ms) / 1000

    for index, account_id in enumerate(account_ids):
        if index and delay_seconds:
            await sleep(delay_seconds)
        report.accounts_processed += 1
        try:
            summary = await sync_provider_account(
                db,
                account_id,
                automation_client=automation_client,
                vault=vault,
                settings=settings,
                evidence_uploader=evidence_uploader,
            )
        except Exception:
            db.rollback()
            logger.exception("Scheduled sync failed for account %s", account_id)
            report.fail_count += 1
            continue
        if summary.success:
            report.success_count += 1
        else:
            report.fail_count += 1

    if account_ids:
        logger.info(
            "Daily sync processed=%s success=%s failed=%s",
            report.accounts_processed,
            report.success_count,
            report.fail_count,
        )
    return report


async def _daily_sync_loop(*, interval_seconds: int) -> None:
    # Backoff on errors to avoid tight loops.
    error_sleep = max(10, min(300, interval_seconds))
    while True:
        try:
            settings = get_settings()
            if not settings.enable_recurring_jobs or SessionLocal is None:
                await asyncio.sleep(interval_seconds)
                continue

            db = SessionLocal()
            try:
                await sync_due_accounts_once(db, settings=settings)
            finally:
                db.close()
            await asyncio.sleep(interval_seconds)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Daily sync worker error")
            await asyncio.sleep(error_sleep)


def start_daily_sync_worker() -> asyncio.Task | None:
    settings = get_settings()
    interval = int(max(60, settings.daily_sync_interval_seconds or 3600))
    return asyncio.create_task(_daily_sync_loop(interval_seconds=interval))
