"""SyncJob lifecycle: one ``running`` row per pipeline run, finalized exactly once."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from billsync.models.billing import ProviderAccount, SyncJob
from billsync.schemas.billing import ErrorCode, SyncJobStatus
from billsync.services.automation.contracts import ScrapeOutcome
from billsync.utils.timeutil import as_utc, now_utc

logger = logging.getLogger(__name__)

ERROR_MESSAGE_MAX_CHARS = 2000


class SyncJobFinalizedError(Exception):
    pass


@dataclass(frozen=True)
class SyncCounts:
    found: int = 0
    new: int = 0
    updated: int = 0


def begin_sync_job(db: Session, account: ProviderAccount, *, started_at: Optional[datetime] = None) -> SyncJob:
    job = SyncJob(
        provider_account_id=account.id,
        user_id=account.user_id,
        status=SyncJobStatus.RUNNING.value,
        started_at=started_at or now_utc(),
    )
    db.add(job)
    db.flush()
    return job


def finish_sync_job(
    db: Session,
    job: SyncJob,
    *,
    outcome: ScrapeOutcome,
    counts: SyncCounts,
    evidence_path: Optional[str] = None,
    finished_at: Optional[datetime] = None,
) -> SyncJob:
    if job.status != SyncJobStatus.RUNNING.value:
        raise SyncJobFinalizedError(f"Sync job {job.id} already {job.status}")

    finished_at = finished_at or now_utc()
    started_at = as_utc(job.started_at) or finished_at
    duration_ms = int((finished_at - started_at).total_seconds() * 1000)

    job.status = SyncJobStatus.COMPLETED.value if outcome.success else SyncJobStatus.FAILED.value
    job.completed_at = finished_at
    job.duration_ms = max(duration_ms, 0)
    job.bills_found = counts.found
    job.bills_new = counts.new
    job.bills_updated = counts.updated
    job.error_code = None if outcome.success else outcome.error_code
    job.error_message = None if outcome.success else (outcome.error or "")[:ERROR_MESSAGE_MAX_CHARS] or None
    job.debug_log = list(outcome.debug)
    job.evidence_path = evidence_path
    db.flush()

    logger.info(
        "Sync job %s %s found=%s new=%s updated=%s duration_ms=%s",
        job.id,
        job.status,
        counts.found,
        counts.new,
        counts.updated,
        job.duration_ms,
    )
    return job


def fail_stale_sync_jobs(
    db: Session,
    account: ProviderAccount,
    *,
    stale_after: timedelta,
    now: Optional[datetime] = None,
) -> int:
    """Fail ``running`` jobs of *account* older than *stale_after*.

    Such rows belong to a process that died mid-sync; left alone they would
    block every later run on the one-running-job-per-account index.
    """
    now = now or now_utc()
    cutoff = now - stale_after
    reaped = 0
    running = (
        db.query(SyncJob)
        .filter(SyncJob.provider_account_id == account.id, SyncJob.status == SyncJobStatus.RUNNING.value)
        .all()
    )
    for job in running:
        started_at = as_utc(job.started_at)
        if started_at is not None and started_at > cutoff:
            continue
        job.status = SyncJobStatus.FAILED.value
        job.completed_at = now
        job.duration_ms = max(int((now - (started_at or now)).total_seconds() * 1000), 0)
        job.error_code = ErrorCode.INTERNAL_ERROR.value
        job.error_message = "Sync job abandoned before completion"
        job.debug_log = list(job.debug_log or []) + [
            {"step": "abandoned", "stale_after_seconds": int(stale_after.total_seconds())}
        ]
        reaped += 1
        logger.warning("Failing abandoned sync job %s for account %s", job.id, account.id)
    if reaped:
        db.flush()
    return reaped
