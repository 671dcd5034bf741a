import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy import desc
from sqlalchemy.orm import Session

from billsync.core.auth import CurrentUser, ensure_owner_or_privileged, require_roles
from billsync.core.dependencies import get_db
from billsync.core.vault import CredentialVault, get_credential_vault
from billsync.models.billing import ProviderAccount, SyncJob
from billsync.schemas.billing import (
    ProviderAccountCreate,
    ProviderAccountCreateOut,
    ProviderAccountListResponse,
    ProviderAccountOut,
    SyncJobListResponse,
    SyncJobOut,
)
from billsync.services.account_service import register_provider_account
from billsync.services.automation import get_automation_client
from billsync.services.automation.base import BaseAutomationClient
from billsync.services.sync_service import (
    EvidenceUploader,
    ProviderAccountNotFoundError,
    get_evidence_uploader,
    load_provider_account,
    sync_provider_account,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def _account_to_out(account: ProviderAccount) -> ProviderAccountOut:
    return ProviderAccountOut(
        id=str(account.id),
        provider_id=account.provider_id,
        username_masked=account.username_masked,
        status=account.status,
        status_message=account.status_message,
        last_sync_at=account.last_sync_at,
        last_sync_success=account.last_sync_success,
        next_sync_at=account.next_sync_at,
        sync_count=account.sync_count or 0,
        error_count=account.error_count or 0,
    )


def _job_to_out(job: SyncJob) -> SyncJobOut:
    return SyncJobOut(
        id=str(job.id),
        provider_account_id=str(job.provider_account_id),
        status=job.status,
        started_at=job.started_at,
        completed_at=job.completed_at,
        duration_ms=job.duration_ms,
        bills_found=job.bills_found or 0,
        bills_new=job.bills_new or 0,
        bills_updated=job.bills_updated or 0,
        error_code=job.error_code,
        error_message=job.error_message,
        debug_log=job.debug_log,
        evidence_path=job.evidence_path,
    )


@router.post("/provider-accounts", response_model=ProviderAccountCreateOut, status_code=201)
async def create_provider_account(
    payload: ProviderAccountCreate,
    request: Request,
    current_user: CurrentUser = Depends(require_roles("USER", "ADMIN")),
    db: Session = Depends(get_db),
    vault: CredentialVault = Depends(get_credential_vault),
    automation_client: BaseAutomationClient = Depends(get_automation_client),
    evidence_uploader: Optional[EvidenceUploader] = Depends(get_evidence_uploader),
):
    account = register_provider_account(
        db,
        user_id=current_user.id,
        payload=payload,
        vault=vault,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )
    account_id = str(account.id)

    # The account exists either way; a failed first sync is reported, not raised.
    summary = await sync_provider_account(
        db,
        account_id,
        automation_client=automation_client,
        vault=vault,
        evidence_uploader=evidence_uploader,
        actor_type=current_user.role,
        actor_id=current_user.id,
    )
    db.refresh(account)
    return ProviderAccountCreateOut(
        success=True,
        account=_account_to_out(account),
        sync_result=summary.to_response(),
    )


@router.get("/provider-accounts", response_model=ProviderAccountListResponse)
def list_provider_accounts(
    current_user: CurrentUser = Depends(require_roles("USER", "ADMIN")),
    db: Session = Depends(get_db),
):
    rows = (
        db.query(ProviderAccount)
        .filter(ProviderAccount.user_id == current_user.id)
        .order_by(ProviderAccount.created_at.asc())
        .all()
    )
    return ProviderAccountListResponse(items=[_account_to_out(row) for row in rows])


@router.get("/provider-accounts/{provider_account_id}/sync-jobs", response_model=SyncJobListResponse)
def list_sync_jobs(
    provider_account_id: str,
    limit: int = Query(20, ge=1, le=100),
    current_user: CurrentUser = Depends(require_roles("USER", "ADMIN", "SERVICE")),
    db: Session = Depends(get_db),
):
    try:
        account = load_provider_account(db, provider_account_id)
    except ProviderAccountNotFoundError:
        raise HTTPException(404, "Provider account not found")
    ensure_owner_or_privileged(current_user, account.user_id)

    rows = (
        db.query(SyncJob)
        .filter(SyncJob.provider_account_id == account.id)
        .order_by(desc(SyncJob.started_at))
        .limit(limit)
        .all()
    )
    return SyncJobListResponse(items=[_job_to_out(row) for row in rows])
