import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from billsync.core.auth import CurrentUser, ensure_owner_or_privileged, get_current_user, require_roles
from billsync.core.dependencies import get_db
from billsync.core.vault import CredentialVault, get_credential_vault
from billsync.schemas.billing import DueSyncResultOut, SyncRequest, SyncResultOut
from billsync.services.automation import get_automation_client
from billsync.services.automation.base import BaseAutomationClient
from billsync.services.recurring_jobs import sync_due_accounts_once
from billsync.services.sync_service import (
    EvidenceUploader,
    ProviderAccountNotFoundError,
    get_evidence_uploader,
    load_provider_account,
    sync_provider_account,
)
from billsync.utils.timeutil import now_utc

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/sync", response_model=SyncResultOut)
async def sync_account(
    payload: SyncRequest,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
    vault: CredentialVault = Depends(get_credential_vault),
    automation_client: BaseAutomationClient = Depends(get_automation_client),
    evidence_uploader: Optional[EvidenceUploader] = Depends(get_evidence_uploader),
):
    try:
        account = load_provider_account(db, payload.provider_account_id)
    except ProviderAccountNotFoundError:
        raise HTTPException(404, "Provider account not found")
    ensure_owner_or_privileged(current_user, account.user_id)

    try:
        summary = await sync_provider_account(
            db,
            payload.provider_account_id,
            automation_client=automation_client,
            vault=vault,
            evidence_uploader=evidence_uploader,
            actor_type=current_user.role,
            actor_id=current_user.id,
        )
    except ProviderAccountNotFoundError:
        raise HTTPException(404, "Provider account not found")
    return summary.to_response()


@router.post("/sync/due", response_model=DueSyncResultOut)
async def sync_due_accounts(
    current_user: CurrentUser = Depends(require_roles("ADMIN", "SERVICE")),
    db: Session = Depends(get_db),
    vault: CredentialVault = Depends(get_credential_vault),
    automation_client: BaseAutomationClient = Depends(get_automation_client),
    evidence_uploader: Optional[EvidenceUploader] = Depends(get_evidence_uploader),
):
    report = await sync_due_accounts_once(
        db,
        automation_client=automation_client,
        vault=vault,
        evidence_uploader=evidence_uploader,
    )
    logger.info("Due sync triggered by %s (%s)", current_user.id, current_user.role)
    return DueSyncResultOut(
        accounts_processed=report.accounts_processed,
        success_count=report.success_count,
        fail_count=report.fail_count,
        timestamp=now_utc(),
    )
