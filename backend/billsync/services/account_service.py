import logging
import re
from typing import Optional

from fastapi import HTTPException
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from billsync.core.vault import CredentialVault
from billsync.models.billing import ProviderAccount
from billsync.schemas.billing import AccountStatus, ErrorCode, ProviderAccountCreate
from billsync.services.account_transitions import create_audit_log
from billsync.services.providers import SUPPORTED_PROVIDERS, is_supported_provider

logger = logging.getLogger(__name__)


MIN_HIDDEN_CHARS = 4
MIN_HIDDEN_EMAIL_CHARS = 3


def _visible_ends(value: str, head: int, tail: int, min_hidden: int) -> tuple[str, str]:
    # Short values give up their visible ends first so min_hidden stays hidden.
    visible = max(len(value) - min_hidden, 0)
    if head + tail > visible:
        tail = min(tail, visible // 2)
    head = min(head, visible - tail)
    return value[:head], (value[len(value) - tail:] if tail else "")


def mask_username(username: str, provider_id: str) -> str:
    """Display form of a portal username; never enough to recover it."""
    value = username or ""
    provider = (provider_id or "").upper()
    if provider in {"AADE", "EFKA"} or (provider == "COSMOTE" and re.fullmatch(r"\d+", value)):
        head, tail = _visible_ends(value, 3, 2, MIN_HIDDEN_CHARS)
        return head + "****" + tail
    if provider == "COSMOTE":
        local, _, domain = value.partition("@")
        head, _ = _visible_ends(local, 2, 0, MIN_HIDDEN_EMAIL_CHARS)
        return head + "***@" + domain
    _, tail = _visible_ends(value, 0, 4, MIN_HIDDEN_CHARS)
    return "****" + tail


def register_provider_account(
    db: Session,
    *,
    user_id: str,
    payload: ProviderAccountCreate,
    vault: CredentialVault,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> ProviderAccount:
    """Store a new (user, provider) binding with the password sealed by *vault*."""
    if not is_supported_provider(payload.provider_id):
        raise HTTPException(
            400,
            {
                "message": f"Unsupported provider {payload.provider_id}",
                "error_code": ErrorCode.BAD_REQUEST.value,
                "supported": list(SUPPORTED_PROVIDERS),
            },
        )

    existing = (
        db.query(ProviderAccount)
        .filter(ProviderAccount.user_id == user_id, ProviderAccount.provider_id == payload.provider_id)
        .one_or_none()
    )
    if existing is not None:
        raise HTTPException(409, "Provider already connected. Disconnect it first.")

    secret = vault.encrypt(payload.password)
    account = ProviderAccount(
        user_id=user_id,
        provider_id=payload.provider_id,
        username=payload.username,
        username_masked=mask_username(payload.username, payload.provider_id),
        encrypted_password=secret.ciphertext,
        encryption_iv=secret.nonce,
        status=AccountStatus.PENDING.value,
    )
    db.add(account)
    try:
        db.flush()
    except IntegrityError as exc:
        db.rollback()
        raise HTTPException(409, "Provider already connected. Disconnect it first.") from exc

    create_audit_log(
        db,
        entity_type="provider_account",
        entity_id=str(account.id),
        action="PROVIDER_ACCOUNT_CREATED",
        old_value=None,
        new_value={"provider_id": account.provider_id, "username_masked": account.username_masked},
        actor_type="USER",
        actor_id=user_id,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    db.commit()
    db.refresh(account)
    logger.info("Provider account %s created for provider=%s", account.id, account.provider_id)
    return account
