import logging
from datetime import datetime
from enum import Enum

from sqlalchemy.orm import Session

from billsync.models.billing import Bill, ProviderAccount
from billsync.schemas.billing import BillSource
from billsync.services.normalizer import NormalizedBill

logger = logging.getLogger(__name__)


class ReconcileAction(str, Enum):
    CREATED = "created"
    UPDATED = "updated"


def find_bill(db: Session, *, user_id, provider_id: str, reference_number: str):
    return (
        db.query(Bill)
        .filter(
            Bill.user_id == user_id,
            Bill.provider_id == provider_id,
            Bill.reference_number == reference_number,
        )
        .one_or_none()
    )


def upsert_bill(
    db: Session,
    *,
    account: ProviderAccount,
    bill: NormalizedBill,
    scraped_at: datetime,
) -> ReconcileAction:
    """Insert or refresh the bill keyed by (user, provider, reference number).

    Only amount, due date and scrape time follow the portal on an update; the
    title, type and identity of an existing row stay as first stored.
    """
    existing = find_bill(
        db,
        user_id=account.user_id,
        provider_id=account.provider_id,
        reference_number=bill.reference_number,
    )
    if existing is not None:
        existing.amount = bill.amount
        existing.due_date = bill.due_date
        existing.scraped_at = scraped_at
        db.flush()
        return ReconcileAction.UPDATED

    db.add(
        Bill(
            user_id=account.user_id,
            provider_account_id=account.id,
            provider_id=account.provider_id,
            title=bill.title,
            amount=bill.amount,
            due_date=bill.due_date,
            issue_date=bill.issue_date,
            period_start=bill.period_start,
            period_end=bill.period_end,
            reference_number=bill.reference_number,
            bill_type=bill.bill_type,
            payment_code=bill.payment_code,
            source=BillSource.SCRAPED.value,
            scraped_at=scraped_at,
        )
    )
    # Flush so a second fragment with the same reference in this run finds the row.
    db.flush()
    return ReconcileAction.CREATED
