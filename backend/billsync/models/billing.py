import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import INET, JSONB
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func
from sqlalchemy.types import CHAR, TypeDecorator

Base = declarative_base()


class GUID(TypeDecorator):
    impl = CHAR
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PGUUID(as_uuid=True))
        return dialect.type_descriptor(CHAR(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, uuid.UUID):
            return value if dialect.name == "postgresql" else str(value)
        if isinstance(value, str):
            try:
                parsed = uuid.UUID(value)
            except ValueError:
                return value
            return parsed if dialect.name == "postgresql" else str(parsed)
        return value

    def process_result_value(self, value, dialect):
        if value is None or isinstance(value, uuid.UUID):
            return value
        try:
            return uuid.UUID(value)
        except ValueError:
            return value


UUID_TYPE = GUID()
JSON_TYPE = JSON().with_variant(JSONB, "postgresql")
INET_TYPE = String(45).with_variant(INET, "postgresql")


class ProviderAccount(Base):
    __tablename__ = "provider_accounts"
    __table_args__ = (
        UniqueConstraint("user_id", "provider_id", name="uniq_provider_accounts_user_provider"),
        Index("idx_provider_accounts_status_next_sync", "status", "next_sync_at"),
    )

    id = Column(
        UUID_TYPE,
        primary_key=True,
        default=uuid.uuid4,
        server_default=text("gen_random_uuid()"),
    )
    user_id = Column(UUID_TYPE, nullable=False)
    provider_id = Column(String(32), nullable=False)
    username = Column(String(255), nullable=False)
    username_masked = Column(String(255), nullable=False)
    encrypted_password = Column(Text, nullable=False)
    encryption_iv = Column(String(32), nullable=False)
    status = Column(String(32), nullable=False, default="pending", server_default=text("'pending'"))
    status_message = Column(Text)
    last_sync_at = Column(DateTime(timezone=True))
    last_sync_success = Column(Boolean)
    last_sync_bills_found = Column(Integer)
    next_sync_at = Column(DateTime(timezone=True))
    sync_count = Column(Integer, nullable=False, default=0, server_default=text("0"))
    error_count = Column(Integer, nullable=False, default=0, server_default=text("0"))
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


class SyncJob(Base):
    __tablename__ = "sync_jobs"
    __table_args__ = (
        Index("idx_sync_jobs_account_started", "provider_account_id", "started_at"),
        Index(
            "uniq_sync_jobs_running_account",
            "provider_account_id",
            unique=True,
            postgresql_where=text("status = 'running'"),
            sqlite_where=text("status = 'running'"),
        ),
    )

    id = Column(
        UUID_TYPE,
        primary_key=True,
        default=uuid.uuid4,
        server_default=text("gen_random_uuid()"),
    )
    provider_account_id = Column(
        UUID_TYPE,
        ForeignKey("provider_accounts.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id = Column(UUID_TYPE, nullable=False)
    status = Column(String(16), nullable=False, default="running", server_default=text("'running'"))
    started_at = Column(DateTime(timezone=True), nullable=False)
    completed_at = Column(DateTime(timezone=True))
    duration_ms = Column(Integer)
    bills_found = Column(Integer, nullable=False, default=0, server_default=text("0"))
    bills_new = Column(Integer, nullable=False, default=0, server_default=text("0"))
    bills_updated = Column(Integer, nullable=False, default=0, server_default=text("0"))
    error_code = Column(String(64))
    error_message = Column(Text)
    debug_log = Column(JSON_TYPE)
    evidence_path = Column(Text)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class Bill(Base):
    __tablename__ = "bills"
    __table_args__ = (
        UniqueConstraint(
            "user_id",
            "provider_id",
            "reference_number",
            name="uniq_bills_user_provider_reference",
        ),
        CheckConstraint("amount > 0", name="chk_bills_amount_positive"),
        Index("idx_bills_user_due_date", "user_id", "due_date"),
    )

    id = Column(
        UUID_TYPE,
        primary_key=True,
        default=uuid.uuid4,
        server_default=text("gen_random_uuid()"),
    )
    user_id = Column(UUID_TYPE, nullable=False)
    provider_account_id = Column(
        UUID_TYPE,
        ForeignKey("provider_accounts.id", ondelete="SET NULL"),
    )
    provider_id = Column(String(32), nullable=False)
    title = Column(String(255), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="EUR", server_default=text("'EUR'"))
    due_date = Column(Date, nullable=False)
    issue_date = Column(Date)
    period_start = Column(Date)
    period_end = Column(Date)
    reference_number = Column(String(128), nullable=False)
    bill_type = Column(String(32))
    payment_code = Column(String(64))
    source = Column(String(16), nullable=False, default="scraped", server_default=text("'scraped'"))
    scraped_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(
        UUID_TYPE,
        primary_key=True,
        default=uuid.uuid4,
        server_default=text("gen_random_uuid()"),
    )
    entity_type = Column(String(50), nullable=False)
    entity_id = Column(UUID_TYPE, nullable=False)
    action = Column(String(64), nullable=False)
    old_value = Column(JSON_TYPE)
    new_value = Column(JSON_TYPE)
    actor_type = Column(String(50), nullable=False)
    actor_id = Column(UUID_TYPE)
    ip_address = Column(INET_TYPE)
    user_agent = Column(Text)
    audit_meta = Column("metadata", JSON_TYPE, nullable=True)
    timestamp = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
