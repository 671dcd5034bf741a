import base64
import uuid

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from billsync.core.config import Settings, get_settings
from billsync.core.vault import CredentialVault
from billsync.models.billing import Base, ProviderAccount
from billsync.utils.alerting import alert_tracker

TEST_ENCRYPTION_KEY = base64.b64encode(bytes(range(32))).decode("ascii")
TEST_USER_ID = "00000000-0000-0000-0000-000000000002"


@pytest.fixture(autouse=True)
def _reset_settings_cache():
    # Some tests mutate env vars and clear the settings cache. Ensure we don't leak
    # a cached Settings instance across tests; alert counters are process-wide too.
    get_settings.cache_clear()
    alert_tracker.reset()
    yield
    get_settings.cache_clear()
    alert_tracker.reset()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        database_url="sqlite://",
        encryption_key=TEST_ENCRYPTION_KEY,
        automation_backend="mock",
        enable_evidence_upload=False,
        daily_sync_delay_ms=0,
    )


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def vault() -> CredentialVault:
    return CredentialVault(base64.b64decode(TEST_ENCRYPTION_KEY))


@pytest.fixture
def make_account(db, vault):
    """Persist a ProviderAccount whose password is sealed with the test vault."""

    def _make(
        *,
        provider_id: str = "DEH",
        username: str = "user",
        password: str = "pass",
        status: str = "pending",
        user_id: str = TEST_USER_ID,
        **fields,
    ) -> ProviderAccount:
        secret = vault.encrypt(password)
        account = ProviderAccount(
            id=uuid.uuid4(),
            user_id=user_id,
            provider_id=provider_id,
            username=username,
            username_masked="****" + username[-4:],
            encrypted_password=secret.ciphertext,
            encryption_iv=secret.nonce,
            status=status,
            **fields,
        )
        db.add(account)
        db.commit()
        db.refresh(account)
        return account

    return _make
