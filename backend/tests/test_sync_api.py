import unittest
import uuid

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from billsync.core.auth import CurrentUser, get_current_user
from billsync.core.dependencies import get_db
from billsync.core.vault import CredentialVault, get_credential_vault
from billsync.main import app
from billsync.models.billing import Base, Bill, ProviderAccount
from billsync.services.automation import MockAutomationClient, get_automation_client
from billsync.services.sync_service import get_evidence_uploader

KEY = bytes(range(32))
OWNER_ID = "00000000-0000-0000-0000-0000000000a1"
OTHER_ID = "00000000-0000-0000-0000-0000000000b2"

DEH_PAGE = {
    "success": True,
    "page": {"containers": [{"text": "Αρ. Λογαριασμού: 4455\nΠοσό 61,80 €\nΛήξη: 02/04/2025"}]},
}


class SyncApiTests(unittest.TestCase):
    def setUp(self):
        self.engine = create_engine(
            "sqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        Base.metadata.create_all(self.engine)
        self.SessionLocal = sessionmaker(bind=self.engine)
        self.vault = CredentialVault(KEY)
        self.automation = MockAutomationClient({"DEH": DEH_PAGE})
        self.current_user = CurrentUser(id=OWNER_ID, role="USER")

        def override_get_db():
            db = self.SessionLocal()
            try:
                yield db
            finally:
                db.close()

        app.dependency_overrides[get_db] = override_get_db
        app.dependency_overrides[get_current_user] = lambda: self.current_user
        app.dependency_overrides[get_credential_vault] = lambda: self.vault
        app.dependency_overrides[get_automation_client] = lambda: self.automation
        app.dependency_overrides[get_evidence_uploader] = lambda: (lambda **kwargs: "evidence/path.png")
        self.client = TestClient(app)

    def tearDown(self):
        self.client.close()
        app.dependency_overrides.clear()
        Base.metadata.drop_all(self.engine)
        self.engine.dispose()

    def _create_account(self, *, user_id=OWNER_ID, provider_id="DEH", status="pending"):
        db = self.SessionLocal()
        secret = self.vault.encrypt("pass")
        account = ProviderAccount(
            user_id=user_id,
            provider_id=provider_id,
            username="300123456789",
            username_masked="****6789",
            encrypted_password=secret.ciphertext,
            encryption_iv=secret.nonce,
            status=status,
        )
        db.add(account)
        db.commit()
        db.refresh(account)
        db.close()
        return account

    def test_sync_own_account(self):
        account = self._create_account()

        resp = self.client.post("/api/v1/sync", json={"provider_account_id": str(account.id)})

        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertTrue(body["success"])
        self.assertEqual(body["provider_account_id"], str(account.id))
        self.assertEqual(body["bills_found"], 1)
        self.assertEqual(body["bills_new"], 1)
        self.assertEqual(body["account_status"], "connected")
        self.assertIsNone(body["error_code"])
        self.assertIsNotNone(body["sync_job_id"])

        db = self.SessionLocal()
        self.assertEqual(db.query(Bill).count(), 1)
        db.close()

    def test_sync_other_users_account_is_hidden(self):
        account = self._create_account(user_id=OTHER_ID)

        resp = self.client.post("/api/v1/sync", json={"provider_account_id": str(account.id)})

        self.assertEqual(resp.status_code, 404)
        self.assertEqual(self.automation.calls, [])

    def test_admin_can_sync_any_account(self):
        account = self._create_account(user_id=OTHER_ID)
        self.current_user = CurrentUser(id=str(uuid.uuid4()), role="ADMIN")

        resp = self.client.post("/api/v1/sync", json={"provider_account_id": str(account.id)})

        self.assertEqual(resp.status_code, 200)
        self.assertTrue(resp.json()["success"])

    def test_sync_unknown_account(self):
        for account_id in (str(uuid.uuid4()), "not-a-uuid"):
            resp = self.client.post("/api/v1/sync", json={"provider_account_id": account_id})
            self.assertEqual(resp.status_code, 404)

    def test_sync_requires_account_id(self):
        resp = self.client.post("/api/v1/sync", json={"provider_account_id": "  "})

        self.assertEqual(resp.status_code, 422)
        self.assertEqual(resp.json()["error_code"], "BAD_REQUEST")

    def test_failed_sync_is_reported_not_raised(self):
        account = self._create_account()
        self.automation = MockAutomationClient({"DEH": {"success": False, "error_code": "LOGIN_FORM_NOT_FOUND"}})

        resp = self.client.post("/api/v1/sync", json={"provider_account_id": str(account.id)})

        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertFalse(body["success"])
        self.assertEqual(body["error_code"], "SCRAPER_BROKEN")
        self.assertEqual(body["account_status"], "error")

    def test_due_sync_is_privileged(self):
        self._create_account()

        resp = self.client.post("/api/v1/sync/due")
        self.assertEqual(resp.status_code, 403)

        self.current_user = CurrentUser(id="00000000-0000-0000-0000-000000000000", role="SERVICE")
        resp = self.client.post("/api/v1/sync/due")

        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertEqual(body["accounts_processed"], 1)
        self.assertEqual(body["success_count"], 1)
        self.assertEqual(body["fail_count"], 0)
        self.assertIn("timestamp", body)


if __name__ == "__main__":
    unittest.main()
