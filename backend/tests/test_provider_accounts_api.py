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
from billsync.models.billing import AuditLog, Base, ProviderAccount, SyncJob
from billsync.services.automation import MockAutomationClient, get_automation_client
from billsync.services.sync_service import get_evidence_uploader

OWNER_ID = "00000000-0000-0000-0000-0000000000c3"

EYDAP_BILLS = {"success": True, "bills": [{"amount": "18,40", "due_date": "01/07/2025", "reference_number": "W-100"}]}


class ProviderAccountsApiTests(unittest.TestCase):
    def setUp(self):
        self.engine = create_engine(
            "sqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        Base.metadata.create_all(self.engine)
        self.SessionLocal = sessionmaker(bind=self.engine)
        self.vault = CredentialVault(bytes(range(32)))
        self.automation = MockAutomationClient(
            {"EYDAP": EYDAP_BILLS, "AADE": {"success": False, "error_code": "2FA_REQUIRED", "error": "OTP"}}
        )
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

    def _create(self, provider_id="EYDAP", username="user@example.com", password="Pa55word!"):
        return self.client.post(
            "/api/v1/provider-accounts",
            json={"provider_id": provider_id, "username": username, "password": password},
        )

    def test_create_runs_initial_sync(self):
        resp = self._create()

        self.assertEqual(resp.status_code, 201)
        body = resp.json()
        self.assertTrue(body["success"])
        self.assertEqual(body["account"]["provider_id"], "EYDAP")
        self.assertEqual(body["account"]["username_masked"], "****.com")
        self.assertEqual(body["account"]["status"], "connected")
        self.assertEqual(body["account"]["sync_count"], 1)
        self.assertTrue(body["sync_result"]["success"])
        self.assertEqual(body["sync_result"]["bills_new"], 1)
        self.assertNotIn("Pa55word!", resp.text)

        db = self.SessionLocal()
        account = db.query(ProviderAccount).one()
        self.assertNotEqual(account.encrypted_password, "Pa55word!")
        actions = [row.action for row in db.query(AuditLog).filter(AuditLog.entity_id == account.id).all()]
        self.assertIn("PROVIDER_ACCOUNT_CREATED", actions)
        db.close()

    def test_create_with_failed_first_sync_still_returns_account(self):
        resp = self._create(provider_id="AADE", username="123456789")

        self.assertEqual(resp.status_code, 201)
        body = resp.json()
        self.assertTrue(body["success"])
        self.assertEqual(body["account"]["status"], "needs_otp")
        self.assertEqual(body["account"]["username_masked"], "123****89")
        self.assertFalse(body["sync_result"]["success"])
        self.assertEqual(body["sync_result"]["error_code"], "2FA_REQUIRED")

    def test_create_rejects_unsupported_provider(self):
        resp = self._create(provider_id="ACME")

        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["detail"]["error_code"], "BAD_REQUEST")

    def test_create_rejects_duplicate_provider(self):
        self.assertEqual(self._create().status_code, 201)

        resp = self._create()

        self.assertEqual(resp.status_code, 409)

    def test_service_role_cannot_create(self):
        self.current_user = CurrentUser(id="00000000-0000-0000-0000-000000000000", role="SERVICE")

        self.assertEqual(self._create().status_code, 403)

    def test_list_returns_only_own_accounts(self):
        self._create()
        self.current_user = CurrentUser(id=str(uuid.uuid4()), role="USER")
        self._create(provider_id="AADE", username="123456789")

        resp = self.client.get("/api/v1/provider-accounts")

        self.assertEqual(resp.status_code, 200)
        items = resp.json()["items"]
        self.assertEqual([item["provider_id"] for item in items], ["AADE"])

    def test_sync_jobs_history(self):
        account_id = self._create().json()["account"]["id"]
        self.client.post("/api/v1/sync", json={"provider_account_id": account_id})

        resp = self.client.get(f"/api/v1/provider-accounts/{account_id}/sync-jobs", params={"limit": 5})

        self.assertEqual(resp.status_code, 200)
        items = resp.json()["items"]
        self.assertEqual(len(items), 2)
        self.assertTrue(all(item["status"] == "completed" for item in items))
        self.assertEqual(items[0]["bills_updated"] + items[1]["bills_updated"], 1)

        db = self.SessionLocal()
        self.assertEqual(db.query(SyncJob).count(), 2)
        db.close()

    def test_sync_jobs_of_other_user_are_hidden(self):
        account_id = self._create().json()["account"]["id"]
        self.current_user = CurrentUser(id=str(uuid.uuid4()), role="USER")

        resp = self.client.get(f"/api/v1/provider-accounts/{account_id}/sync-jobs")

        self.assertEqual(resp.status_code, 404)


if __name__ == "__main__":
    unittest.main()
