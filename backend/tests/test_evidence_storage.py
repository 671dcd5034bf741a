from __future__ import annotations

import base64
from datetime import datetime, timezone

import pytest

from billsync.core.config import Settings
from billsync.core.storage import (
    EvidenceUploadError,
    build_evidence_path,
    get_storage_client,
    upload_evidence_screenshot,
)

PNG = base64.b64encode(b"\x89PNG\r\n\x1a\nfake").decode("ascii")
CAPTURED = datetime(2025, 3, 1, 8, 30, 5, tzinfo=timezone.utc)


class _Bucket:
    def __init__(self, store, result=None, exc=None):
        self._store = store
        self._result = result
        self._exc = exc

    def upload(self, path, content, options):
        if self._exc is not None:
            raise self._exc
        self._store.append((path, content, options))
        return self._result if self._result is not None else {"Key": path}


class _Storage:
    def __init__(self, bucket):
        self._bucket = bucket
        self.buckets = []

    def from_(self, name):
        self.buckets.append(name)
        return self._bucket


class FakeStorageClient:
    def __init__(self, *, result=None, exc=None):
        self.uploads = []
        self.storage = _Storage(_Bucket(self.uploads, result=result, exc=exc))


def test_evidence_path_layout():
    naive = datetime(2025, 3, 1, 8, 30, 5)
    assert build_evidence_path("u1", "DEH", CAPTURED) == "u1/DEH/20250301T083005Z.png"
    assert build_evidence_path("u1", "DEH", naive) == "u1/DEH/20250301T083005Z.png"


def test_upload_stores_decoded_png():
    client = FakeStorageClient()

    path = upload_evidence_screenshot(
        user_id="u1",
        provider_id="EYDAP",
        screenshot_b64=PNG,
        captured_at=CAPTURED,
        settings=Settings(evidence_bucket="evidence"),
        client=client,
    )

    assert path == "u1/EYDAP/20250301T083005Z.png"
    assert client.storage.buckets == ["evidence"]
    stored_path, content, options = client.uploads[0]
    assert stored_path == path
    assert content.startswith(b"\x89PNG")
    assert options == {"content-type": "image/png"}


def test_upload_accepts_data_url():
    client = FakeStorageClient()
    upload_evidence_screenshot(
        user_id="u1",
        provider_id="DEH",
        screenshot_b64="data:image/png;base64," + PNG,
        captured_at=CAPTURED,
        settings=Settings(),
        client=client,
    )
    assert client.uploads


@pytest.mark.parametrize("payload", ["***not base64***", ""])
def test_invalid_screenshot_is_rejected(payload):
    with pytest.raises(EvidenceUploadError):
        upload_evidence_screenshot(
            user_id="u1", provider_id="DEH", screenshot_b64=payload, settings=Settings(), client=FakeStorageClient()
        )


def test_storage_errors_are_wrapped():
    with pytest.raises(EvidenceUploadError, match="ConnectionError"):
        upload_evidence_screenshot(
            user_id="u1",
            provider_id="DEH",
            screenshot_b64=PNG,
            settings=Settings(),
            client=FakeStorageClient(exc=ConnectionError("reset")),
        )
    with pytest.raises(EvidenceUploadError, match="rejected"):
        upload_evidence_screenshot(
            user_id="u1",
            provider_id="DEH",
            screenshot_b64=PNG,
            settings=Settings(),
            client=FakeStorageClient(result={"error": "Bucket not found"}),
        )


def test_storage_client_requires_credentials():
    with pytest.raises(EvidenceUploadError):
        get_storage_client(Settings(supabase_url="", supabase_service_role_key=""))
