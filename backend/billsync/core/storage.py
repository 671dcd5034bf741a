import base64
import binascii
import logging
from datetime import datetime
from typing import Optional

from supabase import create_client

from billsync.core.config import Settings, get_settings
from billsync.utils.timeutil import as_utc, now_utc

logger = logging.getLogger(__name__)

EVIDENCE_CONTENT_TYPE = "image/png"


class EvidenceUploadError(Exception):
    pass


def build_evidence_path(user_id: str, provider_id: str, captured_at: datetime) -> str:
    stamp = as_utc(captured_at).strftime("%Y%m%dT%H%M%SZ")
    return f"{user_id}/{provider_id}/{stamp}.png"


def get_storage_client(settings: Optional[Settings] = None):
    settings = settings or get_settings()
    if not settings.supabase_url or not settings.supabase_service_role_key:
        raise EvidenceUploadError("Supabase storage credentials are not configured")
    return create_client(settings.supabase_url, settings.supabase_service_role_key)


def _decode_screenshot(screenshot_b64: str) -> bytes:
    payload = screenshot_b64.strip()
    # Some backends return a data URL instead of bare base64.
    if payload.startswith("data:") and "," in payload:
        payload = payload.split(",", 1)[1]
    try:
        content = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise EvidenceUploadError("Screenshot payload is not valid base64") from exc
    if not content:
        raise EvidenceUploadError("Screenshot payload is empty")
    return content


def _upload_single(client, bucket: str, path: str, content: bytes, content_type: str) -> str:
    """Upload a single object and return its storage path."""
    try:
        result = client.storage.from_(bucket).upload(path, content, {"content-type": content_type})
    except Exception as exc:
        raise EvidenceUploadError(f"Storage upload failed ({type(exc).__name__})") from exc

    error = None
    if isinstance(result, dict):
        error = result.get("error")
    else:
        error = getattr(result, "error", None)

    if error:
        raise EvidenceUploadError("Storage upload rejected")

    return path


def upload_evidence_screenshot(
    *,
    user_id: str,
    provider_id: str,
    screenshot_b64: str,
    captured_at: Optional[datetime] = None,
    settings: Optional[Settings] = None,
    client=None,
) -> str:
    """Store a base64 screenshot and return the object path (not a URL)."""
    settings = settings or get_settings()
    content = _decode_screenshot(screenshot_b64)
    path = build_evidence_path(user_id, provider_id, captured_at or now_utc())
    client = client or get_storage_client(settings)
    return _upload_single(client, settings.evidence_bucket, path, content, EVIDENCE_CONTENT_TYPE)
