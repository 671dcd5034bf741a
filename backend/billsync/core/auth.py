import hmac
import logging
import threading
from dataclasses import dataclass
from typing import Optional

import jwt
from fastapi import Depends, Header, HTTPException
from jwt import PyJWKClient

from billsync.core.config import get_settings

logger = logging.getLogger(__name__)

ALLOWED_ROLES = {"USER", "ADMIN", "SERVICE"}
PRIVILEGED_ROLES = {"ADMIN", "SERVICE"}
SERVICE_USER_ID = "00000000-0000-0000-0000-000000000000"

# Thread-safe JWKS client cache (initialised lazily, lives for process lifetime).
_jwks_client: Optional[PyJWKClient] = None
_jwks_lock = threading.Lock()


def _get_jwks_client(jwks_url: str) -> PyJWKClient:
    global _jwks_client
    if _jwks_client is not None:
        return _jwks_client
    with _jwks_lock:
        if _jwks_client is None:
            _jwks_client = PyJWKClient(jwks_url, cache_keys=True, lifespan=3600)
        return _jwks_client


@dataclass
class CurrentUser:
    id: str
    role: str
    email: Optional[str] = None

    @property
    def is_privileged(self) -> bool:
        return self.role in PRIVILEGED_ROLES


def _extract_role(payload: dict) -> Optional[str]:
    # Role comes only from server-managed app_metadata; user_metadata is user-editable.
    app_meta = payload.get("app_metadata") or {}
    raw = app_meta.get("role")
    if raw is None:
        # Supabase issues plain end-user tokens with role=authenticated.
        return "USER" if payload.get("role") == "authenticated" else None
    role = str(raw).strip().upper()
    return role if role in ALLOWED_ROLES else None


def _decode_options(settings) -> tuple[dict, dict]:
    audience = (settings.supabase_jwt_audience or "").strip()
    if audience:
        return {"audience": audience}, {"verify_aud": True}
    return {}, {"verify_aud": False}


def _try_hs256(token: str, settings, decode_kwargs: dict, options: dict) -> Optional[dict]:
    if not settings.supabase_jwt_secret:
        return None
    try:
        return jwt.decode(token, settings.supabase_jwt_secret, algorithms=["HS256"], options=options, **decode_kwargs)
    except jwt.InvalidTokenError:
        return None


def _try_es256(token: str, settings, decode_kwargs: dict, options: dict) -> Optional[dict]:
    supabase_url = (settings.supabase_url or "").rstrip("/")
    if not supabase_url:
        return None
    try:
        signing_key = _get_jwks_client(f"{supabase_url}/auth/v1/.well-known/jwks.json").get_signing_key_from_jwt(token)
        return jwt.decode(token, signing_key.key, algorithms=["ES256"], options=options, **decode_kwargs)
    except Exception as exc:
        logger.debug("ES256 verification failed: %s", type(exc).__name__)
        return None


def _is_service_key(token: str, settings) -> bool:
    # The scheduler and internal callers authenticate with the service role key.
    key = settings.supabase_service_role_key or ""
    return bool(key) and hmac.compare_digest(token.encode("utf-8"), key.encode("utf-8"))


def get_current_user(
    authorization: Optional[str] = Header(None, alias="Authorization"),
) -> CurrentUser:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(401, "Missing bearer token")

    token = authorization.split(" ", 1)[1].strip()
    settings = get_settings()

    if _is_service_key(token, settings):
        return CurrentUser(id=SERVICE_USER_ID, role="SERVICE")

    if not settings.supabase_jwt_secret and not settings.supabase_url:
        raise HTTPException(500, "Token verification is not configured")

    try:
        header = jwt.get_unverified_header(token)
    except jwt.DecodeError:
        raise HTTPException(401, "Invalid token")

    decode_kwargs, options = _decode_options(settings)
    strategies = (_try_es256, _try_hs256) if header.get("alg") == "ES256" else (_try_hs256, _try_es256)
    payload = None
    for strategy in strategies:
        payload = strategy(token, settings, decode_kwargs, options)
        if payload is not None:
            break

    if payload is None or not payload.get("sub"):
        raise HTTPException(401, "Invalid token")

    role = _extract_role(payload)
    if not role:
        raise HTTPException(403, "Missing role")

    return CurrentUser(id=payload["sub"], role=role, email=payload.get("email"))


def require_roles(*roles: str):
    def _dependency(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if user.role not in roles:
            raise HTTPException(403, "Forbidden")
        return user

    return _dependency


def ensure_owner_or_privileged(user: CurrentUser, owner_id) -> None:
    """Users act on their own accounts; ADMIN and SERVICE act on any."""
    if user.is_privileged:
        return
    if str(owner_id) != str(user.id):
        # Same answer as a missing account so ids cannot be probed.
        raise HTTPException(404, "Provider account not found")
