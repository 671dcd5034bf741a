"""Symmetric encryption of stored provider passwords (AES-256-GCM)."""

from __future__ import annotations

import base64
import binascii
import os
from dataclasses import dataclass

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from billsync.core.config import Settings, get_settings


KEY_SIZE_BYTES = 32
NONCE_SIZE_BYTES = 12


class CryptoError(Exception):
    """Ciphertext, nonce and key do not match (tampering or wrong key)."""


@dataclass(frozen=True)
class EncryptedSecret:
    ciphertext: str
    nonce: str


def _b64decode(value: str, what: str) -> bytes:
    try:
        return base64.b64decode(value or "", validate=True)
    except (binascii.Error, ValueError) as exc:
        raise CryptoError(f"{what} is not valid base64") from exc


class CredentialVault:
    """Encrypts with a fresh 96-bit nonce per call; key stays private to the instance."""

    def __init__(self, key: bytes) -> None:
        if len(key) != KEY_SIZE_BYTES:
            raise CryptoError("Encryption key must be 32 bytes")
        self._aead = AESGCM(key)

    def __repr__(self) -> str:
        return "CredentialVault(key=***)"

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "CredentialVault":
        settings = settings or get_settings()
        key = settings.encryption_key_bytes()
        if not key:
            raise CryptoError("ENCRYPTION_KEY is not configured")
        return cls(key)

    def encrypt(self, plaintext: str) -> EncryptedSecret:
        nonce = os.urandom(NONCE_SIZE_BYTES)
        sealed = self._aead.encrypt(nonce, plaintext.encode("utf-8"), None)
        return EncryptedSecret(
            ciphertext=base64.b64encode(sealed).decode("ascii"),
            nonce=base64.b64encode(nonce).decode("ascii"),
        )

    def decrypt(self, ciphertext: str, nonce: str) -> str:
        sealed = _b64decode(ciphertext, "Ciphertext")
        iv = _b64decode(nonce, "Nonce")
        if len(iv) != NONCE_SIZE_BYTES:
            raise CryptoError("Nonce must be 12 bytes")
        try:
            plain = self._aead.decrypt(iv, sealed, None)
        except InvalidTag as exc:
            raise CryptoError("Ciphertext failed authentication") from exc
        try:
            return plain.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise CryptoError("Decrypted secret is not valid UTF-8") from exc


def generate_key() -> str:
    return base64.b64encode(AESGCM.generate_key(bit_length=256)).decode("ascii")


def get_credential_vault() -> CredentialVault:
    """FastAPI dependency; overridden in tests."""
    return CredentialVault.from_settings(get_settings())
