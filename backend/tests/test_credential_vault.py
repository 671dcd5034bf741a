"""
Unit tests for CredentialVault: AES-GCM sealing of provider passwords.
"""

from __future__ import annotations

import base64

import pytest

from billsync.core.config import Settings
from billsync.core.vault import CredentialVault, CryptoError, generate_key


def _vault(seed: int = 0) -> CredentialVault:
    return CredentialVault(bytes((seed + i) % 256 for i in range(32)))


def test_round_trip_unicode_password():
    vault = _vault()
    secret = vault.encrypt("κωδικός-123!")
    assert vault.decrypt(secret.ciphertext, secret.nonce) == "κωδικός-123!"


def test_nonce_is_96_bits_and_fresh_per_call():
    vault = _vault()
    first = vault.encrypt("same")
    second = vault.encrypt("same")

    assert len(base64.b64decode(first.nonce)) == 12
    assert first.nonce != second.nonce
    assert first.ciphertext != second.ciphertext


def test_wrong_key_raises_crypto_error():
    secret = _vault(0).encrypt("pass")
    with pytest.raises(CryptoError):
        _vault(1).decrypt(secret.ciphertext, secret.nonce)


def test_tampered_ciphertext_raises_crypto_error():
    vault = _vault()
    secret = vault.encrypt("pass")
    raw = bytearray(base64.b64decode(secret.ciphertext))
    raw[0] ^= 0x01
    with pytest.raises(CryptoError):
        vault.decrypt(base64.b64encode(bytes(raw)).decode("ascii"), secret.nonce)


def test_mismatched_nonce_raises_crypto_error():
    vault = _vault()
    secret = vault.encrypt("pass")
    other = vault.encrypt("pass")
    with pytest.raises(CryptoError):
        vault.decrypt(secret.ciphertext, other.nonce)


@pytest.mark.parametrize("nonce", ["%%%", base64.b64encode(b"short").decode("ascii")])
def test_malformed_nonce_raises_crypto_error(nonce):
    vault = _vault()
    secret = vault.encrypt("pass")
    with pytest.raises(CryptoError):
        vault.decrypt(secret.ciphertext, nonce)


def test_key_must_be_32_bytes():
    with pytest.raises(CryptoError):
        CredentialVault(b"too-short")


def test_from_settings_requires_configured_key():
    with pytest.raises(CryptoError):
        CredentialVault.from_settings(Settings(encryption_key=""))

    vault = CredentialVault.from_settings(Settings(encryption_key=generate_key()))
    secret = vault.encrypt("x")
    assert vault.decrypt(secret.ciphertext, secret.nonce) == "x"


def test_key_never_rendered():
    key = generate_key()
    settings = Settings(encryption_key=key)
    vault = CredentialVault.from_settings(settings)

    assert key not in repr(vault)
    assert key not in repr(settings)
    assert key not in str(settings.model_dump())
