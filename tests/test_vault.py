"""
Tests for the secret vault protecting custodial wallet secrets.
"""

import base64
import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

import pytest

from errors import VaultError
from vault import ENCRYPTED_PREFIX, SecretVault, generate_vault_key, is_encrypted

SECRET = "SBXK7QZJ3M2VQ5HUGV6MS6HOYOQ5HJBC6EH6IFTUPGAX5TVCQ3DZEX4K"


@pytest.fixture
def vault():
    return SecretVault(generate_vault_key(), iterations=1_000)


class TestGenerateKey:
    def test_key_is_256_bits(self):
        assert len(base64.b64decode(generate_vault_key())) == 32

    def test_keys_are_unique(self):
        assert generate_vault_key() != generate_vault_key()


class TestEncryptDecrypt:
    def test_roundtrip(self, vault):
        protected = vault.encrypt(SECRET)

        assert protected.startswith(ENCRYPTED_PREFIX)
        assert SECRET not in protected
        assert vault.decrypt(protected) == SECRET

    def test_ciphertexts_differ(self, vault):
        assert vault.encrypt(SECRET) != vault.encrypt(SECRET)

    def test_unicode(self, vault):
        assert vault.decrypt(vault.encrypt("clé secrète")) == "clé secrète"

    def test_wrong_key(self, vault):
        protected = vault.encrypt(SECRET)
        other = SecretVault(generate_vault_key(), iterations=1_000)

        with pytest.raises(VaultError, match="wrong key or tampered"):
            other.decrypt(protected)

    def test_tampered_ciphertext(self, vault):
        protected = vault.encrypt(SECRET)
        blob = bytearray(base64.b64decode(protected[len(ENCRYPTED_PREFIX):]))
        blob[-1] ^= 0x01
        tampered = ENCRYPTED_PREFIX + base64.b64encode(bytes(blob)).decode("utf-8")

        with pytest.raises(VaultError):
            vault.decrypt(tampered)

    def test_plaintext_is_rejected(self, vault):
        with pytest.raises(VaultError, match="not a vault ciphertext"):
            vault.decrypt(SECRET)

    def test_corrupt_base64(self, vault):
        with pytest.raises(VaultError, match="Corrupt"):
            vault.decrypt(ENCRYPTED_PREFIX + "***")

    def test_too_short(self, vault):
        with pytest.raises(VaultError, match="too short"):
            vault.decrypt(ENCRYPTED_PREFIX + base64.b64encode(b"short").decode("utf-8"))

    def test_non_string(self, vault):
        with pytest.raises(VaultError):
            vault.encrypt(b"bytes")


class TestUnconfigured:
    def test_not_configured(self):
        assert SecretVault(None).is_configured is False

    def test_encrypt_requires_key(self):
        with pytest.raises(VaultError) as exc_info:
            SecretVault(None).encrypt(SECRET)

        assert exc_info.value.recoverable is False
        assert exc_info.value.context.operation == "vault.encrypt"


def test_is_encrypted():
    assert is_encrypted(ENCRYPTED_PREFIX + "abc")
    assert not is_encrypted(SECRET)
    assert not is_encrypted(None)
