"""
EventShare - Secret Vault

Protects custodial wallet secrets at rest. Uses AES-256-GCM for
authenticated encryption with PBKDF2 key derivation.

Security Features:
- AES-256-GCM for encryption with authentication
- PBKDF2-HMAC-SHA256 for key derivation (600,000 iterations by default)
- Random salt and IV for each encryption operation
- Master key supplied by configuration, never stored beside the data
- Versioned ciphertext prefix so stored values are recognizable
"""

import base64
import secrets

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from errors import VaultError

# Constants
SALT_SIZE = 16  # 128 bits
IV_SIZE = 12  # 96 bits for GCM (recommended)
KEY_SIZE = 32  # 256 bits
PBKDF2_ITERATIONS = 600_000  # OWASP recommended minimum for PBKDF2-HMAC-SHA256

ENCRYPTED_PREFIX = "ENC:1:"  # Version 1 encrypted data


def generate_vault_key() -> str:
    """
    Generate a cryptographically secure master key.

    Returns:
        Base64-encoded 256-bit random key
    """
    return base64.b64encode(secrets.token_bytes(KEY_SIZE)).decode("utf-8")


def is_encrypted(value: str | None) -> bool:
    return isinstance(value, str) and value.startswith(ENCRYPTED_PREFIX)


class SecretVault:
    """
    Reversible protection for secret strings.

    ``decrypt(encrypt(x)) == x`` for any string; ciphertexts differ on
    every call because salt and IV are random.
    """

    def __init__(self, key: str | None = None, iterations: int = PBKDF2_ITERATIONS):
        self._key = key
        self.iterations = iterations

    @property
    def is_configured(self) -> bool:
        return bool(self._key)

    def _derive_key(self, salt: bytes) -> bytes:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=KEY_SIZE,
            salt=salt,
            iterations=self.iterations,
        )
        return kdf.derive(self._key.encode("utf-8"))

    def _require_key(self, operation: str) -> None:
        if not self._key:
            raise VaultError(
                "No vault key configured. Set EVENTSHARE_VAULT_KEY or "
                "generate one with generate_vault_key()",
                operation=operation,
            )

    def encrypt(self, plaintext: str) -> str:
        """
        Encrypt a secret.

        Returns:
            ENCRYPTED_PREFIX + base64(salt + iv + ciphertext)

        Raises:
            VaultError: If no key is configured or encryption fails
        """
        self._require_key("vault.encrypt")
        if not isinstance(plaintext, str):
            raise VaultError("Only strings can be protected", operation="vault.encrypt")

        salt = secrets.token_bytes(SALT_SIZE)
        iv = secrets.token_bytes(IV_SIZE)
        ciphertext = AESGCM(self._derive_key(salt)).encrypt(iv, plaintext.encode("utf-8"), None)
        return ENCRYPTED_PREFIX + base64.b64encode(salt + iv + ciphertext).decode("utf-8")

    def decrypt(self, protected: str) -> str:
        """
        Recover a secret produced by ``encrypt``.

        Raises:
            VaultError: If no key is configured, the value is not a vault
                ciphertext, or authentication fails (wrong key, tampering)
        """
        self._require_key("vault.decrypt")
        if not is_encrypted(protected):
            raise VaultError("Value is not a vault ciphertext", operation="vault.decrypt")

        try:
            blob = base64.b64decode(protected[len(ENCRYPTED_PREFIX):], validate=True)
        except ValueError as e:
            raise VaultError("Corrupt vault ciphertext", operation="vault.decrypt", cause=e) from e

        if len(blob) < SALT_SIZE + IV_SIZE + 16:
            raise VaultError("Vault ciphertext too short", operation="vault.decrypt")

        salt = blob[:SALT_SIZE]
        iv = blob[SALT_SIZE:SALT_SIZE + IV_SIZE]
        ciphertext = blob[SALT_SIZE + IV_SIZE:]
        try:
            plaintext = AESGCM(self._derive_key(salt)).decrypt(iv, ciphertext, None)
        except InvalidTag as e:
            raise VaultError(
                "Decryption failed: wrong key or tampered data",
                operation="vault.decrypt",
                cause=e,
            ) from e
        return plaintext.decode("utf-8")
