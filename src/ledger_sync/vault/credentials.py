"""Credential vault for exchange API keys.

Key material is stored as base64(salt || nonce || AES-GCM ciphertext),
with the encryption key derived from a master key via Scrypt. The vault
is read-only with respect to shared state and safe for concurrent use.
"""

from __future__ import annotations

import base64
import binascii
import logging
import os
from dataclasses import dataclass

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from ledger_sync.domain.errors import CredentialError
from ledger_sync.domain.records import Account

logger = logging.getLogger(__name__)

SALT_BYTES = 16
NONCE_BYTES = 12
TAG_BYTES = 16
KEY_BYTES = 32

# Scrypt work factors
SCRYPT_N = 2**14
SCRYPT_R = 8
SCRYPT_P = 1


@dataclass(frozen=True)
class ApiCredentials:
    """Decrypted API key pair for one account.

    Attributes:
        api_key: Public API key sent in request headers
        api_secret: Secret used for request signing; never logged
    """

    api_key: str
    api_secret: str

    def __repr__(self) -> str:
        return f"ApiCredentials(api_key={self.api_key[:4]}***)"


class CredentialVault:
    """Encrypts and decrypts exchange credentials with a master key."""

    def __init__(self, master_key: str) -> None:
        """Initialize the vault.

        Args:
            master_key: Secret the per-blob keys are derived from
        """
        if not master_key:
            raise CredentialError("Master key must not be empty")
        self._master_key = master_key.encode("utf-8")

    def _derive_key(self, salt: bytes) -> bytes:
        kdf = Scrypt(salt=salt, length=KEY_BYTES, n=SCRYPT_N, r=SCRYPT_R, p=SCRYPT_P)
        return kdf.derive(self._master_key)

    def encrypt(self, plaintext: str) -> str:
        """Encrypt a secret for storage.

        Args:
            plaintext: Secret to protect

        Returns:
            Base64 blob containing salt, nonce and ciphertext
        """
        salt = os.urandom(SALT_BYTES)
        nonce = os.urandom(NONCE_BYTES)
        ciphertext = AESGCM(self._derive_key(salt)).encrypt(
            nonce, plaintext.encode("utf-8"), None
        )
        return base64.b64encode(salt + nonce + ciphertext).decode("ascii")

    def decrypt(self, blob: str) -> str:
        """Decrypt a stored secret.

        Blobs too short to hold salt, nonce and tag are legacy records
        stored as plain base64 and are decoded as such.

        Args:
            blob: Base64 blob produced by encrypt()

        Returns:
            The plaintext secret

        Raises:
            CredentialError: If the blob is not valid base64 or fails authentication
        """
        try:
            raw = base64.b64decode(blob, validate=True)
        except (binascii.Error, ValueError) as e:
            raise CredentialError("Credential blob is not valid base64") from e

        if len(raw) < SALT_BYTES + NONCE_BYTES + TAG_BYTES:
            logger.warning("Decoding legacy unencrypted credential blob")
            try:
                return raw.decode("utf-8")
            except UnicodeDecodeError as e:
                raise CredentialError("Legacy credential blob is not text") from e

        salt = raw[:SALT_BYTES]
        nonce = raw[SALT_BYTES : SALT_BYTES + NONCE_BYTES]
        ciphertext = raw[SALT_BYTES + NONCE_BYTES :]
        try:
            plaintext = AESGCM(self._derive_key(salt)).decrypt(nonce, ciphertext, None)
        except InvalidTag as e:
            raise CredentialError("Credential decryption failed") from e
        return plaintext.decode("utf-8")

    def decrypt_credentials(self, account: Account) -> ApiCredentials:
        """Decrypt the key pair stored on an account.

        Args:
            account: Account holding encrypted key material

        Returns:
            Decrypted ApiCredentials

        Raises:
            CredentialError: If either value cannot be decrypted
        """
        try:
            return ApiCredentials(
                api_key=self.decrypt(account.api_key_enc),
                api_secret=self.decrypt(account.api_secret_enc),
            )
        except CredentialError as e:
            logger.error(f"Cannot decrypt credentials for account {account.id}: {e}")
            raise CredentialError(str(e), account_id=account.id) from e
