"""Tests for the credential vault."""

import base64

import pytest

from ledger_sync.domain.errors import CredentialError
from ledger_sync.domain.records import Account
from ledger_sync.domain.types import MarketMode
from ledger_sync.vault.credentials import ApiCredentials, CredentialVault


class TestCredentialVault:
    """Tests for CredentialVault."""

    @pytest.fixture
    def vault(self) -> CredentialVault:
        return CredentialVault("master-key")

    def test_encrypt_decrypt(self, vault: CredentialVault) -> None:
        """Should round-trip a secret."""
        blob = vault.encrypt("my-api-secret")

        assert blob != "my-api-secret"
        assert vault.decrypt(blob) == "my-api-secret"

    def test_encrypt_is_salted(self, vault: CredentialVault) -> None:
        """Same plaintext should encrypt differently each time."""
        assert vault.encrypt("secret") != vault.encrypt("secret")

    def test_wrong_master_key_fails(self, vault: CredentialVault) -> None:
        """Should raise CredentialError when authentication fails."""
        blob = vault.encrypt("secret-value")

        with pytest.raises(CredentialError):
            CredentialVault("other-key").decrypt(blob)

    def test_invalid_base64_fails(self, vault: CredentialVault) -> None:
        with pytest.raises(CredentialError):
            vault.decrypt("not base64 !!")

    def test_legacy_plain_blob(self, vault: CredentialVault) -> None:
        """Short blobs are legacy plain base64."""
        legacy = base64.b64encode(b"plainkey").decode("ascii")
        assert vault.decrypt(legacy) == "plainkey"

    def test_empty_master_key_rejected(self) -> None:
        with pytest.raises(CredentialError):
            CredentialVault("")

    def test_decrypt_credentials(self, vault: CredentialVault) -> None:
        """Should decrypt both halves of an account's key pair."""
        account = Account(
            id="acct-1",
            owner_id="alice",
            name="main",
            market=MarketMode.SPOT,
            api_key_enc=vault.encrypt("key-123"),
            api_secret_enc=vault.encrypt("secret-456"),
        )

        creds = vault.decrypt_credentials(account)

        assert creds.api_key == "key-123"
        assert creds.api_secret == "secret-456"

    def test_decrypt_credentials_reports_account(self, vault: CredentialVault) -> None:
        account = Account(
            id="acct-9",
            owner_id="alice",
            name="broken",
            market=MarketMode.SPOT,
            api_key_enc="%%%",
            api_secret_enc="%%%",
        )

        with pytest.raises(CredentialError) as exc_info:
            vault.decrypt_credentials(account)

        assert exc_info.value.account_id == "acct-9"


class TestApiCredentials:
    """Tests for ApiCredentials."""

    def test_repr_hides_secret(self) -> None:
        creds = ApiCredentials(api_key="ABCDEFGH", api_secret="topsecret")
        text = repr(creds)

        assert "topsecret" not in text
        assert "EFGH" not in text
