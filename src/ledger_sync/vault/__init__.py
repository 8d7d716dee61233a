"""Credential vault for at-rest exchange secrets."""

from ledger_sync.vault.credentials import ApiCredentials, CredentialVault

__all__ = ["ApiCredentials", "CredentialVault"]
