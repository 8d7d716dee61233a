"""Binance request signing.

Binance authenticates private endpoints with an API key header and an
HMAC-SHA256 signature over the url-encoded query string.
"""

from __future__ import annotations

import time
from typing import Any
from urllib.parse import urlencode

from cryptography.hazmat.primitives import hashes, hmac

from ledger_sync.vault.credentials import ApiCredentials

API_KEY_HEADER = "X-MBX-APIKEY"


class BinanceSigner:
    """Signs Binance query strings for one account.

    Signing flow:
    1. Add recvWindow and a fresh millisecond timestamp to the params
    2. URL-encode the params in insertion order
    3. Append signature = hex(HMAC-SHA256(secret, query))
    """

    def __init__(self, credentials: ApiCredentials, recv_window_ms: int = 5000) -> None:
        """Initialize with decrypted credentials.

        Args:
            credentials: API key pair
            recv_window_ms: Freshness tolerance the exchange applies
        """
        self._credentials = credentials
        self._recv_window_ms = recv_window_ms

    @property
    def api_key(self) -> str:
        return self._credentials.api_key

    @property
    def recv_window_ms(self) -> int:
        return self._recv_window_ms

    def sign(self, query_string: str) -> str:
        """Return the hex HMAC-SHA256 of a query string."""
        mac = hmac.HMAC(self._credentials.api_secret.encode("utf-8"), hashes.SHA256())
        mac.update(query_string.encode("utf-8"))
        return mac.finalize().hex()

    def signed_query(
        self,
        params: dict[str, Any],
        timestamp: int | None = None,
    ) -> str:
        """Build a signed query string.

        Args:
            params: Endpoint parameters; None values are dropped
            timestamp: Millisecond timestamp (defaults to now)

        Returns:
            Query string ending with &signature=...
        """
        if timestamp is None:
            timestamp = int(time.time() * 1000)

        payload = {k: v for k, v in params.items() if v is not None}
        payload["recvWindow"] = self._recv_window_ms
        payload["timestamp"] = timestamp

        query = urlencode(payload)
        return f"{query}&signature={self.sign(query)}"

    def get_auth_headers(self) -> dict[str, str]:
        """Headers sent with every signed request."""
        return {API_KEY_HEADER: self._credentials.api_key}
