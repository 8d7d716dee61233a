"""Tests for Binance request signing."""

import hashlib
import hmac
from urllib.parse import parse_qs

import pytest

from ledger_sync.exchange.binance.auth import API_KEY_HEADER, BinanceSigner
from ledger_sync.vault.credentials import ApiCredentials


class TestBinanceSigner:
    """Tests for BinanceSigner."""

    @pytest.fixture
    def signer(self) -> BinanceSigner:
        return BinanceSigner(
            ApiCredentials(api_key="key-abc", api_secret="secret-xyz"),
            recv_window_ms=5000,
        )

    def test_sign_matches_hmac_sha256(self, signer: BinanceSigner) -> None:
        """Should produce the hex HMAC-SHA256 of the query."""
        query = "symbol=BTCUSDT&timestamp=1"
        expected = hmac.new(b"secret-xyz", query.encode(), hashlib.sha256).hexdigest()
        assert signer.sign(query) == expected

    def test_signed_query_appends_signature(self, signer: BinanceSigner) -> None:
        """Signature should cover everything before it."""
        query = signer.signed_query({"symbol": "BTCUSDT", "limit": 1000}, timestamp=1700000000000)

        unsigned, signature = query.rsplit("&signature=", 1)
        assert signer.sign(unsigned) == signature

        params = parse_qs(unsigned)
        assert params["symbol"] == ["BTCUSDT"]
        assert params["recvWindow"] == ["5000"]
        assert params["timestamp"] == ["1700000000000"]

    def test_signed_query_drops_none(self, signer: BinanceSigner) -> None:
        query = signer.signed_query({"symbol": "BTCUSDT", "fromId": None}, timestamp=1)
        assert "fromId" not in query

    def test_fresh_timestamp_by_default(self, signer: BinanceSigner) -> None:
        """Each call stamps the current time."""
        query = signer.signed_query({})
        timestamp = int(parse_qs(query)["timestamp"][0])
        assert timestamp > 1_600_000_000_000

    def test_auth_headers(self, signer: BinanceSigner) -> None:
        assert signer.get_auth_headers() == {API_KEY_HEADER: "key-abc"}
