"""Binance REST transports.

Two transports expose the same endpoint methods:
- BinanceRestClient signs requests with the account's own API secret
- RelayRestClient forwards them to a relay service with the caller's
  bearer credential; the relay holds the exchange secrets

Both return decoded JSON payloads. Normalization to domain shapes is
done by the adapter.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

import httpx

from ledger_sync.domain.errors import ExchangeError, UnknownInstrumentError
from ledger_sync.domain.types import MarketMode
from ledger_sync.exchange.binance.auth import BinanceSigner
from ledger_sync.exchange.binance.rate_limiter import RateLimiter

if TYPE_CHECKING:
    from ledger_sync.monitoring.metrics import MetricsCollector

logger = logging.getLogger(__name__)

EXCHANGE_NAME = "binance"
SPOT_API_BASE = "https://api.binance.com"
FUTURES_API_BASE = "https://fapi.binance.com"

# Binance error code for "Invalid symbol"
UNKNOWN_SYMBOL_CODE = -1121
FIAT_SUCCESS_CODE = "000000"

TRADES_ENDPOINTS = {
    MarketMode.SPOT: "/api/v3/myTrades",
    MarketMode.FUTURES: "/fapi/v1/userTrades",
}
ACCOUNT_ENDPOINTS = {
    MarketMode.SPOT: "/api/v3/account",
    MarketMode.FUTURES: "/fapi/v2/account",
}
EXCHANGE_INFO_ENDPOINTS = {
    MarketMode.SPOT: "/api/v3/exchangeInfo",
    MarketMode.FUTURES: "/fapi/v1/exchangeInfo",
}
FIAT_ORDERS_ENDPOINT = "/sapi/v1/fiat/orders"
CRYPTO_DEPOSITS_ENDPOINT = "/sapi/v1/capital/deposit/hisrec"
CRYPTO_WITHDRAWALS_ENDPOINT = "/sapi/v1/capital/withdraw/history"

# Status filters sent with movement history queries
DEPOSIT_SUCCESS_STATUS = 1
WITHDRAWAL_COMPLETED_STATUS = 6


def is_unknown_symbol(response: httpx.Response) -> bool:
    """Return True if the response is the exchange's invalid-symbol error."""
    if response.status_code != 400:
        return False
    try:
        body = response.json()
    except ValueError:
        return str(UNKNOWN_SYMBOL_CODE) in response.text
    if isinstance(body, dict):
        if body.get("code") == UNKNOWN_SYMBOL_CODE:
            return True
        error = body.get("error")
        if isinstance(error, dict) and error.get("code") == UNKNOWN_SYMBOL_CODE:
            return True
    return False


class BinanceTransport(ABC):
    """Shared request plumbing for Binance transports.

    All reads pass through the request pacer. Non-success
    responses become ExchangeError, except the invalid-symbol signal
    which becomes UnknownInstrumentError.
    """

    def __init__(
        self,
        read_limiter: RateLimiter,
        timeout_seconds: float = 30.0,
        client: httpx.AsyncClient | None = None,
        metrics: MetricsCollector | None = None,
    ) -> None:
        """Initialize the transport.

        Args:
            read_limiter: Rate limiter applied to every request
            timeout_seconds: Per-request timeout
            client: Optional preconfigured HTTP client
            metrics: Optional metrics collector
        """
        self._read_limiter = read_limiter
        self._timeout = timeout_seconds
        self._client = client
        self._owns_client = client is None
        self._metrics = metrics

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def close(self) -> None:
        """Close the HTTP client if this transport created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None

    async def _get_json(
        self,
        endpoint: str,
        build_url: Callable[[], str],
        headers: dict[str, str],
        symbol: str | None = None,
    ) -> Any:
        """Send a GET request and decode the JSON body.

        Args:
            endpoint: Endpoint name used in logs and metrics
            build_url: Zero-argument callable returning the URL, invoked
                after rate limiting so any timestamp in it is fresh
            headers: Request headers
            symbol: Symbol the request is about, for unknown-symbol errors

        Returns:
            Decoded JSON

        Raises:
            UnknownInstrumentError: If the exchange rejects the symbol
            ExchangeError: On any other failure
        """
        await self._read_limiter.acquire()

        url = build_url()
        try:
            response = await self._get_client().get(url, headers=headers)
            response.raise_for_status()
            result = response.json()
            self._record(endpoint, "ok")
            return result

        except httpx.HTTPStatusError as e:
            if is_unknown_symbol(e.response):
                self._record(endpoint, "unknown_symbol")
                logger.debug(f"Unknown symbol {symbol} at {endpoint}")
                raise UnknownInstrumentError(symbol, EXCHANGE_NAME) from e
            self._record(endpoint, "error")
            error_body = e.response.text
            logger.error(
                f"Binance API error at {endpoint}: {e.response.status_code} - {error_body}"
            )
            raise ExchangeError(
                f"API error {e.response.status_code}: {error_body}",
                exchange=EXCHANGE_NAME,
                status_code=e.response.status_code,
                context={"endpoint": endpoint, "symbol": symbol},
            ) from e

        except httpx.RequestError as e:
            self._record(endpoint, "error")
            logger.error(f"Binance request failed at {endpoint}: {e}")
            raise ExchangeError(
                f"Request failed: {e}",
                exchange=EXCHANGE_NAME,
                context={"endpoint": endpoint, "symbol": symbol},
            ) from e

        except ValueError as e:
            self._record(endpoint, "error")
            raise ExchangeError(
                f"Invalid JSON from {endpoint}",
                exchange=EXCHANGE_NAME,
                context={"endpoint": endpoint},
            ) from e

    def _record(self, endpoint: str, outcome: str) -> None:
        if self._metrics is not None:
            self._metrics.record_exchange_request(endpoint, outcome)

    # Endpoint methods

    @abstractmethod
    async def get_trades(
        self,
        market: MarketMode,
        symbol: str,
        start_ms: int,
        end_ms: int,
        limit: int,
    ) -> list[dict[str, Any]]:
        """Fetch raw fills for one symbol and window."""
        ...

    @abstractmethod
    async def get_account(self, market: MarketMode) -> dict[str, Any]:
        """Fetch the raw account payload."""
        ...

    @abstractmethod
    async def get_fiat_orders(
        self,
        transaction_type: int,
        begin_ms: int,
        end_ms: int,
    ) -> list[dict[str, Any]]:
        """Fetch raw fiat orders (0 deposits, 1 withdrawals)."""
        ...

    @abstractmethod
    async def get_crypto_deposits(self, start_ms: int, end_ms: int) -> list[dict[str, Any]]:
        """Fetch raw crypto deposits."""
        ...

    @abstractmethod
    async def get_crypto_withdrawals(
        self, start_ms: int, end_ms: int
    ) -> list[dict[str, Any]]:
        """Fetch raw crypto withdrawals."""
        ...

    @abstractmethod
    async def get_exchange_info(self, market: MarketMode) -> dict[str, Any]:
        """Fetch the public exchange metadata."""
        ...


def _unwrap_fiat(payload: Any) -> list[dict[str, Any]]:
    """Unwrap a {code, message, data} fiat payload."""
    if not isinstance(payload, dict):
        raise ExchangeError("Unexpected fiat orders payload", exchange=EXCHANGE_NAME)
    if payload.get("code") != FIAT_SUCCESS_CODE:
        raise ExchangeError(
            f"Binance API error: {payload.get('message') or 'Unknown error'}",
            exchange=EXCHANGE_NAME,
            context={"code": payload.get("code")},
        )
    data = payload.get("data") or []
    return data if isinstance(data, list) else []


def _as_list(payload: Any) -> list[dict[str, Any]]:
    return payload if isinstance(payload, list) else []


class BinanceRestClient(BinanceTransport):
    """Direct transport signing each request with the account secret."""

    def __init__(
        self,
        signer: BinanceSigner,
        read_limiter: RateLimiter,
        spot_base_url: str = SPOT_API_BASE,
        futures_base_url: str = FUTURES_API_BASE,
        timeout_seconds: float = 30.0,
        client: httpx.AsyncClient | None = None,
        metrics: MetricsCollector | None = None,
    ) -> None:
        """Initialize the direct transport.

        Args:
            signer: Request signer for the account
            read_limiter: Rate limiter for reads
            spot_base_url: Spot API base URL
            futures_base_url: Futures API base URL
            timeout_seconds: Per-request timeout
            client: Optional preconfigured HTTP client
            metrics: Optional metrics collector
        """
        super().__init__(read_limiter, timeout_seconds, client, metrics)
        self._signer = signer
        self._bases = {
            MarketMode.SPOT: spot_base_url.rstrip("/"),
            MarketMode.FUTURES: futures_base_url.rstrip("/"),
        }

    async def _signed_get(
        self,
        market: MarketMode,
        endpoint: str,
        params: dict[str, Any],
        symbol: str | None = None,
    ) -> Any:
        base = self._bases[market]

        def build_url() -> str:
            # Timestamp is stamped here, after rate limiting
            return f"{base}{endpoint}?{self._signer.signed_query(params)}"

        logger.debug(f"Signed GET {endpoint} {symbol or ''}")
        return await self._get_json(
            endpoint, build_url, self._signer.get_auth_headers(), symbol
        )

    async def get_trades(
        self,
        market: MarketMode,
        symbol: str,
        start_ms: int,
        end_ms: int,
        limit: int,
    ) -> list[dict[str, Any]]:
        params = {
            "symbol": symbol,
            "startTime": start_ms,
            "endTime": end_ms,
            "limit": limit,
        }
        payload = await self._signed_get(market, TRADES_ENDPOINTS[market], params, symbol)
        return _as_list(payload)

    async def get_account(self, market: MarketMode) -> dict[str, Any]:
        payload = await self._signed_get(market, ACCOUNT_ENDPOINTS[market], {})
        return payload if isinstance(payload, dict) else {}

    async def get_fiat_orders(
        self,
        transaction_type: int,
        begin_ms: int,
        end_ms: int,
    ) -> list[dict[str, Any]]:
        params = {
            "transactionType": transaction_type,
            "beginTime": begin_ms,
            "endTime": end_ms,
        }
        payload = await self._signed_get(MarketMode.SPOT, FIAT_ORDERS_ENDPOINT, params)
        return _unwrap_fiat(payload)

    async def get_crypto_deposits(self, start_ms: int, end_ms: int) -> list[dict[str, Any]]:
        params = {
            "status": DEPOSIT_SUCCESS_STATUS,
            "startTime": start_ms,
            "endTime": end_ms,
        }
        payload = await self._signed_get(MarketMode.SPOT, CRYPTO_DEPOSITS_ENDPOINT, params)
        return _as_list(payload)

    async def get_crypto_withdrawals(
        self, start_ms: int, end_ms: int
    ) -> list[dict[str, Any]]:
        params = {
            "status": WITHDRAWAL_COMPLETED_STATUS,
            "startTime": start_ms,
            "endTime": end_ms,
        }
        payload = await self._signed_get(
            MarketMode.SPOT, CRYPTO_WITHDRAWALS_ENDPOINT, params
        )
        return _as_list(payload)

    async def get_exchange_info(self, market: MarketMode) -> dict[str, Any]:
        url = f"{self._bases[market]}{EXCHANGE_INFO_ENDPOINTS[market]}"
        payload = await self._get_json(
            EXCHANGE_INFO_ENDPOINTS[market], lambda: url, {}
        )
        return payload if isinstance(payload, dict) else {}


class RelayRestClient(BinanceTransport):
    """Transport forwarding requests to a relay service.

    The relay signs requests on the caller's behalf. The caller's bearer
    credential is forwarded in Authorization and the account id in the
    query string.
    """

    def __init__(
        self,
        relay_url: str,
        bearer: str,
        account_id: str,
        read_limiter: RateLimiter,
        public_spot_base_url: str = SPOT_API_BASE,
        public_futures_base_url: str = FUTURES_API_BASE,
        timeout_seconds: float = 30.0,
        client: httpx.AsyncClient | None = None,
        metrics: MetricsCollector | None = None,
    ) -> None:
        super().__init__(read_limiter, timeout_seconds, client, metrics)
        self._relay_url = relay_url.rstrip("/")
        self._bearer = bearer if bearer.lower().startswith("bearer ") else f"Bearer {bearer}"
        self._account_id = account_id
        self._public_bases = {
            MarketMode.SPOT: public_spot_base_url.rstrip("/"),
            MarketMode.FUTURES: public_futures_base_url.rstrip("/"),
        }

    async def _relay_get(
        self,
        path: str,
        params: dict[str, Any],
        symbol: str | None = None,
    ) -> Any:
        query = httpx.QueryParams({k: v for k, v in params.items() if v is not None})
        url = f"{self._relay_url}{path}?{query}"
        headers = {"Authorization": self._bearer}
        return await self._get_json(path, lambda: url, headers, symbol)

    @staticmethod
    def _data(payload: Any) -> list[dict[str, Any]]:
        if isinstance(payload, dict):
            return _as_list(payload.get("data"))
        return _as_list(payload)

    async def get_trades(
        self,
        market: MarketMode,
        symbol: str,
        start_ms: int,
        end_ms: int,
        limit: int,
    ) -> list[dict[str, Any]]:
        params = {
            "market": market.value,
            "accountId": self._account_id,
            "symbol": symbol,
            "startTime": start_ms,
            "endTime": end_ms,
            "limit": limit,
        }
        return self._data(await self._relay_get("/trades", params, symbol))

    async def get_account(self, market: MarketMode) -> dict[str, Any]:
        params = {"market": market.value, "accountId": self._account_id}
        payload = await self._relay_get("/account", params)
        if isinstance(payload, dict) and isinstance(payload.get("data"), dict):
            return payload["data"]
        return payload if isinstance(payload, dict) else {}

    async def get_fiat_orders(
        self,
        transaction_type: int,
        begin_ms: int,
        end_ms: int,
    ) -> list[dict[str, Any]]:
        params = {
            "transactionType": transaction_type,
            "accountId": self._account_id,
            "beginTime": begin_ms,
            "endTime": end_ms,
        }
        return _unwrap_fiat(await self._relay_get("/fiat/orders", params))

    async def get_crypto_deposits(self, start_ms: int, end_ms: int) -> list[dict[str, Any]]:
        params = {
            "accountId": self._account_id,
            "status": DEPOSIT_SUCCESS_STATUS,
            "startTime": start_ms,
            "endTime": end_ms,
        }
        return self._data(await self._relay_get("/crypto/deposits", params))

    async def get_crypto_withdrawals(
        self, start_ms: int, end_ms: int
    ) -> list[dict[str, Any]]:
        params = {
            "accountId": self._account_id,
            "status": WITHDRAWAL_COMPLETED_STATUS,
            "startTime": start_ms,
            "endTime": end_ms,
        }
        return self._data(await self._relay_get("/crypto/withdrawals", params))

    async def get_exchange_info(self, market: MarketMode) -> dict[str, Any]:
        # Exchange metadata is public; no relay needed
        url = f"{self._public_bases[market]}{EXCHANGE_INFO_ENDPOINTS[market]}"
        payload = await self._get_json(
            EXCHANGE_INFO_ENDPOINTS[market], lambda: url, {}
        )
        return payload if isinstance(payload, dict) else {}
