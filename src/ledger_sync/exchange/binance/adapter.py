"""Binance exchange client.

Implements ExchangeClient on top of a Binance transport (direct signed
or relay) and the Binance normalizer.
"""

from __future__ import annotations

import logging
from typing import Any

from ledger_sync.domain.errors import UnknownInstrumentError
from ledger_sync.domain.records import (
    RawBalance,
    RawFiatOrder,
    RawTrade,
    RawTransfer,
    TimeWindow,
)
from ledger_sync.domain.types import MarketMode, TransferDirection
from ledger_sync.exchange.base import ExchangeClient, ExchangeLimits
from ledger_sync.exchange.binance.normalizer import BinanceNormalizer
from ledger_sync.exchange.binance.rest import BinanceTransport

logger = logging.getLogger(__name__)

FIAT_TRANSACTION_TYPES = {
    TransferDirection.DEPOSIT: 0,
    TransferDirection.WITHDRAWAL: 1,
}


def _fill_key(row: dict[str, Any]) -> Any:
    if row.get("id") is not None:
        return row["id"]
    return (row.get("orderId"), row.get("time"), row.get("qty"), row.get("price"))


class BinanceExchangeClient(ExchangeClient):
    """Binance client bound to one account and market.

    Features:
    - Works over the direct signed transport or the relay transport
    - Unknown-symbol responses become empty results
    - Payloads normalized to raw domain shapes
    """

    def __init__(
        self,
        transport: BinanceTransport,
        market: MarketMode,
        limits: ExchangeLimits | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            transport: Direct or relay transport for the account
            market: Market the account trades on
            limits: Per-call query limits
        """
        self._transport = transport
        self._market = market
        self._limits = limits or ExchangeLimits(
            trade_window_hours=24, transfer_window_days=90, page_limit=1000
        )
        self._normalizer = BinanceNormalizer()

    @property
    def limits(self) -> ExchangeLimits:
        return self._limits

    @property
    def market(self) -> MarketMode:
        return self._market

    async def fetch_trades(
        self,
        symbol: str,
        window: TimeWindow,
        page_limit: int | None = None,
    ) -> list[RawTrade]:
        """Fetch every fill in the window, paging on execution time.

        A full page moves startTime to the last fill's time. That bound is
        inclusive so fills sharing the millisecond are not lost; fills
        already seen are dropped by id.
        """
        limit = page_limit or self._limits.page_limit
        start_ms = window.start_ms
        seen: set[Any] = set()
        rows: list[dict[str, Any]] = []
        while True:
            try:
                page = await self._transport.get_trades(
                    self._market, symbol, start_ms, window.end_ms_inclusive, limit
                )
            except UnknownInstrumentError:
                return []

            fresh = [row for row in page if _fill_key(row) not in seen]
            seen.update(_fill_key(row) for row in fresh)
            rows.extend(fresh)
            if len(page) < limit:
                break
            if not fresh:
                logger.warning(
                    f"{symbol}: more than {limit} fills at {start_ms}, "
                    "cannot page further in this window"
                )
                break
            start_ms = max(int(row.get("time", start_ms)) for row in page)
            logger.debug(f"{symbol}: page of {limit} fills, continuing from {start_ms}")

        return self._normalizer.normalize_trades(rows, self._market)

    async def probe_symbol(self, symbol: str, window: TimeWindow) -> bool:
        # One single-row request, never paged
        try:
            page = await self._transport.get_trades(
                self._market, symbol, window.start_ms, window.end_ms_inclusive, 1
            )
        except UnknownInstrumentError:
            return False
        return bool(page)

    async def fetch_balances(self) -> list[RawBalance]:
        payload = await self._transport.get_account(self._market)
        return self._normalizer.normalize_balances(payload, self._market)

    async def fetch_fiat_orders(
        self,
        direction: TransferDirection,
        window: TimeWindow,
    ) -> list[RawFiatOrder]:
        payload = await self._transport.get_fiat_orders(
            FIAT_TRANSACTION_TYPES[direction],
            window.start_ms,
            window.end_ms_inclusive,
        )
        return self._normalizer.normalize_fiat_orders(payload, direction)

    async def fetch_crypto_transfers(
        self,
        direction: TransferDirection,
        window: TimeWindow,
    ) -> list[RawTransfer]:
        if direction == TransferDirection.DEPOSIT:
            payload = await self._transport.get_crypto_deposits(
                window.start_ms, window.end_ms_inclusive
            )
            return self._normalizer.normalize_crypto_deposits(payload)
        payload = await self._transport.get_crypto_withdrawals(
            window.start_ms, window.end_ms_inclusive
        )
        return self._normalizer.normalize_crypto_withdrawals(payload)

    async def list_trading_symbols(self) -> list[str]:
        payload = await self._transport.get_exchange_info(self._market)
        return self._normalizer.normalize_trading_symbols(payload)

    async def close(self) -> None:
        await self._transport.close()
