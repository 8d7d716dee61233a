"""Mock exchange client for testing.

Provides a complete in-memory implementation of the ExchangeClient
interface, useful for unit tests and offline runs.
"""

from __future__ import annotations

from decimal import Decimal

from ledger_sync.domain.errors import ExchangeError
from ledger_sync.domain.records import (
    RawBalance,
    RawFiatOrder,
    RawTrade,
    RawTransfer,
    TimeWindow,
    ensure_utc,
)
from ledger_sync.domain.types import TransferDirection
from ledger_sync.exchange.base import ExchangeClient, ExchangeLimits


class MockExchangeClient(ExchangeClient):
    """In-memory exchange client.

    Seed it with fills and movements; queries filter by window exactly
    like the real exchange. Every call is recorded in `calls` so tests
    can assert on window splitting and batching.
    """

    def __init__(
        self,
        limits: ExchangeLimits | None = None,
        known_symbols: set[str] | None = None,
    ) -> None:
        """Initialize mock client.

        Args:
            limits: Query limits to report and enforce
            known_symbols: Symbols the exchange recognizes (None means all)
        """
        self._limits = limits or ExchangeLimits(
            trade_window_hours=24, transfer_window_days=90, page_limit=1000
        )
        self._known_symbols = known_symbols
        self._trades: list[RawTrade] = []
        self._balances: list[RawBalance] = []
        self._fiat_orders: list[RawFiatOrder] = []
        self._transfers: list[RawTransfer] = []
        self._failing_windows: set[tuple[str, int]] = set()
        self.calls: list[tuple[str, str, TimeWindow | None]] = []
        self.closed = False
        self.fail_listing = False

    @property
    def limits(self) -> ExchangeLimits:
        return self._limits

    # Seeding helpers

    def add_trades(self, *trades: RawTrade) -> None:
        self._trades.extend(trades)

    def set_balances(self, *balances: RawBalance) -> None:
        self._balances = list(balances)

    def add_fiat_orders(self, *orders: RawFiatOrder) -> None:
        self._fiat_orders.extend(orders)

    def add_transfers(self, *transfers: RawTransfer) -> None:
        self._transfers.extend(transfers)

    def fail_window(self, symbol: str, window_start: TimeWindow | int) -> None:
        """Make fetch_trades raise for one symbol and sub-window start."""
        start_ms = window_start.start_ms if isinstance(window_start, TimeWindow) else window_start
        self._failing_windows.add((symbol, start_ms))

    # ExchangeClient

    def _check_span(self, window: TimeWindow, hours: float) -> None:
        if window.duration.total_seconds() > hours * 3600:
            raise ExchangeError(
                f"Window exceeds {hours}h limit", exchange="mock", status_code=400
            )

    async def fetch_trades(
        self,
        symbol: str,
        window: TimeWindow,
        page_limit: int | None = None,
    ) -> list[RawTrade]:
        self.calls.append(("trades", symbol, window))
        self._check_span(window, self._limits.trade_window_hours)
        if (symbol, window.start_ms) in self._failing_windows:
            raise ExchangeError(f"Simulated failure for {symbol}", exchange="mock", status_code=500)
        if self._known_symbols is not None and symbol not in self._known_symbols:
            return []
        matches = [
            t for t in self._trades
            if t.symbol == symbol and window.contains(ensure_utc(t.time))
        ]
        matches.sort(key=lambda t: t.time)
        return matches[: page_limit or self._limits.page_limit]

    async def fetch_balances(self) -> list[RawBalance]:
        self.calls.append(("balances", "", None))
        return [b for b in self._balances if b.free > Decimal("0") or b.locked > Decimal("0")]

    async def fetch_fiat_orders(
        self,
        direction: TransferDirection,
        window: TimeWindow,
    ) -> list[RawFiatOrder]:
        self.calls.append(("fiat", direction.value, window))
        self._check_span(window, self._limits.transfer_window_days * 24)
        return [
            o for o in self._fiat_orders
            if o.direction == direction and window.contains(o.created_at)
        ]

    async def fetch_crypto_transfers(
        self,
        direction: TransferDirection,
        window: TimeWindow,
    ) -> list[RawTransfer]:
        self.calls.append(("crypto", direction.value, window))
        self._check_span(window, self._limits.transfer_window_days * 24)
        return [
            t for t in self._transfers
            if t.direction == direction and window.contains(t.created_at)
        ]

    async def probe_symbol(self, symbol: str, window: TimeWindow) -> bool:
        # Discovery probes span more than one trade window
        self.calls.append(("probe", symbol, window))
        if self._known_symbols is not None and symbol not in self._known_symbols:
            return False
        return any(
            t.symbol == symbol and window.contains(ensure_utc(t.time)) for t in self._trades
        )

    async def list_trading_symbols(self) -> list[str]:
        self.calls.append(("symbols", "", None))
        if self.fail_listing:
            raise ExchangeError("Simulated exchangeInfo failure", exchange="mock", status_code=503)
        if self._known_symbols is not None:
            return sorted(self._known_symbols)
        return sorted({t.symbol for t in self._trades})

    async def close(self) -> None:
        self.closed = True
