"""Exchange client abstractions.

Defines the read-only contract every exchange integration implements.
The reconciliation core depends only on this interface.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

from pydantic.dataclasses import dataclass

if TYPE_CHECKING:
    from ledger_sync.domain.records import (
        RawBalance,
        RawFiatOrder,
        RawTrade,
        RawTransfer,
        TimeWindow,
    )
    from ledger_sync.domain.types import TransferDirection


@dataclass(frozen=True)
class ExchangeLimits:
    """Query limits the exchange enforces per call.

    Callers use these to split long ranges into sub-windows.
    """

    trade_window_hours: int
    """Maximum span of one trade-history query."""

    transfer_window_days: int
    """Maximum span of one fiat/crypto movement query."""

    page_limit: int
    """Maximum rows returned by one trade-history query."""


class ExchangeClient(ABC):
    """Abstract base for exchange integrations.

    Implementations must:
    - Sign requests with account-scoped secrets
    - Stamp each request with a fresh timestamp at send time
    - Normalize responses to raw domain shapes
    - Translate the "unknown instrument" signal into an empty result

    A client is bound to one account. Window arguments must not exceed
    the limits reported by `limits`; splitting is the caller's job.
    """

    @property
    @abstractmethod
    def limits(self) -> ExchangeLimits:
        """Return the per-call query limits."""
        ...

    @abstractmethod
    async def fetch_trades(
        self,
        symbol: str,
        window: TimeWindow,
        page_limit: int | None = None,
    ) -> list[RawTrade]:
        """Fetch fills for one symbol inside one sub-window.

        Args:
            symbol: Instrument symbol, e.g. "BTCUSDT"
            window: Sub-window no longer than limits.trade_window_hours
            page_limit: Maximum rows (defaults to limits.page_limit)

        Returns:
            Fills in the window; empty if the symbol is unknown

        Raises:
            ExchangeError: On any other transport failure
        """
        ...

    @abstractmethod
    async def fetch_balances(self) -> list[RawBalance]:
        """Fetch current asset balances.

        Raises:
            ExchangeError: On transport failure
        """
        ...

    @abstractmethod
    async def fetch_fiat_orders(
        self,
        direction: TransferDirection,
        window: TimeWindow,
    ) -> list[RawFiatOrder]:
        """Fetch successful fiat deposits or withdrawals in one sub-window.

        Raises:
            ExchangeError: On transport failure
        """
        ...

    @abstractmethod
    async def fetch_crypto_transfers(
        self,
        direction: TransferDirection,
        window: TimeWindow,
    ) -> list[RawTransfer]:
        """Fetch completed crypto deposits or withdrawals in one sub-window.

        Raises:
            ExchangeError: On transport failure
        """
        ...

    @abstractmethod
    async def list_trading_symbols(self) -> list[str]:
        """Return every symbol currently open for trading.

        Raises:
            ExchangeError: On transport failure
        """
        ...

    async def probe_symbol(self, symbol: str, window: TimeWindow) -> bool:
        """Return True if the account has at least one fill for symbol in window.

        Used by symbol discovery. The default fetches the window; paging
        clients override it with a single-row request.

        Raises:
            ExchangeError: On transport failure
        """
        return bool(await self.fetch_trades(symbol, window, page_limit=1))

    async def close(self) -> None:
        """Release network resources. Default is a no-op."""
        return None
