"""Binance exchange integration.

Provides signed and relay REST transports and the ExchangeClient
implementation for Binance spot and futures accounts.
"""

from ledger_sync.exchange.binance.adapter import BinanceExchangeClient
from ledger_sync.exchange.binance.auth import BinanceSigner
from ledger_sync.exchange.binance.rate_limiter import BatchPolicy, RateLimiter
from ledger_sync.exchange.binance.rest import BinanceRestClient, RelayRestClient

__all__ = [
    "BatchPolicy",
    "BinanceExchangeClient",
    "BinanceRestClient",
    "BinanceSigner",
    "RateLimiter",
    "RelayRestClient",
]
