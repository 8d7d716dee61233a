"""Exchange clients for ledger synchronization.

This package contains the exchange abstraction layer, sub-window
splitting, and concrete clients for supported exchanges.
"""

from ledger_sync.exchange.base import ExchangeClient, ExchangeLimits
from ledger_sync.exchange.factory import (
    ClientContext,
    ExchangeClientFactory,
    ExchangeType,
    create_client,
    register_client,
)
from ledger_sync.exchange.windows import split_window

__all__ = [
    "ClientContext",
    "ExchangeClient",
    "ExchangeClientFactory",
    "ExchangeLimits",
    "ExchangeType",
    "create_client",
    "register_client",
    "split_window",
]
