"""Mock exchange client for testing."""

from ledger_sync.exchange.mock.adapter import MockExchangeClient

__all__ = ["MockExchangeClient"]
