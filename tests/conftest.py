"""Pytest configuration and shared fixtures."""

from collections.abc import Callable
from datetime import UTC, datetime
from decimal import Decimal

import pytest

from ledger_sync.core.config import SyncConfig
from ledger_sync.db.repository import LedgerRepository
from ledger_sync.domain.records import Account, RawTrade, TradeRecord
from ledger_sync.domain.types import MarketMode, TradeSide
from ledger_sync.jobs.tracker import JobTracker

MASTER_KEY = "test-master-key-0123456789"


@pytest.fixture
def repo() -> LedgerRepository:
    """Repository with in-memory database."""
    return LedgerRepository(db_url="sqlite:///:memory:")


@pytest.fixture
def tracker(repo: LedgerRepository) -> JobTracker:
    return JobTracker(repo)


@pytest.fixture
def config() -> SyncConfig:
    """Fast config: no batch delay, small CSV batches."""
    return SyncConfig.from_dict(
        {
            "default_symbols": ["BTCUSDT", "ETHUSDT"],
            "batching": {"batch_delay_seconds": 0, "csv_batch_size": 500},
            "vault": {"master_key": MASTER_KEY},
        }
    )


@pytest.fixture
def account(repo: LedgerRepository) -> Account:
    """Stored spot account owned by alice."""
    return repo.add_account(
        Account(
            id="acct-1",
            owner_id="alice",
            name="main",
            market=MarketMode.SPOT,
            api_key_enc="enc-key",
            api_secret_enc="enc-secret",
        )
    )


@pytest.fixture
def make_trade() -> Callable[..., TradeRecord]:
    """Factory for trade records with sensible defaults."""

    def _make(**overrides: object) -> TradeRecord:
        fields: dict[str, object] = {
            "account_id": "acct-1",
            "exchange": "binance",
            "market": MarketMode.SPOT,
            "symbol": "BTCUSDT",
            "side": TradeSide.BUY,
            "quantity": Decimal("1"),
            "price": Decimal("100"),
            "fee_value": Decimal("0.1"),
            "fee_asset": "USDT",
            "executed_at": datetime(2024, 1, 1, 10, 0, tzinfo=UTC),
        }
        fields.update(overrides)
        return TradeRecord(**fields)  # type: ignore[arg-type]

    return _make


@pytest.fixture
def make_raw_trade() -> Callable[..., RawTrade]:
    """Factory for exchange fills."""

    def _make(**overrides: object) -> RawTrade:
        fields: dict[str, object] = {
            "symbol": "BTCUSDT",
            "side": TradeSide.BUY,
            "quantity": Decimal("1"),
            "price": Decimal("100"),
            "commission": Decimal("0.1"),
            "commission_asset": "USDT",
            "time": datetime(2024, 1, 1, 10, 0, tzinfo=UTC),
        }
        fields.update(overrides)
        return RawTrade(**fields)  # type: ignore[arg-type]

    return _make
