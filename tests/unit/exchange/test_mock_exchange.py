"""Tests for the mock exchange client."""

from datetime import UTC, date, datetime, timedelta

import pytest

from ledger_sync.domain.errors import ExchangeError
from ledger_sync.domain.records import TimeWindow
from ledger_sync.exchange.mock.adapter import MockExchangeClient

DAY = TimeWindow.from_dates(date(2024, 1, 1), date(2024, 1, 1))


class TestMockExchangeClient:
    """Tests for MockExchangeClient."""

    @pytest.mark.asyncio
    async def test_filters_by_window(self, make_raw_trade) -> None:
        client = MockExchangeClient()
        client.add_trades(
            make_raw_trade(time=datetime(2024, 1, 1, 5, tzinfo=UTC)),
            make_raw_trade(time=datetime(2024, 1, 2, 0, tzinfo=UTC)),
        )

        trades = await client.fetch_trades("BTCUSDT", DAY)

        assert len(trades) == 1
        assert client.calls == [("trades", "BTCUSDT", DAY)]

    @pytest.mark.asyncio
    async def test_rejects_oversized_window(self) -> None:
        """Should enforce the trade window limit like the exchange."""
        client = MockExchangeClient()
        window = TimeWindow(start=DAY.start, end=DAY.start + timedelta(hours=25))

        with pytest.raises(ExchangeError):
            await client.fetch_trades("BTCUSDT", window)

    @pytest.mark.asyncio
    async def test_unknown_symbol_is_empty(self, make_raw_trade) -> None:
        client = MockExchangeClient(known_symbols={"ETHUSDT"})
        client.add_trades(make_raw_trade(time=datetime(2024, 1, 1, 5, tzinfo=UTC)))

        assert await client.fetch_trades("BTCUSDT", DAY) == []

    @pytest.mark.asyncio
    async def test_failing_window(self) -> None:
        client = MockExchangeClient()
        client.fail_window("BTCUSDT", DAY)

        with pytest.raises(ExchangeError):
            await client.fetch_trades("BTCUSDT", DAY)

    @pytest.mark.asyncio
    async def test_listing_failure(self) -> None:
        client = MockExchangeClient()
        client.fail_listing = True

        with pytest.raises(ExchangeError):
            await client.list_trading_symbols()
