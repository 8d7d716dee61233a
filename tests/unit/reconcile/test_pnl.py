"""Tests for the realized PnL engine."""

from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest

from ledger_sync.domain.types import LotMatching, TradeSide
from ledger_sync.reconcile.pnl import PnLEngine

T0 = datetime(2024, 1, 1, tzinfo=UTC)


def buy_two_lots(engine: PnLEngine) -> None:
    engine.apply_fill("BTCUSDT", TradeSide.BUY, Decimal("1"), Decimal("100"), T0)
    engine.apply_fill(
        "BTCUSDT", TradeSide.BUY, Decimal("1"), Decimal("120"), T0 + timedelta(minutes=1)
    )


class TestPnLEngine:
    """Tests for PnLEngine."""

    def test_buy_realizes_zero(self) -> None:
        engine = PnLEngine()
        pnl = engine.apply_fill("BTCUSDT", TradeSide.BUY, Decimal("1"), Decimal("100"), T0)

        assert pnl == Decimal("0")
        assert engine.open_quantity("BTCUSDT") == Decimal("1")

    def test_fifo_partial_lots(self) -> None:
        """Oldest lot is consumed first."""
        engine = PnLEngine(LotMatching.FIFO)
        buy_two_lots(engine)

        pnl = engine.apply_fill("BTCUSDT", TradeSide.SELL, Decimal("1.5"), Decimal("130"), T0)

        # (130-100)*1 + (130-120)*0.5
        assert pnl == Decimal("35")
        lots = engine.open_lots("BTCUSDT")
        assert len(lots) == 1
        assert lots[0].price == Decimal("120")
        assert lots[0].quantity == Decimal("0.5")

    def test_lifo_partial_lots(self) -> None:
        """Newest lot is consumed first."""
        engine = PnLEngine(LotMatching.LIFO)
        buy_two_lots(engine)

        pnl = engine.apply_fill("BTCUSDT", TradeSide.SELL, Decimal("1.5"), Decimal("130"), T0)

        # (130-120)*1 + (130-100)*0.5
        assert pnl == Decimal("25")
        assert engine.open_lots("BTCUSDT")[0].price == Decimal("100")

    def test_losing_sell(self) -> None:
        engine = PnLEngine()
        engine.apply_fill("ETHUSDT", TradeSide.BUY, Decimal("2"), Decimal("2000"), T0)

        pnl = engine.apply_fill("ETHUSDT", TradeSide.SELL, Decimal("2"), Decimal("1900"), T0)

        assert pnl == Decimal("-200")
        assert engine.open_lots("ETHUSDT") == []

    def test_excess_sell_realizes_nothing_extra(self) -> None:
        """Quantity beyond open lots has no cost basis and adds zero."""
        engine = PnLEngine()
        engine.apply_fill("BTCUSDT", TradeSide.BUY, Decimal("1"), Decimal("100"), T0)

        pnl = engine.apply_fill("BTCUSDT", TradeSide.SELL, Decimal("3"), Decimal("110"), T0)

        assert pnl == Decimal("10")
        assert engine.open_quantity("BTCUSDT") == Decimal("0")

    def test_sell_without_lots(self) -> None:
        engine = PnLEngine()
        assert engine.apply_fill(
            "BTCUSDT", TradeSide.SELL, Decimal("1"), Decimal("100"), T0
        ) == Decimal("0")

    def test_symbols_are_independent(self) -> None:
        engine = PnLEngine()
        engine.apply_fill("BTCUSDT", TradeSide.BUY, Decimal("1"), Decimal("100"), T0)

        pnl = engine.apply_fill("ETHUSDT", TradeSide.SELL, Decimal("1"), Decimal("50"), T0)

        assert pnl == Decimal("0")
        assert engine.open_quantity("BTCUSDT") == Decimal("1")

    def test_reset(self) -> None:
        engine = PnLEngine()
        buy_two_lots(engine)
        engine.reset()
        assert engine.open_lots("BTCUSDT") == []


class TestAnnotate:
    """Tests for PnLEngine.annotate."""

    @pytest.fixture
    def engine(self) -> PnLEngine:
        return PnLEngine(LotMatching.FIFO)

    def test_sorts_and_fills_pnl(self, engine: PnLEngine, make_trade) -> None:
        """Records are processed in execution order regardless of input order."""
        sell = make_trade(side=TradeSide.SELL, price=Decimal("150"), executed_at=T0 + timedelta(hours=2))
        buy = make_trade(side=TradeSide.BUY, price=Decimal("100"), executed_at=T0 + timedelta(hours=1))

        result = engine.annotate([sell, buy])

        assert [r.side for r in result] == [TradeSide.BUY, TradeSide.SELL]
        assert result[0].realized_pnl == Decimal("0")
        assert result[1].realized_pnl == Decimal("50")

    def test_supplied_pnl_kept_but_lots_consumed(self, engine: PnLEngine, make_trade) -> None:
        buy = make_trade(side=TradeSide.BUY, price=Decimal("100"), executed_at=T0)
        sell = make_trade(
            side=TradeSide.SELL,
            price=Decimal("150"),
            realized_pnl=Decimal("42"),
            executed_at=T0 + timedelta(hours=1),
        )
        later = make_trade(
            side=TradeSide.SELL, price=Decimal("150"), executed_at=T0 + timedelta(hours=2)
        )

        result = engine.annotate([buy, sell, later])

        assert result[1].realized_pnl == Decimal("42")
        # The supplied sell still closed the only lot
        assert result[2].realized_pnl == Decimal("0")
