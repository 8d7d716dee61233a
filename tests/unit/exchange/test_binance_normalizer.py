"""Tests for Binance payload normalization."""

from datetime import UTC, datetime
from decimal import Decimal

from ledger_sync.domain.types import MarketMode, TradeSide, TransferDirection
from ledger_sync.exchange.binance.normalizer import BinanceNormalizer, to_decimal


class TestBinanceNormalizer:
    """Tests for BinanceNormalizer."""

    def test_spot_trade(self) -> None:
        """Spot fills use isBuyer and isMaker."""
        trade = BinanceNormalizer.normalize_trade(
            {
                "symbol": "BTCUSDT",
                "id": 28457,
                "orderId": 100234,
                "price": "4.00000100",
                "qty": "12.00000000",
                "commission": "10.10000000",
                "commissionAsset": "BNB",
                "time": 1499865549590,
                "isBuyer": False,
                "isMaker": True,
            },
            MarketMode.SPOT,
        )

        assert trade.side == TradeSide.SELL
        assert trade.order_type == "LIMIT"
        assert trade.price == Decimal("4.00000100")
        assert trade.order_id == "100234"
        assert trade.trade_id == "28457"
        assert trade.realized_pnl is None
        assert trade.time == datetime.fromtimestamp(1499865549.590, tz=UTC)

    def test_futures_trade_keeps_pnl(self) -> None:
        """Futures fills carry side and realizedPnl."""
        trade = BinanceNormalizer.normalize_trade(
            {
                "symbol": "BTCUSDT",
                "id": 1,
                "orderId": 2,
                "side": "BUY",
                "price": "7819.01",
                "qty": "0.002",
                "realizedPnl": "-0.91539999",
                "commission": "-0.07819010",
                "commissionAsset": "USDT",
                "time": 1569514978020,
                "maker": False,
            },
            MarketMode.FUTURES,
        )

        assert trade.side == TradeSide.BUY
        assert trade.order_type == "MARKET"
        assert trade.realized_pnl == Decimal("-0.91539999")

    def test_malformed_trades_dropped(self) -> None:
        trades = BinanceNormalizer.normalize_trades(
            [{"symbol": "BTCUSDT"}, {"symbol": "ETHUSDT", "time": 1, "qty": "1", "price": "1"}],
            MarketMode.SPOT,
        )
        assert [t.symbol for t in trades] == ["ETHUSDT"]

    def test_spot_balances_filter_zero(self) -> None:
        balances = BinanceNormalizer.normalize_balances(
            {
                "balances": [
                    {"asset": "BTC", "free": "0.5", "locked": "0"},
                    {"asset": "LTC", "free": "0", "locked": "0"},
                ]
            },
            MarketMode.SPOT,
        )
        assert [b.asset for b in balances] == ["BTC"]

    def test_futures_balances(self) -> None:
        balances = BinanceNormalizer.normalize_balances(
            {"assets": [{"asset": "USDT", "availableBalance": "10", "walletBalance": "12"}]},
            MarketMode.FUTURES,
        )
        assert balances[0].free == Decimal("10")
        assert balances[0].locked == Decimal("12")

    def test_fiat_orders_keep_successful(self) -> None:
        orders = BinanceNormalizer.normalize_fiat_orders(
            [
                {
                    "orderNo": "A1",
                    "fiatCurrency": "BRL",
                    "amount": "1000",
                    "totalFee": "0",
                    "method": "PIX",
                    "status": "Successful",
                    "createTime": 1704067200000,
                },
                {
                    "orderNo": "A2",
                    "fiatCurrency": "BRL",
                    "amount": "5",
                    "status": "Failed",
                    "createTime": 1704067200000,
                },
            ],
            TransferDirection.DEPOSIT,
        )
        assert [o.order_no for o in orders] == ["A1"]
        assert orders[0].direction == TransferDirection.DEPOSIT

    def test_crypto_deposits_status_filter(self) -> None:
        deposits = BinanceNormalizer.normalize_crypto_deposits(
            [
                {"id": "d1", "coin": "USDT", "amount": "5", "status": 1, "insertTime": 1},
                {"id": "d2", "coin": "USDT", "amount": "5", "status": 6, "insertTime": 1},
                {"id": "d3", "coin": "USDT", "amount": "5", "status": 0, "insertTime": 1},
            ]
        )
        assert [d.transfer_id for d in deposits] == ["d1", "d2"]

    def test_crypto_withdrawal_text_time(self) -> None:
        """applyTime may be a text timestamp."""
        withdrawals = BinanceNormalizer.normalize_crypto_withdrawals(
            [
                {
                    "id": "w1",
                    "coin": "USDT",
                    "amount": "10",
                    "transactionFee": "1",
                    "network": "TRX",
                    "status": 6,
                    "applyTime": "2024-01-02 03:04:05",
                },
                {"id": "w2", "coin": "USDT", "amount": "1", "status": 4, "applyTime": 1},
            ]
        )
        assert len(withdrawals) == 1
        assert withdrawals[0].created_at == datetime(2024, 1, 2, 3, 4, 5, tzinfo=UTC)
        assert withdrawals[0].fee == Decimal("1")

    def test_trading_symbols(self) -> None:
        symbols = BinanceNormalizer.normalize_trading_symbols(
            {
                "symbols": [
                    {"symbol": "BTCUSDT", "status": "TRADING"},
                    {"symbol": "OLDUSDT", "status": "BREAK"},
                ]
            }
        )
        assert symbols == ["BTCUSDT"]

    def test_to_decimal_blank(self) -> None:
        assert to_decimal("") == Decimal("0")
        assert to_decimal(None) == Decimal("0")
        assert to_decimal("abc") == Decimal("0")
