"""Binance data normalizer.

Converts Binance JSON payloads to raw domain shapes.

Binance uses:
- Decimal values encoded as strings
- Millisecond epoch timestamps
- isBuyer/isMaker flags on spot fills instead of side/type
"""

from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation
from typing import Any

from ledger_sync.csv_import.parsing import parse_timestamp
from ledger_sync.domain.records import (
    RawBalance,
    RawFiatOrder,
    RawTrade,
    RawTransfer,
    from_millis,
)
from ledger_sync.domain.types import MarketMode, TradeSide, TransferDirection

logger = logging.getLogger(__name__)

FIAT_SUCCESS_STATUSES = {"successful", "success"}
DEPOSIT_KEEP_STATUSES = {1, 6}  # 1 = success, 6 = credited
WITHDRAWAL_KEEP_STATUSES = {6}  # 6 = completed


def to_decimal(value: Any) -> Decimal:
    """Convert a JSON value to Decimal, treating blanks as zero."""
    if value is None or value == "":
        return Decimal("0")
    try:
        return Decimal(str(value))
    except InvalidOperation:
        logger.warning(f"Non-numeric value from exchange: {value!r}")
        return Decimal("0")


def _optional_id(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


class BinanceNormalizer:
    """Converts Binance payloads to RawTrade/RawBalance/RawFiatOrder/RawTransfer."""

    @staticmethod
    def normalize_side(data: dict[str, Any]) -> TradeSide:
        """Determine fill side.

        Futures fills carry "side"; spot fills carry isBuyer.
        """
        side = data.get("side")
        if side:
            return TradeSide.parse(str(side))
        return TradeSide.BUY if data.get("isBuyer") else TradeSide.SELL

    @staticmethod
    def normalize_order_type(data: dict[str, Any]) -> str | None:
        """Order-type tag: maker fills are LIMIT, taker fills MARKET."""
        if "type" in data and data["type"]:
            return str(data["type"])
        if "isMaker" in data:
            return "LIMIT" if data["isMaker"] else "MARKET"
        if "maker" in data:
            return "LIMIT" if data["maker"] else "MARKET"
        return None

    @classmethod
    def normalize_trade(cls, data: dict[str, Any], market: MarketMode) -> RawTrade:
        """Convert one fill payload.

        Args:
            data: Fill object from myTrades or userTrades
            market: Market the fill came from

        Returns:
            RawTrade; realized_pnl is set only for futures fills
        """
        quantity = data.get("qty", data.get("quantity"))
        realized = None
        if market == MarketMode.FUTURES and data.get("realizedPnl") is not None:
            realized = to_decimal(data["realizedPnl"])

        return RawTrade(
            symbol=str(data["symbol"]),
            side=cls.normalize_side(data),
            quantity=to_decimal(quantity),
            price=to_decimal(data.get("price")),
            commission=to_decimal(data.get("commission")),
            commission_asset=str(data.get("commissionAsset") or ""),
            time=from_millis(data["time"]),
            order_id=_optional_id(data.get("orderId")),
            trade_id=_optional_id(data.get("id")),
            realized_pnl=realized,
            order_type=cls.normalize_order_type(data),
        )

    @classmethod
    def normalize_trades(
        cls, payload: list[dict[str, Any]], market: MarketMode
    ) -> list[RawTrade]:
        """Convert a list of fills, dropping entries that cannot be parsed."""
        trades: list[RawTrade] = []
        for item in payload:
            try:
                trades.append(cls.normalize_trade(item, market))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Dropping malformed fill {item!r}: {e}")
        return trades

    @staticmethod
    def normalize_balances(payload: dict[str, Any], market: MarketMode) -> list[RawBalance]:
        """Convert an account payload to balances.

        Spot balances are filtered to non-zero lines. Futures assets map
        availableBalance to free and walletBalance to locked.
        """
        if market == MarketMode.FUTURES:
            return [
                RawBalance(
                    asset=str(item["asset"]),
                    free=to_decimal(item.get("availableBalance")),
                    locked=to_decimal(item.get("walletBalance")),
                )
                for item in payload.get("assets") or []
            ]

        balances: list[RawBalance] = []
        for item in payload.get("balances") or []:
            free = to_decimal(item.get("free"))
            locked = to_decimal(item.get("locked"))
            if free > 0 or locked > 0:
                balances.append(RawBalance(asset=str(item["asset"]), free=free, locked=locked))
        return balances

    @staticmethod
    def normalize_fiat_orders(
        payload: list[dict[str, Any]], direction: TransferDirection
    ) -> list[RawFiatOrder]:
        """Convert fiat orders, keeping only successful ones."""
        orders: list[RawFiatOrder] = []
        for item in payload:
            status = str(item.get("status") or "")
            if status.lower() not in FIAT_SUCCESS_STATUSES:
                continue
            orders.append(
                RawFiatOrder(
                    order_no=str(item["orderNo"]),
                    currency=str(item.get("fiatCurrency") or ""),
                    amount=to_decimal(item.get("amount", item.get("indicatedAmount"))),
                    fee=to_decimal(item.get("totalFee")),
                    method=str(item.get("method") or ""),
                    status=status,
                    created_at=from_millis(item["createTime"]),
                    direction=direction,
                )
            )
        return orders

    @staticmethod
    def normalize_crypto_deposits(payload: list[dict[str, Any]]) -> list[RawTransfer]:
        """Convert crypto deposits with status success or credited."""
        return [
            RawTransfer(
                transfer_id=str(item["id"]),
                coin=str(item.get("coin") or ""),
                amount=to_decimal(item.get("amount")),
                fee=Decimal("0"),
                network=str(item.get("network") or ""),
                status=int(item.get("status", 0)),
                created_at=from_millis(item["insertTime"]),
                direction=TransferDirection.DEPOSIT,
            )
            for item in payload
            if int(item.get("status", -1)) in DEPOSIT_KEEP_STATUSES
        ]

    @staticmethod
    def normalize_crypto_withdrawals(payload: list[dict[str, Any]]) -> list[RawTransfer]:
        """Convert completed crypto withdrawals."""
        transfers: list[RawTransfer] = []
        for item in payload:
            if int(item.get("status", -1)) not in WITHDRAWAL_KEEP_STATUSES:
                continue
            apply_time = item.get("applyTime")
            # applyTime is epoch ms on some API versions and "YYYY-MM-DD HH:MM:SS" on others
            if isinstance(apply_time, str) and not apply_time.isdigit():
                created_at = parse_timestamp(apply_time)
                if created_at is None:
                    logger.warning(f"Dropping withdrawal {item.get('id')} with bad time")
                    continue
            else:
                created_at = from_millis(apply_time)
            transfers.append(
                RawTransfer(
                    transfer_id=str(item["id"]),
                    coin=str(item.get("coin") or ""),
                    amount=to_decimal(item.get("amount")),
                    fee=to_decimal(item.get("transactionFee")),
                    network=str(item.get("network") or ""),
                    status=int(item["status"]),
                    created_at=created_at,
                    direction=TransferDirection.WITHDRAWAL,
                )
            )
        return transfers

    @staticmethod
    def normalize_trading_symbols(payload: dict[str, Any]) -> list[str]:
        """Extract symbols with status TRADING from exchangeInfo."""
        return [
            str(item["symbol"])
            for item in payload.get("symbols") or []
            if item.get("status") == "TRADING" and item.get("symbol")
        ]
