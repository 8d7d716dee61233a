"""CSV normalizers for trade and cashflow exports.

Each dialect maps its columns onto one canonical record through an
explicit alias table. Unknown columns are ignored. Every data line
yields an Outcome, in file order, so callers can count skips and
resume from a row offset.
"""

from __future__ import annotations

import hashlib
import logging
import re
from decimal import Decimal

from ledger_sync.csv_import.parsing import (
    CsvLine,
    first_value,
    parse_number,
    parse_timestamp,
    read_table,
    split_unit,
)
from ledger_sync.domain.errors import CsvFormatError
from ledger_sync.domain.outcomes import Outcome
from ledger_sync.domain.records import CashflowRecord, TradeRecord
from ledger_sync.domain.types import CashflowType, MarketMode, TradeSide

logger = logging.getLogger(__name__)

# Trade dialect aliases, in priority order
TRADE_ALIASES: dict[str, tuple[str, ...]] = {
    "timestamp": ("Date(UTC)", "Date", "Time"),
    "symbol": ("Pair", "Symbol"),
    "side": ("Side",),
    "price": ("Average Price", "AvgTrading Price", "Order Price", "Price"),
    "quantity": ("Executed", "Filled", "Order Amount", "Quantity"),
    "order_amount": ("Order Amount", "Quantity"),
    "fee": ("Fee",),
    "fee_asset": ("Fee Coin", "Fee Asset"),
    "order_id": ("Order ID", "OrderId", "OrderNo"),
    "trade_id": ("Trade ID", "TradeId"),
    "market": ("Market",),
    "exchange": ("Exchange",),
    "order_type": ("Order Type", "OrderType", "Type"),
    "realized_pnl": ("Realized PnL", "RealizedPnl", "PnL"),
    "status": ("Status",),
}

FILLED_STATUSES = {"FILLED", "FULLY_FILLED"}
QUOTE_ASSETS = ("BRL", "USDT", "BUSD", "USDC", "BTC")

# Cashflow dialect (Portuguese export header)
CASHFLOW_ALIASES: dict[str, tuple[str, ...]] = {
    "timestamp": ("Data (UTC)", "Data", "Date(UTC)", "Date"),
    "type": ("Tipo", "Type"),
    "asset": ("Moeda", "Currency", "Coin"),
    "amount": ("Valor", "Amount"),
    "fee": ("Taxa", "Fee"),
    "method": ("Método", "Método de Pagamento", "Method"),
    "status": ("Status",),
    "order_no": ("Número do Pedido", "OrderNo", "Order No", "Order ID"),
}

DEPOSIT_LABELS = {"DEPÓSITO", "DEPOSITO", "DEPOSIT"}
_CASHFLOW_REJECTED = re.compile(r"expir|fail|falh|cancel", re.IGNORECASE)


def _require_columns(
    header: list[str],
    lines: list[CsvLine],
    aliases: dict[str, tuple[str, ...]],
    required: tuple[str, ...],
) -> None:
    if not header:
        raise CsvFormatError("CSV file is empty")
    for field_name in required:
        if not any(alias in header for alias in aliases[field_name]):
            raise CsvFormatError(
                f"CSV header has no {field_name} column",
                context={"expected": list(aliases[field_name]), "header": header},
            )
    if not lines:
        raise CsvFormatError("CSV file has no data rows")


def infer_fee_asset(symbol: str, side: TradeSide) -> str:
    """Guess the fee asset from the pair when the export omits it.

    Sells usually pay fees in the quote asset, buys in the base asset.
    """
    for quote in QUOTE_ASSETS:
        if symbol.endswith(quote) and len(symbol) > len(quote):
            return quote if side == TradeSide.SELL else symbol[: -len(quote)]
    match = re.match(r"^([A-Z]+)", symbol)
    return match.group(1) if match else "USDT"


def _parse_market(value: str, default: MarketMode) -> MarketMode:
    upper = value.strip().upper()
    if not upper:
        return default
    if "FUT" in upper or upper.endswith("-M"):
        return MarketMode.FUTURES
    if upper == "SPOT":
        return MarketMode.SPOT
    return default


class TradeCsvNormalizer:
    """Parses trade-history exports into TradeRecords for one account."""

    def __init__(self, account_id: str, default_market: MarketMode = MarketMode.SPOT) -> None:
        """Initialize the normalizer.

        Args:
            account_id: Account the rows belong to
            default_market: Market used when the file has no Market column
        """
        self._account_id = account_id
        self._default_market = default_market

    def parse(self, text: str) -> list[Outcome[TradeRecord]]:
        """Parse a trade CSV.

        Args:
            text: Full file contents

        Returns:
            One Outcome per data line, in file order

        Raises:
            CsvFormatError: If the file is empty or lacks required columns
        """
        header, lines = read_table(text)
        _require_columns(header, lines, TRADE_ALIASES, ("timestamp", "symbol"))

        outcomes: list[Outcome[TradeRecord]] = []
        for line in lines:
            unit = f"row {line.offset + 1}"
            if line.fields is None:
                outcomes.append(Outcome.skipped(line.reason, unit))
                continue
            outcomes.append(self.parse_row(line.fields, unit))
        return outcomes

    def parse_row(self, fields: dict[str, str], unit: str = "") -> Outcome[TradeRecord]:
        """Convert one row's fields to a TradeRecord outcome."""

        def get(name: str) -> str:
            return first_value(fields, TRADE_ALIASES[name])

        status = get("status").strip().upper()
        if status and status not in FILLED_STATUSES:
            return Outcome.skipped(f"status {status}", unit)

        symbol = get("symbol").strip().upper()
        date_text = get("timestamp")
        if not symbol or not date_text:
            return Outcome.skipped("missing symbol or timestamp", unit)

        executed_at = parse_timestamp(date_text)
        if executed_at is None:
            return Outcome.skipped(f"unparseable timestamp {date_text!r}", unit)

        side = TradeSide.parse(get("side"))
        price = parse_number(get("price") or "0")

        qty_text, _ = split_unit(get("quantity"))
        quantity = parse_number(qty_text)
        if quantity == 0:
            fallback_text, _ = split_unit(get("order_amount"))
            quantity = parse_number(fallback_text)

        fee_text, fee_unit = split_unit(get("fee"))
        fee_value = parse_number(fee_text)
        fee_asset = get("fee_asset").strip().upper() or fee_unit or infer_fee_asset(symbol, side)

        notional = price * quantity
        fee_pct = fee_value / notional * 100 if price > 0 and quantity > 0 else Decimal("0")

        # Spot exports fill the PnL column with zeros; only non-zero values count as supplied
        realized_pnl = parse_number(get("realized_pnl")) or None

        record = TradeRecord(
            account_id=self._account_id,
            exchange=get("exchange").strip() or "binance",
            market=_parse_market(get("market"), self._default_market),
            symbol=symbol,
            side=side,
            quantity=quantity,
            price=price,
            fee_value=fee_value,
            fee_asset=fee_asset,
            fee_pct=fee_pct,
            realized_pnl=realized_pnl,
            order_id=get("order_id") or None,
            trade_id=get("trade_id") or None,
            order_type=get("order_type") or None,
            executed_at=executed_at,
        )
        return Outcome.ok(record, unit)


class CashflowCsvNormalizer:
    """Parses fiat deposit/withdrawal exports into CashflowRecords."""

    def __init__(self, account_id: str) -> None:
        self._account_id = account_id

    def parse(self, text: str) -> list[Outcome[CashflowRecord]]:
        """Parse a cashflow CSV.

        Raises:
            CsvFormatError: If the file is empty or lacks required columns
        """
        header, lines = read_table(text)
        _require_columns(header, lines, CASHFLOW_ALIASES, ("timestamp", "amount"))

        outcomes: list[Outcome[CashflowRecord]] = []
        for line in lines:
            unit = f"row {line.offset + 1}"
            if line.fields is None:
                outcomes.append(Outcome.skipped(line.reason, unit))
                continue
            outcomes.append(self.parse_row(line.fields, unit))
        return outcomes

    def parse_row(self, fields: dict[str, str], unit: str = "") -> Outcome[CashflowRecord]:
        """Convert one row's fields to a CashflowRecord outcome."""

        def get(name: str) -> str:
            return first_value(fields, CASHFLOW_ALIASES[name]).strip()

        status = get("status")
        if status and _CASHFLOW_REJECTED.search(status):
            return Outcome.skipped(f"status {status}", unit)

        date_text = get("timestamp")
        at = parse_timestamp(date_text, allow_date_only=True)
        if at is None:
            return Outcome.skipped(f"unparseable timestamp {date_text!r}", unit)

        cashflow_type = (
            CashflowType.DEPOSIT
            if get("type").upper() in DEPOSIT_LABELS
            else CashflowType.WITHDRAWAL
        )
        asset = get("asset").upper() or "BRL"
        gross = abs(parse_number(get("amount")))
        fee = abs(parse_number(get("fee")))
        method = get("method")

        order_no = get("order_no")
        if not order_no:
            order_no = self.fingerprint(cashflow_type, asset, gross, at.isoformat())

        record = CashflowRecord.build(
            account_id=self._account_id,
            cashflow_type=cashflow_type,
            asset=asset,
            gross_amount=gross,
            fee=fee,
            at=at,
            external_ref=order_no,
            method=method,
            status=status,
        )
        return Outcome.ok(record, unit)

    def fingerprint(
        self, cashflow_type: CashflowType, asset: str, amount: Decimal, at_iso: str
    ) -> str:
        """Deterministic reference for rows without an order number."""
        material = f"{self._account_id}|{cashflow_type.value}|{asset}|{amount.normalize()}|{at_iso}"
        return "csv_" + hashlib.sha256(material.encode("utf-8")).hexdigest()[:16]

