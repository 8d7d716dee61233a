"""Record models for accounts, trades, cashflows and query windows.

Raw* types are what the exchange client hands back after normalizing a
response. TradeRecord and CashflowRecord are the canonical shapes that
are reconciled and persisted. All models are immutable; use the with_*
helpers to derive updated copies.
"""

from __future__ import annotations

import dataclasses
from datetime import UTC, date, datetime, time, timedelta
from decimal import Decimal
from typing import Any

from pydantic import field_validator
from pydantic.dataclasses import dataclass

from ledger_sync.domain.types import (
    CashflowType,
    MarketMode,
    TradeSide,
    TransferDirection,
)

ZERO = Decimal("0")


def ensure_utc(value: datetime) -> datetime:
    """Return value as an aware UTC datetime (naive values are taken as UTC)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def from_millis(ms: int | str) -> datetime:
    """Convert epoch milliseconds to a UTC datetime."""
    return datetime.fromtimestamp(int(ms) / 1000, tz=UTC)


def to_millis(value: datetime) -> int:
    """Convert a datetime to epoch milliseconds."""
    return int(ensure_utc(value).timestamp() * 1000)


@dataclass(frozen=True)
class Account:
    """One exchange credential set, owned by a user.

    Key material stays encrypted here; only the credential vault turns
    it into usable secrets.
    """

    id: str
    owner_id: str
    name: str
    market: MarketMode
    api_key_enc: str
    api_secret_enc: str


@dataclass(frozen=True)
class TimeWindow:
    """Half-open UTC time range [start, end)."""

    start: datetime
    end: datetime

    @field_validator("start", "end")
    @classmethod
    def validate_utc(cls, v: datetime) -> datetime:
        """Normalize bounds to UTC."""
        return ensure_utc(v)

    def __post_init__(self) -> None:
        if self.end <= self.start:
            raise ValueError("Window end must be after start")

    @classmethod
    def from_dates(cls, start_date: date, end_date: date) -> TimeWindow:
        """Window covering whole UTC days start_date..end_date inclusive."""
        start = datetime.combine(start_date, time.min, tzinfo=UTC)
        end = datetime.combine(end_date + timedelta(days=1), time.min, tzinfo=UTC)
        return cls(start=start, end=end)

    @classmethod
    def last_days(cls, days: int, now: datetime | None = None) -> TimeWindow:
        """Window ending now and reaching back the given number of days."""
        end = ensure_utc(now or datetime.now(UTC))
        return cls(start=end - timedelta(days=days), end=end)

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    @property
    def start_ms(self) -> int:
        return to_millis(self.start)

    @property
    def end_ms_inclusive(self) -> int:
        """Last millisecond inside the window (exchange endTime is inclusive)."""
        return to_millis(self.end) - 1

    def contains(self, moment: datetime) -> bool:
        """Return True if moment falls inside the window."""
        moment = ensure_utc(moment)
        return self.start <= moment < self.end


@dataclass(frozen=True)
class TradeRecord:
    """One executed fill in canonical form.

    realized_pnl is None when the source did not supply a value; the
    PnL engine fills it in for those records.
    per_execution marks records that are exactly one exchange execution
    (exchange trade history); their identity is the execution id. It is
    not persisted.
    """

    account_id: str
    exchange: str
    market: MarketMode
    symbol: str
    side: TradeSide
    quantity: Decimal
    price: Decimal
    fee_value: Decimal
    fee_asset: str
    executed_at: datetime
    fee_pct: Decimal = ZERO
    realized_pnl: Decimal | None = None
    order_id: str | None = None
    trade_id: str | None = None
    order_type: str | None = None
    id: str | None = None
    per_execution: bool = False

    @field_validator("executed_at")
    @classmethod
    def validate_utc(cls, v: datetime) -> datetime:
        """Normalize execution time to UTC."""
        return ensure_utc(v)

    @field_validator("order_id", "trade_id", "order_type")
    @classmethod
    def empty_as_none(cls, v: str | None) -> str | None:
        """Treat blank identifiers as absent."""
        if v is None:
            return None
        v = v.strip()
        return v or None

    @property
    def notional(self) -> Decimal:
        return self.quantity * self.price

    def with_realized_pnl(self, pnl: Decimal) -> TradeRecord:
        """Return a copy carrying the given realized PnL."""
        return dataclasses.replace(self, realized_pnl=pnl)

    def with_id(self, record_id: str) -> TradeRecord:
        """Return a copy bound to a stored record id."""
        return dataclasses.replace(self, id=record_id)

    def persisted_fields(self) -> dict[str, Any]:
        """Fields written to storage on insert or update."""
        return {
            "account_id": self.account_id,
            "exchange": self.exchange,
            "market": self.market.value,
            "symbol": self.symbol,
            "side": self.side.value,
            "quantity": self.quantity,
            "price": self.price,
            "fee_value": self.fee_value,
            "fee_asset": self.fee_asset,
            "fee_pct": self.fee_pct,
            "realized_pnl": self.realized_pnl if self.realized_pnl is not None else ZERO,
            "order_id": self.order_id,
            "trade_id": self.trade_id,
            "order_type": self.order_type,
            "executed_at": self.executed_at,
        }


@dataclass(frozen=True)
class CashflowRecord:
    """One fiat or crypto deposit/withdrawal.

    amount is signed: positive for deposits, negative (net of fee) for
    withdrawals. external_ref holds the exchange order number.
    """

    account_id: str
    type: CashflowType
    asset: str
    amount: Decimal
    at: datetime
    external_ref: str
    note: str = ""
    id: str | None = None

    @field_validator("at")
    @classmethod
    def validate_utc(cls, v: datetime) -> datetime:
        """Normalize timestamp to UTC."""
        return ensure_utc(v)

    @classmethod
    def build(
        cls,
        account_id: str,
        cashflow_type: CashflowType,
        asset: str,
        gross_amount: Decimal,
        fee: Decimal,
        at: datetime,
        external_ref: str,
        method: str = "",
        status: str = "",
    ) -> CashflowRecord:
        """Create a record applying the sign and fee convention.

        Args:
            account_id: Owning account
            cashflow_type: Deposit or withdrawal
            asset: Asset code
            gross_amount: Unsigned amount as reported
            fee: Fee charged (only applied to withdrawals)
            at: Movement time
            external_ref: Exchange order number
            method: Payment method or network, for the note
            status: Status text, for the note

        Returns:
            CashflowRecord with signed amount and note
        """
        if cashflow_type == CashflowType.DEPOSIT:
            amount = gross_amount
        else:
            amount = -gross_amount - fee
        return cls(
            account_id=account_id,
            type=cashflow_type,
            asset=asset,
            amount=amount,
            at=at,
            external_ref=external_ref,
            note=cashflow_note(external_ref, method, status),
        )

    def with_id(self, record_id: str) -> CashflowRecord:
        """Return a copy bound to a stored record id."""
        return dataclasses.replace(self, id=record_id)

    def persisted_fields(self) -> dict[str, Any]:
        """Fields written to storage on insert or update."""
        return {
            "account_id": self.account_id,
            "type": self.type.value,
            "asset": self.asset,
            "amount": self.amount,
            "at": self.at,
            "note": self.note,
            "external_ref": self.external_ref,
        }


def cashflow_note(external_ref: str, method: str = "", status: str = "") -> str:
    """Format the free-text note that embeds the order number."""
    return f"{note_marker(external_ref)} {method} - {status}"


def note_marker(external_ref: str) -> str:
    """Delimited order-number marker used for legacy note matching."""
    return f"OrderNo: {external_ref} |"


# Raw exchange shapes


@dataclass(frozen=True)
class RawTrade:
    """A fill as returned by the exchange trade history."""

    symbol: str
    side: TradeSide
    quantity: Decimal
    price: Decimal
    commission: Decimal
    commission_asset: str
    time: datetime
    order_id: str | None = None
    trade_id: str | None = None
    realized_pnl: Decimal | None = None
    order_type: str | None = None

    def to_record(
        self,
        account_id: str,
        market: MarketMode,
        exchange: str = "binance",
    ) -> TradeRecord:
        """Convert to a canonical trade record for an account."""
        notional = self.quantity * self.price
        fee_pct = (self.commission / notional * 100) if notional > 0 else ZERO
        return TradeRecord(
            account_id=account_id,
            exchange=exchange,
            market=market,
            symbol=self.symbol,
            side=self.side,
            quantity=self.quantity,
            price=self.price,
            fee_value=self.commission,
            fee_asset=self.commission_asset,
            fee_pct=fee_pct,
            realized_pnl=self.realized_pnl,
            order_id=self.order_id,
            trade_id=self.trade_id,
            order_type=self.order_type,
            executed_at=self.time,
            per_execution=True,
        )


@dataclass(frozen=True)
class RawBalance:
    """One asset balance line."""

    asset: str
    free: Decimal
    locked: Decimal


@dataclass(frozen=True)
class RawFiatOrder:
    """A fiat deposit or withdrawal order."""

    order_no: str
    currency: str
    amount: Decimal
    fee: Decimal
    method: str
    status: str
    created_at: datetime
    direction: TransferDirection

    def to_record(self, account_id: str) -> CashflowRecord:
        """Convert to a canonical cashflow record."""
        return CashflowRecord.build(
            account_id=account_id,
            cashflow_type=self.direction.cashflow_type,
            asset=self.currency,
            gross_amount=self.amount,
            fee=self.fee,
            at=self.created_at,
            external_ref=self.order_no,
            method=self.method,
            status=self.status,
        )


@dataclass(frozen=True)
class RawTransfer:
    """An on-chain crypto deposit or withdrawal."""

    transfer_id: str
    coin: str
    amount: Decimal
    fee: Decimal
    network: str
    status: int
    created_at: datetime
    direction: TransferDirection

    def to_record(self, account_id: str) -> CashflowRecord:
        """Convert to a canonical cashflow record."""
        return CashflowRecord.build(
            account_id=account_id,
            cashflow_type=self.direction.cashflow_type,
            asset=self.coin,
            gross_amount=self.amount,
            fee=self.fee,
            at=self.created_at,
            external_ref=self.transfer_id,
            method=f"{self.network} Network",
            status="Successful",
        )
