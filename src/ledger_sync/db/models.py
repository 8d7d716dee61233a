"""SQLAlchemy models for ledger persistence.

Stores accounts, trades, cashflows and sync jobs.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import JSON, DateTime, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class AccountRow(Base):
    """Persisted exchange account."""

    __tablename__ = "accounts"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    owner_id: Mapped[str] = mapped_column(String(64), index=True)
    name: Mapped[str] = mapped_column(String(128))
    market: Mapped[str] = mapped_column(String(16))  # "SPOT" or "FUTURES"
    api_key_enc: Mapped[str] = mapped_column(Text)
    api_secret_enc: Mapped[str] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    def __repr__(self) -> str:
        return f"AccountRow(id={self.id!r}, owner={self.owner_id!r}, market={self.market})"


class TradeRow(Base):
    """Persisted trade fill."""

    __tablename__ = "trades"
    __table_args__ = (
        Index("ix_trades_account_order", "account_id", "order_id"),
        Index("ix_trades_account_trade", "account_id", "trade_id"),
        Index("ix_trades_account_executed", "account_id", "executed_at"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    account_id: Mapped[str] = mapped_column(String(64), index=True)
    exchange: Mapped[str] = mapped_column(String(32))
    market: Mapped[str] = mapped_column(String(16))
    symbol: Mapped[str] = mapped_column(String(32), index=True)
    side: Mapped[str] = mapped_column(String(8))  # "BUY" or "SELL"
    quantity: Mapped[Decimal] = mapped_column(Numeric(28, 10))
    price: Mapped[Decimal] = mapped_column(Numeric(28, 10))
    fee_value: Mapped[Decimal] = mapped_column(Numeric(28, 10))
    fee_asset: Mapped[str] = mapped_column(String(16))
    fee_pct: Mapped[Decimal] = mapped_column(Numeric(28, 10))
    realized_pnl: Mapped[Decimal] = mapped_column(Numeric(28, 10))
    order_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    trade_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    order_type: Mapped[str | None] = mapped_column(String(32), nullable=True)
    executed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    def __repr__(self) -> str:
        return (
            f"TradeRow(id={self.id!r}, account={self.account_id!r}, "
            f"{self.side} {self.quantity} {self.symbol} @ {self.price})"
        )


class CashflowRow(Base):
    """Persisted deposit or withdrawal."""

    __tablename__ = "cashflows"
    __table_args__ = (
        Index("ix_cashflows_account_ref", "account_id", "external_ref"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    account_id: Mapped[str] = mapped_column(String(64), index=True)
    type: Mapped[str] = mapped_column(String(16))  # "DEPOSIT" or "WITHDRAWAL"
    asset: Mapped[str] = mapped_column(String(16))
    amount: Mapped[Decimal] = mapped_column(Numeric(28, 10))
    at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    note: Mapped[str] = mapped_column(Text, default="")
    # Empty for legacy rows that only carry the order number in the note
    external_ref: Mapped[str] = mapped_column(String(128), default="")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    def __repr__(self) -> str:
        return (
            f"CashflowRow(id={self.id!r}, {self.type} {self.amount} {self.asset}, "
            f"ref={self.external_ref!r})"
        )


class SyncJobRow(Base):
    """Persisted progress of one ingestion run."""

    __tablename__ = "sync_jobs"

    id: Mapped[str] = mapped_column(String(96), primary_key=True)
    owner_id: Mapped[str] = mapped_column(String(64), index=True)
    kind: Mapped[str] = mapped_column(String(32))
    status: Mapped[str] = mapped_column(String(16), index=True)
    current_step: Mapped[int] = mapped_column(Integer, default=0)
    total_steps: Mapped[int] = mapped_column(Integer, default=0)
    message: Mapped[str] = mapped_column(Text, default="")
    result: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)

    def __repr__(self) -> str:
        return (
            f"SyncJobRow(id={self.id!r}, status={self.status!r}, "
            f"{self.current_step}/{self.total_steps})"
        )
