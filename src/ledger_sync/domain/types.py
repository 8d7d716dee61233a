"""Core enumerations for the ledger domain.

Values match what is persisted and what the exchange and the HTTP
surface use, so they can be stored and serialized directly.
"""

from __future__ import annotations

from enum import Enum


class MarketMode(str, Enum):
    """Market an exchange account trades on."""

    SPOT = "SPOT"
    FUTURES = "FUTURES"


class TradeSide(str, Enum):
    """Direction of an executed fill."""

    BUY = "BUY"
    SELL = "SELL"

    @classmethod
    def parse(cls, text: str | None) -> TradeSide:
        """Interpret a free-form side value.

        Accepts "BUY"/"SELL", the single letters "B"/"S", and any string
        containing SELL or BUY. Anything unrecognised is a BUY.
        """
        value = (text or "").strip().upper()
        if "SELL" in value or value == "S":
            return cls.SELL
        return cls.BUY


class CashflowType(str, Enum):
    """Fiat or crypto movement direction."""

    DEPOSIT = "DEPOSIT"
    WITHDRAWAL = "WITHDRAWAL"


class TransferDirection(str, Enum):
    """Direction argument for fiat and crypto movement queries."""

    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"

    @property
    def cashflow_type(self) -> CashflowType:
        """Return the matching cashflow type."""
        if self == TransferDirection.DEPOSIT:
            return CashflowType.DEPOSIT
        return CashflowType.WITHDRAWAL


class JobStatus(str, Enum):
    """Sync job lifecycle states.

    State transitions:
    - RUNNING -> RUNNING (progress)
    - RUNNING -> COMPLETED (terminal)
    - RUNNING -> ERROR (terminal)
    """

    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"

    def is_terminal(self) -> bool:
        """Return True if no further progress may be recorded."""
        return self in (JobStatus.COMPLETED, JobStatus.ERROR)


class LotMatching(str, Enum):
    """Order in which open buy lots are consumed by a sell."""

    FIFO = "fifo"  # oldest lot first
    LIFO = "lifo"  # most recently opened lot first
