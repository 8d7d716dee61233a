"""Domain models for ledger synchronization.

This package contains the exchange-agnostic record types, enums,
per-unit outcomes and the error hierarchy. Money values are Decimal.
"""

from ledger_sync.domain.errors import (
    AccountNotFoundError,
    ConfigurationError,
    CredentialError,
    CsvFormatError,
    ExchangeError,
    JobAccessDenied,
    JobCancelled,
    JobError,
    JobNotFoundError,
    JobStateError,
    LedgerSyncError,
    UnknownInstrumentError,
)
from ledger_sync.domain.jobs import JobState
from ledger_sync.domain.outcomes import Outcome, OutcomeKind, SyncCounts
from ledger_sync.domain.records import (
    Account,
    CashflowRecord,
    RawBalance,
    RawFiatOrder,
    RawTrade,
    RawTransfer,
    TimeWindow,
    TradeRecord,
)
from ledger_sync.domain.types import (
    CashflowType,
    JobStatus,
    LotMatching,
    MarketMode,
    TradeSide,
    TransferDirection,
)

__all__ = [
    # Types
    "CashflowType",
    "JobStatus",
    "LotMatching",
    "MarketMode",
    "TradeSide",
    "TransferDirection",
    # Records
    "Account",
    "CashflowRecord",
    "RawBalance",
    "RawFiatOrder",
    "RawTrade",
    "RawTransfer",
    "TimeWindow",
    "TradeRecord",
    # Jobs
    "JobState",
    # Outcomes
    "Outcome",
    "OutcomeKind",
    "SyncCounts",
    # Errors
    "AccountNotFoundError",
    "ConfigurationError",
    "CredentialError",
    "CsvFormatError",
    "ExchangeError",
    "JobAccessDenied",
    "JobCancelled",
    "JobError",
    "JobNotFoundError",
    "JobStateError",
    "LedgerSyncError",
    "UnknownInstrumentError",
]
