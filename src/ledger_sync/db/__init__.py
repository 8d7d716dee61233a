"""Database module.

Provides SQLAlchemy persistence for accounts, trades, cashflows and
sync jobs.
"""

from ledger_sync.db.models import AccountRow, Base, CashflowRow, SyncJobRow, TradeRow
from ledger_sync.db.repository import LedgerRepository

__all__ = [
    "AccountRow",
    "Base",
    "CashflowRow",
    "LedgerRepository",
    "SyncJobRow",
    "TradeRow",
]
