"""Reconciliation pipeline.

Identity resolution, realized PnL, the run orchestrator and
maintenance jobs.
"""

from ledger_sync.reconcile.identity import IdentityIndex, Resolver, WritePlan, trade_identity
from ledger_sync.reconcile.maintenance import LedgerMaintenance
from ledger_sync.reconcile.orchestrator import ReconciliationOrchestrator, RunProgress
from ledger_sync.reconcile.pnl import PnLEngine, PositionLot

__all__ = [
    "IdentityIndex",
    "LedgerMaintenance",
    "PnLEngine",
    "PositionLot",
    "ReconciliationOrchestrator",
    "Resolver",
    "RunProgress",
    "WritePlan",
    "trade_identity",
]
