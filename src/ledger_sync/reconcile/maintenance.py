"""Ledger maintenance jobs: PnL recalculation and duplicate cleanup."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from collections.abc import Iterable
from datetime import datetime
from typing import TYPE_CHECKING, Any

from ledger_sync.domain.outcomes import SyncCounts
from ledger_sync.domain.records import ZERO, TradeRecord
from ledger_sync.domain.types import LotMatching, MarketMode, TradeSide
from ledger_sync.reconcile.identity import Identity, composite_key, quantize8
from ledger_sync.reconcile.orchestrator import RunProgress
from ledger_sync.reconcile.pnl import PnLEngine

if TYPE_CHECKING:
    from ledger_sync.db.repository import LedgerRepository
    from ledger_sync.jobs.tracker import JobTracker

logger = logging.getLogger(__name__)


def dedup_key(record: TradeRecord) -> Identity | None:
    """Grouping key for duplicate cleanup.

    Trades are grouped by execution id; trades without any external id
    by composite fingerprint. Trades with only an order id are left alone.
    """
    if record.trade_id:
        return ("trade", record.account_id, record.trade_id)
    if not record.order_id:
        return composite_key(
            record.account_id,
            record.executed_at,
            record.symbol,
            record.side,
            record.price,
            record.quantity,
        )
    return None


def find_duplicates(rows: Iterable[tuple[TradeRecord, datetime]]) -> list[str]:
    """Ids to delete so each group keeps only its most recently created trade."""
    groups: dict[Identity, list[tuple[TradeRecord, datetime]]] = defaultdict(list)
    for record, created_at in rows:
        key = dedup_key(record)
        if key is not None:
            groups[key].append((record, created_at))

    doomed: list[str] = []
    for members in groups.values():
        if len(members) < 2:
            continue
        members.sort(key=lambda item: item[1])
        doomed.extend(record.id for record, _ in members[:-1] if record.id)
    return doomed


class LedgerMaintenance:
    """Owner-wide repair jobs over stored trades."""

    def __init__(self, repository: LedgerRepository, tracker: JobTracker) -> None:
        self._repository = repository
        self._tracker = tracker

    async def recalculate_pnl(
        self,
        job_id: str,
        owner_id: str,
        account_ids: Iterable[str] | None = None,
    ) -> SyncCounts:
        """Replay each spot account's full history through a fresh FIFO engine.

        Only sell records whose stored PnL differs are written.
        """
        accounts = [
            a
            for a in self._repository.list_accounts(owner_id, account_ids)
            if a.market == MarketMode.SPOT
        ]
        progress = RunProgress(self._tracker, job_id, total=len(accounts))
        progress.advance(0, message=f"Recalculating PnL for {len(accounts)} accounts")

        counts = SyncCounts()
        for account in accounts:
            progress.check()
            engine = PnLEngine(LotMatching.FIFO)
            for trade in self._repository.list_trades(account.id):
                computed = engine.apply_fill(
                    trade.symbol, trade.side, trade.quantity, trade.price, trade.executed_at
                )
                if trade.side != TradeSide.SELL:
                    continue
                if quantize8(computed) == quantize8(trade.realized_pnl or ZERO):
                    counts.unchanged += 1
                    continue
                if self._repository.update_trade(trade.id or "", {"realized_pnl": computed}):
                    counts.updated += 1
                else:
                    counts.skipped += 1
            progress.advance(message=f"{account.name}: PnL recalculated")
            await asyncio.sleep(0)

        logger.info(f"PnL recalculated for owner {owner_id}: {counts.updated} trades changed")
        return counts

    async def deduplicate_trades(
        self,
        job_id: str,
        owner_id: str,
        account_ids: Iterable[str] | None = None,
        symbol: str | None = None,
    ) -> dict[str, Any]:
        """Delete duplicate trades, keeping the newest of each group.

        Returns:
            {"deleted": n, "accounts": {account_id: n}}
        """
        accounts = self._repository.list_accounts(owner_id, account_ids)
        progress = RunProgress(self._tracker, job_id, total=len(accounts))
        progress.advance(0, message=f"Deduplicating trades for {len(accounts)} accounts")

        per_account: dict[str, int] = {}
        for account in accounts:
            progress.check()
            doomed = find_duplicates(self._repository.list_trades_with_created(account.id, symbol))
            per_account[account.id] = self._repository.delete_trades(doomed) if doomed else 0
            progress.advance(message=f"{account.name}: {per_account[account.id]} duplicates removed")
            await asyncio.sleep(0)

        deleted = sum(per_account.values())
        logger.info(f"Deleted {deleted} duplicate trades for owner {owner_id}")
        return {"deleted": deleted, "accounts": per_account}
