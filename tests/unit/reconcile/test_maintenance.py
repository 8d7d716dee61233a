"""Tests for ledger maintenance jobs."""

from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest

from ledger_sync.db.repository import LedgerRepository
from ledger_sync.domain.errors import JobCancelled
from ledger_sync.domain.records import Account
from ledger_sync.domain.types import MarketMode, TradeSide
from ledger_sync.jobs.tracker import JobTracker
from ledger_sync.reconcile.maintenance import LedgerMaintenance, dedup_key, find_duplicates

T0 = datetime(2024, 1, 1, 10, tzinfo=UTC)


@pytest.fixture
def maintenance(repo: LedgerRepository, tracker: JobTracker) -> LedgerMaintenance:
    return LedgerMaintenance(repo, tracker)


class TestFindDuplicates:
    """Tests for duplicate grouping."""

    def test_keeps_newest(self, make_trade) -> None:
        old = make_trade(trade_id="T-1", id="a")
        new = make_trade(trade_id="T-1", id="b")

        doomed = find_duplicates([(new, T0 + timedelta(seconds=5)), (old, T0)])

        assert doomed == ["a"]

    def test_order_only_trades_left_alone(self, make_trade) -> None:
        """Trades carrying only an order id are never grouped."""
        a = make_trade(order_id="O-1", id="a")
        b = make_trade(order_id="O-1", id="b")

        assert dedup_key(a) is None
        assert find_duplicates([(a, T0), (b, T0)]) == []

    def test_composite_groups(self, make_trade) -> None:
        a = make_trade(id="a")
        b = make_trade(id="b", executed_at=T0 + timedelta(milliseconds=300))
        c = make_trade(id="c", side=TradeSide.SELL)

        doomed = find_duplicates([(a, T0), (b, T0 + timedelta(minutes=1)), (c, T0)])

        assert doomed == ["a"]


class TestRecalculatePnl:
    """Tests for LedgerMaintenance.recalculate_pnl."""

    @pytest.mark.asyncio
    async def test_rewrites_stale_sells(
        self,
        maintenance: LedgerMaintenance,
        tracker: JobTracker,
        repo: LedgerRepository,
        account: Account,
        make_trade,
    ) -> None:
        repo.insert_trade(make_trade(executed_at=T0))
        repo.insert_trade(
            make_trade(
                side=TradeSide.SELL,
                price=Decimal("150"),
                realized_pnl=Decimal("7"),
                executed_at=T0 + timedelta(hours=1),
            )
        )
        job = tracker.create("alice", "recalculate_pnl")

        counts = await maintenance.recalculate_pnl(job.job_id, "alice")

        assert counts.updated == 1
        sell = repo.list_trades(account.id)[1]
        assert sell.realized_pnl == Decimal("50")

    @pytest.mark.asyncio
    async def test_second_run_unchanged(
        self,
        maintenance: LedgerMaintenance,
        tracker: JobTracker,
        repo: LedgerRepository,
        account: Account,
        make_trade,
    ) -> None:
        repo.insert_trade(make_trade(executed_at=T0))
        repo.insert_trade(
            make_trade(side=TradeSide.SELL, price=Decimal("90"), executed_at=T0 + timedelta(hours=1))
        )
        await maintenance.recalculate_pnl(tracker.create("alice", "recalculate_pnl").job_id, "alice")

        counts = await maintenance.recalculate_pnl(
            tracker.create("alice", "recalculate_pnl").job_id, "alice"
        )

        assert counts.updated == 0
        assert counts.unchanged == 1

    @pytest.mark.asyncio
    async def test_futures_accounts_skipped(
        self,
        maintenance: LedgerMaintenance,
        tracker: JobTracker,
        repo: LedgerRepository,
        make_trade,
    ) -> None:
        repo.add_account(
            Account(
                id="fut-1",
                owner_id="alice",
                name="perps",
                market=MarketMode.FUTURES,
                api_key_enc="k",
                api_secret_enc="s",
            )
        )
        repo.insert_trade(make_trade(account_id="fut-1", market=MarketMode.FUTURES, executed_at=T0))
        repo.insert_trade(
            make_trade(
                account_id="fut-1",
                market=MarketMode.FUTURES,
                side=TradeSide.SELL,
                realized_pnl=Decimal("3"),
                executed_at=T0 + timedelta(hours=1),
            )
        )
        job = tracker.create("alice", "recalculate_pnl")

        counts = await maintenance.recalculate_pnl(job.job_id, "alice")

        assert counts.updated == 0
        assert repo.list_trades("fut-1")[1].realized_pnl == Decimal("3")


class TestDeduplicateTrades:
    """Tests for LedgerMaintenance.deduplicate_trades."""

    @pytest.mark.asyncio
    async def test_removes_duplicates(
        self,
        maintenance: LedgerMaintenance,
        tracker: JobTracker,
        repo: LedgerRepository,
        account: Account,
        make_trade,
    ) -> None:
        repo.insert_trade(make_trade(trade_id="T-1"))
        repo.insert_trade(make_trade(trade_id="T-1"))
        repo.insert_trade(make_trade(order_id="O-1"))
        repo.insert_trade(make_trade(order_id="O-1"))
        job = tracker.create("alice", "deduplicate")

        result = await maintenance.deduplicate_trades(job.job_id, "alice")

        assert result == {"deleted": 1, "accounts": {"acct-1": 1}}
        assert len(repo.list_trades(account.id)) == 3

    @pytest.mark.asyncio
    async def test_symbol_filter(
        self,
        maintenance: LedgerMaintenance,
        tracker: JobTracker,
        repo: LedgerRepository,
        account: Account,
        make_trade,
    ) -> None:
        repo.insert_trade(make_trade(symbol="ETHUSDT"))
        repo.insert_trade(make_trade(symbol="ETHUSDT"))
        job = tracker.create("alice", "deduplicate")

        result = await maintenance.deduplicate_trades(job.job_id, "alice", symbol="BTCUSDT")

        assert result["deleted"] == 0
        assert len(repo.list_trades(account.id)) == 2

    @pytest.mark.asyncio
    async def test_cancelled(
        self,
        maintenance: LedgerMaintenance,
        tracker: JobTracker,
        account: Account,
    ) -> None:
        job = tracker.create("alice", "deduplicate")
        tracker.cancel(job.job_id, "alice")

        with pytest.raises(JobCancelled):
            await maintenance.deduplicate_trades(job.job_id, "alice")
