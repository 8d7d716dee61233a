"""Tests for the reconciliation orchestrator."""

from datetime import UTC, date, datetime, timedelta
from decimal import Decimal

import pytest

from ledger_sync.core.config import SyncConfig
from ledger_sync.db.repository import LedgerRepository
from ledger_sync.domain.errors import (
    AccountNotFoundError,
    CredentialError,
    JobCancelled,
    LedgerSyncError,
)
from ledger_sync.domain.outcomes import SyncCounts
from ledger_sync.domain.records import (
    Account,
    CashflowRecord,
    RawBalance,
    RawFiatOrder,
    RawTransfer,
    TimeWindow,
)
from ledger_sync.domain.types import CashflowType, MarketMode, TradeSide, TransferDirection
from ledger_sync.exchange.base import ExchangeLimits
from ledger_sync.exchange.mock.adapter import MockExchangeClient
from ledger_sync.jobs.tracker import JobTracker
from ledger_sync.reconcile.orchestrator import ReconciliationOrchestrator

FIVE_DAYS = TimeWindow.from_dates(date(2024, 1, 1), date(2024, 1, 5))
JANUARY = TimeWindow.from_dates(date(2024, 1, 1), date(2024, 1, 31))


def trade_csv(statuses: list[str]) -> str:
    lines = ["Date(UTC),Pair,Side,Price,Executed,Fee,Status"]
    for i, status in enumerate(statuses):
        side = "BUY" if i % 2 == 0 else "SELL"
        price = 100 + i
        lines.append(f"2024-01-05 10:{i:02d}:00,BTCUSDT,{side},{price},1BTC,0.001BTC,{status}")
    return "\n".join(lines) + "\n"


def fiat_order(order_no: str, direction: TransferDirection, amount: str, fee: str = "0") -> RawFiatOrder:
    return RawFiatOrder(
        order_no=order_no,
        currency="BRL",
        amount=Decimal(amount),
        fee=Decimal(fee),
        method="PIX",
        status="Successful",
        created_at=datetime(2024, 1, 10, 9, tzinfo=UTC),
        direction=direction,
    )


@pytest.fixture
def mock_client() -> MockExchangeClient:
    return MockExchangeClient()


@pytest.fixture
def orchestrator(
    repo: LedgerRepository,
    tracker: JobTracker,
    config: SyncConfig,
    mock_client: MockExchangeClient,
) -> ReconciliationOrchestrator:
    return ReconciliationOrchestrator(repo, tracker, lambda account, bearer: mock_client, config)


class TestTradeSync:
    """Tests for exchange trade sync."""

    @pytest.mark.asyncio
    async def test_window_split_per_symbol(
        self,
        orchestrator: ReconciliationOrchestrator,
        tracker: JobTracker,
        account: Account,
        mock_client: MockExchangeClient,
    ) -> None:
        """A five-day range with one symbol makes five day-sized calls."""
        job = tracker.create("alice", "trade_sync")

        await orchestrator.sync_trades(job.job_id, account.id, FIVE_DAYS, ["BTCUSDT"])

        trade_calls = [c for c in mock_client.calls if c[0] == "trades"]
        assert len(trade_calls) == 5
        assert all(c[2].duration == timedelta(hours=24) for c in trade_calls)
        state = tracker.get_progress(job.job_id)
        assert state.total_steps == 6
        assert state.current_step == 6
        assert mock_client.closed

    @pytest.mark.asyncio
    async def test_inserts_with_fifo_pnl(
        self,
        orchestrator: ReconciliationOrchestrator,
        tracker: JobTracker,
        repo: LedgerRepository,
        account: Account,
        mock_client: MockExchangeClient,
        make_raw_trade,
    ) -> None:
        mock_client.add_trades(
            make_raw_trade(order_id="O-1", time=datetime(2024, 1, 2, 12, tzinfo=UTC)),
            make_raw_trade(
                order_id="O-2",
                side=TradeSide.SELL,
                price=Decimal("150"),
                time=datetime(2024, 1, 3, 12, tzinfo=UTC),
            ),
        )
        job = tracker.create("alice", "trade_sync")

        counts = await orchestrator.sync_trades(job.job_id, account.id, FIVE_DAYS, ["BTCUSDT"])

        assert counts.inserted == 2
        stored = repo.list_trades(account.id)
        assert [t.order_id for t in stored] == ["O-1", "O-2"]
        assert stored[1].realized_pnl == Decimal("50")
        assert stored[0].market == MarketMode.SPOT

    @pytest.mark.asyncio
    async def test_resync_is_idempotent(
        self,
        orchestrator: ReconciliationOrchestrator,
        tracker: JobTracker,
        repo: LedgerRepository,
        account: Account,
        mock_client: MockExchangeClient,
        make_raw_trade,
    ) -> None:
        """Running the same sync twice changes nothing the second time."""
        mock_client.add_trades(
            make_raw_trade(trade_id="T-1", time=datetime(2024, 1, 2, 12, tzinfo=UTC)),
            make_raw_trade(trade_id="T-2", time=datetime(2024, 1, 4, 8, tzinfo=UTC)),
        )
        first = tracker.create("alice", "trade_sync")
        await orchestrator.sync_trades(first.job_id, account.id, FIVE_DAYS, ["BTCUSDT"])

        second = tracker.create("alice", "trade_sync")
        counts = await orchestrator.sync_trades(second.job_id, account.id, FIVE_DAYS, ["BTCUSDT"])

        assert counts.inserted == 0
        assert counts.updated == 0
        assert counts.unchanged == 2
        assert len(repo.list_trades(account.id)) == 2

    @pytest.mark.asyncio
    async def test_partial_fills_of_one_order(
        self,
        orchestrator: ReconciliationOrchestrator,
        tracker: JobTracker,
        repo: LedgerRepository,
        account: Account,
        mock_client: MockExchangeClient,
        make_raw_trade,
    ) -> None:
        """Each fill of an order is stored and priced on its own."""
        mock_client.add_trades(
            make_raw_trade(order_id="O-1", trade_id="T-1", time=datetime(2024, 1, 2, 12, tzinfo=UTC)),
            make_raw_trade(
                order_id="O-1",
                trade_id="T-2",
                quantity=Decimal("2"),
                time=datetime(2024, 1, 2, 12, 5, tzinfo=UTC),
            ),
            make_raw_trade(
                order_id="O-2",
                trade_id="T-3",
                side=TradeSide.SELL,
                quantity=Decimal("3"),
                price=Decimal("110"),
                time=datetime(2024, 1, 3, 12, tzinfo=UTC),
            ),
        )
        job = tracker.create("alice", "trade_sync")

        counts = await orchestrator.sync_all_trades(job.job_id, "alice", FIVE_DAYS, ["BTCUSDT"])

        assert counts.inserted == 3
        assert counts.updated == 0
        stored = repo.list_trades(account.id)
        assert [(t.trade_id, t.quantity) for t in stored] == [
            ("T-1", Decimal("1")),
            ("T-2", Decimal("2")),
            ("T-3", Decimal("3")),
        ]
        assert stored[2].realized_pnl == Decimal("30")

        again = tracker.create("alice", "trade_sync")
        repeat = await orchestrator.sync_all_trades(again.job_id, "alice", FIVE_DAYS, ["BTCUSDT"])
        assert repeat.unchanged == 3
        assert len(repo.list_trades(account.id)) == 3

    @pytest.mark.asyncio
    async def test_failed_window_is_counted(
        self,
        orchestrator: ReconciliationOrchestrator,
        tracker: JobTracker,
        repo: LedgerRepository,
        account: Account,
        mock_client: MockExchangeClient,
        make_raw_trade,
    ) -> None:
        """One failing sub-window does not stop the others."""
        mock_client.add_trades(make_raw_trade(order_id="O-1", time=datetime(2024, 1, 4, 8, tzinfo=UTC)))
        mock_client.fail_window("BTCUSDT", TimeWindow.from_dates(date(2024, 1, 2), date(2024, 1, 2)))
        job = tracker.create("alice", "trade_sync")

        counts = await orchestrator.sync_trades(job.job_id, account.id, FIVE_DAYS, ["BTCUSDT"])

        assert counts.failed == 1
        assert len(counts.errors) == 1
        assert counts.inserted == 1
        assert len(repo.list_trades(account.id)) == 1

    @pytest.mark.asyncio
    async def test_smaller_exchange_window_extends_total(
        self,
        repo: LedgerRepository,
        tracker: JobTracker,
        config: SyncConfig,
        account: Account,
    ) -> None:
        client = MockExchangeClient(
            limits=ExchangeLimits(trade_window_hours=12, transfer_window_days=90, page_limit=1000)
        )
        orchestrator = ReconciliationOrchestrator(repo, tracker, lambda a, b: client, config)
        window = TimeWindow.from_dates(date(2024, 1, 1), date(2024, 1, 2))
        job = tracker.create("alice", "trade_sync")

        await orchestrator.sync_trades(job.job_id, account.id, window, ["BTCUSDT"])

        assert len([c for c in client.calls if c[0] == "trades"]) == 4
        state = tracker.get_progress(job.job_id)
        assert state.total_steps == 5
        assert state.current_step == 5

    @pytest.mark.asyncio
    async def test_default_symbols(
        self,
        orchestrator: ReconciliationOrchestrator,
        tracker: JobTracker,
        account: Account,
        mock_client: MockExchangeClient,
    ) -> None:
        job = tracker.create("alice", "trade_sync")
        window = TimeWindow.from_dates(date(2024, 1, 1), date(2024, 1, 1))

        await orchestrator.sync_trades(job.job_id, account.id, window)

        assert sorted(c[1] for c in mock_client.calls if c[0] == "trades") == ["BTCUSDT", "ETHUSDT"]

    @pytest.mark.asyncio
    async def test_unknown_account(
        self, orchestrator: ReconciliationOrchestrator, tracker: JobTracker
    ) -> None:
        job = tracker.create("alice", "trade_sync")

        with pytest.raises(AccountNotFoundError):
            await orchestrator.sync_trades(job.job_id, "missing", FIVE_DAYS)

    @pytest.mark.asyncio
    async def test_cancelled_job_stops(
        self,
        orchestrator: ReconciliationOrchestrator,
        tracker: JobTracker,
        repo: LedgerRepository,
        account: Account,
        mock_client: MockExchangeClient,
        make_raw_trade,
    ) -> None:
        """Should stop at the next progress write and persist nothing."""
        mock_client.add_trades(make_raw_trade(order_id="O-1", time=datetime(2024, 1, 1, 8, tzinfo=UTC)))
        job = tracker.create("alice", "trade_sync")
        tracker.cancel(job.job_id, "alice")

        with pytest.raises(JobCancelled):
            await orchestrator.sync_trades(job.job_id, account.id, FIVE_DAYS, ["BTCUSDT"])

        assert repo.list_trades(account.id) == []
        assert mock_client.closed


class TestMultiAccountSync:
    """Tests for owner-wide sync."""

    @pytest.mark.asyncio
    async def test_failing_account_is_recorded(
        self,
        repo: LedgerRepository,
        tracker: JobTracker,
        config: SyncConfig,
        account: Account,
        make_raw_trade,
    ) -> None:
        """A credential failure on one account leaves the others intact."""
        repo.add_account(
            Account(
                id="acct-2",
                owner_id="alice",
                name="broken",
                market=MarketMode.SPOT,
                api_key_enc="x",
                api_secret_enc="y",
            )
        )
        client = MockExchangeClient()
        client.add_trades(make_raw_trade(order_id="O-1", time=datetime(2024, 1, 1, 8, tzinfo=UTC)))

        def factory(acct: Account, bearer: str | None) -> MockExchangeClient:
            if acct.id == "acct-2":
                raise CredentialError("Cannot decrypt", account_id=acct.id)
            return client

        orchestrator = ReconciliationOrchestrator(repo, tracker, factory, config)
        job = tracker.create("alice", "trade_sync")

        counts = await orchestrator.sync_all_trades(
            job.job_id, "alice", FIVE_DAYS, ["BTCUSDT"]
        )

        assert counts.inserted == 1
        assert counts.failed == 1
        assert "broken" in counts.errors[0]
        assert repo.list_trades("acct-1")[0].order_id == "O-1"

    @pytest.mark.asyncio
    async def test_every_account_failing_raises(
        self,
        repo: LedgerRepository,
        tracker: JobTracker,
        config: SyncConfig,
        account: Account,
    ) -> None:
        repo.add_account(
            Account(
                id="acct-2",
                owner_id="alice",
                name="second",
                market=MarketMode.SPOT,
                api_key_enc="x",
                api_secret_enc="y",
            )
        )

        def factory(acct: Account, bearer: str | None) -> MockExchangeClient:
            raise CredentialError("Cannot decrypt", account_id=acct.id)

        orchestrator = ReconciliationOrchestrator(repo, tracker, factory, config)
        job = tracker.create("alice", "trade_sync")

        with pytest.raises(LedgerSyncError, match="All 2 accounts failed"):
            await orchestrator.sync_all_trades(job.job_id, "alice", FIVE_DAYS, ["BTCUSDT"])

    @pytest.mark.asyncio
    async def test_single_account_error_raised_as_is(
        self,
        repo: LedgerRepository,
        tracker: JobTracker,
        config: SyncConfig,
        account: Account,
    ) -> None:
        def factory(acct: Account, bearer: str | None) -> MockExchangeClient:
            raise CredentialError("Cannot decrypt", account_id=acct.id)

        orchestrator = ReconciliationOrchestrator(repo, tracker, factory, config)
        job = tracker.create("alice", "cashflow_sync")

        with pytest.raises(CredentialError):
            await orchestrator.sync_all_cashflows(job.job_id, "alice", FIVE_DAYS, [account.id])


class TestTradeImport:
    """Tests for CSV trade import."""

    @pytest.mark.asyncio
    async def test_skipped_rows_accounted(
        self,
        orchestrator: ReconciliationOrchestrator,
        tracker: JobTracker,
        repo: LedgerRepository,
        account: Account,
    ) -> None:
        """Three unfilled rows out of ten are skipped, the rest inserted."""
        statuses = ["FILLED"] * 10
        for i in (2, 5, 8):
            statuses[i] = "CANCELED"
        rows = orchestrator.parse_trade_csv(account, trade_csv(statuses))
        job = tracker.create("alice", "trade_import")

        counts = await orchestrator.import_trades(job.job_id, account.id, rows)

        assert counts.skipped == 3
        assert counts.inserted == 7
        assert len(repo.list_trades(account.id)) == 7
        state = tracker.get_progress(job.job_id)
        assert state.current_step == 10
        assert state.result is not None
        assert state.result["inserted"] == 7

    @pytest.mark.asyncio
    async def test_reimport_changes_nothing(
        self,
        orchestrator: ReconciliationOrchestrator,
        tracker: JobTracker,
        repo: LedgerRepository,
        account: Account,
    ) -> None:
        rows = orchestrator.parse_trade_csv(account, trade_csv(["FILLED"] * 6))
        await orchestrator.import_trades(tracker.create("alice", "trade_import").job_id, account.id, rows)

        counts = await orchestrator.import_trades(
            tracker.create("alice", "trade_import").job_id, account.id, rows
        )

        assert counts.inserted == 0
        assert counts.updated == 0
        assert counts.unchanged == 6
        assert len(repo.list_trades(account.id)) == 6

    @pytest.mark.asyncio
    async def test_resume_from_offset(
        self,
        orchestrator: ReconciliationOrchestrator,
        tracker: JobTracker,
        repo: LedgerRepository,
        account: Account,
    ) -> None:
        """A resumed import writes only the remaining rows and keeps earlier counts."""
        rows = orchestrator.parse_trade_csv(account, trade_csv(["FILLED"] * 4))
        job = tracker.create("alice", "trade_import")

        counts = await orchestrator.import_trades(
            job.job_id, account.id, rows, start_offset=1, prior=SyncCounts(inserted=1)
        )

        assert counts.inserted == 4
        stored = repo.list_trades(account.id)
        assert len(stored) == 3
        # The sell at row 1 still matches the buy at row 0
        assert stored[0].side == TradeSide.SELL
        assert stored[0].realized_pnl == Decimal("1")

    @pytest.mark.asyncio
    async def test_cancelled_import(
        self,
        orchestrator: ReconciliationOrchestrator,
        tracker: JobTracker,
        repo: LedgerRepository,
        account: Account,
    ) -> None:
        rows = orchestrator.parse_trade_csv(account, trade_csv(["FILLED"] * 3))
        job = tracker.create("alice", "trade_import")
        tracker.cancel(job.job_id, "alice")

        with pytest.raises(JobCancelled):
            await orchestrator.import_trades(job.job_id, account.id, rows)

        assert repo.list_trades(account.id) == []


class TestCashflows:
    """Tests for cashflow sync and import."""

    @pytest.mark.asyncio
    async def test_sync_fiat_and_crypto(
        self,
        orchestrator: ReconciliationOrchestrator,
        tracker: JobTracker,
        repo: LedgerRepository,
        account: Account,
        mock_client: MockExchangeClient,
    ) -> None:
        mock_client.add_fiat_orders(
            fiat_order("F1", TransferDirection.DEPOSIT, "1000"),
            fiat_order("F2", TransferDirection.WITHDRAWAL, "500", fee="2.5"),
        )
        mock_client.add_transfers(
            RawTransfer(
                transfer_id="tx-1",
                coin="USDT",
                amount=Decimal("10"),
                fee=Decimal("0"),
                network="TRX",
                status=1,
                created_at=datetime(2024, 1, 12, tzinfo=UTC),
                direction=TransferDirection.DEPOSIT,
            )
        )
        job = tracker.create("alice", "cashflow_sync")

        counts = await orchestrator.sync_cashflows(job.job_id, account.id, JANUARY)

        assert counts.inserted == 3
        stored = {c.external_ref: c for c in repo.list_cashflows(account.id)}
        assert stored["F2"].amount == Decimal("-502.5")
        assert stored["F2"].type == CashflowType.WITHDRAWAL
        assert stored["tx-1"].asset == "USDT"
        assert len([c for c in mock_client.calls if c[0] in ("fiat", "crypto")]) == 4
        state = tracker.get_progress(job.job_id)
        assert state.current_step == state.total_steps == 7

    @pytest.mark.asyncio
    async def test_legacy_row_matched_by_note(
        self,
        orchestrator: ReconciliationOrchestrator,
        tracker: JobTracker,
        repo: LedgerRepository,
        account: Account,
        mock_client: MockExchangeClient,
    ) -> None:
        """A stored row without external_ref is found through its note and not duplicated."""
        repo.insert_cashflow(
            CashflowRecord(
                account_id=account.id,
                type=CashflowType.DEPOSIT,
                asset="BRL",
                amount=Decimal("1000"),
                at=datetime(2024, 1, 10, 9, tzinfo=UTC),
                external_ref="",
                note="OrderNo: F1 | PIX - Successful",
            )
        )
        mock_client.add_fiat_orders(fiat_order("F1", TransferDirection.DEPOSIT, "1000"))
        job = tracker.create("alice", "cashflow_sync")

        counts = await orchestrator.sync_cashflows(job.job_id, account.id, JANUARY)

        assert counts.inserted == 0
        assert counts.unchanged == 1
        stored = repo.list_cashflows(account.id)
        assert len(stored) == 1
        assert stored[0].external_ref == "F1"

    @pytest.mark.asyncio
    async def test_duplicate_rows_in_file(
        self,
        orchestrator: ReconciliationOrchestrator,
        tracker: JobTracker,
        repo: LedgerRepository,
        account: Account,
    ) -> None:
        """The same order number twice in one file yields one record."""
        text = (
            "Date,Type,Currency,Amount,Fee,Method,Status,Order No\n"
            "2024-01-10 09:00:00,Deposit,BRL,1000,0,PIX,Successful,A1\n"
            "2024-01-10 09:00:00,Deposit,BRL,1000,0,PIX,Successful,A1\n"
        )
        rows = orchestrator.parse_cashflow_csv(account, text)
        job = tracker.create("alice", "cashflow_import")

        counts = await orchestrator.import_cashflows(job.job_id, account.id, rows)

        stored = repo.list_cashflows(account.id)
        assert len(stored) == 1
        assert stored[0].amount == Decimal("1000")
        assert counts.inserted == 1
        assert counts.unchanged == 1


class TestDiscoveryAndBalances:
    """Tests for symbol discovery and balances."""

    @pytest.mark.asyncio
    async def test_discovers_traded_and_stored_symbols(
        self,
        orchestrator: ReconciliationOrchestrator,
        tracker: JobTracker,
        repo: LedgerRepository,
        account: Account,
        mock_client: MockExchangeClient,
        make_raw_trade,
        make_trade,
    ) -> None:
        mock_client.add_trades(make_raw_trade(time=datetime.now(UTC) - timedelta(days=3)))
        repo.insert_trade(make_trade(symbol="SOLUSDT"))
        job = tracker.create("alice", "discover_symbols")

        result = await orchestrator.discover_symbols(job.job_id, "alice")

        assert result == {"symbols": {"acct-1": ["BTCUSDT", "SOLUSDT"]}}

    @pytest.mark.asyncio
    async def test_listing_failure_falls_back_to_defaults(
        self,
        orchestrator: ReconciliationOrchestrator,
        tracker: JobTracker,
        account: Account,
        mock_client: MockExchangeClient,
    ) -> None:
        mock_client.fail_listing = True
        job = tracker.create("alice", "discover_symbols")

        result = await orchestrator.discover_symbols(job.job_id, "alice", search_all=True)

        probed = sorted(c[1] for c in mock_client.calls if c[0] == "probe")
        assert probed == ["BTCUSDT", "ETHUSDT"]
        assert result["symbols"]["acct-1"] == []

    @pytest.mark.asyncio
    async def test_search_all_probes_listing(
        self,
        repo: LedgerRepository,
        tracker: JobTracker,
        config: SyncConfig,
        account: Account,
    ) -> None:
        client = MockExchangeClient(known_symbols={"BTCUSDT", "XRPUSDT"})
        orchestrator = ReconciliationOrchestrator(repo, tracker, lambda a, b: client, config)
        job = tracker.create("alice", "discover_symbols")

        await orchestrator.discover_symbols(job.job_id, "alice", search_all=True)

        assert sorted(c[1] for c in client.calls if c[0] == "probe") == ["BTCUSDT", "XRPUSDT"]

    @pytest.mark.asyncio
    async def test_fetch_balances(
        self,
        orchestrator: ReconciliationOrchestrator,
        account: Account,
        mock_client: MockExchangeClient,
    ) -> None:
        mock_client.set_balances(
            RawBalance(asset="BTC", free=Decimal("0.5"), locked=Decimal("0")),
            RawBalance(asset="ETH", free=Decimal("0"), locked=Decimal("0")),
        )

        balances = await orchestrator.fetch_balances(account)

        assert [b.asset for b in balances] == ["BTC"]
        assert mock_client.closed
