"""Reconciliation orchestrator.

Drives one run from source to storage:

    fetch (exchange) or parse (CSV)
      -> identity resolution and dedup
      -> realized PnL annotation
      -> batched persistence
      -> job progress after every unit of work

Each unit (one sub-window fetch, one CSV row, one account of a
multi-account run) yields an Outcome; a failed unit is logged and
counted, and only account-level fatal conditions (missing account,
undecryptable credentials) end a single-account run in error.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable, Sequence
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING, Any, TypeVar

from sqlalchemy.exc import SQLAlchemyError

from ledger_sync.csv_import.normalizer import CashflowCsvNormalizer, TradeCsvNormalizer
from ledger_sync.domain.errors import (
    AccountNotFoundError,
    ExchangeError,
    JobCancelled,
    LedgerSyncError,
)
from ledger_sync.domain.outcomes import Outcome, SyncCounts
from ledger_sync.domain.records import (
    Account,
    CashflowRecord,
    RawBalance,
    TimeWindow,
    TradeRecord,
)
from ledger_sync.domain.types import TransferDirection
from ledger_sync.exchange.binance.rate_limiter import BatchPolicy
from ledger_sync.exchange.windows import trade_windows, transfer_windows
from ledger_sync.reconcile.identity import (
    Identity,
    IdentityIndex,
    Resolver,
    collapse_duplicates,
    promote_found_inserts,
    trade_identity,
)
from ledger_sync.reconcile.pnl import PnLEngine

if TYPE_CHECKING:
    from ledger_sync.core.config import SyncConfig
    from ledger_sync.db.repository import LedgerRepository
    from ledger_sync.exchange.base import ExchangeClient
    from ledger_sync.jobs.tracker import JobTracker
    from ledger_sync.monitoring.metrics import MetricsCollector

    ClientFactory = Callable[[Account, str | None], ExchangeClient]

logger = logging.getLogger(__name__)

T = TypeVar("T")

DISCOVERY_LOOKBACK_DAYS = 90


class RunProgress:
    """Progress cursor for one job.

    Every advance is a durable write; a refused write means the job was
    moved to a terminal state and the run must stop.
    """

    def __init__(self, tracker: JobTracker, job_id: str, total: int = 0, current: int = 0) -> None:
        self._tracker = tracker
        self.job_id = job_id
        self.total = total
        self.current = current

    def extend(self, steps: int) -> None:
        """Grow the total once more work is known."""
        self.total += steps

    def advance(
        self,
        steps: int = 1,
        message: str | None = None,
        result: dict[str, Any] | None = None,
    ) -> None:
        """Record steps of completed work.

        Raises:
            JobCancelled: If the job is no longer running
        """
        self.current += steps
        applied = self._tracker.set_progress(
            self.job_id,
            current_step=self.current,
            total_steps=self.total,
            message=message,
            result=result,
        )
        if not applied:
            raise JobCancelled(self.job_id)

    def check(self) -> None:
        """Stop if the job was cancelled; called before each persistence batch."""
        self._tracker.ensure_active(self.job_id)


def _chunks(items: Sequence[T], size: int) -> list[Sequence[T]]:
    return [items[i : i + size] for i in range(0, len(items), size)]


def _trade_update_fields(record: TradeRecord) -> dict[str, Any]:
    fields = record.persisted_fields()
    del fields["account_id"]
    return fields


def _cashflow_update_fields(record: CashflowRecord) -> dict[str, Any]:
    fields = record.persisted_fields()
    del fields["account_id"]
    return fields


class ReconciliationOrchestrator:
    """Runs trade and cashflow ingestion jobs.

    Example:
        orchestrator = ReconciliationOrchestrator(repository, tracker, factory, config)
        counts = await orchestrator.sync_trades(job_id, account_id, window, ["BTCUSDT"])
    """

    def __init__(
        self,
        repository: LedgerRepository,
        tracker: JobTracker,
        client_factory: ClientFactory,
        config: SyncConfig,
        metrics: MetricsCollector | None = None,
    ) -> None:
        """Initialize orchestrator.

        Args:
            repository: Persistence gateway
            tracker: Job progress tracker
            client_factory: Builds an exchange client for (account, bearer)
            config: Application configuration
            metrics: Optional metrics collector
        """
        self._repository = repository
        self._tracker = tracker
        self._client_factory = client_factory
        self._config = config
        self._metrics = metrics
        self._policy = BatchPolicy(
            batch_size=config.batching.symbol_batch_size,
            delay_seconds=config.batching.batch_delay_seconds,
        )
        self._trade_resolver = Resolver.for_trades()
        self._cashflow_resolver = Resolver.for_cashflows()

    @property
    def config(self) -> SyncConfig:
        return self._config

    # --- Accounts ---

    def require_account(self, account_id: str) -> Account:
        """Return the account or raise.

        Raises:
            AccountNotFoundError: If the account does not exist
        """
        account = self._repository.find_account_by_id(account_id)
        if account is None:
            raise AccountNotFoundError(account_id)
        return account

    def _check_account(self, account_id: str) -> None:
        if not self._repository.account_exists(account_id):
            logger.error(f"Account {account_id} disappeared mid-run")
            raise AccountNotFoundError(account_id)

    async def _run_account(
        self,
        account: Account,
        body: Callable[[], Awaitable[T]],
    ) -> Outcome[T]:
        unit = f"account {account.name or account.id}"
        try:
            return Outcome.ok(await body(), unit)
        except JobCancelled:
            raise
        except (LedgerSyncError, SQLAlchemyError) as e:
            logger.error(f"{unit} failed: {e}")
            return Outcome.failed(e, unit)

    @staticmethod
    def _raise_if_all_failed(outcomes: Sequence[Outcome[Any]]) -> None:
        """End the run in error when no account got through.

        With a single account the original error is raised as is.
        """
        failures = [o for o in outcomes if o.is_failed]
        if not failures or len(failures) < len(outcomes):
            return
        if len(failures) == 1 and failures[0].error is not None:
            raise failures[0].error
        raise LedgerSyncError(
            f"All {len(failures)} accounts failed: "
            + "; ".join(o.describe() for o in failures)
        )

    # --- Exchange fetch units ---

    async def _fetch_unit(
        self,
        kind: str,
        unit: str,
        fetch: Callable[[], Awaitable[list[T]]],
    ) -> Outcome[list[T]]:
        try:
            return Outcome.ok(await fetch(), unit)
        except ExchangeError as e:
            logger.error(f"Fetch failed for {kind} {unit}: {e}")
            if self._metrics:
                self._metrics.inc_window_failure(kind)
            return Outcome.failed(e, unit)

    def _trade_steps(self, window: TimeWindow, symbols: Sequence[str], hours: int) -> int:
        batches = max(1, len(self._policy.batches(symbols)))
        return len(trade_windows(window, hours)) * batches + 1

    # --- Trade sync ---

    async def sync_trades(
        self,
        job_id: str,
        account_id: str,
        window: TimeWindow,
        symbols: Sequence[str] | None = None,
        bearer: str | None = None,
    ) -> SyncCounts:
        """Fetch and reconcile one account's fills.

        Raises:
            AccountNotFoundError: If the account is missing at start or mid-run
            CredentialError: If the account's credentials cannot be decrypted
            JobCancelled: If the job is cancelled while running
        """
        account = self.require_account(account_id)
        symbols = list(symbols or self._config.default_symbols)
        progress = RunProgress(
            self._tracker,
            job_id,
            total=self._trade_steps(window, symbols, self._config.exchange.trade_window_hours),
        )
        return await self._sync_account_trades(progress, account, window, symbols, bearer)

    async def sync_all_trades(
        self,
        job_id: str,
        owner_id: str,
        window: TimeWindow,
        symbols: Sequence[str] | None = None,
        account_ids: Iterable[str] | None = None,
        bearer: str | None = None,
    ) -> SyncCounts:
        """Sync fills for every account of an owner.

        A failing account is recorded in the counts and the run moves on.

        Raises:
            LedgerSyncError: If every account failed; a single account's
                own error (CredentialError, AccountNotFoundError) is raised as is
            JobCancelled: If the job is cancelled while running
        """
        accounts = self._repository.list_accounts(owner_id, account_ids)
        symbols = list(symbols or self._config.default_symbols)
        steps = self._trade_steps(window, symbols, self._config.exchange.trade_window_hours)
        progress = RunProgress(self._tracker, job_id, total=steps * len(accounts))
        progress.advance(0, message=f"Syncing trades for {len(accounts)} accounts")

        counts = SyncCounts()
        outcomes: list[Outcome[SyncCounts]] = []
        for account in accounts:
            outcome = await self._run_account(
                account,
                lambda account=account: self._sync_account_trades(
                    progress, account, window, symbols, bearer
                ),
            )
            outcomes.append(outcome)
            if outcome.is_ok and outcome.value is not None:
                counts.merge(outcome.value)
            else:
                counts.record(outcome)
        self._raise_if_all_failed(outcomes)
        return counts

    async def _sync_account_trades(
        self,
        progress: RunProgress,
        account: Account,
        window: TimeWindow,
        symbols: Sequence[str],
        bearer: str | None,
    ) -> SyncCounts:
        client = self._client_factory(account, bearer)
        counts = SyncCounts()
        records: list[TradeRecord] = []
        try:
            windows = trade_windows(window, client.limits.trade_window_hours)
            planned = self._trade_steps(window, symbols, self._config.exchange.trade_window_hours)
            actual = self._trade_steps(window, symbols, client.limits.trade_window_hours)
            if actual != planned:
                progress.extend(actual - planned)

            logger.info(
                f"Syncing {len(symbols)} symbols over {len(windows)} windows "
                f"for account {account.id}"
            )
            for sub in windows:

                async def fetch(symbol: str, sub: TimeWindow = sub) -> Outcome[list[Any]]:
                    return await self._fetch_unit(
                        "trades",
                        f"{symbol} {sub.start:%Y-%m-%d %H:%M}",
                        lambda: client.fetch_trades(symbol, sub),
                    )

                async def on_batch(index: int, count: int, sub: TimeWindow = sub) -> None:
                    progress.advance(
                        message=f"{account.name}: {sub.start:%Y-%m-%d %H:%M} "
                        f"batch {index + 1}/{count}"
                    )

                for outcome in await self._policy.run(symbols, fetch, on_batch):
                    if outcome.is_ok:
                        records.extend(
                            raw.to_record(account.id, account.market, self._config.exchange.name)
                            for raw in outcome.value or []
                        )
                    else:
                        counts.record(outcome)
        finally:
            await client.close()

        logger.info(f"Fetched {len(records)} fills for account {account.id}")
        counts.merge(self._persist_trades(progress, account.id, self._annotate_pnl(records)))
        progress.advance(message=f"{account.name}: saved {len(records)} fills")
        return counts

    # --- PnL ---

    def _pnl_by_identity(self, records: Iterable[TradeRecord]) -> dict[Identity, Decimal | None]:
        unique = collapse_duplicates(records, trade_identity)
        engine = PnLEngine(self._config.pnl.lot_matching)
        return {trade_identity(r): r.realized_pnl for r in engine.annotate(unique)}

    def _annotate_pnl(self, records: list[TradeRecord]) -> list[TradeRecord]:
        """Records in execution order with realized PnL filled in."""
        pnl = self._pnl_by_identity(records)
        return [self._with_pnl(r, pnl) for r in sorted(records, key=lambda r: r.executed_at)]

    @staticmethod
    def _with_pnl(record: TradeRecord, pnl: dict[Identity, Decimal | None]) -> TradeRecord:
        if record.realized_pnl is not None:
            return record
        value = pnl.get(trade_identity(record))
        return record.with_realized_pnl(value) if value is not None else record

    # --- Trade persistence ---

    def _persist_trades(
        self,
        progress: RunProgress,
        account_id: str,
        records: Sequence[TradeRecord],
    ) -> SyncCounts:
        counts = SyncCounts()
        for batch in _chunks(records, self._config.batching.csv_batch_size):
            self._check_account(account_id)
            progress.check()
            counts.merge(self._write_trade_batch(account_id, batch))
        return counts

    def _lookup_trades(self, account_id: str, records: Sequence[TradeRecord]) -> list[TradeRecord]:
        order_ids = [r.order_id for r in records if r.order_id]
        trade_ids = [r.trade_id for r in records if r.trade_id]
        # Composite matches are looked up per UTC day
        days: set[date] = {
            r.executed_at.date() for r in records if not r.order_id and not r.trade_id
        }
        return self._repository.find_trades_by_identity(
            account_id,
            order_ids=order_ids,
            trade_ids=trade_ids,
            composite_windows=[TimeWindow.from_dates(d, d) for d in sorted(days)],
        )

    def _write_trade_batch(self, account_id: str, batch: Sequence[TradeRecord]) -> SyncCounts:
        """Resolve and persist one batch of trades."""
        if not batch:
            return SyncCounts()

        index = IdentityIndex.for_trades(self._lookup_trades(account_id, batch))
        plan = self._trade_resolver.plan(batch, index)

        if plan.inserts:
            # Last check against external ids right before the bulk insert
            found = self._repository.find_trades_by_identity(
                account_id,
                order_ids=[r.order_id for r in plan.inserts if r.order_id],
                trade_ids=[r.trade_id for r in plan.inserts if r.trade_id],
            )
            promote_found_inserts(plan, IdentityIndex.for_trades(found))

        counts = SyncCounts(updated=plan.updated, unchanged=plan.unchanged)
        inserted, failed = self._insert_trades(plan.inserts)
        counts.inserted += inserted
        counts.skipped += failed

        for record in plan.updates:
            try:
                applied = self._repository.update_trade(record.id or "", _trade_update_fields(record))
            except SQLAlchemyError as e:
                logger.error(f"Update of trade {record.id} failed: {e}")
                applied = False
            if not applied:
                counts.updated -= 1
                counts.skipped += 1

        logger.debug(
            f"Trade batch of {len(batch)}: +{counts.inserted} ~{counts.updated} "
            f"={counts.unchanged} skipped {counts.skipped}"
        )
        return counts

    def _insert_trades(self, records: Sequence[TradeRecord]) -> tuple[int, int]:
        """Bulk insert with per-record fallback.

        Returns:
            (inserted, skipped)
        """
        if not records:
            return 0, 0
        try:
            self._repository.insert_trades(records)
            return len(records), 0
        except SQLAlchemyError as e:
            logger.warning(f"Bulk insert of {len(records)} trades failed, retrying one by one: {e}")

        inserted = skipped = 0
        for record in records:
            try:
                self._repository.insert_trade(record)
                inserted += 1
            except SQLAlchemyError as e:
                logger.error(f"Skipping trade {trade_identity(record)}: {e}")
                skipped += 1
        return inserted, skipped

    # --- Trade CSV import ---

    def parse_trade_csv(self, account: Account, text: str) -> list[Outcome[TradeRecord]]:
        """Parse a trade export into per-row outcomes.

        Raises:
            CsvFormatError: If the file has no header, required columns or rows
        """
        return TradeCsvNormalizer(account.id, account.market).parse(text)

    async def import_trades(
        self,
        job_id: str,
        account_id: str,
        rows: Sequence[Outcome[TradeRecord]],
        start_offset: int = 0,
        prior: SyncCounts | None = None,
    ) -> SyncCounts:
        """Persist parsed trade rows from start_offset on.

        Realized PnL is computed over the whole file so a resumed run
        writes the same values as an uninterrupted one.

        Args:
            job_id: Job to report progress on
            account_id: Target account
            rows: Per-row outcomes in file order
            start_offset: Number of rows already processed by an earlier run
            prior: Counts accumulated before the interruption

        Raises:
            AccountNotFoundError: If the account is missing at start or mid-run
            JobCancelled: If the job is cancelled while running
        """
        self.require_account(account_id)
        total = len(rows)
        start_offset = max(0, min(start_offset, total))
        counts = SyncCounts()
        if prior is not None:
            counts.merge(prior)

        progress = RunProgress(self._tracker, job_id, total=total, current=start_offset)
        progress.advance(0, message=f"Importing rows {start_offset + 1}-{total}")

        pnl = self._pnl_by_identity(o.value for o in rows if o.is_ok and o.value is not None)
        batch_size = self._config.batching.csv_batch_size

        for begin in range(start_offset, total, batch_size):
            chunk = rows[begin : begin + batch_size]
            records: list[TradeRecord] = []
            for outcome in chunk:
                if outcome.is_ok and outcome.value is not None:
                    records.append(self._with_pnl(outcome.value, pnl))
                else:
                    logger.warning(f"Skipping {outcome.describe()}")
                    counts.record(outcome)

            self._check_account(account_id)
            progress.check()
            counts.merge(self._write_trade_batch(account_id, records))
            done = begin + len(chunk)
            progress.advance(
                len(chunk), message=f"Processed {done}/{total} rows", result=counts.to_dict()
            )
            await asyncio.sleep(0)

        return counts

    # --- Cashflows ---

    async def sync_cashflows(
        self,
        job_id: str,
        account_id: str,
        window: TimeWindow,
        bearer: str | None = None,
    ) -> SyncCounts:
        """Fetch and reconcile one account's deposits and withdrawals.

        Raises:
            AccountNotFoundError: If the account is missing at start or mid-run
            CredentialError: If the account's credentials cannot be decrypted
        """
        account = self.require_account(account_id)
        progress = RunProgress(self._tracker, job_id, total=4)
        return await self._sync_account_cashflows(progress, account, window, bearer)

    async def sync_all_cashflows(
        self,
        job_id: str,
        owner_id: str,
        window: TimeWindow,
        account_ids: Iterable[str] | None = None,
        bearer: str | None = None,
    ) -> SyncCounts:
        """Sync cashflows for every account of an owner.

        Failures are handled as in sync_all_trades.
        """
        accounts = self._repository.list_accounts(owner_id, account_ids)
        progress = RunProgress(self._tracker, job_id, total=4 * len(accounts))
        progress.advance(0, message=f"Syncing cashflows for {len(accounts)} accounts")

        counts = SyncCounts()
        outcomes: list[Outcome[SyncCounts]] = []
        for account in accounts:
            outcome = await self._run_account(
                account,
                lambda account=account: self._sync_account_cashflows(
                    progress, account, window, bearer
                ),
            )
            outcomes.append(outcome)
            if outcome.is_ok and outcome.value is not None:
                counts.merge(outcome.value)
            else:
                counts.record(outcome)
        self._raise_if_all_failed(outcomes)
        return counts

    async def _sync_account_cashflows(
        self,
        progress: RunProgress,
        account: Account,
        window: TimeWindow,
        bearer: str | None,
    ) -> SyncCounts:
        client = self._client_factory(account, bearer)
        counts = SyncCounts()
        records: list[CashflowRecord] = []
        try:
            windows = transfer_windows(window, client.limits.transfer_window_days)
            steps: list[tuple[str, Callable[[TimeWindow], Awaitable[list[Any]]]]] = [
                ("fiat deposits", lambda w: client.fetch_fiat_orders(TransferDirection.DEPOSIT, w)),
                ("fiat withdrawals", lambda w: client.fetch_fiat_orders(TransferDirection.WITHDRAWAL, w)),
                ("crypto deposits", lambda w: client.fetch_crypto_transfers(TransferDirection.DEPOSIT, w)),
                ("crypto withdrawals", lambda w: client.fetch_crypto_transfers(TransferDirection.WITHDRAWAL, w)),
            ]
            for label, fetch in steps:
                for sub in windows:
                    outcome = await self._fetch_unit(
                        "cashflows",
                        f"{label} {sub.start:%Y-%m-%d}",
                        lambda fetch=fetch, sub=sub: fetch(sub),
                    )
                    if outcome.is_ok:
                        records.extend(raw.to_record(account.id) for raw in outcome.value or [])
                    else:
                        counts.record(outcome)
                progress.advance(message=f"{account.name}: {label} fetched")
        finally:
            await client.close()

        records.sort(key=lambda r: r.at)
        progress.extend(len(records))
        counts.merge(self._persist_cashflows(progress, account.id, records))
        return counts

    def _persist_cashflows(
        self,
        progress: RunProgress,
        account_id: str,
        records: Sequence[CashflowRecord],
    ) -> SyncCounts:
        counts = SyncCounts()
        total = len(records)
        done = 0
        for batch in _chunks(records, self._config.batching.csv_batch_size):
            self._check_account(account_id)
            progress.check()
            counts.merge(self._write_cashflow_batch(account_id, batch))
            done += len(batch)
            progress.advance(len(batch), message=f"Saved {done}/{total} cashflows")
        return counts

    def _write_cashflow_batch(
        self,
        account_id: str,
        batch: Sequence[CashflowRecord],
    ) -> SyncCounts:
        if not batch:
            return SyncCounts()

        stored = self._repository.find_cashflows_by_refs(account_id, [r.external_ref for r in batch])
        plan = self._cashflow_resolver.plan(batch, IdentityIndex.for_cashflows(stored))
        counts = SyncCounts(updated=plan.updated, unchanged=plan.unchanged)

        for record in plan.inserts:
            try:
                self._repository.insert_cashflow(record)
                counts.inserted += 1
            except SQLAlchemyError as e:
                logger.error(f"Skipping cashflow {record.external_ref}: {e}")
                counts.skipped += 1

        for record in plan.updates:
            try:
                applied = self._repository.update_cashflow(
                    record.id or "", _cashflow_update_fields(record)
                )
            except SQLAlchemyError as e:
                logger.error(f"Update of cashflow {record.external_ref} failed: {e}")
                applied = False
            if not applied:
                counts.updated -= 1
                counts.skipped += 1
        return counts

    def parse_cashflow_csv(self, account: Account, text: str) -> list[Outcome[CashflowRecord]]:
        """Parse a cashflow export into per-row outcomes.

        Raises:
            CsvFormatError: If the file has no header, required columns or rows
        """
        return CashflowCsvNormalizer(account.id).parse(text)

    async def import_cashflows(
        self,
        job_id: str,
        account_id: str,
        rows: Sequence[Outcome[CashflowRecord]],
    ) -> SyncCounts:
        """Persist parsed cashflow rows.

        Raises:
            AccountNotFoundError: If the account is missing at start or mid-run
            JobCancelled: If the job is cancelled while running
        """
        self.require_account(account_id)
        total = len(rows)
        counts = SyncCounts()
        progress = RunProgress(self._tracker, job_id, total=total)
        progress.advance(0, message=f"Importing {total} cashflow rows")

        for begin in range(0, total, self._config.batching.csv_batch_size):
            chunk = rows[begin : begin + self._config.batching.csv_batch_size]
            records: list[CashflowRecord] = []
            for outcome in chunk:
                if outcome.is_ok and outcome.value is not None:
                    records.append(outcome.value)
                else:
                    logger.warning(f"Skipping {outcome.describe()}")
                    counts.record(outcome)

            self._check_account(account_id)
            progress.check()
            counts.merge(self._write_cashflow_batch(account_id, records))
            progress.advance(len(chunk), message=f"Processed {begin + len(chunk)}/{total} rows")
            await asyncio.sleep(0)

        return counts

    # --- Symbols and balances ---

    async def discover_symbols(
        self,
        job_id: str,
        owner_id: str,
        search_all: bool = False,
        account_ids: Iterable[str] | None = None,
        bearer: str | None = None,
    ) -> dict[str, Any]:
        """Find the symbols each account has traded recently.

        Returns:
            {"symbols": {account_id: [symbols]}, "errors": {account_id: reason}}
        """
        accounts = self._repository.list_accounts(owner_id, account_ids)
        progress = RunProgress(self._tracker, job_id, total=len(accounts))
        progress.advance(0, message=f"Discovering symbols for {len(accounts)} accounts")

        found: dict[str, list[str]] = {}
        errors: dict[str, str] = {}
        outcomes: list[Outcome[list[str]]] = []
        for account in accounts:
            outcome = await self._run_account(
                account,
                lambda account=account: self._discover_account(progress, account, search_all, bearer),
            )
            if outcome.is_ok and outcome.value is not None:
                found[account.id] = outcome.value
            else:
                errors[account.id] = outcome.reason
            outcomes.append(outcome)

        self._raise_if_all_failed(outcomes)
        result: dict[str, Any] = {"symbols": found}
        if errors:
            result["errors"] = errors
        return result

    async def _discover_account(
        self,
        progress: RunProgress,
        account: Account,
        search_all: bool,
        bearer: str | None,
    ) -> list[str]:
        client = self._client_factory(account, bearer)
        try:
            candidates = list(self._config.default_symbols)
            if search_all:
                try:
                    candidates = await client.list_trading_symbols()
                except ExchangeError as e:
                    logger.warning(f"Symbol listing failed, using defaults: {e}")

            window = TimeWindow.last_days(DISCOVERY_LOOKBACK_DAYS)
            progress.extend(len(self._policy.batches(candidates)))

            async def probe(symbol: str) -> Outcome[bool]:
                try:
                    return Outcome.ok(await client.probe_symbol(symbol, window), symbol)
                except ExchangeError as e:
                    logger.warning(f"Probe failed for {symbol}: {e}")
                    return Outcome.failed(e, symbol)

            async def on_batch(index: int, count: int) -> None:
                progress.advance(message=f"{account.name}: batch {index + 1}/{count}")

            outcomes = await self._policy.run(candidates, probe, on_batch)
        finally:
            await client.close()

        traded = {symbol for symbol, o in zip(candidates, outcomes) if o.is_ok and o.value}
        stored = set(self._repository.list_symbols(account.id))
        progress.advance(message=f"{account.name}: {len(traded | stored)} symbols")
        logger.info(f"Account {account.id}: {len(traded)} traded symbols found")
        return sorted(traded | stored)

    async def fetch_balances(self, account: Account, bearer: str | None = None) -> list[RawBalance]:
        """Current non-zero balances for an account.

        Raises:
            CredentialError: If the account's credentials cannot be decrypted
            ExchangeError: On transport failure
        """
        client = self._client_factory(account, bearer)
        try:
            return await client.fetch_balances()
        finally:
            await client.close()
