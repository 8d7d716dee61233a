"""Repository for ledger data access.

Provides a clean interface for persisting and querying accounts,
trades, cashflows and sync jobs. Uses a session per operation; the
trade and cashflow tables are shared by concurrent runs.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable, Sequence
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import create_engine, delete, or_, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ledger_sync.db.models import AccountRow, Base, CashflowRow, SyncJobRow, TradeRow
from ledger_sync.domain.jobs import JobState
from ledger_sync.domain.records import (
    Account,
    CashflowRecord,
    TimeWindow,
    TradeRecord,
    ensure_utc,
    note_marker,
)
from ledger_sync.domain.types import (
    CashflowType,
    JobStatus,
    MarketMode,
    TradeSide,
)

if TYPE_CHECKING:
    from sqlalchemy.engine import Engine

logger = logging.getLogger(__name__)

# Stay below SQLite's bound-parameter limit
IN_CLAUSE_CHUNK = 500


def _now() -> datetime:
    return datetime.now(UTC)


def _new_id() -> str:
    return uuid.uuid4().hex


def _chunks(values: Sequence[str], size: int = IN_CLAUSE_CHUNK) -> Iterable[Sequence[str]]:
    for i in range(0, len(values), size):
        yield values[i : i + size]


class LedgerRepository:
    """Repository for persisting ledger data.

    Handles accounts, trades, cashflows and sync jobs.
    Thread-safe with session-per-operation pattern.
    """

    def __init__(self, db_url: str = "sqlite:///ledger_sync.db") -> None:
        """Initialize repository.

        Args:
            db_url: SQLAlchemy database URL
        """
        if db_url in ("sqlite://", "sqlite:///:memory:"):
            # One shared connection so every thread sees the same memory database
            self._engine: Engine = create_engine(
                db_url,
                echo=False,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        else:
            self._engine = create_engine(db_url, echo=False)
        self._session_factory = sessionmaker(bind=self._engine, expire_on_commit=False)

        # Create tables if they don't exist
        Base.metadata.create_all(self._engine)
        logger.info(f"Repository initialized at {self._engine.url.render_as_string(hide_password=True)}")

    def _get_session(self) -> Session:
        """Create a new database session."""
        return self._session_factory()

    # --- Account Operations ---

    def add_account(self, account: Account) -> Account:
        """Persist a new account.

        Args:
            account: Account with encrypted credentials

        Returns:
            The stored account
        """
        with self._get_session() as session:
            session.add(
                AccountRow(
                    id=account.id,
                    owner_id=account.owner_id,
                    name=account.name,
                    market=account.market.value,
                    api_key_enc=account.api_key_enc,
                    api_secret_enc=account.api_secret_enc,
                    created_at=_now(),
                )
            )
            session.commit()
        logger.info(f"Account {account.id} added for owner {account.owner_id}")
        return account

    def find_account_by_id(self, account_id: str) -> Account | None:
        with self._get_session() as session:
            row = session.get(AccountRow, account_id)
            return self._account_from_row(row) if row else None

    def list_accounts(
        self,
        owner_id: str,
        account_ids: Iterable[str] | None = None,
    ) -> list[Account]:
        """List an owner's accounts.

        Args:
            owner_id: Owning user
            account_ids: Optional subset to restrict to

        Returns:
            Accounts ordered by creation
        """
        with self._get_session() as session:
            stmt = select(AccountRow).where(AccountRow.owner_id == owner_id)
            if account_ids is not None:
                stmt = stmt.where(AccountRow.id.in_(list(account_ids)))
            stmt = stmt.order_by(AccountRow.created_at)
            rows = session.execute(stmt).scalars().all()
            return [self._account_from_row(r) for r in rows]

    def account_exists(self, account_id: str) -> bool:
        with self._get_session() as session:
            return session.get(AccountRow, account_id) is not None

    def _account_from_row(self, row: AccountRow) -> Account:
        return Account(
            id=row.id,
            owner_id=row.owner_id,
            name=row.name,
            market=MarketMode(row.market),
            api_key_enc=row.api_key_enc,
            api_secret_enc=row.api_secret_enc,
        )

    # --- Trade Operations ---

    def find_trades_by_identity(
        self,
        account_id: str,
        order_ids: Iterable[str] = (),
        trade_ids: Iterable[str] = (),
        composite_windows: Iterable[TimeWindow] = (),
    ) -> list[TradeRecord]:
        """Find stored trades that may match incoming identities.

        Composite windows only match trades stored without any external id.

        Args:
            account_id: Owning account
            order_ids: External order ids to look up
            trade_ids: External execution ids to look up
            composite_windows: Time ranges covering id-less incoming trades

        Returns:
            Matching stored trades (deduplicated by id)
        """
        found: dict[str, TradeRecord] = {}
        order_list = sorted(set(order_ids))
        trade_list = sorted(set(trade_ids))

        with self._get_session() as session:
            for chunk in _chunks(order_list):
                stmt = select(TradeRow).where(
                    TradeRow.account_id == account_id, TradeRow.order_id.in_(chunk)
                )
                for row in session.execute(stmt).scalars():
                    found[row.id] = self._trade_from_row(row)

            for chunk in _chunks(trade_list):
                stmt = select(TradeRow).where(
                    TradeRow.account_id == account_id, TradeRow.trade_id.in_(chunk)
                )
                for row in session.execute(stmt).scalars():
                    found[row.id] = self._trade_from_row(row)

            for window in composite_windows:
                stmt = select(TradeRow).where(
                    TradeRow.account_id == account_id,
                    TradeRow.order_id.is_(None),
                    TradeRow.trade_id.is_(None),
                    TradeRow.executed_at >= window.start,
                    TradeRow.executed_at < window.end,
                )
                for row in session.execute(stmt).scalars():
                    found[row.id] = self._trade_from_row(row)

        return list(found.values())

    def insert_trades(self, records: Sequence[TradeRecord]) -> list[TradeRecord]:
        """Insert a batch of trades in one transaction.

        Args:
            records: New trades

        Returns:
            The trades with their assigned ids

        Raises:
            SQLAlchemyError: If the batch cannot be written; nothing is stored
        """
        stored = [r.with_id(r.id or _new_id()) for r in records]
        created = _now()
        with self._get_session() as session:
            session.add_all(
                TradeRow(id=r.id, created_at=created, **r.persisted_fields()) for r in stored
            )
            session.commit()
        return stored

    def insert_trade(self, record: TradeRecord) -> TradeRecord:
        return self.insert_trades([record])[0]

    def update_trade(self, trade_id: str, fields: dict[str, Any]) -> bool:
        """Update stored trade columns.

        Args:
            trade_id: Stored trade id
            fields: Column values to set

        Returns:
            True if the trade existed
        """
        with self._get_session() as session:
            row = session.get(TradeRow, trade_id)
            if row is None:
                return False
            for key, value in fields.items():
                setattr(row, key, value)
            session.commit()
            return True

    def list_trades(
        self,
        account_id: str,
        symbol: str | None = None,
        window: TimeWindow | None = None,
    ) -> list[TradeRecord]:
        """List trades in execution order."""
        with self._get_session() as session:
            stmt = select(TradeRow).where(TradeRow.account_id == account_id)
            if symbol:
                stmt = stmt.where(TradeRow.symbol == symbol)
            if window:
                stmt = stmt.where(
                    TradeRow.executed_at >= window.start, TradeRow.executed_at < window.end
                )
            stmt = stmt.order_by(TradeRow.executed_at, TradeRow.created_at)
            return [self._trade_from_row(r) for r in session.execute(stmt).scalars()]

    def list_trades_with_created(
        self,
        account_id: str,
        symbol: str | None = None,
    ) -> list[tuple[TradeRecord, datetime]]:
        """List trades paired with their insertion time."""
        with self._get_session() as session:
            stmt = select(TradeRow).where(TradeRow.account_id == account_id)
            if symbol:
                stmt = stmt.where(TradeRow.symbol == symbol)
            stmt = stmt.order_by(TradeRow.created_at)
            return [
                (self._trade_from_row(r), ensure_utc(r.created_at))
                for r in session.execute(stmt).scalars()
            ]

    def list_symbols(self, account_id: str) -> list[str]:
        """Distinct symbols with stored trades."""
        with self._get_session() as session:
            stmt = (
                select(TradeRow.symbol)
                .where(TradeRow.account_id == account_id)
                .distinct()
                .order_by(TradeRow.symbol)
            )
            return list(session.execute(stmt).scalars())

    def delete_trades(self, trade_ids: Sequence[str]) -> int:
        """Delete trades by id (maintenance only)."""
        deleted = 0
        with self._get_session() as session:
            for chunk in _chunks(list(trade_ids)):
                result = session.execute(delete(TradeRow).where(TradeRow.id.in_(chunk)))
                deleted += result.rowcount or 0
            session.commit()
        return deleted

    def _trade_from_row(self, row: TradeRow) -> TradeRecord:
        """Convert database row to domain TradeRecord."""
        return TradeRecord(
            id=row.id,
            account_id=row.account_id,
            exchange=row.exchange,
            market=MarketMode(row.market),
            symbol=row.symbol,
            side=TradeSide(row.side),
            quantity=row.quantity,
            price=row.price,
            fee_value=row.fee_value,
            fee_asset=row.fee_asset,
            fee_pct=row.fee_pct,
            realized_pnl=row.realized_pnl,
            order_id=row.order_id,
            trade_id=row.trade_id,
            order_type=row.order_type,
            executed_at=ensure_utc(row.executed_at),
        )

    # --- Cashflow Operations ---

    def find_cashflows_by_refs(
        self,
        account_id: str,
        refs: Iterable[str],
    ) -> list[CashflowRecord]:
        """Find stored cashflows by external reference.

        Rows with an empty external_ref are matched through the note
        marker and get their external_ref back-filled.

        Args:
            account_id: Owning account
            refs: External order numbers

        Returns:
            Matching cashflows with external_ref set
        """
        wanted = sorted(set(refs))
        found: dict[str, CashflowRecord] = {}

        with self._get_session() as session:
            for chunk in _chunks(wanted):
                stmt = select(CashflowRow).where(
                    CashflowRow.account_id == account_id,
                    CashflowRow.external_ref.in_(chunk),
                )
                for row in session.execute(stmt).scalars():
                    found.setdefault(row.external_ref, self._cashflow_from_row(row))

            missing = [ref for ref in wanted if ref not in found]
            backfilled = 0
            for ref in missing:
                row = self._find_legacy_cashflow_row(session, account_id, ref)
                if row is None:
                    continue
                row.external_ref = ref
                found[ref] = self._cashflow_from_row(row)
                backfilled += 1
            if backfilled:
                session.commit()
                logger.info(f"Back-filled external_ref on {backfilled} legacy cashflows")

        return list(found.values())

    def find_cashflow_by_note_substring(
        self,
        account_id: str,
        text: str,
    ) -> CashflowRecord | None:
        """Find a cashflow whose note contains text."""
        with self._get_session() as session:
            stmt = (
                select(CashflowRow)
                .where(
                    CashflowRow.account_id == account_id,
                    CashflowRow.note.contains(text, autoescape=True),
                )
                .limit(1)
            )
            row = session.execute(stmt).scalar_one_or_none()
            return self._cashflow_from_row(row) if row else None

    def _find_legacy_cashflow_row(
        self,
        session: Session,
        account_id: str,
        ref: str,
    ) -> CashflowRow | None:
        stmt = (
            select(CashflowRow)
            .where(
                CashflowRow.account_id == account_id,
                or_(CashflowRow.external_ref == "", CashflowRow.external_ref.is_(None)),
                CashflowRow.note.contains(note_marker(ref), autoescape=True),
            )
            .limit(1)
        )
        return session.execute(stmt).scalar_one_or_none()

    def insert_cashflow(self, record: CashflowRecord) -> CashflowRecord:
        """Insert one cashflow.

        Raises:
            SQLAlchemyError: If the row cannot be written
        """
        stored = record.with_id(record.id or _new_id())
        with self._get_session() as session:
            session.add(CashflowRow(id=stored.id, created_at=_now(), **stored.persisted_fields()))
            session.commit()
        return stored

    def update_cashflow(self, cashflow_id: str, fields: dict[str, Any]) -> bool:
        with self._get_session() as session:
            row = session.get(CashflowRow, cashflow_id)
            if row is None:
                return False
            for key, value in fields.items():
                setattr(row, key, value)
            session.commit()
            return True

    def list_cashflows(self, account_id: str) -> list[CashflowRecord]:
        with self._get_session() as session:
            stmt = (
                select(CashflowRow)
                .where(CashflowRow.account_id == account_id)
                .order_by(CashflowRow.at)
            )
            return [self._cashflow_from_row(r) for r in session.execute(stmt).scalars()]

    def _cashflow_from_row(self, row: CashflowRow) -> CashflowRecord:
        return CashflowRecord(
            id=row.id,
            account_id=row.account_id,
            type=CashflowType(row.type),
            asset=row.asset,
            amount=row.amount,
            at=ensure_utc(row.at),
            external_ref=row.external_ref or "",
            note=row.note or "",
        )

    # --- Sync Job Operations ---

    def create_job(self, job_id: str, owner_id: str, kind: str, message: str = "") -> JobState:
        now = _now()
        with self._get_session() as session:
            row = SyncJobRow(
                id=job_id,
                owner_id=owner_id,
                kind=kind,
                status=JobStatus.RUNNING.value,
                current_step=0,
                total_steps=0,
                message=message,
                result=None,
                error=None,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            session.commit()
            return self._job_from_row(row)

    def get_job(self, job_id: str) -> JobState | None:
        with self._get_session() as session:
            row = session.get(SyncJobRow, job_id)
            return self._job_from_row(row) if row else None

    def update_job(
        self,
        job_id: str,
        fields: dict[str, Any],
        only_if_running: bool = False,
    ) -> tuple[JobState | None, bool]:
        """Read-modify-write one job record.

        Args:
            job_id: Job to update
            fields: Column values to set (status may be a JobStatus)
            only_if_running: Leave terminal jobs untouched

        Returns:
            (state after the call, whether the update was applied);
            state is None if the job does not exist
        """
        with self._get_session() as session:
            row = session.get(SyncJobRow, job_id)
            if row is None:
                return None, False
            if only_if_running and row.status != JobStatus.RUNNING.value:
                return self._job_from_row(row), False
            for key, value in fields.items():
                if isinstance(value, JobStatus):
                    value = value.value
                setattr(row, key, value)
            row.updated_at = _now()
            session.commit()
            return self._job_from_row(row), True

    def list_jobs(
        self,
        owner_id: str | None = None,
        status: JobStatus | None = None,
        updated_before: datetime | None = None,
    ) -> list[JobState]:
        with self._get_session() as session:
            stmt = select(SyncJobRow)
            if owner_id is not None:
                stmt = stmt.where(SyncJobRow.owner_id == owner_id)
            if status is not None:
                stmt = stmt.where(SyncJobRow.status == status.value)
            if updated_before is not None:
                stmt = stmt.where(SyncJobRow.updated_at < updated_before)
            stmt = stmt.order_by(SyncJobRow.updated_at)
            return [self._job_from_row(r) for r in session.execute(stmt).scalars()]

    def delete_jobs(
        self,
        statuses: Iterable[JobStatus],
        updated_before: datetime,
    ) -> int:
        """Delete jobs in the given states last touched before a cutoff."""
        with self._get_session() as session:
            result = session.execute(
                delete(SyncJobRow).where(
                    SyncJobRow.status.in_([s.value for s in statuses]),
                    SyncJobRow.updated_at < updated_before,
                )
            )
            session.commit()
            return result.rowcount or 0

    def _job_from_row(self, row: SyncJobRow) -> JobState:
        return JobState(
            job_id=row.id,
            owner_id=row.owner_id,
            kind=row.kind,
            status=JobStatus(row.status),
            current_step=row.current_step or 0,
            total_steps=row.total_steps or 0,
            message=row.message or "",
            result=row.result,
            error=row.error,
            created_at=ensure_utc(row.created_at),
            updated_at=ensure_utc(row.updated_at),
        )

    # --- Utility Methods ---

    def close(self) -> None:
        """Close database connection."""
        self._engine.dispose()
        logger.info("Repository closed")
