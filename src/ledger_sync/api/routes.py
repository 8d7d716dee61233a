"""FastAPI routes for sync jobs.

Provides REST API for:
- Starting exchange syncs and CSV imports (each returns a job id)
- Polling, cancelling and sweeping jobs
- Maintenance jobs and symbol discovery
- Balances, health and metrics

Caller identity comes from the X-User-Id header set by the upstream
authentication layer. The optional bearer credential is only forwarded
to the exchange relay.
"""

from __future__ import annotations

import logging
from datetime import UTC, date, datetime
from typing import TYPE_CHECKING, Annotated, Any

from fastapi import (
    APIRouter,
    Depends,
    File,
    Form,
    Header,
    HTTPException,
    Query,
    Response,
    UploadFile,
)
from pydantic import BaseModel, Field

from ledger_sync.domain.errors import (
    AccountNotFoundError,
    ConfigurationError,
    CredentialError,
    CsvFormatError,
    ExchangeError,
    JobAccessDenied,
    JobNotFoundError,
    JobStateError,
    LedgerSyncError,
)
from ledger_sync.domain.outcomes import SyncCounts
from ledger_sync.domain.records import Account, TimeWindow

if TYPE_CHECKING:
    from ledger_sync.core.services import SyncServices

logger = logging.getLogger(__name__)

DEFAULT_TRADE_SYNC_DAYS = 7
DEFAULT_CASHFLOW_SYNC_DAYS = 30

TRADE_IMPORT = "trade_import"

# API models


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    timestamp: str
    uptime_seconds: float
    running_jobs: int


class JobCreated(BaseModel):
    """Response for any request that starts a job."""

    job_id: str


class JobProgress(BaseModel):
    """Polling response."""

    job_id: str
    status: str
    percent: float
    current_step: int
    total_steps: int
    message: str
    result: dict[str, Any] | None = None
    error: str | None = None


class StuckJobInfo(BaseModel):
    job_id: str
    status: str
    message: str
    current_step: int
    total_steps: int
    updated_at: str
    minutes_stuck: int


class StuckJobsResponse(BaseModel):
    stuck_jobs: int
    jobs: list[StuckJobInfo]
    updated: int


class TradeSyncRequest(BaseModel):
    """Trade sync parameters; dates are inclusive UTC days."""

    start_date: date | None = None
    end_date: date | None = None
    symbols: list[str] | None = None
    account_ids: list[str] | None = None


class CashflowSyncRequest(BaseModel):
    start_date: date | None = None
    end_date: date | None = None
    account_ids: list[str] | None = None


class MaintenanceRequest(BaseModel):
    account_ids: list[str] | None = None
    symbol: str | None = None


class DiscoverRequest(BaseModel):
    search_all: bool = False
    account_ids: list[str] | None = None


class BalanceInfo(BaseModel):
    asset: str
    free: str
    locked: str


class BalancesResponse(BaseModel):
    account_id: str
    balances: list[BalanceInfo] = Field(default_factory=list)


# Error mapping


def http_error(err: LedgerSyncError) -> HTTPException:
    """Map a domain error raised before a job starts to an HTTP error."""
    if isinstance(err, (AccountNotFoundError, JobNotFoundError)):
        status = 404
    elif isinstance(err, JobAccessDenied):
        status = 403
    elif isinstance(err, JobStateError):
        status = 409
    elif isinstance(err, (CsvFormatError, CredentialError, ConfigurationError)):
        status = 400
    elif isinstance(err, ExchangeError):
        status = 502
    else:
        status = 500
    return HTTPException(status_code=status, detail=str(err))


def resolve_window(start: date | None, end: date | None, default_days: int) -> TimeWindow:
    """Turn optional request dates into a half-open UTC window.

    Raises:
        HTTPException: 400 if the range is empty or reversed
    """
    if start is None and end is None:
        return TimeWindow.last_days(default_days)
    today = datetime.now(UTC).date()
    end = end or today
    start = start or end
    try:
        return TimeWindow.from_dates(start, end)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"Invalid date range: {e}") from e


def current_user(x_user_id: Annotated[str | None, Header()] = None) -> str:
    """Caller identity set by the authentication layer in front of the service."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return x_user_id.strip()


def _bearer(authorization: str | None) -> str | None:
    if authorization and authorization.lower().startswith("bearer "):
        return authorization[7:].strip() or None
    return None


UserId = Annotated[str, Depends(current_user)]
Authorization = Annotated[str | None, Header()]


# Router factory


def create_sync_router(
    services: SyncServices,
    start_time: datetime | None = None,
) -> APIRouter:
    """Create the sync API router.

    Args:
        services: Wired application services
        start_time: Application start time

    Returns:
        FastAPI router
    """
    router = APIRouter(prefix="/api/v1", tags=["sync"])
    _start_time = start_time or datetime.now(UTC)

    repository = services.repository
    tracker = services.tracker
    runner = services.runner
    orchestrator = services.orchestrator
    maintenance = services.maintenance
    config = services.config

    def owned_accounts(owner_id: str, account_ids: list[str] | None) -> list[Account]:
        accounts = repository.list_accounts(owner_id, account_ids)
        if not accounts:
            raise HTTPException(status_code=404, detail="No accounts found")
        if account_ids is not None and len(accounts) != len(set(account_ids)):
            raise HTTPException(status_code=404, detail="Unknown account in account_ids")
        return accounts

    def owned_account(owner_id: str, account_id: str) -> Account:
        account = repository.find_account_by_id(account_id)
        if account is None:
            raise HTTPException(status_code=404, detail=f"Account not found: {account_id}")
        if account.owner_id != owner_id:
            raise HTTPException(status_code=403, detail="Account belongs to another user")
        return account

    async def read_upload(file: UploadFile) -> str:
        raw = await file.read()
        if not raw:
            raise HTTPException(status_code=400, detail="Uploaded file is empty")
        return raw.decode("utf-8", errors="replace")

    @router.get("/health", response_model=HealthResponse)
    async def health_check() -> HealthResponse:
        """Health check endpoint."""
        now = datetime.now(UTC)
        return HealthResponse(
            status="healthy",
            timestamp=now.isoformat(),
            uptime_seconds=(now - _start_time).total_seconds(),
            running_jobs=runner.active_tasks,
        )

    @router.get("/metrics")
    async def metrics() -> Response:
        """Prometheus exposition."""
        return Response(
            content=services.metrics.get_metrics(),
            media_type="text/plain; version=0.0.4; charset=utf-8",
        )

    # --- Exchange syncs ---

    @router.post("/sync/trades", response_model=JobCreated, status_code=202)
    async def sync_trades(
        request: TradeSyncRequest,
        user_id: UserId,
        authorization: Authorization = None,
    ) -> JobCreated:
        """Start a trade sync over the caller's accounts."""
        window = resolve_window(request.start_date, request.end_date, DEFAULT_TRADE_SYNC_DAYS)
        accounts = owned_accounts(user_id, request.account_ids)
        symbols = request.symbols or list(config.default_symbols)
        bearer = _bearer(authorization)
        account_ids = [a.id for a in accounts]

        state = runner.start(
            user_id,
            "trade_sync",
            lambda job_id: orchestrator.sync_all_trades(
                job_id, user_id, window, symbols, account_ids, bearer
            ),
            message=f"Queued trade sync for {len(accounts)} accounts",
        )
        return JobCreated(job_id=state.job_id)

    @router.post("/sync/cashflows", response_model=JobCreated, status_code=202)
    async def sync_cashflows(
        request: CashflowSyncRequest,
        user_id: UserId,
        authorization: Authorization = None,
    ) -> JobCreated:
        """Start a deposit and withdrawal sync over the caller's accounts."""
        window = resolve_window(request.start_date, request.end_date, DEFAULT_CASHFLOW_SYNC_DAYS)
        accounts = owned_accounts(user_id, request.account_ids)
        bearer = _bearer(authorization)
        account_ids = [a.id for a in accounts]

        state = runner.start(
            user_id,
            "cashflow_sync",
            lambda job_id: orchestrator.sync_all_cashflows(
                job_id, user_id, window, account_ids, bearer
            ),
            message=f"Queued cashflow sync for {len(accounts)} accounts",
        )
        return JobCreated(job_id=state.job_id)

    # --- CSV imports ---

    @router.post("/imports/trades", response_model=JobCreated, status_code=202)
    async def import_trades(
        user_id: UserId,
        file: Annotated[UploadFile, File()],
        account_id: Annotated[str, Form()],
        job_id: Annotated[str | None, Form()] = None,
    ) -> JobCreated:
        """Import a trade export; pass job_id to resume an interrupted import."""
        account = owned_account(user_id, account_id)
        text = await read_upload(file)
        try:
            rows = orchestrator.parse_trade_csv(account, text)
            if job_id:
                previous = tracker.authorize(job_id, user_id)
                if previous.kind != TRADE_IMPORT:
                    raise JobStateError(f"Job {job_id} is not a trade import", job_id)
                state = tracker.resume(job_id, user_id)
                prior = SyncCounts.from_dict(state.result)
                offset = state.current_step
                runner.launch(
                    state,
                    lambda jid: orchestrator.import_trades(jid, account.id, rows, offset, prior),
                )
                return JobCreated(job_id=state.job_id)
        except LedgerSyncError as e:
            raise http_error(e) from e

        state = runner.start(
            user_id,
            TRADE_IMPORT,
            lambda jid: orchestrator.import_trades(jid, account.id, rows),
            message=f"Queued import of {len(rows)} rows",
        )
        return JobCreated(job_id=state.job_id)

    @router.post("/imports/cashflows", response_model=JobCreated, status_code=202)
    async def import_cashflows(
        user_id: UserId,
        file: Annotated[UploadFile, File()],
        account_id: Annotated[str, Form()],
    ) -> JobCreated:
        """Import a deposit and withdrawal export."""
        account = owned_account(user_id, account_id)
        text = await read_upload(file)
        try:
            rows = orchestrator.parse_cashflow_csv(account, text)
        except CsvFormatError as e:
            raise http_error(e) from e

        state = runner.start(
            user_id,
            "cashflow_import",
            lambda jid: orchestrator.import_cashflows(jid, account.id, rows),
            message=f"Queued import of {len(rows)} rows",
        )
        return JobCreated(job_id=state.job_id)

    # --- Jobs ---

    @router.get("/jobs/stuck", response_model=StuckJobsResponse)
    async def stuck_jobs(
        user_id: UserId,
        include_all: Annotated[bool, Query(alias="all")] = False,
    ) -> StuckJobsResponse:
        """List the caller's running jobs.

        By default only jobs silent for longer than the stuck threshold are
        returned, and they are moved to error. With all=true every running
        job is listed and nothing changes.
        """
        now = datetime.now(UTC)
        if include_all:
            states = tracker.list_running(user_id)
            swept = 0
        else:
            states = tracker.sweep_stuck(owner_id=user_id, now=now)
            swept = len(states)
        return StuckJobsResponse(
            stuck_jobs=len(states),
            jobs=[
                StuckJobInfo(
                    job_id=s.job_id,
                    status=s.status.value,
                    message=s.message,
                    current_step=s.current_step,
                    total_steps=s.total_steps,
                    updated_at=s.updated_at.isoformat(),
                    minutes_stuck=int((now - s.updated_at).total_seconds() // 60),
                )
                for s in states
            ],
            updated=swept,
        )

    @router.get("/jobs/{job_id}", response_model=JobProgress)
    async def get_job(job_id: str, user_id: UserId) -> JobProgress:
        """Poll a job's progress."""
        try:
            state = tracker.authorize(job_id, user_id)
        except LedgerSyncError as e:
            raise http_error(e) from e
        return JobProgress(**state.to_dict())

    @router.post("/jobs/{job_id}/cancel", response_model=JobProgress)
    async def cancel_job(job_id: str, user_id: UserId) -> JobProgress:
        """Force a job into a terminal state."""
        try:
            state = tracker.cancel(job_id, user_id)
        except LedgerSyncError as e:
            raise http_error(e) from e
        return JobProgress(**state.to_dict())

    # --- Maintenance ---

    @router.post("/maintenance/recalculate-pnl", response_model=JobCreated, status_code=202)
    async def recalculate_pnl(request: MaintenanceRequest, user_id: UserId) -> JobCreated:
        """Replay stored trades and rewrite realized PnL."""
        owned_accounts(user_id, request.account_ids)
        state = runner.start(
            user_id,
            "recalculate_pnl",
            lambda jid: maintenance.recalculate_pnl(jid, user_id, request.account_ids),
        )
        return JobCreated(job_id=state.job_id)

    @router.post("/maintenance/deduplicate", response_model=JobCreated, status_code=202)
    async def deduplicate(request: MaintenanceRequest, user_id: UserId) -> JobCreated:
        """Delete duplicate stored trades."""
        owned_accounts(user_id, request.account_ids)
        state = runner.start(
            user_id,
            "deduplicate",
            lambda jid: maintenance.deduplicate_trades(
                jid, user_id, request.account_ids, request.symbol
            ),
        )
        return JobCreated(job_id=state.job_id)

    @router.post("/symbols/discover", response_model=JobCreated, status_code=202)
    async def discover_symbols(
        request: DiscoverRequest,
        user_id: UserId,
        authorization: Authorization = None,
    ) -> JobCreated:
        """Probe which symbols each account has traded."""
        owned_accounts(user_id, request.account_ids)
        bearer = _bearer(authorization)
        state = runner.start(
            user_id,
            "discover_symbols",
            lambda jid: orchestrator.discover_symbols(
                jid, user_id, request.search_all, request.account_ids, bearer
            ),
        )
        return JobCreated(job_id=state.job_id)

    # --- Balances ---

    @router.get("/accounts/{account_id}/balances", response_model=BalancesResponse)
    async def get_balances(
        account_id: str,
        user_id: UserId,
        authorization: Authorization = None,
    ) -> BalancesResponse:
        """Current non-zero balances straight from the exchange."""
        account = owned_account(user_id, account_id)
        try:
            balances = await orchestrator.fetch_balances(account, _bearer(authorization))
        except LedgerSyncError as e:
            logger.error(f"Balance fetch failed for account {account_id}: {e}")
            raise http_error(e) from e
        return BalancesResponse(
            account_id=account_id,
            balances=[
                BalanceInfo(asset=b.asset, free=str(b.free), locked=str(b.locked))
                for b in balances
            ],
        )

    return router
