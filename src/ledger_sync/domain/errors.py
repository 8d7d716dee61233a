"""Exception hierarchy for ledger synchronization errors.

All errors inherit from LedgerSyncError so callers can catch broad
categories. Each error carries structured context for logging.

Error categories:
- ExchangeError: Exchange transport failures (retryable per sub-window)
- CredentialError / AccountNotFoundError: Fatal for one account
- Job*: Job lookup, ownership and lifecycle problems
- CsvFormatError: An uploaded file is unusable as a whole
- ConfigurationError: Invalid configuration
"""

from __future__ import annotations

from typing import Any


class LedgerSyncError(Exception):
    """Base exception for all ledger-sync errors."""

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        """Initialize with message and optional context.

        Args:
            message: Human-readable error description
            context: Additional structured data for logging/debugging
        """
        super().__init__(message)
        self.context = context or {}


class ExchangeError(LedgerSyncError):
    """Error talking to the exchange or the relay.

    Raised when:
    - The exchange is unreachable
    - A request returns a non-success status
    - A response body cannot be decoded
    """

    def __init__(
        self,
        message: str,
        exchange: str | None = None,
        status_code: int | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        """Initialize with message, exchange name and HTTP status.

        Args:
            message: Human-readable error description
            exchange: Name of the exchange (e.g., "binance")
            status_code: HTTP status, when a response was received
            context: Additional structured data
        """
        super().__init__(message, context)
        self.exchange = exchange
        self.status_code = status_code


class UnknownInstrumentError(ExchangeError):
    """The exchange does not know the requested symbol.

    Callers treat this as "no activity for the symbol", not a failure.
    """

    def __init__(
        self,
        symbol: str | None,
        exchange: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            f"Unknown instrument: {symbol}", exchange, status_code=400, context=context
        )
        self.symbol = symbol


class CredentialError(LedgerSyncError):
    """Stored credentials could not be decrypted."""

    def __init__(
        self,
        message: str,
        account_id: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, context)
        self.account_id = account_id


class AccountNotFoundError(LedgerSyncError):
    """Account does not exist or is not owned by the caller."""

    def __init__(self, account_id: str, context: dict[str, Any] | None = None) -> None:
        """Initialize with account ID.

        Args:
            account_id: The account that was not found
            context: Additional structured data
        """
        super().__init__(f"Account not found: {account_id}", context)
        self.account_id = account_id


class JobError(LedgerSyncError):
    """Base class for job-related errors."""

    def __init__(
        self,
        message: str,
        job_id: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, context)
        self.job_id = job_id


class JobNotFoundError(JobError):
    """No job with this ID exists (or it was purged)."""

    def __init__(self, job_id: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(f"Job not found: {job_id}", job_id, context)


class JobAccessDenied(JobError):
    """The caller does not own the job."""

    def __init__(self, job_id: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(f"Access denied to job: {job_id}", job_id, context)


class JobStateError(JobError):
    """Requested transition is not allowed from the job's current state."""


class JobCancelled(JobError):
    """The job was moved to a terminal state while work was in flight.

    Raised inside a running task when it observes the forced-terminal
    state; the task stops without persisting further records.
    """

    def __init__(self, job_id: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(f"Job cancelled: {job_id}", job_id, context)


class CsvFormatError(LedgerSyncError):
    """An uploaded CSV file cannot be processed at all.

    Raised when:
    - The file is empty or has no header
    - The header contains none of the required columns
    - There are no data rows
    """


class ConfigurationError(LedgerSyncError):
    """Invalid configuration.

    Raised when:
    - Configuration file is malformed
    - Required configuration values are missing
    - Configuration values fail validation
    """

    def __init__(
        self,
        message: str,
        field: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        """Initialize with field information.

        Args:
            message: Human-readable error description
            field: Name of the configuration field with the issue
            context: Additional structured data
        """
        super().__init__(message, context)
        self.field = field
