"""Tests for the error hierarchy."""

from ledger_sync.domain.errors import (
    AccountNotFoundError,
    ConfigurationError,
    CredentialError,
    ExchangeError,
    JobAccessDenied,
    JobCancelled,
    JobError,
    JobNotFoundError,
    LedgerSyncError,
    UnknownInstrumentError,
)


class TestLedgerSyncError:
    """Tests for the base error."""

    def test_context_defaults_to_empty(self) -> None:
        err = LedgerSyncError("boom")

        assert str(err) == "boom"
        assert err.context == {}

    def test_context_kept(self) -> None:
        assert LedgerSyncError("boom", {"symbol": "BTCUSDT"}).context == {"symbol": "BTCUSDT"}


class TestExchangeErrors:
    """Tests for exchange errors."""

    def test_exchange_error_fields(self) -> None:
        err = ExchangeError("bad gateway", exchange="binance", status_code=502)

        assert err.exchange == "binance"
        assert err.status_code == 502

    def test_unknown_instrument_is_exchange_error(self) -> None:
        """Should be catchable as a plain exchange error."""
        err = UnknownInstrumentError("FOOUSDT", exchange="binance")

        assert isinstance(err, ExchangeError)
        assert err.symbol == "FOOUSDT"
        assert err.status_code == 400
        assert "FOOUSDT" in str(err)


class TestAccountAndJobErrors:
    """Tests for account, credential and job errors."""

    def test_account_not_found(self) -> None:
        err = AccountNotFoundError("acct-9")
        assert err.account_id == "acct-9"
        assert "acct-9" in str(err)

    def test_credential_error(self) -> None:
        assert CredentialError("cannot decrypt", account_id="acct-1").account_id == "acct-1"

    def test_job_errors_carry_id(self) -> None:
        for err in (JobNotFoundError("j1"), JobAccessDenied("j1"), JobCancelled("j1")):
            assert isinstance(err, JobError)
            assert err.job_id == "j1"

    def test_configuration_field(self) -> None:
        err = ConfigurationError("missing key", field="vault.master_key")
        assert err.field == "vault.master_key"
        assert isinstance(err, LedgerSyncError)
