"""Exchange client factory.

Provides configuration-driven client construction, so the exchange
integration is selected by configuration rather than code changes.
A client is built per account: credentials are decrypted only when the
direct signed transport is used.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from ledger_sync.domain.errors import ConfigurationError
from ledger_sync.domain.records import Account
from ledger_sync.exchange.base import ExchangeClient, ExchangeLimits
from ledger_sync.exchange.binance.adapter import BinanceExchangeClient
from ledger_sync.exchange.binance.auth import BinanceSigner
from ledger_sync.exchange.binance.rate_limiter import RateLimiter
from ledger_sync.exchange.binance.rest import BinanceRestClient, RelayRestClient
from ledger_sync.exchange.mock.adapter import MockExchangeClient

if TYPE_CHECKING:
    from ledger_sync.core.config import ExchangeSettings
    from ledger_sync.monitoring.metrics import MetricsCollector
    from ledger_sync.vault.credentials import CredentialVault

logger = logging.getLogger(__name__)


class ExchangeType(str, Enum):
    """Supported exchange integrations."""

    BINANCE = "binance"
    MOCK = "mock"


@dataclass
class ClientContext:
    """Everything a client builder needs for one account.

    Attributes:
        account: Account the client is bound to
        settings: Exchange configuration section
        vault: Credential vault for direct signing
        bearer: Caller's bearer credential, forwarded to the relay only
        metrics: Optional metrics collector
    """

    account: Account
    settings: ExchangeSettings
    vault: CredentialVault | None = None
    bearer: str | None = None
    metrics: MetricsCollector | None = None

    @property
    def limits(self) -> ExchangeLimits:
        return ExchangeLimits(
            trade_window_hours=self.settings.trade_window_hours,
            transfer_window_days=self.settings.transfer_window_days,
            page_limit=self.settings.page_limit,
        )


ClientBuilder = Callable[[ClientContext], ExchangeClient]

# Registry of client builders
_client_builders: dict[ExchangeType, ClientBuilder] = {}


def register_client(exchange_type: ExchangeType, builder: ClientBuilder) -> None:
    """Register a client builder for an exchange type.

    Args:
        exchange_type: The type of exchange
        builder: Function that creates a client from a context
    """
    _client_builders[exchange_type] = builder


def create_client(exchange_type: ExchangeType, context: ClientContext) -> ExchangeClient:
    """Create an exchange client for one account.

    Args:
        exchange_type: Which integration to use
        context: Account, settings and secrets

    Returns:
        Configured exchange client

    Raises:
        ConfigurationError: If no builder is registered for the type
        CredentialError: If direct signing needs credentials that cannot be decrypted
    """
    builder = _client_builders.get(exchange_type)
    if builder is None:
        raise ConfigurationError(
            f"No client registered for exchange type: {exchange_type.value}",
            field="exchange.name",
        )
    return builder(context)


def build_binance_client(context: ClientContext) -> BinanceExchangeClient:
    """Build a Binance client, choosing relay or direct transport.

    The relay is used when one is configured and the caller supplied a
    bearer credential; otherwise requests are signed locally.
    """
    settings = context.settings
    limiter = RateLimiter(rate=settings.read_rate_per_second)

    if settings.relay_url and context.bearer:
        logger.debug(f"Using relay transport for account {context.account.id}")
        transport: RelayRestClient | BinanceRestClient = RelayRestClient(
            relay_url=settings.relay_url,
            bearer=context.bearer,
            account_id=context.account.id,
            read_limiter=limiter,
            public_spot_base_url=settings.spot_base_url,
            public_futures_base_url=settings.futures_base_url,
            timeout_seconds=settings.request_timeout_seconds,
            metrics=context.metrics,
        )
    else:
        if context.vault is None:
            raise ConfigurationError(
                "Direct exchange access requires a credential vault",
                field="vault.master_key",
            )
        credentials = context.vault.decrypt_credentials(context.account)
        transport = BinanceRestClient(
            signer=BinanceSigner(credentials, recv_window_ms=settings.recv_window_ms),
            read_limiter=limiter,
            spot_base_url=settings.spot_base_url,
            futures_base_url=settings.futures_base_url,
            timeout_seconds=settings.request_timeout_seconds,
            metrics=context.metrics,
        )

    return BinanceExchangeClient(transport, context.account.market, context.limits)


class ExchangeClientFactory:
    """Builds per-account clients from application configuration."""

    def __init__(
        self,
        settings: ExchangeSettings,
        vault: CredentialVault | None = None,
        metrics: MetricsCollector | None = None,
    ) -> None:
        try:
            self._exchange_type = ExchangeType(settings.name)
        except ValueError as err:
            raise ConfigurationError(
                f"Unknown exchange type: {settings.name}", field="exchange.name"
            ) from err
        self._settings = settings
        self._vault = vault
        self._metrics = metrics

    def __call__(self, account: Account, bearer: str | None = None) -> ExchangeClient:
        """Create a client for an account.

        Raises:
            CredentialError: If the account's credentials cannot be decrypted
        """
        context = ClientContext(
            account=account,
            settings=self._settings,
            vault=self._vault,
            bearer=bearer,
            metrics=self._metrics,
        )
        return create_client(self._exchange_type, context)


register_client(ExchangeType.BINANCE, build_binance_client)
register_client(ExchangeType.MOCK, lambda context: MockExchangeClient(context.limits))
