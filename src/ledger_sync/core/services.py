"""Application wiring.

Builds the repository, tracker, runner, orchestrator and maintenance
services from configuration so the API and the command line share one
assembly.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING

from ledger_sync.core.config import SyncConfig
from ledger_sync.db.repository import LedgerRepository
from ledger_sync.domain.errors import ConfigurationError
from ledger_sync.exchange.factory import ExchangeClientFactory
from ledger_sync.jobs.runner import JobRunner
from ledger_sync.jobs.tracker import JobTracker
from ledger_sync.monitoring.metrics import MetricsCollector
from ledger_sync.reconcile.maintenance import LedgerMaintenance
from ledger_sync.reconcile.orchestrator import ReconciliationOrchestrator
from ledger_sync.vault.credentials import CredentialVault

if TYPE_CHECKING:
    from ledger_sync.reconcile.orchestrator import ClientFactory

logger = logging.getLogger(__name__)


@dataclass
class SyncServices:
    """Everything a request handler or CLI command needs."""

    config: SyncConfig
    repository: LedgerRepository
    tracker: JobTracker
    runner: JobRunner
    orchestrator: ReconciliationOrchestrator
    maintenance: LedgerMaintenance
    metrics: MetricsCollector
    vault: CredentialVault | None = None


def build_vault(config: SyncConfig) -> CredentialVault | None:
    """Create the credential vault, or None when no master key is configured.

    Without a vault only relay transport is available.
    """
    try:
        return CredentialVault(config.vault.resolve_master_key())
    except ConfigurationError as e:
        logger.warning(f"Credential vault disabled: {e}")
        return None


def build_services(
    config: SyncConfig,
    repository: LedgerRepository | None = None,
    client_factory: ClientFactory | None = None,
    vault: CredentialVault | None = None,
    metrics: MetricsCollector | None = None,
) -> SyncServices:
    """Assemble the application services.

    Args:
        config: Application configuration
        repository: Pre-built repository (defaults to config.database_url)
        client_factory: Exchange client factory override
        vault: Credential vault override
        metrics: Metrics collector override

    Returns:
        Wired services
    """
    metrics = metrics or MetricsCollector()
    repository = repository or LedgerRepository(config.database_url)
    vault = vault or build_vault(config)
    tracker = JobTracker(
        repository,
        retention=timedelta(minutes=config.jobs.retention_minutes),
        stuck_after=timedelta(minutes=config.jobs.stuck_after_minutes),
    )
    factory = client_factory or ExchangeClientFactory(config.exchange, vault=vault, metrics=metrics)
    orchestrator = ReconciliationOrchestrator(repository, tracker, factory, config, metrics)
    return SyncServices(
        config=config,
        repository=repository,
        tracker=tracker,
        runner=JobRunner(tracker, metrics),
        orchestrator=orchestrator,
        maintenance=LedgerMaintenance(repository, tracker),
        metrics=metrics,
        vault=vault,
    )
