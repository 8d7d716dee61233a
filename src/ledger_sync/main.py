"""Entry point for the ledger sync service.

Usage:
    ledger-sync serve --config config/ledger_sync.yaml
    ledger-sync add-account --owner alice --name main --api-key KEY --api-secret SECRET
    ledger-sync purge-jobs
"""

from __future__ import annotations

import argparse
import logging
import sys
import uuid

from ledger_sync.core.config import SyncConfig, load_config
from ledger_sync.core.services import build_services
from ledger_sync.domain.errors import ConfigurationError, LedgerSyncError
from ledger_sync.domain.records import Account
from ledger_sync.domain.types import MarketMode


def setup_logging(level: str, log_file: str | None = None) -> None:
    """Configure logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional file to write logs to
    """
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]

    if log_file:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        handlers=handlers,
    )

    # Reduce noise from third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Exchange ledger sync service",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument(
        "--config",
        "-c",
        type=str,
        help="Path to configuration file",
    )

    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (overrides config)",
    )

    parser.add_argument(
        "--log-file",
        type=str,
        help="Log file path",
    )

    commands = parser.add_subparsers(dest="command", required=True)

    serve = commands.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", type=str, help="Bind address (overrides config)")
    serve.add_argument("--port", type=int, help="Bind port (overrides config)")

    account = commands.add_parser("add-account", help="Store encrypted exchange credentials")
    account.add_argument("--owner", required=True, help="Owning user id")
    account.add_argument("--name", required=True, help="Display name")
    account.add_argument(
        "--market",
        choices=[m.value for m in MarketMode],
        default=MarketMode.SPOT.value,
        help="Market mode",
    )
    account.add_argument("--api-key", required=True, help="Exchange API key")
    account.add_argument("--api-secret", required=True, help="Exchange API secret")

    commands.add_parser("purge-jobs", help="Sweep stuck jobs and purge expired ones")

    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> SyncConfig:
    """Build configuration from file and command line overrides."""
    config = load_config(args.config)

    if args.log_level:
        config.log_level = args.log_level

    if args.log_file:
        config.log_file = args.log_file

    if getattr(args, "host", None):
        config.api_host = args.host

    if getattr(args, "port", None):
        config.api_port = args.port

    return config


def serve(config: SyncConfig) -> int:
    """Run the API server until interrupted."""
    import uvicorn

    from ledger_sync.api.app import create_app

    services = build_services(config)
    app = create_app(services)
    try:
        uvicorn.run(app, host=config.api_host, port=config.api_port, log_config=None)
    finally:
        services.repository.close()
    return 0


def add_account(config: SyncConfig, args: argparse.Namespace) -> int:
    """Encrypt and store a credential set; prints the new account id."""
    logger = logging.getLogger(__name__)
    services = build_services(config)
    try:
        if services.vault is None:
            raise ConfigurationError("A master key is required to store credentials")
        account = Account(
            id=uuid.uuid4().hex,
            owner_id=args.owner,
            name=args.name,
            market=MarketMode(args.market),
            api_key_enc=services.vault.encrypt(args.api_key),
            api_secret_enc=services.vault.encrypt(args.api_secret),
        )
        services.repository.add_account(account)
    except LedgerSyncError as e:
        logger.error(f"Could not add account: {e}")
        return 1
    finally:
        services.repository.close()

    logger.info(f"Added account {account.name} for {account.owner_id}")
    print(account.id)
    return 0


def purge_jobs(config: SyncConfig) -> int:
    """One-off housekeeping pass."""
    logger = logging.getLogger(__name__)
    services = build_services(config)
    try:
        swept = services.tracker.sweep_stuck()
        purged = services.tracker.purge_terminal()
    finally:
        services.repository.close()
    logger.info(f"Marked {len(swept)} stuck jobs as failed, purged {purged} expired jobs")
    return 0


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    # Build configuration
    try:
        config = build_config(args)
    except Exception as e:
        print(f"Error loading configuration: {e}", file=sys.stderr)
        return 1

    # Set up logging
    setup_logging(config.log_level, config.log_file)

    logger = logging.getLogger(__name__)
    logger.info(f"Ledger sync {args.command}")
    logger.info(f"Database: {config.database_url}")

    if args.command == "serve":
        return serve(config)
    if args.command == "add-account":
        return add_account(config, args)
    return purge_jobs(config)


if __name__ == "__main__":
    sys.exit(main())
