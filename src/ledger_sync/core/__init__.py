"""Core application components."""

from ledger_sync.core.config import SyncConfig, load_config

__all__ = [
    "SyncConfig",
    "load_config",
]
