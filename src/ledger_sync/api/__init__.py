"""HTTP API for starting and polling sync jobs."""

from ledger_sync.api.app import create_app
from ledger_sync.api.routes import create_sync_router

__all__ = ["create_app", "create_sync_router"]
