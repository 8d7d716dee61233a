"""FastAPI application factory."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ledger_sync.api.routes import create_sync_router

if TYPE_CHECKING:
    from ledger_sync.core.services import SyncServices

logger = logging.getLogger(__name__)


def create_app(services: SyncServices, housekeeping: bool = True) -> FastAPI:
    """Create FastAPI application.

    Args:
        services: Wired application services
        housekeeping: Run the periodic stuck-job sweep and purge loop

    Returns:
        FastAPI application
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if housekeeping:
            services.runner.start_housekeeping(services.config.jobs.purge_interval_seconds)
        logger.info("Ledger sync API started")
        try:
            yield
        finally:
            await services.runner.shutdown()
            logger.info("Ledger sync API stopped")

    app = FastAPI(
        title="Ledger Sync API",
        description="Exchange trade and cashflow reconciliation jobs",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(create_sync_router(services, start_time=datetime.now(UTC)))
    app.state.services = services
    return app
