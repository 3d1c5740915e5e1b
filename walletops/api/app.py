from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import Callable

from fastapi import FastAPI

from walletops.api.routes.health import router as health_router
from walletops.api.routes.jobs import router as jobs_router
from walletops.api.routes.operations import router as operations_router
from walletops.api.routes.wallets import router as wallets_router
from walletops.core.config import Settings, get_settings
from walletops.core.logging import configure_logging
from walletops.jobs.polling import LongPollingService
from walletops.jobs.service import JobManager
from walletops.ledger.client import LedgerClient, LedgerClientProtocol
from walletops.operations.service import OperationService
from walletops.wallets.service import WalletService


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    configure_logging(settings.log_level)
    ledger: LedgerClientProtocol = app.state.ledger or LedgerClient(settings)
    manager = JobManager(settings)
    app.state.job_manager = manager
    app.state.operation_service = OperationService(settings, manager, ledger, sleep=app.state.sleep)
    app.state.polling_service = LongPollingService(manager)
    app.state.wallet_service = WalletService(ledger)
    try:
        yield
    finally:
        manager.shutdown()


def create_app(
    settings: Settings | None = None,
    *,
    ledger: LedgerClientProtocol | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> FastAPI:
    settings = settings or get_settings()
    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.state.settings = settings
    app.state.ledger = ledger
    app.state.sleep = sleep
    app.include_router(health_router, prefix="/api/v1")
    app.include_router(jobs_router, prefix="/api/v1")
    app.include_router(operations_router, prefix="/api/v1")
    app.include_router(wallets_router, prefix="/api/v1")
    return app
