from __future__ import annotations

from fastapi import Request

from walletops.core.config import Settings
from walletops.jobs.polling import LongPollConfig, LongPollingService
from walletops.jobs.service import JobManager
from walletops.operations.service import OperationService
from walletops.wallets.service import WalletService


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_job_manager(request: Request) -> JobManager:
    return request.app.state.job_manager


def get_operation_service(request: Request) -> OperationService:
    return request.app.state.operation_service


def get_polling_service(request: Request) -> LongPollingService:
    return request.app.state.polling_service


def get_wallet_service(request: Request) -> WalletService:
    return request.app.state.wallet_service


def poll_config(settings: Settings, timeout_ms: int | None = None, poll_interval_ms: int | None = None) -> LongPollConfig:
    return LongPollConfig(
        timeout_ms=int(settings.poll_timeout_ms if timeout_ms is None else timeout_ms),
        poll_interval_ms=int(settings.poll_interval_ms if poll_interval_ms is None else poll_interval_ms),
    )
