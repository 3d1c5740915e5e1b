from __future__ import annotations

import logging
import time
from typing import Any, Callable

from pydantic import TypeAdapter, ValidationError

from walletops.core.config import Settings
from walletops.jobs.service import JobCancelledError, JobContext, JobManager
from walletops.jobs.types import JobCompletion, JobKind
from walletops.ledger.client import LedgerClientProtocol
from walletops.operations.accounts import (
    CloseAccountsOperation,
    CloseTokenAccountOperation,
    CloseTokenAccountsBatchOperation,
)
from walletops.operations.base import DetachedProgress, OperationValidationError, WalletOperation
from walletops.operations.burn import BurnEachTokensOperation, BurnTokensOperation
from walletops.operations.redistribute import (
    DistributeSolOperation,
    RefundSpecificAmountOperation,
    RefundWalletsOperation,
    RefundWalletsSpecificAmountOperation,
)
from walletops.operations.types import OperationParams, OperationReport

logger = logging.getLogger(__name__)

OPERATIONS: dict[JobKind, type[WalletOperation]] = {
    JobKind.REFUND_WALLETS: RefundWalletsOperation,
    JobKind.REFUND_WALLETS_SPECIFIC_AMOUNT: RefundWalletsSpecificAmountOperation,
    JobKind.REFUND_SPECIFIC_AMOUNT: RefundSpecificAmountOperation,
    JobKind.DISTRIBUTE_SOL: DistributeSolOperation,
    JobKind.CLOSE_ACCOUNTS: CloseAccountsOperation,
    JobKind.CLOSE_TOKEN_ACCOUNT: CloseTokenAccountOperation,
    JobKind.CLOSE_TOKEN_ACCOUNTS_BATCH: CloseTokenAccountsBatchOperation,
    JobKind.BURN_TOKENS: BurnTokensOperation,
    JobKind.BURN_EACH_TOKENS: BurnEachTokensOperation,
}

_PARAMS_ADAPTER: TypeAdapter[Any] = TypeAdapter(OperationParams)


def parse_operation(kind: JobKind | str, payload: dict[str, Any]) -> Any:
    """Build typed parameters for ``kind`` from a request body.

    The kind given by the caller wins over any ``kind`` key in the body, so a
    body cannot smuggle in a different operation than the one addressed.
    """
    try:
        token = JobKind(kind)
    except ValueError as exc:
        allowed = ", ".join(item.value for item in JobKind)
        raise OperationValidationError(f"Unknown operation kind: {kind}. Allowed: {allowed}") from exc
    body = dict(payload)
    body["kind"] = token.value
    try:
        return _PARAMS_ADAPTER.validate_python(body)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in exc.errors()
        )
        raise OperationValidationError(f"Invalid {token.value} request: {problems}") from exc


class OperationService:
    def __init__(
        self,
        settings: Settings,
        manager: JobManager,
        ledger: LedgerClientProtocol,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._settings = settings
        self._manager = manager
        self._ledger = ledger
        self._sleep = sleep

    def operation_for(self, kind: JobKind) -> WalletOperation:
        return OPERATIONS[kind](self._settings, self._ledger, sleep=self._sleep)

    def prepare(self, params: Any) -> WalletOperation:
        operation = self.operation_for(params.job_kind)
        operation.validate(params)
        return operation

    async def run_sync(self, params: Any) -> OperationReport:
        operation = self.prepare(params)
        logger.info("Running %s synchronously", params.kind)
        return await self._manager.run_blocking(operation.run, params, DetachedProgress())

    def spawn(self, params: Any) -> str:
        operation = self.prepare(params)

        async def work(context: JobContext) -> JobCompletion:
            context.raise_if_cancelled()
            report = await context.run_blocking(operation.run, params, context)
            context.manager.set_job_result(context.job_id, report.to_payload())
            if report.cancelled:
                raise JobCancelledError(report.summary())
            return report.completion()

        job_id = self._manager.spawn_job(params.job_kind, work)
        logger.info("Spawned %s as job %s", params.kind, job_id)
        return job_id
