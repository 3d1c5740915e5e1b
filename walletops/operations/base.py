from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass, field
from typing import Callable, Generic, Protocol, Sequence, TypeVar

from solders.hash import Hash
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.transaction import Transaction

from walletops.core.config import Settings
from walletops.core.keys import KeyDecodeError, decode_keypair, decode_pubkey
from walletops.jobs.types import CancellationToken, JobKind
from walletops.ledger.client import LedgerClientProtocol, TokenAccount
from walletops.ledger.instructions import TOKEN_2022_PROGRAM_ID, TOKEN_PROGRAM_ID
from walletops.operations.types import OperationReport
from walletops.pipeline.batch import expected_attempts, run_batches
from walletops.pipeline.types import OperationOutcome

logger = logging.getLogger(__name__)

P = TypeVar("P")
T = TypeVar("T")

TOKEN_PROGRAM_IDS = (TOKEN_PROGRAM_ID, TOKEN_2022_PROGRAM_ID)


class OperationValidationError(ValueError):
    pass


class PreconditionError(RuntimeError):
    pass


class ProgressReporter(Protocol):
    cancel_token: CancellationToken

    def report(self, completed: int, total: int, step: str | None = None) -> bool: ...


@dataclass
class DetachedProgress:
    cancel_token: CancellationToken = field(default_factory=CancellationToken)

    def report(self, completed: int, total: int, step: str | None = None) -> bool:
        return False


@dataclass(frozen=True)
class WalletOperand:
    index: int
    keypair: Keypair

    @property
    def pubkey(self) -> Pubkey:
        return self.keypair.pubkey()


class WalletOperation(Generic[P]):
    kind: JobKind

    def __init__(
        self,
        settings: Settings,
        ledger: LedgerClientProtocol,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._settings = settings
        self._ledger = ledger
        self._sleep = sleep

    def validate(self, params: P) -> None:
        raise NotImplementedError

    def execute(self, params: P, progress: ProgressReporter) -> OperationReport:
        raise NotImplementedError

    def run(self, params: P, progress: ProgressReporter) -> OperationReport:
        report = self.execute(params, progress)
        # a cancel seen after the last submission still ends the job cancelled
        if progress.cancel_token.cancelled and not report.cancelled:
            logger.info("%s: cancellation requested before completion", self.kind.value)
            report.cancelled = True
        return report

    def _require_operands(self, items: Sequence[object], label: str) -> None:
        if not items:
            raise OperationValidationError(f"No {label} provided")
        limit = int(self._settings.max_operands)
        if len(items) > limit:
            raise OperationValidationError(f"Too many {label} provided: {len(items)} (max: {limit})")

    def _require_positive(self, value: float, label: str) -> None:
        if not math.isfinite(value) or value <= 0:
            raise OperationValidationError(f"{label} must be greater than 0")

    def _require_percentage(self, percentage: float) -> None:
        if not math.isfinite(percentage) or percentage <= 0 or percentage > 100:
            raise OperationValidationError("Burn percentage must be greater than 0 and at most 100")

    def _require_pubkey(self, address: str, label: str) -> Pubkey:
        try:
            return decode_pubkey(address, label=label)
        except KeyDecodeError as exc:
            raise OperationValidationError(str(exc)) from exc

    def _require_keypair(self, private_key: str, label: str = "private key") -> Keypair:
        try:
            return decode_keypair(private_key)
        except KeyDecodeError as exc:
            raise OperationValidationError(f"Invalid {label}: {exc}") from exc

    def _decode_wallets(self, private_keys: Sequence[str], report: OperationReport) -> list[WalletOperand]:
        wallets: list[WalletOperand] = []
        for index, private_key in enumerate(private_keys):
            try:
                wallets.append(WalletOperand(index=index, keypair=decode_keypair(private_key)))
            except KeyDecodeError as exc:
                logger.warning("Wallet #%d has undecodable signing material: %s", index, exc)
                report.outcomes.append(OperationOutcome.fail(f"wallet[{index}]", str(exc)))
        return wallets

    def _list_token_accounts(self, owner: Pubkey) -> list[TokenAccount]:
        accounts: list[TokenAccount] = []
        for program_id in TOKEN_PROGRAM_IDS:
            accounts.extend(self._ledger.get_token_accounts_by_owner(owner, program_id=program_id))
        return accounts

    def _run_pipeline(
        self,
        report: OperationReport,
        operands: Sequence[T],
        *,
        chunk_size: int,
        build_tx: Callable[[Sequence[T], Hash], Transaction],
        describe: Callable[[T], str],
        delay_ms: int,
        progress: ProgressReporter,
        total: int,
    ) -> None:
        if not operands:
            return
        offset = len(report.outcomes)
        logger.info(
            "%s: submitting %d operation(s) in %d transaction(s) of up to %d",
            self.kind.value,
            len(operands),
            expected_attempts(len(operands), chunk_size),
            chunk_size,
        )

        def on_chunk(done: int, _chunk_total: int, step: str) -> None:
            progress.report(offset + done, total, step)

        run = run_batches(
            operands,
            chunk_size,
            build_tx,
            self._ledger.send_and_confirm_transaction,
            fetch_blockhash=self._ledger.get_latest_blockhash,
            describe=describe,
            delay_seconds=delay_ms / 1000.0,
            on_chunk=on_chunk,
            cancel_token=progress.cancel_token,
            sleep=self._sleep,
        )
        report.absorb(run)
