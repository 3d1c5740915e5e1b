from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence, TypeVar

from solders.hash import Hash
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.transaction import Transaction

from walletops.jobs.types import JobKind
from walletops.ledger.client import LedgerError
from walletops.ledger.instructions import build_transfer_ix, lamports_to_sol, sign_transaction, sol_to_lamports
from walletops.operations.base import (
    OperationValidationError,
    PreconditionError,
    ProgressReporter,
    WalletOperand,
    WalletOperation,
)
from walletops.operations.types import (
    DistributeSolParams,
    OperationReport,
    RefundSpecificAmountParams,
    RefundWalletsParams,
    RefundWalletsSpecificAmountParams,
)
from walletops.pipeline.batch import CANCELLED_ERROR
from walletops.pipeline.types import OperationOutcome

logger = logging.getLogger(__name__)

P = TypeVar("P", RefundWalletsParams, RefundWalletsSpecificAmountParams)


@dataclass(frozen=True)
class Transfer:
    source: Keypair
    destination: Pubkey
    lamports: int
    label: str


def build_transfer_tx(transfers: Sequence[Transfer], blockhash: Hash) -> Transaction:
    instructions = [build_transfer_ix(item.source.pubkey(), item.destination, item.lamports) for item in transfers]
    return sign_transaction(instructions, transfers[0].source, [item.source for item in transfers], blockhash)


def describe_transfer(transfer: Transfer) -> str:
    return transfer.label


class _RefundOperation(WalletOperation[P]):
    def _reserve(self) -> int:
        return int(self._settings.min_reserve_lamports) + int(self._settings.fee_buffer_lamports)

    def _transfer_amount(self, balance: int, params: P) -> int | None:
        raise NotImplementedError

    def _preflight(
        self,
        wallets: Sequence[WalletOperand],
        destination: Pubkey,
        params: P,
        report: OperationReport,
        progress: ProgressReporter,
        total: int,
    ) -> list[Transfer]:
        transfers: list[Transfer] = []
        for position, wallet in enumerate(wallets):
            if progress.cancel_token.cancelled:
                logger.info("Cancellation requested during balance checks, %d wallet(s) left", len(wallets) - position)
                for remaining in wallets[position:]:
                    report.outcomes.append(OperationOutcome.fail(str(remaining.pubkey), CANCELLED_ERROR))
                report.cancelled = True
                break
            label = str(wallet.pubkey)
            try:
                balance = self._ledger.get_balance(wallet.pubkey)
            except LedgerError as exc:
                report.outcomes.append(OperationOutcome.fail(label, f"balance query failed: {exc}", transient=exc.transient))
                progress.report(len(report.outcomes), total, f"Balance query failed for {label}")
                continue

            amount = self._transfer_amount(balance, params)
            if amount is None:
                logger.info("Wallet %s has insufficient balance (%d lamports), skipping", label, balance)
                report.outcomes.append(OperationOutcome.skip(label, f"insufficient balance ({balance} lamports)"))
                progress.report(len(report.outcomes), total, f"Skipped wallet {wallet.index + 1} of {total} (insufficient balance)")
                continue
            transfers.append(Transfer(source=wallet.keypair, destination=destination, lamports=amount, label=label))
        return transfers

    def execute(self, params: P, progress: ProgressReporter) -> OperationReport:
        destination = self._require_pubkey(params.destination, "refund destination")
        report = OperationReport(kind=self.kind)
        total = len(params.private_keys)
        progress.report(0, total, "Starting refund process")

        wallets = self._decode_wallets(params.private_keys, report)
        transfers = self._preflight(wallets, destination, params, report, progress, total)
        self._run_pipeline(
            report,
            transfers,
            chunk_size=int(self._settings.refund_chunk_size),
            build_tx=build_transfer_tx,
            describe=describe_transfer,
            delay_ms=int(self._settings.refund_delay_ms),
            progress=progress,
            total=total,
        )
        return report


class RefundWalletsOperation(_RefundOperation[RefundWalletsParams]):
    kind = JobKind.REFUND_WALLETS

    def validate(self, params: RefundWalletsParams) -> None:
        self._require_operands(params.private_keys, "private keys")
        self._require_pubkey(params.destination, "refund destination")

    def _transfer_amount(self, balance: int, params: RefundWalletsParams) -> int | None:
        transferable = balance - self._reserve()
        return transferable if transferable > 0 else None


class RefundWalletsSpecificAmountOperation(_RefundOperation[RefundWalletsSpecificAmountParams]):
    kind = JobKind.REFUND_WALLETS_SPECIFIC_AMOUNT

    def validate(self, params: RefundWalletsSpecificAmountParams) -> None:
        self._require_operands(params.private_keys, "private keys")
        self._require_positive(params.amount_sol, "Amount")
        if sol_to_lamports(params.amount_sol) <= 0:
            raise OperationValidationError("Amount is below one lamport")
        self._require_pubkey(params.destination, "refund destination")

    def _transfer_amount(self, balance: int, params: RefundWalletsSpecificAmountParams) -> int | None:
        amount = sol_to_lamports(params.amount_sol)
        return amount if balance >= amount + self._reserve() else None


class RefundSpecificAmountOperation(WalletOperation[RefundSpecificAmountParams]):
    kind = JobKind.REFUND_SPECIFIC_AMOUNT

    def validate(self, params: RefundSpecificAmountParams) -> None:
        self._require_positive(params.amount_sol, "Amount")
        if sol_to_lamports(params.amount_sol) <= 0:
            raise OperationValidationError("Amount is below one lamport")
        self._require_keypair(params.private_key, "source key")
        self._require_pubkey(params.destination, "refund destination")

    def execute(self, params: RefundSpecificAmountParams, progress: ProgressReporter) -> OperationReport:
        source = self._require_keypair(params.private_key, "source key")
        destination = self._require_pubkey(params.destination, "refund destination")
        amount = sol_to_lamports(params.amount_sol)
        required = amount + int(self._settings.min_reserve_lamports) + int(self._settings.fee_buffer_lamports)
        progress.report(0, 1, "Checking source balance")

        balance = self._ledger.get_balance(source.pubkey())
        if balance < required:
            raise PreconditionError(
                f"Insufficient balance in source wallet. Required: {required} lamports "
                f"({lamports_to_sol(required)} SOL), Available: {balance} lamports ({lamports_to_sol(balance)} SOL)"
            )

        report = OperationReport(kind=self.kind)
        transfer = Transfer(source=source, destination=destination, lamports=amount, label=str(source.pubkey()))
        self._run_pipeline(
            report,
            [transfer],
            chunk_size=1,
            build_tx=build_transfer_tx,
            describe=describe_transfer,
            delay_ms=0,
            progress=progress,
            total=1,
        )
        return report


class DistributeSolOperation(WalletOperation[DistributeSolParams]):
    kind = JobKind.DISTRIBUTE_SOL

    def validate(self, params: DistributeSolParams) -> None:
        self._require_operands(params.destinations, "destination wallets")
        self._require_positive(params.total_amount_sol, "Total amount")
        if sol_to_lamports(params.total_amount_sol) // len(params.destinations) <= 0:
            raise OperationValidationError("Total amount is too small to split across the destination wallets")
        self._require_keypair(params.private_key, "source key")
        for address in params.destinations:
            self._require_pubkey(address, "destination pubkey")

    def execute(self, params: DistributeSolParams, progress: ProgressReporter) -> OperationReport:
        source = self._require_keypair(params.private_key, "source key")
        destinations = [self._require_pubkey(address, "destination pubkey") for address in params.destinations]
        total_lamports = sol_to_lamports(params.total_amount_sol)

        balance = self._ledger.get_balance(source.pubkey())
        if balance < total_lamports:
            raise PreconditionError(
                f"Insufficient balance in source wallet. Required: {total_lamports} lamports, "
                f"Available: {balance} lamports"
            )

        amount_per_destination = total_lamports // len(destinations)
        logger.info(
            "Distributing %d lamports (%s SOL) to each of %d destinations",
            amount_per_destination,
            lamports_to_sol(amount_per_destination),
            len(destinations),
        )
        total = len(destinations)
        progress.report(0, total, "Starting SOL distribution")

        report = OperationReport(kind=self.kind)
        transfers = [
            Transfer(source=source, destination=destination, lamports=amount_per_destination, label=str(destination))
            for destination in destinations
        ]
        self._run_pipeline(
            report,
            transfers,
            chunk_size=int(self._settings.transfer_chunk_size),
            build_tx=build_transfer_tx,
            describe=describe_transfer,
            delay_ms=int(self._settings.transfer_delay_ms),
            progress=progress,
            total=total,
        )
        report.message = (
            f"Distributed {lamports_to_sol(amount_per_destination * report.successful)} SOL to "
            f"{report.successful} of {total} wallets in {len(report.signatures)} transaction(s)"
        )
        return report
