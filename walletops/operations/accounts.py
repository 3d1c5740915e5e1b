from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence

from solders.hash import Hash
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.transaction import Transaction

from walletops.jobs.types import JobKind
from walletops.ledger.client import TokenAccount
from walletops.ledger.instructions import TOKEN_PROGRAM_ID, build_close_account_ix, sign_transaction
from walletops.operations.base import ProgressReporter, WalletOperation
from walletops.operations.types import (
    CloseAccountsParams,
    CloseTokenAccountParams,
    CloseTokenAccountsBatchParams,
    OperationReport,
)
from walletops.pipeline.types import OperationOutcome

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AccountClosure:
    owner: Keypair
    account: TokenAccount

    @property
    def program_id(self) -> Pubkey:
        if self.account.program_id:
            return Pubkey.from_string(self.account.program_id)
        return TOKEN_PROGRAM_ID


def build_close_tx(closures: Sequence[AccountClosure], blockhash: Hash) -> Transaction:
    owner = closures[0].owner
    instructions = [
        build_close_account_ix(
            Pubkey.from_string(item.account.address),
            item.owner.pubkey(),
            item.owner.pubkey(),
            token_program_id=item.program_id,
        )
        for item in closures
    ]
    return sign_transaction(instructions, owner, [item.owner for item in closures], blockhash)


def describe_closure(closure: AccountClosure) -> str:
    return closure.account.address


class CloseAccountsOperation(WalletOperation[CloseAccountsParams]):
    kind = JobKind.CLOSE_ACCOUNTS

    def validate(self, params: CloseAccountsParams) -> None:
        self._require_keypair(params.private_key, "wallet key")

    def execute(self, params: CloseAccountsParams, progress: ProgressReporter) -> OperationReport:
        wallet = self._require_keypair(params.private_key, "wallet key")
        owner = wallet.pubkey()
        accounts = self._list_token_accounts(owner)
        total = len(accounts)
        logger.info("Found %d token accounts for wallet %s", total, owner)
        progress.report(0, total, f"Found {total} token accounts")

        report = OperationReport(kind=self.kind)
        closures: list[AccountClosure] = []
        for account in accounts:
            if not account.parsed:
                report.outcomes.append(OperationOutcome.skip(account.address, "could not parse token account data"))
            elif account.amount is not None and account.amount.ui_amount != 0:
                report.outcomes.append(OperationOutcome.skip(account.address, "token balance is not zero"))
            else:
                closures.append(AccountClosure(owner=wallet, account=account))
        if report.outcomes:
            progress.report(len(report.outcomes), total, f"{len(closures)} empty token accounts to close")

        if not closures:
            report.message = "No empty token accounts to close"
            return report

        self._run_pipeline(
            report,
            closures,
            chunk_size=int(self._settings.close_chunk_size),
            build_tx=build_close_tx,
            describe=describe_closure,
            delay_ms=int(self._settings.close_delay_ms),
            progress=progress,
            total=total,
        )
        report.message = (
            f"Closed {report.successful} empty token accounts in {len(report.signatures)} transaction(s)"
        )
        return report


class _CloseByMintOperation(WalletOperation):
    def _accounts_by_mint(self, owner: Pubkey, mints: Sequence[str]) -> dict[str, TokenAccount]:
        if len(set(mints)) == 1:
            accounts = self._ledger.get_token_accounts_by_owner(owner, mint=Pubkey.from_string(mints[0]))
        else:
            accounts = self._list_token_accounts(owner)
        by_mint: dict[str, TokenAccount] = {}
        for account in accounts:
            if account.mint is not None:
                by_mint.setdefault(account.mint, account)
        return by_mint

    def _close_by_mint(
        self,
        wallet: Keypair,
        mints: Sequence[str],
        report: OperationReport,
        progress: ProgressReporter,
        *,
        chunk_size: int,
    ) -> None:
        total = len(mints)
        progress.report(0, total, f"Starting closure of {total} token accounts")
        by_mint = self._accounts_by_mint(wallet.pubkey(), mints)

        closures: list[AccountClosure] = []
        seen: set[str] = set()
        for mint in mints:
            if mint in seen:
                report.outcomes.append(OperationOutcome.skip(mint, "duplicate mint in request"))
                continue
            seen.add(mint)
            account = by_mint.get(mint)
            if account is None:
                logger.info("No token account found for mint %s in wallet %s", mint, wallet.pubkey())
                report.outcomes.append(OperationOutcome.skip(mint, "token account not found"))
                continue
            closures.append(AccountClosure(owner=wallet, account=account))
        if report.outcomes:
            progress.report(len(report.outcomes), total, f"{len(closures)} token accounts found for closure")

        self._run_pipeline(
            report,
            closures,
            chunk_size=chunk_size,
            build_tx=build_close_tx,
            describe=describe_closure,
            delay_ms=int(self._settings.close_delay_ms),
            progress=progress,
            total=total,
        )


class CloseTokenAccountOperation(_CloseByMintOperation):
    kind = JobKind.CLOSE_TOKEN_ACCOUNT

    def validate(self, params: CloseTokenAccountParams) -> None:
        self._require_keypair(params.private_key, "wallet key")
        self._require_pubkey(params.mint, "token mint")

    def execute(self, params: CloseTokenAccountParams, progress: ProgressReporter) -> OperationReport:
        wallet = self._require_keypair(params.private_key, "wallet key")
        report = OperationReport(kind=self.kind)
        self._close_by_mint(wallet, [params.mint], report, progress, chunk_size=1)
        if report.skipped:
            report.message = f"No token account found for mint {params.mint} in wallet {wallet.pubkey()}"
        return report


class CloseTokenAccountsBatchOperation(_CloseByMintOperation):
    kind = JobKind.CLOSE_TOKEN_ACCOUNTS_BATCH

    def validate(self, params: CloseTokenAccountsBatchParams) -> None:
        self._require_operands(params.mints, "token mints")
        self._require_keypair(params.private_key, "wallet key")
        for mint in params.mints:
            self._require_pubkey(mint, "token mint")

    def execute(self, params: CloseTokenAccountsBatchParams, progress: ProgressReporter) -> OperationReport:
        wallet = self._require_keypair(params.private_key, "wallet key")
        report = OperationReport(kind=self.kind)
        self._close_by_mint(
            wallet,
            params.mints,
            report,
            progress,
            chunk_size=int(self._settings.close_chunk_size),
        )
        return report
