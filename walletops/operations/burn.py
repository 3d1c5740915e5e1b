from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import ROUND_FLOOR, Decimal
from typing import Sequence

from solders.hash import Hash
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.transaction import Transaction

from walletops.jobs.types import JobKind
from walletops.ledger.client import TokenAccount
from walletops.ledger.instructions import TOKEN_PROGRAM_ID, build_burn_ix, sign_transaction
from walletops.operations.base import ProgressReporter, WalletOperation
from walletops.operations.types import BurnEachTokensParams, BurnTokensParams, OperationReport
from walletops.pipeline.types import OperationOutcome

logger = logging.getLogger(__name__)


def compute_burn_amount(raw_amount: int, percentage: float) -> int:
    """Raw units to burn for ``percentage`` of ``raw_amount``, rounded down.

    Works on the integer raw amount so 100% of a holding burns all of it
    regardless of decimals.
    """
    if raw_amount <= 0:
        return 0
    if percentage >= 100:
        return raw_amount
    scaled = Decimal(raw_amount) * Decimal(str(percentage)) / Decimal(100)
    return min(int(scaled.to_integral_value(rounding=ROUND_FLOOR)), raw_amount)


@dataclass(frozen=True)
class Burn:
    owner: Keypair
    account: TokenAccount
    amount: int

    @property
    def program_id(self) -> Pubkey:
        if self.account.program_id:
            return Pubkey.from_string(self.account.program_id)
        return TOKEN_PROGRAM_ID


def build_burn_tx(burns: Sequence[Burn], blockhash: Hash) -> Transaction:
    instructions = [
        build_burn_ix(
            Pubkey.from_string(item.account.address),
            Pubkey.from_string(item.account.mint or ""),
            item.owner.pubkey(),
            item.amount,
            token_program_id=item.program_id,
        )
        for item in burns
    ]
    return sign_transaction(instructions, burns[0].owner, [item.owner for item in burns], blockhash)


def describe_burn(burn: Burn) -> str:
    return burn.account.address


class _BurnOperation(WalletOperation):
    def _plan_burns(
        self,
        wallet: Keypair,
        accounts: Sequence[TokenAccount],
        percentage: float,
        report: OperationReport,
    ) -> list[Burn]:
        burns: list[Burn] = []
        for account in accounts:
            if not account.parsed or account.amount is None:
                report.outcomes.append(OperationOutcome.skip(account.address, "could not parse token account data"))
                continue
            if account.amount.raw_amount <= 0:
                report.outcomes.append(OperationOutcome.skip(account.address, "token balance is zero"))
                continue
            amount = compute_burn_amount(account.amount.raw_amount, percentage)
            if amount <= 0:
                report.outcomes.append(OperationOutcome.skip(account.address, "burn amount rounds to zero"))
                continue
            logger.info(
                "Will burn %d of %d raw units from %s (mint %s)",
                amount,
                account.amount.raw_amount,
                account.address,
                account.mint,
            )
            burns.append(Burn(owner=wallet, account=account, amount=amount))
        return burns

    def _burn(
        self,
        wallet: Keypair,
        accounts: Sequence[TokenAccount],
        percentage: float,
        report: OperationReport,
        progress: ProgressReporter,
        total: int,
    ) -> None:
        burns = self._plan_burns(wallet, accounts, percentage, report)
        if report.outcomes:
            progress.report(len(report.outcomes), total, f"{len(burns)} token accounts eligible for burn")
        self._run_pipeline(
            report,
            burns,
            chunk_size=int(self._settings.burn_chunk_size),
            build_tx=build_burn_tx,
            describe=describe_burn,
            delay_ms=int(self._settings.burn_delay_ms),
            progress=progress,
            total=total,
        )


class BurnTokensOperation(_BurnOperation):
    kind = JobKind.BURN_TOKENS

    def validate(self, params: BurnTokensParams) -> None:
        self._require_percentage(params.percentage)
        self._require_keypair(params.private_key, "wallet key")
        self._require_pubkey(params.mint, "token mint")

    def execute(self, params: BurnTokensParams, progress: ProgressReporter) -> OperationReport:
        wallet = self._require_keypair(params.private_key, "wallet key")
        mint = self._require_pubkey(params.mint, "token mint")
        accounts = self._ledger.get_token_accounts_by_owner(wallet.pubkey(), mint=mint)
        total = len(accounts)
        progress.report(0, total, f"Found {total} token accounts for mint {mint}")

        report = OperationReport(kind=self.kind)
        if not accounts:
            report.message = f"No token account found for mint {mint} in wallet {wallet.pubkey()}"
            return report
        self._burn(wallet, accounts, params.percentage, report, progress, total)
        report.message = (
            f"Burned {params.percentage}% of tokens for mint {mint} from {report.successful} "
            f"token account(s) in {len(report.signatures)} transaction(s)"
        )
        return report


class BurnEachTokensOperation(_BurnOperation):
    kind = JobKind.BURN_EACH_TOKENS

    def validate(self, params: BurnEachTokensParams) -> None:
        self._require_percentage(params.percentage)
        self._require_operands(params.mints, "mint addresses")
        self._require_keypair(params.private_key, "wallet key")
        for mint in params.mints:
            self._require_pubkey(mint, "token mint")

    def execute(self, params: BurnEachTokensParams, progress: ProgressReporter) -> OperationReport:
        wallet = self._require_keypair(params.private_key, "wallet key")
        requested = list(dict.fromkeys(params.mints))
        report = OperationReport(kind=self.kind)

        by_mint: dict[str, list[TokenAccount]] = {mint: [] for mint in requested}
        for account in self._list_token_accounts(wallet.pubkey()):
            if account.mint in by_mint:
                by_mint[account.mint].append(account)

        accounts: list[TokenAccount] = []
        for mint in requested:
            if not by_mint[mint]:
                report.outcomes.append(OperationOutcome.skip(mint, "token account not found"))
            accounts.extend(by_mint[mint])

        total = len(report.outcomes) + len(accounts)
        progress.report(len(report.outcomes), total, f"Burning {params.percentage}% of {len(requested)} mints")
        self._burn(wallet, accounts, params.percentage, report, progress, total)
        return report
