from __future__ import annotations

import logging
from dataclasses import dataclass

from solders.pubkey import Pubkey

from walletops.core.keys import KeyDecodeError, decode_pubkey
from walletops.ledger.client import LedgerClientProtocol
from walletops.ledger.instructions import lamports_to_sol
from walletops.operations.base import TOKEN_PROGRAM_IDS, OperationValidationError

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class WalletBalance:
    address: str
    lamports: int
    sol: float


@dataclass(slots=True)
class TokenBalance:
    account: str
    mint: str | None
    raw_amount: int | None
    ui_amount: float | None
    decimals: int | None
    program_id: str | None


class WalletService:
    def __init__(self, ledger: LedgerClientProtocol):
        self._ledger = ledger

    def _owner(self, address: str) -> Pubkey:
        try:
            return decode_pubkey(address, label="wallet address")
        except KeyDecodeError as exc:
            raise OperationValidationError(str(exc)) from exc

    def get_sol_balance(self, address: str) -> WalletBalance:
        owner = self._owner(address)
        lamports = self._ledger.get_balance(owner)
        return WalletBalance(address=str(owner), lamports=lamports, sol=lamports_to_sol(lamports))

    def get_token_balances(self, address: str) -> list[TokenBalance]:
        owner = self._owner(address)
        balances: list[TokenBalance] = []
        for program_id in TOKEN_PROGRAM_IDS:
            for account in self._ledger.get_token_accounts_by_owner(owner, program_id=program_id):
                amount = account.amount
                balances.append(
                    TokenBalance(
                        account=account.address,
                        mint=account.mint,
                        raw_amount=amount.raw_amount if amount else None,
                        ui_amount=amount.ui_amount if amount else None,
                        decimals=amount.decimals if amount else None,
                        program_id=account.program_id or str(program_id),
                    )
                )
        logger.info("Wallet %s holds %d token account(s)", owner, len(balances))
        return balances
