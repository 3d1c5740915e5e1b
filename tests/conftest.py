from __future__ import annotations

import threading
from typing import Callable, Iterable

import pytest
from solders.hash import Hash
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.transaction import Transaction

from walletops.core.config import Settings
from walletops.ledger.client import FatalLedgerError, TokenAccount, TokenAmount, TransientLedgerError
from walletops.ledger.instructions import TOKEN_PROGRAM_ID


class FakeLedger:
    """In-memory ledger: balances and token accounts keyed by owner address."""

    def __init__(self, *, fail_attempts: Iterable[int] = (), transient: bool = False):
        self.balances: dict[str, int] = {}
        self.token_accounts: dict[str, list[TokenAccount]] = {}
        self.fail_attempts = set(fail_attempts)
        self.transient = transient
        self.submitted: list[Transaction] = []
        self.calls: list[str] = []
        # hooks run inside the ledger call, on the worker thread
        self.on_call: Callable[[str], None] | None = None
        self.on_submit: Callable[[int], None] | None = None
        self._lock = threading.Lock()

    def _record(self, name: str) -> None:
        self.calls.append(name)
        if self.on_call is not None:
            self.on_call(name)

    def set_balance(self, owner: Pubkey | str, lamports: int) -> None:
        self.balances[str(owner)] = lamports

    def add_token_account(
        self,
        owner: Pubkey | str,
        mint: Pubkey | str,
        raw_amount: int,
        *,
        decimals: int = 6,
        program_id: Pubkey = TOKEN_PROGRAM_ID,
    ) -> TokenAccount:
        account = TokenAccount(
            address=str(Pubkey.new_unique()),
            mint=str(mint),
            amount=TokenAmount(raw_amount=raw_amount, ui_amount=raw_amount / 10**decimals, decimals=decimals),
            program_id=str(program_id),
        )
        self.token_accounts.setdefault(str(owner), []).append(account)
        return account

    def get_balance(self, address: Pubkey) -> int:
        self._record("get_balance")
        return self.balances.get(str(address), 0)

    def get_token_accounts_by_owner(
        self,
        owner: Pubkey,
        *,
        program_id: Pubkey | None = None,
        mint: Pubkey | None = None,
    ) -> list[TokenAccount]:
        self._record("get_token_accounts_by_owner")
        accounts = self.token_accounts.get(str(owner), [])
        if mint is not None:
            return [item for item in accounts if item.mint == str(mint)]
        return [item for item in accounts if item.program_id == str(program_id)]

    def get_token_account_balance(self, address: Pubkey) -> TokenAmount:
        self._record("get_token_account_balance")
        for accounts in self.token_accounts.values():
            for account in accounts:
                if account.address == str(address) and account.amount is not None:
                    return account.amount
        raise FatalLedgerError(f"could not find account {address}")

    def get_latest_blockhash(self) -> Hash:
        self._record("get_latest_blockhash")
        return Hash.new_unique()

    def send_and_confirm_transaction(self, transaction: Transaction) -> str:
        with self._lock:
            self.calls.append("send_and_confirm_transaction")
            self.submitted.append(transaction)
            attempt = len(self.submitted)
        if attempt in self.fail_attempts:
            if self.transient:
                raise TransientLedgerError(f"attempt {attempt} timed out")
            raise FatalLedgerError(f"attempt {attempt} rejected")
        if self.on_submit is not None:
            self.on_submit(attempt)
        return str(transaction.signatures[0])

    def instruction_counts(self) -> list[int]:
        return [len(tx.message.instructions) for tx in self.submitted]


def make_settings(**overrides: object) -> Settings:
    values: dict[str, object] = {
        "transfer_delay_ms": 0,
        "refund_delay_ms": 0,
        "close_delay_ms": 0,
        "burn_delay_ms": 0,
        "poll_interval_ms": 10,
        "poll_timeout_ms": 5_000,
        "blocking_pool_workers": 4,
    }
    values.update(overrides)
    return Settings(**values)


def secret_of(keypair: Keypair) -> str:
    return str(keypair)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger()
