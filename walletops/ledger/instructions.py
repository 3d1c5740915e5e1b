from __future__ import annotations

from typing import Sequence

from solders.hash import Hash
from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.system_program import TransferParams, transfer
from solders.transaction import Transaction

LAMPORTS_PER_SOL = 1_000_000_000

TOKEN_PROGRAM_ID = Pubkey.from_string("TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA")
TOKEN_2022_PROGRAM_ID = Pubkey.from_string("TokenzQdBNbLqP5VEhdkAS6EPFLC1PHnBqCXEpPxuEb")

# SPL Token instruction indices
BURN_IX = 8
CLOSE_ACCOUNT_IX = 9


def sol_to_lamports(amount_sol: float) -> int:
    return int(round(amount_sol * LAMPORTS_PER_SOL))


def lamports_to_sol(lamports: int) -> float:
    return lamports / LAMPORTS_PER_SOL


def build_transfer_ix(from_pubkey: Pubkey, to_pubkey: Pubkey, lamports: int) -> Instruction:
    return transfer(TransferParams(from_pubkey=from_pubkey, to_pubkey=to_pubkey, lamports=int(lamports)))


def build_close_account_ix(
    token_account: Pubkey,
    destination: Pubkey,
    owner: Pubkey,
    *,
    token_program_id: Pubkey = TOKEN_PROGRAM_ID,
) -> Instruction:
    return Instruction(
        program_id=token_program_id,
        accounts=[
            AccountMeta(pubkey=token_account, is_signer=False, is_writable=True),
            AccountMeta(pubkey=destination, is_signer=False, is_writable=True),
            AccountMeta(pubkey=owner, is_signer=True, is_writable=False),
        ],
        data=bytes([CLOSE_ACCOUNT_IX]),
    )


def build_burn_ix(
    token_account: Pubkey,
    mint: Pubkey,
    owner: Pubkey,
    amount: int,
    *,
    token_program_id: Pubkey = TOKEN_PROGRAM_ID,
) -> Instruction:
    if amount <= 0:
        raise ValueError("Burn amount must be greater than zero")
    return Instruction(
        program_id=token_program_id,
        accounts=[
            AccountMeta(pubkey=token_account, is_signer=False, is_writable=True),
            AccountMeta(pubkey=mint, is_signer=False, is_writable=True),
            AccountMeta(pubkey=owner, is_signer=True, is_writable=False),
        ],
        data=bytes([BURN_IX]) + int(amount).to_bytes(8, "little"),
    )


def sign_transaction(
    instructions: Sequence[Instruction],
    payer: Keypair,
    signers: Sequence[Keypair],
    blockhash: Hash,
) -> Transaction:
    if not instructions:
        raise ValueError("No instructions to sign")
    unique: dict[Pubkey, Keypair] = {payer.pubkey(): payer}
    for signer in signers:
        unique.setdefault(signer.pubkey(), signer)
    return Transaction.new_signed_with_payer(list(instructions), payer.pubkey(), list(unique.values()), blockhash)
