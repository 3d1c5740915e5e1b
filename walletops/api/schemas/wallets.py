from __future__ import annotations

from pydantic import BaseModel


class WalletBalanceResponse(BaseModel):
    address: str
    lamports: int
    sol: float


class TokenBalanceResponse(BaseModel):
    account: str
    mint: str | None
    raw_amount: int | None
    ui_amount: float | None
    decimals: int | None
    program_id: str | None


class TokenBalanceListResponse(BaseModel):
    address: str
    items: list[TokenBalanceResponse]
