from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException, status

from walletops.api.deps import get_wallet_service
from walletops.api.schemas.wallets import TokenBalanceListResponse, TokenBalanceResponse, WalletBalanceResponse
from walletops.ledger.client import LedgerError
from walletops.operations.base import OperationValidationError
from walletops.wallets.service import WalletService

router = APIRouter(prefix="/wallets", tags=["wallets"])


@router.get("/{address}/balance", response_model=WalletBalanceResponse)
def get_balance(address: str, service: WalletService = Depends(get_wallet_service)) -> WalletBalanceResponse:
    try:
        balance = service.get_sol_balance(address)
    except OperationValidationError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    except LedgerError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
    return WalletBalanceResponse.model_validate(asdict(balance))


@router.get("/{address}/tokens", response_model=TokenBalanceListResponse)
def get_tokens(address: str, service: WalletService = Depends(get_wallet_service)) -> TokenBalanceListResponse:
    try:
        balances = service.get_token_balances(address)
    except OperationValidationError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    except LedgerError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
    return TokenBalanceListResponse(
        address=address,
        items=[TokenBalanceResponse.model_validate(asdict(item)) for item in balances],
    )
