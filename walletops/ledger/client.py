from __future__ import annotations

import base64
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Protocol

import requests
from solders.hash import Hash
from solders.pubkey import Pubkey
from solders.transaction import Transaction
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random_exponential,
)
from tenacity.wait import wait_base

from walletops.core.config import Settings

logger = logging.getLogger(__name__)

_RETRYABLE_HTTP_STATUSES = {429, 500, 502, 503, 504}
_TRANSIENT_RPC_MARKERS = ("blockhash not found", "node is behind", "too many requests", "rate limit")
_COMMITMENT_RANK = {"processed": 0, "confirmed": 1, "finalized": 2}
_MAX_RETRY_DELAY_SECONDS = 8.0


class LedgerError(RuntimeError):
    transient = False


class TransientLedgerError(LedgerError):
    transient = True


class FatalLedgerError(LedgerError):
    pass


class RetryableStatusError(TransientLedgerError):
    def __init__(self, message: str, *, status_code: int, retry_after: float | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.retry_after = retry_after


def _parse_retry_after(value: str | None) -> float | None:
    if not value:
        return None
    try:
        seconds = float(value)
    except ValueError:
        return None
    return max(seconds, 0.0)


class _RetryAfterOrBackoff(wait_base):
    """Honour a server supplied Retry-After, otherwise fall back to jittered backoff."""

    def __init__(self, fallback_wait: wait_base, max_delay_seconds: float):
        self._fallback_wait = fallback_wait
        self._max_delay_seconds = max_delay_seconds

    def __call__(self, retry_state) -> float:
        outcome = retry_state.outcome
        error = outcome.exception() if outcome is not None and outcome.failed else None
        retry_after = getattr(error, "retry_after", None)
        if retry_after is not None:
            return min(float(retry_after), self._max_delay_seconds)
        return self._fallback_wait(retry_state)


@dataclass(frozen=True)
class TokenAmount:
    raw_amount: int
    ui_amount: float
    decimals: int


@dataclass(frozen=True)
class TokenAccount:
    address: str
    mint: str | None
    amount: TokenAmount | None
    program_id: str | None = None

    @property
    def parsed(self) -> bool:
        return self.mint is not None and self.amount is not None


class LedgerClientProtocol(Protocol):
    def get_balance(self, address: Pubkey) -> int: ...

    def get_token_accounts_by_owner(
        self,
        owner: Pubkey,
        *,
        program_id: Pubkey | None = None,
        mint: Pubkey | None = None,
    ) -> list[TokenAccount]: ...

    def get_token_account_balance(self, address: Pubkey) -> TokenAmount: ...

    def get_latest_blockhash(self) -> Hash: ...

    def send_and_confirm_transaction(self, transaction: Transaction) -> str: ...


def parse_token_amount(raw: dict[str, Any]) -> TokenAmount:
    decimals = int(raw["decimals"])
    raw_amount = int(raw["amount"])
    ui_amount = raw.get("uiAmount")
    if ui_amount is None:
        ui_amount = raw_amount / (10**decimals) if decimals else float(raw_amount)
    return TokenAmount(raw_amount=raw_amount, ui_amount=float(ui_amount), decimals=decimals)


def parse_token_account(entry: dict[str, Any]) -> TokenAccount:
    address = str(entry["pubkey"])
    account = entry.get("account") or {}
    program_id = account.get("owner")
    try:
        info = account["data"]["parsed"]["info"]
        return TokenAccount(
            address=address,
            mint=str(info["mint"]),
            amount=parse_token_amount(info["tokenAmount"]),
            program_id=program_id,
        )
    except (KeyError, TypeError, ValueError):
        return TokenAccount(address=address, mint=None, amount=None, program_id=program_id)


class LedgerClient:
    def __init__(
        self,
        settings: Settings,
        *,
        session: requests.Session | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._settings = settings
        self._session = session or requests.Session()
        self._sleep = sleep

    def _classify_rpc_error(self, method: str, error: Any) -> LedgerError:
        message = f"RPC error from {method}: {error}"
        lowered = str(error).lower()
        if any(marker in lowered for marker in _TRANSIENT_RPC_MARKERS):
            return TransientLedgerError(message)
        return FatalLedgerError(message)

    def _retrying(self) -> Retrying:
        return Retrying(
            stop=stop_after_attempt(int(self._settings.rpc_max_retries)),
            wait=_RetryAfterOrBackoff(
                wait_random_exponential(multiplier=0.5, max=_MAX_RETRY_DELAY_SECONDS),
                _MAX_RETRY_DELAY_SECONDS,
            ),
            retry=retry_if_exception_type((requests.ConnectionError, requests.Timeout, RetryableStatusError)),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            sleep=self._sleep,
            reraise=True,
        )

    def _post(self, method: str, payload: dict[str, Any]) -> requests.Response:
        response = self._session.post(
            self._settings.rpc_url,
            json=payload,
            timeout=self._settings.rpc_timeout_seconds,
        )
        if response.status_code in _RETRYABLE_HTTP_STATUSES:
            raise RetryableStatusError(
                f"RPC HTTP {response.status_code} for {method}",
                status_code=response.status_code,
                retry_after=_parse_retry_after(response.headers.get("Retry-After")),
            )
        return response

    def rpc_call(self, method: str, params: list[Any]) -> Any:
        payload = {"jsonrpc": "2.0", "id": 1, "method": method, "params": params}
        try:
            response = self._retrying()(self._post, method, payload)
        except (requests.ConnectionError, requests.Timeout, RetryableStatusError) as exc:
            raise TransientLedgerError(
                f"RPC call {method} failed after {self._settings.rpc_max_retries} attempts: {exc}"
            ) from exc

        if response.status_code >= 400:
            raise FatalLedgerError(f"RPC HTTP {response.status_code} for {method}: {response.text[:200]}")
        try:
            body = response.json()
        except ValueError as exc:
            raise FatalLedgerError(f"RPC {method} returned a non-JSON body") from exc
        if "error" in body:
            raise self._classify_rpc_error(method, body["error"])
        return body.get("result")

    def get_balance(self, address: Pubkey) -> int:
        result = self.rpc_call("getBalance", [str(address), {"commitment": self._settings.commitment}])
        return int((result or {}).get("value", 0) or 0)

    def get_token_accounts_by_owner(
        self,
        owner: Pubkey,
        *,
        program_id: Pubkey | None = None,
        mint: Pubkey | None = None,
    ) -> list[TokenAccount]:
        if (program_id is None) == (mint is None):
            raise ValueError("Exactly one of program_id or mint must be provided")
        account_filter = {"programId": str(program_id)} if program_id is not None else {"mint": str(mint)}
        result = self.rpc_call(
            "getTokenAccountsByOwner",
            [str(owner), account_filter, {"encoding": "jsonParsed", "commitment": self._settings.commitment}],
        )
        return [parse_token_account(entry) for entry in (result or {}).get("value", []) or []]

    def get_token_account_balance(self, address: Pubkey) -> TokenAmount:
        result = self.rpc_call("getTokenAccountBalance", [str(address), {"commitment": self._settings.commitment}])
        value = (result or {}).get("value")
        if not value:
            raise FatalLedgerError(f"getTokenAccountBalance returned no value for {address}")
        return parse_token_amount(value)

    def get_latest_blockhash(self) -> Hash:
        result = self.rpc_call("getLatestBlockhash", [{"commitment": self._settings.commitment}])
        blockhash = ((result or {}).get("value") or {}).get("blockhash")
        if not blockhash:
            raise TransientLedgerError("getLatestBlockhash returned no blockhash")
        return Hash.from_string(str(blockhash))

    def send_and_confirm_transaction(self, transaction: Transaction) -> str:
        encoded = base64.b64encode(bytes(transaction)).decode("ascii")
        signature = self.rpc_call(
            "sendTransaction",
            [
                encoded,
                {
                    "encoding": "base64",
                    "skipPreflight": False,
                    "preflightCommitment": self._settings.commitment,
                },
            ],
        )
        if not signature:
            raise FatalLedgerError("sendTransaction returned no signature")
        self._confirm_signature(str(signature))
        return str(signature)

    def _confirm_signature(self, signature: str) -> None:
        deadline = time.monotonic() + self._settings.confirm_timeout_seconds
        while time.monotonic() < deadline:
            result = self.rpc_call(
                "getSignatureStatuses",
                [[signature], {"searchTransactionHistory": True}],
            )
            status = ((result or {}).get("value") or [None])[0]
            if status is not None:
                if status.get("err"):
                    raise FatalLedgerError(f"Transaction {signature} failed: {status['err']}")
                confirmation = (status.get("confirmationStatus") or "").lower()
                if _COMMITMENT_RANK.get(confirmation, -1) >= _COMMITMENT_RANK[self._settings.commitment]:
                    return
            self._sleep(self._settings.confirm_poll_seconds)
        raise TransientLedgerError(f"Timed out waiting for confirmation: {signature}")
