from __future__ import annotations

import requests
from conftest import make_settings
from solders.hash import Hash
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from walletops.ledger.client import FatalLedgerError, LedgerClient, TransientLedgerError, parse_token_account
from walletops.ledger.instructions import TOKEN_PROGRAM_ID, build_transfer_ix, sign_transaction


class FakeResponse:
    def __init__(self, status_code: int, body: object = None, headers: dict[str, str] | None = None):
        self.status_code = status_code
        self._body = body
        self.text = str(body)
        self.headers = headers or {}

    def json(self) -> object:
        if self._body is None:
            raise ValueError("no body")
        return self._body


class FakeSession:
    def __init__(self, responses: list[object]):
        self.responses = list(responses)
        self.requests: list[dict] = []

    def post(self, url: str, json: dict, timeout: float) -> FakeResponse:
        self.requests.append(json)
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


def rpc_ok(result: object) -> FakeResponse:
    return FakeResponse(200, {"jsonrpc": "2.0", "id": 1, "result": result})


def make_client(responses: list[object], **overrides: object) -> tuple[LedgerClient, FakeSession, list[float]]:
    session = FakeSession(responses)
    sleeps: list[float] = []
    client = LedgerClient(make_settings(rpc_max_retries=3, **overrides), session=session, sleep=sleeps.append)
    return client, session, sleeps


def test_get_balance_reads_value() -> None:
    client, session, _ = make_client([rpc_ok({"context": {"slot": 1}, "value": 42})])
    assert client.get_balance(Pubkey.new_unique()) == 42
    assert session.requests[0]["method"] == "getBalance"


def test_rate_limits_and_connection_errors_are_retried() -> None:
    client, session, sleeps = make_client(
        [FakeResponse(429), requests.ConnectionError("reset"), rpc_ok({"value": 7})]
    )
    assert client.get_balance(Pubkey.new_unique()) == 7
    assert len(session.requests) == 3
    assert len(sleeps) == 2


def test_exhausted_retries_raise_transient_error() -> None:
    client, session, sleeps = make_client([FakeResponse(503), FakeResponse(503), FakeResponse(503)])
    try:
        client.get_balance(Pubkey.new_unique())
    except TransientLedgerError as exc:
        assert exc.transient is True
        assert "failed after 3 attempts" in str(exc)
    else:
        raise AssertionError("expected TransientLedgerError")
    assert len(session.requests) == 3
    assert len(sleeps) == 2
    assert all(0 <= delay <= 8.0 for delay in sleeps)


def test_retry_after_header_sets_the_delay() -> None:
    client, _, sleeps = make_client(
        [FakeResponse(429, headers={"Retry-After": "3"}), rpc_ok({"value": 5})]
    )
    assert client.get_balance(Pubkey.new_unique()) == 5
    assert sleeps == [3.0]


def test_client_errors_are_not_retried() -> None:
    client, session, sleeps = make_client([FakeResponse(403, "forbidden")])
    try:
        client.get_balance(Pubkey.new_unique())
    except FatalLedgerError as exc:
        assert "403" in str(exc)
    else:
        raise AssertionError("expected FatalLedgerError")
    assert len(session.requests) == 1
    assert sleeps == []


def test_rpc_errors_are_classified() -> None:
    client, _, _ = make_client([FakeResponse(200, {"error": {"code": -32002, "message": "Blockhash not found"}})])
    try:
        client.get_latest_blockhash()
    except TransientLedgerError:
        pass
    else:
        raise AssertionError("expected TransientLedgerError")

    client, _, _ = make_client([FakeResponse(200, {"error": {"code": -32602, "message": "Invalid param"}})])
    try:
        client.get_latest_blockhash()
    except FatalLedgerError as exc:
        assert exc.transient is False
    else:
        raise AssertionError("expected FatalLedgerError")


def test_get_token_accounts_requires_exactly_one_filter() -> None:
    client, _, _ = make_client([])
    try:
        client.get_token_accounts_by_owner(Pubkey.new_unique())
    except ValueError:
        pass
    else:
        raise AssertionError("expected ValueError")


def test_parse_token_account_falls_back_to_unparsed() -> None:
    address = str(Pubkey.new_unique())
    mint = str(Pubkey.new_unique())
    parsed = parse_token_account(
        {
            "pubkey": address,
            "account": {
                "owner": str(TOKEN_PROGRAM_ID),
                "data": {
                    "parsed": {
                        "info": {
                            "mint": mint,
                            "tokenAmount": {"amount": "1500000", "decimals": 6, "uiAmount": 1.5},
                        }
                    }
                },
            },
        }
    )
    assert parsed.parsed
    assert parsed.mint == mint
    assert parsed.amount is not None and parsed.amount.raw_amount == 1_500_000

    raw = parse_token_account({"pubkey": address, "account": {"data": ["AAAA", "base64"]}})
    assert raw.parsed is False
    assert raw.mint is None


def test_send_and_confirm_polls_until_confirmed() -> None:
    payer = Keypair()
    tx = sign_transaction(
        [build_transfer_ix(payer.pubkey(), Pubkey.new_unique(), 1)], payer, [payer], Hash.new_unique()
    )
    signature = str(tx.signatures[0])
    client, session, sleeps = make_client(
        [
            rpc_ok(signature),
            rpc_ok({"value": [None]}),
            rpc_ok({"value": [{"confirmationStatus": "processed", "err": None}]}),
            rpc_ok({"value": [{"confirmationStatus": "confirmed", "err": None}]}),
        ]
    )
    assert client.send_and_confirm_transaction(tx) == signature
    assert [item["method"] for item in session.requests] == [
        "sendTransaction",
        "getSignatureStatuses",
        "getSignatureStatuses",
        "getSignatureStatuses",
    ]
    assert len(sleeps) == 2


def test_failed_transaction_is_fatal() -> None:
    payer = Keypair()
    tx = sign_transaction(
        [build_transfer_ix(payer.pubkey(), Pubkey.new_unique(), 1)], payer, [payer], Hash.new_unique()
    )
    client, _, _ = make_client(
        [rpc_ok("sig"), rpc_ok({"value": [{"confirmationStatus": "confirmed", "err": {"InstructionError": [0, 1]}}]})]
    )
    try:
        client.send_and_confirm_transaction(tx)
    except FatalLedgerError as exc:
        assert "failed" in str(exc)
    else:
        raise AssertionError("expected FatalLedgerError")
