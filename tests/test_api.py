from __future__ import annotations

from conftest import FakeLedger, make_settings, secret_of
from fastapi.testclient import TestClient
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from walletops.api.app import create_app
from walletops.ledger.instructions import TOKEN_2022_PROGRAM_ID


def make_client(ledger: FakeLedger) -> TestClient:
    return TestClient(create_app(make_settings(), ledger=ledger, sleep=lambda seconds: None))


def distribution_body(ledger: FakeLedger, destinations: int = 3) -> dict[str, object]:
    source = Keypair()
    ledger.set_balance(source.pubkey(), 5_000_000_000)
    return {
        "private_key": secret_of(source),
        "destinations": [str(Pubkey.new_unique()) for _ in range(destinations)],
        "total_amount_sol": 0.3,
    }


def test_health_reports_service_and_job_counts() -> None:
    with make_client(FakeLedger()) as client:
        response = client.get("/api/v1/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["jobs"] == 0


def test_job_lifecycle_over_http() -> None:
    with make_client(FakeLedger()) as client:
        created = client.post("/api/v1/jobs", json={"kind": "burn_tokens"})
        assert created.status_code == 201
        job_id = created.json()["id"]
        assert created.json()["status"] == "pending"

        progress = client.post(f"/api/v1/jobs/{job_id}/progress", json={"completed": 2, "total": 4, "step": "half"})
        assert progress.json() == {"job_id": job_id, "accepted": True}
        job = client.get(f"/api/v1/jobs/{job_id}").json()
        assert job["progress"] == {"completed": 2, "total": 4, "percentage": 50.0, "step": "half"}

        cancelled = client.post(f"/api/v1/jobs/{job_id}/cancel")
        assert cancelled.status_code == 200
        assert cancelled.json()["status"] == "cancelled"
        assert client.post(f"/api/v1/jobs/{job_id}/cancel").status_code == 409

        late = client.post(f"/api/v1/jobs/{job_id}/progress", json={"percentage": 90})
        assert late.json()["accepted"] is False

        assert client.get("/api/v1/jobs/missing").status_code == 404
        assert client.post("/api/v1/jobs/missing/cancel").status_code == 404
        assert client.post("/api/v1/jobs", json={"kind": "mint_tokens"}).status_code == 422
        assert client.post(f"/api/v1/jobs/{job_id}/progress", json={"completed": 1}).status_code == 422

        listed = client.get("/api/v1/jobs").json()
    assert [item["id"] for item in listed["items"]] == [job_id]


def test_synchronous_operation_returns_summary_and_report() -> None:
    ledger = FakeLedger()
    with make_client(ledger) as client:
        response = client.post("/api/v1/operations/distribute_sol", json=distribution_body(ledger))
        jobs = client.get("/api/v1/jobs").json()["items"]
    assert response.status_code == 200
    body = response.json()
    assert body["kind"] == "distribute_sol"
    assert body["summary"].startswith("Distributed 0.3 SOL to 3 of 3 wallets in 1 transaction(s)")
    assert body["report"]["successful"] == 3
    assert jobs == []


def test_invalid_operation_is_rejected_before_any_job_or_network_call() -> None:
    ledger = FakeLedger()
    with make_client(ledger) as client:
        body = distribution_body(ledger)
        body["destinations"] = []
        assert client.post("/api/v1/operations/distribute_sol/jobs", json=body).status_code == 422

        body = distribution_body(ledger)
        body["unexpected"] = True
        assert client.post("/api/v1/operations/distribute_sol", json=body).status_code == 422

        assert client.post("/api/v1/operations/mint_tokens", json={}).status_code == 422
        jobs = client.get("/api/v1/jobs").json()["items"]
    assert jobs == []
    assert ledger.calls == []


def test_failed_precondition_maps_to_conflict() -> None:
    ledger = FakeLedger()
    source = Keypair()
    ledger.set_balance(source.pubkey(), 1_000)
    body = {"private_key": secret_of(source), "destination": str(Pubkey.new_unique()), "amount_sol": 0.5}
    with make_client(ledger) as client:
        response = client.post("/api/v1/operations/refund_specific_amount", json=body)
    assert response.status_code == 409
    assert "Insufficient balance" in response.json()["detail"]


def test_asynchronous_operation_can_be_long_polled() -> None:
    ledger = FakeLedger()
    wallet = Keypair()
    for _ in range(6):
        ledger.add_token_account(wallet.pubkey(), Pubkey.new_unique(), 0)
    with make_client(ledger) as client:
        launched = client.post("/api/v1/operations/close_accounts/jobs", json={"private_key": secret_of(wallet)})
        assert launched.status_code == 202
        job_id = launched.json()["job_id"]

        polled = client.get(f"/api/v1/jobs/{job_id}/poll", params={"timeout_ms": 5_000, "poll_interval_ms": 10})
        batch = client.post("/api/v1/jobs/poll", json={"job_ids": [job_id, "missing"], "timeout_ms": 100})
        assert client.get("/api/v1/jobs/missing/poll").status_code == 404
    assert polled.status_code == 200
    body = polled.json()
    assert body["state"] == "done"
    assert body["job"]["status"] == "succeeded"
    assert body["job"]["result"]["successful"] == 6
    assert body["job"]["progress"]["percentage"] == 100.0
    assert batch.json()["completed"] == 1
    assert batch.json()["missing"] == ["missing"]


def test_batch_launch_runs_every_operation() -> None:
    ledger = FakeLedger()
    operations = []
    for _ in range(3):
        body = distribution_body(ledger, destinations=2)
        body["kind"] = "distribute_sol"
        operations.append(body)
    with make_client(ledger) as client:
        response = client.post("/api/v1/jobs/batch", json={"operations": operations, "max_concurrent": 2})
        rejected = client.post("/api/v1/jobs/batch", json={"operations": [{"private_key": "x"}]})
    assert response.status_code == 200
    body = response.json()
    assert len(body["job_ids"]) == 3
    assert body["result"]["completed"] == 3
    assert body["result"]["state"] == "done"
    assert rejected.status_code == 422


def test_wallet_reads() -> None:
    ledger = FakeLedger()
    wallet = Pubkey.new_unique()
    ledger.set_balance(wallet, 2_500_000_000)
    mint = Pubkey.new_unique()
    ledger.add_token_account(wallet, mint, 1_500_000, decimals=6)
    ledger.add_token_account(wallet, Pubkey.new_unique(), 7, decimals=0, program_id=TOKEN_2022_PROGRAM_ID)
    with make_client(ledger) as client:
        balance = client.get(f"/api/v1/wallets/{wallet}/balance")
        tokens = client.get(f"/api/v1/wallets/{wallet}/tokens")
        invalid = client.get("/api/v1/wallets/not-an-address/balance")
    assert balance.json() == {"address": str(wallet), "lamports": 2_500_000_000, "sol": 2.5}
    items = tokens.json()["items"]
    assert len(items) == 2
    assert items[0]["mint"] == str(mint)
    assert items[0]["raw_amount"] == 1_500_000
    assert items[0]["ui_amount"] == 1.5
    assert items[1]["program_id"] == str(TOKEN_2022_PROGRAM_ID)
    assert invalid.status_code == 422
