from __future__ import annotations

import os

import pytest
from fastapi.testclient import TestClient


def _salt() -> str:
    return "0x" + os.urandom(32).hex()


@pytest.fixture()
def client(coordinator_app):
    with TestClient(coordinator_app) as c:
        yield c


@pytest.fixture()
def funded(client, operator_header, addr, token):
    def _fund(name: str, balance: int, allowance: int | None = None) -> None:
        r = client.post(
            f"/v1/tokens/{token}/mint",
            headers=operator_header,
            json={"holder": addr(name), "amount": balance},
        )
        assert r.status_code == 200, r.text
        r = client.post(
            f"/v1/tokens/{token}/approve",
            headers=operator_header,
            json={"owner": addr(name), "amount": balance if allowance is None else allowance},
        )
        assert r.status_code == 200, r.text

    return _fund


@pytest.fixture()
def create_split(client, addr, token):
    def _create(legs: dict[str, int], **extra) -> dict:
        r = client.post(
            "/v1/splits",
            json={
                "payer": addr("payer"),
                "token": token,
                "legs": [{"participant": addr(name), "amount": amount} for name, amount in legs.items()],
                **extra,
            },
        )
        assert r.status_code == 201, r.text
        return r.json()

    return _create


@pytest.fixture()
def signed_batch(client, wallets, addr):
    """Each named participant fetches its digest and signs it locally."""

    def _batch(split_id: int, names: list[str], deadline: int = 0) -> dict:
        batch = {"participants": [], "amounts": [], "deadlines": [], "salts": [], "signatures": []}
        for name in names:
            info = client.get(
                f"/v1/splits/{split_id}/approval-digest",
                params={"participant": addr(name), "salt": _salt(), "deadline": deadline},
            )
            assert info.status_code == 200, info.text
            body = info.json()
            sig = wallets[name].sign_msg_hash(bytes.fromhex(body["digest"][2:]))
            batch["participants"].append(body["participant"])
            batch["amounts"].append(int(body["amount"]))
            batch["deadlines"].append(body["deadline"])
            batch["salts"].append(body["salt"])
            batch["signatures"].append({"v": sig.v + 27, "r": f"0x{sig.r:064x}", "s": f"0x{sig.s:064x}"})
        return batch

    return _batch


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json()["service"] == "split-settlement-coordinator"


def test_domain_reports_signing_domain(client, domain):
    r = client.get("/v1/domain")
    assert r.status_code == 200
    body = r.json()
    assert body["chain_id"] == domain.chain_id
    assert body["verifying_contract"] == domain.verifying_contract
    assert body["separator"] == "0x" + domain.separator.hex()
    assert client.get("/api/v1/domain").json() == body


def test_split_settles_end_to_end(client, funded, create_split, signed_batch, addr, token):
    funded("alice", 500)
    funded("bob", 50)
    split = create_split({"alice": 100, "bob": 50})
    assert split["total_amount"] == "150"
    assert split["settled"] is False
    split_id = split["split_id"]

    required = client.get(f"/v1/splits/{split_id}/required-amount", params={"participant": addr("bob")}).json()
    assert required["amount"] == "50"
    assert required["is_participant"] is True

    r = client.post(f"/v1/splits/{split_id}/settle", json=signed_batch(split_id, ["alice", "bob"]))
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["status"] == "settled"
    assert body["total_amount"] == "150"
    assert body["transfers"] == [
        {"participant": addr("alice"), "amount": "100"},
        {"participant": addr("bob"), "amount": "50"},
    ]

    detail = client.get(f"/v1/splits/{split_id}").json()
    assert detail["settled"] is True
    assert detail["settled_at"] == body["settled_at"]
    assert [leg["approved"] for leg in detail["legs"]] == [True, True]

    payer = client.get(f"/v1/tokens/{token}/balances/{addr('payer')}").json()
    assert payer["balance"] == "150"
    alice = client.get(f"/v1/tokens/{token}/balances/{addr('alice')}").json()
    assert alice["balance"] == "400"

    events = client.get(f"/v1/splits/{split_id}/events").json()["events"]
    assert [e["event"] for e in events] == [
        "split.created",
        "split.participant_approved",
        "split.participant_approved",
        "split.settled",
    ]


def test_non_participant_required_amount_is_zero(client, create_split, addr):
    split_id = create_split({"alice": 100})["split_id"]
    r = client.get(f"/v1/splits/{split_id}/required-amount", params={"participant": addr("carol")})
    assert r.json()["amount"] == "0"
    assert r.json()["is_participant"] is False


def test_approval_digest_for_outsider_is_refused(client, create_split, addr):
    split_id = create_split({"alice": 100})["split_id"]
    r = client.get(
        f"/v1/splits/{split_id}/approval-digest",
        params={"participant": addr("carol"), "salt": _salt()},
    )
    assert r.status_code == 403
    assert r.json()["error"]["code"] == "not_a_participant"


def test_settlement_error_shape(client, funded, create_split, signed_batch):
    funded("alice", 500)
    funded("bob", 500, allowance=40)
    split_id = create_split({"alice": 100, "bob": 50})["split_id"]

    r = client.post(
        f"/v1/splits/{split_id}/settle",
        json=signed_batch(split_id, ["alice", "bob"]),
        headers={"X-Request-Id": "req_test123"},
    )
    assert r.status_code == 403
    err = r.json()["error"]
    assert err["code"] == "insufficient_allowance"
    assert err["request_id"] == "req_test123"
    assert err["details"]["category"] == "authorization_failure"
    assert err["details"]["index"] == 1
    assert r.headers["X-Request-Id"] == "req_test123"

    detail = client.get(f"/v1/splits/{split_id}").json()
    assert detail["settled"] is False
    assert [leg["approved"] for leg in detail["legs"]] == [False, False]


def test_double_settle_conflicts(client, funded, create_split, signed_batch):
    funded("alice", 500)
    split_id = create_split({"alice": 100})["split_id"]
    assert client.post(f"/v1/splits/{split_id}/settle", json=signed_batch(split_id, ["alice"])).status_code == 200

    r = client.post(f"/v1/splits/{split_id}/settle", json=signed_batch(split_id, ["alice"]))
    assert r.status_code == 409
    assert r.json()["error"]["code"] == "split_already_settled"
    assert r.json()["error"]["details"]["category"] == "state_conflict"


def test_idempotent_settle_replays_response(client, funded, create_split, signed_batch, token, addr):
    funded("alice", 500)
    split_id = create_split({"alice": 100})["split_id"]
    batch = signed_batch(split_id, ["alice"])

    first = client.post(f"/v1/splits/{split_id}/settle", json=batch, headers={"Idempotency-Key": "settle-1"})
    second = client.post(f"/v1/splits/{split_id}/settle", json=batch, headers={"Idempotency-Key": "settle-1"})
    assert first.status_code == second.status_code == 200
    assert second.headers.get("Idempotent-Replay") == "true"
    assert second.json() == first.json()
    assert client.get(f"/v1/tokens/{token}/balances/{addr('payer')}").json()["balance"] == "100"

    other = client.post(f"/v1/splits/{split_id}/settle", json={**batch, "amounts": [1]}, headers={"Idempotency-Key": "settle-1"})
    assert other.status_code == 409
    assert other.json()["error"]["code"] == "idempotency_conflict"


def test_expired_approval_is_gone(client, funded, create_split, signed_batch):
    funded("alice", 500)
    split_id = create_split({"alice": 100})["split_id"]
    r = client.post(f"/v1/splits/{split_id}/settle", json=signed_batch(split_id, ["alice"], deadline=1))
    assert r.status_code == 410
    assert r.json()["error"]["code"] == "approval_expired"
    assert r.json()["error"]["details"]["category"] == "temporal_failure"


def test_refused_transfer_is_bad_gateway(client, funded, create_split, signed_batch):
    funded("alice", 10, allowance=100)
    split_id = create_split({"alice": 100})["split_id"]
    r = client.post(f"/v1/splits/{split_id}/settle", json=signed_batch(split_id, ["alice"]))
    assert r.status_code == 502
    assert r.json()["error"]["code"] == "transfer_failed"


def test_malformed_signature_encoding(client, create_split, addr):
    split_id = create_split({"alice": 100})["split_id"]
    r = client.post(
        f"/v1/splits/{split_id}/settle",
        json={
            "participants": [addr("alice")],
            "amounts": [100],
            "deadlines": [0],
            "salts": [_salt()],
            "signatures": [{"v": 27, "r": "0xnothex", "s": "0x01"}],
        },
    )
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "invalid_signature_encoding"


@pytest.mark.parametrize(
    "payload, code",
    [
        ({"payer": "0x1234"}, "invalid_address"),
        ({"legs": []}, "no_legs"),
        ({"deadline": 1}, "deadline_in_past"),
        ({"meta_hash": "0xabcd"}, "invalid_bytes32"),
    ],
)
def test_create_split_validation(client, addr, token, payload, code):
    body = {"payer": addr("payer"), "token": token, "legs": [{"participant": addr("alice"), "amount": 1}]}
    body.update(payload)
    r = client.post("/v1/splits", json=body)
    assert r.status_code == 400
    assert r.json()["error"]["code"] == code


def test_duplicate_participant_split(client, addr, token):
    r = client.post(
        "/v1/splits",
        json={
            "payer": addr("payer"),
            "token": token,
            "legs": [{"participant": addr("alice"), "amount": 1}, {"participant": addr("alice"), "amount": 2}],
        },
    )
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "duplicate_participant"


def test_unknown_split_is_404(client):
    r = client.get("/v1/splits/4242")
    assert r.status_code == 404
    assert r.json()["error"]["code"] == "split_not_found"


def test_operator_endpoints_require_key(client, addr, token):
    payload = {"holder": addr("alice"), "amount": 5}
    assert client.post(f"/v1/tokens/{token}/mint", json=payload).status_code == 401
    bad = {"Authorization": "Bearer not-the-key"}
    assert client.post(f"/v1/tokens/{token}/mint", json=payload, headers=bad).status_code == 401


def test_operator_endpoints_disabled_without_hash(client, coordinator_env, operator_header, addr, token, monkeypatch):
    monkeypatch.setattr(coordinator_env.settings, "operator_key_hash", "")
    r = client.post(f"/v1/tokens/{token}/mint", json={"holder": addr("alice"), "amount": 5}, headers=operator_header)
    assert r.status_code == 403


def test_approve_defaults_spender_to_coordinator(client, funded, addr, token, coordinator_address):
    funded("alice", 10, allowance=7)
    r = client.get(f"/v1/tokens/{token}/allowances/{addr('alice')}/{coordinator_address}")
    assert r.json()["allowance"] == "7"


def test_webhook_subscription_lifecycle(client, operator_header):
    r = client.put(
        "/v1/webhooks",
        headers=operator_header,
        json={"url": "http://127.0.0.1:9/hook", "events": ["split.settled"]},
    )
    assert r.status_code == 200, r.text
    created = r.json()
    assert created["secret"].startswith("whsec_")
    assert created["events"] == ["split.settled"]

    again = client.put("/v1/webhooks", headers=operator_header, json={"url": "http://127.0.0.1:9/hook"}).json()
    assert again["id"] == created["id"]
    assert again["secret"] is None
    assert len(again["events"]) == 3

    bad = client.put("/v1/webhooks", headers=operator_header, json={"url": "http://x/", "events": ["nope"]})
    assert bad.status_code == 400

    assert client.delete(f"/v1/webhooks/{created['id']}", headers=operator_header).json()["status"] == "removed"
    assert client.delete(f"/v1/webhooks/{created['id']}", headers=operator_header).status_code == 404
    assert client.put("/v1/webhooks", json={"url": "http://127.0.0.1:9/hook"}).status_code == 401
