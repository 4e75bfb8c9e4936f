from __future__ import annotations

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from adapters.entry.http.views import dapp_view, sponsorship_view
from adapters.entry.http.views.admin import admin_paymaster_view
from adapters.entry.http.views.admin.admin_auth import AdminPrincipal, require_admin
from core.domain.entities.base_entity import MongoEntity
from core.domain.enums.paymaster_enums import PaymasterMode
from core.services.token_rate_oracle import TokenRateOracle
from core.use_cases.admin_chain_registry_usecase import AdminChainRegistryUseCase
from core.use_cases.compliance_usecase import ComplianceUseCase
from core.use_cases.dapp_policy_usecase import DAppPolicyUseCase
from core.use_cases.fee_quote_usecase import FeeQuoteUseCase
from core.use_cases.rebalance_orchestrator_usecase import RebalanceOrchestrator
from core.use_cases.settlement_usecase import SettlementUseCase

ADMIN_WALLET = "0x00000000000000000000000000000000000000aa"
TX_HASH = "0x" + "cd" * 32


@pytest.fixture
def clock():
    """
    Settlement clock running ahead of wall time by `offset_ms`.
    """
    state = {"offset_ms": 0}
    state["now"] = lambda: MongoEntity.now_ms() + state["offset_ms"]
    return state


@pytest.fixture
def app(chains, pools, dapps, instances, quotes, ledger, denylist, rpc, vault, writer, clock):
    app = FastAPI()
    app.include_router(sponsorship_view.router, prefix="/api")
    app.include_router(dapp_view.router, prefix="/api")
    app.include_router(admin_paymaster_view.router, prefix="/api")

    policy = DAppPolicyUseCase(dapps=dapps, instances=instances, chains=chains)
    settlement = SettlementUseCase(quotes=quotes, ledger=ledger, rpc=rpc, clock=clock["now"])

    app.dependency_overrides.update(
        {
            sponsorship_view.get_quote_use_case: lambda: FeeQuoteUseCase(
                rpc=rpc, oracle=TokenRateOracle({"USDT": "0.15"}), quotes=quotes, ledger_writer=writer
            ),
            sponsorship_view.get_policy_use_case: lambda: policy,
            sponsorship_view.get_settlement_use_case: lambda: settlement,
            dapp_view.get_use_case: lambda: policy,
            admin_paymaster_view.get_use_case: lambda: AdminChainRegistryUseCase(
                chains=chains, pools=pools, rpc=rpc, ledger_writer=writer
            ),
            admin_paymaster_view.get_orchestrator: lambda: RebalanceOrchestrator(
                chains=chains, pools=pools, vault=vault, ledger_writer=writer
            ),
            admin_paymaster_view.get_compliance: lambda: ComplianceUseCase(
                denylist=denylist, dapps=dapps, ledger_writer=writer
            ),
            admin_paymaster_view.get_settlement: lambda: settlement,
            require_admin: lambda: AdminPrincipal(privy_did="did:privy:admin", wallet_address=ADMIN_WALLET),
        }
    )
    return app


@pytest.fixture
def client(app):
    return TestClient(app)


def _quote(client, **overrides):
    body = {"dapp_id": "dapp_1", "user_id": "user-1", "chain_id": 1, "estimated_gas": 500_000}
    body.update(overrides)
    return client.post("/api/paymaster/quotes", json=body)


def test_quote_money_is_returned_as_strings(client):
    res = _quote(client, token_in="USDT")

    assert res.status_code == 200
    data = res.json()
    assert data["total_max_token_in"] == "12500000000000000"
    assert data["total_in_token"] == "1875000000000000"
    assert data["status"] == "PENDING"


def test_quote_with_unsupported_token_is_a_bad_request(client):
    assert _quote(client, token_in="DOGE").status_code == 400


def test_quote_request_validation(client):
    assert _quote(client, estimated_gas=-1).status_code == 422


def _settle(client, quote_id, **overrides):
    body = {"quote_id": quote_id, "tx_hash": TX_HASH, "actual_gas_used": 1}
    body.update(overrides)
    return client.post("/api/paymaster/settlements", json=body)


def test_settle_round_trip(client):
    quote = _quote(client).json()

    res = _settle(client, quote["quote_id"], actual_gas_used=400_000, effective_gas_price="20000000000")

    assert res.status_code == 200
    body = res.json()
    assert body["quote"]["status"] == "SETTLED"
    assert body["settlement"]["refund"] == "2500000000000000"

    again = _settle(client, quote["quote_id"])
    assert again.status_code == 409

    fetched = client.get(f"/api/paymaster/settlements/{quote['quote_id']}")
    assert fetched.status_code == 200
    assert fetched.json()["quote_id"] == quote["quote_id"]


def test_settlement_ignores_terms_sent_by_the_caller(client, ledger, clock):
    quote = _quote(client).json()
    clock["offset_ms"] = 120_000

    # a pushed-out expiry and an inflated total in the body change nothing
    res = _settle(
        client,
        quote["quote_id"],
        expiry=quote["expiry"] + 10**9,
        total_max_token_in=str(10**24),
        quote={**quote, "expiry": quote["expiry"] + 10**9},
    )

    assert res.status_code == 409
    assert res.json()["detail"] == {"error": "quote_expired", "quote_id": quote["quote_id"], "status": "DECLINED"}
    assert client.get(f"/api/paymaster/quotes/{quote['quote_id']}").json()["status"] == "DECLINED"
    assert all(d["type"] != "SETTLEMENT" for d in ledger.docs.values())


def test_quote_that_was_never_issued_is_not_found(client, ledger):
    res = _settle(client, "q_never_issued", actual_gas_used=1, effective_gas_price="1")

    assert res.status_code == 404
    assert client.get("/api/paymaster/quotes/q_never_issued").status_code == 404
    assert client.get("/api/paymaster/settlements/q_never_issued").status_code == 404


def test_stored_quote_can_be_fetched(client):
    quote = _quote(client, token_in="USDT").json()

    res = client.get(f"/api/paymaster/quotes/{quote['quote_id']}")

    assert res.status_code == 200
    assert res.json()["total_in_token"] == quote["total_in_token"]
    assert res.json()["status"] == "PENDING"


def test_unknown_settlement_is_not_found(client):
    assert client.get("/api/paymaster/settlements/q_missing").status_code == 404


def test_dapp_onboarding_and_gatekeeper(client, add_chain):
    add_chain(1)
    dapp = client.post("/api/paymaster/dapps", json={"owner_id": "owner-1", "name": "Swapper"}).json()

    inst = client.post(f"/api/paymaster/dapps/{dapp['dapp_id']}/instances", json={"chain_id": 1})
    assert inst.status_code == 200
    instance_id = inst.json()["instance_id"]
    assert inst.json()["deposited_balance"] == "0"

    dep = client.post(f"/api/paymaster/dapps/instances/{instance_id}/deposit", json={"amount": "3000"})
    assert dep.json()["deposited_balance"] == "3000"

    pol = client.patch(f"/api/paymaster/dapps/instances/{instance_id}/policy", json={"daily_gas_cap": "100"})
    assert pol.json()["policy"]["daily_gas_cap"] == "100"

    ok = client.post("/api/paymaster/validate", json={"instance_id": instance_id, "estimated_cost": "100"})
    assert ok.json() == {"instance_id": instance_id, "allowed": True}
    over = client.post("/api/paymaster/validate", json={"instance_id": instance_id, "estimated_cost": "101"})
    assert over.json()["allowed"] is False

    listed = client.get("/api/paymaster/dapps/instances", params={"owner_id": "owner-1"})
    assert [i["instance_id"] for i in listed.json()] == [instance_id]


def test_denylisted_dapp_gets_forbidden(client, add_chain):
    add_chain(1)
    dapp = client.post("/api/paymaster/dapps", json={"owner_id": "owner-1", "name": "Shady"}).json()

    res = client.post(f"/api/admin/paymaster/dapps/{dapp['dapp_id']}/denylist", json={"reason": "phishing"})
    assert res.status_code == 200
    assert res.json()["status"] == "BANNED"

    inst = client.post(f"/api/paymaster/dapps/{dapp['dapp_id']}/instances", json={"chain_id": 1})
    assert inst.status_code == 403


def test_admin_endpoints_require_a_bearer_token(app):
    app.dependency_overrides.pop(require_admin)
    client = TestClient(app)

    assert client.get("/api/admin/paymaster/chains").status_code == 401
    assert client.get("/api/admin/paymaster/pools/1").status_code == 401


def test_register_chain_and_read_pool(client, rpc):
    rpc.served_chain_ids["https://rpc.base.local"] = 8453
    body = {
        "chain_id": 8453,
        "name": "Base",
        "native_token": "ETH",
        "rpc": {"primary": "https://rpc.base.local"},
        "explorer_url": "https://basescan.org",
        "min_balance": "1000000000000000000",
        "target_balance": "5000000000000000000",
    }

    res = client.post("/api/admin/paymaster/chains", json=body)
    assert res.status_code == 200
    assert res.json()["pool"]["mode"] == "INIT"

    assert client.post("/api/admin/paymaster/chains", json=body).status_code == 409

    pool = client.get("/api/admin/paymaster/pools/8453").json()
    assert pool["target_balance"] == "5000000000000000000"

    chains = client.get("/api/admin/paymaster/chains").json()
    assert [c["chain_id"] for c in chains] == [8453]


def test_register_chain_with_bad_address_is_rejected(client):
    body = {
        "chain_id": 8453,
        "name": "Base",
        "native_token": "ETH",
        "rpc": {"primary": "https://rpc.base.local"},
        "vault_address": "not-an-address",
    }
    assert client.post("/api/admin/paymaster/chains", json=body).status_code == 422


def test_pool_registered_without_addresses_can_be_configured_and_funded(client, rpc, vault):
    rpc.served_chain_ids["https://rpc.base.local"] = 8453
    body = {"chain_id": 8453, "name": "Base", "native_token": "ETH", "rpc": {"primary": "https://rpc.base.local"}}
    assert client.post("/api/admin/paymaster/chains", json=body).status_code == 200

    assert client.post("/api/admin/paymaster/pools/8453/top-up").json() == {"performed": False, "result": None}

    res = client.patch(
        "/api/admin/paymaster/pools/8453",
        json={
            "vault_address": "0x1111111111111111111111111111111111111111",
            "gas_account_address": "0x2222222222222222222222222222222222222222",
            "target_balance": "2000000000000000000",
        },
    )
    assert res.status_code == 200
    assert res.json()["vault_address"] == "0x1111111111111111111111111111111111111111"
    assert res.json()["target_balance"] == "2000000000000000000"
    assert res.json()["min_balance"] == "1000000000000000000"

    top_up = client.post("/api/admin/paymaster/pools/8453/top-up").json()
    assert top_up["performed"] is True
    assert top_up["result"]["amount"] == "2000000000000000000"
    assert vault.transfers[0]["to"] == "0x2222222222222222222222222222222222222222"


def test_configure_pool_validation(client, add_chain):
    assert client.patch("/api/admin/paymaster/pools/1", json={"min_balance": "1"}).status_code == 404

    add_chain(1)
    assert client.patch("/api/admin/paymaster/pools/1", json={"vault_address": "nope"}).status_code == 422
    assert client.patch("/api/admin/paymaster/pools/1", json={"target_balance": "1"}).status_code == 400
    assert client.patch("/api/admin/paymaster/pools/1", json={}).status_code == 400


def test_pool_mode_endpoint(client, add_chain):
    assert client.get("/api/admin/paymaster/pools/1").status_code == 404

    add_chain(1)
    res = client.put("/api/admin/paymaster/pools/1/mode", json={"mode": "PAUSED"})
    assert res.status_code == 200
    assert res.json()["mode"] == "PAUSED"

    assert client.put("/api/admin/paymaster/pools/1/mode", json={"mode": "SAFE_MODE"}).status_code == 400


def test_emergency_top_up_endpoint(client, add_chain, pools):
    add_chain(1, balance=10**17, mode=PaymasterMode.SAFE_MODE)

    res = client.post("/api/admin/paymaster/pools/1/top-up")

    assert res.status_code == 200
    body = res.json()
    assert body["performed"] is True
    assert body["result"]["balance_after"] == "5000000000000000000"
    assert pools.get_pool(1).mode == PaymasterMode.NORMAL

    again = client.post("/api/admin/paymaster/pools/1/top-up").json()
    assert again == {"performed": False, "result": None}


def test_ledger_listing_filters_by_type(client, writer):
    _quote(client)
    writer.flush()

    res = client.get("/api/admin/paymaster/ledger", params={"type": "QUOTE"})
    assert res.status_code == 200
    [entry] = res.json()
    assert entry["type"] == "QUOTE"

    assert client.get("/api/admin/paymaster/ledger", params={"type": "REBALANCE"}).json() == []
