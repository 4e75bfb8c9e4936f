from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials

from adapters.entry.http.views.admin import admin_auth
from adapters.entry.http.views.admin.admin_auth import require_admin, wallet_of

ADMIN_WALLET = "0x00000000000000000000000000000000000000AA"


@pytest.fixture(autouse=True)
def allowlist():
    with patch.object(admin_auth, "_admin_allowlist", return_value={ADMIN_WALLET.lower()}):
        yield


def _creds(token="token"):
    return HTTPAuthorizationCredentials(scheme="Bearer", credentials=token)


def _client(user, did="did:privy:abc"):
    client = MagicMock()
    client.users.verify_access_token.return_value = {"user_id": did}
    client.users.get.return_value = user
    return client


@pytest.mark.parametrize(
    "user",
    [
        {"wallet_address": ADMIN_WALLET},
        {"wallet": {"address": ADMIN_WALLET}},
        {"wallets": [{"address": "not-hex"}, {"wallet_address": ADMIN_WALLET}]},
        {"linked_accounts": [{"type": "email", "address": "a@b.c"}, {"type": "wallet", "address": ADMIN_WALLET}]},
        SimpleNamespace(linked_accounts=[SimpleNamespace(type="wallet", address=ADMIN_WALLET)]),
    ],
)
def test_wallet_of_finds_the_linked_wallet(user):
    assert wallet_of(user) == ADMIN_WALLET


def test_wallet_of_without_wallet():
    assert wallet_of({"linked_accounts": [{"type": "email", "address": "a@b.c"}]}) == ""
    assert wallet_of(None) == ""


def test_missing_token_is_unauthorized():
    with pytest.raises(HTTPException) as err:
        require_admin(None)
    assert err.value.status_code == 401


def test_allowlisted_wallet_is_admitted():
    with patch.object(admin_auth, "_privy_client", return_value=_client({"wallet_address": ADMIN_WALLET})):
        principal = require_admin(_creds())

    assert principal.wallet_address == ADMIN_WALLET.lower()
    assert principal.admin_id == ADMIN_WALLET.lower()
    assert principal.privy_did == "did:privy:abc"


def test_other_wallet_is_forbidden():
    other = "0x00000000000000000000000000000000000000bb"
    with patch.object(admin_auth, "_privy_client", return_value=_client({"wallet_address": other})):
        with pytest.raises(HTTPException) as err:
            require_admin(_creds())
    assert err.value.status_code == 403


def test_user_without_wallet_is_forbidden():
    with patch.object(admin_auth, "_privy_client", return_value=_client({"linked_accounts": []})):
        with pytest.raises(HTTPException) as err:
            require_admin(_creds())
    assert err.value.status_code == 403


def test_rejected_token_is_unauthorized():
    client = MagicMock()
    client.users.verify_access_token.side_effect = RuntimeError("expired")
    with patch.object(admin_auth, "_privy_client", return_value=client):
        with pytest.raises(HTTPException) as err:
            require_admin(_creds())
    assert err.value.status_code == 401
    assert "expired" in err.value.detail
