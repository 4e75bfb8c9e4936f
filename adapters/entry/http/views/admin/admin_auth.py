from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Iterable, Optional, Set

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from privy import PrivyAPI

from config import _parse_csv, get_settings

logger = logging.getLogger(__name__)

bearer = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class AdminPrincipal:
    """
    Paymaster operator authenticated through a Privy access token whose linked
    wallet is on the ADMIN_WALLETS allowlist.
    """

    privy_did: str
    wallet_address: str

    @property
    def admin_id(self) -> str:
        return self.wallet_address or self.privy_did


@lru_cache(maxsize=1)
def _admin_allowlist() -> Set[str]:
    return set(_parse_csv(get_settings().ADMIN_WALLETS, lower=True))


@lru_cache(maxsize=1)
def _privy_client() -> PrivyAPI:
    s = get_settings()
    if not s.PRIVY_APP_ID or not s.PRIVY_APP_SECRET:
        raise RuntimeError("PRIVY_APP_ID and PRIVY_APP_SECRET must be set to use admin endpoints")
    return PrivyAPI(app_id=s.PRIVY_APP_ID, app_secret=s.PRIVY_APP_SECRET)


def _field(obj: Any, key: str) -> Any:
    if obj is None:
        return None
    if isinstance(obj, dict):
        return obj.get(key)
    return getattr(obj, key, None)


def _as_address(value: Any) -> str:
    return value if isinstance(value, str) and value.startswith("0x") else ""


def _first_address(items: Optional[Iterable[Any]]) -> str:
    for item in items or []:
        addr = _as_address(_field(item, "address") or _field(item, "wallet_address"))
        if addr:
            return addr
    return ""


def wallet_of(user: Any) -> str:
    """
    Ethereum address linked to a Privy user, or "" when it has none.

    Looks at the flat fields first, then `wallet`, `wallets` and finally
    `linked_accounts` (wallet-typed entries before anything else).
    """
    for key in ("wallet_address", "address"):
        addr = _as_address(_field(user, key))
        if addr:
            return addr

    wallet = _field(user, "wallet")
    addr = _as_address(_field(wallet, "address") or _field(wallet, "wallet_address"))
    if addr:
        return addr

    wallets = _field(user, "wallets")
    if isinstance(wallets, list):
        addr = _first_address(wallets)
        if addr:
            return addr

    linked = _field(user, "linked_accounts")
    if isinstance(linked, list):
        typed = [a for a in linked if str(_field(a, "type") or "").lower() == "wallet"]
        return _first_address(typed) or _first_address(linked)

    return ""


def _fetch_user(client: PrivyAPI, did: str) -> Any:
    users = client.users
    for name, kwargs in (("get", None), ("get_by_id", {"user_id": did}), ("retrieve", {"user_id": did})):
        fn = getattr(users, name, None)
        if callable(fn):
            return fn(did) if kwargs is None else fn(**kwargs)
    raise RuntimeError("Installed privy SDK has no users.get / get_by_id / retrieve")


def require_admin(
    creds: HTTPAuthorizationCredentials = Depends(bearer),
) -> AdminPrincipal:
    if not creds or not creds.credentials:
        raise HTTPException(status_code=401, detail="Missing Authorization bearer token.")

    try:
        client = _privy_client()
        claims = client.users.verify_access_token(auth_token=creds.credentials)

        privy_did = str(_field(claims, "user_id") or "")
        if not privy_did:
            raise HTTPException(status_code=401, detail="Invalid token (missing user_id).")

        wallet = wallet_of(_fetch_user(client, privy_did)).lower()
        if not wallet:
            raise HTTPException(status_code=403, detail="Token verified but user has no linked wallet address.")
        if wallet not in _admin_allowlist():
            logger.warning("[AdminAuth] Rejected non-allowlisted wallet %s (%s)", wallet, privy_did)
            raise HTTPException(status_code=403, detail="Not authorized (wallet not allowlisted).")

        return AdminPrincipal(privy_did=privy_did, wallet_address=wallet)

    except HTTPException:
        raise
    except Exception as e:
        msg = str(e) or "Invalid token"
        logger.info("[AdminAuth] Token rejected: %s", msg)
        raise HTTPException(status_code=401, detail=f"Authentication failed: {msg}")
