# core/services/web3_cache.py

from __future__ import annotations

import threading
from time import time
from typing import Dict, Tuple

from web3 import Web3
from web3.providers.rpc import HTTPProvider

_W3_CACHE: Dict[str, Tuple[float, Web3]] = {}
_W3_LOCK = threading.Lock()
_W3_TTL_SEC = 10 * 60  # 10 minutes


def get_web3(rpc_url: str, *, timeout: int = 10) -> Web3:
    """
    Cache Web3 instances per rpc_url so every health tick and quote reuses
    the same HTTPProvider session.
    """
    url = (rpc_url or "").strip()
    if not url:
        raise ValueError("rpc_url is required")

    now = time()
    with _W3_LOCK:
        hit = _W3_CACHE.get(url)
        if hit and (now - hit[0]) < _W3_TTL_SEC:
            return hit[1]

        w3 = Web3(HTTPProvider(url, request_kwargs={"timeout": timeout}))
        _W3_CACHE[url] = (now, w3)
        return w3
