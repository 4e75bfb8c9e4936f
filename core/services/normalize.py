from __future__ import annotations

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


def _norm(a: str | None) -> str:
    return (a or "").strip()


def _norm_lower(a: str | None) -> str:
    return _norm(a).lower()


def _norm_upper(a: str | None) -> str:
    return _norm(a).upper()
