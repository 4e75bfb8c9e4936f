from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Dict, Optional

from core.domain.enums.paymaster_enums import PaymasterMode


@dataclass(frozen=True)
class HealthPredicates:
    rpc_reachable: bool
    gas_stable: bool
    balance_sufficient: bool

    @property
    def all_ok(self) -> bool:
        return self.rpc_reachable and self.gas_stable and self.balance_sufficient

    def as_dict(self) -> Dict[str, bool]:
        return asdict(self)


def resolve_target_mode(persisted_mode: Optional[str], predicates: HealthPredicates) -> PaymasterMode:
    """
    Target mode of a pool after a health check.

    Precedence: PAUSED (admin override) > any failed predicate (SAFE_MODE) > NORMAL.
    THROTTLED and RECOVERY are never produced here.
    """
    if persisted_mode == PaymasterMode.PAUSED:
        return PaymasterMode.PAUSED
    if not predicates.all_ok:
        return PaymasterMode.SAFE_MODE
    return PaymasterMode.NORMAL


def is_gas_stable(median: int, variance_pct: int, *, max_variance_pct: int, max_gas_price: Optional[int]) -> bool:
    """
    Gas price counts as stable when endpoints agree within `max_variance_pct`
    and the median is under the chain's configured ceiling (if any).
    """
    if median <= 0:
        return False
    if variance_pct > max_variance_pct:
        return False
    if max_gas_price is not None and median > max_gas_price:
        return False
    return True
