from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from core.domain.entities.base_entity import VersionedEntity, Wei
from core.domain.enums.paymaster_enums import PaymasterMode, TopUpReason


class PendingTopUp(BaseModel):
    """
    A vault transfer that was broadcast but not yet credited to the pool.
    """

    tx_hash: str
    amount: Wei
    reason: TopUpReason
    balance_before: Wei
    sent_at: int

    model_config = ConfigDict(use_enum_values=True)


class PaymasterPoolEntity(VersionedEntity):
    """
    Mongo document (collection: paymaster_pools, _id = "pool_<chain_id>").

    One liquidity pool per chain. Written by the health monitor (mode,
    last_health_check), by the rebalance orchestrator (balance, mode,
    last_top_up_at, pending_top_up) and by admins (mode, addresses,
    thresholds). All amounts are in wei.

    `pending_top_up` holds at most one in-flight transfer; no new transfer
    is sent for the chain until it is confirmed or found reverted.
    """

    chain_id: int = Field(..., gt=0)
    gas_account_address: str
    vault_address: str

    balance: Wei
    min_balance: Wei
    target_balance: Wei
    spend_rate_24h: Wei

    mode: PaymasterMode
    pending_top_up: Optional[PendingTopUp] = None
    last_top_up_at: int = 0
    last_health_check: Optional[int] = None
    anomaly_score: float = 0.0

    model_config = ConfigDict(extra="allow", use_enum_values=True)

    @model_validator(mode="after")
    def _check_target_over_min(self) -> "PaymasterPoolEntity":
        if self.target_balance < self.min_balance:
            raise ValueError("target_balance must be >= min_balance")
        return self

    @staticmethod
    def pool_id_for(chain_id: int) -> str:
        return f"pool_{int(chain_id)}"

    @property
    def pool_id(self) -> str:
        return self.pool_id_for(self.chain_id)
