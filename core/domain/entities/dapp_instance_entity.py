from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from core.domain.entities.base_entity import VersionedEntity, Wei
from core.domain.enums.paymaster_enums import SponsorScheme

ONE_NATIVE = 10**18

DEFAULT_DAILY_GAS_CAP = ONE_NATIVE
DEFAULT_PER_USER_DAILY_CAP = 5 * 10**16


class InstancePolicy(BaseModel):
    sponsor_scheme: SponsorScheme = SponsorScheme.FULL
    daily_gas_cap: Wei = DEFAULT_DAILY_GAS_CAP
    per_user_daily_cap: Wei = DEFAULT_PER_USER_DAILY_CAP
    whitelist_tokens: List[str] = Field(default_factory=list)

    model_config = ConfigDict(extra="allow", use_enum_values=True)


class InstanceAnalytics(BaseModel):
    """
    Usage counters.

    `total_sponsored` only ever grows. The daily window is
    `total_sponsored - day_start_total`; the daily reset job moves
    `day_start_total` up to `total_sponsored`.
    """

    total_sponsored: Wei = 0
    tx_count: int = Field(default=0, ge=0)
    user_count: int = Field(default=0, ge=0)
    day_start_total: Wei = 0
    day_started_at: Optional[int] = None

    model_config = ConfigDict(extra="allow")

    @property
    def sponsored_today(self) -> int:
        return max(0, int(self.total_sponsored) - int(self.day_start_total))


class DAppPaymasterInstanceEntity(VersionedEntity):
    """
    Mongo document (collection: paymaster_instances, _id = "pm_<dapp_id>_<chain_id>").
    """

    instance_id: str
    dapp_id: str
    chain_id: int = Field(..., gt=0)
    api_key: str
    webhook_url: Optional[str] = None
    deposited_balance: Wei
    policy: InstancePolicy
    analytics: InstanceAnalytics

    model_config = ConfigDict(extra="allow", use_enum_values=True)

    @staticmethod
    def instance_id_for(dapp_id: str, chain_id: int) -> str:
        return f"pm_{dapp_id}_{int(chain_id)}"
