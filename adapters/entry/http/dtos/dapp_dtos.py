from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from core.domain.entities.base_entity import Wei
from core.domain.enums.paymaster_enums import SponsorScheme


class RegisterDAppRequest(BaseModel):
    owner_id: str
    name: str

    @field_validator("owner_id", "name")
    @classmethod
    def _required(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("Field is required.")
        return v


class CreateInstanceRequest(BaseModel):
    chain_id: int = Field(..., gt=0)
    webhook_url: Optional[str] = None


class DepositRequest(BaseModel):
    amount: Wei = Field(..., description="Amount in wei, as a decimal string")


class UpdatePolicyRequest(BaseModel):
    """
    Partial policy update: only the fields sent are changed.
    """

    sponsor_scheme: Optional[SponsorScheme] = None
    daily_gas_cap: Optional[Wei] = None
    per_user_daily_cap: Optional[Wei] = None
    whitelist_tokens: Optional[List[str]] = None

    def to_updates(self) -> Dict[str, Any]:
        return self.model_dump(exclude_unset=True, exclude_none=True, mode="python")
