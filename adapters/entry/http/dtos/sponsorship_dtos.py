from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field, field_validator

from core.domain.entities.base_entity import Wei
from core.domain.entities.fee_quote_entity import NATIVE_TOKEN


class QuoteRequest(BaseModel):
    dapp_id: str
    user_id: str
    chain_id: int = Field(..., gt=0)
    token_in: str = Field(default=NATIVE_TOKEN, description='Payment token symbol ("NATIVE", "USDT", ...)')
    estimated_gas: int = Field(..., ge=0)

    @field_validator("dapp_id", "user_id")
    @classmethod
    def _required(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("Field is required.")
        return v


class ValidateSponsorshipRequest(BaseModel):
    instance_id: str
    user_address: Optional[str] = Field(default=None, description="End user being sponsored")
    estimated_cost: Wei = Field(..., description="Cost to sponsor in wei, as a decimal string")


class SettleRequest(BaseModel):
    """
    Settle a quote previously returned by POST /paymaster/quotes. Only the
    id is taken; the terms come from the stored quote.
    """

    quote_id: str
    tx_hash: str
    actual_gas_used: int = Field(..., ge=0)
    effective_gas_price: Optional[Wei] = Field(
        default=None,
        description="Overrides the receipt lookup when given",
    )

    @field_validator("quote_id")
    @classmethod
    def _quote_id(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("quote_id is required")
        return v

    @field_validator("tx_hash")
    @classmethod
    def _tx_hash(cls, v: str) -> str:
        v = (v or "").strip()
        if not v.startswith("0x"):
            raise ValueError("tx_hash must be a 0x-prefixed hash")
        return v
