from __future__ import annotations

from pydantic import ConfigDict, Field

from core.domain.entities.base_entity import VersionedEntity, Wei
from core.domain.enums.paymaster_enums import QuoteStatus

NATIVE_TOKEN = "NATIVE"
SPONSORED_TOKEN = "SPONSORED"


class FeeQuote(VersionedEntity):
    """
    Mongo document (collection: paymaster_quotes, _id = quote_id).

    Time-bounded price commitment for sponsoring one transaction. Stored when
    issued; settlement only ever reads it back from the store, so a caller
    can reference a quote but never restate its terms.

    `base_cost`, `buffer`, `surcharge` and `total_max_token_in` are in native
    wei; `total_in_token` is `total_max_token_in` converted to `token_in`.
    """

    quote_id: str
    dapp_id: str
    user_id: str
    chain_id: int = Field(..., gt=0)
    token_in: str

    estimated_gas: int = Field(..., ge=0)
    gas_price: Wei

    base_cost: Wei
    buffer: Wei
    surcharge: Wei
    total_max_token_in: Wei
    total_in_token: Wei

    issued_at: int
    expiry: int
    status: QuoteStatus = QuoteStatus.PENDING

    model_config = ConfigDict(extra="allow", use_enum_values=True)

    def is_expired(self, now_ms: int) -> bool:
        return now_ms > self.expiry
