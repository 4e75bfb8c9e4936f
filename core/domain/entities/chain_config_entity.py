from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from core.domain.entities.base_entity import MongoEntity, Wei
from core.domain.enums.paymaster_enums import ChainStatus, FeeModel, NodeType


class RpcConfig(BaseModel):
    primary: str
    secondary: Optional[str] = None
    websocket: Optional[str] = None
    node_type: NodeType = NodeType.MANAGED

    model_config = ConfigDict(extra="allow", use_enum_values=True)

    def http_urls(self) -> List[str]:
        """
        HTTP endpoints in priority order (primary first), without duplicates.
        """
        out: List[str] = []
        for url in (self.primary, self.secondary):
            url = (url or "").strip()
            if url and url not in out:
                out.append(url)
        return out


class ChainConfigEntity(MongoEntity):
    """
    Mongo document (collection: chains, _id = str(chain_id)).

    Identity fields (chain_id, name, native_token) are immutable once registered;
    only `status` is changed afterwards, by an admin.
    """

    chain_id: int = Field(..., gt=0)
    name: str
    native_token: str
    rpc: RpcConfig
    explorer_url: str
    status: ChainStatus

    fee_model: FeeModel = FeeModel.EIP1559
    finality_confirmations: int = 1

    # optional ceiling used by the gas stability predicate
    max_gas_price: Optional[Wei] = None

    model_config = ConfigDict(extra="allow", use_enum_values=True)

    @staticmethod
    def doc_id(chain_id: int) -> str:
        return str(int(chain_id))
