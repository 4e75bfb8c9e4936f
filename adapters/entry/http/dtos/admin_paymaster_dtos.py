from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field, field_validator
from web3 import Web3

from core.domain.entities.base_entity import Wei
from core.domain.entities.chain_config_entity import ChainConfigEntity, RpcConfig
from core.domain.enums.paymaster_enums import ChainStatus, FeeModel, NodeType, PaymasterMode
from core.use_cases.admin_chain_registry_usecase import DEFAULT_POOL_MIN_BALANCE, DEFAULT_POOL_TARGET_BALANCE


def _validate_addr(v: Optional[str]) -> Optional[str]:
    v = (v or "").strip()
    if not v:
        return None
    if not Web3.is_address(v):
        raise ValueError("Invalid address (expected 0x...).")
    return Web3.to_checksum_address(v)


class RpcConfigRequest(BaseModel):
    primary: str = Field(..., description="Primary HTTP RPC endpoint")
    secondary: Optional[str] = None
    websocket: Optional[str] = None
    node_type: NodeType = NodeType.MANAGED

    @field_validator("primary")
    @classmethod
    def _primary_required(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("rpc.primary is required")
        return v


class RegisterChainRequest(BaseModel):
    """
    Register a chain and auto-create its paymaster pool (mode INIT).

    Amounts are wei, sent as decimal strings.
    """

    chain_id: int = Field(..., gt=0)
    name: str
    native_token: str
    rpc: RpcConfigRequest
    explorer_url: str = ""
    status: ChainStatus = ChainStatus.TESTING
    fee_model: FeeModel = FeeModel.EIP1559
    finality_confirmations: int = Field(default=1, ge=0)
    max_gas_price: Optional[Wei] = None

    gas_account_address: Optional[str] = Field(default=None, description="Hot wallet the paymaster spends from")
    vault_address: Optional[str] = Field(default=None, description="Vault that funds the gas account")
    min_balance: Wei = DEFAULT_POOL_MIN_BALANCE
    target_balance: Wei = DEFAULT_POOL_TARGET_BALANCE

    validate_rpc: bool = True

    @field_validator("name", "native_token")
    @classmethod
    def _required(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("Field is required.")
        return v

    @field_validator("gas_account_address", "vault_address")
    @classmethod
    def _addr(cls, v: Optional[str]) -> Optional[str]:
        return _validate_addr(v)

    def to_chain_config(self) -> ChainConfigEntity:
        return ChainConfigEntity(
            chain_id=self.chain_id,
            name=self.name,
            native_token=self.native_token,
            rpc=RpcConfig(**self.rpc.model_dump()),
            explorer_url=self.explorer_url,
            status=self.status,
            fee_model=self.fee_model,
            finality_confirmations=self.finality_confirmations,
            max_gas_price=self.max_gas_price,
        )


class UpdateChainStatusRequest(BaseModel):
    status: ChainStatus


class SetPoolModeRequest(BaseModel):
    mode: PaymasterMode = Field(..., description="NORMAL or PAUSED")


class DenylistDAppRequest(BaseModel):
    reason: str = Field(..., min_length=1)


class ConfigurePoolRequest(BaseModel):
    """
    Partial pool update; omitted fields keep their stored value. Amounts are
    wei, sent as decimal strings.
    """

    gas_account_address: Optional[str] = None
    vault_address: Optional[str] = None
    min_balance: Optional[Wei] = None
    target_balance: Optional[Wei] = None

    @field_validator("gas_account_address", "vault_address")
    @classmethod
    def _addr(cls, v: Optional[str]) -> Optional[str]:
        return _validate_addr(v)
