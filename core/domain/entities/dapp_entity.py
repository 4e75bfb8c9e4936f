from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from core.domain.entities.base_entity import VersionedEntity
from core.domain.enums.paymaster_enums import DAppStatus


class ComplianceHooks(BaseModel):
    is_denylisted: bool = False
    fraud_flag: bool = False
    risk_score: float = 0.0
    freeze_reason: Optional[str] = None

    model_config = ConfigDict(extra="allow")


class DAppAccountEntity(VersionedEntity):
    """
    Mongo document (collection: paymaster_dapps, _id = dapp_id).

    A sponsored application. Status and compliance are changed by admins or the
    compliance flow; `allowed_chains` grows when an instance is created.
    """

    dapp_id: str
    owner_id: str
    name: str
    status: DAppStatus
    allowed_chains: List[int] = Field(default_factory=list)
    compliance: ComplianceHooks = Field(default_factory=ComplianceHooks)

    model_config = ConfigDict(extra="allow", use_enum_values=True)

    def blocked_reason(self) -> Optional[str]:
        """
        Return why this dapp may not be sponsored, or None when it may.
        """
        if self.compliance.is_denylisted:
            return "denylisted"
        if self.status != DAppStatus.ACTIVE:
            return f"status={self.status}"
        return None
