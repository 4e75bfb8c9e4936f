from __future__ import annotations

from typing import Any, Dict

from pydantic import ConfigDict, Field

from core.domain.entities.base_entity import MongoEntity
from core.domain.enums.paymaster_enums import DenylistTargetType


class AuditLogEntity(MongoEntity):
    """
    Mongo document (collection: audit_trails). Append-only.
    """

    admin_id: str
    action: str
    target_id: str
    changes: Dict[str, Any] = Field(default_factory=dict)
    timestamp: int

    model_config = ConfigDict(extra="allow", use_enum_values=True, frozen=True)


class DenylistEntryEntity(MongoEntity):
    """
    Mongo document (collection: paymaster_denylist, _id = "deny_<TYPE>_<target_id>").
    """

    target_type: DenylistTargetType
    target_id: str
    reason: str
    active: bool = True
    timestamp: int

    model_config = ConfigDict(extra="allow", use_enum_values=True)

    @staticmethod
    def doc_id(target_type: DenylistTargetType | str, target_id: str) -> str:
        return f"deny_{str(target_type).upper()}_{target_id}"
