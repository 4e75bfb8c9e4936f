from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional, Sequence

from core.domain.entities.audit_log_entity import AuditLogEntity, DenylistEntryEntity
from core.domain.enums.paymaster_enums import DenylistTargetType


class AuditRepositoryInterface(ABC):
    @abstractmethod
    def append(self, entry: AuditLogEntity) -> None:
        raise NotImplementedError

    @abstractmethod
    def list_for_target(self, target_id: str, limit: int = 100) -> Sequence[AuditLogEntity]:
        raise NotImplementedError


class DenylistRepositoryInterface(ABC):
    @abstractmethod
    def upsert(self, entry: DenylistEntryEntity) -> None:
        raise NotImplementedError

    @abstractmethod
    def get(self, target_type: DenylistTargetType, target_id: str) -> Optional[DenylistEntryEntity]:
        raise NotImplementedError
