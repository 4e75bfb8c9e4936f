from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Sequence

from core.domain.entities.dapp_entity import DAppAccountEntity
from core.domain.entities.dapp_instance_entity import DAppPaymasterInstanceEntity


class DAppRepositoryInterface(ABC):
    @abstractmethod
    def get_dapp(self, dapp_id: str) -> Optional[DAppAccountEntity]:
        raise NotImplementedError

    @abstractmethod
    def insert_dapp(self, entity: DAppAccountEntity) -> DAppAccountEntity:
        raise NotImplementedError

    @abstractmethod
    def update_dapp(self, dapp_id: str, fields: Dict[str, Any], *, expected_version: int) -> DAppAccountEntity:
        """
        Compare-and-swap partial update. Raises ConcurrentUpdateError on version mismatch.
        """
        raise NotImplementedError

    @abstractmethod
    def list_by_owner(self, owner_id: str) -> Sequence[DAppAccountEntity]:
        raise NotImplementedError


class DAppInstanceRepositoryInterface(ABC):
    @abstractmethod
    def get_instance(self, instance_id: str) -> Optional[DAppPaymasterInstanceEntity]:
        raise NotImplementedError

    @abstractmethod
    def insert_instance(self, entity: DAppPaymasterInstanceEntity) -> DAppPaymasterInstanceEntity:
        """
        Raises InstanceAlreadyExistsError when the instance id is taken.
        """
        raise NotImplementedError

    @abstractmethod
    def update_instance(
        self,
        instance_id: str,
        fields: Dict[str, Any],
        *,
        expected_version: int,
    ) -> DAppPaymasterInstanceEntity:
        """
        Compare-and-swap partial update. Raises ConcurrentUpdateError on version mismatch.
        """
        raise NotImplementedError

    @abstractmethod
    def list_by_dapps(self, dapp_ids: Sequence[str]) -> Sequence[DAppPaymasterInstanceEntity]:
        raise NotImplementedError

    @abstractmethod
    def list_all(self) -> Sequence[DAppPaymasterInstanceEntity]:
        raise NotImplementedError
