from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional, Sequence

from core.domain.entities.chain_config_entity import ChainConfigEntity
from core.domain.enums.paymaster_enums import ChainStatus


class ChainConfigRepositoryInterface(ABC):
    @abstractmethod
    def get(self, chain_id: int) -> Optional[ChainConfigEntity]:
        raise NotImplementedError

    @abstractmethod
    def list_all(self) -> Sequence[ChainConfigEntity]:
        raise NotImplementedError

    @abstractmethod
    def insert(self, entity: ChainConfigEntity) -> ChainConfigEntity:
        """
        Raises ChainAlreadyRegisteredError when the chain id is taken.
        """
        raise NotImplementedError

    @abstractmethod
    def delete(self, chain_id: int) -> bool:
        raise NotImplementedError

    @abstractmethod
    def set_status(self, chain_id: int, status: ChainStatus) -> bool:
        raise NotImplementedError
