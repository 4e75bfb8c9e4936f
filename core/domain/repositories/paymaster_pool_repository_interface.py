from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from core.domain.entities.paymaster_pool_entity import PaymasterPoolEntity


class PaymasterPoolRepositoryInterface(ABC):
    @abstractmethod
    def get_pool(self, chain_id: int) -> Optional[PaymasterPoolEntity]:
        raise NotImplementedError

    @abstractmethod
    def insert(self, entity: PaymasterPoolEntity) -> PaymasterPoolEntity:
        raise NotImplementedError

    @abstractmethod
    def update_pool(
        self,
        chain_id: int,
        fields: Dict[str, Any],
        *,
        expected_version: int,
    ) -> PaymasterPoolEntity:
        """
        Compare-and-swap partial update.

        Applies `fields` only if the stored version equals `expected_version`,
        bumps the version and returns the updated pool.

        Raises:
            ConcurrentUpdateError: the version moved (or the pool vanished).
        """
        raise NotImplementedError
