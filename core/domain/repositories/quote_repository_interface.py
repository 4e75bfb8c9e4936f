from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from core.domain.entities.fee_quote_entity import FeeQuote


class QuoteRepositoryInterface(ABC):
    @abstractmethod
    def insert(self, quote: FeeQuote) -> FeeQuote:
        raise NotImplementedError

    @abstractmethod
    def get_quote(self, quote_id: str) -> Optional[FeeQuote]:
        raise NotImplementedError

    @abstractmethod
    def update_quote(self, quote_id: str, fields: Dict[str, Any], *, expected_version: int) -> FeeQuote:
        """
        Compare-and-swap partial update (status changes).

        Raises:
            ConcurrentUpdateError: the version moved (or the quote vanished).
        """
        raise NotImplementedError
