from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional, Sequence

from core.domain.entities.ledger_entry_entity import LedgerEntry, SettlementLedgerEntry
from core.domain.enums.paymaster_enums import LedgerEntryType


class LedgerRepositoryInterface(ABC):
    """
    Append-only ledger. There is deliberately no update or delete.
    """

    @abstractmethod
    def append(self, entry: LedgerEntry) -> LedgerEntry:
        """
        Insert a new entry.

        Raises:
            QuoteAlreadySettledError: a SETTLEMENT for the same quote exists.
        """
        raise NotImplementedError

    @abstractmethod
    def get(self, entry_id: str) -> Optional[LedgerEntry]:
        raise NotImplementedError

    @abstractmethod
    def find_settlement(self, quote_id: str) -> Optional[SettlementLedgerEntry]:
        raise NotImplementedError

    @abstractmethod
    def list_recent(
        self,
        *,
        entry_type: Optional[LedgerEntryType] = None,
        chain_id: Optional[int] = None,
        limit: int = 100,
    ) -> Sequence[LedgerEntry]:
        raise NotImplementedError
