# ledger_repository_mongodb.py

from __future__ import annotations

from typing import Any, Dict, Optional, Sequence

from pymongo.collection import Collection
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from adapters.external.database.helper_repo import sanitize_for_mongo
from adapters.external.database.mongo_client import get_mongo_db
from core.domain.entities.ledger_entry_entity import (
    LedgerEntry,
    SettlementLedgerEntry,
    ledger_entry_from_mongo,
)
from core.domain.enums.paymaster_enums import LedgerEntryType
from core.domain.repositories.ledger_repository_interface import LedgerRepositoryInterface
from core.services.exceptions import QuoteAlreadySettledError


class LedgerRepositoryMongoDB(LedgerRepositoryInterface):
    """
    Collection: paymaster_ledger

    Insert-only. A partial unique index on `quote_id` for SETTLEMENT entries
    guarantees a quote is settled at most once.
    """

    COLLECTION_NAME = "paymaster_ledger"

    def __init__(self, db: Optional[Database] = None) -> None:
        self._db: Database = db if db is not None else get_mongo_db()
        self._collection: Collection = self._db[self.COLLECTION_NAME]

    @property
    def collection(self) -> Collection:
        return self._collection

    def ensure_indexes(self) -> None:
        self._collection.create_index([("type", 1), ("timestamp", -1)], name="ix_paymaster_ledger_type_ts_desc")
        self._collection.create_index([("chain_id", 1), ("timestamp", -1)], name="ix_paymaster_ledger_chain_ts_desc")
        self._collection.create_index(
            [("quote_id", 1)],
            unique=True,
            partialFilterExpression={"type": LedgerEntryType.SETTLEMENT.value},
            name="ux_paymaster_ledger_settlement_quote_id",
        )

    def append(self, entry: LedgerEntry) -> LedgerEntry:
        doc = sanitize_for_mongo(entry.to_mongo())
        doc["_id"] = entry.entry_id
        try:
            self._collection.insert_one(doc)
        except DuplicateKeyError as exc:
            if isinstance(entry, SettlementLedgerEntry):
                raise QuoteAlreadySettledError(entry.quote_id) from exc
            raise
        return entry

    def get(self, entry_id: str) -> Optional[LedgerEntry]:
        return ledger_entry_from_mongo(self._collection.find_one({"_id": entry_id}))

    def find_settlement(self, quote_id: str) -> Optional[SettlementLedgerEntry]:
        doc = self._collection.find_one({"type": LedgerEntryType.SETTLEMENT.value, "quote_id": quote_id})
        return SettlementLedgerEntry.from_mongo(doc)

    def list_recent(
        self,
        *,
        entry_type: Optional[LedgerEntryType] = None,
        chain_id: Optional[int] = None,
        limit: int = 100,
    ) -> Sequence[LedgerEntry]:
        query: Dict[str, Any] = {}
        if entry_type is not None:
            query["type"] = LedgerEntryType(entry_type).value
        if chain_id is not None:
            query["chain_id"] = int(chain_id)
        cursor = self._collection.find(query).sort("timestamp", -1).limit(int(limit))
        return [ledger_entry_from_mongo(d) for d in cursor if d]
