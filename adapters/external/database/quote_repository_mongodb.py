# quote_repository_mongodb.py

from __future__ import annotations

from typing import Any, Dict, Optional

from pymongo import ReturnDocument
from pymongo.collection import Collection
from pymongo.database import Database

from adapters.external.database.helper_repo import dump_partial, sanitize_for_mongo
from adapters.external.database.mongo_client import get_mongo_db
from core.domain.entities.base_entity import MongoEntity
from core.domain.entities.fee_quote_entity import FeeQuote
from core.domain.repositories.quote_repository_interface import QuoteRepositoryInterface
from core.services.exceptions import ConcurrentUpdateError


class QuoteRepositoryMongoDB(QuoteRepositoryInterface):
    """
    Collection: paymaster_quotes

    Issued quotes, keyed by quote_id. Status moves PENDING -> SETTLED or
    DECLINED through compare-and-swap on `version`.
    """

    COLLECTION_NAME = "paymaster_quotes"

    def __init__(self, db: Optional[Database] = None) -> None:
        self._db: Database = db if db is not None else get_mongo_db()
        self._collection: Collection = self._db[self.COLLECTION_NAME]

    @property
    def collection(self) -> Collection:
        return self._collection

    def ensure_indexes(self) -> None:
        self._collection.create_index([("dapp_id", 1), ("issued_at", -1)], name="ix_paymaster_quotes_dapp_issued_desc")
        self._collection.create_index([("status", 1), ("expiry", 1)], name="ix_paymaster_quotes_status_expiry")

    def insert(self, quote: FeeQuote) -> FeeQuote:
        quote.id = quote.quote_id
        quote = quote.touch_for_insert()
        self._collection.insert_one(sanitize_for_mongo(quote.to_mongo()))
        return quote

    def get_quote(self, quote_id: str) -> Optional[FeeQuote]:
        return FeeQuote.from_mongo(self._collection.find_one({"_id": quote_id}))

    def update_quote(self, quote_id: str, fields: Dict[str, Any], *, expected_version: int) -> FeeQuote:
        set_doc = dump_partial(FeeQuote, fields)
        set_doc["updated_at"] = MongoEntity.now_ms()
        set_doc["updated_at_iso"] = MongoEntity.now_iso()

        doc = self._collection.find_one_and_update(
            {"_id": quote_id, "version": int(expected_version)},
            {"$set": set_doc, "$inc": {"version": 1}},
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            raise ConcurrentUpdateError(self.COLLECTION_NAME, quote_id, int(expected_version))
        return FeeQuote.from_mongo(doc)
