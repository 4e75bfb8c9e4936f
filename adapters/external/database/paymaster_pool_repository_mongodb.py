# paymaster_pool_repository_mongodb.py

from __future__ import annotations

from typing import Any, Dict, Optional

from pymongo import ReturnDocument
from pymongo.collection import Collection
from pymongo.database import Database

from adapters.external.database.helper_repo import dump_partial, sanitize_for_mongo
from adapters.external.database.mongo_client import get_mongo_db
from core.domain.entities.base_entity import MongoEntity
from core.domain.entities.paymaster_pool_entity import PaymasterPoolEntity
from core.domain.repositories.paymaster_pool_repository_interface import PaymasterPoolRepositoryInterface
from core.services.exceptions import ConcurrentUpdateError
from core.services.normalize import _norm_lower

_ADDRESS_FIELDS = ("gas_account_address", "vault_address")


class PaymasterPoolRepositoryMongoDB(PaymasterPoolRepositoryInterface):
    """
    Collection: paymaster_pools

    Every update is a compare-and-swap on `version` so the health monitor and
    the rebalance orchestrator never overwrite each other's writes.
    """

    COLLECTION_NAME = "paymaster_pools"

    def __init__(self, db: Optional[Database] = None) -> None:
        self._db: Database = db if db is not None else get_mongo_db()
        self._collection: Collection = self._db[self.COLLECTION_NAME]

    @property
    def collection(self) -> Collection:
        return self._collection

    def ensure_indexes(self) -> None:
        self._collection.create_index([("chain_id", 1)], unique=True, name="ux_paymaster_pools_chain_id")
        self._collection.create_index([("mode", 1)], name="ix_paymaster_pools_mode")

    def get_pool(self, chain_id: int) -> Optional[PaymasterPoolEntity]:
        doc = self._collection.find_one({"_id": PaymasterPoolEntity.pool_id_for(chain_id)})
        return PaymasterPoolEntity.from_mongo(doc)

    def insert(self, entity: PaymasterPoolEntity) -> PaymasterPoolEntity:
        entity.id = entity.pool_id
        entity = entity.touch_for_insert()
        doc = sanitize_for_mongo(entity.to_mongo())
        for k in _ADDRESS_FIELDS:
            if isinstance(doc.get(k), str):
                doc[k] = _norm_lower(doc[k])
        self._collection.insert_one(doc)
        return PaymasterPoolEntity.from_mongo(doc)

    def update_pool(
        self,
        chain_id: int,
        fields: Dict[str, Any],
        *,
        expected_version: int,
    ) -> PaymasterPoolEntity:
        pool_id = PaymasterPoolEntity.pool_id_for(chain_id)
        set_doc = dump_partial(PaymasterPoolEntity, fields)
        for k in _ADDRESS_FIELDS:
            if isinstance(set_doc.get(k), str):
                set_doc[k] = _norm_lower(set_doc[k])
        set_doc["updated_at"] = MongoEntity.now_ms()
        set_doc["updated_at_iso"] = MongoEntity.now_iso()

        doc = self._collection.find_one_and_update(
            {"_id": pool_id, "version": int(expected_version)},
            {"$set": set_doc, "$inc": {"version": 1}},
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            raise ConcurrentUpdateError(self.COLLECTION_NAME, pool_id, int(expected_version))
        return PaymasterPoolEntity.from_mongo(doc)
