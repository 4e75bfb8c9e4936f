# chain_config_repository_mongodb.py

from __future__ import annotations

from typing import Optional, Sequence

from pymongo.collection import Collection
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from adapters.external.database.helper_repo import sanitize_for_mongo
from adapters.external.database.mongo_client import get_mongo_db
from core.domain.entities.base_entity import MongoEntity
from core.domain.entities.chain_config_entity import ChainConfigEntity
from core.domain.enums.paymaster_enums import ChainStatus
from core.domain.repositories.chain_config_repository_interface import ChainConfigRepositoryInterface
from core.services.exceptions import ChainAlreadyRegisteredError


class ChainConfigRepositoryMongoDB(ChainConfigRepositoryInterface):
    """
    Collection: chains
    """

    COLLECTION_NAME = "chains"

    def __init__(self, db: Optional[Database] = None) -> None:
        self._db: Database = db if db is not None else get_mongo_db()
        self._collection: Collection = self._db[self.COLLECTION_NAME]

    @property
    def collection(self) -> Collection:
        return self._collection

    def ensure_indexes(self) -> None:
        self._collection.create_index([("chain_id", 1)], unique=True, name="ux_chains_chain_id")
        self._collection.create_index([("status", 1)], name="ix_chains_status")

    def get(self, chain_id: int) -> Optional[ChainConfigEntity]:
        doc = self._collection.find_one({"_id": ChainConfigEntity.doc_id(chain_id)})
        return ChainConfigEntity.from_mongo(doc)

    def list_all(self) -> Sequence[ChainConfigEntity]:
        cursor = self._collection.find({}).sort("chain_id", 1)
        return [ChainConfigEntity.from_mongo(d) for d in cursor if d]

    def insert(self, entity: ChainConfigEntity) -> ChainConfigEntity:
        entity.id = ChainConfigEntity.doc_id(entity.chain_id)
        entity = entity.touch_for_insert()
        doc = sanitize_for_mongo(entity.to_mongo())
        try:
            self._collection.insert_one(doc)
        except DuplicateKeyError as exc:
            raise ChainAlreadyRegisteredError(entity.chain_id) from exc
        return entity

    def delete(self, chain_id: int) -> bool:
        res = self._collection.delete_one({"_id": ChainConfigEntity.doc_id(chain_id)})
        return res.deleted_count > 0

    def set_status(self, chain_id: int, status: ChainStatus) -> bool:
        res = self._collection.update_one(
            {"_id": ChainConfigEntity.doc_id(chain_id)},
            {
                "$set": {
                    "status": ChainStatus(status).value,
                    "updated_at": MongoEntity.now_ms(),
                    "updated_at_iso": MongoEntity.now_iso(),
                }
            },
        )
        return res.matched_count > 0
