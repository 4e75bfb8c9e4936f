# audit_repository_mongodb.py

from __future__ import annotations

from typing import Optional, Sequence

from pymongo.collection import Collection
from pymongo.database import Database

from adapters.external.database.helper_repo import sanitize_for_mongo
from adapters.external.database.mongo_client import get_mongo_db
from core.domain.entities.audit_log_entity import AuditLogEntity, DenylistEntryEntity
from core.domain.enums.paymaster_enums import DenylistTargetType
from core.domain.repositories.audit_repository_interface import (
    AuditRepositoryInterface,
    DenylistRepositoryInterface,
)


class AuditRepositoryMongoDB(AuditRepositoryInterface):
    """
    Collection: audit_trails (insert-only)
    """

    COLLECTION_NAME = "audit_trails"

    def __init__(self, db: Optional[Database] = None) -> None:
        self._db: Database = db if db is not None else get_mongo_db()
        self._collection: Collection = self._db[self.COLLECTION_NAME]

    def ensure_indexes(self) -> None:
        self._collection.create_index([("target_id", 1), ("timestamp", -1)], name="ix_audit_trails_target_ts_desc")
        self._collection.create_index([("admin_id", 1)], name="ix_audit_trails_admin_id")

    def append(self, entry: AuditLogEntity) -> None:
        self._collection.insert_one(sanitize_for_mongo(entry.to_mongo()))

    def list_for_target(self, target_id: str, limit: int = 100) -> Sequence[AuditLogEntity]:
        cursor = self._collection.find({"target_id": target_id}).sort("timestamp", -1).limit(int(limit))
        return [AuditLogEntity.from_mongo(d) for d in cursor if d]


class DenylistRepositoryMongoDB(DenylistRepositoryInterface):
    """
    Collection: paymaster_denylist
    """

    COLLECTION_NAME = "paymaster_denylist"

    def __init__(self, db: Optional[Database] = None) -> None:
        self._db: Database = db if db is not None else get_mongo_db()
        self._collection: Collection = self._db[self.COLLECTION_NAME]

    def ensure_indexes(self) -> None:
        self._collection.create_index([("target_type", 1), ("active", 1)], name="ix_paymaster_denylist_type_active")

    def upsert(self, entry: DenylistEntryEntity) -> None:
        entry.id = DenylistEntryEntity.doc_id(entry.target_type, entry.target_id)
        entry = entry.touch_for_update()
        doc = sanitize_for_mongo(entry.to_mongo())
        self._collection.replace_one({"_id": doc["_id"]}, doc, upsert=True)

    def get(self, target_type: DenylistTargetType, target_id: str) -> Optional[DenylistEntryEntity]:
        doc = self._collection.find_one({"_id": DenylistEntryEntity.doc_id(target_type, target_id)})
        return DenylistEntryEntity.from_mongo(doc)
