# dapp_repository_mongodb.py

from __future__ import annotations

from typing import Any, Dict, Optional, Sequence

from pymongo import ReturnDocument
from pymongo.collection import Collection
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from adapters.external.database.helper_repo import dump_partial, sanitize_for_mongo
from adapters.external.database.mongo_client import get_mongo_db
from core.domain.entities.base_entity import MongoEntity
from core.domain.entities.dapp_entity import DAppAccountEntity
from core.domain.entities.dapp_instance_entity import DAppPaymasterInstanceEntity
from core.domain.repositories.dapp_repository_interface import (
    DAppInstanceRepositoryInterface,
    DAppRepositoryInterface,
)
from core.services.exceptions import ConcurrentUpdateError, InstanceAlreadyExistsError


def _cas_set(fields: Dict[str, Any]) -> Dict[str, Any]:
    fields["updated_at"] = MongoEntity.now_ms()
    fields["updated_at_iso"] = MongoEntity.now_iso()
    return fields


class DAppRepositoryMongoDB(DAppRepositoryInterface):
    """
    Collection: paymaster_dapps
    """

    COLLECTION_NAME = "paymaster_dapps"

    def __init__(self, db: Optional[Database] = None) -> None:
        self._db: Database = db if db is not None else get_mongo_db()
        self._collection: Collection = self._db[self.COLLECTION_NAME]

    @property
    def collection(self) -> Collection:
        return self._collection

    def ensure_indexes(self) -> None:
        self._collection.create_index([("owner_id", 1)], name="ix_paymaster_dapps_owner_id")
        self._collection.create_index([("status", 1)], name="ix_paymaster_dapps_status")

    def get_dapp(self, dapp_id: str) -> Optional[DAppAccountEntity]:
        return DAppAccountEntity.from_mongo(self._collection.find_one({"_id": dapp_id}))

    def insert_dapp(self, entity: DAppAccountEntity) -> DAppAccountEntity:
        entity.id = entity.dapp_id
        entity = entity.touch_for_insert()
        self._collection.insert_one(sanitize_for_mongo(entity.to_mongo()))
        return entity

    def update_dapp(self, dapp_id: str, fields: Dict[str, Any], *, expected_version: int) -> DAppAccountEntity:
        doc = self._collection.find_one_and_update(
            {"_id": dapp_id, "version": int(expected_version)},
            {"$set": _cas_set(dump_partial(DAppAccountEntity, fields)), "$inc": {"version": 1}},
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            raise ConcurrentUpdateError(self.COLLECTION_NAME, dapp_id, int(expected_version))
        return DAppAccountEntity.from_mongo(doc)

    def list_by_owner(self, owner_id: str) -> Sequence[DAppAccountEntity]:
        cursor = self._collection.find({"owner_id": owner_id}).sort("created_at", -1)
        return [DAppAccountEntity.from_mongo(d) for d in cursor if d]


class DAppInstanceRepositoryMongoDB(DAppInstanceRepositoryInterface):
    """
    Collection: paymaster_instances
    """

    COLLECTION_NAME = "paymaster_instances"

    def __init__(self, db: Optional[Database] = None) -> None:
        self._db: Database = db if db is not None else get_mongo_db()
        self._collection: Collection = self._db[self.COLLECTION_NAME]

    @property
    def collection(self) -> Collection:
        return self._collection

    def ensure_indexes(self) -> None:
        self._collection.create_index([("dapp_id", 1), ("chain_id", 1)], unique=True, name="ux_paymaster_instances_dapp_chain")
        self._collection.create_index([("api_key", 1)], unique=True, name="ux_paymaster_instances_api_key")

    def get_instance(self, instance_id: str) -> Optional[DAppPaymasterInstanceEntity]:
        return DAppPaymasterInstanceEntity.from_mongo(self._collection.find_one({"_id": instance_id}))

    def insert_instance(self, entity: DAppPaymasterInstanceEntity) -> DAppPaymasterInstanceEntity:
        entity.id = entity.instance_id
        entity = entity.touch_for_insert()
        try:
            self._collection.insert_one(sanitize_for_mongo(entity.to_mongo()))
        except DuplicateKeyError as exc:
            raise InstanceAlreadyExistsError(entity.instance_id) from exc
        return entity

    def update_instance(
        self,
        instance_id: str,
        fields: Dict[str, Any],
        *,
        expected_version: int,
    ) -> DAppPaymasterInstanceEntity:
        doc = self._collection.find_one_and_update(
            {"_id": instance_id, "version": int(expected_version)},
            {"$set": _cas_set(dump_partial(DAppPaymasterInstanceEntity, fields)), "$inc": {"version": 1}},
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            raise ConcurrentUpdateError(self.COLLECTION_NAME, instance_id, int(expected_version))
        return DAppPaymasterInstanceEntity.from_mongo(doc)

    def list_by_dapps(self, dapp_ids: Sequence[str]) -> Sequence[DAppPaymasterInstanceEntity]:
        ids = list(dapp_ids)
        if not ids:
            return []
        cursor = self._collection.find({"dapp_id": {"$in": ids}})
        return [DAppPaymasterInstanceEntity.from_mongo(d) for d in cursor if d]

    def list_all(self) -> Sequence[DAppPaymasterInstanceEntity]:
        return [DAppPaymasterInstanceEntity.from_mongo(d) for d in self._collection.find({}) if d]
