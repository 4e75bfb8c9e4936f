# core/domain/entities/base_entity.py
from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Annotated, Any, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer, ValidationError

from core.services.exceptions import RecordValidationError

E = TypeVar("E", bound="MongoEntity")

# Amount in the chain's smallest native unit. Stored and transmitted as a decimal
# string because Mongo only has int64 and JSON clients lose precision past 2**53.
Wei = Annotated[int, Field(ge=0), PlainSerializer(lambda v: str(int(v)), return_type=str)]


def _parse_iso_to_ms(s: str) -> Optional[int]:
    try:
        s2 = s.replace("Z", "+00:00")
        dt = datetime.fromisoformat(s2)
        return int(dt.timestamp() * 1000)
    except ValueError:
        return None


class MongoEntity(BaseModel):
    """
    Base entity for Mongo-backed documents.

    Conventions:
    - MongoDB `_id` is mapped to `id` as a string.
    - Timestamps are stored in both milliseconds and ISO-8601 (UTC).
    - Monetary fields use `Wei` and are persisted as strings.
    - Extra fields are allowed to keep forward compatibility, but required
      fields are never defaulted: a document missing one is rejected.
    """

    id: Optional[str] = None  # maps _id

    created_at: Optional[int] = None
    created_at_iso: Optional[str] = None
    updated_at: Optional[int] = None
    updated_at_iso: Optional[str] = None

    model_config = ConfigDict(
        arbitrary_types_allowed=True,
        extra="allow",
        use_enum_values=True,
    )

    @staticmethod
    def now_ms() -> int:
        """
        Return current time in milliseconds.
        """
        return int(time.time() * 1000)

    @staticmethod
    def now_iso() -> str:
        """
        Return current time in ISO-8601 UTC format ending with 'Z'.
        """
        return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")

    @classmethod
    def from_mongo(cls: Type[E], doc: Optional[dict[str, Any]]) -> Optional[E]:
        """
        Build an entity from a raw MongoDB document.

        Raises:
            RecordValidationError: the document is missing required fields or
                carries values that violate the schema.
        """
        if not doc:
            return None

        data = dict(doc)
        if "_id" in data:
            data["id"] = str(data.pop("_id"))

        # --- normalize timestamps coming from older docs ---
        ca = data.get("created_at")
        if isinstance(ca, str):
            if not data.get("created_at_iso"):
                data["created_at_iso"] = ca
            ms = _parse_iso_to_ms(ca)
            if ms is not None:
                data["created_at"] = ms
            else:
                data.pop("created_at", None)

        ua = data.get("updated_at")
        if isinstance(ua, str):
            if not data.get("updated_at_iso"):
                data["updated_at_iso"] = ua
            ms = _parse_iso_to_ms(ua)
            if ms is not None:
                data["updated_at"] = ms
            else:
                data.pop("updated_at", None)

        try:
            return cls.model_validate(data)
        except ValidationError as exc:
            raise RecordValidationError(cls.__name__, data.get("id"), str(exc)) from exc

    def to_mongo(self) -> dict[str, Any]:
        """
        Serialize this entity into a MongoDB-ready dictionary.

        Notes:
        - Includes `_id` only when `id` is present.
        - Excludes None fields.
        """
        data = self.model_dump(mode="python", exclude_none=True)

        if "id" in data:
            data["_id"] = data.pop("id")

        return data

    def touch_for_insert(self: E) -> E:
        now_ms = self.now_ms()
        now_iso = self.now_iso()

        if self.created_at is None:
            self.created_at = now_ms
        if self.created_at_iso is None:
            self.created_at_iso = now_iso

        self.updated_at = now_ms
        self.updated_at_iso = now_iso
        return self

    def touch_for_update(self: E) -> E:
        now_ms = self.now_ms()
        now_iso = self.now_iso()

        self.updated_at = now_ms
        self.updated_at_iso = now_iso
        return self


class VersionedEntity(MongoEntity):
    """
    Mongo document updated by more than one task.

    Every write goes through a compare-and-swap on `version`.
    """

    version: int = 0
