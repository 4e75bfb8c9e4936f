from functools import lru_cache
from typing import Annotated, Any, Dict, Type

from pydantic import BaseModel, TypeAdapter


def sanitize_for_mongo(value: Any) -> Any:
    """
    Recursively sanitize values so they are acceptable by MongoDB/BSON.

    - ints wider than int64 become strings
    - dicts and lists are handled recursively
    """
    if isinstance(value, bool):
        return value

    if isinstance(value, int):
        min_int64 = -(2**63)
        max_int64 = 2**63 - 1
        if min_int64 <= value <= max_int64:
            return value
        return str(value)

    if isinstance(value, dict):
        return {k: sanitize_for_mongo(v) for k, v in value.items()}

    if isinstance(value, list):
        return [sanitize_for_mongo(v) for v in value]

    if isinstance(value, tuple):
        return tuple(sanitize_for_mongo(v) for v in value)

    return value


@lru_cache(maxsize=256)
def _field_adapter(model_cls: Type[BaseModel], name: str) -> TypeAdapter | None:
    info = model_cls.model_fields.get(name)
    if info is None:
        return None
    tp = info.annotation
    if info.metadata:
        tp = Annotated[(tp, *info.metadata)]
    return TypeAdapter(tp)


def dump_partial(model_cls: Type[BaseModel], fields: Dict[str, Any]) -> Dict[str, Any]:
    """
    Validate and serialize a partial update against the entity schema.

    Each known field goes through its declared type, so money fields are
    checked (non-negative ints) and stored as strings exactly like a full
    `to_mongo()` would. Unknown keys pass through untouched.
    """
    out: Dict[str, Any] = {}
    for key, value in fields.items():
        adapter = _field_adapter(model_cls, key)
        if adapter is None:
            out[key] = value
            continue
        out[key] = adapter.dump_python(adapter.validate_python(value), mode="json")
    return sanitize_for_mongo(out)
