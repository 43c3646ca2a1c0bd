from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from bson import ObjectId


def to_jsonable(doc: Any) -> Any:
    """
    Recursively converts Mongo types (ObjectId, datetime) into JSON-serializable values.
    """
    if isinstance(doc, ObjectId):
        return str(doc)
    if isinstance(doc, datetime):
        return doc.isoformat()
    if isinstance(doc, dict):
        return {k: to_jsonable(v) for k, v in doc.items()}
    if isinstance(doc, list):
        return [to_jsonable(x) for x in doc]
    return doc


def oid(id_str: str) -> ObjectId:
    return ObjectId(id_str)


def is_persisted_id(value: str | None) -> bool:
    # Client-side scratch files carry ids like "local-<uuid>"; store ids are always ObjectIds.
    return ObjectId.is_valid(str(value or ""))


def utc_now() -> datetime:
    return datetime.now(timezone.utc)
