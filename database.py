"""
Database helpers

Thin pymongo layer shared by the API. Each collection is named after the
lowercased schema class it stores (product, order, review, cart, user).
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient

import settings
from errors import ValidationError

logger = logging.getLogger(__name__)

client: Optional[MongoClient] = None
db = None

if settings.DATABASE_URL and settings.DATABASE_NAME:
    # Client-wide deadline for every operation, tightened per block with pymongo.timeout
    client = MongoClient(settings.DATABASE_URL, timeoutMS=int(settings.OPERATION_TIMEOUT_SECONDS * 1000))
    db = client[settings.DATABASE_NAME]


def now() -> datetime:
    return datetime.now(timezone.utc)


def to_object_id(value: Any, label: str = "id") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise ValidationError(f"Invalid {label}: {value}")


def create_document(database, collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    """Insert a document stamped with created_at/updated_at, return its id as a string."""
    if isinstance(data, BaseModel):
        doc = data.model_dump(mode="json")
    else:
        doc = dict(data)
    stamp = now()
    doc["created_at"] = stamp
    doc["updated_at"] = stamp
    result = database[collection_name].insert_one(doc)
    return str(result.inserted_id)


def get_documents(database, collection_name: str, filter_dict: Optional[Dict[str, Any]] = None,
                  limit: Optional[int] = None, skip: int = 0) -> List[Dict[str, Any]]:
    cursor = database[collection_name].find(filter_dict or {}).sort(
        [("created_at", DESCENDING), ("_id", DESCENDING)]
    )
    if skip:
        cursor = cursor.skip(skip)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def ensure_indexes(database) -> None:
    database["user"].create_index("email", unique=True)
    database["review"].create_index([("product", ASCENDING), ("user", ASCENDING)], unique=True)
    database["cart"].create_index("user", unique=True)
    database["order"].create_index("items.product")
    database["order"].create_index([("user", ASCENDING), ("created_at", DESCENDING)])
    # Expired revocation records are removed by the server's TTL monitor
    database["revoked_token"].create_index("expires_at", expireAfterSeconds=0)
    database["revoked_token"].create_index("jti", unique=True)
    logger.info("Indexes ensured on %s", database.name)


def serialize_doc(doc: Dict[str, Any]):
    if not doc:
        return doc
    out = {}
    for k, v in doc.items():
        if k == "_id":
            out["id"] = str(v)
        elif k == "password_hash":
            continue
        else:
            out[k] = _serialize_value(v)
    return out


def _serialize_value(v: Any):
    if isinstance(v, ObjectId):
        return str(v)
    if isinstance(v, dict):
        return serialize_doc(v)
    if isinstance(v, list):
        return [_serialize_value(x) for x in v]
    if hasattr(v, "isoformat"):
        return v.isoformat()
    return v
