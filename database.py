"""
MongoDB access for the admin backend.

The client is created lazily by pymongo, so importing this module does not
open a connection. Route handlers receive the database through the
``get_db`` dependency, which tests override with an in-memory database.
"""
import math
import re
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import HTTPException
from pydantic import BaseModel
from pymongo import MongoClient
from pymongo.database import Database

from config import DATABASE_NAME, DATABASE_URL, DEFAULT_PAGE_SIZE, PAGE_SIZES

client = MongoClient(DATABASE_URL)
db = client[DATABASE_NAME]


def get_db() -> Database:
    return db


def utcnow() -> datetime:
    # Mongo stores UTC without tzinfo; keep filters and documents comparable.
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_object_id(value: Any) -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        raise HTTPException(status_code=400, detail=f"Invalid id: {value}")


def serialize_doc(doc):
    """Make a stored document JSON friendly: ``_id`` becomes ``id``, nested
    ObjectIds and datetimes become strings. The password hash is never
    returned."""
    if doc is None:
        return doc
    if isinstance(doc, list):
        return [serialize_doc(d) for d in doc]
    if isinstance(doc, ObjectId):
        return str(doc)
    if isinstance(doc, datetime):
        return doc.isoformat()
    if not isinstance(doc, dict):
        return doc
    out = {}
    for k, v in doc.items():
        if k == "password":
            continue
        if k == "_id":
            out["id"] = serialize_doc(v)
        else:
            out[k] = serialize_doc(v)
    return out


def create_document(database: Database, collection_name: str, data: Union[BaseModel, dict]) -> dict:
    """Insert a document with timestamps and return the stored version."""
    if isinstance(data, BaseModel):
        data = data.model_dump()
    doc = dict(data)
    now = utcnow()
    doc["createdAt"] = now
    doc["updatedAt"] = now
    result = database[collection_name].insert_one(doc)
    doc["_id"] = result.inserted_id
    return doc


def update_document(database: Database, collection_name: str, doc_id: ObjectId, changes: dict) -> Optional[dict]:
    """Apply ``$set`` with a fresh ``updatedAt``; ``None`` when the id is unknown."""
    changes = {**changes, "updatedAt": utcnow()}
    res = database[collection_name].update_one({"_id": doc_id}, {"$set": changes})
    if res.matched_count == 0:
        return None
    return database[collection_name].find_one({"_id": doc_id})


def regex_contains(text: str) -> Dict[str, str]:
    return {"$regex": re.escape(text), "$options": "i"}


def resolve_limit(limit: Any) -> int:
    try:
        value = int(limit)
    except (TypeError, ValueError):
        return DEFAULT_PAGE_SIZE
    return value if value in PAGE_SIZES else DEFAULT_PAGE_SIZE


def page_envelope(total: int, page: int, per_page: int, key: str, items: list) -> dict:
    return {
        "total": total,
        "page": page,
        "limit": per_page,
        "totalPages": math.ceil(total / per_page),
        key: items,
    }


def get_page(
    database: Database,
    collection_name: str,
    filt: dict,
    page: int,
    limit: Any,
    key: str,
    sort=None,
    projection=None,
) -> dict:
    """Count, skip and limit a filtered query into the list envelope."""
    per_page = resolve_limit(limit)
    coll = database[collection_name]
    total = coll.count_documents(filt)
    cursor = coll.find(filt, projection)
    if sort:
        cursor = cursor.sort(sort)
    docs = list(cursor.skip((page - 1) * per_page).limit(per_page))
    return page_envelope(total, page, per_page, key, docs)


def paginate_list(items: list, page: int, limit: Any, key: str) -> dict:
    """Same envelope as ``get_page`` for results filtered in Python."""
    per_page = resolve_limit(limit)
    start = (page - 1) * per_page
    return page_envelope(len(items), page, per_page, key, items[start:start + per_page])
