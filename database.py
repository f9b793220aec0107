"""
MongoDB access for the storefront.

Collections are named after the lowercased document type ("user", "category",
"product", "order"). `get_db` is the FastAPI dependency handed to every route;
tests override it with an in-memory database.
"""

from datetime import datetime, timezone
from typing import Optional

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import MongoClient
from pymongo.database import Database

import config
from errors import NotFound, ValidationError

client: Optional[MongoClient] = MongoClient(config.DATABASE_URL) if config.DATABASE_URL else None
db: Optional[Database] = client[config.DATABASE_NAME] if client is not None and config.DATABASE_NAME else None


def get_db() -> Database:
    if db is None:
        raise RuntimeError("Database is not configured; set DATABASE_URL and DATABASE_NAME")
    return db


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """MongoDB hands back naive UTC datetimes."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def to_object_id(id_str: str) -> ObjectId:
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        raise ValidationError("Invalid id format")


def doc_to_json(doc: dict) -> dict:
    if not doc:
        return doc
    out = {}
    for k, v in doc.items():
        if k == "_id":
            out["id"] = str(v)
        elif isinstance(v, ObjectId):
            out[k] = str(v)
        elif isinstance(v, datetime):
            out[k] = as_utc(v).isoformat()
        elif isinstance(v, dict):
            out[k] = doc_to_json(v)
        elif isinstance(v, list):
            out[k] = [doc_to_json(x) if isinstance(x, dict) else (str(x) if isinstance(x, ObjectId) else x) for x in v]
        else:
            out[k] = v
    return out


def create_document(db: Database, collection_name: str, data: dict) -> str:
    """Insert a document stamped with created_at/updated_at and return its id."""
    now = utcnow()
    doc = {**data, "created_at": now, "updated_at": now}
    return str(db[collection_name].insert_one(doc).inserted_id)


def get_documents(db: Database, collection_name: str, filter_dict: dict = None, limit: int = None, sort=None) -> list:
    cursor = db[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def get_document_or_404(db: Database, collection_name: str, doc_id: str, label: str) -> dict:
    doc = db[collection_name].find_one({"_id": to_object_id(doc_id)})
    if not doc:
        raise NotFound(f"{label} not found")
    return doc
