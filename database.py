"""
MongoDB access for the storefront.

A single client is created at import time from DATABASE_URL / DATABASE_NAME.
Modules look the handle up through ``get_db()`` on every call so tests can
swap ``database.db`` for an in-memory database.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import MongoClient

import config
from errors import DatabaseUnavailableError, ValidationError
from logging_config import get_logger

logger = get_logger(__name__)

_client = None
db = None

if config.DATABASE_URL and config.DATABASE_NAME:
    try:
        _client = MongoClient(config.DATABASE_URL)
        db = _client[config.DATABASE_NAME]
    except Exception as e:
        logger.error("database_connect_failed", error=str(e))
        _client = None
        db = None


def get_db():
    if db is None:
        raise DatabaseUnavailableError()
    return db


def now() -> datetime:
    return datetime.now(timezone.utc)


def oid(id_str: str) -> ObjectId:
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        raise ValidationError("Invalid ID format", details={"id": id_str})


def to_str_id(doc: Optional[dict]) -> Optional[dict]:
    if not doc:
        return doc
    d = doc.copy()
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    return d


def create_document(collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    """Insert a document, stamping created_at/updated_at, and return its id."""
    if isinstance(data, BaseModel):
        data_dict = data.model_dump(mode="python")
    else:
        data_dict = dict(data)

    stamp = now()
    data_dict.setdefault("created_at", stamp)
    data_dict["updated_at"] = stamp

    result = get_db()[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def get_documents(
    collection_name: str,
    filter_dict: Optional[dict] = None,
    limit: Optional[int] = None,
    sort: Optional[List[tuple]] = None,
    skip: int = 0,
) -> List[dict]:
    cursor = get_db()[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if skip:
        cursor = cursor.skip(skip)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def paginate(total: int, page: int, limit: int) -> Dict[str, int]:
    pages = (total + limit - 1) // limit if limit else 0
    return {"total": total, "page": page, "pages": pages}
