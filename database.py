"""
MongoDB access shared by every service.

``db`` is the process-wide database handle (None when the connection is not
configured). Services never import it directly: routes resolve it through the
``get_db`` dependency and pass it down, so tests can hand in any
pymongo-compatible database.
"""
from math import ceil
from typing import Any, Dict, List, Optional, Tuple, Union

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database

import config
from errors import AppError, ErrorKind, bad_request
from logger import get_logger
from schemas import utcnow

_logger = get_logger(__name__)

client: Optional[MongoClient] = None
db: Optional[Database] = None

if config.DATABASE_URL and config.DATABASE_NAME:
    client = MongoClient(config.DATABASE_URL, tz_aware=True)
    db = client[config.DATABASE_NAME]


def get_db() -> Database:
    if db is None:
        raise AppError(ErrorKind.INTERNAL_ERROR, "Database is not configured")
    return db


def ensure_indexes(database: Database) -> None:
    database["user"].create_index("email", unique=True)
    database["cart"].create_index("user_id", unique=True)
    database["phone"].create_index("seller_id")
    database["phone"].create_index([("is_disabled", ASCENDING), ("created_at", DESCENDING)])
    database["order"].create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
    database["adminlog"].create_index([("created_at", DESCENDING)])
    _logger.info("Indexes ensured")


def to_object_id(value: str, label: str = "id") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise bad_request(f"Invalid {label}")


def create_document(database: Database, collection_name: str, data: Union[BaseModel, dict], session=None) -> str:
    """Insert a document stamped with created_at/updated_at and return its id."""
    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = dict(data)
    now = utcnow()
    data_dict["created_at"] = now
    data_dict["updated_at"] = now
    result = database[collection_name].insert_one(data_dict, session=session)
    return str(result.inserted_id)


def get_documents(
    database: Database,
    collection_name: str,
    filter_dict: Optional[dict] = None,
    limit: Optional[int] = None,
    sort: Optional[List[Tuple[str, int]]] = None,
) -> List[dict]:
    cursor = database[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def get_page(
    database: Database,
    collection_name: str,
    filter_dict: Optional[dict],
    sort: List[Tuple[str, int]],
    page: int,
    limit: int,
) -> Tuple[List[dict], int]:
    """Return (documents for the 1-based page, total matching count)."""
    filter_dict = filter_dict or {}
    total = database[collection_name].count_documents(filter_dict)
    skip = max(page - 1, 0) * limit
    docs = list(database[collection_name].find(filter_dict).sort(sort).skip(skip).limit(limit))
    return docs, total


def page_response(content: List[Any], total: int, page: int, limit: int) -> Dict[str, Any]:
    total_pages = ceil(total / limit) if limit else 0
    return {
        "content": content,
        "current_page": page,
        "total_pages": total_pages,
        "total_items": total,
        "items_per_page": limit,
        "has_next": page < total_pages,
        "has_previous": page > 1,
    }


def paginate_list(items: List[Any], page: int, limit: int) -> Dict[str, Any]:
    start = max(page - 1, 0) * limit
    return page_response(items[start:start + limit], len(items), page, limit)


def serialize_doc(doc):
    if not doc:
        return doc
    doc = dict(doc)
    _id = doc.get("_id")
    if isinstance(_id, ObjectId):
        doc["id"] = str(_id)
        del doc["_id"]
    return doc
