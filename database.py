"""
MongoDB access for the video sharing backend.

Each collection is named after the lowercase of its model in ``schemas``
(User -> user, Video -> video, ...). Cross-document references are stored as
the string form of the referenced ObjectId.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import structlog
from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database

from config import get_settings
from errors import ValidationError

logger = structlog.get_logger(__name__)

settings = get_settings()

# MongoClient connects lazily, so importing this module never blocks on the server.
client: MongoClient = MongoClient(settings.database_url, serverSelectionTimeoutMS=5000)
db: Database = client[settings.database_name]

NEWEST_FIRST: List[Tuple[str, int]] = [("created_at", DESCENDING), ("_id", DESCENDING)]
LEDGER_ORDER: List[Tuple[str, int]] = [("_id", ASCENDING)]


def get_db() -> Database:
    return db


def ensure_indexes(database: Database) -> None:
    """Create the unique and lookup indexes the ledger and listings rely on.

    The unique pair indexes on ``subscription`` and ``reaction`` make a
    concurrent duplicate insert fail instead of creating a second edge.
    """
    database["user"].create_index([("username", ASCENDING)], unique=True)
    database["user"].create_index([("email", ASCENDING)], unique=True)
    database["subscription"].create_index(
        [("subscriber_id", ASCENDING), ("channel_id", ASCENDING)], unique=True
    )
    database["subscription"].create_index([("channel_id", ASCENDING)])
    database["reaction"].create_index(
        [("user_id", ASCENDING), ("video_id", ASCENDING)], unique=True
    )
    database["reaction"].create_index([("video_id", ASCENDING), ("value", ASCENDING)])
    database["video"].create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
    database["video"].create_index([("created_at", DESCENDING)])
    database["comment"].create_index([("video_id", ASCENDING), ("created_at", DESCENDING)])
    logger.info("indexes_ensured", database=database.name)


# -------------------- Helpers --------------------

def objid(id_str: str) -> ObjectId:
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        raise ValidationError("Invalid id format")


def to_str_id(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not doc:
        return doc
    d = {**doc}
    if d.get("_id"):
        d["id"] = str(d.pop("_id"))
    return d


def create_document(database: Database, collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> Dict[str, Any]:
    """Insert ``data`` stamped with created_at/updated_at and return the stored document."""
    doc = data.model_dump() if isinstance(data, BaseModel) else dict(data)
    now = datetime.utcnow()
    doc.setdefault("created_at", now)
    doc["updated_at"] = now
    inserted_id = database[collection_name].insert_one(doc).inserted_id
    doc["_id"] = inserted_id
    return doc


def get_documents(
    database: Database,
    collection_name: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    *,
    sort: Sequence[Tuple[str, int]] = NEWEST_FIRST,
    skip: int = 0,
    limit: Optional[int] = None,
) -> List[Dict[str, Any]]:
    cursor = database[collection_name].find(filter_dict or {}).sort(list(sort))
    if skip:
        cursor = cursor.skip(skip)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def page_offset(page_num: int, page_size: int) -> int:
    return (page_num - 1) * page_size
