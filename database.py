"""
MongoDB helpers shared by the routes.

`db` is None until init_db() (startup) or set_db() (tests) installs a
database handle. Every document carries a string `id`; Mongo's `_id`
never leaves this module.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple
from uuid import uuid4

from pydantic import BaseModel
from pymongo import MongoClient

logger = logging.getLogger(__name__)

USERS = "users"
VOTING_EVENTS = "voting_events"
NOMINATIONS = "nominations"
VOTES = "votes"
SURVEY_EVALUATIONS = "survey_evaluations"
DEPARTMENTS = "departments"
AUDIT_LOGS = "audit_logs"

ALL_COLLECTIONS = (
    USERS,
    VOTING_EVENTS,
    NOMINATIONS,
    VOTES,
    SURVEY_EVALUATIONS,
    DEPARTMENTS,
    AUDIT_LOGS,
)

ID_PREFIXES = {
    USERS: "user",
    VOTING_EVENTS: "event",
    NOMINATIONS: "nom",
    VOTES: "vote",
    SURVEY_EVALUATIONS: "eval",
    DEPARTMENTS: "dept",
    AUDIT_LOGS: "log",
}

db = None


class DatabaseUnavailable(RuntimeError):
    pass


def init_db(url: Optional[str], name: Optional[str]):
    """Connect to MongoDB; leaves db as None when the connection is not configured."""
    global db
    if not url or not name:
        logger.warning("DATABASE_URL / DATABASE_NAME not set, running without a database")
        db = None
        return None
    client = MongoClient(url, tz_aware=True)
    db = client[name]
    logger.info("Connected to database %s", name)
    return db


def set_db(handle) -> None:
    global db
    db = handle


def get_db():
    if db is None:
        raise DatabaseUnavailable("Database not available")
    return db


def new_id(collection_name: str) -> str:
    prefix = ID_PREFIXES.get(collection_name, "doc")
    return f"{prefix}-{str(uuid4())[:8]}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_dict(data: Any) -> Dict[str, Any]:
    if isinstance(data, BaseModel):
        return data.model_dump()
    return dict(data)


def _clean(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if doc is None:
        return None
    doc = dict(doc)
    doc.pop("_id", None)
    return doc


def create_document(collection_name: str, data: Any) -> str:
    """Insert one document, stamping created_at/updated_at. Returns its id."""
    doc = _to_dict(data)
    doc = {k: v for k, v in doc.items() if v is not None}
    doc.setdefault("id", new_id(collection_name))
    now = _utcnow()
    doc.setdefault("created_at", now)
    doc["updated_at"] = now
    get_db()[collection_name].insert_one(doc)
    return doc["id"]


def insert_many_documents(collection_name: str, items: Iterable[Any]) -> List[str]:
    """Batch write: insert every item in one round trip."""
    now = _utcnow()
    docs = []
    for item in items:
        doc = {k: v for k, v in _to_dict(item).items() if v is not None}
        doc.setdefault("id", new_id(collection_name))
        doc.setdefault("created_at", now)
        doc["updated_at"] = now
        docs.append(doc)
    if docs:
        get_db()[collection_name].insert_many(docs)
    return [d["id"] for d in docs]


def get_documents(
    collection_name: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    limit: Optional[int] = None,
    sort: Optional[List[Tuple[str, int]]] = None,
) -> List[Dict[str, Any]]:
    cursor = get_db()[collection_name].find(filter_dict or {}, {"_id": 0})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return [_clean(d) for d in cursor]


def get_document(collection_name: str, doc_id: str) -> Optional[Dict[str, Any]]:
    return _clean(get_db()[collection_name].find_one({"id": doc_id}))


def find_one(collection_name: str, filter_dict: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    return _clean(get_db()[collection_name].find_one(filter_dict))


def update_document(
    collection_name: str, doc_id: str, changes: Dict[str, Any]
) -> Optional[Dict[str, Any]]:
    """
    Apply `changes` and return the document as it was before the update,
    or None when no document has that id.
    """
    changes = {k: v for k, v in changes.items() if k not in ("id", "_id")}
    changes["updated_at"] = _utcnow()
    before = get_db()[collection_name].find_one_and_update({"id": doc_id}, {"$set": changes})
    return _clean(before)


def delete_document(collection_name: str, doc_id: str) -> bool:
    result = get_db()[collection_name].delete_one({"id": doc_id})
    return result.deleted_count > 0


def delete_documents(collection_name: str, filter_dict: Dict[str, Any]) -> int:
    result = get_db()[collection_name].delete_many(filter_dict)
    return result.deleted_count


def count_documents(collection_name: str, filter_dict: Optional[Dict[str, Any]] = None) -> int:
    return get_db()[collection_name].count_documents(filter_dict or {})


def delete_all_documents(collections: Iterable[str] = ALL_COLLECTIONS) -> int:
    """Batch delete every document in the given collections."""
    total = 0
    for name in collections:
        deleted = get_db()[name].delete_many({}).deleted_count
        logger.info("%s: deleted %d documents", name, deleted)
        total += deleted
    return total
