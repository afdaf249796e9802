"""
Database Helper Functions

MongoDB access for the API. A single Database handle is constructed at start
and handed to every endpoint through the get_db() dependency; it connects on
first use. Tests pass a ready-made (mongomock) client instead of a URL.
"""

import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Union, Optional, Dict, Any, List

import structlog
from bson import ObjectId
from pymongo import MongoClient, ASCENDING
from pydantic import BaseModel

from config import get_settings
from errors import ServiceError, ValidationFailed

logger = structlog.get_logger(__name__)

INDEXES = {
    "user": [([("email", ASCENDING)], {"unique": True})],
    "tempuser": [([("email", ASCENDING)], {"unique": True})],
    "cart": [([("user_id", ASCENDING)], {"unique": True})],
    "subscriptionplan": [([("name", ASCENDING)], {"unique": True})],
    "review": [
        ([("customer_id", ASCENDING), ("order_id", ASCENDING), ("menu_item_id", ASCENDING), ("type", ASCENDING)], {"unique": True}),
        ([("kitchen_id", ASCENDING)], {}),
    ],
    "kitchen": [([("owner_id", ASCENDING)], {}), ([("status", ASCENDING)], {})],
    "menuitem": [([("kitchen_id", ASCENDING)], {})],
    "order": [([("customer_id", ASCENDING)], {}), ([("seller_id", ASCENDING)], {}), ([("kitchen_id", ASCENDING)], {})],
    "sellersubscription": [([("seller_id", ASCENDING), ("status", ASCENDING)], {}),
                           ([("gateway_order_id", ASCENDING)], {"sparse": True})],
    "passwordreset": [([("email", ASCENDING)], {})],
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    # pymongo hands back naive datetimes unless the client is tz_aware
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def session_kw(session) -> dict:
    return {"session": session} if session is not None else {}


def oid(id_str: str) -> ObjectId:
    try:
        return ObjectId(id_str)
    except Exception:
        raise ValidationFailed("Invalid id format")


def _to_dict(data: Union[BaseModel, dict]) -> dict:
    if isinstance(data, BaseModel):
        return data.model_dump()
    return dict(data)


def serialize_doc(doc: Optional[dict]) -> Optional[dict]:
    if not doc:
        return None
    d = dict(doc)
    if "_id" in d:
        d["_id"] = str(d["_id"])  # convert ObjectId to string
    return d


def page_window(page: int, limit: int) -> tuple:
    """Clamp page/limit query values and return (page, limit, skip)."""
    page = max(1, int(page or 1))
    limit = min(100, max(1, int(limit or 10)))
    return page, limit, (page - 1) * limit


def pagination(page: int, limit: int, total: int) -> dict:
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "pages": (total + limit - 1) // limit,
        "has_more": page * limit < total,
    }


class Database:
    def __init__(self, url: Optional[str] = None, name: Optional[str] = None,
                 client: Optional[MongoClient] = None, transactions: bool = False):
        self._url = url
        self._name = name
        self._client = client
        self._db = None
        self._lock = threading.Lock()
        self.transactions = transactions

    @property
    def db(self):
        if self._db is None:
            with self._lock:
                if self._db is None:
                    self._db = self._connect()
        return self._db

    @property
    def is_configured(self) -> bool:
        return self._client is not None or bool(self._url and self._name)

    def _connect(self):
        if self._client is None:
            if not (self._url and self._name):
                raise ServiceError("Database not available. Check DATABASE_URL and DATABASE_NAME environment variables.")
            self._client = MongoClient(self._url, tz_aware=True)
        db = self._client[self._name or "tifincart"]
        for collection_name, indexes in INDEXES.items():
            for keys, options in indexes:
                db[collection_name].create_index(keys, **options)
        logger.info("database_connected", database=db.name)
        return db

    def __getitem__(self, collection_name: str):
        return self.db[collection_name]

    @contextmanager
    def transaction(self):
        """Yield a session inside a transaction, or None when transactions are off."""
        if not self.transactions:
            yield None
            return
        self.db  # make sure the client exists
        with self._client.start_session() as session:
            with session.start_transaction():
                yield session

    # CRUD helpers

    def create_document(self, collection_name: str, data: Union[BaseModel, dict], session=None) -> str:
        payload = _to_dict(data)
        now = utcnow()
        payload['created_at'] = now
        payload['updated_at'] = now
        result = self.db[collection_name].insert_one(payload, **session_kw(session))
        return str(result.inserted_id)

    def get_documents(self, collection_name: str, filter_dict: Optional[dict] = None, limit: Optional[int] = None,
                      sort: Optional[list] = None, skip: Optional[int] = None) -> List[dict]:
        cursor = self.db[collection_name].find(filter_dict or {})
        if sort:
            cursor = cursor.sort(sort)
        if skip:
            cursor = cursor.skip(int(skip))
        if limit:
            cursor = cursor.limit(int(limit))
        return [serialize_doc(doc) for doc in cursor]

    def get_document(self, collection_name: str, filter_dict: dict) -> Optional[dict]:
        return serialize_doc(self.db[collection_name].find_one(filter_dict))

    def get_document_by_id(self, collection_name: str, _id: str, extra: Optional[dict] = None) -> Optional[dict]:
        try:
            query = {"_id": ObjectId(_id)}
        except Exception:
            return None
        if extra:
            query.update(extra)
        return serialize_doc(self.db[collection_name].find_one(query))

    def update_document(self, collection_name: str, _id: str, update_data: Dict[str, Any], session=None,
                        push: Optional[dict] = None) -> bool:
        update = {"$set": _to_dict(update_data)}
        update["$set"]["updated_at"] = utcnow()
        if push:
            update["$push"] = push
        result = self.db[collection_name].update_one({"_id": oid(_id)}, update, **session_kw(session))
        return result.matched_count > 0

    def delete_document(self, collection_name: str, _id: str, session=None) -> bool:
        result = self.db[collection_name].delete_one({"_id": oid(_id)}, **session_kw(session))
        return result.deleted_count > 0

    def count_documents(self, collection_name: str, filter_dict: Optional[dict] = None) -> int:
        return self.db[collection_name].count_documents(filter_dict or {})


_database: Optional[Database] = None
_database_lock = threading.Lock()


def get_db() -> Database:
    global _database
    if _database is None:
        with _database_lock:
            if _database is None:
                settings = get_settings()
                _database = Database(settings.database_url, settings.database_name,
                                     transactions=settings.mongo_transactions)
    return _database
