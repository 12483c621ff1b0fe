"""
Document Store Adapter

MongoDB access for the five record kinds (user, order, menu, location,
feedback). The collection name is the lowercase record name. A single
DocumentStore is built at startup and handed to every consumer; it may be
constructed without a database, in which case each call fails with an
Internal error instead of crashing the process.
"""

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient, ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError

from errors import Internal

logger = logging.getLogger(__name__)

USERS = "user"
ORDERS = "order"
MENU = "menu"
LOCATIONS = "location"
FEEDBACK = "feedback"


@contextmanager
def storage_errors(message: str) -> Iterator[None]:
    """Map storage failures inside the block to Internal(message).

    Duplicate-key errors pass through untouched so callers can translate
    them into a Conflict.
    """
    try:
        yield
    except DuplicateKeyError:
        raise
    except PyMongoError as exc:
        logger.error("%s (%s)", message, exc)
        raise Internal(message) from exc


def object_id(value: str) -> Optional[ObjectId]:
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return None


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_dict(data: Union[BaseModel, dict]) -> dict:
    if isinstance(data, BaseModel):
        return data.model_dump(by_alias=True, exclude_none=True)
    return dict(data)


def serialize_doc(doc: Optional[dict]) -> Optional[dict]:
    if not doc:
        return None
    d = dict(doc)
    if "_id" in d:
        d["_id"] = str(d["_id"])  # convert ObjectId to string
    return d


class DocumentStore:
    def __init__(self, database: Optional[Database] = None):
        self.db = database

    @classmethod
    def from_url(cls, database_url: Optional[str], database_name: Optional[str]) -> "DocumentStore":
        if database_url and database_name:
            client = MongoClient(database_url, tz_aware=True)
            return cls(client[database_name])
        logger.warning("DATABASE_URL/DATABASE_NAME not set, storage is unavailable")
        return cls(None)

    def _ensure_db(self) -> Database:
        if self.db is None:
            raise Internal("Database not available. Check DATABASE_URL and DATABASE_NAME environment variables.")
        return self.db

    def collection(self, name: str):
        return self._ensure_db()[name]

    def ensure_indexes(self) -> None:
        users = self.collection(USERS)
        users.create_index([("id", ASCENDING)], unique=True)
        users.create_index([("username", ASCENDING)], unique=True)
        users.create_index([("email", ASCENDING)], unique=True, sparse=True)
        self.collection(LOCATIONS).create_index([("id", ASCENDING)], unique=True)

    def list_collection_names(self) -> List[str]:
        return self._ensure_db().list_collection_names()

    # CRUD helpers

    def create_document(self, collection_name: str, data: Union[BaseModel, dict]) -> dict:
        payload = _to_dict(data)
        now = utcnow()
        payload["created_at"] = now
        payload["updated_at"] = now
        result = self.collection(collection_name).insert_one(payload)
        payload["_id"] = result.inserted_id
        return serialize_doc(payload)

    def get_documents(
        self,
        collection_name: str,
        filter_dict: Optional[dict] = None,
        limit: Optional[int] = None,
        sort: Optional[list] = None,
        projection: Optional[dict] = None,
    ) -> List[dict]:
        cursor = self.collection(collection_name).find(filter_dict or {}, projection)
        if sort:
            cursor = cursor.sort(sort)
        if limit:
            cursor = cursor.limit(int(limit))
        return [serialize_doc(doc) for doc in cursor]

    def find_one(
        self,
        collection_name: str,
        filter_dict: Optional[dict] = None,
        projection: Optional[dict] = None,
        sort: Optional[list] = None,
    ) -> Optional[dict]:
        doc = self.collection(collection_name).find_one(filter_dict or {}, projection, sort=sort)
        return serialize_doc(doc)

    def get_document_by_id(self, collection_name: str, _id: str) -> Optional[dict]:
        oid = object_id(_id)
        if oid is None:
            return None
        return self.find_one(collection_name, {"_id": oid})

    def update_document(self, collection_name: str, _id: str, update_data: Dict[str, Any]) -> bool:
        oid = object_id(_id)
        if oid is None:
            return False
        update = {"$set": _to_dict(update_data)}
        update["$set"]["updated_at"] = utcnow()
        result = self.collection(collection_name).update_one({"_id": oid}, update)
        return result.matched_count > 0

    def find_one_and_update(
        self,
        collection_name: str,
        filter_dict: dict,
        update: dict,
        projection: Optional[dict] = None,
        upsert: bool = False,
    ) -> Optional[dict]:
        update = dict(update)
        update.setdefault("$set", {})
        update["$set"] = dict(update["$set"], updated_at=utcnow())
        doc = self.collection(collection_name).find_one_and_update(
            filter_dict,
            update,
            projection=projection,
            upsert=upsert,
            return_document=ReturnDocument.AFTER,
        )
        return serialize_doc(doc)

    def find_one_and_delete(self, collection_name: str, filter_dict: dict) -> Optional[dict]:
        return serialize_doc(self.collection(collection_name).find_one_and_delete(filter_dict))

    def replace_all(self, collection_name: str, documents: List[dict]) -> List[dict]:
        """Drop every document in the collection and insert the given ones."""
        coll = self.collection(collection_name)
        coll.delete_many({})
        if not documents:
            return []
        payload = [dict(doc) for doc in documents]
        coll.insert_many(payload)
        return [serialize_doc(doc) for doc in payload]

    def count(self, collection_name: str, filter_dict: Optional[dict] = None) -> int:
        return self.collection(collection_name).count_documents(filter_dict or {})
