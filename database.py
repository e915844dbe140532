"""
Database helpers

MongoDB access for the storefront. Services never talk to pymongo directly;
they go through a ``Repository`` per collection, which keeps the document
shape (``_id``, ``createdAt``, ``updatedAt``) consistent everywhere.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

import structlog
from bson import ObjectId
from bson.errors import InvalidId
from fastapi import HTTPException
from pydantic import BaseModel
from pymongo import DESCENDING, MongoClient, ReturnDocument
from pymongo.database import Database

from config import Settings

logger = structlog.get_logger(__name__)

Sort = List[Tuple[str, int]]


def utcnow() -> datetime:
    # stored naive, in UTC, which is how pymongo hands dates back by default
    return datetime.now(timezone.utc).replace(tzinfo=None)


def connect(settings: Settings) -> Database:
    client = MongoClient(settings.database_url)
    return client[settings.database_name]


def ensure_indexes(db: Database) -> None:
    db["users"].create_index("email", unique=True)
    db["users"].create_index("phone", unique=True)
    db["orders"].create_index("orderID", unique=True)
    db["orders"].create_index("user")
    db["carts"].create_index("user", unique=True)
    db["wishlists"].create_index("user", unique=True)
    db["products"].create_index([("salesCount", DESCENDING)])
    db["notifications"].create_index([("createdAt", DESCENDING)])
    logger.info("indexes_ensured", database=db.name)


def to_object_id(value: Union[str, ObjectId]) -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise HTTPException(status_code=400, detail=f"Invalid ID: {value}")


def serialize_doc(doc: Any) -> Any:
    """Make a stored document JSON friendly: ObjectIds become strings,
    datetimes become ISO strings and ``_id`` is exposed as ``id``."""
    if isinstance(doc, dict):
        out = {}
        for k, v in doc.items():
            out["id" if k == "_id" else k] = serialize_doc(v)
        return out
    if isinstance(doc, list):
        return [serialize_doc(v) for v in doc]
    if isinstance(doc, ObjectId):
        return str(doc)
    if isinstance(doc, datetime):
        return doc.isoformat()
    return doc


class Repository:
    """Thin document repository over one collection."""

    def __init__(self, collection):
        self.collection = collection
        self.name = collection.name

    def get(self, doc_id: Union[str, ObjectId]) -> Optional[Dict[str, Any]]:
        return self.collection.find_one({"_id": to_object_id(doc_id)})

    def find_one(self, query: Optional[Dict[str, Any]] = None, **fields) -> Optional[Dict[str, Any]]:
        return self.collection.find_one({**(query or {}), **fields})

    def find(
        self,
        query: Optional[Dict[str, Any]] = None,
        sort: Optional[Sort] = None,
        skip: int = 0,
        limit: int = 0,
        projection: Optional[Dict[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        cursor = self.collection.find(query or {}, projection)
        if sort:
            cursor = cursor.sort(sort)
        if skip:
            cursor = cursor.skip(skip)
        if limit:
            cursor = cursor.limit(limit)
        return list(cursor)

    def get_many(self, ids: Iterable[ObjectId]) -> Dict[ObjectId, Dict[str, Any]]:
        ids = list(ids)
        if not ids:
            return {}
        return {d["_id"]: d for d in self.collection.find({"_id": {"$in": ids}})}

    def count(self, query: Optional[Dict[str, Any]] = None) -> int:
        return self.collection.count_documents(query or {})

    def insert(self, data: Union[BaseModel, Dict[str, Any]]) -> Dict[str, Any]:
        if isinstance(data, BaseModel):
            doc = data.model_dump(by_alias=True, exclude_none=True)
        else:
            doc = dict(data)
        now = utcnow()
        doc.setdefault("createdAt", now)
        doc["updatedAt"] = now
        result = self.collection.insert_one(doc)
        doc["_id"] = result.inserted_id
        return doc

    def save(self, doc: Dict[str, Any]) -> Dict[str, Any]:
        doc["updatedAt"] = utcnow()
        self.collection.replace_one({"_id": doc["_id"]}, doc)
        return doc

    def update(
        self,
        doc_id: Union[str, ObjectId],
        fields: Dict[str, Any],
        unset: Optional[Iterable[str]] = None,
    ) -> Optional[Dict[str, Any]]:
        change: Dict[str, Any] = {"$set": {**fields, "updatedAt": utcnow()}}
        if unset:
            change["$unset"] = {name: "" for name in unset}
        return self.collection.find_one_and_update(
            {"_id": to_object_id(doc_id)}, change, return_document=ReturnDocument.AFTER
        )

    def update_many(self, query: Dict[str, Any], fields: Dict[str, Any]) -> int:
        res = self.collection.update_many(query, {"$set": {**fields, "updatedAt": utcnow()}})
        return res.modified_count

    def increment(self, doc_id: Union[str, ObjectId], field: str, amount: int = 1) -> None:
        self.collection.update_one({"_id": to_object_id(doc_id)}, {"$inc": {field: amount}})

    def delete(self, doc_id: Union[str, ObjectId]) -> bool:
        res = self.collection.delete_one({"_id": to_object_id(doc_id)})
        return res.deleted_count > 0

    def delete_many(self, query: Dict[str, Any]) -> int:
        return self.collection.delete_many(query).deleted_count


class Repositories:
    """One repository per collection used by the storefront."""

    def __init__(self, db: Database):
        self.db = db
        self.users = Repository(db["users"])
        self.products = Repository(db["products"])
        self.carts = Repository(db["carts"])
        self.wishlists = Repository(db["wishlists"])
        self.orders = Repository(db["orders"])
        self.notifications = Repository(db["notifications"])
        self.messages = Repository(db["messages"])
        self.posters = Repository(db["posters"])


NEWEST_FIRST: Sort = [("createdAt", DESCENDING)]
