"""
MongoDB access for CampusKart

`MongoStore` adapts one pymongo collection to the small document-store
interface the listing registry and cart aggregator are written against.
Documents come back with a string `id` in place of `_id`.
"""

import logging
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

from bson import ObjectId
from pymongo import MongoClient, ReturnDocument
from pymongo.collection import Collection
from pymongo.errors import DuplicateKeyError, PyMongoError

from config import get_settings
from errors import StoreUnavailable

logger = logging.getLogger(__name__)

Sort = Sequence[Tuple[str, int]]


class DocumentStore(Protocol):
    def is_valid_id(self, doc_id: str) -> bool: ...

    def find_by_id(self, doc_id: str) -> Optional[Dict[str, Any]]: ...

    def find_one(self, filter_dict: Dict[str, Any]) -> Optional[Dict[str, Any]]: ...

    def find(self, filter_dict: Optional[Dict[str, Any]] = None, sort: Optional[Sort] = None) -> List[Dict[str, Any]]: ...

    def insert(self, document: Dict[str, Any]) -> str: ...

    def find_or_insert(self, filter_dict: Dict[str, Any], document: Dict[str, Any]) -> Dict[str, Any]: ...

    def update_by_id(self, doc_id: str, changes: Dict[str, Any]) -> Optional[Dict[str, Any]]: ...

    def delete_by_id(self, doc_id: str) -> bool: ...

    def delete_many(self, filter_dict: Dict[str, Any]) -> int: ...


_client: Optional[MongoClient] = None


def get_client() -> MongoClient:
    global _client
    if _client is None:
        settings = get_settings()
        # MongoClient connects lazily, so this never blocks on the server
        _client = MongoClient(settings.database_url, tz_aware=True)
    return _client


def get_db():
    return get_client()[get_settings().database_name]


def get_collection(name: str) -> Collection:
    return get_db()[name]


def ping() -> bool:
    try:
        get_client().admin.command("ping")
        return True
    except PyMongoError as e:
        logger.warning("MongoDB ping failed: %s", e)
        return False


def ensure_indexes():
    """One cart per session: concurrent first touches upsert into the same document."""
    get_collection("cart").create_index("session_id", unique=True)


def _out(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if doc is None:
        return None
    doc = dict(doc)
    doc["id"] = str(doc.pop("_id"))
    return doc


class MongoStore:
    """DocumentStore over a pymongo collection."""

    def __init__(self, collection: Collection):
        self.collection = collection

    def _fail(self, op: str, e: PyMongoError):
        logger.error("MongoDB %s on %s failed: %s", op, self.collection.name, e)
        raise StoreUnavailable() from e

    def is_valid_id(self, doc_id: str) -> bool:
        return isinstance(doc_id, str) and ObjectId.is_valid(doc_id)

    def find_by_id(self, doc_id: str) -> Optional[Dict[str, Any]]:
        if not self.is_valid_id(doc_id):
            return None
        try:
            return _out(self.collection.find_one({"_id": ObjectId(doc_id)}))
        except PyMongoError as e:
            self._fail("find_by_id", e)

    def find_one(self, filter_dict: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        try:
            return _out(self.collection.find_one(filter_dict))
        except PyMongoError as e:
            self._fail("find_one", e)

    def find(self, filter_dict: Optional[Dict[str, Any]] = None, sort: Optional[Sort] = None) -> List[Dict[str, Any]]:
        try:
            cursor = self.collection.find(filter_dict or {})
            if sort:
                cursor = cursor.sort(list(sort))
            return [_out(d) for d in cursor]
        except PyMongoError as e:
            self._fail("find", e)

    def insert(self, document: Dict[str, Any]) -> str:
        try:
            result = self.collection.insert_one(dict(document))
            return str(result.inserted_id)
        except PyMongoError as e:
            self._fail("insert", e)

    def find_or_insert(self, filter_dict: Dict[str, Any], document: Dict[str, Any]) -> Dict[str, Any]:
        on_insert = {k: v for k, v in document.items() if k not in filter_dict}
        try:
            try:
                found = self.collection.find_one_and_update(
                    filter_dict,
                    {"$setOnInsert": on_insert},
                    upsert=True,
                    return_document=ReturnDocument.AFTER,
                )
            except DuplicateKeyError:
                # Lost an upsert race against the unique index; the winner's document exists now
                found = self.collection.find_one(filter_dict)
            return _out(found)
        except PyMongoError as e:
            self._fail("find_or_insert", e)

    def update_by_id(self, doc_id: str, changes: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        if not self.is_valid_id(doc_id):
            return None
        try:
            updated = self.collection.find_one_and_update(
                {"_id": ObjectId(doc_id)},
                {"$set": changes},
                return_document=ReturnDocument.AFTER,
            )
            return _out(updated)
        except PyMongoError as e:
            self._fail("update_by_id", e)

    def delete_by_id(self, doc_id: str) -> bool:
        if not self.is_valid_id(doc_id):
            return False
        try:
            return self.collection.delete_one({"_id": ObjectId(doc_id)}).deleted_count == 1
        except PyMongoError as e:
            self._fail("delete_by_id", e)

    def delete_many(self, filter_dict: Dict[str, Any]) -> int:
        try:
            return self.collection.delete_many(filter_dict).deleted_count
        except PyMongoError as e:
            self._fail("delete_many", e)
