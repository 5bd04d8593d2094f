"""
Entity store access for the marketplace.

Collections: "users", "projects", "bids", "chats", "contactMessages".

Two bindings share one contract:

- MongoEntityStore: pymongo-backed, used when DATABASE_URL and DATABASE_NAME
  are configured. Multi-document batches are only atomic when
  MONGO_TRANSACTIONS is enabled (transactions need a replica set).
- MemoryEntityStore: process-local dictionaries guarded by a lock. Used for
  local runs without a database and by the test-suite.

Documents come back as plain dicts with the store id exposed as "id".
"""
import copy
import logging
import os
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.errors import PyMongoError

from errors import CollaboratorUnavailable, NotFound, WriteConflict

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")
MONGO_TRANSACTIONS = os.getenv("MONGO_TRANSACTIONS", "").lower() in ("1", "true", "yes")
STORE_MAX_RETRIES = int(os.getenv("STORE_MAX_RETRIES", "3"))
STORE_RETRY_DELAY = float(os.getenv("STORE_RETRY_DELAY", "0.2"))

logger = logging.getLogger("database")

USERS = "users"
PROJECTS = "projects"
BIDS = "bids"
CONTACT_MESSAGES = "contactMessages"
CHATS = "chats"

NEWEST_FIRST = ("createdAt", DESCENDING)


def now() -> datetime:
    return datetime.now(timezone.utc)


def retry_with_backoff(fn: Callable[[], Any], max_retries: int = STORE_MAX_RETRIES,
                       base_delay: float = STORE_RETRY_DELAY, max_delay: float = 5.0):
    """
    Retry the callable with exponential backoff while the store is unavailable.
    Domain errors are never retried.
    """
    attempts = max(1, max_retries)
    for attempt in range(attempts):
        try:
            return fn()
        except CollaboratorUnavailable as exc:
            if attempt == attempts - 1:
                raise
            delay = min(base_delay * (2 ** attempt), max_delay)
            logger.warning("Store retry %s/%s after %.1fs: %s", attempt + 1, attempts - 1, delay, exc)
            time.sleep(delay)


@dataclass
class Write:
    """One operation of a batch: a partial update, or a delete when delete=True."""
    collection: str
    id: str
    fields: Optional[Dict[str, Any]] = None
    expected: Optional[Dict[str, Any]] = None
    delete: bool = False


def matches(doc: Dict[str, Any], where: Optional[Dict[str, Any]]) -> bool:
    """
    Equality match with Mongo's semantics: a list value means "any of these",
    a scalar matches an array field containing it, None matches a missing field.
    """
    for key, want in (where or {}).items():
        have = doc.get(key)
        if isinstance(want, (list, tuple, set)):
            if have not in want:
                return False
        elif isinstance(have, list):
            if want not in have:
                return False
        elif have != want:
            return False
    return True


def to_mongo_filter(where: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    filt: Dict[str, Any] = {}
    for key, want in (where or {}).items():
        if isinstance(want, (list, tuple, set)):
            filt[key] = {"$in": list(want)}
        else:
            filt[key] = want
    return filt


class EntityStore:
    """
    Contract consumed by the workflows.

    create(collection, fields) -> id
    get(collection, id) -> document (raises NotFound)
    update(collection, id, fields, expected=None) -> None
        raises NotFound when absent, WriteConflict when `expected` does not match
    delete(collection, id) -> None
    query(collection, where=None, order_by=None, limit=None) -> list of documents
    batch_write(writes) -> None, all-or-nothing when atomic_batches is True
    """
    atomic_batches = False
    name = "abstract"

    def create(self, collection: str, fields: Dict[str, Any]) -> str:
        raise NotImplementedError

    def get(self, collection: str, id: str) -> Dict[str, Any]:
        raise NotImplementedError

    def update(self, collection: str, id: str, fields: Dict[str, Any],
               expected: Optional[Dict[str, Any]] = None) -> None:
        raise NotImplementedError

    def delete(self, collection: str, id: str) -> None:
        raise NotImplementedError

    def query(self, collection: str, where: Optional[Dict[str, Any]] = None,
              order_by: Optional[Tuple[str, int]] = None, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        raise NotImplementedError

    def batch_write(self, writes: Iterable[Write]) -> None:
        raise NotImplementedError

    def describe(self) -> Dict[str, Any]:
        return {"backend": self.name, "atomic_batches": self.atomic_batches}


def _sort_key(field: str):
    def key(doc):
        value = doc.get(field)
        return (value is not None, value)
    return key


class MemoryEntityStore(EntityStore):
    name = "memory"

    def __init__(self, atomic_batches: bool = True):
        self.atomic_batches = atomic_batches
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._lock = threading.RLock()

    def _docs(self, collection: str) -> Dict[str, Dict[str, Any]]:
        return self._collections.setdefault(collection, {})

    @staticmethod
    def _out(id: str, doc: Dict[str, Any]) -> Dict[str, Any]:
        d = copy.deepcopy(doc)
        d["id"] = id
        return d

    def create(self, collection, fields):
        new_id = str(ObjectId())
        doc = copy.deepcopy(fields)
        doc.pop("id", None)
        doc.setdefault("createdAt", now())
        with self._lock:
            self._docs(collection)[new_id] = doc
        return new_id

    def get(self, collection, id):
        with self._lock:
            doc = self._docs(collection).get(id)
            if doc is None:
                raise NotFound(f"{collection} document {id} not found")
            return self._out(id, doc)

    def _check(self, collection, id, expected):
        doc = self._docs(collection).get(id)
        if doc is None:
            raise NotFound(f"{collection} document {id} not found")
        if expected and not matches(doc, expected):
            raise WriteConflict(f"{collection} document {id} changed concurrently")
        return doc

    def update(self, collection, id, fields, expected=None):
        with self._lock:
            doc = self._check(collection, id, expected)
            doc.update(copy.deepcopy(fields))

    def delete(self, collection, id):
        with self._lock:
            self._docs(collection).pop(id, None)

    def query(self, collection, where=None, order_by=None, limit=None):
        with self._lock:
            found = [self._out(i, d) for i, d in self._docs(collection).items() if matches(d, where)]
        if order_by:
            field, direction = order_by
            found.sort(key=_sort_key(field), reverse=direction == DESCENDING)
        if limit is not None:
            found = found[:limit]
        return found

    def _apply(self, write: Write):
        if write.delete:
            if write.expected:
                self._check(write.collection, write.id, write.expected)
            self.delete(write.collection, write.id)
        else:
            self.update(write.collection, write.id, write.fields or {}, write.expected)

    def batch_write(self, writes):
        writes = list(writes)
        if not self.atomic_batches:
            for write in writes:
                self._apply(write)
            return
        with self._lock:
            for write in writes:
                if not write.delete or write.expected:
                    self._check(write.collection, write.id, write.expected)
            for write in writes:
                self._apply(write)

    def describe(self):
        info = super().describe()
        with self._lock:
            info["collections"] = sorted(self._collections)
        return info


@contextmanager
def _unavailable_on_error(operation: str):
    try:
        yield
    except PyMongoError as exc:
        logger.warning("Mongo %s failed: %s", operation, exc)
        raise CollaboratorUnavailable(f"Database {operation} failed, please try again") from exc


def to_object_id(id_str: str) -> ObjectId:
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        raise NotFound(f"Invalid ID format: {id_str}")


def serialize(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not doc:
        return doc
    d = dict(doc)
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    return d


class MongoEntityStore(EntityStore):
    name = "mongodb"

    def __init__(self, db, client: Optional[MongoClient] = None, transactions: bool = False):
        self.db = db
        self.client = client
        self.atomic_batches = transactions and client is not None

    def create(self, collection, fields):
        doc = dict(fields)
        doc.pop("id", None)
        doc.setdefault("createdAt", now())
        with _unavailable_on_error("insert"):
            return str(self.db[collection].insert_one(doc).inserted_id)

    def get(self, collection, id):
        oid = to_object_id(id)

        def _find():
            with _unavailable_on_error("read"):
                return self.db[collection].find_one({"_id": oid})

        doc = retry_with_backoff(_find)
        if not doc:
            raise NotFound(f"{collection} document {id} not found")
        return serialize(doc)

    def _update(self, collection, id, fields, expected, session=None):
        oid = to_object_id(id)
        filt = {"_id": oid, **to_mongo_filter(expected)}
        result = self.db[collection].update_one(filt, {"$set": fields}, session=session)
        if result.matched_count == 0:
            if self.db[collection].count_documents({"_id": oid}, limit=1, session=session) == 0:
                raise NotFound(f"{collection} document {id} not found")
            raise WriteConflict(f"{collection} document {id} changed concurrently")

    def _delete(self, collection, id, expected, session=None):
        filt = {"_id": to_object_id(id), **to_mongo_filter(expected)}
        result = self.db[collection].delete_one(filt, session=session)
        if expected and result.deleted_count == 0:
            raise WriteConflict(f"{collection} document {id} changed concurrently")

    def update(self, collection, id, fields, expected=None):
        with _unavailable_on_error("update"):
            self._update(collection, id, fields, expected)

    def delete(self, collection, id):
        with _unavailable_on_error("delete"):
            self._delete(collection, id, None)

    def query(self, collection, where=None, order_by=None, limit=None):
        def _find():
            with _unavailable_on_error("query"):
                cursor = self.db[collection].find(to_mongo_filter(where))
                if order_by:
                    field, direction = order_by
                    cursor = cursor.sort(field, DESCENDING if direction == DESCENDING else ASCENDING)
                if limit:
                    cursor = cursor.limit(limit)
                return [serialize(x) for x in cursor]

        return retry_with_backoff(_find)

    def _apply(self, writes: List[Write], session=None):
        for write in writes:
            if write.delete:
                self._delete(write.collection, write.id, write.expected, session=session)
            else:
                self._update(write.collection, write.id, write.fields or {}, write.expected, session=session)

    def batch_write(self, writes):
        writes = list(writes)
        with _unavailable_on_error("batch write"):
            if not self.atomic_batches:
                self._apply(writes)
                return
            with self.client.start_session() as session:
                session.with_transaction(lambda s: self._apply(writes, session=s))

    def describe(self):
        info = super().describe()
        info["database_name"] = self.db.name
        with _unavailable_on_error("list collections"):
            info["collections"] = self.db.list_collection_names()[:10]
        return info


_store: Optional[EntityStore] = None
_store_lock = threading.Lock()


def connect() -> EntityStore:
    if DATABASE_URL and DATABASE_NAME:
        client = MongoClient(DATABASE_URL, tz_aware=True, serverSelectionTimeoutMS=5000)
        logger.info("Using MongoDB database %s (transactions=%s)", DATABASE_NAME, MONGO_TRANSACTIONS)
        return MongoEntityStore(client[DATABASE_NAME], client=client, transactions=MONGO_TRANSACTIONS)
    logger.warning("DATABASE_URL/DATABASE_NAME not set, using the in-memory store")
    return MemoryEntityStore()


def get_store() -> EntityStore:
    """FastAPI dependency. The store is created on first use."""
    global _store
    if _store is None:
        with _store_lock:
            if _store is None:
                _store = connect()
    return _store
