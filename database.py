"""
MongoDB access for the video sharing backend.

``EntityStore`` is the single owned handle on the database: it is opened at
application startup, closed at shutdown and handed to every operation.
All pymongo failures are translated to ``StoreFailure`` here so callers never
see driver exceptions.
"""

from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

import structlog
from bson import ObjectId
from pymongo import ASCENDING, DESCENDING, MongoClient, ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from errors import DuplicateEntry, InvalidIdentifier, StoreFailure

logger = structlog.get_logger()

USERS = "user"
VIDEOS = "video"
COMMENTS = "comment"
TWEETS = "tweet"
LIKES = "like"
SUBSCRIPTIONS = "subscription"

# Target kinds a like may point at; the value is also the field on the like
LIKE_TARGETS = {
    "video": VIDEOS,
    "comment": COMMENTS,
    "tweet": TWEETS,
}


def objid(value: Any, field: str = "id") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    if not isinstance(value, str) or not ObjectId.is_valid(value):
        raise InvalidIdentifier(f"Invalid {field} format")
    return ObjectId(value)


def to_str_id(doc):
    if not doc:
        return doc
    d = {**doc}
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    for k, v in list(d.items()):
        d[k] = _jsonable(v)
    return d


def _jsonable(value):
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return to_str_id(value)
    if isinstance(value, list):
        return [_jsonable(v) for v in value]
    return value


def _now() -> datetime:
    return datetime.now(timezone.utc)


class EntityStore:
    def __init__(self, client, database_name: str):
        self.client = client
        self.db = client[database_name]

    @classmethod
    def connect(cls, url: str, database_name: str) -> "EntityStore":
        client = MongoClient(url, tz_aware=True)
        logger.info("Connected to MongoDB", database=database_name)
        return cls(client, database_name)

    def close(self) -> None:
        self.client.close()
        logger.info("MongoDB connection closed")

    def ping(self) -> bool:
        try:
            self.client.admin.command("ping")
        except PyMongoError as e:
            raise StoreFailure(f"Database unreachable: {e}") from e
        return True

    def list_collection_names(self) -> List[str]:
        with self._guard("list_collections"):
            return self.db.list_collection_names()

    def ensure_indexes(self) -> None:
        with self._guard("ensure_indexes"):
            likes = self.db[LIKES]
            # One like per (user, target); the partial filter keeps likes on
            # other target kinds out of each index.
            for field in LIKE_TARGETS:
                likes.create_index(
                    [("liked_by", ASCENDING), (field, ASCENDING)],
                    unique=True,
                    partialFilterExpression={field: {"$exists": True}},
                    name=f"unique_like_{field}",
                )
            self.db[SUBSCRIPTIONS].create_index(
                [("subscriber", ASCENDING), ("channel", ASCENDING)],
                unique=True,
                name="unique_subscription",
            )
            self.db[SUBSCRIPTIONS].create_index("channel")
            self.db[VIDEOS].create_index([("owner", ASCENDING), ("created_at", DESCENDING)])
            self.db[VIDEOS].create_index([("is_published", ASCENDING), ("created_at", DESCENDING)])
            self.db[COMMENTS].create_index([("video", ASCENDING), ("created_at", DESCENDING)])
            self.db[TWEETS].create_index([("owner", ASCENDING), ("created_at", DESCENDING)])
        logger.info("Indexes ensured")

    # -------------------- CRUD --------------------

    def find_by_id(self, collection: str, doc_id, projection: Optional[Dict] = None):
        with self._guard("find_by_id", collection):
            return self.db[collection].find_one({"_id": objid(doc_id)}, projection)

    def find_one(self, collection: str, predicate: Dict[str, Any]):
        with self._guard("find_one", collection):
            return self.db[collection].find_one(predicate)

    def get_documents(
        self,
        collection: str,
        predicate: Optional[Dict[str, Any]] = None,
        projection: Optional[Dict[str, Any]] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        with self._guard("get_documents", collection):
            cursor = self.db[collection].find(predicate or {}, projection)
            if limit:
                cursor = cursor.limit(limit)
            return list(cursor)

    def create_document(self, collection: str, data: Dict[str, Any]) -> Dict[str, Any]:
        doc = dict(data)
        now = _now()
        doc.setdefault("created_at", now)
        doc.setdefault("updated_at", now)
        with self._guard("create_document", collection):
            doc["_id"] = self.db[collection].insert_one(doc).inserted_id
        logger.debug("Document created", collection=collection, id=str(doc["_id"]))
        return doc

    def update_by_id(
        self,
        collection: str,
        doc_id,
        patch: Optional[Dict[str, Any]] = None,
        inc: Optional[Dict[str, int]] = None,
    ):
        update: Dict[str, Any] = {}
        if patch is not None:
            update["$set"] = {**patch, "updated_at": _now()}
        if inc:
            update["$inc"] = inc
        with self._guard("update_by_id", collection):
            return self.db[collection].find_one_and_update(
                {"_id": objid(doc_id)},
                update,
                return_document=ReturnDocument.AFTER,
            )

    def delete_by_id(self, collection: str, doc_id):
        """Delete one document; returns it, or None when it was already gone."""
        with self._guard("delete_by_id", collection):
            deleted = self.db[collection].find_one_and_delete({"_id": objid(doc_id)})
        if deleted is not None:
            logger.debug("Document deleted", collection=collection, id=str(deleted["_id"]))
        return deleted

    def delete_many(self, collection: str, predicate: Dict[str, Any]) -> int:
        with self._guard("delete_many", collection):
            return self.db[collection].delete_many(predicate).deleted_count

    # -------------------- Aggregation --------------------

    def run_pipeline(self, collection: str, stages: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
        with self._guard("run_pipeline", collection):
            return list(self.db[collection].aggregate(list(stages)))

    def count(self, collection: str, stages: Iterable[Dict[str, Any]]) -> int:
        """Number of documents the pipeline yields; sort stages are skipped."""
        counting = [s for s in stages if "$sort" not in s]
        counting.append({"$group": {"_id": None, "total": {"$sum": 1}}})
        rows = self.run_pipeline(collection, counting)
        return rows[0]["total"] if rows else 0

    def _guard(self, operation: str, collection: Optional[str] = None):
        return _store_call(operation, collection)


@contextmanager
def _store_call(operation: str, collection: Optional[str]):
    """Translates driver errors raised inside the block into store errors."""
    try:
        yield
    except DuplicateKeyError as e:
        raise DuplicateEntry(f"Duplicate entry in {collection}") from e
    except PyMongoError as e:
        logger.error(
            "Store call failed",
            operation=operation,
            collection=collection,
            error=str(e),
        )
        raise StoreFailure(f"Database error during {operation}") from e
