"""
MongoDB access for the storefront.

One Database object is created per process by main.create_app() and handed to
every request through app.state. The client connects lazily on first use so a
missing DATABASE_URL surfaces as a ConfigurationError on the request that needs
it rather than as an import-time crash.

Collections:
- admins        email (unique), password_hash
- orders        order_number (unique), product_id, customer fields, status
- order_counters  one document per day, {_id: "DDMMYYYY", seq: n}
- announcements, countdowns, videos, products
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from bson.errors import InvalidDocument, InvalidId
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.errors import PyMongoError

from config import Settings
from errors import NotFoundError, PersistenceError

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    # pymongo hands back naive UTC datetimes, so store them the same way
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_utc_naive(dt: datetime) -> datetime:
    """Aware (or server-local naive) datetime -> naive UTC, the form stored in MongoDB."""
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def oid_to_str(doc: Dict[str, Any]) -> Dict[str, Any]:
    if not doc:
        return doc
    d = dict(doc)
    if "_id" in d and isinstance(d["_id"], ObjectId):
        d["id"] = str(d.pop("_id"))
    for k, v in list(d.items()):
        if isinstance(v, ObjectId):
            d[k] = str(v)
        elif isinstance(v, datetime):
            if v.tzinfo is None:
                v = v.replace(tzinfo=timezone.utc)
            d[k] = v.isoformat()
        elif isinstance(v, dict):
            d[k] = oid_to_str(v)
    return d


def to_object_id(value: str, what: str = "Document") -> ObjectId:
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise NotFoundError(f"{what} not found")


class Database:
    def __init__(self, settings: Settings, client: Optional[MongoClient] = None):
        self.settings = settings
        self._client = client
        self._db = None

    @property
    def db(self):
        if self._db is None:
            if self._client is None:
                self.settings.require("database_url")
                timeout_ms = self.settings.backend_timeout * 1000
                self._client = MongoClient(
                    self.settings.database_url,
                    serverSelectionTimeoutMS=timeout_ms,
                    connectTimeoutMS=timeout_ms,
                    socketTimeoutMS=timeout_ms,
                )
            db = self._client[self.settings.database_name]
            try:
                db["orders"].create_index([("order_number", ASCENDING)], unique=True)
                db["orders"].create_index([("created_at", DESCENDING)])
                db["admins"].create_index([("email", ASCENDING)], unique=True)
            except PyMongoError as e:
                logger.exception("Could not prepare database indexes")
                raise PersistenceError("Database unavailable", details=str(e)) from e
            self._db = db
        return self._db

    @property
    def configured(self) -> bool:
        return self._client is not None or bool(self.settings.database_url)

    def __getitem__(self, name: str):
        return self.db[name]

    def create_document(self, collection: str, data: Union[BaseModel, Dict[str, Any]]) -> Dict[str, Any]:
        """Insert a document stamped with created_at/updated_at and return it with a string id."""
        doc = data.model_dump() if isinstance(data, BaseModel) else dict(data)
        now = utcnow()
        doc.setdefault("created_at", now)
        doc["updated_at"] = now
        try:
            result = self[collection].insert_one(doc)
        except PyMongoError as e:
            logger.exception("Error creating %s document", collection)
            raise PersistenceError(f"Failed to create {collection.rstrip('s')}", details=str(e)) from e
        except (InvalidDocument, OverflowError) as e:
            logger.exception("Unencodable %s document", collection)
            raise PersistenceError(f"Failed to create {collection.rstrip('s')}", details=str(e)) from e
        doc["_id"] = result.inserted_id
        return oid_to_str(doc)

    def get_documents(
        self,
        collection: str,
        filter_dict: Optional[Dict[str, Any]] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """Newest first."""
        try:
            cursor = self[collection].find(filter_dict or {}).sort("created_at", DESCENDING)
            if limit:
                cursor = cursor.limit(limit)
            return [oid_to_str(d) for d in cursor]
        except PyMongoError as e:
            logger.exception("Error fetching %s", collection)
            raise PersistenceError(f"Failed to fetch {collection}", details=str(e)) from e

    def update_document(self, collection: str, doc_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        what = collection.rstrip("s").capitalize()
        oid = to_object_id(doc_id, what)
        try:
            result = self[collection].update_one({"_id": oid}, {"$set": {**changes, "updated_at": utcnow()}})
            if result.matched_count == 0:
                raise NotFoundError(f"{what} not found")
            return oid_to_str(self[collection].find_one({"_id": oid}))
        except PyMongoError as e:
            logger.exception("Error updating %s %s", collection, doc_id)
            raise PersistenceError(f"Failed to update {what.lower()}", details=str(e)) from e

    def delete_document(self, collection: str, doc_id: str) -> None:
        what = collection.rstrip("s").capitalize()
        oid = to_object_id(doc_id, what)
        try:
            result = self[collection].delete_one({"_id": oid})
        except PyMongoError as e:
            logger.exception("Error deleting %s %s", collection, doc_id)
            raise PersistenceError(f"Failed to delete {what.lower()}", details=str(e)) from e
        if result.deleted_count == 0:
            raise NotFoundError(f"{what} not found")

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
