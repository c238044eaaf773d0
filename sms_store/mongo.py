"""MongoDB access for sms-store.

This module has one job: handle MongoDB interactions for the `sms_records`
collection.

- `connect()` builds the shared MongoClient and verifies it with a ping.
  The client is a thread-safe connection pool, so the Kafka consumer thread
  and the HTTP handlers share it.
- `ensure_indexes()` creates the indexes used by the read API.
- `SmsRepository` is the storage gateway. Every call runs inside its own
  `pymongo.timeout()` block, and driver exceptions are translated into
  `StorageUnavailable` / `StorageWriteRejected` so callers never see pymongo
  error types.

Records are plain inserts: the store assigns `_id`. Processing the same Kafka
message twice stores two documents (at-least-once, no deduplication).
"""

from __future__ import annotations

import pymongo
import structlog
from pymongo import ASCENDING, DESCENDING, MongoClient, errors
from pymongo.collection import Collection
from pymongo.database import Database

from . import config
from .errors import StorageUnavailable, StorageWriteRejected
from .models import SmsRecord

logger = structlog.get_logger(__name__)

NEWEST_FIRST = [("created_at", DESCENDING)]

# IndexOptionsConflict, IndexKeySpecsConflict
INDEX_CONFLICT_CODES = (85, 86)


def connect(uri: str, database: str) -> Database:
    """Connect to MongoDB and return the service database.

    Raises:
        StorageUnavailable: the server did not answer a ping in time. This is
            fatal at startup.
    """
    logger.info("Connecting to MongoDB", database=database)

    client = MongoClient(
        uri,
        maxPoolSize=50,
        minPoolSize=10,
        maxIdleTimeMS=30_000,
        serverSelectionTimeoutMS=int(config.SERVER_SELECTION_TIMEOUT * 1000),
    )

    try:
        with pymongo.timeout(config.CONNECT_PING_TIMEOUT):
            client.admin.command("ping")
    except errors.PyMongoError as e:
        client.close()
        raise StorageUnavailable(f"failed to ping MongoDB: {e}") from e

    logger.info("Connected to MongoDB", database=database)
    return client[database]


def get_collection(db: Database, name: str = config.MONGO_COLLECTION) -> Collection:
    return db[name]


def ensure_indexes(collection: Collection) -> list[str]:
    """Create the indexes used by the read path.

    - user_id alone
    - created_at alone (newest first)
    - (user_id, created_at desc): serves find({user_id}).sort(created_at desc)

    Creating an index that already exists with the same keys and name is a
    no-op. Existing indexes are never dropped: if one covers the same keys
    under another name (or the name is taken by other keys), the conflict is
    logged, that index is skipped and the existing one keeps serving queries.

    Returns the names of the indexes created or confirmed.
    """
    models = [
        pymongo.IndexModel([("user_id", ASCENDING)], name="idx_user_id"),
        pymongo.IndexModel([("created_at", DESCENDING)], name="idx_created_at"),
        pymongo.IndexModel(
            [("user_id", ASCENDING), ("created_at", DESCENDING)],
            name="idx_user_id_created_at",
        ),
    ]

    names: list[str] = []
    for model in models:
        try:
            names.extend(collection.create_indexes([model]))
        except errors.OperationFailure as e:
            if e.code not in INDEX_CONFLICT_CODES:
                raise
            logger.warning(
                "Index conflicts with an existing index, skipped",
                index=model.document["name"],
                code=e.code,
                error=str(e),
            )

    logger.info("MongoDB indexes ready", indexes=names)
    return names


def _unavailable(action: str, e: errors.PyMongoError) -> StorageUnavailable:
    return StorageUnavailable(f"{action} failed: {e}")


class SmsRepository:
    """Storage gateway for SMS records in a single collection."""

    def __init__(
        self,
        collection: Collection,
        insert_timeout: float = config.INSERT_TIMEOUT,
        query_timeout: float = config.QUERY_TIMEOUT,
        health_timeout: float = config.HEALTH_TIMEOUT,
    ):
        self.collection = collection
        self.insert_timeout = insert_timeout
        self.query_timeout = query_timeout
        self.health_timeout = health_timeout

    def insert(self, record: SmsRecord) -> str:
        """Insert one record and return the id MongoDB assigned to it.

        Raises:
            StorageUnavailable: connection problems or the deadline expired.
            StorageWriteRejected: the server rejected the document.
        """
        try:
            with pymongo.timeout(self.insert_timeout):
                result = self.collection.insert_one(record.to_document())
        except (errors.ConnectionFailure, errors.ExecutionTimeout) as e:
            raise _unavailable("insert", e) from e
        except (errors.WriteError, errors.OperationFailure) as e:
            if e.timeout:
                raise _unavailable("insert", e) from e
            raise StorageWriteRejected(f"insert rejected: {e}") from e
        except errors.PyMongoError as e:
            raise _unavailable("insert", e) from e

        storage_id = str(result.inserted_id)
        logger.debug("Inserted SMS record", id=storage_id, user_id=record.user_id)
        return storage_id

    def find_by_owner(self, user_id: str) -> list[SmsRecord]:
        """Return all records for a user, newest first ([] if none)."""
        try:
            with pymongo.timeout(self.query_timeout):
                cursor = self.collection.find({"user_id": user_id}).sort(NEWEST_FIRST)
                docs = list(cursor)
        except errors.PyMongoError as e:
            raise _unavailable("find_by_owner", e) from e

        return [SmsRecord.from_document(doc) for doc in docs]

    def find_recent_by_owner(self, user_id: str, limit: int) -> list[SmsRecord]:
        """Return at most `limit` records for a user, newest first."""
        if limit <= 0:
            raise ValueError("limit must be a positive integer")

        try:
            with pymongo.timeout(self.query_timeout):
                cursor = (
                    self.collection.find({"user_id": user_id})
                    .sort(NEWEST_FIRST)
                    .limit(limit)
                )
                docs = list(cursor)
        except errors.PyMongoError as e:
            raise _unavailable("find_recent_by_owner", e) from e

        return [SmsRecord.from_document(doc) for doc in docs]

    def count_by_owner(self, user_id: str) -> int:
        try:
            with pymongo.timeout(self.query_timeout):
                return self.collection.count_documents({"user_id": user_id})
        except errors.PyMongoError as e:
            raise _unavailable("count_by_owner", e) from e

    def health_check(self) -> None:
        """Ping the server with a short deadline.

        Raises:
            StorageUnavailable: the ping failed or timed out.
        """
        try:
            with pymongo.timeout(self.health_timeout):
                self.collection.database.client.admin.command("ping")
        except errors.PyMongoError as e:
            raise StorageUnavailable(f"MongoDB health check failed: {e}") from e
