"""
# Database Management Module

`DatabaseManager` owns the Motor client for the Community Microhelp API.

## Responsibilities

- **Connection lifecycle**: `connect()` with exponential backoff, `disconnect()`
- **Health**: `health_check()` pings the server for `/health`
- **Tenant scoping**: `get_tenant_collection()` returns a `TenantAwareCollection`
- **Indexes**: `create_indexes()` declares every unique, geo and TTL index the
  API relies on; uniqueness is what makes likes, favorites, joins and RSVPs
  idempotent
- **Transactions**: `transaction()` yields a session inside a transaction when
  the deployment is a replica set or mongos, and `None` otherwise

One instance is created by `create_app(settings)` and stored on
`app.state.db`. Request handlers receive it through the `get_database`
dependency.

## Module Attributes

Attributes:
    db_logger: Logger for database operations (`[DATABASE]`).
    perf_logger: Logger for timing (`[DB_PERFORMANCE]`).
    health_logger: Logger for health checks (`[DB_HEALTH]`).
"""

import asyncio
from contextlib import asynccontextmanager
import time
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorCollection, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, GEOSPHERE
from pymongo.errors import ConnectionFailure, PyMongoError, ServerSelectionTimeoutError

from community_microhelp.config import Settings
from community_microhelp.database.tenant_collection import TenantAwareCollection
from community_microhelp.managers.logging_manager import get_logger
from community_microhelp.utils.logging_utils import log_performance

db_logger = get_logger(prefix="[DATABASE]")
perf_logger = get_logger(prefix="[DB_PERFORMANCE]")
health_logger = get_logger(prefix="[DB_HEALTH]")

IndexSpec = Tuple[List[Tuple[str, Any]], Dict[str, Any]]

# collection -> [(keys, options)]
INDEX_SPECS: Dict[str, List[IndexSpec]] = {
    "users": [
        ([("userId", ASCENDING), ("tenantId", ASCENDING)], {"unique": True}),
        ([("tenantId", ASCENDING), ("email", ASCENDING)], {"unique": True, "sparse": True}),
        ([("tenantId", ASCENDING), ("username", ASCENDING)], {"unique": True, "sparse": True}),
    ],
    "posts": [
        ([("location", GEOSPHERE)], {}),
        ([("tenantId", ASCENDING), ("createdAt", DESCENDING)], {}),
        ([("tenantId", ASCENDING), ("userId", ASCENDING), ("createdAt", DESCENDING)], {}),
        ([("tenantId", ASCENDING), ("category", ASCENDING), ("createdAt", DESCENDING)], {}),
    ],
    "comments": [
        ([("tenantId", ASCENDING), ("postId", ASCENDING), ("createdAt", DESCENDING)], {}),
    ],
    "likes": [
        ([("tenantId", ASCENDING), ("postId", ASCENDING), ("userId", ASCENDING)], {"unique": True}),
    ],
    "favorites": [
        ([("tenantId", ASCENDING), ("postId", ASCENDING), ("userId", ASCENDING)], {"unique": True}),
    ],
    "shares": [
        ([("tenantId", ASCENDING), ("postId", ASCENDING), ("createdAt", DESCENDING)], {}),
    ],
    "groups": [
        ([("tenantId", ASCENDING), ("slug", ASCENDING)], {"unique": True}),
    ],
    "groupMembers": [
        ([("tenantId", ASCENDING), ("groupId", ASCENDING), ("userId", ASCENDING)], {"unique": True}),
    ],
    "events": [
        ([("tenantId", ASCENDING), ("startsAt", ASCENDING)], {}),
        ([("tenantId", ASCENDING), ("groupId", ASCENDING), ("startsAt", ASCENDING)], {}),
    ],
    "eventRsvps": [
        ([("tenantId", ASCENDING), ("eventId", ASCENDING), ("userId", ASCENDING)], {"unique": True}),
    ],
    "invitations": [
        ([("tenantId", ASCENDING), ("token", ASCENDING)], {"unique": True}),
    ],
    "chats": [
        ([("tenantId", ASCENDING), ("participantIds", ASCENDING)], {}),
        ([("tenantId", ASCENDING), ("updatedAt", DESCENDING)], {}),
    ],
    "messages": [
        ([("tenantId", ASCENDING), ("chatId", ASCENDING), ("timestamp", DESCENDING)], {}),
    ],
    "messageReads": [
        ([("tenantId", ASCENDING), ("chatId", ASCENDING), ("userId", ASCENDING)], {"unique": True}),
    ],
    "emailVerifications": [
        ([("tenantId", ASCENDING), ("token", ASCENDING)], {"unique": True}),
        ([("expiresAt", ASCENDING)], {"expireAfterSeconds": 0}),
    ],
    "passwordResets": [
        ([("tenantId", ASCENDING), ("token", ASCENDING)], {"unique": True}),
        ([("expiresAt", ASCENDING)], {"expireAfterSeconds": 0}),
    ],
}


class DatabaseManager:
    """
    Manages the MongoDB connection and hands out tenant-scoped collections.

    Args:
        settings: Application settings providing the MongoDB URL, database name,
            timeouts and pool sizes.
    """

    def __init__(self, settings: Settings):
        self.settings = settings
        self.client: Optional[AsyncIOMotorClient] = None
        self.database: Optional[AsyncIOMotorDatabase] = None
        self._connection_retries = 3
        # Set after connect(); True for a replica set or mongos
        self.transactions_supported: Optional[bool] = None

    def _connection_string(self) -> str:
        settings = self.settings
        if settings.MONGODB_USERNAME and settings.MONGODB_PASSWORD:
            password = settings.MONGODB_PASSWORD.get_secret_value()
            db_logger.debug("Using authenticated connection to MongoDB")
            return (
                f"mongodb://{settings.MONGODB_USERNAME}:{password}@"
                f"{settings.MONGODB_URL.replace('mongodb://', '')}"
            )
        db_logger.debug("Using unauthenticated connection to MongoDB")
        return settings.MONGODB_URL

    async def connect(self):
        """
        Establish the MongoDB connection with exponential backoff.

        Up to three attempts are made (waiting 1s, then 2s). After a successful
        ping the deployment is probed with `hello` to decide whether
        multi-document transactions are available.

        Raises:
            ServerSelectionTimeoutError: MongoDB unreachable after all attempts.
            ConnectionFailure: Authentication failed or connection refused.
        """
        settings = self.settings
        start_time = time.time()
        db_logger.info("Starting MongoDB connection process")

        for attempt in range(self._connection_retries):
            attempt_start = time.time()
            try:
                db_logger.info("Connection attempt %d/%d to MongoDB", attempt + 1, self._connection_retries)
                db_logger.info(
                    "MongoDB connection config - Database: %s, MaxPool: %d, MinPool: %d, ServerTimeout: %dms, ConnTimeout: %dms",
                    settings.MONGODB_DATABASE,
                    settings.MONGODB_MAX_POOL_SIZE,
                    settings.MONGODB_MIN_POOL_SIZE,
                    settings.MONGODB_SERVER_SELECTION_TIMEOUT,
                    settings.MONGODB_CONNECTION_TIMEOUT,
                )

                self.client = AsyncIOMotorClient(
                    self._connection_string(),
                    serverSelectionTimeoutMS=settings.MONGODB_SERVER_SELECTION_TIMEOUT,
                    connectTimeoutMS=settings.MONGODB_CONNECTION_TIMEOUT,
                    maxPoolSize=settings.MONGODB_MAX_POOL_SIZE,
                    minPoolSize=settings.MONGODB_MIN_POOL_SIZE,
                    tz_aware=True,
                )
                self.database = self.client[settings.MONGODB_DATABASE]

                ping_start = time.time()
                await self.client.admin.command("ping")
                ping_duration = time.time() - ping_start
                self.transactions_supported = await self._detect_transaction_support()

                total_duration = time.time() - start_time
                perf_logger.info(
                    "MongoDB connection established successfully in %.3fs (ping: %.3fs)", total_duration, ping_duration
                )
                db_logger.info(
                    "Connected to MongoDB database: %s (transactions supported: %s)",
                    settings.MONGODB_DATABASE,
                    self.transactions_supported,
                )
                return

            except (ServerSelectionTimeoutError, ConnectionFailure) as e:
                attempt_duration = time.time() - attempt_start
                perf_logger.warning("Connection attempt %d failed after %.3fs", attempt + 1, attempt_duration)
                db_logger.warning(
                    "Failed to connect to MongoDB (attempt %d/%d): %s", attempt + 1, self._connection_retries, e
                )
                if attempt == self._connection_retries - 1:
                    db_logger.error("All connection attempts failed after %.3fs", time.time() - start_time)
                    raise

                backoff_time = 2**attempt
                db_logger.info("Waiting %.1fs before retry (exponential backoff)", backoff_time)
                await asyncio.sleep(backoff_time)

    async def _detect_transaction_support(self) -> bool:
        try:
            hello = await self.client.admin.command({"hello": 1})
        except PyMongoError as e:
            db_logger.warning("Could not detect transaction support, assuming none: %s", e)
            return False
        # replica set members report setName, mongos reports msg == "isdbgrid"
        return bool(hello.get("setName") or hello.get("msg") == "isdbgrid")

    async def disconnect(self):
        """Close the Motor client and release pooled connections."""
        start_time = time.time()
        if self.client is None:
            db_logger.warning("Disconnect called but no active MongoDB connection found")
            return

        self.client.close()
        self.client = None
        self.database = None
        perf_logger.info("MongoDB disconnection completed in %.3fs", time.time() - start_time)
        db_logger.info("Successfully disconnected from MongoDB")

    async def health_check(self) -> bool:
        """
        Ping MongoDB.

        Returns:
            bool: `True` if the server answered, `False` when disconnected or the
            ping failed.
        """
        if self.client is None:
            health_logger.warning("Health check failed: no MongoDB client")
            return False
        start_time = time.time()
        try:
            await self.client.admin.command("ping")
            health_logger.debug("Health check passed in %.3fs", time.time() - start_time)
            return True
        except PyMongoError as e:
            health_logger.error("Health check failed after %.3fs: %s", time.time() - start_time, e)
            return False

    def get_collection(self, collection_name: str) -> AsyncIOMotorCollection:
        """
        Return a raw, unscoped collection.

        Only index management uses this; request handlers go through
        `get_tenant_collection`.

        Raises:
            ConnectionError: If `connect()` has not completed.
        """
        if self.database is None:
            db_logger.error("Attempted to get collection '%s' but database not connected", collection_name)
            raise ConnectionError("Database not connected")
        return self.database[collection_name]

    def get_tenant_collection(self, collection_name: str, tenant_id: str) -> TenantAwareCollection:
        """Return `collection_name` scoped to `tenant_id`."""
        return TenantAwareCollection(self.get_collection(collection_name), tenant_id)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[Optional[Any]]:
        """
        Yield a session bound to a transaction, or `None` without transaction support.

        Callers pass the yielded value as `session=` to every write; with `None`
        the writes run individually.
        """
        if not self.transactions_supported or self.client is None:
            yield None
            return
        async with await self.client.start_session() as session:
            async with session.start_transaction():
                yield session

    @log_performance("create_indexes", threshold=5.0)
    async def create_indexes(self):
        """Create every index declared in `INDEX_SPECS`."""
        start_time = time.time()
        db_logger.info("Starting database index creation process")

        for collection_name, specs in INDEX_SPECS.items():
            collection = self.get_collection(collection_name)
            db_logger.info("Creating %d indexes for '%s' collection", len(specs), collection_name)
            for keys, options in specs:
                await self._create_index_if_not_exists(collection, keys, options)

        perf_logger.info("Database index creation completed in %.3fs", time.time() - start_time)
        db_logger.info("Database indexes created successfully")

    async def _create_index_if_not_exists(
        self, collection: AsyncIOMotorCollection, keys: List[Tuple[str, Any]], options: Dict[str, Any]
    ):
        start_time = time.time()
        try:
            await collection.create_index(keys, **options)
            perf_logger.debug("Created/ensured index %s in %.3fs", keys, time.time() - start_time)
        except PyMongoError as e:
            perf_logger.warning("Failed to create/ensure index %s after %.3fs", keys, time.time() - start_time)
            db_logger.warning("Could not create/ensure index %s on '%s': %s", keys, collection.name, e)
