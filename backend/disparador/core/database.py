# disparador/core/database.py

from contextlib import AbstractAsyncContextManager
from typing import Optional, cast

import motor.motor_asyncio
from motor.motor_asyncio import AsyncIOMotorDatabase
import redis.asyncio as redis
from fastapi import HTTPException, status
from pymongo import ASCENDING, DESCENDING, IndexModel
from loguru import logger

from disparador.core.config import settings

DEFAULT_DB_NAME = "disparador"

# --- MongoDB ---
class MongoDbContext(AbstractAsyncContextManager):
    """Conexão Motor compartilhada (API via lifespan, worker via `async with`)."""

    def __init__(self):
        self.client: Optional[motor.motor_asyncio.AsyncIOMotorClient] = None
        self.db: Optional[AsyncIOMotorDatabase] = None

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.disconnect()

    @staticmethod
    def _db_name_from_uri(uri: str) -> str:
        if settings.MONGODB_DB_NAME:
            return settings.MONGODB_DB_NAME
        uri_path = uri.rsplit('/', 1)[-1]
        db_name = uri_path.split('?')[0]
        if not db_name or '@' in db_name or ':' in db_name or len(db_name) > 63:
            logger.warning(f"Could not parse DB name from URI, using default: {DEFAULT_DB_NAME}")
            return DEFAULT_DB_NAME
        return db_name

    async def connect(self):
        if self.client is not None and self.db is not None:
            logger.info("MongoDB connection already established.")
            return

        logger.info("Connecting to MongoDB...")
        try:
            self.client = motor.motor_asyncio.AsyncIOMotorClient(
                settings.MONGODB_URI,
                uuidRepresentation='standard',
                serverSelectionTimeoutMS=5000,
            )
            await self.client.admin.command('ping')
            db_name = self._db_name_from_uri(settings.MONGODB_URI)
            self.db = self.client[db_name]
            logger.success(f"MongoDB connection successful to database '{db_name}'.")
        except Exception as e:
            logger.critical(f"FATAL: Failed to connect to MongoDB: {e}")
            self.client = None
            self.db = None
            raise ConnectionError(f"MongoDB connection failed: {e}") from e

    async def disconnect(self):
        if self.client is not None:
            logger.info("Closing MongoDB connection...")
            try:
                self.client.close()
            finally:
                self.client = None
                self.db = None
            logger.info("MongoDB connection closed.")

    def get_db(self) -> AsyncIOMotorDatabase:
        if self.db is None:
            raise RuntimeError("MongoDB database is not connected or initialized.")
        return cast(AsyncIOMotorDatabase, self.db)

mongo_manager = MongoDbContext()

# --- Redis ---
class RedisContext(AbstractAsyncContextManager):
    def __init__(self):
        self.client: Optional[redis.Redis] = None

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.disconnect()

    async def connect(self):
        if self.client is not None:
            logger.info("Redis connection already established.")
            return
        logger.info("Connecting to Redis...")
        try:
            pool = redis.ConnectionPool.from_url(
                settings.REDIS_URL,
                decode_responses=True,
                socket_connect_timeout=5,
                socket_keepalive=True,
                max_connections=20,
            )
            self.client = redis.Redis(connection_pool=pool)
            await self.client.ping()
            logger.success("Redis connection successful.")
        except Exception as e:
            # A API sobe sem Redis; o status das sessões fica indisponível para o worker
            logger.error(f"Could not connect to Redis: {e}")
            self.client = None

    async def disconnect(self):
        if self.client is not None:
            logger.info("Closing Redis connection pool...")
            try:
                await self.client.aclose()
                await self.client.connection_pool.disconnect()
            except Exception as e:
                logger.error(f"Error closing Redis connection pool: {e}")
            finally:
                self.client = None

    def get_client(self) -> redis.Redis:
        if self.client is None:
            raise RuntimeError("Redis client is not connected or initialized.")
        return cast(redis.Redis, self.client)

redis_manager = RedisContext()

# --- Índices ---
INDEXES: dict[str, list[IndexModel]] = {
    "users": [IndexModel([("email", ASCENDING)], unique=True), IndexModel([("company_id", ASCENDING)])],
    "companies": [IndexModel([("slug", ASCENDING)], unique=True)],
    "plans": [IndexModel([("slug", ASCENDING)], unique=True)],
    "subscriptions": [IndexModel([("company_id", ASCENDING)], unique=True)],
    "invoices": [IndexModel([("company_id", ASCENDING), ("due_date", DESCENDING)])],
    "system_settings": [IndexModel([("key", ASCENDING)], unique=True)],
    "whatsapp_sessions": [IndexModel([("company_id", ASCENDING), ("is_default", DESCENDING), ("created_at", ASCENDING)])],
    "whatsapp_groups": [IndexModel([("session_id", ASCENDING), ("wa_id", ASCENDING)], unique=True)],
    "whatsapp_auth_state": [IndexModel([("session_id", ASCENDING), ("key", ASCENDING)], unique=True)],
    "campaigns": [IndexModel([("status", ASCENDING), ("scheduled_at", ASCENDING)]), IndexModel([("user_id", ASCENDING)])],
    "message_sends": [IndexModel([("company_id", ASCENDING), ("created_at", DESCENDING)])],
    "template_types": [IndexModel([("user_id", ASCENDING), ("slug", ASCENDING)], unique=True)],
}

async def ensure_indexes(db: AsyncIOMotorDatabase) -> None:
    for collection_name, indexes in INDEXES.items():
        await db[collection_name].create_indexes(indexes)
    logger.info(f"Indexes ensured for {len(INDEXES)} collections.")

# --- Dependências FastAPI ---
async def get_database() -> AsyncIOMotorDatabase:
    """FastAPI dependency to get a MongoDB database instance."""
    try:
        return mongo_manager.get_db()
    except RuntimeError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=f"Database connection not available: {e}")

async def get_redis_client() -> Optional[redis.Redis]:
    """Redis é opcional: devolve None quando indisponível."""
    return redis_manager.client
