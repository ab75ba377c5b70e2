"""
MongoDB Connection Manager
Async Motor client with retry, health checks and index setup
"""
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo.errors import (
    ConnectionFailure,
    ServerSelectionTimeoutError,
    OperationFailure,
    DuplicateKeyError
)
import logging
from typing import Optional
import asyncio
from datetime import datetime, timedelta

from config import settings
from signaldesk.errors import ServerError

logger = logging.getLogger(__name__)


class MongoDBManager:
    """Singleton MongoDB connection manager with health monitoring"""

    _instance: Optional['MongoDBManager'] = None
    _lock = asyncio.Lock()

    def __init__(self):
        self.client: Optional[AsyncIOMotorClient] = None
        self.database: Optional[AsyncIOMotorDatabase] = None
        self._is_connected: bool = False
        self._connection_attempts: int = 0
        self._last_health_check: Optional[datetime] = None
        self._health_check_interval: int = 30  # seconds

    @classmethod
    async def get_instance(cls) -> 'MongoDBManager':
        """Get or create singleton instance"""
        if cls._instance is None:
            async with cls._lock:
                if cls._instance is None:
                    cls._instance = cls()
        return cls._instance

    @property
    def is_connected(self) -> bool:
        return self._is_connected and self.client is not None

    async def connect(self, retries: int = 3, retry_delay: int = 2) -> None:
        """
        Establish connection to MongoDB with exponential backoff

        Args:
            retries: Number of connection attempts
            retry_delay: Base delay between retries in seconds

        Raises:
            ConnectionFailure: If all connection attempts fail
        """
        if self.is_connected:
            return

        last_error: Optional[Exception] = None

        for attempt in range(1, retries + 1):
            try:
                logger.info(f"[DB] Connection attempt {attempt}/{retries}...")

                self.client = AsyncIOMotorClient(
                    settings.MONGODB_URI,
                    serverSelectionTimeoutMS=10000,
                    connectTimeoutMS=15000,
                    socketTimeoutMS=20000,
                    maxPoolSize=50,
                    retryWrites=True,
                    retryReads=True,
                    appname="SignalDesk"
                )

                await asyncio.wait_for(
                    self.client.admin.command('ping'),
                    timeout=10.0
                )

                self.database = self.client[settings.DATABASE_NAME]
                await self._create_indexes()

                self._is_connected = True
                self._connection_attempts = 0
                self._last_health_check = datetime.utcnow()

                logger.info(f"[DB] Connected to '{settings.DATABASE_NAME}'")
                return

            except (ConnectionFailure, ServerSelectionTimeoutError, asyncio.TimeoutError) as e:
                last_error = e
                self._connection_attempts += 1
                logger.error(f"[DB] Connection attempt {attempt} failed: {str(e)}")

                if attempt < retries:
                    wait_time = retry_delay * (2 ** (attempt - 1))
                    logger.info(f"[DB] Waiting {wait_time}s before retry...")
                    await asyncio.sleep(wait_time)

        self._is_connected = False
        error_msg = f"Failed to connect to MongoDB after {retries} attempts"
        logger.critical(error_msg)
        raise ConnectionFailure(f"{error_msg}: {last_error}")

    async def disconnect(self) -> None:
        """Gracefully close MongoDB connection"""
        if self.client:
            self.client.close()
            self._is_connected = False
            self.client = None
            self.database = None
            logger.info("[DB] Connection closed")

    async def get_database(self) -> AsyncIOMotorDatabase:
        """
        Get MongoDB database instance with health check

        Raises:
            RuntimeError: If database not initialized
        """
        if not self.is_connected or self.database is None:
            raise RuntimeError("Database not initialized. Call connect() first.")

        await self._periodic_health_check()
        return self.database

    async def _periodic_health_check(self) -> None:
        if self._last_health_check is None:
            return

        if datetime.utcnow() - self._last_health_check > timedelta(seconds=self._health_check_interval):
            try:
                await asyncio.wait_for(self.client.admin.command('ping'), timeout=3.0)
                self._last_health_check = datetime.utcnow()
            except Exception as e:
                logger.warning(f"[DB] Health check failed: {str(e)}")
                self._is_connected = False

    async def _create_indexes(self) -> None:
        """Create indexes used by the quota, ledger and sweep queries"""
        db = self.database

        try:
            await db.profiles.create_index("email", unique=True, sparse=True)
            await db.profiles.create_index("role")
        except DuplicateKeyError:
            logger.warning("[DB] Duplicate key found during profile index creation")

        # Daily / monthly quota counts and stats windows
        await db.scans.create_index([("user_id", 1), ("created_at", -1)])
        await db.scans.create_index("created_at")
        await db.scans.create_index("share_id", unique=True, sparse=True)

        # Ledger sum per user
        await db.credit_transactions.create_index([("user_id", 1), ("created_at", -1)])

        # Sweep over pending payments
        try:
            await db.payments.create_index("reference", unique=True)
        except (DuplicateKeyError, OperationFailure) as e:
            logger.warning(f"[DB] Payment reference index not created: {str(e)}")
        await db.payments.create_index([("status", 1), ("created_at", -1)])

        await db.admin_actions.create_index("timestamp")

        logger.info("[DB] Indexes created/verified")

    async def health_check(self) -> dict:
        """Ping plus collection counts"""
        try:
            if not self.is_connected:
                return {"status": "disconnected", "error": "Database not connected"}

            await asyncio.wait_for(self.client.admin.command('ping'), timeout=3.0)

            db = self.database
            counts = await asyncio.gather(
                db.profiles.count_documents({}),
                db.scans.count_documents({}),
                db.payments.count_documents({}),
                return_exceptions=True
            )

            return {
                "status": "healthy",
                "database": settings.DATABASE_NAME,
                "collections": {
                    name: count if not isinstance(count, Exception) else "error"
                    for name, count in zip(("profiles", "scans", "payments"), counts)
                }
            }

        except asyncio.TimeoutError:
            logger.error("[DB] Health check timeout")
            return {"status": "unhealthy", "error": "Database ping timeout"}

        except Exception as e:
            logger.error(f"[DB] Health check failed: {str(e)}")
            return {"status": "unhealthy", "error": str(e)}


_manager: Optional[MongoDBManager] = None


async def connect_to_mongo(retries: int = 3) -> None:
    global _manager
    if _manager is None:
        _manager = await MongoDBManager.get_instance()

    if not _manager.is_connected:
        await _manager.connect(retries=retries)


async def close_mongo_connection() -> None:
    if _manager:
        await _manager.disconnect()


async def get_database() -> AsyncIOMotorDatabase:
    """FastAPI dependency returning the connected database"""
    global _manager

    if _manager is None:
        _manager = await MongoDBManager.get_instance()

    if not _manager.is_connected:
        logger.warning("[DB] Database not connected, attempting connection...")
        try:
            await _manager.connect(retries=3)
        except Exception as e:
            logger.error(f"[DB] Failed to establish database connection: {str(e)}")
            raise ServerError("Database unavailable") from e

    return await _manager.get_database()


async def check_database_health() -> dict:
    global _manager

    if _manager is None:
        _manager = await MongoDBManager.get_instance()

    if not _manager.is_connected:
        try:
            await _manager.connect(retries=1)
        except Exception as e:
            logger.error(f"[DB] Health check failed: {str(e)}")
            return {"status": "not_initialized", "error": "Database not connected"}

    return await _manager.health_check()


async def get_optional_database() -> Optional[AsyncIOMotorDatabase]:
    """Dependency for best-effort endpoints: None instead of an error when the store is down"""
    try:
        return await get_database()
    except Exception as e:
        logger.warning(f"[DB] Database unavailable for best-effort request: {str(e)}")
        return None
