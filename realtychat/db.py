from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from .config import get_settings

_settings = get_settings()
_client: AsyncIOMotorClient | None = None
_db: AsyncIOMotorDatabase | None = None


async def ensure_indexes(db: AsyncIOMotorDatabase) -> None:
    await db.users.create_index("email", unique=True)
    await db.users.create_index([("role", 1)])
    # Un único hilo por pareja de participantes
    await db.threads.create_index("participants_key", unique=True)
    await db.threads.create_index([("participants", 1), ("last_message_time", -1)])
    await db.messages.create_index([("thread_id", 1), ("created_at", 1), ("_id", 1)])
    await db.messages.create_index([("thread_id", 1), ("read", 1)])


async def get_db() -> AsyncIOMotorDatabase:
    global _client, _db
    if _db is None:
        _client = AsyncIOMotorClient(_settings.mongodb_uri)
        _db = _client[_settings.db_name]
        await ensure_indexes(_db)
    return _db


def close_db() -> None:
    global _client, _db
    if _client is not None:
        _client.close()
    _client = None
    _db = None
