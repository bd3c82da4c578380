# realtychat/dependencies.py
from fastapi import Depends
from motor.motor_asyncio import AsyncIOMotorDatabase
from starlette.requests import HTTPConnection

from .chat.engine import ChatEngine
from .chat.hub import ChatHub
from .chat.store import ChatStore, UserStore
from .config import get_settings
from .db import get_db


def get_chat_hub(conn: HTTPConnection) -> ChatHub:
    """El hub se crea en el lifespan de la aplicación."""
    return conn.app.state.chat_hub


async def get_engine(db: AsyncIOMotorDatabase = Depends(get_db)) -> ChatEngine:
    settings = get_settings()
    return ChatEngine(
        ChatStore(db),
        UserStore(db),
        support_role=settings.support_role,
        max_message_length=settings.max_message_length,
    )
