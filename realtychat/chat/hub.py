# realtychat/chat/hub.py
"""
Estado en memoria del chat en tiempo real.

ChatHub se crea una vez al arrancar la aplicación (lifespan) y se guarda en
app.state; agrupa el registro de sesiones, el router de salas y el relay de
llamadas, y publica los eventos que resultan de cada operación del motor.
Tanto el WebSocket como la API REST publican a través de él.
"""
import logging
from typing import Any, Dict

from ..utils import to_id
from .registry import SessionRegistry
from .rooms import RoomRouter
from .signaling import CallRelay

logger = logging.getLogger(__name__)

Doc = Dict[str, Any]


def public_thread(thread: Doc) -> Doc:
    """Hilo serializable; solo expone contadores de los participantes actuales."""
    out = to_id(thread)
    out.pop("participants_key", None)
    participants = out.get("participants", [])
    counts = out.get("unread_count") or {}
    out["unread_count"] = {p: max(0, int(counts.get(p, 0))) for p in participants}
    return out


class ChatHub:
    def __init__(self):
        self.rooms = RoomRouter()
        self.registry = SessionRegistry(self.rooms)
        self.rooms.on_dead = self.registry.release
        self.relay = CallRelay(self.registry)

    # Orden fijo por operación: persistir -> sala del hilo -> canales de los participantes

    async def message_sent(self, message: Doc, thread: Doc) -> None:
        thread_id = str(thread["_id"])
        await self.rooms.broadcast_to_thread(thread_id, "new_message", to_id(message))
        summary = public_thread(thread)
        for participant in thread["participants"]:
            await self.rooms.notify_identity(participant, "chat_updated", {
                "thread_id": thread_id,
                "last_message": summary["last_message"],
                "last_message_time": summary["last_message_time"],
                "unread_count": summary["unread_count"].get(participant, 0),
            })

    async def message_edited(self, message: Doc) -> None:
        await self.rooms.broadcast_to_thread(message["thread_id"], "message_edited", to_id(message))

    async def message_deleted(self, message: Doc) -> None:
        await self.rooms.broadcast_to_thread(message["thread_id"], "message_deleted", to_id(message))

    async def messages_read(self, thread: Doc, reader: str, read_at) -> None:
        thread_id = str(thread["_id"])
        await self.rooms.broadcast_to_thread(thread_id, "messages_read", {
            "user_id": reader,
            "thread_id": thread_id,
            "read_at": read_at.isoformat(),
        })

    async def shutdown(self) -> None:
        logger.info(f"Cerrando chat hub ({len(self.registry)} usuarios conectados)")
        await self.rooms.close_all()
