# realtychat/routers/chat.py
# API REST del chat. Usa el mismo motor y el mismo hub que el WebSocket,
# así que cualquier cambio hecho por aquí también se difunde en tiempo real.
from fastapi import APIRouter, Depends, status
from typing import Any, Dict, List
import logging

from ..chat.engine import ChatEngine
from ..chat.hub import ChatHub, public_thread
from ..dependencies import get_chat_hub, get_engine
from ..schemas.chat import (
    AssignChat, MessageCreate, MessageEdit, MessageOut, ReadOut, StartChat, ThreadOut,
)
from ..security import get_current_user
from ..utils import to_id

logger = logging.getLogger(__name__)

router = APIRouter()


async def _with_participants(engine: ChatEngine, threads: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Añade nombre/email/rol de los participantes a cada hilo."""
    ids = {p for t in threads for p in t.get("participants", [])}
    users = await engine.users.get_many(ids)
    items = []
    for thread in threads:
        out = public_thread(thread)
        out["participants_info"] = [to_id(users[p]) for p in out["participants"] if p in users]
        items.append(out)
    return items


@router.post("/start", response_model=ThreadOut)
async def start_chat(
    payload: StartChat | None = None,
    engine: ChatEngine = Depends(get_engine),
    current=Depends(get_current_user),
):
    """Abre (o recupera) un chat con otro usuario o, por defecto, con soporte"""
    if payload and payload.user_id:
        thread = await engine.start_thread(current["id"], payload.user_id)
    else:
        thread = await engine.start_support_thread(current["id"])
    return (await _with_participants(engine, [thread]))[0]


@router.get("/my-chats", response_model=List[ThreadOut])
async def my_chats(
    engine: ChatEngine = Depends(get_engine),
    current=Depends(get_current_user),
):
    threads = await engine.my_threads(current["id"])
    return await _with_participants(engine, threads)


@router.get("/admin/all-chats", response_model=List[ThreadOut])
async def all_chats(
    engine: ChatEngine = Depends(get_engine),
    current=Depends(get_current_user),
):
    """Todos los chats (solo administradores)"""
    threads = await engine.all_threads(current["id"])
    return await _with_participants(engine, threads)


@router.get("/online-users", response_model=List[str])
async def online_users(
    hub: ChatHub = Depends(get_chat_hub),
    current=Depends(get_current_user),
):
    return sorted(hub.registry.all_online())


@router.get("/{thread_id}/messages", response_model=List[MessageOut])
async def get_messages(
    thread_id: str,
    engine: ChatEngine = Depends(get_engine),
    hub: ChatHub = Depends(get_chat_hub),
    current=Depends(get_current_user),
):
    """Mensajes del chat en orden cronológico; los recibidos quedan marcados como leídos"""
    messages, thread, read_at = await engine.open_thread(thread_id, current["id"])
    await hub.messages_read(thread, current["id"], read_at)
    return [to_id(m) for m in messages]


@router.post("/{thread_id}/message", response_model=MessageOut, status_code=status.HTTP_201_CREATED)
async def send_message(
    thread_id: str,
    payload: MessageCreate,
    engine: ChatEngine = Depends(get_engine),
    hub: ChatHub = Depends(get_chat_hub),
    current=Depends(get_current_user),
):
    message, thread = await engine.send(
        thread_id,
        current["id"],
        body=payload.body,
        kind=payload.kind,
        attachment_url=payload.attachment_url,
        attachment_name=payload.attachment_name,
    )
    await hub.message_sent(message, thread)
    return to_id(message)


@router.post("/{thread_id}/read", response_model=ReadOut)
async def mark_read(
    thread_id: str,
    engine: ChatEngine = Depends(get_engine),
    hub: ChatHub = Depends(get_chat_hub),
    current=Depends(get_current_user),
):
    thread, read_at = await engine.mark_read(thread_id, current["id"])
    await hub.messages_read(thread, current["id"], read_at)
    return {
        "thread_id": str(thread["_id"]),
        "read_at": read_at,
        "unread_count": public_thread(thread)["unread_count"].get(current["id"], 0),
    }


@router.patch("/message/{message_id}", response_model=MessageOut)
async def edit_message(
    message_id: str,
    payload: MessageEdit,
    engine: ChatEngine = Depends(get_engine),
    hub: ChatHub = Depends(get_chat_hub),
    current=Depends(get_current_user),
):
    """Editar un mensaje (solo el autor, y nunca uno eliminado)"""
    message = await engine.edit(message_id, current["id"], payload.body)
    await hub.message_edited(message)
    return to_id(message)


@router.delete("/message/{message_id}", response_model=MessageOut)
async def delete_message(
    message_id: str,
    engine: ChatEngine = Depends(get_engine),
    hub: ChatHub = Depends(get_chat_hub),
    current=Depends(get_current_user),
):
    """Eliminar un mensaje (solo el autor). Se conserva vacío y marcado como eliminado"""
    message = await engine.soft_delete(message_id, current["id"])
    await hub.message_deleted(message)
    return to_id(message)


@router.patch("/{thread_id}/assign", response_model=ThreadOut)
async def assign_chat(
    thread_id: str,
    payload: AssignChat,
    engine: ChatEngine = Depends(get_engine),
    current=Depends(get_current_user),
):
    """Asignar el chat a un agente/administrador (solo administradores)"""
    thread = await engine.assign(thread_id, current["id"], payload.assigned_to)
    return (await _with_participants(engine, [thread]))[0]
