# realtychat/chat/engine.py
"""
Ciclo de vida de los mensajes: abrir hilo, enviar, editar, borrar y leer.

El motor no sabe nada de conexiones: valida permisos, persiste a través de
ChatStore y devuelve los documentos resultantes. La difusión de eventos la
hace ChatHub con lo que devuelve cada operación.
"""
from typing import Any, Dict, List, Optional, Tuple
import logging

from bson import ObjectId

from ..errors import Forbidden, InvalidState, NotFound, StorageError
from ..utils import utcnow
from .store import ChatStore, UserStore

logger = logging.getLogger(__name__)

Doc = Dict[str, Any]

MESSAGE_KINDS = ("text", "image", "file", "voice")

# Texto del resumen del hilo cuando el mensaje no es de texto
LAST_MESSAGE_LABELS = {
    "image": "📷 Image",
    "file": "📎 File",
    "voice": "🎤 Voice message",
}

ADMIN_ROLE = "admin"


def last_message_label(kind: str, body: str) -> str:
    if kind == "text":
        return body
    return LAST_MESSAGE_LABELS[kind]


class ChatEngine:
    def __init__(
        self,
        store: ChatStore,
        users: UserStore,
        support_role: str = ADMIN_ROLE,
        max_message_length: int = 5000,
    ):
        self.store = store
        self.users = users
        self.support_role = support_role
        self.max_message_length = max_message_length

    # ---------- helpers ----------

    async def get_thread(self, thread_id: str, actor: str) -> Doc:
        """Hilo por id, comprobando que actor participa en él."""
        thread = await self.store.get_thread(thread_id)
        if thread is None:
            raise NotFound("Chat no encontrado")
        if actor not in thread.get("participants", []):
            raise Forbidden("No participas en este chat")
        return thread

    async def _require_admin(self, actor: str) -> Doc:
        user = await self.users.get(actor)
        if not user or user.get("role") != ADMIN_ROLE:
            raise Forbidden("Solo administradores")
        return user

    def _check_body(self, body: str) -> None:
        if len(body) > self.max_message_length:
            raise InvalidState(f"El mensaje supera {self.max_message_length} caracteres")

    # ---------- hilos ----------

    async def start_thread(self, user_a: str, user_b: str) -> Doc:
        """Devuelve el hilo entre user_a y user_b, creándolo si no existe."""
        if user_a == user_b:
            raise InvalidState("No puedes abrir un chat contigo mismo")
        for uid in (user_a, user_b):
            if not await self.users.exists(uid):
                raise NotFound(f"Usuario {uid} no encontrado")
        thread, created = await self.store.find_or_create_thread(user_a, user_b, utcnow())
        if created:
            logger.info(f"Chat {thread['_id']} creado entre {user_a} y {user_b}")
        return thread

    async def start_support_thread(self, user_id: str) -> Doc:
        """Abre (o recupera) el chat del usuario con el equipo de soporte."""
        support = await self.users.find_support_user(self.support_role)
        if not support:
            raise NotFound("No hay usuarios de soporte")
        return await self.start_thread(user_id, str(support["_id"]))

    async def my_threads(self, actor: str) -> List[Doc]:
        return await self.store.threads_for(actor)

    async def all_threads(self, actor: str) -> List[Doc]:
        await self._require_admin(actor)
        return await self.store.all_threads()

    async def assign(self, thread_id: str, actor: str, handler_id: Optional[str]) -> Doc:
        await self._require_admin(actor)
        thread = await self.store.get_thread(thread_id)
        if thread is None:
            raise NotFound("Chat no encontrado")
        if handler_id is not None and not await self.users.exists(handler_id):
            raise NotFound(f"Usuario {handler_id} no encontrado")
        updated = await self.store.assign_thread(thread["_id"], handler_id, utcnow())
        if updated is None:
            raise NotFound("Chat no encontrado")
        return updated

    # ---------- mensajes ----------

    async def send(
        self,
        thread_id: str,
        sender: str,
        body: Optional[str] = "",
        kind: Optional[str] = "text",
        attachment_url: Optional[str] = None,
        attachment_name: Optional[str] = None,
    ) -> Tuple[Doc, Doc]:
        """
        Guarda un mensaje y actualiza el hilo (resumen + no leídos).
        Devuelve (mensaje, hilo actualizado).

        Si la actualización del hilo falla, el mensaje insertado se borra antes
        de propagar el error: nunca queda un mensaje sin contabilizar.
        """
        kind = kind or "text"
        body = body or ""
        if kind not in MESSAGE_KINDS:
            raise InvalidState(f"Tipo de mensaje inválido: {kind}")
        if kind == "text" and not body.strip():
            raise InvalidState("El mensaje está vacío")
        self._check_body(body)

        thread = await self.get_thread(thread_id, sender)
        now = utcnow()
        message = {
            "_id": ObjectId(),
            "thread_id": str(thread["_id"]),
            "sender_id": sender,
            "body": body,
            "kind": kind,
            "attachment_url": attachment_url,
            "attachment_name": attachment_name,
            "read": False,
            "read_at": None,
            "delivered_at": now,
            "edited": False,
            "edited_at": None,
            "deleted": False,
            "deleted_at": None,
            "created_at": now,
            "updated_at": now,
        }
        await self.store.insert_message(message)

        recipients = [p for p in thread["participants"] if p != sender]
        try:
            updated = await self.store.record_send(
                thread["_id"], sender, recipients, last_message_label(kind, body), now
            )
        except StorageError:
            await self.store.delete_message_row(message["_id"])
            raise
        if updated is None:
            # El hilo desapareció o el remitente dejó de participar
            await self.store.delete_message_row(message["_id"])
            raise Forbidden("No participas en este chat")
        return message, updated

    async def edit(self, message_id: str, actor: str, new_body: Optional[str]) -> Doc:
        new_body = new_body or ""
        if not new_body.strip():
            raise InvalidState("El mensaje está vacío")
        self._check_body(new_body)
        message = await self.store.get_message(message_id)
        if message is None:
            raise NotFound("Mensaje no encontrado")
        if message["sender_id"] != actor:
            raise Forbidden("Solo puedes editar tus propios mensajes")
        if message.get("deleted"):
            raise InvalidState("No se puede editar un mensaje eliminado")

        updated = await self.store.edit_message(message["_id"], actor, new_body, utcnow())
        if updated is None:
            # Se eliminó entre la lectura y la escritura
            raise InvalidState("No se puede editar un mensaje eliminado")
        return updated

    async def soft_delete(self, message_id: str, actor: str) -> Doc:
        """
        Marca el mensaje como eliminado y vacía su contenido.
        Borrar un mensaje ya eliminado no hace nada y lo devuelve tal cual.
        """
        message = await self.store.get_message(message_id)
        if message is None:
            raise NotFound("Mensaje no encontrado")
        if message["sender_id"] != actor:
            raise Forbidden("Solo puedes eliminar tus propios mensajes")
        if message.get("deleted"):
            return message

        updated = await self.store.soft_delete_message(message["_id"], actor, utcnow())
        if updated is None:
            # Otra petición lo eliminó antes
            return await self.store.get_message(message_id) or message
        return updated

    async def mark_read(self, thread_id: str, actor: str) -> Tuple[Doc, Any]:
        """Marca como leídos los mensajes recibidos por actor. Devuelve (hilo, read_at)."""
        thread = await self.get_thread(thread_id, actor)
        read_at = utcnow()
        count, updated = await self.store.mark_thread_read(thread, actor, read_at)
        if count:
            logger.debug(f"{count} mensajes leídos por {actor} en {thread_id}")
        return updated or thread, read_at

    async def list_messages(self, thread_id: str, actor: str) -> List[Doc]:
        thread = await self.get_thread(thread_id, actor)
        return await self.store.list_messages(str(thread["_id"]))

    async def open_thread(self, thread_id: str, actor: str) -> Tuple[List[Doc], Doc, Any]:
        """
        Lista los mensajes y después los marca como leídos para actor.
        Los mensajes se devuelven tal como estaban antes de marcarlos.
        """
        messages = await self.list_messages(thread_id, actor)
        thread, read_at = await self.mark_read(thread_id, actor)
        return messages, thread, read_at
