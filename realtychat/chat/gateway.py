# realtychat/chat/gateway.py
"""
Puerta de entrada de las conexiones WebSocket.

Cada conexión pasa por UNAUTHENTICATED -> AUTHENTICATED -> CLOSED. Los mensajes
entrantes tienen la forma {"type": <operación>, "data": {...}}. Solo
`authenticate` responde siempre (éxito o fallo); el resto de operaciones
fallidas se registran en el log y no se notifican al cliente.
"""
import logging
from functools import partial
from typing import Any, Awaitable, Callable, Dict

from ..errors import AuthError, ChatError
from ..security import TokenVerifier
from .connection import Connection, ConnectionState
from .engine import ChatEngine
from .hub import ChatHub
from .signaling import CALL_EVENTS

logger = logging.getLogger(__name__)

Handler = Callable[[Connection, Dict[str, Any]], Awaitable[None]]

# Operaciones permitidas antes de autenticarse
PUBLIC_OPS = {"authenticate", "ping"}


class ConnectionGateway:
    def __init__(self, hub: ChatHub, engine: ChatEngine, verifier: TokenVerifier):
        self.hub = hub
        self.engine = engine
        self.verifier = verifier
        self._handlers: Dict[str, Handler] = {
            "authenticate": self.on_authenticate,
            "ping": self.on_ping,
            "join_chat": self.on_join_chat,
            "leave_chat": self.on_leave_chat,
            "typing": self.on_typing,
            "send_message": self.on_send_message,
            "edit_message": self.on_edit_message,
            "delete_message": self.on_delete_message,
            "mark_read": self.on_mark_read,
            "check_user_online": self.on_check_user_online,
            "get_online_users": self.on_get_online_users,
        }
        for kind in CALL_EVENTS:
            self._handlers[kind] = partial(self.on_call_signal, kind)

    async def open(self, connection: Connection) -> None:
        self.hub.rooms.register(connection)
        logger.info(f"Conexión abierta: {connection.id}")

    async def close(self, connection: Connection) -> None:
        if connection.state == ConnectionState.CLOSED:
            return
        connection.state = ConnectionState.CLOSED
        self.hub.rooms.unregister(connection)
        if connection.identity and await self.hub.registry.unbind(connection.identity, connection):
            logger.info(f"Usuario {connection.identity} desconectado")

    async def handle(self, connection: Connection, message: Any) -> None:
        """Despacha un mensaje entrante. Nunca lanza."""
        if connection.state == ConnectionState.CLOSED or not isinstance(message, dict):
            return
        op = message.get("type")
        data = message.get("data")
        if not isinstance(data, dict):
            data = {}
        handler = self._handlers.get(op)
        if handler is None:
            logger.debug(f"Operación desconocida '{op}' en {connection.id}")
            return
        if op not in PUBLIC_OPS and not connection.authenticated:
            logger.debug(f"'{op}' ignorada: {connection.id} no autenticada")
            return
        try:
            await handler(connection, data)
        except ChatError as e:
            logger.warning(f"'{op}' de {connection.identity} rechazada: {e.detail}")
        except Exception as e:
            logger.error(f"Error procesando '{op}' de {connection.identity}: {e}", exc_info=True)

    # ---------- sesión ----------

    async def on_authenticate(self, connection: Connection, data: Dict[str, Any]) -> None:
        try:
            identity = self.verifier.verify(data.get("token"))
            if not await self.engine.users.exists(identity):
                raise AuthError("Usuario no encontrado")
        except ChatError as e:
            # AuthError o StorageError: la conexión sigue sin autenticar
            logger.warning(f"Autenticación fallida en {connection.id}: {e.detail}")
            await connection.send("authenticated", {"success": False, "error": e.detail})
            return

        if connection.identity and connection.identity != identity:
            # Reautenticación con otro usuario: se libera la identidad anterior y sus salas
            self.hub.rooms.unregister(connection)
            self.hub.rooms.register(connection)
            await self.hub.registry.unbind(connection.identity, connection)

        connection.identity = identity
        connection.state = ConnectionState.AUTHENTICATED
        self.hub.rooms.join_identity(connection, identity)
        await self.hub.registry.bind(identity, connection)
        await connection.send("authenticated", {"user_id": identity, "success": True})
        logger.info(f"Usuario {identity} autenticado en {connection.id}")

    async def on_ping(self, connection: Connection, data: Dict[str, Any]) -> None:
        await connection.send("pong", {})

    # ---------- salas ----------

    async def on_join_chat(self, connection: Connection, data: Dict[str, Any]) -> None:
        thread_id = data.get("thread_id")
        if not thread_id:
            return
        # Solo los participantes pueden escuchar la sala
        thread = await self.engine.get_thread(thread_id, connection.identity)
        self.hub.rooms.join_thread(connection, str(thread["_id"]))

    async def on_leave_chat(self, connection: Connection, data: Dict[str, Any]) -> None:
        thread_id = data.get("thread_id")
        if thread_id:
            self.hub.rooms.leave_thread(connection, str(thread_id))

    async def on_typing(self, connection: Connection, data: Dict[str, Any]) -> None:
        thread_id = data.get("thread_id")
        if not thread_id or not self.hub.rooms.in_thread(connection, str(thread_id)):
            return
        await self.hub.rooms.broadcast_to_thread(str(thread_id), "user_typing", {
            "user_id": connection.identity,
            "thread_id": thread_id,
            "is_typing": bool(data.get("is_typing", False)),
        }, exclude=connection)

    # ---------- mensajes ----------

    async def on_send_message(self, connection: Connection, data: Dict[str, Any]) -> None:
        thread_id = data.get("thread_id")
        if not thread_id:
            logger.debug("send_message: falta thread_id")
            return
        message, thread = await self.engine.send(
            thread_id,
            connection.identity,
            body=data.get("body"),
            kind=data.get("kind"),
            attachment_url=data.get("attachment_url"),
            attachment_name=data.get("attachment_name"),
        )
        await self.hub.message_sent(message, thread)

    async def on_edit_message(self, connection: Connection, data: Dict[str, Any]) -> None:
        message_id = data.get("message_id")
        if not message_id or not data.get("new_body"):
            logger.debug("edit_message: faltan datos")
            return
        message = await self.engine.edit(message_id, connection.identity, data["new_body"])
        await self.hub.message_edited(message)

    async def on_delete_message(self, connection: Connection, data: Dict[str, Any]) -> None:
        message_id = data.get("message_id")
        if not message_id:
            logger.debug("delete_message: falta message_id")
            return
        message = await self.engine.soft_delete(message_id, connection.identity)
        await self.hub.message_deleted(message)

    async def on_mark_read(self, connection: Connection, data: Dict[str, Any]) -> None:
        thread_id = data.get("thread_id")
        if not thread_id:
            logger.debug("mark_read: falta thread_id")
            return
        thread, read_at = await self.engine.mark_read(thread_id, connection.identity)
        await self.hub.messages_read(thread, connection.identity, read_at)

    # ---------- llamadas y presencia ----------

    async def on_call_signal(self, kind: str, connection: Connection, data: Dict[str, Any]) -> None:
        await self.hub.relay.relay(kind, connection.identity, data.get("target_id"), data.get("payload"))

    async def on_check_user_online(self, connection: Connection, data: Dict[str, Any]) -> None:
        user_id = data.get("user_id")
        if not user_id:
            return
        event = "user_online" if self.hub.registry.is_online(user_id) else "user_offline"
        await connection.send(event, {"user_id": user_id})

    async def on_get_online_users(self, connection: Connection, data: Dict[str, Any]) -> None:
        await connection.send("online_users", {"users": sorted(self.hub.registry.all_online())})
