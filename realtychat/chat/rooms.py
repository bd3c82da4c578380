# realtychat/chat/rooms.py
"""
Agrupación de conexiones y difusión de eventos.

- Salas de hilo: conexiones que están viendo un chat concreto.
- Canal de identidad: la conexión vigente de cada usuario autenticado.
- Global: todas las conexiones abiertas (solo para presencia).

Las entregas se hacen en paralelo con asyncio.gather y nunca fallan: una
conexión muerta se elimina de todas las agrupaciones.
"""
import asyncio
import logging
from collections import defaultdict
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Set

from .connection import Connection

logger = logging.getLogger(__name__)


class RoomRouter:
    def __init__(self):
        # Se avisa al registro de sesiones de cada conexión muerta
        self.on_dead: Optional[Callable[[Connection], Awaitable[Any]]] = None
        self._connections: Dict[str, Connection] = {}
        self._threads: Dict[str, Set[str]] = defaultdict(set)
        self._identities: Dict[str, Connection] = {}

    # ---------- pertenencia ----------

    def register(self, connection: Connection) -> None:
        self._connections[connection.id] = connection

    def unregister(self, connection: Connection) -> None:
        self._connections.pop(connection.id, None)
        for thread_id in list(self._threads):
            self.leave_thread(connection, thread_id)
        self.leave_identity(connection)

    def join_thread(self, connection: Connection, thread_id: str) -> None:
        self._threads[thread_id].add(connection.id)

    def leave_thread(self, connection: Connection, thread_id: str) -> None:
        members = self._threads.get(thread_id)
        if members is None:
            return
        members.discard(connection.id)
        if not members:
            del self._threads[thread_id]

    def in_thread(self, connection: Connection, thread_id: str) -> bool:
        return connection.id in self._threads.get(thread_id, ())

    def thread_members(self, thread_id: str) -> List[Connection]:
        ids = self._threads.get(thread_id, ())
        return [self._connections[cid] for cid in list(ids) if cid in self._connections]

    def join_identity(self, connection: Connection, identity: str) -> Optional[Connection]:
        """El canal de una identidad apunta siempre a su última conexión."""
        previous = self._identities.get(identity)
        self._identities[identity] = connection
        return previous if previous is not connection else None

    def leave_identity(self, connection: Connection) -> None:
        if connection.identity and self._identities.get(connection.identity) is connection:
            del self._identities[connection.identity]

    # ---------- difusión ----------

    async def broadcast_to_thread(
        self,
        thread_id: str,
        event: str,
        data: Dict[str, Any],
        exclude: Optional[Connection] = None,
    ) -> int:
        targets = [c for c in self.thread_members(thread_id) if c is not exclude]
        return await self._deliver(targets, event, data)

    async def notify_identity(self, identity: str, event: str, data: Dict[str, Any]) -> bool:
        connection = self._identities.get(identity)
        if connection is None:
            return False
        return await self._deliver([connection], event, data) == 1

    async def broadcast_global(self, event: str, data: Dict[str, Any]) -> int:
        return await self._deliver(list(self._connections.values()), event, data)

    async def _deliver(self, targets: Iterable[Connection], event: str, data: Dict[str, Any]) -> int:
        targets = list(targets)
        if not targets:
            return 0
        results = await asyncio.gather(*(c.send(event, data) for c in targets))
        dead = [c for c, ok in zip(targets, results) if not ok]
        for connection in dead:
            logger.warning(f"Entrega de '{event}' fallida a {connection.id}, se elimina la conexión")
            self.unregister(connection)
        if self.on_dead is not None:
            for connection in dead:
                await self.on_dead(connection)
        return sum(1 for ok in results if ok)

    async def close_all(self) -> None:
        for connection in list(self._connections.values()):
            try:
                await connection.transport.close()
            except Exception as e:
                logger.debug(f"Error cerrando {connection.id}: {e}")
            self.unregister(connection)
