# realtychat/chat/registry.py
import asyncio
import logging
from typing import TYPE_CHECKING, Dict, Optional, Set

from .connection import Connection

if TYPE_CHECKING:
    from .rooms import RoomRouter

logger = logging.getLogger(__name__)


class SessionRegistry:
    """
    Quién está conectado: identidad -> conexión activa.

    Una sola sesión por identidad: la última autenticación gana. Cada alta o
    baja real se anuncia a todas las conexiones (user_online / user_offline).
    El anuncio se emite con el lock tomado, así los eventos llegan en el mismo
    orden en que cambió el registro.
    """

    def __init__(self, router: "RoomRouter"):
        self._router = router
        self._sessions: Dict[str, Connection] = {}
        self._lock = asyncio.Lock()

    async def bind(self, identity: str, connection: Connection) -> Optional[Connection]:
        """Registra la conexión y devuelve la que queda desplazada, si la había."""
        async with self._lock:
            previous = self._sessions.get(identity)
            self._sessions[identity] = connection
            await self._router.broadcast_global("user_online", {"user_id": identity})
        if previous is not None and previous is not connection:
            logger.info(f"Usuario {identity} reconectado, se sustituye {previous.id} por {connection.id}")
            return previous
        return None

    async def unbind(self, identity: str, connection: Connection) -> bool:
        """
        Da de baja la identidad solo si sigue apuntando a `connection`, para que
        el cierre de una conexión vieja no borre una reconexión más reciente.
        """
        async with self._lock:
            if self._sessions.get(identity) is not connection:
                return False
            del self._sessions[identity]
            await self._router.broadcast_global("user_offline", {"user_id": identity})
        return True

    async def release(self, connection: Connection) -> bool:
        """
        Baja de una conexión que ha dejado de aceptar envíos. La llama el router
        durante una difusión, que puede estar dentro de bind/unbind, así que no
        toma el lock: quitar la entrada no cede el control al event loop.
        """
        identity = connection.identity
        if not identity or self._sessions.get(identity) is not connection:
            return False
        del self._sessions[identity]
        logger.info(f"Usuario {identity} sin conexión viva, se da de baja")
        await self._router.broadcast_global("user_offline", {"user_id": identity})
        return True

    def connection_for(self, identity: str) -> Optional[Connection]:
        return self._sessions.get(identity)

    def is_online(self, identity: str) -> bool:
        return identity in self._sessions

    def all_online(self) -> Set[str]:
        return set(self._sessions)

    def __len__(self) -> int:
        return len(self._sessions)
