# realtychat/chat/connection.py
from enum import Enum
from typing import Any, Dict, Optional
from uuid import uuid4
import logging

logger = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"
    CLOSED = "closed"


class Connection:
    """
    Una conexión de cliente (normalmente un WebSocket de FastAPI).
    Solo necesita un transporte con `send_json`.
    """

    def __init__(self, transport: Any):
        self.id = uuid4().hex
        self.transport = transport
        self.identity: Optional[str] = None
        self.state = ConnectionState.UNAUTHENTICATED
        self.alive = True

    @property
    def authenticated(self) -> bool:
        return self.state == ConnectionState.AUTHENTICATED

    async def send(self, event: str, data: Optional[Dict[str, Any]] = None) -> bool:
        """Envía un evento. Nunca lanza: si el socket murió devuelve False."""
        if not self.alive or self.state == ConnectionState.CLOSED:
            return False
        try:
            await self.transport.send_json({"type": event, "data": data if data is not None else {}})
            return True
        except Exception as e:
            logger.debug(f"Conexión {self.id} ({self.identity}) no disponible: {e}")
            self.alive = False
            return False

    def __repr__(self) -> str:
        return f"<Connection {self.id} identity={self.identity} state={self.state.value}>"
