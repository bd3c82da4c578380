# realtychat/chat/signaling.py
# Reenvío de señalización WebRTC entre dos usuarios conectados.
# Sin estado ni persistencia: si el destino no está conectado se descarta.
import logging
from typing import Any, Optional

from .registry import SessionRegistry

logger = logging.getLogger(__name__)

CALL_EVENTS = ("call-offer", "call-answer", "call-reject", "call-end", "ice-candidate")


class CallRelay:
    def __init__(self, registry: SessionRegistry):
        self.registry = registry

    async def relay(self, kind: str, sender: str, target: Optional[str], payload: Any = None) -> bool:
        if kind not in CALL_EVENTS or not target:
            return False
        connection = self.registry.connection_for(target)
        if connection is None:
            logger.debug(f"{kind} de {sender} a {target} descartado: no conectado")
            return False
        return await connection.send(kind, {"from": sender, "payload": payload})
