# realtychat/routers/websocket.py
from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect
from typing import Optional
import json
import logging

from ..chat.connection import Connection
from ..chat.engine import ChatEngine
from ..chat.gateway import ConnectionGateway
from ..chat.hub import ChatHub
from ..dependencies import get_chat_hub, get_engine
from ..security import TokenVerifier, get_token_verifier

logger = logging.getLogger(__name__)

router = APIRouter()


async def serve_connection(websocket: WebSocket, gateway: ConnectionGateway, token: Optional[str]) -> None:
    await websocket.accept()
    connection = Connection(websocket)
    await gateway.open(connection)
    try:
        if token:
            await gateway.handle(connection, {"type": "authenticate", "data": {"token": token}})
        while True:
            raw = await websocket.receive_text()
            try:
                message = json.loads(raw)
            except ValueError:
                logger.debug(f"Mensaje no JSON ignorado en {connection.id}")
                continue
            await gateway.handle(connection, message)
    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.error(f"Error en WebSocket: {e}", exc_info=True)
    finally:
        await gateway.close(connection)


@router.websocket("/ws")
async def websocket_endpoint(
    websocket: WebSocket,
    token: Optional[str] = Query(None),
    hub: ChatHub = Depends(get_chat_hub),
    engine: ChatEngine = Depends(get_engine),
    verifier: TokenVerifier = Depends(get_token_verifier),
):
    """
    Endpoint WebSocket para el chat en tiempo real.
    El cliente se autentica con {"type": "authenticate", "data": {"token": ...}}
    o pasando ?token= al conectar.
    """
    await serve_connection(websocket, ConnectionGateway(hub, engine, verifier), token)


@router.websocket("/ws/{token}")
async def websocket_token_endpoint(
    websocket: WebSocket,
    token: str,
    hub: ChatHub = Depends(get_chat_hub),
    engine: ChatEngine = Depends(get_engine),
    verifier: TokenVerifier = Depends(get_token_verifier),
):
    """Variante con el token en la URL."""
    await serve_connection(websocket, ConnectionGateway(hub, engine, verifier), token)
