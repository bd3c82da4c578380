"""
Errores del núcleo de chat.

Cada error lleva el status HTTP con el que lo expone la fachada REST;
por el canal WebSocket se registran en el log y no se notifican al cliente
(salvo la autenticación).
"""
from fastapi import Request
from fastapi.responses import JSONResponse


class ChatError(Exception):
    status_code = 500
    default_detail = "Error en el chat"

    def __init__(self, detail: str | None = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class AuthError(ChatError):
    status_code = 401
    default_detail = "Token inválido"


class NotFound(ChatError):
    status_code = 404
    default_detail = "No encontrado"


class Forbidden(ChatError):
    status_code = 403
    default_detail = "Acceso denegado"


class InvalidState(ChatError):
    status_code = 400
    default_detail = "Operación no permitida en el estado actual"


class StorageError(ChatError):
    status_code = 500
    default_detail = "Error de almacenamiento"


async def chat_error_handler(request: Request, exc: ChatError) -> JSONResponse:
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, AuthError) else None
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail}, headers=headers)
