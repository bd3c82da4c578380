# realtychat/chat/store.py
# Persistencia de hilos, mensajes y usuarios sobre MongoDB (motor).
# Todas las mutaciones de un hilo se hacen con operadores atómicos ($inc, $set)
# sobre un único documento; nunca leer-modificar-guardar.
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple
import logging

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from ..errors import StorageError
from ..utils import parse_object_id

logger = logging.getLogger(__name__)

Doc = Dict[str, Any]

# Hilos sin mensajes (last_message_time nulo) quedan al final
RECENT_FIRST = [("last_message_time", -1), ("created_at", -1)]


@contextmanager
def storage_errors(action: str):
    """Traduce cualquier fallo del driver a StorageError."""
    try:
        yield
    except PyMongoError as e:
        logger.error(f"Error de MongoDB al {action}: {e}", exc_info=True)
        raise StorageError(f"No se pudo {action}") from e


def participants_key(participants: Iterable[str]) -> str:
    """Clave canónica (sin orden) de un conjunto de participantes."""
    return ":".join(sorted(set(participants)))


class ChatStore:
    """Colecciones `threads` y `messages`."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.threads = db.threads
        self.messages = db.messages

    # ---------- hilos ----------

    async def find_or_create_thread(self, user_a: str, user_b: str, at: datetime) -> Tuple[Doc, bool]:
        """
        Devuelve (hilo, creado). El upsert sobre `participants_key` (índice único)
        garantiza un solo hilo por pareja aunque ambos lados lo abran a la vez.
        """
        key = participants_key([user_a, user_b])
        created = False
        with storage_errors("abrir el chat"):
            try:
                res = await self.threads.update_one(
                    {"participants_key": key},
                    {"$setOnInsert": {
                        "participants": [user_a, user_b],
                        "participants_key": key,
                        "last_message": None,
                        "last_message_time": None,
                        "unread_count": {user_a: 0, user_b: 0},
                        "assigned_to": None,
                        "created_at": at,
                        "updated_at": at,
                    }},
                    upsert=True,
                )
                created = res.upserted_id is not None
            except DuplicateKeyError:
                # Otra conexión insertó el mismo hilo entre medias
                logger.debug(f"Upsert concurrente del hilo {key}")
            doc = await self.threads.find_one({"participants_key": key})
        if doc is None:
            raise StorageError("No se pudo abrir el chat")
        return doc, created

    async def get_thread(self, thread_id: str) -> Optional[Doc]:
        oid = parse_object_id(thread_id)
        if oid is None:
            return None
        with storage_errors("leer el chat"):
            return await self.threads.find_one({"_id": oid})

    async def threads_for(self, user_id: str) -> List[Doc]:
        with storage_errors("listar los chats"):
            cursor = self.threads.find({"participants": user_id}).sort(RECENT_FIRST)
            return [doc async for doc in cursor]

    async def all_threads(self) -> List[Doc]:
        with storage_errors("listar los chats"):
            cursor = self.threads.find({}).sort(RECENT_FIRST)
            return [doc async for doc in cursor]

    async def assign_thread(self, thread_id: ObjectId, handler_id: Optional[str], at: datetime) -> Optional[Doc]:
        with storage_errors("asignar el chat"):
            return await self.threads.find_one_and_update(
                {"_id": thread_id},
                {"$set": {"assigned_to": handler_id, "updated_at": at}},
                return_document=ReturnDocument.AFTER,
            )

    async def record_send(
        self,
        thread_id: ObjectId,
        sender_id: str,
        recipients: Iterable[str],
        summary: str,
        at: datetime,
    ) -> Optional[Doc]:
        """Actualiza resumen e incrementa los no leídos en una sola operación."""
        update: Doc = {"$set": {"last_message": summary, "last_message_time": at, "updated_at": at}}
        inc = {f"unread_count.{r}": 1 for r in recipients}
        if inc:
            update["$inc"] = inc
        with storage_errors("actualizar el chat"):
            return await self.threads.find_one_and_update(
                {"_id": thread_id, "participants": sender_id},
                update,
                return_document=ReturnDocument.AFTER,
            )

    async def mark_thread_read(self, thread: Doc, reader_id: str, at: datetime) -> Tuple[int, Optional[Doc]]:
        """
        Marca como leídos los mensajes de los demás y descuenta del contador del
        lector exactamente los que se han marcado. Un envío que llegue entre las
        dos escrituras conserva su incremento.
        """
        with storage_errors("marcar mensajes como leídos"):
            res = await self.messages.update_many(
                {"thread_id": str(thread["_id"]), "sender_id": {"$ne": reader_id}, "read": False},
                {"$set": {"read": True, "read_at": at}},
            )
            updated = await self.threads.find_one_and_update(
                {"_id": thread["_id"], "participants": reader_id},
                {"$inc": {f"unread_count.{reader_id}": -res.modified_count}},
                return_document=ReturnDocument.AFTER,
            )
        return res.modified_count, updated

    async def prune_unread(self, thread_id: ObjectId) -> Optional[Doc]:
        """Elimina contadores de no leídos de quien ya no participa en el hilo."""
        with storage_errors("limpiar contadores"):
            thread = await self.threads.find_one({"_id": thread_id})
            if thread is None:
                return None
            stale = [k for k in (thread.get("unread_count") or {}) if k not in thread["participants"]]
            if not stale:
                return thread
            # Solo si los participantes no han cambiado desde la lectura
            return await self.threads.find_one_and_update(
                {"_id": thread_id, "participants": thread["participants"]},
                {"$unset": {f"unread_count.{k}": "" for k in stale}},
                return_document=ReturnDocument.AFTER,
            )

    # ---------- mensajes ----------

    async def insert_message(self, doc: Doc) -> Doc:
        with storage_errors("guardar el mensaje"):
            await self.messages.insert_one(doc)
        return doc

    async def delete_message_row(self, message_id: ObjectId) -> None:
        """Borrado físico; solo para deshacer un envío que no llegó a completarse."""
        try:
            await self.messages.delete_one({"_id": message_id})
        except PyMongoError as e:
            logger.error(f"No se pudo deshacer el mensaje {message_id}: {e}", exc_info=True)

    async def get_message(self, message_id: str) -> Optional[Doc]:
        oid = parse_object_id(message_id)
        if oid is None:
            return None
        with storage_errors("leer el mensaje"):
            return await self.messages.find_one({"_id": oid})

    async def list_messages(self, thread_id: str) -> List[Doc]:
        # created_at define el orden; _id (creciente) desempata por orden de inserción
        with storage_errors("listar los mensajes"):
            cursor = self.messages.find({"thread_id": thread_id}).sort([("created_at", 1), ("_id", 1)])
            return [doc async for doc in cursor]

    async def edit_message(self, message_id: ObjectId, sender_id: str, body: str, at: datetime) -> Optional[Doc]:
        with storage_errors("editar el mensaje"):
            return await self.messages.find_one_and_update(
                {"_id": message_id, "sender_id": sender_id, "deleted": False},
                {"$set": {"body": body, "edited": True, "edited_at": at, "updated_at": at}},
                return_document=ReturnDocument.AFTER,
            )

    async def soft_delete_message(self, message_id: ObjectId, sender_id: str, at: datetime) -> Optional[Doc]:
        with storage_errors("eliminar el mensaje"):
            return await self.messages.find_one_and_update(
                {"_id": message_id, "sender_id": sender_id, "deleted": False},
                {"$set": {
                    "deleted": True,
                    "deleted_at": at,
                    "body": "",
                    "attachment_url": None,
                    "attachment_name": None,
                    "updated_at": at,
                }},
                return_document=ReturnDocument.AFTER,
            )


class UserStore:
    """Acceso de solo lectura a la colección `users`."""

    PUBLIC_FIELDS = {"password_hash": 0}

    def __init__(self, db: AsyncIOMotorDatabase):
        self.users = db.users

    async def get(self, user_id: str) -> Optional[Doc]:
        oid = parse_object_id(user_id)
        if oid is None:
            return None
        with storage_errors("leer el usuario"):
            return await self.users.find_one({"_id": oid}, self.PUBLIC_FIELDS)

    async def exists(self, user_id: str) -> bool:
        return await self.get(user_id) is not None

    async def get_many(self, user_ids: Iterable[str]) -> Dict[str, Doc]:
        oids = [oid for oid in (parse_object_id(u) for u in user_ids) if oid is not None]
        if not oids:
            return {}
        with storage_errors("leer usuarios"):
            docs = [doc async for doc in self.users.find({"_id": {"$in": oids}}, self.PUBLIC_FIELDS)]
        return {str(d["_id"]): d for d in docs}

    async def find_support_user(self, role: str) -> Optional[Doc]:
        with storage_errors("buscar el usuario de soporte"):
            return await self.users.find_one({"role": role}, self.PUBLIC_FIELDS, sort=[("_id", 1)])

