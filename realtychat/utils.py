# realtychat/utils.py
from typing import Any, Dict, Optional
from bson import ObjectId
from datetime import datetime, timezone


def utcnow() -> datetime:
    """UTC sin tzinfo, igual que los datetime que devuelve Mongo."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_id(doc: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Convierte _id -> id (str) y todos los ObjectIds a strings.
    También convierte datetime a ISO format strings.
    Si doc es None, devuelve {}.
    Útil para los eventos JSON del WebSocket.
    """
    if doc is None:
        return {}
    d = dict(doc)

    if "_id" in d:
        d["id"] = str(d.pop("_id"))

    for key, value in d.items():
        if isinstance(value, ObjectId):
            d[key] = str(value)
        elif isinstance(value, datetime):
            d[key] = value.isoformat()
        elif isinstance(value, dict):
            d[key] = to_id(value)
        elif isinstance(value, list):
            d[key] = [
                str(item) if isinstance(item, ObjectId)
                else item.isoformat() if isinstance(item, datetime)
                else to_id(item) if isinstance(item, dict)
                else item
                for item in value
            ]

    return d

# ==================== Utilidades de Base de Datos ====================

def parse_object_id(value: Any) -> Optional[ObjectId]:
    """
    Convierte un string a ObjectId. Devuelve None si no es válido,
    así un id mal formado se trata igual que uno inexistente.
    """
    if isinstance(value, ObjectId):
        return value
    if not isinstance(value, str) or not ObjectId.is_valid(value):
        return None
    return ObjectId(value)
