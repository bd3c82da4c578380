"""
Configuración de pytest para tests
"""
import os

# Los tests usan los endpoints de desarrollo (/dev/create-admin)
os.environ["APP_ENV"] = "dev"

import pytest
from fastapi.testclient import TestClient
from mongomock_motor import AsyncMongoMockClient

from realtychat.chat.connection import Connection, ConnectionState
from realtychat.chat.engine import ChatEngine
from realtychat.chat.store import ChatStore, UserStore
from realtychat.db import ensure_indexes, get_db
from realtychat.security import create_access_token
from realtychat.utils import utcnow


@pytest.fixture
def mongo_db():
    """Base de datos Mongo en memoria (mongomock-motor)"""
    return AsyncMongoMockClient()["realtychat_test"]

@pytest.fixture
async def db(mongo_db):
    await ensure_indexes(mongo_db)
    return mongo_db

@pytest.fixture
def engine(db):
    return ChatEngine(ChatStore(db), UserStore(db))

@pytest.fixture
def make_user(db):
    """Inserta un usuario directamente y devuelve su id"""
    async def _make(name: str, role: str = "user") -> str:
        res = await db.users.insert_one({
            "name": name,
            "email": f"{name.lower()}@example.com",
            "password_hash": "x",
            "role": role,
            "created_at": utcnow(),
        })
        return str(res.inserted_id)
    return _make

@pytest.fixture
def client(mongo_db):
    """Cliente de test de FastAPI con la BD en memoria y sin rate limiting"""
    from realtychat.main import app

    async def override_get_db():
        await ensure_indexes(mongo_db)
        return mongo_db

    app.dependency_overrides[get_db] = override_get_db
    app.state.limiter = None
    # El context manager ejecuta el lifespan (crea el ChatHub)
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()

@pytest.fixture
def register(client):
    """Crea un usuario por la API y devuelve (id, token)"""
    def _register(name: str, admin: bool = False):
        path = "/dev/create-admin" if admin else "/auth/signup"
        r = client.post(path, json={
            "name": name,
            "email": f"{name.lower()}@example.com",
            "password": "password123",
        })
        assert r.status_code == 201, r.text
        user_id = r.json()["id"]
        return user_id, create_access_token(user_id)
    return _register


class FakeSocket:
    """Transporte mínimo: guarda lo enviado o falla si está cerrado"""
    def __init__(self, broken: bool = False):
        self.sent = []
        self.broken = broken
        self.closed = False

    async def send_json(self, data):
        if self.broken:
            raise RuntimeError("socket cerrado")
        self.sent.append(data)

    async def close(self):
        self.closed = True

    def types(self):
        return [m["type"] for m in self.sent]

@pytest.fixture
def make_conn():
    """Conexión sobre un FakeSocket; con identity queda ya autenticada"""
    def _make(identity=None, broken=False):
        conn = Connection(FakeSocket(broken))
        if identity:
            conn.identity = identity
            conn.state = ConnectionState.AUTHENTICATED
        return conn
    return _make
