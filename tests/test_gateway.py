"""
Tests de la pasarela de conexiones con sockets falsos
"""
import pytest

from realtychat.chat.connection import ConnectionState
from realtychat.chat.gateway import ConnectionGateway
from realtychat.chat.hub import ChatHub
from realtychat.config import get_settings
from realtychat.security import TokenVerifier, create_access_token


@pytest.fixture
def gateway(engine):
    return ConnectionGateway(ChatHub(), engine, TokenVerifier(get_settings().jwt_secret))

async def connect(gateway, make_conn, user_id=None):
    conn = make_conn()
    await gateway.open(conn)
    if user_id:
        await gateway.handle(conn, {"type": "authenticate", "data": {"token": create_access_token(user_id)}})
        conn.transport.sent.clear()
    return conn


@pytest.mark.asyncio
async def test_authenticate_failure_keeps_connection_open(gateway, make_conn, make_user):
    conn = await connect(gateway, make_conn)
    await gateway.handle(conn, {"type": "authenticate", "data": {"token": "basura"}})
    event = conn.transport.sent[-1]
    assert event["type"] == "authenticated"
    assert event["data"]["success"] is False
    assert event["data"]["error"]
    assert conn.state == ConnectionState.UNAUTHENTICATED

    # Puede reintentar
    user = await make_user("Ana")
    await gateway.handle(conn, {"type": "authenticate", "data": {"token": create_access_token(user)}})
    assert conn.transport.sent[-1] == {"type": "authenticated", "data": {"user_id": user, "success": True}}
    assert conn.state == ConnectionState.AUTHENTICATED
    assert gateway.hub.registry.is_online(user)

@pytest.mark.asyncio
async def test_token_for_unknown_user_is_rejected(gateway, make_conn):
    conn = await connect(gateway, make_conn)
    await gateway.handle(conn, {"type": "authenticate", "data": {"token": create_access_token("507f1f77bcf86cd799439011")}})
    assert conn.transport.sent[-1]["data"]["success"] is False
    assert len(gateway.hub.registry) == 0

@pytest.mark.asyncio
async def test_unauthenticated_operations_are_ignored(gateway, make_conn):
    conn = await connect(gateway, make_conn)
    await gateway.handle(conn, {"type": "get_online_users", "data": {}})
    await gateway.handle(conn, {"type": "send_message", "data": {"thread_id": "x", "body": "hola"}})
    assert conn.transport.sent == []
    await gateway.handle(conn, {"type": "ping"})
    assert conn.transport.types() == ["pong"]

@pytest.mark.asyncio
async def test_send_message_fanout_order(gateway, make_conn, make_user, engine):
    u1 = await make_user("U1")
    admin = await make_user("Admin", role="admin")
    thread = await engine.start_support_thread(u1)
    tid = str(thread["_id"])

    c_user = await connect(gateway, make_conn, u1)
    c_admin = await connect(gateway, make_conn, admin)
    c_user.transport.sent.clear()
    for c in (c_user, c_admin):
        await gateway.handle(c, {"type": "join_chat", "data": {"thread_id": tid}})

    await gateway.handle(c_user, {"type": "send_message", "data": {"thread_id": tid, "body": "Hello", "kind": "text"}})

    assert c_admin.transport.types() == ["new_message", "chat_updated"]
    new_message, chat_updated = c_admin.transport.sent
    assert new_message["data"]["body"] == "Hello"
    assert new_message["data"]["sender_id"] == u1
    assert chat_updated["data"]["thread_id"] == tid
    assert chat_updated["data"]["last_message"] == "Hello"
    assert chat_updated["data"]["unread_count"] == 1
    assert c_user.transport.types() == ["new_message", "chat_updated"]
    assert c_user.transport.sent[1]["data"]["unread_count"] == 0

@pytest.mark.asyncio
async def test_join_chat_requires_participation(gateway, make_conn, make_user, engine):
    a = await make_user("A")
    b = await make_user("B")
    outsider = await make_user("C")
    tid = str((await engine.start_thread(a, b))["_id"])
    c_out = await connect(gateway, make_conn, outsider)
    await gateway.handle(c_out, {"type": "join_chat", "data": {"thread_id": tid}})
    assert not gateway.hub.rooms.in_thread(c_out, tid)

    # Tampoco recibe nada ni puede escribir
    c_a = await connect(gateway, make_conn, a)
    await gateway.handle(c_a, {"type": "join_chat", "data": {"thread_id": tid}})
    c_out.transport.sent.clear()
    await gateway.handle(c_out, {"type": "send_message", "data": {"thread_id": tid, "body": "spam"}})
    assert c_out.transport.sent == []
    assert await engine.list_messages(tid, a) == []

@pytest.mark.asyncio
async def test_typing_goes_to_other_members(gateway, make_conn, make_user, engine):
    a = await make_user("A")
    b = await make_user("B")
    tid = str((await engine.start_thread(a, b))["_id"])
    c_a = await connect(gateway, make_conn, a)
    c_b = await connect(gateway, make_conn, b)
    c_a.transport.sent.clear()
    for c in (c_a, c_b):
        await gateway.handle(c, {"type": "join_chat", "data": {"thread_id": tid}})

    await gateway.handle(c_a, {"type": "typing", "data": {"thread_id": tid, "is_typing": True}})
    assert c_a.transport.sent == []
    assert c_b.transport.sent == [{"type": "user_typing", "data": {"user_id": a, "thread_id": tid, "is_typing": True}}]

@pytest.mark.asyncio
async def test_edit_delete_and_read_events(gateway, make_conn, make_user, engine):
    a = await make_user("A")
    b = await make_user("B")
    tid = str((await engine.start_thread(a, b))["_id"])
    c_a = await connect(gateway, make_conn, a)
    c_b = await connect(gateway, make_conn, b)
    for c in (c_a, c_b):
        await gateway.handle(c, {"type": "join_chat", "data": {"thread_id": tid}})
    await gateway.handle(c_a, {"type": "send_message", "data": {"thread_id": tid, "body": "hola"}})
    mid = c_b.transport.sent[-2]["data"]["id"]
    c_a.transport.sent.clear()
    c_b.transport.sent.clear()

    # B no puede editar un mensaje de A: falla en silencio
    await gateway.handle(c_b, {"type": "edit_message", "data": {"message_id": mid, "new_body": "hackeado"}})
    assert c_a.transport.sent == [] and c_b.transport.sent == []

    await gateway.handle(c_a, {"type": "edit_message", "data": {"message_id": mid, "new_body": "hola!"}})
    edited = c_b.transport.sent[-1]
    assert edited["type"] == "message_edited"
    assert edited["data"]["body"] == "hola!" and edited["data"]["edited"] is True

    await gateway.handle(c_a, {"type": "delete_message", "data": {"message_id": mid}})
    deleted = c_b.transport.sent[-1]
    assert deleted["type"] == "message_deleted"
    assert deleted["data"]["body"] == "" and deleted["data"]["deleted"] is True

    await gateway.handle(c_b, {"type": "mark_read", "data": {"thread_id": tid}})
    read = c_a.transport.sent[-1]
    assert read["type"] == "messages_read"
    assert read["data"]["user_id"] == b and read["data"]["thread_id"] == tid
    assert (await engine.store.get_thread(tid))["unread_count"][b] == 0

@pytest.mark.asyncio
async def test_second_connection_takes_over_identity_channel(gateway, make_conn, make_user, engine):
    a = await make_user("A")
    b = await make_user("B")
    tid = str((await engine.start_thread(a, b))["_id"])
    first = await connect(gateway, make_conn, a)
    second = await connect(gateway, make_conn, a)
    first.transport.sent.clear()
    c_b = await connect(gateway, make_conn, b)
    first.transport.sent.clear()
    second.transport.sent.clear()

    await gateway.handle(c_b, {"type": "send_message", "data": {"thread_id": tid, "body": "¿hay alguien?"}})
    assert first.transport.sent == []
    assert second.transport.types() == ["chat_updated"]
    assert gateway.hub.registry.connection_for(a) is second

    # Cerrar la conexión vieja no desconecta al usuario
    await gateway.close(first)
    assert gateway.hub.registry.is_online(a)
    await gateway.close(second)
    assert not gateway.hub.registry.is_online(a)
    assert c_b.transport.sent[-1] == {"type": "user_offline", "data": {"user_id": a}}

@pytest.mark.asyncio
async def test_call_signaling_through_gateway(gateway, make_conn, make_user):
    a = await make_user("A")
    b = await make_user("B")
    c_a = await connect(gateway, make_conn, a)
    await gateway.handle(c_a, {"type": "call-offer", "data": {"target_id": b, "payload": {"sdp": "x"}}})
    assert c_a.transport.sent == []

    c_b = await connect(gateway, make_conn, b)
    await gateway.handle(c_a, {"type": "call-offer", "data": {"target_id": b, "payload": {"sdp": "x"}}})
    await gateway.handle(c_b, {"type": "call-answer", "data": {"target_id": a, "payload": {"sdp": "y"}}})
    assert c_b.transport.sent == [{"type": "call-offer", "data": {"from": a, "payload": {"sdp": "x"}}}]
    assert c_a.transport.sent[-1] == {"type": "call-answer", "data": {"from": b, "payload": {"sdp": "y"}}}

@pytest.mark.asyncio
async def test_presence_queries(gateway, make_conn, make_user):
    a = await make_user("A")
    b = await make_user("B")
    c_a = await connect(gateway, make_conn, a)
    await gateway.handle(c_a, {"type": "check_user_online", "data": {"user_id": b}})
    assert c_a.transport.sent[-1] == {"type": "user_offline", "data": {"user_id": b}}
    await connect(gateway, make_conn, b)
    await gateway.handle(c_a, {"type": "check_user_online", "data": {"user_id": b}})
    assert c_a.transport.sent[-1] == {"type": "user_online", "data": {"user_id": b}}
    await gateway.handle(c_a, {"type": "get_online_users"})
    assert c_a.transport.sent[-1] == {"type": "online_users", "data": {"users": sorted([a, b])}}

@pytest.mark.asyncio
async def test_closed_connection_ignores_everything(gateway, make_conn, make_user):
    a = await make_user("A")
    conn = await connect(gateway, make_conn, a)
    await gateway.close(conn)
    assert conn.state == ConnectionState.CLOSED
    await gateway.handle(conn, {"type": "ping"})
    assert conn.transport.sent == []
    # Cerrar dos veces no hace nada
    await gateway.close(conn)

@pytest.mark.asyncio
async def test_reauthenticate_as_other_user_releases_previous_identity(gateway, make_conn, make_user, engine):
    a = await make_user("A")
    b = await make_user("B")
    tid = str((await engine.start_thread(a, b))["_id"])
    conn = await connect(gateway, make_conn, a)
    await gateway.handle(conn, {"type": "join_chat", "data": {"thread_id": tid}})

    await gateway.handle(conn, {"type": "authenticate", "data": {"token": create_access_token(b)}})
    assert conn.identity == b
    assert not gateway.hub.registry.is_online(a)
    assert gateway.hub.registry.connection_for(b) is conn
    # Las salas de la identidad anterior se abandonan
    assert not gateway.hub.rooms.in_thread(conn, tid)
