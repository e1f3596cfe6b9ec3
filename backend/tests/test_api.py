from __future__ import annotations

import pytest
import socketio
from fastapi.testclient import TestClient

from app import main
from app.models.room import Participant, Role
from app.services.auth import CredentialStore
from app.services.privilege import PrivilegeAuthority
from app.services.queue import QueueManager
from app.services.router import EventRouter
from app.services.session import SessionStore
from app.services.transport import SocketIOTransport
from conftest import RecordingTransport

SECRET = "api-test-secret-0123456789abcdef01234567"


@pytest.fixture
def room():
    store = SessionStore(media_id="initial-id")
    authority = PrivilegeAuthority(store)
    transport = RecordingTransport()
    router = EventRouter(store, authority, QueueManager(store), transport)
    return store, authority, transport, router


@pytest.fixture
def client(room):
    store, authority, transport, router = room
    creds = CredentialStore(secret=SECRET)
    main.app.dependency_overrides[main.get_credentials] = lambda: creds
    main.app.dependency_overrides[main.get_authority] = lambda: authority
    main.app.dependency_overrides[main.get_router] = lambda: router
    yield TestClient(main.app), creds
    main.app.dependency_overrides.clear()


def test_health(client):
    http, _ = client

    response = http.get("/")

    assert response.status_code == 200
    assert "running" in response.text


def test_register_and_login(client):
    http, creds = client

    response = http.post("/api/register", json={"username": "alice", "password": "pw", "is_admin": True})
    assert response.status_code == 201

    response = http.post("/api/login", json={"username": "alice", "password": "pw"})
    assert response.status_code == 200
    body = response.json()
    assert body["is_admin"] is True
    assert creds.verify_token(body["token"]).identity == "alice"


def test_register_duplicate_is_400(client):
    http, _ = client
    http.post("/api/register", json={"username": "bob", "password": "pw"})

    response = http.post("/api/register", json={"username": "bob", "password": "pw"})

    assert response.status_code == 400
    assert response.json()["detail"] == "Username already exists"


def test_register_failure_is_generic_500(client, monkeypatch):
    http, creds = client

    def broken(*args, **kwargs):
        raise RuntimeError("hash backend exploded")

    monkeypatch.setattr(creds, "register", broken)

    response = http.post("/api/register", json={"username": "bob", "password": "pw"})

    assert response.status_code == 500
    assert response.json()["detail"] == "Server error"


def test_login_bad_password_is_401(client):
    http, _ = client
    http.post("/api/register", json={"username": "bob", "password": "pw"})

    response = http.post("/api/login", json={"username": "bob", "password": "wrong"})

    assert response.status_code == 401


def test_login_refused_when_controller_seat_taken(client, room):
    http, _ = client
    store = room[0]
    store.add_participant(Participant(connection_id="a", display_name="alice", role=Role.CONTROLLER))
    http.post("/api/register", json={"username": "root", "password": "pw", "is_admin": True})

    response = http.post("/api/login", json={"username": "root", "password": "pw"})

    assert response.status_code == 403
    assert response.json()["detail"] == "Maximum admin connections reached"


def test_broadcast_requires_secret(client, room):
    http, _ = client
    transport = room[2]

    response = http.post("/api/broadcast", json={"message": "hi", "secret": "nope"})
    assert response.status_code == 403
    assert transport.sent == []

    response = http.post("/api/broadcast", json={"message": "hi", "secret": main.config.BROADCAST_SECRET})
    assert response.status_code == 200
    [message] = transport.events("server_message", broadcast=True)
    assert message["data"]["message"] == "hi"


def test_media_search(client, monkeypatch):
    http, _ = client

    async def fake_search(query, limit):
        return [{"id": "abcdefghijk", "title": query, "thumbnail": None}]

    monkeypatch.setattr(main.media, "search_media", fake_search)

    response = http.get("/api/media/search", params={"q": "cats"})

    assert response.status_code == 200
    assert response.json()["results"][0]["title"] == "cats"


def test_media_resolve_not_found(client, monkeypatch):
    http, _ = client

    async def fake_resolve(value):
        return None

    monkeypatch.setattr(main.media, "resolve_media", fake_resolve)

    assert http.get("/api/media/resolve", params={"value": "nothing"}).status_code == 404


@pytest.mark.anyio
async def test_socket_handshake_without_token_is_refused():
    with pytest.raises(socketio.exceptions.ConnectionRefusedError) as excinfo:
        await main.connect("sid-1", {}, None)

    assert "Authentication required" in str(excinfo.value.error_args)


@pytest.mark.anyio
async def test_socket_handshake_with_bad_token_is_refused():
    with pytest.raises(socketio.exceptions.ConnectionRefusedError) as excinfo:
        await main.connect("sid-1", {}, {"token": "garbage"})

    assert "Authentication failed" in str(excinfo.value.error_args)


class FakeServer:
    def __init__(self):
        self.rooms = []

    async def enter_room(self, sid, room):
        self.rooms.append((sid, room))


@pytest.fixture
def socket_room(monkeypatch, room):
    store, authority, transport, router = room
    creds = CredentialStore(secret=SECRET, admin_limit=2)
    server = FakeServer()
    monkeypatch.setattr(main, "credentials", creds)
    monkeypatch.setattr(main, "router", router)
    monkeypatch.setattr(main, "transport", SocketIOTransport(server))
    return store, creds, router, server


@pytest.mark.anyio
async def test_socket_handshake_admits_controller_and_joins_room(socket_room):
    store, creds, router, server = socket_room
    token = creds.issue_token(creds.register("alice", "pw", is_admin=True))

    await main.connect("sid-1", {}, {"token": token})

    assert server.rooms == [("sid-1", "room")]
    assert store.controller_id == "sid-1"
    assert store.controller_identity == "alice"
    await router.shutdown()


@pytest.mark.anyio
async def test_socket_handshake_refuses_second_controller(socket_room):
    store, creds, router, server = socket_room
    store.add_participant(Participant(connection_id="a", display_name="alice", role=Role.CONTROLLER))
    token = creds.issue_token(creds.register("root", "pw", is_admin=True))

    with pytest.raises(socketio.exceptions.ConnectionRefusedError) as excinfo:
        await main.connect("sid-2", {}, {"token": token})

    assert "Maximum admin connections reached" in str(excinfo.value.error_args)
    assert store.get_participant("sid-2") is None
    assert server.rooms == []
