import asyncio

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from conftest import bearer
from database import get_db
from main import app
from notifications import ConnectionRegistry, get_registry


class FakeSocket:
    def __init__(self, broken=False):
        self.broken = broken
        self.accepted = False
        self.sent = []

    async def accept(self):
        self.accepted = True

    async def send_json(self, message):
        if self.broken:
            raise RuntimeError("socket closed")
        self.sent.append(message)


def test_broadcast_reaches_every_connection():
    registry = ConnectionRegistry()
    a, b = FakeSocket(), FakeSocket()

    async def scenario():
        await registry.connect(a)
        await registry.connect(b)
        return await registry.broadcast("orderCreated", {"id": "1"})

    assert asyncio.run(scenario()) == 2
    assert a.accepted and b.accepted
    assert a.sent == b.sent == [{"event": "orderCreated", "data": {"id": "1"}}]


def test_broken_socket_is_dropped():
    registry = ConnectionRegistry()
    good, bad = FakeSocket(), FakeSocket(broken=True)

    async def scenario():
        await registry.connect(good)
        await registry.connect(bad)
        return await registry.broadcast("orderCreated", {})

    assert asyncio.run(scenario()) == 1
    assert len(registry) == 1


def test_disconnected_socket_gets_nothing():
    registry = ConnectionRegistry()
    sock = FakeSocket()

    async def scenario():
        await registry.connect(sock)
        registry.disconnect(sock)
        return await registry.broadcast("orderCreated", {})

    assert asyncio.run(scenario()) == 0
    assert sock.sent == []


def test_socket_requires_token(database):
    app.dependency_overrides[get_db] = lambda: database
    try:
        with pytest.raises(WebSocketDisconnect):
            with TestClient(app).websocket_connect("/ws") as ws:
                ws.receive_json()
    finally:
        app.dependency_overrides.clear()


def test_socket_accepts_valid_token_and_cleans_up(database, admin):
    app.dependency_overrides[get_db] = lambda: database
    token = bearer(admin)["Authorization"].split(" ", 1)[1]
    try:
        with TestClient(app).websocket_connect(f"/ws?token={token}") as ws:
            ws.send_text("ping")
    finally:
        app.dependency_overrides.clear()
    assert len(app.state.registry) == 0


class TrackingRegistry(ConnectionRegistry):
    def __init__(self):
        super().__init__()
        self.seen = []

    async def connect(self, websocket):
        await super().connect(websocket)
        self.seen.append("connect")

    def disconnect(self, websocket):
        super().disconnect(websocket)
        self.seen.append("disconnect")


def test_socket_uses_injected_registry(database, admin):
    tracking = TrackingRegistry()
    app.dependency_overrides[get_db] = lambda: database
    app.dependency_overrides[get_registry] = lambda: tracking
    token = bearer(admin)["Authorization"].split(" ", 1)[1]
    try:
        with TestClient(app).websocket_connect(f"/ws?token={token}") as ws:
            ws.send_text("ping")
    finally:
        app.dependency_overrides.clear()
    assert tracking.seen == ["connect", "disconnect"]
    assert len(tracking) == 0
    assert len(app.state.registry) == 0
