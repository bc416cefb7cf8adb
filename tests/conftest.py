"""Test fixtures — fake sockets, an in-memory database, a started hub.

Learn: The realtime core is tested without Redis or a browser:
1. FakeWebSocket records every JSON event sent to it, so fan-out can be
   asserted exactly
2. Redis clients are AsyncMocks patched into Publisher/Subscriber
3. End-to-end socket sessions run through Starlette's TestClient against
   the real ASGI app (gate middleware + hub)
4. The profile collaborator runs against in-memory SQLite
"""

import json

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool
from starlette.testclient import TestClient
from starlette.websockets import WebSocketState

from herpkeeper.db.models import Base
from herpkeeper.main import create_app
from herpkeeper.realtime.hub import Connection, SessionHub


class FakeWebSocket:
    """Stands in for a Starlette WebSocket: records sends, can be closed."""

    def __init__(self, on_send=None):
        self.sent: list[dict] = []
        self.client_state = WebSocketState.CONNECTED
        self.close_code = None
        self.on_send = on_send

    async def send_text(self, data: str) -> None:
        if self.client_state != WebSocketState.CONNECTED:
            raise RuntimeError("Cannot send on a closed websocket")
        self.sent.append(json.loads(data))
        if self.on_send is not None:
            self.on_send()

    async def close(self, code: int = 1000) -> None:
        self.client_state = WebSocketState.DISCONNECTED
        self.close_code = code


@pytest.fixture()
def hub():
    """A started hub using the real JWT verifier."""
    h = SessionHub(path_prefix="/ws")
    h.start()
    return h


@pytest.fixture()
def make_connection():
    """Factory: open a fake connection on a hub (unauthenticated)."""

    def _make(h: SessionHub, on_send=None) -> Connection:
        connection = Connection(websocket=FakeWebSocket(on_send=on_send), hub=h)
        h.connections[connection.id] = connection
        return connection

    return _make


@pytest.fixture()
def ws_client(hub):
    """TestClient for the real app with `hub` installed on app.state.

    Learn: Not used as a context manager, so the lifespan (and its Redis
    subscriber) never runs; only the gate middleware and the hub do.
    """
    app = create_app()
    app.state.hub = hub
    return TestClient(app)


@pytest_asyncio.fixture()
async def client():
    """HTTP client against the ASGI app (no lifespan)."""
    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest_asyncio.fixture()
async def db_session():
    """Per-test in-memory SQLite session with the schema created."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session = AsyncSession(bind=engine, expire_on_commit=False)
    try:
        yield session
    finally:
        await session.close()
        await engine.dispose()
