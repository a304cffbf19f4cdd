from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketState

from app.core.config import DEFAULT_PARTICIPANT_COLORS, LocalConfig, SessionBackend
from app.core.event_bus import EventBus
from app.domains.collaboration.colors import ColorAssigner
from app.domains.collaboration.entities import CallerIdentity
from app.domains.collaboration.repository import InMemorySessionRepository
from app.domains.collaboration.service import SessionLifecycleManager
from app.main import create_app
from app.shared.utils.security import create_access_token


class FakeWebSocket:
    """Just enough of a Starlette WebSocket for the connection manager"""

    def __init__(self):
        self.client_state = WebSocketState.CONNECTING
        self.sent = []
        self.close_code = None

    async def accept(self):
        self.client_state = WebSocketState.CONNECTED

    async def send_json(self, data):
        self.sent.append(data)

    async def close(self, code: int = 1000):
        self.close_code = code
        self.client_state = WebSocketState.DISCONNECTED

    def events(self):
        return [frame.get("event") for frame in self.sent]


class RecordingBus(EventBus):
    def __init__(self):
        super().__init__()
        self.published = []

    async def publish(self, event_name, event_data):
        self.published.append((event_name, event_data))
        await super().publish(event_name, event_data)

    def events(self):
        return [delivery.event for _, delivery in self.published]


class FakeClock:
    def __init__(self):
        self.now = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def alice():
    return CallerIdentity(user_id="alice", name="Alice")


@pytest.fixture
def bob():
    return CallerIdentity(user_id="bob", name="Bob")


@pytest.fixture
def carol():
    return CallerIdentity(user_id="carol", name="Carol")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def bus():
    return RecordingBus()


@pytest.fixture
def repository():
    return InMemorySessionRepository()


@pytest.fixture
def make_manager(repository, bus, clock):
    def _make(**overrides):
        options = dict(
            repository=repository,
            bus=bus,
            colors=ColorAssigner(DEFAULT_PARTICIPANT_COLORS),
            clock=clock,
        )
        options.update(overrides)
        return SessionLifecycleManager(**options)

    return _make


@pytest.fixture
def manager(make_manager):
    return make_manager()


@pytest.fixture
def token():
    def _token(user_id: str, name: str | None = None) -> str:
        claims = {"sub": user_id}
        if name:
            claims["name"] = name
        return create_access_token(claims)

    return _token


@pytest.fixture
def auth(token):
    def _auth(user_id: str, name: str | None = None) -> dict:
        return {"Authorization": f"Bearer {token(user_id, name)}"}

    return _auth


@pytest.fixture
def settings():
    return LocalConfig(SESSION_BACKEND=SessionBackend.MEMORY, GEMINI_API_KEY=None)


@pytest.fixture
def app(settings):
    return create_app(settings)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c
