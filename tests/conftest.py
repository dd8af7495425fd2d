"""
RELAY Chat - Test Infrastructure (conftest.py)
==============================================
Provides:
  - In-memory ChatStore seeded with alice, bob and carol
  - RecordingTransport that keeps every push instead of writing to a socket
  - Router / session wiring over the recording transport
  - FastAPI TestClient on an in-memory app with the cleanup scheduler off
"""

import asyncio
import copy
import os
import sys

import pytest

# Ensure project root is on path
ROOT_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, ROOT_DIR)

from app.messaging.chat_engine import MessagingRouter  # noqa: E402
from app.messaging.config import reset_config, set_config  # noqa: E402
from app.messaging.models import ChatStore, MemoryDocumentStore  # noqa: E402
from app.messaging.presence import PresenceRegistry  # noqa: E402
from app.messaging.websocket import Transport  # noqa: E402

SEED_USERS = ("alice", "bob", "carol")


# ============================================================================
# Recording transport
# ============================================================================

class RecordingTransport(Transport):
    """Transport double: open connections are ids, pushes land in `sent`."""

    def __init__(self):
        self.connections = []
        self.sent = []  # (connection_id, event, data)
        self._counter = 0

    def open(self) -> str:
        self._counter += 1
        connection_id = f"conn-{self._counter}"
        self.connections.append(connection_id)
        return connection_id

    def close(self, connection_id: str):
        if connection_id in self.connections:
            self.connections.remove(connection_id)

    async def send(self, connection_id, event, data):
        if connection_id not in self.connections:
            return False
        self.sent.append((connection_id, event, copy.deepcopy(data)))
        return True

    async def broadcast(self, event, data, exclude=None):
        excluded = set(exclude or ())
        count = 0
        for connection_id in list(self.connections):
            if connection_id in excluded:
                continue
            if await self.send(connection_id, event, data):
                count += 1
        return count

    # ---- assertion helpers ----

    def events(self, connection_id):
        return [e for c, e, _ in self.sent if c == connection_id]

    def received(self, connection_id, event):
        return [d for c, e, d in self.sent if c == connection_id and e == event]

    def last(self, connection_id, event):
        payloads = self.received(connection_id, event)
        assert payloads, f"{connection_id} never received {event}"
        return payloads[-1]

    def clear(self):
        self.sent.clear()


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def run():
    """Run a coroutine to completion on a fresh event loop."""
    return asyncio.run


@pytest.fixture
def store():
    chat_store = ChatStore(MemoryDocumentStore())
    chat_store.init_schema()
    for name in SEED_USERS:
        chat_store.add_user({"username": name, "password": "pw", "email": f"{name}@example.com"})
    return chat_store


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def presence():
    return PresenceRegistry()


@pytest.fixture
def router(store, presence, transport):
    return MessagingRouter(store, presence, transport)


@pytest.fixture
def connect(router, transport, run):
    """Open a connection and log `username` in on it. Returns the connection id."""

    def _connect(username):
        connection_id = transport.open()
        assert run(router.dispatch(connection_id, "user:login", {"username": username}))
        return connection_id

    return _connect


@pytest.fixture
def send(router, run):
    """Dispatch one inbound event. Returns False if the router dropped it."""

    def _send(connection_id, event, data):
        return run(router.dispatch(connection_id, event, data))

    return _send


@pytest.fixture
def client():
    """TestClient on a fresh in-memory app."""
    from starlette.testclient import TestClient

    set_config("storage_backend", "memory")
    set_config("cleanup_enabled", False)
    import main

    app = main.create_app()
    with TestClient(app) as c:
        yield c
    reset_config()
