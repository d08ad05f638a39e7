"""
Shared fixtures for relay and detector tests.

Redis is replaced with fakeredis, the Telegram provider with a recording
fake, and the detector's clock with a manually advanced one.
"""

import threading

import fakeredis
import pytest

from pollcast.core.config import TestConfig
from pollcast.core.errors import TransportFailure
from pollcast.detector.lifecycle import LifecycleEmitter
from pollcast.relay.broadcast import BroadcastDispatcher
from pollcast.relay.identity import IdentityService
from pollcast.relay.key_store import KeyStore
from pollcast.relay.messenger import SendResult
from pollcast.relay.server import create_app
from pollcast.relay.session_registry import SessionRegistry


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "relay: relay backend tests")
    config.addinivalue_line("markers", "detector: page-side detector tests")


# =============================================================================
# CONSTANTS
# =============================================================================

COURSE_ID = "0a1b2c3d-4e5f-6789-abcd-ef0123456789"
OTHER_COURSE_ID = "11111111-2222-3333-4444-555555555555"
ACTIVITY_ID = "aaaabbbb-cccc-dddd-eeee-ffff00001111"
OTHER_ACTIVITY_ID = "99998888-7777-6666-5555-444433332222"


# =============================================================================
# FAKES
# =============================================================================

class FakeMessenger:
    """
    Records every send. Handles in `unreachable` raise TransportFailure,
    handles in `refused` get ok=False.
    """

    def __init__(self):
        self.sent = []
        self.unreachable = set()
        self.refused = set()
        self._lock = threading.Lock()

    def send(self, chat_handle, text):
        if chat_handle in self.unreachable:
            raise TransportFailure(cause=ConnectionError("provider down"))
        with self._lock:
            self.sent.append((chat_handle, text))
        return SendResult(ok=chat_handle not in self.refused)

    def texts_for(self, chat_handle):
        return [text for handle, text in self.sent if handle == chat_handle]

    def clear(self):
        with self._lock:
            self.sent = []


class FakeClock:
    """Epoch-millisecond clock that only moves when told to."""

    def __init__(self, start=1_700_000_000_000):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, ms):
        self.now += ms


class FakeFrameSource:
    def __init__(self):
        self.callbacks = []

    def subscribe(self, callback):
        self.callbacks.append(callback)

        def unsubscribe():
            self.callbacks.remove(callback)
        return unsubscribe

    def push(self, raw):
        for callback in list(self.callbacks):
            callback(raw)


# =============================================================================
# RELAY FIXTURES
# =============================================================================

@pytest.fixture
def config():
    return TestConfig


@pytest.fixture
def fake_redis():
    return fakeredis.FakeRedis(decode_responses=True)


@pytest.fixture
def store(fake_redis, config):
    return KeyStore(fake_redis, prefix=config.KEY_PREFIX)


@pytest.fixture
def messenger():
    return FakeMessenger()


@pytest.fixture
def identity(store, messenger, config):
    return IdentityService(store, messenger, config)


@pytest.fixture
def registry(store, identity, messenger, config):
    return SessionRegistry(store, identity, messenger, config)


@pytest.fixture
def dispatcher(store, identity, messenger, config):
    return BroadcastDispatcher(store, identity, messenger, config)


@pytest.fixture
def make_user(identity, messenger):
    """
    Register a chat handle through the real code flow and return its token.
    Messages sent during registration are cleared.
    """
    def _make_user(chat_handle):
        code = identity.issue_code(chat_handle)
        token = identity.register(code)
        messenger.clear()
        return token
    return _make_user


@pytest.fixture
def app(config, store, messenger):
    return create_app(config=config, store=store, messenger=messenger)


@pytest.fixture
def client(app):
    return app.test_client()


# =============================================================================
# DETECTOR FIXTURES
# =============================================================================

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def emitter():
    return LifecycleEmitter()


@pytest.fixture
def frames():
    return FakeFrameSource()


@pytest.fixture
def recorded(emitter):
    """List of (event_type, payload) for everything the emitter sends."""
    events = []
    emitter.add_listener(lambda event: events.append((event.event_type, event.payload)))
    return events
