import threading
from unittest.mock import MagicMock

import pytest

from data_models import SessionConfig
from event_bridge import EventBridge
from registry import SessionRegistry


class FakeConnection:
    """Stands in for a game protocol connection; tests fire its events by hand."""

    def __init__(self, options):
        self.options = options
        self.commands = []
        self.terminated = False

    def fire(self, kind, payload=None):
        self.options.on_event(kind, payload)

    def send_command(self, text):
        self.commands.append(text)

    def terminate(self):
        self.terminated = True


class FakeFactory:
    """Records every connection it builds."""

    def __init__(self):
        self.connections = []
        self._lock = threading.Lock()

    def __call__(self, options):
        connection = FakeConnection(options)
        with self._lock:
            self.connections.append(connection)
        return connection

    @property
    def last(self):
        return self.connections[-1]


def inline_socketio():
    """A SocketIO double whose background tasks run immediately; sleeps return at once."""
    sio = MagicMock()
    sio.start_background_task.side_effect = lambda fn, *a, **kw: fn(*a, **kw)
    return sio


def emitted(socketio, event_name):
    """Returns the payloads of every emit of event_name, in order."""
    return [c.args[1] for c in socketio.emit.call_args_list if c.args and c.args[0] == event_name]


def log_texts(socketio, session_id=None):
    return [p["text"] for p in emitted(socketio, "log_line") if session_id is None or p["session_id"] == session_id]


def statuses(socketio, session_id=None):
    return [p["status"] for p in emitted(socketio, "session_status") if session_id is None or p["session_id"] == session_id]


@pytest.fixture
def offline_config():
    return SessionConfig.model_validate(
        {"session_id": "s1", "auth_mode": "offline", "username": "Bot1", "server_host": "play.example.com"}
    )


@pytest.fixture
def socketio():
    return inline_socketio()


@pytest.fixture
def bridge(socketio):
    return EventBridge(socketio)


@pytest.fixture
def factory():
    return FakeFactory()


@pytest.fixture
def registry(bridge, factory):
    return SessionRegistry(bridge, factory)
