import pytest
from flask import Flask
from flask_socketio import SocketIO

import events
from conftest import FakeFactory
from event_bridge import EventBridge
from registry import SessionRegistry
from supervisor import Supervisor
from tracer import global_tracer


@pytest.fixture
def server(offline_config):
    app = Flask(__name__)
    socketio = SocketIO(app, async_mode="threading")
    factory = FakeFactory()
    bridge = EventBridge(socketio)
    registry = SessionRegistry(bridge, factory)
    supervisor = Supervisor(registry, bridge, socketio)
    events.register_events(socketio, supervisor)
    supervisor.request_start("s1", offline_config)
    return app, socketio, supervisor, factory


def received(client, name):
    return [packet["args"][0] for packet in client.get_received() if packet["name"] == name]


def test_subscriber_gets_session_logs_and_status(server):
    app, socketio, supervisor, factory = server
    watcher = socketio.test_client(app)
    bystander = socketio.test_client(app)
    watcher.get_received()
    bystander.get_received()

    watcher.emit("subscribe_session", {"session_id": "s1"})
    assert received(watcher, "session_status") == [{"session_id": "s1", "status": "online"}]

    factory.last.fire("chat", {"username": "Alice", "message": "hi"})
    factory.last.fire("end", {})

    watcher_packets = watcher.get_received()
    bystander_packets = bystander.get_received()
    assert [p["args"][0]["text"] for p in watcher_packets if p["name"] == "log_line"] == ["Alice: hi", "disconnected"]
    assert [p for p in bystander_packets if p["name"] == "log_line"] == []
    # Status changes reach every dashboard.
    assert {"session_id": "s1", "status": "offline"} in [p["args"][0] for p in bystander_packets if p["name"] == "session_status"]


def test_unsubscribed_viewer_stops_receiving_logs(server):
    app, socketio, supervisor, factory = server
    client = socketio.test_client(app)
    client.emit("subscribe_session", {"session_id": "s1"})
    client.emit("unsubscribe_session", {"session_id": "s1"})
    client.get_received()

    factory.last.fire("chat", {"username": "Alice", "message": "hi"})

    assert received(client, "log_line") == []


def test_connect_reports_known_sessions(server):
    app, socketio, supervisor, factory = server
    client = socketio.test_client(app)

    assert {"session_id": "s1", "status": "online"} in received(client, "session_status")


def test_send_command_and_stop(server):
    app, socketio, supervisor, factory = server
    client = socketio.test_client(app)

    client.emit("send_command", {"session_id": "s1", "command": "/spawn"})
    client.emit("send_command", {"session_id": "ghost", "command": "/spawn"})
    client.emit("stop_session", {"session_id": "s1"})
    client.emit("stop_session", {"session_id": "s1"})

    assert factory.last.commands == ["/spawn"]
    results = received(client, "stop_result")
    assert [r["stopped"] for r in results] == [True, False]
    assert supervisor.status("s1").value == "offline"


def test_trace_log_round_trip(server):
    app, socketio, supervisor, factory = server
    client = socketio.test_client(app)
    global_tracer.enable()
    try:
        client.emit("reset_tracer")
        client.emit("request_status", {"session_id": "s1"})
        client.emit("get_trace_log")
    finally:
        global_tracer.disable()
        global_tracer.reset()

    traces = received(client, "trace_log_response")
    functions = [entry["function"] for entry in traces[0]["trace"]]
    assert "events.register_events.<locals>.handle_status_request" in functions
