from unittest.mock import MagicMock

from conftest import emitted, log_texts, statuses
from event_bridge import EventBridge, room_for


def open_released(bridge, session_id="s1", on_terminal=None):
    channel = bridge.open_channel(session_id, on_terminal=on_terminal)
    channel.release()
    return channel


def test_log_order_follows_event_order(socketio, bridge):
    on_terminal = MagicMock()
    channel = open_released(bridge, on_terminal=on_terminal)

    channel.emit("login", {"username": "Bot1"})
    channel.emit("chat", {"username": "Alice", "message": "A"})
    channel.emit("chat", {"username": "Bob", "message": "B"})
    channel.emit("end", {"reason": "socketClosed"})

    assert log_texts(socketio) == ["connected as Bot1", "Alice: A", "Bob: B", "disconnected"]
    tags = [p["tag"] for p in emitted(socketio, "log_line")]
    assert tags == ["system", "chat", "chat", "system"]
    assert statuses(socketio) == ["online", "offline"]
    on_terminal.assert_called_once_with()


def test_log_lines_go_to_the_session_room_and_status_to_everyone(socketio, bridge):
    channel = open_released(bridge, "s7")

    channel.emit("login", {"username": "Bot7"})

    calls = socketio.emit.call_args_list
    log_call = next(c for c in calls if c.args[0] == "log_line")
    status_call = next(c for c in calls if c.args[0] == "session_status")
    assert log_call.kwargs["to"] == room_for("s7") == "session:s7"
    assert "to" not in status_call.kwargs
    assert status_call.args[1] == {"session_id": "s7", "status": "online"}


def test_events_before_release_are_held_then_replayed_in_order(socketio, bridge):
    on_terminal = MagicMock()
    channel = bridge.open_channel("s1", on_terminal=on_terminal)

    channel.emit("login", {"username": "Bot1"})
    channel.emit("end", {})
    assert log_texts(socketio) == []
    on_terminal.assert_not_called()

    channel.release()

    assert log_texts(socketio) == ["connected as Bot1", "disconnected"]
    on_terminal.assert_called_once_with()


def test_recoverable_error_keeps_session(socketio, bridge):
    on_terminal = MagicMock()
    channel = open_released(bridge, on_terminal=on_terminal)

    channel.emit("error", {"message": "read ECONNABORTED", "code": "ECONNABORTED"})

    assert log_texts(socketio) == ["read ECONNABORTED"]
    assert emitted(socketio, "log_line")[0]["tag"] == "error"
    assert statuses(socketio) == []
    on_terminal.assert_not_called()
    assert not channel.closed


def test_error_with_numeric_code_and_exception_message_is_still_logged(socketio, bridge):
    on_terminal = MagicMock()
    channel = open_released(bridge, on_terminal=on_terminal)

    channel.emit("error", {"message": "reset", "code": 104})
    channel.emit("error", {"message": ConnectionAbortedError("stream aborted")})

    assert log_texts(socketio) == ["reset", "stream aborted"]
    on_terminal.assert_not_called()
    assert not channel.closed


def test_connection_refused_is_rendered_with_address(socketio, bridge):
    channel = open_released(bridge)

    channel.emit("error", {"message": "connect ECONNREFUSED", "code": "ECONNREFUSED", "address": "203.0.113.9"})

    assert log_texts(socketio) == ["failed to connect to 203.0.113.9"]


def test_noisy_transport_errors_are_filtered(socketio, bridge):
    channel = open_released(bridge)

    channel.emit("error", {"message": "read ECONNRESET", "code": "ECONNRESET"})

    assert log_texts(socketio) == []


def test_fatal_error_is_terminal_once(socketio, bridge):
    on_terminal = MagicMock()
    channel = open_released(bridge, on_terminal=on_terminal)

    channel.emit("error", {"message": "invalid session", "fatal": True})
    channel.emit("end", {})

    assert log_texts(socketio) == ["invalid session", "disconnected"]
    assert statuses(socketio) == ["offline"]
    on_terminal.assert_called_once_with()


def test_kick_then_end(socketio, bridge):
    channel = open_released(bridge)

    channel.emit("spawn")
    channel.emit("kicked", {"reason": "You are banned"})
    channel.emit("end", {"reason": "kicked"})

    assert log_texts(socketio) == ["spawned in world", "kicked: You are banned", "disconnected"]


def test_close_seals_channel(socketio, bridge):
    on_terminal = MagicMock()
    channel = open_released(bridge, on_terminal=on_terminal)

    channel.close()
    channel.close()
    channel.emit("end", {})

    assert log_texts(socketio) == ["disconnected"]
    assert statuses(socketio) == ["offline"]
    on_terminal.assert_not_called()


def test_device_prompt_is_not_held_back(socketio, bridge):
    channel = bridge.open_channel("s1")

    channel.announce_device_code("https://microsoft.com/link", "ABCD-1234")

    assert emitted(socketio, "device_code") == [
        {"session_id": "s1", "verification_uri": "https://microsoft.com/link", "user_code": "ABCD-1234"}
    ]
    assert "ABCD-1234" in log_texts(socketio)[0]


def test_subscribe_joins_the_session_room():
    sio = MagicMock()
    bridge = EventBridge(sio)

    bridge.subscribe("s1", "viewer-sid")
    bridge.unsubscribe("s1", "viewer-sid")

    sio.server.enter_room.assert_called_once_with("viewer-sid", "session:s1", namespace="/")
    sio.server.leave_room.assert_called_once_with("viewer-sid", "session:s1", namespace="/")
