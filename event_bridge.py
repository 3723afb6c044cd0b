"""
Fans a session's connection events out to Socket.IO viewers.

Each running session reports into its own SessionChannel. The channel turns
raw connection events into LogLines for the viewers who joined that session's
room, and into coarse online/offline updates broadcast to every dashboard.
Events for one session are handled one at a time in arrival order; nothing is
ordered across sessions.
"""
import logging
import threading
from typing import Callable, Optional

from config import NOISY_ERROR_CODES
from connection import CHAT, END, ERROR, KICKED, LOGIN, SPAWN
from data_models import ConnectionFault, DevicePrompt, LogLine, LogTag, SessionStatus, StatusUpdate
from tracer import log_event, trace


def room_for(session_id: str) -> str:
    """The Socket.IO room holding the viewers of one session's log."""
    return f"session:{session_id}"


class EventBridge:
    """Publishes session log lines and status changes over Socket.IO."""

    def __init__(self, socketio, noisy_error_codes=NOISY_ERROR_CODES, namespace: str = "/"):
        self.socketio = socketio
        self.noisy_error_codes = frozenset(noisy_error_codes)
        self.namespace = namespace

    @trace
    def open_channel(self, session_id: str, on_terminal: Optional[Callable[[], None]] = None) -> "SessionChannel":
        """
        Creates the event channel for a session that is about to bootstrap.

        The channel holds back connection events until release() is called, so
        the session can be registered before any of its events take effect.
        """
        return SessionChannel(self, session_id, on_terminal)

    def publish_log(self, session_id: str, tag: LogTag, text: str) -> LogLine:
        line = LogLine(session_id=session_id, tag=tag, text=text)
        self.socketio.emit("log_line", line.model_dump(mode="json"), to=room_for(session_id), namespace=self.namespace)
        return line

    def publish_status(self, session_id: str, status: SessionStatus) -> None:
        update = StatusUpdate(session_id=session_id, status=status)
        self.socketio.emit("session_status", update.model_dump(mode="json"), namespace=self.namespace)

    def publish_device_prompt(self, session_id: str, verification_uri: str, user_code: str) -> None:
        prompt = DevicePrompt(session_id=session_id, verification_uri=verification_uri, user_code=user_code)
        self.publish_log(session_id, LogTag.SYSTEM, f"To sign in, open {verification_uri} and enter the code {user_code}")
        self.socketio.emit("device_code", prompt.model_dump(mode="json"), to=room_for(session_id), namespace=self.namespace)

    @trace
    def subscribe(self, session_id: str, subscriber_sid: str) -> None:
        """Adds a Socket.IO client to a session's log room."""
        self.socketio.server.enter_room(subscriber_sid, room_for(session_id), namespace=self.namespace)

    @trace
    def unsubscribe(self, session_id: str, subscriber_sid: str) -> None:
        self.socketio.server.leave_room(subscriber_sid, room_for(session_id), namespace=self.namespace)


class SessionChannel:
    """
    The event sink one connection reports into.

    Connection events are queued until release(); afterwards each event is
    translated and published while holding the channel lock, so log lines
    reach viewers in exactly the order the connection produced them. The
    first terminal event (or an explicit close) seals the channel and later
    events are dropped.
    """

    def __init__(self, bridge: EventBridge, session_id: str, on_terminal: Optional[Callable[[], None]] = None):
        self.bridge = bridge
        self.session_id = session_id
        self._on_terminal = on_terminal
        self._lock = threading.Lock()
        self._backlog: list[tuple[str, dict]] = []
        self._released = False
        self.closed = False
        self.logged_in = False
        self._handlers = {
            LOGIN: self._on_login,
            SPAWN: self._on_spawn,
            CHAT: self._on_chat,
            KICKED: self._on_kicked,
            ERROR: self._on_error,
            END: self._on_end,
        }

    def emit(self, kind: str, payload: Optional[dict] = None) -> None:
        """Accepts one event from the connection. Safe to call from any thread."""
        payload = payload if isinstance(payload, dict) else ({} if payload is None else {"message": str(payload)})
        with self._lock:
            if self.closed:
                return
            if not self._released:
                self._backlog.append((kind, payload))
                return
            terminal = self._dispatch(kind, payload)
        if terminal:
            self._notify_terminal()

    def release(self) -> None:
        """Starts processing events, beginning with any that arrived early."""
        terminal = False
        with self._lock:
            self._released = True
            backlog, self._backlog = self._backlog, []
            for kind, payload in backlog:
                if self.closed:
                    break
                terminal = self._dispatch(kind, payload)
        if terminal:
            self._notify_terminal()

    def close(self) -> None:
        """Seals the channel after an explicit stop and reports the session offline."""
        with self._lock:
            if self.closed:
                return
            self._backlog = []
            self._seal("stopped")

    def announce_device_code(self, verification_uri: str, user_code: str) -> None:
        # Not held back: the prompt comes from the bootstrapper, which may be
        # waiting on the user before the session is registered.
        if not self.closed:
            self.bridge.publish_device_prompt(self.session_id, verification_uri, user_code)

    def _dispatch(self, kind: str, payload: dict) -> bool:
        handler = self._handlers.get(kind)
        if handler is None:
            logging.debug(f"Session '{self.session_id}': ignoring unknown event '{kind}'.")
            return False
        log_event(f"session_event:{kind}", {"session_id": self.session_id})
        return handler(payload)

    def _seal(self, reason: str) -> None:
        self.closed = True
        logging.info(f"Session '{self.session_id}' disconnected ({reason}).")
        self.bridge.publish_log(self.session_id, LogTag.SYSTEM, "disconnected")
        self.bridge.publish_status(self.session_id, SessionStatus.OFFLINE)

    def _notify_terminal(self) -> None:
        if self._on_terminal is not None:
            self._on_terminal()

    def _on_login(self, payload: dict) -> bool:
        self.logged_in = True
        identity = payload.get("username") or "unknown"
        self.bridge.publish_log(self.session_id, LogTag.SYSTEM, f"connected as {identity}")
        self.bridge.publish_status(self.session_id, SessionStatus.ONLINE)
        return False

    def _on_spawn(self, payload: dict) -> bool:
        self.bridge.publish_log(self.session_id, LogTag.SYSTEM, "spawned in world")
        return False

    def _on_chat(self, payload: dict) -> bool:
        speaker = payload.get("username") or "server"
        self.bridge.publish_log(self.session_id, LogTag.CHAT, f"{speaker}: {payload.get('message', '')}")
        return False

    def _on_kicked(self, payload: dict) -> bool:
        # The connection follows up with 'end'; the kick alone is just news.
        reason = payload.get("reason") or payload.get("message") or "no reason given"
        self.bridge.publish_log(self.session_id, LogTag.ERROR, f"kicked: {reason}")
        return False

    def _on_error(self, payload: dict) -> bool:
        fault = ConnectionFault.model_validate({key: value for key, value in payload.items() if value is not None})
        if fault.code in self.bridge.noisy_error_codes and not fault.fatal:
            logging.debug(f"Session '{self.session_id}': filtered transport error {fault.code}: {fault.message}")
            return False

        if fault.code == "ECONNREFUSED" and fault.address:
            text = f"failed to connect to {fault.address}"
        else:
            text = fault.message
        logging.warning(f"Session '{self.session_id}' connection error: {text}")
        self.bridge.publish_log(self.session_id, LogTag.ERROR, text)
        if fault.fatal:
            self._seal(f"fatal error: {text}")
            return True
        return False

    def _on_end(self, payload: dict) -> bool:
        self._seal(payload.get("reason") or "connection ended")
        return True
