"""
Top-level orchestration of session lifecycles.

The Supervisor is the only entry point the web layer calls. It reads session
records from the store, drives the registry, reports bootstrap failures, and
applies the configured reconnection policy. With the default 'none' policy a
session that disconnects stays offline until somebody starts it again.
"""
import logging
import threading
from typing import Optional

from pydantic import ValidationError

from bootstrap import BootstrapError
from command_relay import relay_command
from data_models import AuthMode, LogTag, ReconnectPolicy, SessionConfig, SessionStatus, StartResult, StopResult
from event_bridge import EventBridge
from proxies import ProxyError
from registry import SessionRegistry
from tracer import trace


class Supervisor:
    def __init__(
        self,
        registry: SessionRegistry,
        bridge: EventBridge,
        socketio,
        session_store=None,
        policy: Optional[ReconnectPolicy] = None,
        device_flow_timeout: Optional[float] = None,
    ):
        """
        Args:
            registry: Where running sessions live.
            bridge: Publishes log lines and status updates.
            socketio: Used for background tasks and cooperative sleeps.
            session_store: Anything with get_session_config(session_id).
            policy: What to do after a session ends on its own.
            device_flow_timeout: Seconds a session may wait for device
                                 authorization before it is stopped. None
                                 waits indefinitely.
        """
        self.registry = registry
        self.bridge = bridge
        self.socketio = socketio
        self.session_store = session_store
        self.policy = policy or ReconnectPolicy()
        self.device_flow_timeout = device_flow_timeout
        # Records of sessions that should come back after a disconnect.
        self._wanted: dict[str, SessionConfig] = {}
        self._wanted_lock = threading.Lock()
        registry.add_terminal_listener(self._on_terminal)

    @trace
    def request_start(self, session_id: str, config: Optional[SessionConfig] = None) -> StartResult:
        """
        Starts a session from the given record, or from the session store.

        Bootstrap failures are reported to the caller and to the session's
        viewers; they are never retried automatically.
        """
        if config is None:
            try:
                config = self.session_store.get_session_config(session_id) if self.session_store else None
            except ValidationError as e:
                logging.error(f"Session '{session_id}' has an invalid record: {e}")
                return self._fail(session_id, "invalid_config", "session record is invalid")
            if config is None:
                return StartResult(session_id=session_id, success=False, error="unknown_session")

        try:
            result = self.registry.start(session_id, config)
        except BootstrapError as e:
            logging.error(f"Bootstrap of session '{session_id}' failed: {e}")
            self._forget(session_id, config)
            return self._fail(session_id, e.reason, str(e))
        except ProxyError as e:
            logging.error(f"Proxy tunnel for session '{session_id}' failed: {e.reason}")
            self._forget(session_id, config)
            return self._fail(session_id, "proxy_error", f"proxy error: {e.reason}")

        if result.success and not result.already_running:
            with self._wanted_lock:
                self._wanted[session_id] = config
            if self._needs_device_flow(config) and self.device_flow_timeout is not None:
                live = self.registry.lookup(session_id)
                if live is not None:
                    self.socketio.start_background_task(self._device_flow_watchdog, session_id, live.channel)
        elif not result.success:
            self._forget(session_id, config)
        return result

    @trace
    def request_stop(self, session_id: str) -> StopResult:
        with self._wanted_lock:
            self._wanted.pop(session_id, None)
        return self.registry.stop(session_id)

    def send_command(self, session_id: str, text: str) -> bool:
        return relay_command(self.registry, session_id, text)

    def subscribe(self, session_id: str, subscriber_sid: str) -> None:
        self.bridge.subscribe(session_id, subscriber_sid)

    def unsubscribe(self, session_id: str, subscriber_sid: str) -> None:
        self.bridge.unsubscribe(session_id, subscriber_sid)

    def status(self, session_id: str) -> SessionStatus:
        return self.registry.status(session_id)

    def statuses(self) -> dict[str, SessionStatus]:
        return {session_id: self.registry.status(session_id) for session_id in self.registry.session_ids()}

    @trace
    def shutdown(self) -> int:
        """Stops every session without scheduling any reconnects."""
        with self._wanted_lock:
            self._wanted.clear()
        return self.registry.stop_all()

    def _forget(self, session_id: str, config: SessionConfig) -> None:
        """Drops a failed record from the reconnect set unless a newer one replaced it."""
        with self._wanted_lock:
            if self._wanted.get(session_id) is config:
                del self._wanted[session_id]

    def _fail(self, session_id: str, reason: str, message: str) -> StartResult:
        self.bridge.publish_log(session_id, LogTag.ERROR, message)
        self.bridge.publish_status(session_id, SessionStatus.ERROR)
        return StartResult(session_id=session_id, success=False, error=reason)

    @staticmethod
    def _needs_device_flow(config: SessionConfig) -> bool:
        if config.auth_mode == AuthMode.INTERACTIVE:
            return True
        return config.auth_mode == AuthMode.CREDENTIALED and not config.credentials.password

    def _device_flow_watchdog(self, session_id: str, channel) -> None:
        self.socketio.sleep(self.device_flow_timeout)
        live = self.registry.lookup(session_id)
        if live is None or live.channel is not channel or channel.logged_in:
            return
        logging.warning(f"Session '{session_id}' was not authorized within {self.device_flow_timeout}s; stopping.")
        self.bridge.publish_log(session_id, LogTag.ERROR, "device authorization timed out")
        self.request_stop(session_id)

    def _on_terminal(self, session_id: str) -> None:
        if self.policy.kind != "fixed_delay":
            with self._wanted_lock:
                self._wanted.pop(session_id, None)
            return
        with self._wanted_lock:
            config = self._wanted.get(session_id)
        if config is None:
            return
        logging.info(f"Session '{session_id}' will reconnect in {self.policy.delay}s.")
        self.socketio.start_background_task(self._reconnect_later, session_id, config)

    def _reconnect_later(self, session_id: str, config: SessionConfig) -> None:
        self.socketio.sleep(self.policy.delay)
        with self._wanted_lock:
            # An explicit stop (or a different record) in the meantime wins.
            if self._wanted.get(session_id) is not config:
                return
        self.bridge.publish_log(session_id, LogTag.SYSTEM, "reconnecting")
        self.request_start(session_id, config)
