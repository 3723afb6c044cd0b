"""
The single source of truth for which sessions are running.

SessionRegistry maps session ids to LiveSessions. Every mutation goes through
start(), stop() or remove_on_terminal(), each of which holds a per-session
lock for its bookkeeping. The lock is never held while a bootstrap is in
flight: a start first reserves the id, bootstraps without the lock, and then
either promotes the reservation to a LiveSession or discovers that a stop
cancelled it in the meantime.
"""
import logging
import threading
from contextlib import contextmanager
from typing import Callable, Optional

from bootstrap import bootstrap
from connection import ConnectionFactory
from data_models import SessionConfig, SessionStatus, StartResult, StopResult
from event_bridge import EventBridge, SessionChannel
from session_models import LiveSession
from tracer import trace


class KeyedLock:
    """Mutual exclusion per key; unrelated keys never contend."""

    def __init__(self):
        self._guard = threading.Lock()
        # key -> [lock, number of holders and waiters]
        self._locks: dict[str, list] = {}

    @contextmanager
    def hold(self, key: str):
        with self._guard:
            entry = self._locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]


class _Slot:
    """A registry entry: a reservation while bootstrapping, then a LiveSession."""

    __slots__ = ("channel", "live")

    def __init__(self, channel: SessionChannel):
        self.channel = channel
        self.live: Optional[LiveSession] = None


class SessionRegistry:
    def __init__(
        self,
        bridge: EventBridge,
        connection_factory: Optional[ConnectionFactory],
        proxy_timeout: Optional[float] = None,
        bootstrapper=bootstrap,
    ):
        self.bridge = bridge
        self.connection_factory = connection_factory
        self.proxy_timeout = proxy_timeout
        self._bootstrap = bootstrapper
        self._slots: dict[str, _Slot] = {}
        self._keys = KeyedLock()
        self._terminal_listeners: list[Callable[[str], None]] = []

    def add_terminal_listener(self, listener: Callable[[str], None]) -> None:
        """Registers a callback run after a session is removed by a terminal event."""
        self._terminal_listeners.append(listener)

    @trace
    def start(self, session_id: str, config: SessionConfig) -> StartResult:
        """
        Bootstraps and registers a session unless it is already running.

        Concurrent starts for the same id bootstrap once; the others return
        already_running=True.

        Raises:
            BootstrapError, ProxyError: Propagated from the bootstrapper. The
                reservation is removed and nothing stays registered.
        """
        with self._keys.hold(session_id):
            if session_id in self._slots:
                return StartResult(session_id=session_id, success=True, already_running=True)
            channel = self.bridge.open_channel(session_id, on_terminal=lambda: self.remove_on_terminal(session_id, channel))
            slot = _Slot(channel)
            self._slots[session_id] = slot

        logging.info(f"Starting session '{session_id}'.")
        self.bridge.publish_status(session_id, SessionStatus.STARTING)
        try:
            connection = self._bootstrap(config, channel, self.connection_factory, proxy_timeout=self.proxy_timeout)
        except Exception:
            with self._keys.hold(session_id):
                if self._slots.get(session_id) is slot:
                    del self._slots[session_id]
            raise

        with self._keys.hold(session_id):
            cancelled = self._slots.get(session_id) is not slot
            if not cancelled:
                slot.live = LiveSession(session_id=session_id, connection=connection, channel=channel, config=config)

        if cancelled:
            # stop() already sealed the channel; the id may belong to a newer start by now.
            logging.info(f"Session '{session_id}' was stopped while starting; tearing down.")
            connection.terminate()
            return StartResult(session_id=session_id, success=False, error="stopped while starting")

        channel.release()
        return StartResult(session_id=session_id, success=True)

    @trace
    def stop(self, session_id: str) -> StopResult:
        """
        Removes a session and requests teardown of its connection.

        The entry is gone when this returns; the socket may finish closing
        later. Stopping an unknown session is a no-op.
        """
        with self._keys.hold(session_id):
            slot = self._slots.pop(session_id, None)
        if slot is None:
            return StopResult(session_id=session_id, stopped=False)

        logging.info(f"Stopping session '{session_id}'.")
        slot.channel.close()
        if slot.live is not None:
            slot.live.connection.terminate()
        # A reservation's connection is terminated by the start that owns it.
        return StopResult(session_id=session_id, stopped=True)

    def lookup(self, session_id: str) -> Optional[LiveSession]:
        slot = self._slots.get(session_id)
        return slot.live if slot is not None else None

    def status(self, session_id: str) -> SessionStatus:
        slot = self._slots.get(session_id)
        if slot is None:
            return SessionStatus.OFFLINE
        return SessionStatus.ONLINE if slot.live is not None else SessionStatus.STARTING

    def session_ids(self) -> list[str]:
        return list(self._slots)

    @trace
    def remove_on_terminal(self, session_id: str, channel: SessionChannel) -> bool:
        """
        Drops a session whose connection reported a terminal event.

        Only the entry owning 'channel' is removed, so a late event from a
        stopped connection cannot evict a newer session with the same id.
        """
        with self._keys.hold(session_id):
            slot = self._slots.get(session_id)
            if slot is None or slot.channel is not channel or slot.live is None:
                return False
            del self._slots[session_id]

        logging.info(f"Session '{session_id}' ended; removed from registry.")
        for listener in self._terminal_listeners:
            listener(session_id)
        return True

    @trace
    def stop_all(self) -> int:
        """Stops every session. Returns how many were stopped."""
        return sum(1 for session_id in self.session_ids() if self.stop(session_id).stopped)
