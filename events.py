"""
Handles all SocketIO event logic for the application.

This module connects dashboard viewers to the supervisor: it starts and stops
sessions on request, joins viewers to the log rooms of the sessions they are
watching, and relays the commands they type. It is designed to be registered
by the main fleet.py script.
"""

import logging
from flask import request
from flask_socketio import SocketIO

from supervisor import Supervisor
from tracer import trace, global_tracer


def _session_id(data) -> str:
    if isinstance(data, dict):
        return str(data.get("session_id") or "")
    return ""


@trace
def run_start(socketio: SocketIO, supervisor: Supervisor, session_id: str, requester_sid: str) -> None:
    """
    Starts a session and reports the outcome to the client that asked.

    Runs as a background task so a slow proxy or device flow never holds up
    other viewers or other sessions.
    """
    result = supervisor.request_start(session_id)
    socketio.emit("start_result", result.model_dump(mode="json"), to=requester_sid)


@trace
def register_events(socketio: SocketIO, supervisor: Supervisor):
    """
    Registers all SocketIO event handlers with the main application.
    """

    @socketio.on("connect")
    @trace
    def handle_connect(auth=None) -> None:
        """Sends the newly connected dashboard the status of every known session."""
        logging.info(f"Client connected: {request.sid}")
        for session_id, status in supervisor.statuses().items():
            socketio.emit("session_status", {"session_id": session_id, "status": status.value}, to=request.sid)

    @socketio.on("disconnect")
    @trace
    def handle_disconnect(auth=None) -> None:
        # Socket.IO drops the client from every room on its own.
        logging.info(f"Client disconnected: {request.sid}")

    @socketio.on("subscribe_session")
    @trace
    def handle_subscribe(data: dict) -> None:
        """
        Joins the client to a session's log room.

        Args:
            data: A dictionary of the form {"session_id": "..."}
        """
        if session_id := _session_id(data):
            supervisor.subscribe(session_id, request.sid)
            status = supervisor.status(session_id)
            socketio.emit("session_status", {"session_id": session_id, "status": status.value}, to=request.sid)

    @socketio.on("unsubscribe_session")
    @trace
    def handle_unsubscribe(data: dict) -> None:
        if session_id := _session_id(data):
            supervisor.unsubscribe(session_id, request.sid)

    @socketio.on("request_status")
    @trace
    def handle_status_request(data: dict) -> None:
        if session_id := _session_id(data):
            status = supervisor.status(session_id)
            socketio.emit("session_status", {"session_id": session_id, "status": status.value}, to=request.sid)

    @socketio.on("start_session")
    @trace
    def handle_start_session(data: dict) -> None:
        if session_id := _session_id(data):
            socketio.start_background_task(run_start, socketio, supervisor, session_id, request.sid)

    @socketio.on("stop_session")
    @trace
    def handle_stop_session(data: dict) -> None:
        if session_id := _session_id(data):
            result = supervisor.request_stop(session_id)
            socketio.emit("stop_result", result.model_dump(mode="json"), to=request.sid)

    @socketio.on("send_command")
    @trace
    def handle_send_command(data: dict) -> None:
        """
        Relays a typed command into a running session.

        Args:
            data: A dictionary of the form {"session_id": "...", "command": "/say hi"}
        """
        session_id = _session_id(data)
        command = data.get("command") if isinstance(data, dict) else None
        if session_id and command:
            supervisor.send_command(session_id, command)

    @socketio.on('reset_tracer')
    @trace
    def handle_reset_tracer(data=None):
        """Handles a request from the scenario runner to reset the global tracer."""
        logging.info("Received request to reset global tracer.")
        global_tracer.reset()

    @socketio.on('get_trace_log')
    @trace
    def handle_get_trace_log(data=None):
        """
        Handles a request from the scenario runner to get the trace log
        and sends it back.
        """
        logging.info("Received request to get trace log.")
        socketio.emit("trace_log_response", {"trace": global_tracer.get_trace()}, to=request.sid)
