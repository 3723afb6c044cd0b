"""
Main application bootstrap file.

This script initializes the Flask application and the SocketIO server, loads
the game protocol connection factory, wires the session registry, event
bridge and supervisor together, and registers the HTTP routes and SocketIO
event handlers. It is responsible for starting the server and bringing all
components of the application online.
"""
import eventlet

eventlet.monkey_patch()

import atexit
import logging
from flask import Flask, jsonify, request
from flask_socketio import SocketIO
from flask_cors import CORS
import debugpy

from config import (
    CONNECTION_FACTORY,
    DEBUG_MODE,
    DEVICE_FLOW_TIMEOUT_SECONDS,
    PROXY_HANDSHAKE_TIMEOUT_SECONDS,
    RECONNECT_DELAY_SECONDS,
    RECONNECT_POLICY,
    SERVER_HOST,
    SERVER_PORT,
    SESSION_STORE_PATH,
)
from connection import load_connection_factory
from data_models import ReconnectPolicy
from event_bridge import EventBridge
import events
from registry import SessionRegistry
from session_store import JsonSessionStore
from supervisor import Supervisor
from tracer import trace

# --- CONFIGURATION ---
logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
app = Flask(__name__)
CORS(app)
socketio = SocketIO(app, cors_allowed_origins="*", async_mode="eventlet")

# --- GLOBAL INITIALIZATION ---
connection_factory = load_connection_factory(CONNECTION_FACTORY)
bridge = EventBridge(socketio)
registry = SessionRegistry(bridge, connection_factory, proxy_timeout=PROXY_HANDSHAKE_TIMEOUT_SECONDS)
supervisor = Supervisor(
    registry,
    bridge,
    socketio,
    session_store=JsonSessionStore(SESSION_STORE_PATH),
    policy=ReconnectPolicy(kind=RECONNECT_POLICY, delay=RECONNECT_DELAY_SECONDS),
    device_flow_timeout=DEVICE_FLOW_TIMEOUT_SECONDS,
)
# Register all event handlers from the events module.
events.register_events(socketio, supervisor)
atexit.register(supervisor.shutdown)


# --- SERVER ROUTES ---
@app.route("/api/sessions", methods=["GET"])
@trace
def list_sessions():
    """Lists every running or starting session with its status."""
    return jsonify({session_id: status.value for session_id, status in supervisor.statuses().items()})


@app.route("/api/sessions/<session_id>/status", methods=["GET"])
@trace
def session_status(session_id: str):
    return jsonify({"session_id": session_id, "status": supervisor.status(session_id).value})


@app.route("/api/sessions/<session_id>/start", methods=["POST"])
@trace
def start_session(session_id: str):
    """Starts a session from its stored record. Blocks only this request's greenlet."""
    result = supervisor.request_start(session_id)
    return jsonify(result.model_dump(mode="json")), 200 if result.success else 400


@app.route("/api/sessions/<session_id>/stop", methods=["POST"])
@trace
def stop_session(session_id: str):
    return jsonify(supervisor.request_stop(session_id).model_dump(mode="json"))


@app.route("/api/sessions/<session_id>/command", methods=["POST"])
@trace
def send_command(session_id: str):
    command = (request.get_json(silent=True) or {}).get("command", "")
    delivered = bool(command) and supervisor.send_command(session_id, command)
    return jsonify({"session_id": session_id, "delivered": delivered})


# --- MAIN EXECUTION ---
if __name__ == "__main__":
    if connection_factory is None:
        app.logger.critical("Server startup failed: no game connection factory configured (FLEET_CONNECTION_FACTORY).")
    else:
        if DEBUG_MODE:
            debugpy.listen(("0.0.0.0", 5678))
            app.logger.info("Debugpy server listening. Waiting for debugger to attach...")
            debugpy.wait_for_client()
            app.logger.info("Debugger attached.")

        app.logger.info(f"Starting session fleet server on http://{SERVER_HOST}:{SERVER_PORT}")
        socketio.run(app, host=SERVER_HOST, port=SERVER_PORT)
