"""
Forwards typed commands from viewers into running sessions.

Commands for sessions that are not running are dropped without complaint: a
viewer may still be typing into a session that has just disconnected.
"""
import logging

from connection import ERROR
from registry import SessionRegistry
from tracer import trace


@trace
def relay_command(registry: SessionRegistry, session_id: str, command_text: str) -> bool:
    """
    Sends command_text verbatim as a chat line or slash command.

    Returns:
        True if the command was handed to a live connection, False if the
        session is not running.
    """
    live = registry.lookup(session_id)
    if live is None:
        logging.debug(f"Dropping command for session '{session_id}': not running.")
        return False

    try:
        live.connection.send_command(command_text)
    except OSError as e:
        # A write failure on an established session is recoverable news, not a crash.
        live.channel.emit(ERROR, {"message": f"could not send command: {e}", "fatal": False})
        return False
    return True
