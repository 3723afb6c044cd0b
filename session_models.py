"""
Defines the in-memory record of a running session.

A LiveSession exists only while its connection is usable. It is created by a
successful bootstrap, owned exclusively by the SessionRegistry, and dropped on
an explicit stop or a terminal connection event.
"""
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from connection import GameConnection
from data_models import SessionConfig
from event_bridge import SessionChannel
from utils import get_timestamp


class LiveSession(BaseModel):
    """
    Represents one running, impersonated-account connection.

    This model acts as a "context object" handed to the command relay and to
    status queries, bundling the connection with the channel that carries its
    events.
    """

    # Allows the model to hold the connection and channel objects without validation.
    model_config = ConfigDict(arbitrary_types_allowed=True)

    session_id: str
    # The opaque protocol connection; only send_command/terminate are used.
    connection: GameConnection
    # The event channel this connection reports into.
    channel: SessionChannel
    # The record snapshot the session was started from.
    config: SessionConfig
    started_at: datetime = Field(default_factory=get_timestamp)
