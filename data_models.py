"""
Defines the core data structures for the application using Pydantic.

This module provides centralized, validated models shared by the bootstrapper,
the session registry, the event bridge and the Socket.IO layer. Session
records are validated here when they are read from storage, so the rest of
the code can branch on a typed credential variant instead of probing a
loosely-shaped dictionary.
"""
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator, model_validator

from config import DEFAULT_GAME_PORT
from utils import get_timestamp


class AuthMode(str, Enum):
    OFFLINE = "offline"
    CREDENTIALED = "credentialed"
    INTERACTIVE = "interactive"


class OfflineCredentials(BaseModel):
    """A cracked/offline-mode account: nothing but a display username."""

    auth_mode: Literal["offline"] = "offline"
    username: str = Field(..., min_length=1)


class CredentialedCredentials(BaseModel):
    """
    A Microsoft account with a stored password.

    The password is optional: without it the bootstrapper falls back to the
    interactive device-authorization flow.
    """

    auth_mode: Literal["credentialed"] = "credentialed"
    email: str = Field(..., min_length=1)
    password: Optional[str] = None


class InteractiveCredentials(BaseModel):
    """A Microsoft account authorized out-of-band through a device code."""

    auth_mode: Literal["interactive"] = "interactive"
    email: str = Field(..., min_length=1)


Credentials = Annotated[
    Union[OfflineCredentials, CredentialedCredentials, InteractiveCredentials],
    Field(discriminator="auth_mode"),
]


class SessionConfig(BaseModel):
    """
    A read-only snapshot of one stored session record.

    The record owner may store credentials either nested under 'credentials'
    or flat beside the other fields ('auth_mode', 'username', 'email',
    'password'); flat records are lifted into the tagged variant. A nested
    'credentials' object may leave its tag to the record's 'auth_mode'.
    """

    session_id: str = Field(..., min_length=1)
    owner_id: Optional[str] = None
    display_name: str = ""
    credentials: Credentials
    server_host: str
    server_port: int = DEFAULT_GAME_PORT
    # Optional "host:port" of a SOCKS5 proxy to tunnel through.
    proxy_endpoint: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _lift_flat_credentials(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        if "credentials" in data:
            return cls._tag_nested_credentials(data)
        data = dict(data)
        credentials = {"auth_mode": data.pop("auth_mode", AuthMode.OFFLINE.value)}
        for key in ("username", "email", "password"):
            if key in data:
                credentials[key] = data.pop(key)
        data["credentials"] = credentials
        return data

    @staticmethod
    def _tag_nested_credentials(data: dict) -> dict:
        credentials = data["credentials"]
        if "auth_mode" not in data or not isinstance(credentials, dict):
            return data
        data = dict(data)
        mode = AuthMode(data.pop("auth_mode")).value
        nested = credentials.get("auth_mode")
        if nested is not None and nested != mode:
            raise ValueError(f"credentials are tagged '{nested}' but the record's auth_mode is '{mode}'")
        data["credentials"] = {**credentials, "auth_mode": mode}
        return data

    @property
    def auth_mode(self) -> AuthMode:
        return AuthMode(self.credentials.auth_mode)


class SessionStatus(str, Enum):
    STARTING = "starting"
    ONLINE = "online"
    OFFLINE = "offline"
    ERROR = "error"


class LogTag(str, Enum):
    SYSTEM = "system"
    CHAT = "chat"
    ERROR = "error"


class LogLine(BaseModel):
    """One entry in a session's live event log. Never persisted."""

    session_id: str
    timestamp: datetime = Field(default_factory=get_timestamp)
    tag: LogTag
    text: str


class StatusUpdate(BaseModel):
    """A coarse status change, broadcast to every dashboard viewer."""

    session_id: str
    status: SessionStatus


class DevicePrompt(BaseModel):
    """The verification URI and short code a user must enter to authorize a session."""

    session_id: str
    verification_uri: str
    user_code: str


class ConnectionFault(BaseModel):
    """
    The payload of a connection 'error' event.

    'fatal' marks errors after which the connection is unusable; everything
    else is recoverable and leaves the session registered.
    """

    message: str = "unknown error"
    code: Optional[str] = None
    address: Optional[str] = None
    fatal: bool = False

    @field_validator("message", "code", "address", mode="before")
    @classmethod
    def _stringify(cls, value: Any) -> Any:
        # Protocol libraries report errno numbers and exception objects as often as strings.
        return value if value is None or isinstance(value, str) else str(value)

    @field_validator("fatal", mode="before")
    @classmethod
    def _truthy(cls, value: Any) -> Any:
        return value if isinstance(value, str) else bool(value)


class ReconnectPolicy(BaseModel):
    """What happens after a session's connection ends on its own."""

    kind: Literal["none", "fixed_delay"] = "none"
    # Seconds to wait before the automatic restart when kind is 'fixed_delay'.
    delay: float = Field(default=15.0, ge=0)


class StartResult(BaseModel):
    session_id: str
    success: bool
    already_running: bool = False
    error: Optional[str] = None


class StopResult(BaseModel):
    session_id: str
    success: bool = True
    stopped: bool = False
