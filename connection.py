"""
Describes the game protocol connection as the rest of the application sees it.

The wire protocol lives outside this project. A protocol implementation plugs
in by providing a factory that accepts ConnectionOptions and returns an object
satisfying GameConnection. Everything the connection wants to report (login,
chat, errors, the end of the session) goes through the single 'on_event' sink
supplied in the options, which keeps per-session event order intact.
"""
import importlib
from typing import Any, Callable, Literal, Optional, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict

from tracer import trace

# Event kinds a connection may report through ConnectionOptions.on_event.
LOGIN = "login"
SPAWN = "spawn"
CHAT = "chat"
KICKED = "kicked"
ERROR = "error"
END = "end"

EventSink = Callable[[str, Optional[dict]], None]
DeviceCodeCallback = Callable[[str, str], None]


class ConnectionOptions(BaseModel):
    """Everything a protocol implementation needs to open one session."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    host: str
    port: int
    username: str
    auth: Literal["offline", "microsoft"] = "offline"
    password: Optional[str] = None
    # Low-level transport noise is reported as non-fatal 'error' events
    # instead of tearing the connection down.
    hide_errors: bool = True
    # A socket already tunneled to (host, port); None means dial directly.
    stream: Optional[Any] = None
    on_event: EventSink
    # Set only when the account must be authorized through a device code.
    on_device_code: Optional[DeviceCodeCallback] = None


@runtime_checkable
class GameConnection(Protocol):
    def send_command(self, text: str) -> None:
        """Sends a chat line or slash command as the impersonated account."""

    def terminate(self) -> None:
        """Requests teardown; an 'end' event follows once the transport closes."""


ConnectionFactory = Callable[[ConnectionOptions], GameConnection]


@trace
def load_connection_factory(path: str) -> Optional[ConnectionFactory]:
    """
    Resolves a "package.module:callable" path to a connection factory.

    Returns:
        The factory callable, or None if no path is configured.

    Raises:
        ImportError: If the module cannot be imported.
        AttributeError: If the module has no such attribute.
    """
    if not path:
        return None
    module_name, _, attr = path.partition(":")
    module = importlib.import_module(module_name)
    factory: Any = module
    for part in (attr or "create_connection").split("."):
        factory = getattr(factory, part)
    return factory
