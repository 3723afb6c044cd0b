"""
Turns a session record into a live game connection.

The bootstrapper resolves the server address, picks the authentication
strategy for the session's credential variant, opens a SOCKS5 tunnel when the
session names a proxy, and hands the result to the configured connection
factory. It returns as soon as the connection object exists; login, chat and
disconnects all arrive later as events on the session's channel.
"""
import logging
import threading
from typing import Optional

from config import DEFAULT_GAME_PORT
from connection import ConnectionFactory, ConnectionOptions, GameConnection
from data_models import AuthMode, SessionConfig
from proxies import open_tunnel
from tracer import trace
from utils import parse_port, split_host_port


class BootstrapError(Exception):
    """Raised when a session cannot be bootstrapped. Nothing is registered."""

    INVALID_ADDRESS = "invalid_address"
    CONNECTION_UNAVAILABLE = "connection_unavailable"
    CONNECTION_FAILED = "connection_failed"

    def __init__(self, reason: str, detail: str = ""):
        super().__init__(f"{reason}: {detail}" if detail else reason)
        self.reason = reason
        self.detail = detail


@trace
def parse_server_address(server_host: str, server_port: Optional[int] = None) -> tuple[str, int]:
    """
    Resolves the game server address from a session record.

    A port embedded in server_host ("play.example.com:25570") wins over
    server_port; with neither, the default game port is used.

    Raises:
        BootstrapError: With reason 'invalid_address' for an empty host or a
                        port that is not a valid TCP port.
    """
    host, raw_port = split_host_port(server_host or "")
    if not host:
        raise BootstrapError(BootstrapError.INVALID_ADDRESS, f"no host in {server_host!r}")
    if raw_port is not None:
        port = parse_port(raw_port)
        if port is None:
            raise BootstrapError(BootstrapError.INVALID_ADDRESS, f"bad port in {server_host!r}")
        return host, port
    port = server_port if server_port is not None else DEFAULT_GAME_PORT
    if not 0 < port < 65536:
        raise BootstrapError(BootstrapError.INVALID_ADDRESS, f"bad port {port}")
    return host, port


@trace
def parse_proxy_endpoint(endpoint: Optional[str]) -> Optional[tuple[str, int]]:
    """
    Parses a "host:port" proxy endpoint.

    Returns:
        (host, port), or None when the endpoint is unset or malformed. A
        malformed endpoint is logged and ignored so the session dials directly.
    """
    if not endpoint:
        return None
    host, raw_port = split_host_port(endpoint)
    port = parse_port(raw_port)
    if not host or port is None:
        logging.warning(f"Ignoring malformed proxy endpoint {endpoint!r}; connecting directly.")
        return None
    return host, port


def _device_code_forwarder(event_sink):
    """Builds a device-code callback that announces the prompt exactly once."""
    lock = threading.Lock()
    announced = False

    def on_device_code(verification_uri: str, user_code: str) -> None:
        nonlocal announced
        with lock:
            if announced:
                return
            announced = True
        event_sink.announce_device_code(verification_uri, user_code)

    return on_device_code


@trace
def bootstrap(
    config: SessionConfig,
    event_sink,
    connection_factory: Optional[ConnectionFactory],
    proxy_timeout: Optional[float] = None,
) -> GameConnection:
    """
    Establishes the connection for one session.

    Args:
        config: The validated session record.
        event_sink: The session's channel. It receives every connection event
                    and the one-shot device-code announcement.
        connection_factory: The game protocol implementation.
        proxy_timeout: Seconds allowed for the SOCKS5 handshake, or None.

    Returns:
        The connection handle. Its outcome is reported through events.

    Raises:
        BootstrapError: For a malformed server address, a missing factory, or
                        a factory that fails to construct the connection.
        ProxyError: If the configured proxy cannot open the tunnel. There is
                    no fallback to a direct connection.
    """
    host, port = parse_server_address(config.server_host, config.server_port)
    if connection_factory is None:
        raise BootstrapError(BootstrapError.CONNECTION_UNAVAILABLE, "no connection factory configured")

    options = {"host": host, "port": port, "hide_errors": True, "on_event": event_sink.emit}
    credentials = config.credentials
    if config.auth_mode == AuthMode.OFFLINE:
        options.update(auth="offline", username=credentials.username)
    elif config.auth_mode == AuthMode.CREDENTIALED and credentials.password:
        options.update(auth="microsoft", username=credentials.email, password=credentials.password)
    else:
        # Interactive, or credentialed without a stored password.
        options.update(
            auth="microsoft",
            username=credentials.email,
            on_device_code=_device_code_forwarder(event_sink),
        )

    proxy = parse_proxy_endpoint(config.proxy_endpoint)
    if proxy:
        proxy_host, proxy_port = proxy
        logging.info(f"Session '{config.session_id}' tunneling to {host}:{port} via {proxy_host}:{proxy_port}.")
        options["stream"] = open_tunnel(proxy_host, proxy_port, host, port, timeout=proxy_timeout)

    connection_options = ConnectionOptions(**options)
    try:
        return connection_factory(connection_options)
    except Exception as e:
        if connection_options.stream is not None:
            connection_options.stream.close()
        raise BootstrapError(BootstrapError.CONNECTION_FAILED, str(e)) from e
