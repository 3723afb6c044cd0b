"""
Provides common, stateless utility functions used across the application.

This module is a collection of small helpers that do not fit into a more
specific module: timestamps for log lines and the "host:port" parsing shared
by the game server address and the proxy endpoint.
"""
from datetime import datetime, timezone
from typing import Optional


def get_timestamp() -> datetime:
    """Returns the current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def split_host_port(value: str) -> tuple[str, Optional[str]]:
    """
    Splits a "host:port" string into its host and raw port parts.

    Bracketed IPv6 literals ("[::1]:25565") are unwrapped. A bare IPv6
    literal without brackets is treated as a host with no port.

    Returns:
        A (host, port) tuple where port is None if no port was given.
    """
    value = value.strip()
    if value.startswith("["):
        end = value.find("]")
        if end == -1:
            return value, None
        host = value[1:end]
        rest = value[end + 1 :]
        return host, rest[1:] if rest.startswith(":") else None
    if value.count(":") == 1:
        host, port = value.split(":", 1)
        return host, port
    return value, None


def parse_port(raw: Optional[str]) -> Optional[int]:
    """Returns the port as an int if it is a valid TCP port, otherwise None."""
    if raw is None or not (raw.isascii() and raw.isdigit()):
        return None
    port = int(raw)
    return port if 0 < port < 65536 else None
