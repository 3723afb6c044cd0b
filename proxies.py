"""
Provides the SOCKS5 tunnel used to route a session's transport through a proxy.

Only the no-authentication method and the CONNECT command are spoken. The
returned socket is already tunneled to the destination and is handed to the
game connection as its transport, so protocol bytes flow through the proxy
untouched.
"""
import ipaddress
import logging
import socket
import struct
from typing import Optional

from tracer import trace

SOCKS_VERSION = 0x05
METHOD_NO_AUTH = 0x00
METHOD_UNACCEPTABLE = 0xFF
CMD_CONNECT = 0x01
ATYP_IPV4 = 0x01
ATYP_DOMAIN = 0x03
ATYP_IPV6 = 0x04

REPLY_MESSAGES = {
    0x01: "general failure",
    0x02: "connection not allowed by ruleset",
    0x03: "network unreachable",
    0x04: "host unreachable",
    0x05: "connection refused",
    0x06: "TTL expired",
    0x07: "command not supported",
    0x08: "address type not supported",
}


class ProxyError(Exception):
    """Raised when a SOCKS5 tunnel cannot be established."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


def _recv_exact(sock: socket.socket, size: int) -> bytes:
    buf = b""
    while len(buf) < size:
        chunk = sock.recv(size - len(buf))
        if not chunk:
            raise ProxyError("proxy closed the connection during the handshake")
        buf += chunk
    return buf


def _encode_address(host: str) -> bytes:
    """Encodes the destination as a SOCKS5 address field (type byte + address)."""
    try:
        ip = ipaddress.ip_address(host)
    except ValueError:
        domain = host.encode("idna")
        if len(domain) > 255:
            raise ProxyError(f"destination host name too long: {host}")
        return bytes([ATYP_DOMAIN, len(domain)]) + domain
    if ip.version == 4:
        return bytes([ATYP_IPV4]) + ip.packed
    return bytes([ATYP_IPV6]) + ip.packed


def _drain_bound_address(sock: socket.socket, atyp: int) -> None:
    if atyp == ATYP_IPV4:
        _recv_exact(sock, 4 + 2)
    elif atyp == ATYP_DOMAIN:
        length = _recv_exact(sock, 1)[0]
        _recv_exact(sock, length + 2)
    elif atyp == ATYP_IPV6:
        _recv_exact(sock, 16 + 2)
    else:
        raise ProxyError(f"proxy replied with unknown address type {atyp:#x}")


def _handshake(sock: socket.socket, dest_host: str, dest_port: int) -> None:
    # Greeting: version 5, one method offered (no-auth).
    sock.sendall(bytes([SOCKS_VERSION, 1, METHOD_NO_AUTH]))
    version, method = _recv_exact(sock, 2)
    if version != SOCKS_VERSION:
        raise ProxyError(f"not a SOCKS5 proxy (version byte {version:#x})")
    if method != METHOD_NO_AUTH:
        raise ProxyError("proxy requires authentication")

    request = bytes([SOCKS_VERSION, CMD_CONNECT, 0x00]) + _encode_address(dest_host) + struct.pack("!H", dest_port)
    sock.sendall(request)

    version, reply, _reserved, atyp = _recv_exact(sock, 4)
    if version != SOCKS_VERSION:
        raise ProxyError(f"malformed CONNECT reply (version byte {version:#x})")
    if reply != 0x00:
        raise ProxyError(f"proxy CONNECT failed: {REPLY_MESSAGES.get(reply, f'unknown reply {reply:#x}')}")
    _drain_bound_address(sock, atyp)


@trace
def open_tunnel(
    proxy_host: str,
    proxy_port: int,
    dest_host: str,
    dest_port: int,
    timeout: Optional[float] = None,
) -> socket.socket:
    """
    Opens a SOCKS5 tunnel to (dest_host, dest_port) through the given proxy.

    Args:
        proxy_host: Host name or address of the SOCKS5 proxy.
        proxy_port: Port of the SOCKS5 proxy.
        dest_host: The game server the proxy should connect to.
        dest_port: The game server port.
        timeout: Seconds allowed for reaching the proxy and completing the
                 handshake. None waits indefinitely.

    Returns:
        A connected socket in blocking mode, ready to carry protocol bytes.

    Raises:
        ProxyError: If the proxy is unreachable, refuses the request, or the
                    handshake times out.
    """
    try:
        sock = socket.create_connection((proxy_host, proxy_port), timeout=timeout)
    except socket.timeout as e:
        raise ProxyError(f"timed out reaching proxy {proxy_host}:{proxy_port}") from e
    except OSError as e:
        raise ProxyError(f"could not reach proxy {proxy_host}:{proxy_port}: {e}") from e

    try:
        _handshake(sock, dest_host, dest_port)
    except socket.timeout as e:
        sock.close()
        raise ProxyError(f"SOCKS5 handshake with {proxy_host}:{proxy_port} timed out") from e
    except OSError as e:
        sock.close()
        raise ProxyError(f"SOCKS5 handshake with {proxy_host}:{proxy_port} failed: {e}") from e
    except ProxyError:
        sock.close()
        raise

    sock.settimeout(None)
    logging.info(f"SOCKS5 tunnel to {dest_host}:{dest_port} open via {proxy_host}:{proxy_port}.")
    return sock
