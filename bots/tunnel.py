"""Proxy tunnel handshakes for bot connections.

:func:`open_tunnel` connects to a proxy and asks it to relay a TCP stream to
the target.  Supported transports:

* HTTP ``CONNECT`` (with ``Proxy-Authorization: Basic`` when credentials
  are set).
* SOCKS4 / SOCKS4a (hostnames are resolved by the proxy; the username is
  sent as the user id).
* SOCKS5 (no-auth or RFC 1929 username/password).

Once the handshake completes the returned streams carry the target
connection; nothing of the proxy protocol is left on them.
"""

import asyncio
import base64
import ipaddress
import logging
import struct
from typing import Tuple

from core.config import ProxyType
from core.proxy_manager import Proxy

logger = logging.getLogger(__name__)

Streams = Tuple[asyncio.StreamReader, asyncio.StreamWriter]

SOCKS4_GRANTED = 0x5A
SOCKS5_NO_AUTH = 0x00
SOCKS5_USER_PASS = 0x02
SOCKS5_NO_ACCEPTABLE = 0xFF

SOCKS5_ERRORS = {
    0x01: "general SOCKS server failure",
    0x02: "connection not allowed by ruleset",
    0x03: "network unreachable",
    0x04: "host unreachable",
    0x05: "connection refused",
    0x06: "TTL expired",
    0x07: "command not supported",
    0x08: "address type not supported",
}


class TunnelError(Exception):
    """The proxy refused or broke the tunnel handshake."""


async def open_tunnel(proxy: Proxy, host: str, port: int) -> Streams:
    """Open a stream to ``host:port`` through *proxy*.

    Raises:
        TunnelError: The proxy rejected the request.
        OSError: The proxy itself could not be reached.
    """
    reader, writer = await asyncio.open_connection(proxy.host, proxy.port)
    try:
        if proxy.kind is ProxyType.HTTP:
            await _http_connect(reader, writer, proxy, host, port)
        elif proxy.kind is ProxyType.SOCKS4:
            await _socks4_connect(reader, writer, proxy, host, port)
        else:
            await _socks5_connect(reader, writer, proxy, host, port)
    except asyncio.IncompleteReadError as e:
        writer.close()
        raise TunnelError(f"Proxy {proxy.host}:{proxy.port} closed the connection during handshake") from e
    except BaseException:
        writer.close()
        raise

    logger.debug("Tunnel to %s:%d open via %s", host, port, proxy.masked())
    return reader, writer


async def _http_connect(
    reader: asyncio.StreamReader,
    writer: asyncio.StreamWriter,
    proxy: Proxy,
    host: str,
    port: int,
) -> None:
    target = f"{_format_host(host)}:{port}"
    lines = [f"CONNECT {target} HTTP/1.1", f"Host: {target}"]
    if proxy.has_credentials:
        token = base64.b64encode(
            f"{proxy.username}:{proxy.password}".encode("utf-8")
        ).decode("ascii")
        lines.append(f"Proxy-Authorization: Basic {token}")
    writer.write(("\r\n".join(lines) + "\r\n\r\n").encode("latin-1"))
    await writer.drain()

    try:
        header = await reader.readuntil(b"\r\n\r\n")
    except asyncio.LimitOverrunError as e:
        raise TunnelError("HTTP proxy response header too large") from e

    status_line = header.split(b"\r\n", 1)[0].decode("latin-1")
    parts = status_line.split(" ", 2)
    if len(parts) < 2 or not parts[0].startswith("HTTP/"):
        raise TunnelError(f"Malformed HTTP proxy response: {status_line!r}")
    if parts[1] != "200":
        raise TunnelError(f"HTTP proxy refused CONNECT: {status_line}")


async def _socks4_connect(
    reader: asyncio.StreamReader,
    writer: asyncio.StreamWriter,
    proxy: Proxy,
    host: str,
    port: int,
) -> None:
    user_id = proxy.username.encode("utf-8") + b"\x00"
    try:
        address = ipaddress.IPv4Address(host)
        request = struct.pack(">BBH", 4, 1, port) + address.packed + user_id
    except ValueError:
        # SOCKS4a: 0.0.0.x tells the proxy to resolve the trailing hostname
        request = (
            struct.pack(">BBH", 4, 1, port)
            + b"\x00\x00\x00\x01"
            + user_id
            + host.encode("idna")
            + b"\x00"
        )
    writer.write(request)
    await writer.drain()

    reply = await reader.readexactly(8)
    if reply[1] != SOCKS4_GRANTED:
        raise TunnelError(f"SOCKS4 proxy rejected request (code 0x{reply[1]:02x})")


async def _socks5_connect(
    reader: asyncio.StreamReader,
    writer: asyncio.StreamWriter,
    proxy: Proxy,
    host: str,
    port: int,
) -> None:
    methods = [SOCKS5_NO_AUTH]
    if proxy.has_credentials:
        methods.append(SOCKS5_USER_PASS)
    writer.write(bytes([5, len(methods)] + methods))
    await writer.drain()

    version, method = await reader.readexactly(2)
    if version != 5:
        raise TunnelError(f"Not a SOCKS5 proxy (version byte {version})")
    if method == SOCKS5_NO_ACCEPTABLE or method not in methods:
        raise TunnelError("SOCKS5 proxy accepted none of the offered auth methods")

    if method == SOCKS5_USER_PASS:
        username = proxy.username.encode("utf-8")
        password = proxy.password.encode("utf-8")
        writer.write(
            bytes([1, len(username)]) + username + bytes([len(password)]) + password
        )
        await writer.drain()
        _, status = await reader.readexactly(2)
        if status != 0:
            raise TunnelError("SOCKS5 proxy rejected the credentials")

    writer.write(b"\x05\x01\x00" + _socks5_address(host) + struct.pack(">H", port))
    await writer.drain()

    _, reply, _, atyp = await reader.readexactly(4)
    if reply != 0:
        reason = SOCKS5_ERRORS.get(reply, f"code 0x{reply:02x}")
        raise TunnelError(f"SOCKS5 proxy could not connect: {reason}")

    # Skip the bound address the proxy reports back
    if atyp == 0x01:
        await reader.readexactly(4 + 2)
    elif atyp == 0x04:
        await reader.readexactly(16 + 2)
    elif atyp == 0x03:
        length = (await reader.readexactly(1))[0]
        await reader.readexactly(length + 2)
    else:
        raise TunnelError(f"SOCKS5 proxy sent unknown address type {atyp}")


def _socks5_address(host: str) -> bytes:
    try:
        address = ipaddress.ip_address(host)
    except ValueError:
        encoded = host.encode("idna")
        return bytes([0x03, len(encoded)]) + encoded
    if address.version == 4:
        return b"\x01" + address.packed
    return b"\x04" + address.packed


def _format_host(host: str) -> str:
    try:
        if ipaddress.ip_address(host).version == 6:
            return f"[{host}]"
    except ValueError:
        pass
    return host
